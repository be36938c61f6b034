"""
Webhook error taxonomy.

Registration errors surface to the caller. Delivery errors are raised
inside the executor and converted into failed attempt outcomes; they
never escape the dispatch loop.
"""


class WebhookError(Exception):
    """Base class for webhook errors."""


class InvalidEventType(WebhookError, ValueError):
    """One or more event types are not in the catalog."""

    def __init__(self, event_types: list[str]):
        self.event_types = event_types
        super().__init__(f"Invalid event types: {', '.join(event_types)}")


class InsecureUrl(WebhookError, ValueError):
    """Endpoint URL does not use HTTPS."""

    def __init__(self, url: str):
        self.url = url
        super().__init__("Webhook URL must use HTTPS")


class EndpointNotFound(WebhookError, LookupError):
    """Endpoint does not exist for this tenant."""

    def __init__(self, endpoint_id: str):
        self.endpoint_id = endpoint_id
        super().__init__(f"Webhook endpoint {endpoint_id} not found")


class TenantNotFound(WebhookError, LookupError):
    """Tenant organisation does not exist."""

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        super().__init__(f"Tenant {tenant_id} not found")


class SignatureComputationError(WebhookError):
    """The payload signature could not be computed."""


class TransportFailure(WebhookError):
    """Timeout, connection or DNS failure while sending."""


class ReceiverRejected(WebhookError):
    """Receiver answered with a non-2xx status."""

    def __init__(self, status_code: int, body: str | None = None):
        self.status_code = status_code
        self.body = body
        super().__init__(f"HTTP {status_code}")
