"""
Webhook event-type catalog.

The catalog is closed: endpoints may only subscribe to members listed in
CATALOG. Provider event names reported by the send pipelines are mapped
onto the catalog by map_provider_event_type(), which is total and falls
back to UNMAPPED.
"""
import enum


class WebhookEventType(str, enum.Enum):
    """Public webhook event type names."""
    EMAIL_SENT = "email.sent"
    EMAIL_DELIVERED = "email.delivered"
    EMAIL_BOUNCED = "email.bounced"
    EMAIL_COMPLAINED = "email.complained"
    EMAIL_OPENED = "email.opened"
    EMAIL_CLICKED = "email.clicked"
    EMAIL_REJECTED = "email.rejected"
    EMAIL_RENDERING_FAILED = "email.rendering_failed"
    EMAIL_INBOUND = "email.inbound"
    UNMAPPED = "unmapped"


EVENT_TYPE_DESCRIPTIONS: dict[WebhookEventType, str] = {
    WebhookEventType.EMAIL_SENT: "Email was successfully sent to the provider",
    WebhookEventType.EMAIL_DELIVERED: "Email was delivered to recipient",
    WebhookEventType.EMAIL_BOUNCED: "Email bounced (hard or soft)",
    WebhookEventType.EMAIL_COMPLAINED: "Recipient marked as spam",
    WebhookEventType.EMAIL_OPENED: "Email was opened (requires tracking)",
    WebhookEventType.EMAIL_CLICKED: "Link in email was clicked (requires tracking)",
    WebhookEventType.EMAIL_REJECTED: "Provider rejected the email",
    WebhookEventType.EMAIL_RENDERING_FAILED: "Template rendering failed",
    WebhookEventType.EMAIL_INBOUND: "Inbound email received",
}

# Subscribable event types, in display order
CATALOG: tuple[WebhookEventType, ...] = tuple(EVENT_TYPE_DESCRIPTIONS)

CATALOG_NAMES: frozenset[str] = frozenset(t.value for t in CATALOG)

_PROVIDER_EVENT_TYPES: dict[str, WebhookEventType] = {
    "send": WebhookEventType.EMAIL_SENT,
    "delivery": WebhookEventType.EMAIL_DELIVERED,
    "bounce": WebhookEventType.EMAIL_BOUNCED,
    "complaint": WebhookEventType.EMAIL_COMPLAINED,
    "open": WebhookEventType.EMAIL_OPENED,
    "click": WebhookEventType.EMAIL_CLICKED,
    "reject": WebhookEventType.EMAIL_REJECTED,
    "renderingfailure": WebhookEventType.EMAIL_RENDERING_FAILED,
    "rendering failure": WebhookEventType.EMAIL_RENDERING_FAILED,
}


def map_provider_event_type(name: str) -> WebhookEventType:
    """Map a provider event name (e.g. "Bounce") to its public type."""
    return _PROVIDER_EVENT_TYPES.get(name.strip().lower(), WebhookEventType.UNMAPPED)


def resolve_event_type(value: "WebhookEventType | str") -> WebhookEventType:
    """
    Accept either a public catalog name or a provider event name.

    Returns UNMAPPED when neither matches.
    """
    if isinstance(value, WebhookEventType):
        return value
    if value in CATALOG_NAMES:
        return WebhookEventType(value)
    return map_provider_event_type(value)


def invalid_event_types(names) -> list[str]:
    """Return the names that are not subscribable catalog entries."""
    return [name for name in names if name not in CATALOG_NAMES]
