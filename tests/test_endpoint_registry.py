"""Tests for webhook endpoint registration and management."""
import pytest
from sqlalchemy import func, select

from app.exceptions import EndpointNotFound, InsecureUrl, InvalidEventType, TenantNotFound
from app.models.webhook import DomainEvent, WebhookDelivery, WebhookEndpoint
from app.services.endpoint_service import EndpointService, list_event_types, validate_url
from app.services.event_recorder import EventRecorder
from app.services.fanout_service import FanOutService
from app.services.organisation_service import OrganisationService

URL = "https://hooks.example.com/email"


async def _count(db, model) -> int:
    return (await db.execute(select(func.count()).select_from(model))).scalar_one()


class TestRegister:
    """Tests for EndpointService.register()."""

    async def test_register_returns_endpoint_and_hex_secret(self, db, tenant):
        endpoint, secret = await EndpointService(db).register(
            tenant.id, "Primary", URL, ["email.bounced", "email.delivered"]
        )

        assert endpoint.id
        assert endpoint.tenant_id == tenant.id
        assert endpoint.enabled is True
        assert endpoint.event_types == ["email.bounced", "email.delivered"]
        assert len(secret) == 64
        assert bytes.fromhex(secret) == endpoint.secret
        assert endpoint.secret_preview == secret[:8] + "..."

    async def test_secrets_are_unique(self, db, tenant):
        service = EndpointService(db)
        _, first = await service.register(tenant.id, "A", URL, ["email.sent"])
        _, second = await service.register(tenant.id, "B", URL, ["email.sent"])
        assert first != second

    async def test_duplicate_event_types_are_collapsed(self, db, tenant):
        endpoint, _ = await EndpointService(db).register(
            tenant.id, "Primary", URL, ["email.sent", "email.sent"]
        )
        assert endpoint.event_types == ["email.sent"]

    async def test_rejects_unknown_event_type(self, db, tenant):
        with pytest.raises(InvalidEventType) as exc_info:
            await EndpointService(db).register(
                tenant.id, "Primary", URL, ["email.bounced", "email.exploded"]
            )
        assert exc_info.value.event_types == ["email.exploded"]
        assert await _count(db, WebhookEndpoint) == 0

    async def test_rejects_unmapped_event_type(self, db, tenant):
        with pytest.raises(InvalidEventType):
            await EndpointService(db).register(tenant.id, "Primary", URL, ["unmapped"])

    async def test_rejects_http_url(self, db, tenant):
        with pytest.raises(InsecureUrl):
            await EndpointService(db).register(
                tenant.id, "Primary", "http://hooks.example.com/email", ["email.sent"]
            )
        assert await _count(db, WebhookEndpoint) == 0

    async def test_event_types_checked_before_url(self, db, tenant):
        with pytest.raises(InvalidEventType):
            await EndpointService(db).register(tenant.id, "Primary", "http://x", ["nope"])

    async def test_rejects_unknown_tenant(self, db):
        with pytest.raises(TenantNotFound):
            await EndpointService(db).register("missing", "Primary", URL, ["email.sent"])


@pytest.mark.parametrize(
    "url",
    [
        "http://example.com",
        "ftp://example.com",
        "example.com/hook",
        "https://",
        "",
        "https://[::1/hook",
    ],
)
def test_validate_url_rejects(url):
    with pytest.raises(InsecureUrl):
        validate_url(url)


def test_validate_url_accepts_https():
    validate_url("HTTPS://hooks.example.com:8443/path?q=1")


def test_list_event_types_is_static_catalog():
    names = [entry["name"] for entry in list_event_types()]
    assert names[0] == "email.sent"
    assert "email.inbound" in names
    assert "unmapped" not in names
    assert all(entry["description"] for entry in list_event_types())


class TestManage:
    """Tests for update, listing, lookup and deletion."""

    async def test_update_is_partial(self, db, tenant):
        service = EndpointService(db)
        endpoint, _ = await service.register(tenant.id, "Primary", URL, ["email.sent"])

        updated = await service.update(tenant.id, endpoint.id, enabled=False)

        assert updated.enabled is False
        assert updated.name == "Primary"
        assert updated.url == URL
        assert updated.event_types == ["email.sent"]

    async def test_update_validates(self, db, tenant):
        service = EndpointService(db)
        endpoint, _ = await service.register(tenant.id, "Primary", URL, ["email.sent"])

        with pytest.raises(InsecureUrl):
            await service.update(tenant.id, endpoint.id, url="http://insecure.example.com")
        with pytest.raises(InvalidEventType):
            await service.update(tenant.id, endpoint.id, event_types=["email.exploded"])

        refreshed = await service.get_for_tenant(tenant.id, endpoint.id)
        assert refreshed.url == URL
        assert refreshed.event_types == ["email.sent"]

    async def test_update_subscriptions(self, db, tenant):
        service = EndpointService(db)
        endpoint, _ = await service.register(tenant.id, "Primary", URL, ["email.sent"])
        updated = await service.update(
            tenant.id, endpoint.id, name="Renamed", event_types=["email.opened", "email.clicked"]
        )
        assert updated.name == "Renamed"
        assert updated.event_types == ["email.opened", "email.clicked"]

    async def test_endpoints_are_tenant_scoped(self, db, tenant, other_tenant):
        service = EndpointService(db)
        endpoint, _ = await service.register(tenant.id, "Primary", URL, ["email.sent"])

        assert await service.get_for_tenant(other_tenant.id, endpoint.id) is None
        assert await service.list_for_tenant(other_tenant.id) == []
        with pytest.raises(EndpointNotFound):
            await service.update(other_tenant.id, endpoint.id, enabled=False)
        with pytest.raises(EndpointNotFound):
            await service.delete(other_tenant.id, endpoint.id)

    async def test_list_for_tenant(self, db, tenant):
        service = EndpointService(db)
        await service.register(tenant.id, "A", URL, ["email.sent"])
        await service.register(tenant.id, "B", URL, ["email.sent"])

        endpoints = await service.list_for_tenant(tenant.id)
        assert {e.name for e in endpoints} == {"A", "B"}

    async def test_delete_removes_deliveries(self, db, tenant):
        service = EndpointService(db)
        endpoint, _ = await service.register(tenant.id, "Primary", URL, ["email.bounced"])
        event = await EventRecorder(db).record(tenant.id, "email.bounced", "msg-1", "a@b.com")
        await FanOutService(db).enqueue(event)
        assert await _count(db, WebhookDelivery) == 1

        await service.delete(tenant.id, endpoint.id)

        assert await service.get_for_tenant(tenant.id, endpoint.id) is None
        assert await _count(db, WebhookDelivery) == 0
        assert await _count(db, DomainEvent) == 1

    async def test_delete_missing_raises(self, db, tenant):
        with pytest.raises(EndpointNotFound):
            await EndpointService(db).delete(tenant.id, "does-not-exist")

    async def test_list_deliveries_most_recent_first(self, db, tenant):
        service = EndpointService(db)
        endpoint, _ = await service.register(tenant.id, "Primary", URL, ["email.sent"])
        recorder = EventRecorder(db)
        fanout = FanOutService(db)
        for i in range(3):
            event = await recorder.record(tenant.id, "email.sent", f"msg-{i}")
            await fanout.enqueue(event)
        db.expunge_all()

        deliveries = await service.list_deliveries(tenant.id, endpoint.id, limit=2)

        assert len(deliveries) == 2
        assert deliveries[0].id > deliveries[1].id
        assert deliveries[0].event.subject_reference == "msg-2"

    async def test_deleting_tenant_cascades(self, db, tenant):
        endpoint, _ = await EndpointService(db).register(tenant.id, "Primary", URL, ["email.sent"])
        event = await EventRecorder(db).record(tenant.id, "email.sent", "msg-1")
        await FanOutService(db).enqueue(event)
        db.expunge_all()

        assert await OrganisationService(db).delete(tenant.id) is True

        assert await _count(db, WebhookEndpoint) == 0
        assert await _count(db, DomainEvent) == 0
        assert await _count(db, WebhookDelivery) == 0
