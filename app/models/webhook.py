"""
Webhook models.

Endpoints receive signed callbacks, domain events are the immutable
occurrences that trigger them, and deliveries track one
(endpoint, event) pair through the retry state machine.

SECURITY: All endpoint queries MUST include tenant_id filter.
Failure to do so will result in data leakage between tenants.
"""
import enum
import uuid
from datetime import datetime
from typing import Any
from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    ForeignKey,
    Integer,
    LargeBinary,
    String,
    Text,
    UniqueConstraint,
    Enum as SQLEnum,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.models.base import Base, TimestampMixin, UTCDateTime, utcnow


# Autoincrement ids; SQLite only autoincrements INTEGER primary keys
_BigIntId = BigInteger().with_variant(Integer(), "sqlite")


class DeliveryStatus(str, enum.Enum):
    """Delivery state machine states."""
    PENDING = "pending"
    SENT = "sent"
    RETRY_SCHEDULED = "retry_scheduled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (DeliveryStatus.SENT, DeliveryStatus.FAILED)


class WebhookEndpoint(Base):
    """Tenant-registered HTTPS callback endpoint."""
    __tablename__ = "webhook_endpoints"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    tenant_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("organisations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    url: Mapped[str] = mapped_column(String(2048), nullable=False)
    event_types: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    secret: Mapped[bytes] = mapped_column(LargeBinary(64), nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)

    organisation = relationship("Organisation", back_populates="webhook_endpoints")
    deliveries = relationship(
        "WebhookDelivery",
        back_populates="endpoint",
        cascade="all, delete-orphan",
        passive_deletes=True
    )

    @property
    def secret_preview(self) -> str:
        """First 8 hex characters of the secret followed by an ellipsis."""
        if not self.secret:
            return ""
        return self.secret.hex()[:8] + "..."

    def subscribes_to(self, event_type: str) -> bool:
        return self.enabled and event_type in (self.event_types or [])

    def __repr__(self):
        return f"<WebhookEndpoint(id={self.id}, tenant_id={self.tenant_id}, url={self.url})>"


class DomainEvent(Base):
    """
    Immutable record of a reportable occurrence (message sent, bounced...).

    Created by producers through the event recorder; referenced, never
    mutated, by deliveries.
    """
    __tablename__ = "domain_events"

    id: Mapped[int] = mapped_column(_BigIntId, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("organisations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
    subject_reference: Mapped[str | None] = mapped_column(String(255), nullable=True)
    recipient: Mapped[str | None] = mapped_column(String(320), nullable=True)
    payload: Mapped[Any] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)

    organisation = relationship("Organisation", back_populates="domain_events")
    deliveries = relationship(
        "WebhookDelivery",
        back_populates="event",
        cascade="all, delete-orphan",
        passive_deletes=True
    )

    @property
    def public_id(self) -> str:
        return f"evt_{self.id}"

    def __repr__(self):
        return f"<DomainEvent(id={self.id}, type={self.event_type}, tenant_id={self.tenant_id})>"


class WebhookDelivery(Base, TimestampMixin):
    """
    One (endpoint, event) pairing tracked until Sent or Failed.

    next_retry_at is set if and only if status is RETRY_SCHEDULED.
    """
    __tablename__ = "webhook_deliveries"
    __table_args__ = (
        UniqueConstraint("endpoint_id", "event_id", name="uq_webhook_deliveries_endpoint_event"),
    )

    id: Mapped[int] = mapped_column(_BigIntId, primary_key=True, autoincrement=True)
    endpoint_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("webhook_endpoints.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    event_id: Mapped[int] = mapped_column(
        _BigIntId,
        ForeignKey("domain_events.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    status: Mapped[DeliveryStatus] = mapped_column(
        SQLEnum(
            DeliveryStatus,
            native_enum=False,
            create_constraint=False,
            length=20,
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        nullable=False,
        default=DeliveryStatus.PENDING,
        index=True
    )
    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_attempt_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    next_retry_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True, index=True)
    response_status_code: Mapped[int | None] = mapped_column(Integer, nullable=True)
    response_body_excerpt: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Set while a dispatcher owns the attempt; expired leases are reclaimable
    claimed_until: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    endpoint = relationship("WebhookEndpoint", back_populates="deliveries")
    event = relationship("DomainEvent", back_populates="deliveries")

    def __repr__(self):
        return f"<WebhookDelivery(id={self.id}, status={self.status}, attempts={self.attempt_count})>"
