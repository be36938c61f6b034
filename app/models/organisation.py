"""
Organisation model.

Represents a tenant in the multi-tenant system. Webhook endpoints and
domain events are scoped to an organisation.
"""
import uuid
from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.models.base import Base, TimestampMixin


class Organisation(Base, TimestampMixin):
    """
    Organisation model representing a tenant in the system.

    Deleting an organisation removes its endpoints, their deliveries and
    its recorded events.
    """
    __tablename__ = "organisations"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    domain: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)

    # Relationships
    webhook_endpoints = relationship(
        "WebhookEndpoint",
        back_populates="organisation",
        cascade="all, delete-orphan",
        passive_deletes=True
    )
    domain_events = relationship(
        "DomainEvent",
        back_populates="organisation",
        cascade="all, delete-orphan",
        passive_deletes=True
    )

    def __repr__(self):
        return f"<Organisation(id={self.id}, name={self.name}, domain={self.domain})>"
