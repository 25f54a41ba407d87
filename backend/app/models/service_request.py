from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()

JSON_TYPE = JSON().with_variant(JSONB, "postgresql")

SERVICE_REQUEST_STATES = ("pending", "accepted", "rejected", "cancelled", "completed")


class ServiceRequest(Base):
    __tablename__ = "service_requests"
    __table_args__ = (
        CheckConstraint(
            "state IN ('pending','accepted','rejected','cancelled','completed')",
            name="chk_service_request_state",
        ),
        CheckConstraint("estimated_budget >= 0", name="chk_service_request_budget_non_negative"),
        Index("idx_service_requests_client", "client_id", "requested_at"),
        Index("idx_service_requests_professional", "professional_id", "requested_at"),
        # At most one open request per client/professional pair.
        Index(
            "uq_service_requests_pending_pair",
            "client_id",
            "professional_id",
            unique=True,
            sqlite_where=text("state = 'pending' AND active = 1"),
            postgresql_where=text("state = 'pending' AND active"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    client_id = Column(Integer, nullable=False)
    professional_id = Column(Integer, nullable=False)

    description = Column(Text, nullable=False)
    estimated_budget = Column(Numeric(12, 2), nullable=False, default=0, server_default=text("0"))
    address = Column(String(255), nullable=False)
    district = Column(String(120), nullable=False)
    postal_code = Column(String(20))
    reference = Column(String(255))
    service_date = Column(DateTime(timezone=True), nullable=False)
    urgency = Column(String(16), nullable=False, default="medium", server_default=text("'medium'"))
    additional_notes = Column(Text)
    photo_urls = Column(JSON_TYPE, nullable=False, default=list)

    state = Column(String(16), nullable=False, default="pending", server_default=text("'pending'"))
    requested_at = Column(DateTime(timezone=True), nullable=False)
    responded_at = Column(DateTime(timezone=True))
    updated_at = Column(DateTime(timezone=True), nullable=False)
    active = Column(Boolean, nullable=False, default=True, server_default=text("true"))


class NotificationOutbox(Base):
    __tablename__ = "notification_outbox"
    __table_args__ = (
        UniqueConstraint("dedupe_key", name="uniq_notification_outbox_dedupe_key"),
        Index("idx_notification_outbox_status_next", "status", "next_attempt_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    entity_type = Column(String(64), nullable=False)
    entity_id = Column(String(64), nullable=False)

    channel = Column(String(32), nullable=False)  # email / push / queue
    template_key = Column(String(64), nullable=False)
    payload_json = Column(JSON_TYPE, nullable=False)
    dedupe_key = Column(String(128), nullable=False)

    status = Column(String(16), nullable=False, default="PENDING", server_default=text("'PENDING'"))
    attempt_count = Column(Integer, nullable=False, default=0, server_default=text("0"))
    next_attempt_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    sent_at = Column(DateTime(timezone=True))
    last_error = Column(Text)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
