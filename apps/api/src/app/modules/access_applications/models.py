"""
Access Applications Models

Database model for access applications.

The full application snapshot is stored as a JSONB document. The fields used
by searches and batch job criteria are copied into indexed columns on every
write so they can be filtered without unpacking the document.
"""

from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    Index,
    Integer,
    Sequence,
    String,
    func,
)
from sqlalchemy.dialects.postgresql import ARRAY, JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base
from app.modules.access_applications.domain import ApplicationState, PauseReason

APP_NUMBER_SEQUENCE = Sequence("access_applications_app_number_seq")


def _enum_values(enum_cls: type) -> list[str]:
    return [member.value for member in enum_cls]


class ApplicationRecord(Base):
    """
    Stored access application.

    ``version`` is incremented by every write and checked by compare-and-set
    updates so concurrent writers cannot silently overwrite each other.
    """

    __tablename__ = "access_applications"

    # Identity
    app_number: Mapped[int] = mapped_column(Integer, APP_NUMBER_SEQUENCE, primary_key=True)
    app_id: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)

    # Queryable fields (copied from the document)
    state: Mapped[ApplicationState] = mapped_column(
        Enum(ApplicationState, name="access_application_state", values_callable=_enum_values),
        nullable=False,
    )
    submitter_id: Mapped[str] = mapped_column(String(255), nullable=False)
    submitted_at_utc: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_at_utc: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at_utc: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    attested_at_utc: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    pause_reason: Mapped[PauseReason | None] = mapped_column(
        Enum(PauseReason, name="access_pause_reason", values_callable=_enum_values),
        nullable=True,
    )

    # Renewal links
    is_renewal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    source_app_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    renewal_app_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    renewal_period_end_date_utc: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Batch notification flags
    attestation_required_notification_sent: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    application_paused_notification_sent: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    first_expiry_notification_sent: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    second_expiry_notification_sent: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    application_expired_notification_sent: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Search and document
    search_values: Mapped[list[str]] = mapped_column(ARRAY(String), nullable=False, default=list)
    document: Mapped[dict] = mapped_column(JSONB, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Audit timestamps
    created_at_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    last_updated_at_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_access_applications_state", "state"),
        Index("ix_access_applications_submitter_id", "submitter_id"),
        Index("ix_access_applications_expires_at_utc", "expires_at_utc"),
        Index("ix_access_applications_approved_at_utc", "approved_at_utc"),
        Index("ix_access_applications_search_values", "search_values", postgresql_using="gin"),
    )
