"""Per-phone conversation context: the active channel and dataset selection.

A context is valid until the end of the calendar day (business timezone) of
its last write. Reads past that boundary behave as if no context exists.
"""

from datetime import datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import text
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.orm import Session

from insightbot.config import settings
from insightbot.logging_config import get_logger
from insightbot.models import AuthorizedContact, ConversationContext, DatasetBinding

logger = get_logger("context_service")

_DATASET_FIELDS = ("connection_id", "dataset_id", "dataset_name")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def end_of_day(now: datetime, tz_name: Optional[str] = None) -> datetime:
    """First instant of the next local day, as an aware datetime."""
    tz = ZoneInfo(tz_name or settings.timezone)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    local_date = now.astimezone(tz).date()
    return datetime.combine(local_date + timedelta(days=1), time.min, tzinfo=tz)


def is_expired(context: ConversationContext, now: Optional[datetime] = None) -> bool:
    now = now or _utcnow()
    expires_at = context.expires_at
    if expires_at is None:
        return True
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return expires_at <= now


def acquire_phone_lock(db: Session, phone: str) -> None:
    """Serialize turns for one sender until the current transaction ends."""
    db.execute(text("SELECT pg_advisory_xact_lock(hashtext(:phone))"), {"phone": phone})


def get_context(db: Session, phone: str, now: Optional[datetime] = None) -> Optional[ConversationContext]:
    now = now or _utcnow()
    context = (
        db.query(ConversationContext)
        .filter(ConversationContext.phone == phone, ConversationContext.expires_at > now)
        .first()
    )
    if context is not None and is_expired(context, now):
        return None
    return context


def upsert_context(db: Session, phone: str, *, now: Optional[datetime] = None, **selection) -> None:
    """Insert or overwrite the single context row for a phone, pushing expiry to end of day."""
    now = now or _utcnow()
    values = {
        "phone": phone,
        "created_at": now,
        "updated_at": now,
        "expires_at": end_of_day(now),
        **selection,
    }
    stmt = insert(ConversationContext).values(**values)
    update_columns = {column: stmt.excluded[column] for column in values if column not in ("phone", "created_at")}
    stmt = stmt.on_conflict_do_update(index_elements=["phone"], set_=update_columns)
    db.execute(stmt)
    logger.info(
        "Conversation context saved",
        extra={"context": {"phone": phone, "fields": sorted(selection.keys()), "expires_at": values["expires_at"]}},
    )


def save_channel_selection(db: Session, phone: str, contact: AuthorizedContact, now: Optional[datetime] = None) -> None:
    """Select a contact (tenant + channel instance); any dataset choice is dropped."""
    upsert_context(
        db,
        phone,
        now=now,
        selected_contact_id=contact.id,
        selected_channel_instance_id=contact.channel_instance_id,
        **{field: None for field in _DATASET_FIELDS},
    )


def save_dataset_selection(
    db: Session,
    phone: str,
    contact: AuthorizedContact,
    binding: DatasetBinding,
    now: Optional[datetime] = None,
) -> None:
    upsert_context(
        db,
        phone,
        now=now,
        selected_contact_id=contact.id,
        selected_channel_instance_id=contact.channel_instance_id,
        connection_id=binding.connection_id,
        dataset_id=binding.dataset_id,
        dataset_name=binding.dataset_name,
    )


def clear_dataset_selection(db: Session, phone: str) -> None:
    db.query(ConversationContext).filter(ConversationContext.phone == phone).update(
        {getattr(ConversationContext, field): None for field in _DATASET_FIELDS},
        synchronize_session=False,
    )


def clear_context(db: Session, phone: str) -> None:
    db.query(ConversationContext).filter(ConversationContext.phone == phone).delete(synchronize_session=False)
    logger.info("Conversation context cleared", extra={"context": {"phone": phone}})
