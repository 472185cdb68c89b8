from datetime import datetime, timezone
from typing import Optional
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy import func
from sqlalchemy.orm import Session

from insightbot.config import settings
from insightbot.models import Message, Tenant
from insightbot.models.tenant import UNLIMITED_MESSAGES

INCOMING = "incoming"
OUTGOING = "outgoing"
ASSISTANT_LABEL = "Assistente IA"

HISTORY_MESSAGE_CHARS = 500


def save_message(
    db: Session,
    tenant_id: UUID,
    phone: str,
    content: str,
    direction: str,
    sender_label: Optional[str] = None,
) -> Message:
    """Append a message to the audit log."""
    message = Message(
        tenant_id=tenant_id,
        phone=phone,
        content=content,
        direction=direction,
        sender_label=sender_label or (ASSISTANT_LABEL if direction == OUTGOING else phone),
        created_at=datetime.now(timezone.utc),
    )
    db.add(message)
    db.flush()
    return message


def get_recent_messages(db: Session, tenant_id: UUID, phone: str, limit: int) -> list[Message]:
    """Last `limit` messages for a phone within a tenant, oldest first."""
    if limit <= 0:
        return []
    rows = (
        db.query(Message)
        .filter(Message.tenant_id == tenant_id, Message.phone == phone)
        .order_by(Message.created_at.desc())
        .limit(limit)
        .all()
    )
    return list(reversed(rows))


def render_history(messages: list[Message]) -> str:
    lines = []
    for message in messages:
        speaker = "Assistente" if message.direction == OUTGOING else "Usuário"
        content = (message.content or "").strip()
        if len(content) > HISTORY_MESSAGE_CHARS:
            content = content[:HISTORY_MESSAGE_CHARS] + "..."
        if content:
            lines.append(f"{speaker}: {content}")
    return "\n".join(lines)


def month_start(now: datetime, tz_name: Optional[str] = None) -> datetime:
    """Midnight of the first day of the current month in the business timezone."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    local = now.astimezone(ZoneInfo(tz_name or settings.timezone))
    return local.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def count_outgoing_this_month(db: Session, tenant_id: UUID, now: Optional[datetime] = None) -> int:
    now = now or datetime.now(timezone.utc)
    count = (
        db.query(func.count(Message.id))
        .filter(
            Message.tenant_id == tenant_id,
            Message.direction == OUTGOING,
            Message.created_at >= month_start(now),
        )
        .scalar()
    )
    return int(count or 0)


def is_quota_exceeded(db: Session, tenant: Tenant, now: Optional[datetime] = None) -> bool:
    limit = tenant.max_messages_per_month
    if limit is None or limit >= UNLIMITED_MESSAGES:
        return False
    return count_outgoing_this_month(db, tenant.id, now) >= limit
