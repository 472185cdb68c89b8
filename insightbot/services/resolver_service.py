"""Resolve which tenant and channel instance a sender is talking to."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from insightbot.logging_config import get_logger
from insightbot.models import AuthorizedContact, ChannelInstance, ConversationContext, Tenant
from insightbot.services.context_service import clear_context, save_channel_selection
from insightbot.services.errors import UnauthorizedSender
from insightbot.services.selection_menu import MenuOutcome, SelectionMenu

logger = get_logger("resolver_service")

CHANNEL_RESET_KEYWORDS = ("trocar", "mudar", "menu", "sair", "voltar", "/trocar", "/mudar", "/sair")


def _channel_label(contact: AuthorizedContact) -> str:
    tenant = contact.tenant
    if tenant is not None and tenant.name:
        return tenant.name
    instance = contact.channel_instance
    return instance.name if instance is not None and instance.name else "Empresa"


CHANNEL_MENU: SelectionMenu[AuthorizedContact] = SelectionMenu(
    name="channel",
    label=_channel_label,
    key=lambda contact: contact.id,
    reset_keywords=CHANNEL_RESET_KEYWORDS,
    header="🏢 Você tem acesso a mais de uma empresa.",
    confirmation="✅ *{label}* selecionada!\n\nAgora pode fazer suas perguntas.\n\n💡 Digite *trocar* para mudar de empresa.",
)


@dataclass
class ChannelResolution:
    outcome: MenuOutcome[AuthorizedContact]
    contact: Optional[AuthorizedContact]
    reply_instance: Optional[ChannelInstance]
    candidates: list[AuthorizedContact]


def get_active_contacts(db: Session, phone: str) -> list[AuthorizedContact]:
    return (
        db.query(AuthorizedContact)
        .join(Tenant, AuthorizedContact.tenant_id == Tenant.id)
        .filter(AuthorizedContact.phone == phone, AuthorizedContact.is_active == True, Tenant.is_active == True)  # noqa: E712
        .order_by(AuthorizedContact.created_at.asc())
        .all()
    )


def pick_reply_instance(contacts: list[AuthorizedContact], instance_name: Optional[str]) -> Optional[ChannelInstance]:
    """Prefer the instance that delivered the webhook, else the first candidate's."""
    instances = [contact.channel_instance for contact in contacts if contact.channel_instance is not None]
    if instance_name:
        for instance in instances:
            if instance.name == instance_name:
                return instance
    return instances[0] if instances else None


def resolve_channel(
    db: Session,
    phone: str,
    message_text: Optional[str],
    context: Optional[ConversationContext],
    *,
    instance_name: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ChannelResolution:
    contacts = get_active_contacts(db, phone)
    if not contacts:
        raise UnauthorizedSender(phone)

    current_key = context.selected_contact_id if context is not None else None
    outcome = CHANNEL_MENU.resolve(contacts, current_key, message_text, user_name=contacts[0].name)

    if outcome.reset:
        clear_context(db, phone)
    if outcome.persist and outcome.choice is not None:
        save_channel_selection(db, phone, outcome.choice, now=now)

    contact = outcome.choice
    reply_instance = contact.channel_instance if contact is not None else pick_reply_instance(contacts, instance_name)

    logger.info(
        "Channel resolution",
        extra={
            "context": {
                "phone": phone,
                "candidates": len(contacts),
                "action": outcome.action.value,
                "persisted": outcome.persist,
                "reset": outcome.reset,
            }
        },
    )
    return ChannelResolution(outcome=outcome, contact=contact, reply_instance=reply_instance, candidates=contacts)
