"""Dataset selection nested under a resolved contact."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from insightbot.logging_config import get_logger
from insightbot.models import AuthorizedContact, ConversationContext, DatasetBinding
from insightbot.services.context_service import clear_dataset_selection, save_dataset_selection
from insightbot.services.selection_menu import MenuOutcome, SelectionMenu

logger = get_logger("dataset_service")

DATASET_RESET_KEYWORDS = ("0", "menu", "/menu", "trocar", "mudar", "/trocar")

NO_DATASET_MESSAGE = (
    "Olá! 👋\n\n"
    "Sou o assistente IA da sua empresa, mas ainda não tenho acesso aos seus dados configurado.\n\n"
    "📞 *Entre em contato com o suporte* para liberar as consultas via WhatsApp.\n\n"
    "Assim que estiver configurado, poderei te ajudar com análises em tempo real! 🚀"
)


def _dataset_label(binding: DatasetBinding) -> str:
    return binding.dataset_name or "Dataset"


def _dataset_key(binding: DatasetBinding) -> tuple[str, str]:
    return str(binding.connection_id), str(binding.dataset_id)


DATASET_MENU: SelectionMenu[DatasetBinding] = SelectionMenu(
    name="dataset",
    label=_dataset_label,
    key=_dataset_key,
    reset_keywords=DATASET_RESET_KEYWORDS,
    header="📊 Você tem acesso a múltiplos sistemas.",
    confirmation="✅ *{label}* selecionado!\n\nAgora pode fazer suas perguntas.\n\n💡 Digite *trocar* para mudar de sistema.",
    empty_message=NO_DATASET_MESSAGE,
    single_notice="🔄 Você só tem acesso a *{label}*. Pode fazer sua pergunta!",
)


@dataclass
class DatasetResolution:
    outcome: MenuOutcome[DatasetBinding]
    binding: Optional[DatasetBinding]
    available: int

    @property
    def has_alternatives(self) -> bool:
        return self.available > 1


def get_dataset_bindings(db: Session, contact_id) -> list[DatasetBinding]:
    return (
        db.query(DatasetBinding)
        .filter(DatasetBinding.contact_id == contact_id)
        .order_by(DatasetBinding.position.asc())
        .all()
    )


def select_dataset(
    db: Session,
    phone: str,
    contact: AuthorizedContact,
    context: Optional[ConversationContext],
    message_text: Optional[str],
    *,
    now: Optional[datetime] = None,
) -> DatasetResolution:
    bindings = get_dataset_bindings(db, contact.id)

    current_key = None
    if context is not None and context.has_dataset and context.selected_contact_id == contact.id:
        current_key = (str(context.connection_id), str(context.dataset_id))

    outcome = DATASET_MENU.resolve(bindings, current_key, message_text, user_name=contact.name)

    if outcome.reset:
        clear_dataset_selection(db, phone)
    if outcome.persist and outcome.choice is not None:
        save_dataset_selection(db, phone, contact, outcome.choice, now=now)

    logger.info(
        "Dataset resolution",
        extra={
            "context": {
                "phone": phone,
                "bindings": len(bindings),
                "action": outcome.action.value,
                "persisted": outcome.persist,
            }
        },
    )
    return DatasetResolution(outcome=outcome, binding=outcome.choice, available=len(bindings))


def dataset_footer(dataset_name: str) -> str:
    return f"\n\n─────────────\n📊 *{dataset_name}* | _trocar_"
