"""Numbered-menu disambiguation shared by channel and dataset selection.

The menu is a pure decision function: it never touches the database or the
channel. Callers persist or clear the selection according to the outcome.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Generic, Hashable, Iterable, Optional, Sequence, TypeVar

T = TypeVar("T")

NUMBER_EMOJIS = ["1️⃣", "2️⃣", "3️⃣", "4️⃣", "5️⃣", "6️⃣", "7️⃣", "8️⃣", "9️⃣", "🔟"]

_BARE_NUMBER = re.compile(r"[0-9]+")


class MenuAction(str, Enum):
    PROCEED = "proceed"
    SELECTED = "selected"
    PROMPT = "prompt"
    EMPTY = "empty"


@dataclass
class MenuOutcome(Generic[T]):
    action: MenuAction
    choice: Optional[T] = None
    reply: Optional[str] = None
    persist: bool = False
    reset: bool = False

    @property
    def ends_turn(self) -> bool:
        return self.action != MenuAction.PROCEED


def normalize_command(text: Optional[str]) -> str:
    return (text or "").strip().lower()


def parse_menu_index(text: Optional[str], size: int) -> Optional[int]:
    """Return the 1-based index for a bare number within [1, size], else None."""
    normalized = (text or "").strip()
    if not _BARE_NUMBER.fullmatch(normalized):
        return None
    index = int(normalized)
    if 1 <= index <= size:
        return index
    return None


def option_marker(index: int) -> str:
    if 1 <= index <= len(NUMBER_EMOJIS):
        return NUMBER_EMOJIS[index - 1]
    return f"{index}."


class SelectionMenu(Generic[T]):
    def __init__(
        self,
        *,
        name: str,
        label: Callable[[T], str],
        key: Callable[[T], Hashable],
        reset_keywords: Iterable[str],
        header: str,
        confirmation: str,
        empty_message: Optional[str] = None,
        single_notice: Optional[str] = None,
    ):
        self.name = name
        self.label = label
        self.key = key
        self.reset_keywords = frozenset(normalize_command(k) for k in reset_keywords)
        self.header = header
        self.confirmation = confirmation
        self.empty_message = empty_message
        self.single_notice = single_notice

    def is_reset_keyword(self, text: Optional[str]) -> bool:
        return normalize_command(text) in self.reset_keywords

    def render(self, candidates: Sequence[T], user_name: Optional[str] = None) -> str:
        greeting = f"Olá, *{user_name}*! " if user_name else "Olá! "
        options = "\n".join(
            f"{option_marker(idx)} *{self.label(candidate)}*" for idx, candidate in enumerate(candidates, start=1)
        )
        return (
            f"{greeting}{self.header}\n\n"
            f"Qual deseja usar agora?\n\n"
            f"{options}\n\n"
            f"💡 *Responda com o número da opção.*\n"
            f"🔄 Digite *trocar* a qualquer momento para mudar."
        )

    def resolve(
        self,
        candidates: Sequence[T],
        current_key: Optional[Hashable],
        text: Optional[str],
        *,
        user_name: Optional[str] = None,
    ) -> MenuOutcome[T]:
        if not candidates:
            return MenuOutcome(action=MenuAction.EMPTY, reply=self.empty_message)

        wants_reset = self.is_reset_keyword(text)

        if len(candidates) == 1:
            only = candidates[0]
            if wants_reset and self.single_notice:
                return MenuOutcome(
                    action=MenuAction.SELECTED,
                    choice=only,
                    reply=self.single_notice.format(label=self.label(only)),
                    persist=True,
                )
            return MenuOutcome(action=MenuAction.PROCEED, choice=only, persist=current_key != self.key(only))

        if wants_reset:
            return MenuOutcome(
                action=MenuAction.PROMPT,
                reply=self.render(candidates, user_name),
                reset=True,
            )

        if current_key is not None:
            for candidate in candidates:
                if self.key(candidate) == current_key:
                    return MenuOutcome(action=MenuAction.PROCEED, choice=candidate)

        index = parse_menu_index(text, len(candidates))
        if index is not None:
            chosen = candidates[index - 1]
            return MenuOutcome(
                action=MenuAction.SELECTED,
                choice=chosen,
                reply=self.confirmation.format(label=self.label(chosen)),
                persist=True,
            )

        return MenuOutcome(action=MenuAction.PROMPT, reply=self.render(candidates, user_name))
