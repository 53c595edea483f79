"""
Menu Builder — numbered option lists whose meaning depends on the data.

The options offered after a lookup depend on which kinds of cases the client
has, so "1" can mean "active processes" for one user and "finalized
processes" for another. `build` and `resolve` always derive the index →
meaning mapping from the same counts; no caller hard-codes option numbers.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

from models.schemas import MenuCounts

# WhatsApp renders "1️⃣" as a keycap emoji
_KEYCAP = "️⃣"


class OptionKey(str, Enum):
    # data-dependent
    VIEW_ACTIVE = "view_active"
    VIEW_FINALIZED = "view_finalized"
    REPORT = "report"
    # navigation
    OTHER_DOCUMENT = "other_document"
    OTHER_PROCESS_TYPE = "other_process_type"
    FINISH = "finish"
    RETRY = "retry"
    NEW_PROCESS = "new_process"
    EXISTING_PROCESS = "existing_process"
    TALK_TO_LAWYER = "talk_to_lawyer"
    # new-process profiles
    RAPPITENDERO = "rappitendero"
    COMPANY = "company"
    OTHER_PROFILE = "other_profile"


@dataclass(frozen=True)
class Option:
    key: str
    label: str


@dataclass(frozen=True)
class Menu:
    prompt: str
    options: tuple[Option, ...] = field(default_factory=tuple)

    def __len__(self):
        return len(self.options)

    @property
    def keys(self) -> list[str]:
        return [o.key for o in self.options]

    @classmethod
    def static(cls, header: str, options: Iterable[Option]) -> "Menu":
        options = tuple(options)
        return cls(prompt=format_options(header, [o.label for o in options]), options=options)


def format_options(header: str, labels: list[str]) -> str:
    lines = [f"{i}{_KEYCAP} {label}" for i, label in enumerate(labels, start=1)]
    if header:
        return "\n".join([header, *lines])
    return "\n".join(lines)


# ──────────────────────────────────────────────────────────────
#  Data-dependent menu
# ──────────────────────────────────────────────────────────────

LABELS: dict[str, str] = {
    OptionKey.VIEW_ACTIVE: "Ver procesos activos",
    OptionKey.VIEW_FINALIZED: "Ver procesos finalizados",
    OptionKey.REPORT: "Recibir un resumen en PDF",
    OptionKey.OTHER_DOCUMENT: "Consultar otro documento",
    OptionKey.FINISH: "Finalizar conversación",
}


class MenuBuilder:
    """Builds the case-selection menu from active/finalized counts."""

    def __init__(self, labels: Optional[dict[str, str]] = None):
        self.labels = {**LABELS, **(labels or {})}

    def option_keys(self, counts: MenuCounts, trailing: Iterable[str] = ()) -> list[str]:
        keys: list[str] = []
        if counts.active > 0:
            keys.append(OptionKey.VIEW_ACTIVE)
        if counts.finalized > 0:
            keys.append(OptionKey.VIEW_FINALIZED)
        if counts.active + counts.finalized > 0:
            keys.append(OptionKey.REPORT)
        keys.extend(trailing)
        return keys

    def build(
        self,
        counts: MenuCounts,
        header: Optional[str] = None,
        trailing: Iterable[str] = (),
    ) -> Menu:
        options = tuple(
            Option(key=k, label=self.labels.get(k, str(k)))
            for k in self.option_keys(counts, trailing)
        )
        return Menu(
            prompt=format_options(header if header is not None else "Elige una opción:",
                                  [o.label for o in options]),
            options=options,
        )

    @staticmethod
    def resolve(options: Iterable[Option], selected_index: int) -> str:
        """Map a 1-based reply to the option key it stands for."""
        options = tuple(options)
        if selected_index < 1 or selected_index > len(options):
            raise ValueError(
                f"Option {selected_index} outside 1..{len(options)}"
            )
        return options[selected_index - 1].key
