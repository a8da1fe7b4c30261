"""
Keyboard shortcuts for history items.

Pinned items use their pin character. The first ten visible unpinned items
get ordinals 1 to 10. Each key is offered with one modifier chord per
selection action (copy, paste, paste without formatting).
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable

COMMAND = "command"
OPTION = "option"
SHIFT = "shift"
CONTROL = "control"

# Modifiers that never change the meaning of a shortcut
IGNORED_MODIFIERS = frozenset({"capslock", "numericpad", "function"})

MAX_UNPINNED_SHORTCUTS = 10


class HistoryItemAction(Enum):
    COPY = "copy"
    PASTE = "paste"
    PASTE_WITHOUT_FORMATTING = "paste_without_formatting"
    UNKNOWN = "unknown"

    def modifiers(self, paste_by_default: bool = False) -> frozenset[str]:
        """Chord that triggers this action. paste_by_default swaps copy and paste."""
        if self is HistoryItemAction.COPY:
            return frozenset({COMMAND, OPTION}) if paste_by_default else frozenset({COMMAND})
        if self is HistoryItemAction.PASTE:
            return frozenset({COMMAND}) if paste_by_default else frozenset({COMMAND, OPTION})
        if self is HistoryItemAction.PASTE_WITHOUT_FORMATTING:
            return frozenset({COMMAND, OPTION, SHIFT})
        return frozenset()

    @classmethod
    def from_modifiers(cls, modifiers: Iterable[str], paste_by_default: bool = False) -> "HistoryItemAction":
        held = frozenset(m.lower() for m in modifiers) - IGNORED_MODIFIERS
        for action in (cls.COPY, cls.PASTE, cls.PASTE_WITHOUT_FORMATTING):
            if held == action.modifiers(paste_by_default):
                return action
        return cls.UNKNOWN


@dataclass(frozen=True)
class KeyShortcut:
    key: str
    modifiers: frozenset[str] = frozenset()

    @classmethod
    def create(cls, character: str, paste_by_default: bool = False) -> list["KeyShortcut"]:
        """One shortcut per action for ``character``."""
        return [
            cls(key=character, modifiers=action.modifiers(paste_by_default))
            for action in (
                HistoryItemAction.COPY,
                HistoryItemAction.PASTE,
                HistoryItemAction.PASTE_WITHOUT_FORMATTING,
            )
        ]

    def __str__(self) -> str:
        symbols = {COMMAND: "⌘", OPTION: "⌥", SHIFT: "⇧", CONTROL: "⌃"}
        prefix = "".join(symbols[m] for m in (CONTROL, OPTION, SHIFT, COMMAND) if m in self.modifiers)
        return f"{prefix}{self.key.upper()}"


def ordinal_key(index: int) -> str:
    """Key for the index-th (0-based) unpinned item."""
    return str(index + 1)


def assign_pinned_shortcuts(items, paste_by_default: bool = False) -> None:
    """Give every pinned decorator the shortcuts of its own pin character."""
    for item in items:
        if item.is_pinned:
            item.shortcuts = KeyShortcut.create(item.item.pin, paste_by_default)


def assign_unpinned_shortcuts(items, paste_by_default: bool = False) -> None:
    """
    Reassign ordinal shortcuts over ``items`` (in display order).

    Every unpinned decorator loses its shortcut, then the first ten visible
    ones get 1..10. Hidden items and items past the tenth get none.
    """
    unpinned = [item for item in items if item.is_unpinned]
    for item in unpinned:
        item.shortcuts = []

    visible = [item for item in unpinned if item.is_visible]
    for index, item in enumerate(visible[:MAX_UNPINNED_SHORTCUTS]):
        item.shortcuts = KeyShortcut.create(ordinal_key(index), paste_by_default)
