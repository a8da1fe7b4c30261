"""
Identity resolution for newly captured records.

A captured record is either new content, a repeat of something already in
the store (equal, or superseded by a richer stored copy), or a known
in-session modification of an earlier copy. Repeats and modifications are
merged into one row so that history holds each logical entry once.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .protocol import RecordStoreProtocol
from .record_store import Supersedes
from .session_log import SessionLog
from .types import Record, generate_title

logger = logging.getLogger(__name__)


class DecisionKind(Enum):
    NEW = "new"
    MERGE = "merge"


@dataclass(frozen=True)
class Decision:
    """Outcome of resolve(): new content, or merge into ``existing``."""
    kind: DecisionKind
    existing: Optional[Record] = None
    modification: bool = False

    @classmethod
    def new(cls) -> "Decision":
        return cls(DecisionKind.NEW)

    @classmethod
    def merge_with(cls, existing: Record, modification: bool = False) -> "Decision":
        return cls(DecisionKind.MERGE, existing, modification)

    @property
    def is_new(self) -> bool:
        return self.kind is DecisionKind.NEW


class IdentityResolver:
    """Decides how an incoming record relates to stored history and merges it."""

    def __init__(self, store: RecordStoreProtocol, session_log: SessionLog):
        self._store = store
        self._session_log = session_log

    def modification_of(self, incoming: Record) -> Optional[Record]:
        """The in-session record ``incoming`` modified, if it is logged."""
        if incoming.modified is None or incoming.modified not in self._session_log:
            return None
        return self._session_log.get(incoming.modified)

    def resolve(self, incoming: Record) -> Decision:
        """
        Classify ``incoming`` against the store and the session log.

        Stored duplicates win over the session log. When several stored
        records match, the most recently copied one that is not
        ``incoming`` itself is the target.

        Raises:
            StoreUnavailable: If the duplicate lookup fails
        """
        candidates = self._store.fetch(Supersedes(incoming))
        others = [c for c in candidates if incoming.id is None or c.id != incoming.id]
        if others:
            existing = others[0]
            logger.debug(
                "Record %s duplicates %s (%d candidates)",
                incoming.id, existing.id, len(candidates),
            )
            modified = self.modification_of(incoming)
            is_modification = modified is not None and modified.id == existing.id
            return Decision.merge_with(existing, modification=is_modification)

        modified = self.modification_of(incoming)
        if modified is not None:
            logger.debug("Record %s modifies session record %s", incoming.id, modified.id)
            return Decision.merge_with(modified, modification=True)

        return Decision.new()

    def merge(self, incoming: Record, existing: Record, modification: bool = False) -> Record:
        """
        Fold ``existing`` into ``incoming`` and return it.

        ``incoming`` keeps its own contents when it modifies ``existing``.
        Otherwise its contents stand unless the existing copy strictly
        supersedes them, in which case the richer stored payload is kept.
        Creation time, pin and title come from ``existing``; counters add up.
        """
        if not modification and existing.supersedes(incoming) and not incoming.supersedes(existing):
            incoming.contents = list(existing.contents)

        incoming.first_copied_at = min(incoming.first_copied_at, existing.first_copied_at)
        incoming.last_copied_at = max(incoming.last_copied_at, existing.last_copied_at)
        incoming.number_of_copies += existing.number_of_copies
        incoming.pin = existing.pin
        incoming.title = existing.title or incoming.title or generate_title(incoming.contents)

        # Origin reported by another application is the more reliable one
        if incoming.from_internal or incoming.application is None:
            incoming.application = existing.application

        return incoming

    def absorb(self, incoming: Record, existing: Record, modification: bool = False) -> Record:
        """
        Merge and persist: delete the ``existing`` row, write the merged one.

        Raises:
            StoreUnavailable: If the store write fails
        """
        merged = self.merge(incoming, existing, modification=modification)
        if existing.id is not None and existing.id != merged.id:
            self._store.delete(existing)
        self._store.update(merged)
        self._session_log.replace(existing, merged)
        logger.debug(
            "Merged record %s into %s (copies=%d)",
            existing.id, merged.id, merged.number_of_copies,
        )
        return merged
