"""
Data types for clipboard history.
"""

import hashlib
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import unquote, urlparse


# Content types carried by a record. Payloads are raw bytes.
TEXT = "text/plain"
HTML = "text/html"
RTF = "text/rtf"
PNG = "image/png"
TIFF = "image/tiff"
FILE_URL = "text/uri-list"

# Text-like types compared with trailing-whitespace normalization
TEXT_TYPES = frozenset({TEXT, HTML, RTF})
IMAGE_TYPES = frozenset({PNG, TIFF})

# Marker types written by clipboard tools and by this application.
# They describe the copy rather than the copied data, so they never
# take part in identity comparisons.
TRANSIENT = "application/x-transient"
CONCEALED = "application/x-concealed"
AUTO_GENERATED = "application/x-autogenerated"
SOURCE_APP = "application/x-source-app"
INTERNAL_MARKER = "application/x-clipstack"
VOLATILE_TYPES = frozenset({TRANSIENT, CONCEALED, AUTO_GENERATED, SOURCE_APP, INTERNAL_MARKER})

# Longest title kept for display
MAX_TITLE_LENGTH = 1000

# Characters that may be used as pin markers. Letters bound to panel
# commands (select all, quit, paste, close, undo) are excluded.
SUPPORTED_PINS = "bcdefghijklmnoprstuxy"

# Timestamps are stored with fixed width so that they sort lexicographically
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%f"


def utc_now() -> datetime:
    """Current UTC time as a timezone-aware datetime."""
    return datetime.now(timezone.utc)


def format_timestamp(dt: datetime) -> str:
    """Format a datetime in canonical stored form (UTC, microseconds, no suffix)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(ts: str) -> datetime:
    """Parse a stored timestamp string to a timezone-aware UTC datetime.

    Accepts the canonical format as well as ISO strings carrying a 'Z' or
    '+00:00' suffix.
    """
    ts = ts.replace("Z", "+00:00")
    dt = datetime.fromisoformat(ts)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def local_date(dt: Optional[datetime]) -> str:
    """Local-timezone date string (YYYY-MM-DD) for short-form display."""
    if dt is None:
        return ""
    return dt.astimezone().strftime("%Y-%m-%d")


@dataclass(frozen=True)
class RecordContent:
    """One representation of a copied item (plain text, HTML, image, ...)."""
    type: str
    value: bytes = b""

    @classmethod
    def text(cls, value: str, type: str = TEXT) -> "RecordContent":
        return cls(type=type, value=value.encode("utf-8"))

    @property
    def is_volatile(self) -> bool:
        return self.type in VOLATILE_TYPES

    def normalized(self) -> tuple[str, bytes]:
        """Comparison key: text payloads lose trailing whitespace."""
        if self.type in TEXT_TYPES:
            return (self.type, self.value.rstrip())
        return (self.type, self.value)

    def as_text(self) -> Optional[str]:
        if self.type in TEXT_TYPES or self.type == FILE_URL:
            return self.value.decode("utf-8", errors="replace")
        return None


@dataclass(eq=False)
class Record:
    """
    A logical clipboard history entry.

    Two records are the same entry when their non-volatile contents match,
    regardless of timestamps or counters (see ``supersedes``). Object
    equality is identity so that records can live in the working set
    while being mutated.

    Attributes:
        contents: Representations of the copied data
        first_copied_at: When the content was first observed
        last_copied_at: When the content was most recently observed
        number_of_copies: How many times the content was observed
        pin: Pin marker character, None when unpinned
        modified: Change token of the copy this one modified, if known
        application: Origin application tag
        from_internal: True when the copy originated from this application
        title: Display title
        id: Store row id, None until persisted
    """
    contents: list[RecordContent] = field(default_factory=list)
    first_copied_at: datetime = field(default_factory=utc_now)
    last_copied_at: datetime = field(default_factory=utc_now)
    number_of_copies: int = 1
    pin: Optional[str] = None
    modified: Optional[int] = None
    application: Optional[str] = None
    from_internal: bool = False
    title: str = ""
    id: Optional[int] = None

    @classmethod
    def from_text(cls, text: str, **kwargs) -> "Record":
        return cls(contents=[RecordContent.text(text)], **kwargs)

    @property
    def is_pinned(self) -> bool:
        return self.pin is not None

    @property
    def is_unpinned(self) -> bool:
        return self.pin is None

    @property
    def text(self) -> Optional[str]:
        """Plain text payload, if the record carries one."""
        for content in self.contents:
            if content.type == TEXT:
                return content.as_text()
        return None

    def comparable_contents(self) -> set[tuple[str, bytes]]:
        return {c.normalized() for c in self.contents if not c.is_volatile}

    def supersedes(self, other: "Record") -> bool:
        """True when every comparable content of ``other`` is present here."""
        theirs = other.comparable_contents()
        if not theirs:
            return False
        return theirs <= self.comparable_contents()

    def text_key(self) -> Optional[str]:
        """Digest of the normalized plain text, used to narrow store lookups."""
        for content in self.contents:
            if content.type == TEXT:
                return hashlib.sha256(content.normalized()[1]).hexdigest()
        return None

    def copy(self, **changes) -> "Record":
        return replace(self, contents=list(self.contents), **changes)

    def __repr__(self) -> str:
        pin = f" pin={self.pin!r}" if self.pin else ""
        return f"Record(id={self.id}{pin} title={self.title[:40]!r})"


# ---------------------------------------------------------------------------
# Titles
# ---------------------------------------------------------------------------

def _file_paths(value: str) -> list[str]:
    paths = []
    for line in value.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        parsed = urlparse(line)
        paths.append(unquote(parsed.path) if parsed.scheme == "file" else line)
    return paths


def _show_special_symbols(title: str) -> str:
    stripped = title.lstrip(" ")
    leading = len(title) - len(stripped)
    title = "·" * leading + stripped
    stripped = title.rstrip(" ")
    trailing = len(title) - len(stripped)
    title = stripped + "·" * trailing
    return title.replace("\n", "⏎").replace("\t", "⇥")


def generate_title(contents: list[RecordContent], show_special_symbols: bool = False) -> str:
    """Derive the display title for a list of contents.

    File URLs render as their paths, text as itself (trimmed, or with
    visible whitespace symbols), images as an empty title.
    """
    by_type = {c.type: c for c in contents}

    if FILE_URL in by_type:
        return "\n".join(_file_paths(by_type[FILE_URL].as_text() or ""))[:MAX_TITLE_LENGTH]

    for type in (TEXT, HTML, RTF):
        if type not in by_type:
            continue
        title = by_type[type].as_text() or ""
        if show_special_symbols:
            title = _show_special_symbols(title)
        else:
            title = title.strip()
        return title[:MAX_TITLE_LENGTH]

    return ""
