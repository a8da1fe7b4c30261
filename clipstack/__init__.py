"""
clipstack - incremental, deduplicating clipboard history.

Quick start:
    from clipstack import History, Record, create_context

    with create_context() as context:
        history = History(context)
        history.load()
        history.add(Record.from_text("hello"))
"""

from .backend import HistoryContext, create_context
from .config import HistoryConfig, load_or_create_config
from .errors import StoreUnavailable
from .history import History, HistoryState
from .types import Record, RecordContent
from .view import HistoryView

__version__ = "0.1.0"
__all__ = [
    "History",
    "HistoryConfig",
    "HistoryContext",
    "HistoryState",
    "HistoryView",
    "Record",
    "RecordContent",
    "StoreUnavailable",
    "create_context",
    "load_or_create_config",
]
