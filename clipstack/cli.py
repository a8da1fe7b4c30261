"""
CLI interface for clipboard history.

Usage:
    clipstack add "some copied text"
    clipstack list --more 1
    clipstack search "query"
    clipstack pin 3
"""

import json
import os
import select
import sys
from pathlib import Path
from typing import Optional

import typer
from typing_extensions import Annotated

from .backend import HistoryContext, create_context
from .config import HISTORY_KEYS, HistoryConfig, load_or_create_config, save_config
from .decorator import HistoryItemDecorator
from .history import History
from .logging_config import configure_quiet_mode, enable_debug_mode
from .scheduler import ManualScheduler
from .types import Record, local_date, utc_now


def _has_stdin_data() -> bool:
    """Check if stdin is a pipe with data ready, without blocking."""
    if sys.stdin.isatty():
        return False
    try:
        ready, _, _ = select.select([sys.stdin], [], [], 0)
        return bool(ready)
    except (ValueError, OSError):
        return False


# Quiet by default; CLIPSTACK_VERBOSE=1 turns on debug output
if os.environ.get("CLIPSTACK_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


# Global state for CLI options
_json_output = False
_store_override: Optional[Path] = None


def _json_callback(value: bool):
    global _json_output
    _json_output = value


def _get_json_output() -> bool:
    return _json_output


def _store_callback(value: Optional[Path]):
    global _store_override
    _store_override = value


app = typer.Typer(
    name="clipstack",
    help="Clipboard history with deduplication and pins.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    output_json: Annotated[bool, typer.Option(
        "--json", "-j",
        help="Output as JSON",
        callback=_json_callback,
        is_eager=True,
    )] = False,
    store: Annotated[Optional[Path], typer.Option(
        "--store", "-s",
        envvar="CLIPSTACK_STORE_PATH",
        help="Path to the store directory",
        callback=_store_callback,
        is_eager=True,
    )] = None,
):
    """Clipboard history with deduplication and pins."""


# -----------------------------------------------------------------------------
# Output Formatting
# -----------------------------------------------------------------------------

def _item_dict(index: int, item: HistoryItemDecorator) -> dict:
    record = item.item
    return {
        "index": index,
        "id": record.id,
        "title": item.title,
        "pin": record.pin,
        "copies": record.number_of_copies,
        "first_copied_at": record.first_copied_at.isoformat(),
        "last_copied_at": record.last_copied_at.isoformat(),
        "application": record.application,
        "shortcut": str(item.shortcuts[0]) if item.shortcuts else None,
    }


def _format_line(index: int, item: HistoryItemDecorator) -> str:
    record = item.item
    marker = record.pin if record.pin else " "
    shortcut = item.shortcuts[0].key if item.shortcuts else ""
    title = item.title.replace("\n", " ")
    if len(title) > 60:
        title = title[:57] + "..."
    return f"{index:>3} {marker} {shortcut:>2}  {local_date(record.last_copied_at)}  {title}"


def _format_items(items: list[HistoryItemDecorator], as_json: bool = False) -> str:
    if as_json:
        return json.dumps([_item_dict(i, item) for i, item in enumerate(items, 1)], indent=2)
    if not items:
        return "No history."
    return "\n".join(_format_line(i, item) for i, item in enumerate(items, 1))


# -----------------------------------------------------------------------------
# Setup
# -----------------------------------------------------------------------------

def _get_history() -> tuple[HistoryContext, History]:
    """Open the store and load the first page, exiting cleanly on failure.

    The CLI is single-shot, so timers run on a manual clock that commands
    advance explicitly.
    """
    import atexit

    try:
        config = load_or_create_config(_store_override)
        context = create_context(config, scheduler=ManualScheduler())
        atexit.register(context.close)
        history = History(context)
        history.load()
        return context, history
    except Exception as e:
        from .errors import log_exception
        log_path = log_exception(e, context="clipstack open")
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise typer.Exit(1)


def _item_at(history: History, index: int) -> HistoryItemDecorator:
    """1-based index into the displayed list, loading pages as needed."""
    if index < 1:
        typer.echo("Error: index must be 1 or greater", err=True)
        raise typer.Exit(1)
    while index > len(history.items) and history.load_more():
        pass
    if index > len(history.items):
        typer.echo(f"Error: no history item at index {index}", err=True)
        raise typer.Exit(1)
    return history.items[index - 1]


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------

@app.command()
def add(
    text: Annotated[Optional[str], typer.Argument(
        help="Text to add ('-' or omitted reads stdin)"
    )] = None,
    application: Annotated[Optional[str], typer.Option(
        "--app", "-a",
        help="Origin application tag"
    )] = None,
):
    """
    Add text to history, merging it with an earlier copy if present.

    \b
    Examples:
        clipstack add "hello"
        echo hello | clipstack add
    """
    if text is None or text == "-":
        if text is None and not _has_stdin_data():
            typer.echo("Error: no text given", err=True)
            raise typer.Exit(1)
        # One trailing newline comes from echo, not from the copied text
        text = sys.stdin.read().removesuffix("\n")
    if not text.strip():
        typer.echo("Error: text is empty", err=True)
        raise typer.Exit(1)

    _, history = _get_history()
    now = utc_now()
    record = Record.from_text(text, first_copied_at=now, last_copied_at=now, application=application)
    item = history.add(record)

    if _get_json_output():
        typer.echo(json.dumps(_item_dict(history.items.index(item) + 1, item), indent=2))
    else:
        copies = item.item.number_of_copies
        suffix = f" (copied {copies} times)" if copies > 1 else ""
        typer.echo(f"Added: {item.title[:60]}{suffix}")


@app.command("list")
def list_items(
    more: Annotated[int, typer.Option(
        "--more", "-m",
        help="Additional pages to load after the first"
    )] = 0,
):
    """
    List history: pinned items plus the newest page.

    \b
    Examples:
        clipstack list
        clipstack list --more 2
    """
    _, history = _get_history()
    for _ in range(more):
        if not history.has_more_items:
            break
        history.load_more()
    typer.echo(_format_items(history.items, as_json=_get_json_output()))
    if history.has_more_items and not _get_json_output():
        typer.echo("(more available: --more)", err=True)


@app.command()
def search(
    query: Annotated[str, typer.Argument(help="Search query")],
    mode: Annotated[Optional[str], typer.Option(
        "--mode",
        help="exact, fuzzy, regexp or mixed (default from config)"
    )] = None,
    pages: Annotated[int, typer.Option(
        "--pages", "-p",
        help="Extra pages to load before searching"
    )] = 0,
):
    """
    Search loaded history.

    \b
    Examples:
        clipstack search "invoice"
        clipstack search --mode fuzzy "invocie"
    """
    context, history = _get_history()
    for _ in range(pages):
        if not history.load_more():
            break
    if mode is not None:
        try:
            history.apply_config(history.config.with_changes(search_mode=mode))
        except ValueError as e:
            typer.echo(f"Error: {e}", err=True)
            raise typer.Exit(1)

    history.search_query = query
    # Let the debounced pass run
    context.scheduler.advance(history.config.search_debounce)
    typer.echo(_format_items(history.items, as_json=_get_json_output()))


@app.command()
def pin(
    index: Annotated[int, typer.Argument(help="Item index as shown by 'list'")],
):
    """Pin an item, or unpin it if already pinned."""
    _, history = _get_history()
    item = _item_at(history, index)
    try:
        history.toggle_pin(item)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    state = f"Pinned as '{item.item.pin}'" if item.is_pinned else "Unpinned"
    typer.echo(f"{state}: {item.title[:60]}")


@app.command()
def delete(
    index: Annotated[int, typer.Argument(help="Item index as shown by 'list'")],
):
    """Delete one item from history."""
    _, history = _get_history()
    item = _item_at(history, index)
    history.delete(item)
    typer.echo(f"Deleted: {item.title[:60]}")


@app.command()
def clear(
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Don't ask for confirmation")] = False,
):
    """Delete all unpinned items. Pinned items are kept."""
    if not yes:
        typer.confirm("Delete all unpinned history?", abort=True)
    _, history = _get_history()
    history.clear()
    typer.echo("Cleared unpinned history.")


@app.command("clear-all")
def clear_all(
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Don't ask for confirmation")] = False,
):
    """Delete all items, including pinned ones."""
    if not yes:
        typer.confirm("Delete ALL history, including pinned items?", abort=True)
    _, history = _get_history()
    history.clear_all()
    typer.echo("Cleared all history.")


@app.command()
def config(
    key: Annotated[Optional[str], typer.Argument(help="Setting to show or change")] = None,
    value: Annotated[Optional[str], typer.Argument(help="New value")] = None,
):
    """
    Show configuration, or change one setting.

    \b
    Examples:
        clipstack config
        clipstack config page_size
        clipstack config pin_to bottom
    """
    cfg = load_or_create_config(_store_override)

    if key is None:
        data = {"path": str(cfg.path), "file": str(cfg.config_path)}
        data.update({k: getattr(cfg, k) for k in HISTORY_KEYS})
        if _get_json_output():
            typer.echo(json.dumps(data, indent=2))
        else:
            for k, v in data.items():
                typer.echo(f"{k}: {v}")
        return

    if key not in HISTORY_KEYS:
        typer.echo(f"Error: unknown setting '{key}'", err=True)
        raise typer.Exit(1)

    if value is None:
        current = getattr(cfg, key)
        typer.echo(json.dumps({key: current}) if _get_json_output() else str(current))
        return

    try:
        updated = cfg.with_changes(**{key: _coerce(cfg, key, value)})
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    save_config(updated)
    typer.echo(f"{key} = {getattr(updated, key)}")


def _coerce(cfg: HistoryConfig, key: str, value: str):
    """Convert a command-line string to the type of the current setting."""
    current = getattr(cfg, key)
    if isinstance(current, bool):
        lowered = value.lower()
        if lowered in ("1", "true", "yes", "on"):
            return True
        if lowered in ("0", "false", "no", "off"):
            return False
        raise ValueError(f"{key} must be true or false (got {value!r})")
    if isinstance(current, int):
        try:
            return int(value)
        except ValueError:
            raise ValueError(f"{key} must be an integer (got {value!r})")
    if isinstance(current, float):
        try:
            return float(value)
        except ValueError:
            raise ValueError(f"{key} must be a number (got {value!r})")
    return value


def main():
    try:
        app()
    except SystemExit:
        raise  # Let typer handle exit codes
    except KeyboardInterrupt:
        raise SystemExit(130)
    except Exception as e:
        # Log full traceback to file, show clean message to user
        from .errors import log_exception
        log_path = log_exception(e, context="clipstack CLI")
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
