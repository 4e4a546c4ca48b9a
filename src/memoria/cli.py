"""CLI commands for inspecting and maintaining the memory store.

Provides subcommands for listing, editing, pinning, searching and
cleaning up memories, and for changing memory settings.
"""

import argparse
import asyncio
import sys
from dataclasses import fields
from typing import Any, Callable

from .config import load_config
from .errors import MemoryNotFoundError
from .importance import current_importance, display_importance
from .manager import MemoryManager
from .models import Memory

ManagerFactory = Callable[[], MemoryManager]


def _default_factory() -> MemoryManager:
    """Create a MemoryManager with config loaded from disk."""
    return MemoryManager.from_config(load_config())


def _format_memory(memory: Memory, importance: float) -> str:
    pin = "\033[33m*\033[0m" if memory.pinned else " "
    content = memory.content
    if len(content) > 60:
        content = content[:57] + "..."
    return (
        f"{pin} {memory.id[:8]}  {memory.source.value:<6} "
        f"{display_importance(importance):>5}  {content}"
    )


def _resolve_id(manager: MemoryManager, prefix: str) -> str:
    """Expand an id prefix to a full memory id.

    Raises:
        MemoryNotFoundError: If no single memory matches.
    """
    matches = [m.id for m in manager.list() if m.id.startswith(prefix)]
    if len(matches) != 1:
        raise MemoryNotFoundError(prefix)
    return matches[0]


def cmd_list(manager: MemoryManager, args: argparse.Namespace) -> int:
    """List all memories with their current importance."""
    memories = manager.list()
    if not memories:
        print("No memories stored.")
        return 0

    rate = manager.get_settings().decay_rate
    print(f"\n  {'ID':<8}  {'Source':<6} {'Score':>5}  Content")
    print("-" * 80)
    for memory in memories:
        print(_format_memory(memory, current_importance(memory, rate)))
    print(f"\nTotal: {len(memories)} memor{'y' if len(memories) == 1 else 'ies'}")
    return 0


def cmd_add(manager: MemoryManager, args: argparse.Namespace) -> int:
    """Add a manual memory."""
    try:
        memory = manager.add(args.content)
    except ValueError as e:
        print(f"Error: {e}")
        return 1
    print(f"Added memory {memory.id[:8]}")
    return 0


def cmd_edit(manager: MemoryManager, args: argparse.Namespace) -> int:
    """Change a memory's content."""
    memory_id = _resolve_id(manager, args.id)
    try:
        manager.update(memory_id, args.content)
    except ValueError as e:
        print(f"Error: {e}")
        return 1
    print(f"Updated memory {memory_id[:8]}")
    return 0


def cmd_delete(manager: MemoryManager, args: argparse.Namespace) -> int:
    """Delete a memory."""
    memory_id = _resolve_id(manager, args.id)
    manager.delete(memory_id)
    print(f"Deleted memory {memory_id[:8]}")
    return 0


def cmd_pin(manager: MemoryManager, args: argparse.Namespace) -> int:
    """Toggle a memory's pinned flag."""
    memory_id = _resolve_id(manager, args.id)
    pinned = manager.toggle_pinned(memory_id)
    print(f"{'Pinned' if pinned else 'Unpinned'} memory {memory_id[:8]}")
    return 0


async def cmd_search(manager: MemoryManager, args: argparse.Namespace) -> int:
    """Run retrieval for a query, as a conversation turn would."""
    results = await manager.retrieve(args.query)
    if not results:
        print("No memories retrieved.")
        return 0
    for result in results:
        print(f"{result.similarity:.3f}  {result.id[:8]}  {result.content}")
    return 0


def cmd_preview(manager: MemoryManager, args: argparse.Namespace) -> int:
    """Show what a cleanup would delete."""
    preview = manager.preview_cleanup()
    if not preview.to_delete:
        print("Nothing to clean up.")
        return 0
    print(f"Would delete {len(preview.to_delete)} memories ({preview.reason.value}):")
    for item in preview.to_delete:
        print(_format_memory(item.memory, item.current_importance))
    print(f"Would keep {len(preview.will_keep)} memories.")
    return 0


def cmd_cleanup(manager: MemoryManager, args: argparse.Namespace) -> int:
    """Delete low-importance memories now."""
    result = manager.perform_cleanup()
    print(result.reason or f"Deleted {result.deleted_count} memories")
    return 0


async def cmd_backfill(manager: MemoryManager, args: argparse.Namespace) -> int:
    """Generate embeddings for memories that lack one."""
    report = await manager.backfill_embeddings()
    print(f"Embedded {report.updated} of {report.total} memories ({report.failed} failed)")
    return 0 if report.failed == 0 else 1


def cmd_stats(manager: MemoryManager, args: argparse.Namespace) -> int:
    """Show memory statistics."""
    stats = manager.stats()
    print(f"Total:           {stats.total} ({stats.manual} manual, {stats.auto} auto)")
    print(f"Pinned:          {stats.pinned}")
    print(f"Avg importance:  {stats.avg_importance}")
    print(f"Below threshold: {stats.below_threshold} (threshold {stats.threshold:g})")
    return 0


def _parse_value(raw: str, current: Any) -> Any:
    if isinstance(current, bool):
        lowered = raw.lower()
        if lowered not in ("true", "false", "1", "0", "yes", "no", "on", "off"):
            raise ValueError(f"Expected a boolean, got '{raw}'")
        return lowered in ("true", "1", "yes", "on")
    if isinstance(current, (int, float)):
        number = float(raw)
        return int(number) if number.is_integer() else number
    return raw


def cmd_settings(manager: MemoryManager, args: argparse.Namespace) -> int:
    """Show settings, or change them with key=value pairs."""
    settings = manager.get_settings()
    if args.assignments:
        known = {f.name for f in fields(settings)}
        changes: dict[str, Any] = {}
        for assignment in args.assignments:
            key, sep, raw = assignment.partition("=")
            if not sep or key not in known:
                print(f"Error: invalid setting '{assignment}'")
                return 1
            try:
                changes[key] = _parse_value(raw, getattr(settings, key))
            except ValueError as e:
                print(f"Error: {e}")
                return 1
        settings = manager.update_settings(**changes)

    for key, value in settings.to_dict().items():
        print(f"{key:<22} {value}")
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the memory CLI."""
    parser = argparse.ArgumentParser(
        prog="memoria",
        description="Manage assistant memories",
    )

    subparsers = parser.add_subparsers(dest="command", help="Sub-command help")

    subparsers.add_parser("list", help="List memories")

    add_parser = subparsers.add_parser("add", help="Add a manual memory")
    add_parser.add_argument("content", help="The fact to remember")

    edit_parser = subparsers.add_parser("edit", help="Edit a memory")
    edit_parser.add_argument("id", help="Memory id (or unique prefix)")
    edit_parser.add_argument("content", help="New content")

    delete_parser = subparsers.add_parser("delete", help="Delete a memory")
    delete_parser.add_argument("id", help="Memory id (or unique prefix)")

    pin_parser = subparsers.add_parser("pin", help="Toggle a memory's pin")
    pin_parser.add_argument("id", help="Memory id (or unique prefix)")

    search_parser = subparsers.add_parser("search", help="Retrieve memories for a query")
    search_parser.add_argument("query", help="Search text")

    subparsers.add_parser("preview", help="Preview a cleanup")
    subparsers.add_parser("cleanup", help="Delete low-importance memories")
    subparsers.add_parser("backfill", help="Embed memories lacking a vector")
    subparsers.add_parser("stats", help="Show statistics")

    settings_parser = subparsers.add_parser("settings", help="Show or change settings")
    settings_parser.add_argument(
        "assignments",
        nargs="*",
        help="key=value pairs, e.g. enabled=true decay_rate=slow",
    )

    return parser


COMMANDS = {
    "list": cmd_list,
    "add": cmd_add,
    "edit": cmd_edit,
    "delete": cmd_delete,
    "pin": cmd_pin,
    "search": cmd_search,
    "preview": cmd_preview,
    "cleanup": cmd_cleanup,
    "backfill": cmd_backfill,
    "stats": cmd_stats,
    "settings": cmd_settings,
}


def run_cli(
    argv: list[str] | None = None,
    manager_factory: ManagerFactory | None = None,
) -> int:
    """Run the memory CLI with given arguments.

    Args:
        argv: Command-line arguments. Uses sys.argv[1:] if None.
        manager_factory: Builds the MemoryManager; loads config if None.

    Returns:
        Exit code (0 for success, non-zero for error).
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    handler = COMMANDS.get(args.command)
    if handler is None:
        parser.print_help()
        return 1

    manager = (manager_factory or _default_factory)()
    return asyncio.run(_dispatch(handler, manager, args))


async def _dispatch(handler, manager: MemoryManager, args: argparse.Namespace) -> int:
    """Run one command and close the manager on the same event loop."""
    try:
        result = handler(manager, args)
        if asyncio.iscoroutine(result):
            result = await result
        return result
    except MemoryNotFoundError as e:
        print(f"Error: {e}")
        return 1
    finally:
        await manager.aclose()


if __name__ == "__main__":
    sys.exit(run_cli())
