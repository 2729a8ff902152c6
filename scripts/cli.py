"""Single entry point for the KAT maintenance commands.

Usage::

    python -m scripts <command> [args]
    python -m scripts --list

Every module in the ``scripts`` package that defines ``main(argv)`` is a
command; ``sync_agent`` becomes ``sync-agent``.
"""

from __future__ import annotations

import argparse
import importlib
import pkgutil
from collections.abc import Callable
from pathlib import Path

EXCLUDED = {"cli", "__init__", "__main__"}


def _discover_commands() -> dict[str, str]:
    """Return mapping of command names to module paths."""
    package_dir = Path(__file__).resolve().parent
    commands: dict[str, str] = {}
    for mod in pkgutil.iter_modules([str(package_dir)]):
        if mod.ispkg or mod.name in EXCLUDED:
            continue
        commands[mod.name.replace("_", "-")] = f"scripts.{mod.name}"
    return commands


def _load_entrypoint(module_name: str) -> Callable[[list[str] | None], int | None]:
    module = importlib.import_module(module_name)
    entrypoint = getattr(module, "main", None)
    if not callable(entrypoint):
        raise SystemExit(f"{module_name} has no main() entrypoint")
    return entrypoint


def main(argv: list[str] | None = None) -> int:
    commands = _discover_commands()
    parser = argparse.ArgumentParser(description="KAT mobile maintenance commands")
    parser.add_argument("--list", action="store_true", help="List available commands and exit")
    parser.add_argument("command", nargs="?", choices=sorted(commands))
    parser.add_argument("args", nargs=argparse.REMAINDER)
    ns = parser.parse_args(argv)

    if ns.list:
        for name in sorted(commands):
            print(name)
        return 0
    if ns.command is None:
        parser.error("a command is required")

    entrypoint = _load_entrypoint(commands[ns.command])
    return int(entrypoint(ns.args) or 0)


if __name__ == "__main__":  # pragma: no cover - manual execution
    raise SystemExit(main())
