"""Strata CLI entry points.

This module exposes layer create and diff commands over a directory driver.
It maps argparse commands onto the naive diff adapter.
"""

from __future__ import annotations

import argparse
import shutil
from dataclasses import replace
from pathlib import Path
from typing import Any, Sequence, cast

from core.config import StrataConfig
from core.logging_config import configure_log_level
from drivers.directory_driver import DirectoryDriver
from drivers.naive_diff import NaiveDiffDriver
from strata import build_naive_diff_driver


def build_parser() -> argparse.ArgumentParser:
    """Build the top-level CLI parser.

    Returns:
        Configured argument parser.
    """
    parser = argparse.ArgumentParser(prog="strata", description="Strata layer diff CLI")
    parser.add_argument("--data-root", help="Override STRATA_DATA_ROOT for this command")
    parser.add_argument("--verbose", action="store_true", help="Log debug events to stderr")
    subparsers = parser.add_subparsers(dest="command", required=True)
    _add_create_command(subparsers)
    _add_changes_command(subparsers)
    _add_diff_command(subparsers)
    _add_apply_diff_command(subparsers)
    _add_diff_size_command(subparsers)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Run the Strata CLI.

    Args:
        argv: Optional argument vector.

    Returns:
        Process exit code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_log_level(args.verbose)
    adapter = _build_adapter(args.data_root)
    if args.command == "create":
        return _run_create_command(adapter, args)
    if args.command == "changes":
        return _run_changes_command(adapter, args)
    if args.command == "diff":
        return _run_diff_command(adapter, args)
    if args.command == "apply-diff":
        return _run_apply_diff_command(adapter, args)
    if args.command == "diff-size":
        return _run_diff_size_command(adapter, args)
    parser.error(f"Unsupported command: {args.command}")
    return 2


def _build_adapter(data_root: str | None) -> NaiveDiffDriver:
    """Build the diff adapter with optional data-root override.

    Args:
        data_root: Optional override path.

    Returns:
        Adapter over a directory driver.
    """
    config = StrataConfig.from_env()
    if data_root:
        config = replace(config, data_root=Path(data_root).expanduser().resolve())
    return build_naive_diff_driver(config)


def _run_create_command(adapter: NaiveDiffDriver, args: argparse.Namespace) -> int:
    driver = cast(DirectoryDriver, adapter.driver)
    layer_dir = driver.create(args.layer, parent=args.parent)
    print(layer_dir)
    return 0


def _run_changes_command(adapter: NaiveDiffDriver, args: argparse.Namespace) -> int:
    for change in adapter.changes(args.layer, args.parent):
        print(change)
    return 0


def _run_diff_command(adapter: NaiveDiffDriver, args: argparse.Namespace) -> int:
    """Handle diff command.

    Args:
        adapter: Diff adapter.
        args: Parsed CLI args.

    Returns:
        Exit code.
    """
    output_path = Path(args.output)
    with adapter.diff(args.layer, args.parent) as archive, output_path.open("wb") as output:
        shutil.copyfileobj(archive, output)
    print(output_path)
    return 0


def _run_apply_diff_command(adapter: NaiveDiffDriver, args: argparse.Namespace) -> int:
    with Path(args.archive).open("rb") as archive:
        size = adapter.apply_diff(args.layer, args.parent, archive)
    print(size)
    return 0


def _run_diff_size_command(adapter: NaiveDiffDriver, args: argparse.Namespace) -> int:
    print(adapter.diff_size(args.layer, args.parent))
    return 0


def _add_create_command(subparsers: Any) -> None:
    parser = subparsers.add_parser("create", help="Create a layer, copying its parent")
    parser.add_argument("layer", help="New layer id")
    parser.add_argument("--parent", help="Parent layer id")


def _add_changes_command(subparsers: Any) -> None:
    parser = subparsers.add_parser("changes", help="List changes against the parent")
    parser.add_argument("layer", help="Layer id")
    parser.add_argument("--parent", help="Parent layer id; omit for a base layer")


def _add_diff_command(subparsers: Any) -> None:
    parser = subparsers.add_parser("diff", help="Write the layer diff as a tar archive")
    parser.add_argument("layer", help="Layer id")
    parser.add_argument("--parent", help="Parent layer id; omit to export the whole layer")
    parser.add_argument("--output", required=True, help="Destination tar path")


def _add_apply_diff_command(subparsers: Any) -> None:
    parser = subparsers.add_parser("apply-diff", help="Apply a tar diff onto a layer")
    parser.add_argument("layer", help="Layer id receiving the diff")
    parser.add_argument("archive", help="Uncompressed tar path")
    parser.add_argument("--parent", help="Parent layer id, recorded for provenance")


def _add_diff_size_command(subparsers: Any) -> None:
    parser = subparsers.add_parser("diff-size", help="Print the on-disk size of the diff")
    parser.add_argument("layer", help="Layer id")
    parser.add_argument("--parent", help="Parent layer id; omit for a base layer")
