"""CLI shell covering Configure → Import → Export plus raw select/update."""
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from common.config import load_runtime_config
from common.errors import BackendError
from common.models import CollectionProgress, RuntimeConfig
from core.jobs import StoreCoordinator
from core.schema import load_schema, render_ddl


def render_progress(progress: CollectionProgress) -> None:
    print(f"[{progress.phase}/progress] {progress.collection} {progress.processed}/{progress.total}")


def command_ddl(args: argparse.Namespace) -> None:
    schema = load_schema(Path(args.schema))
    sys.stdout.write(render_ddl(schema))


def command_init(args: argparse.Namespace) -> None:
    runtime = build_runtime(args)
    schema = load_schema(Path(args.schema))
    with StoreCoordinator(runtime) as coordinator:
        coordinator.configure(schema, reset=args.reset).result()
    print(f"[init] store ready at {runtime.database.path} ({len(schema.tables)} table(s))")


def command_import(args: argparse.Namespace) -> None:
    runtime = build_runtime(args)
    schema = load_schema(Path(args.schema))
    with StoreCoordinator(runtime) as coordinator:
        coordinator.configure(schema).result()
        callback = render_progress if args.show_progress else None
        summary = coordinator.import_data(Path(args.root), callback).result()
    print(
        f"[import] {summary.summary()} "
        f"(junction_rows={summary.junction_rows}, files={summary.files_processed}, "
        f"skipped={summary.files_skipped}, {summary.duration_seconds:.2f}s)"
    )


def command_export(args: argparse.Namespace) -> None:
    runtime = build_runtime(args)
    schema = load_schema(Path(args.schema))
    with StoreCoordinator(runtime) as coordinator:
        coordinator.configure(schema).result()
        callback = render_progress if args.show_progress else None
        summary = coordinator.export_data(Path(args.target), callback).result()
    print(
        f"[export] wrote {summary.tables_exported} file(s), {summary.rows_exported} document(s) "
        f"to {args.target}"
    )


def command_select(args: argparse.Namespace) -> None:
    runtime = build_runtime(args)
    schema = load_schema(Path(args.schema))
    with StoreCoordinator(runtime) as coordinator:
        coordinator.configure(schema).result()
        rows = coordinator.perform_select(args.sql).result()
    print(json.dumps(rows, indent=2, ensure_ascii=False))


def command_update(args: argparse.Namespace) -> None:
    runtime = build_runtime(args)
    schema = load_schema(Path(args.schema))
    with StoreCoordinator(runtime) as coordinator:
        coordinator.configure(schema).result()
        coordinator.perform_update(args.sql).result()
    print("[update] statement applied")


def build_runtime(args: argparse.Namespace) -> RuntimeConfig:
    database: Dict[str, Any] = {}
    transfer: Dict[str, Any] = {}
    if getattr(args, "db", None):
        database["path"] = args.db
    if getattr(args, "key", None):
        database["encryption_key"] = args.key
    if getattr(args, "progress_log", None):
        transfer["progress_log"] = args.progress_log
    config_path = Path(args.config) if getattr(args, "config", None) else None
    return load_runtime_config(
        config_path=config_path,
        overrides={"database": database, "transfer": transfer},
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Map per-collection JSON documents onto a relational store and back"
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command")

    ddl = subparsers.add_parser("ddl", help="Print CREATE TABLE statements for a schema config")
    ddl.add_argument("--schema", required=True, help="Schema configuration JSON")
    ddl.set_defaults(func=command_ddl)

    init = subparsers.add_parser("init", help="Create the store and its tables")
    _add_store_arguments(init)
    init.add_argument("--reset", action="store_true", help="Delete an existing store file first")
    init.set_defaults(func=command_init)

    import_cmd = subparsers.add_parser("import", help="Import a directory of collection files")
    import_cmd.add_argument("root", help="Directory holding <table>.json files (nested allowed)")
    _add_store_arguments(import_cmd)
    _add_transfer_arguments(import_cmd)
    import_cmd.set_defaults(func=command_import)

    export = subparsers.add_parser("export", help="Export every table to <table>.json files")
    export.add_argument("target", help="Destination directory")
    _add_store_arguments(export)
    _add_transfer_arguments(export)
    export.set_defaults(func=command_export)

    select = subparsers.add_parser("select", help="Run a query and print rows as JSON")
    select.add_argument("sql")
    _add_store_arguments(select)
    select.set_defaults(func=command_select)

    update = subparsers.add_parser("update", help="Run a data-changing SQL script")
    update.add_argument("sql")
    _add_store_arguments(update)
    update.set_defaults(func=command_update)

    return parser


def _add_store_arguments(command: argparse.ArgumentParser) -> None:
    command.add_argument("--schema", required=True, help="Schema configuration JSON")
    command.add_argument("--config", help="Runtime profile JSON (default: config/defaults.json)")
    command.add_argument("--db", help="Override the store path from the runtime profile")
    command.add_argument("--key", help="Encryption key (requires the sqlcipher3 driver)")


def _add_transfer_arguments(command: argparse.ArgumentParser) -> None:
    command.add_argument("--progress-log", help="Optional JSONL file capturing per-collection progress")
    command.add_argument("--show-progress", action="store_true", help="Print progress ticks")


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return 0
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        args.func(args)
    except BackendError as exc:
        print(f"[{args.command}] failed: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
