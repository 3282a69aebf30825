"""Command line entry point for provisioning AlloyDB tables."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Sequence

from .config import (
    CONFIG_FILE,
    Option,
    load_config,
    with_alloydb_instance,
    with_database,
    with_iam_account_email,
    with_ip_type,
    with_password,
    with_user,
)
from .ddl import new_vectorstore_table_options
from .engine import BlockingPostgresEngine
from .errors import ConfigurationError, EngineError
from .models import Column

LOG = logging.getLogger(__name__)


def parse_column(value: str) -> Column:
    """Parse ``name:type[:notnull]`` into a column declaration."""

    parts = value.split(":")
    if len(parts) not in (2, 3) or not parts[0] or not parts[1]:
        raise argparse.ArgumentTypeError(f"expected name:type[:notnull], got {value!r}")
    nullable = True
    if len(parts) == 3:
        if parts[2].lower() != "notnull":
            raise argparse.ArgumentTypeError(f"unknown column flag {parts[2]!r}")
        nullable = False
    return Column(name=parts[0], data_type=parts[1], nullable=nullable)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="alloyengine", description=__doc__)
    parser.add_argument("--config", type=Path, default=CONFIG_FILE, help="TOML config file")
    parser.add_argument("--user")
    parser.add_argument("--password")
    parser.add_argument("--database")
    parser.add_argument("--iam-account-email")
    parser.add_argument(
        "--instance",
        nargs=4,
        metavar=("PROJECT", "REGION", "CLUSTER", "INSTANCE"),
        help="AlloyDB instance coordinates",
    )
    parser.add_argument("--ip-type", choices=("public", "private"))
    parser.add_argument("--timeout", type=float, default=None, help="seconds to wait per operation")
    parser.add_argument("-v", "--verbose", action="store_true")

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("ping", help="check connectivity")

    vector = commands.add_parser("init-vectorstore", help="create a vector store table")
    vector.add_argument("table")
    vector.add_argument("--vector-size", type=int, required=True)
    vector.add_argument("--schema", default="")
    vector.add_argument("--content-column", default="")
    vector.add_argument("--embedding-column", default="")
    vector.add_argument("--metadata-json-column", default="")
    vector.add_argument(
        "--metadata-column",
        action="append",
        type=parse_column,
        default=[],
        help="extra column as name:type[:notnull]; repeatable",
    )
    vector.add_argument("--id-column", type=parse_column, default=None, help="name:type")
    vector.add_argument("--overwrite", action="store_true")
    vector.add_argument("--no-metadata-json", dest="store_metadata", action="store_false")

    chat = commands.add_parser("init-chat-history", help="create a chat history table")
    chat.add_argument("table")
    chat.add_argument("--schema", default="public")
    return parser


def options_from_args(args: argparse.Namespace) -> list[Option]:
    """Command line flags that override values from the config file."""

    options: list[Option] = []
    if args.user is not None:
        options.append(with_user(args.user))
    if args.password is not None:
        options.append(with_password(args.password))
    if args.database is not None:
        options.append(with_database(args.database))
    if args.iam_account_email is not None:
        options.append(with_iam_account_email(args.iam_account_email))
    if args.instance is not None:
        options.append(with_alloydb_instance(*args.instance))
    if args.ip_type is not None:
        options.append(with_ip_type(args.ip_type))
    return options


def run(args: argparse.Namespace) -> None:
    config = load_config(args.config)
    if args.command == "init-vectorstore":
        # Validate table options before any network I/O.
        table_options = new_vectorstore_table_options(
            args.table,
            args.vector_size,
            schema_name=args.schema,
            content_column_name=args.content_column,
            embedding_column=args.embedding_column,
            metadata_json_column=args.metadata_json_column,
        )
    with BlockingPostgresEngine.create(
        *options_from_args(args), config=config, timeout=args.timeout
    ) as engine:
        if args.command == "ping":
            engine.ping(timeout=args.timeout)
            print("ok")
        elif args.command == "init-vectorstore":
            engine.init_vectorstore_table(
                table_options,
                args.metadata_column,
                id_column=args.id_column,
                overwrite_existing=args.overwrite,
                store_metadata=args.store_metadata,
                timeout=args.timeout,
            )
            print(f"created {table_options.schema_name}.{table_options.table_name}")
        elif args.command == "init-chat-history":
            engine.init_chat_history_table(args.table, args.schema, timeout=args.timeout)
            print(f"ensured {args.schema or 'public'}.{args.table}")
        else:  # pragma: no cover - argparse restricts choices
            raise ConfigurationError(f"unknown command {args.command!r}")


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        run(args)
    except EngineError as exc:
        LOG.debug("Command failed", exc_info=True)
        print(f"error: {exc}", file=sys.stderr)
        return 1
    except TimeoutError:
        print("error: operation timed out", file=sys.stderr)
        return 1
    return 0


__all__ = ["build_parser", "main", "options_from_args", "parse_column", "run"]
