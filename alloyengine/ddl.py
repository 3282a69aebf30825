"""SQL statement builders for vector-store and chat-history tables."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from .errors import ConfigurationError
from .models import Column

DEFAULT_SCHEMA = "public"
DEFAULT_CONTENT_COLUMN = "content"
DEFAULT_EMBEDDING_COLUMN = "embedding"
DEFAULT_METADATA_JSON_COLUMN = "langchain_metadata"
DEFAULT_ID_COLUMN = Column(name="langchain_id", data_type="UUID", nullable=False)


@dataclass(frozen=True, slots=True)
class VectorstoreTableOptions:
    """Names and sizes for a vector-store table.

    Empty names fall back to their defaults; a missing table name or vector
    size raises `ConfigurationError` before any statement is built.
    """

    table_name: str
    vector_size: int
    schema_name: str = DEFAULT_SCHEMA
    content_column_name: str = DEFAULT_CONTENT_COLUMN
    embedding_column: str = DEFAULT_EMBEDDING_COLUMN
    metadata_json_column: str = DEFAULT_METADATA_JSON_COLUMN

    def __post_init__(self) -> None:
        if not self.table_name:
            raise ConfigurationError("missing table name in options")
        if not self.vector_size:
            raise ConfigurationError("missing vector size in options")
        if self.vector_size < 0:
            raise ConfigurationError("vector size must be positive")
        defaults = {
            "schema_name": DEFAULT_SCHEMA,
            "content_column_name": DEFAULT_CONTENT_COLUMN,
            "embedding_column": DEFAULT_EMBEDDING_COLUMN,
            "metadata_json_column": DEFAULT_METADATA_JSON_COLUMN,
        }
        for name, default in defaults.items():
            if not getattr(self, name):
                object.__setattr__(self, name, default)


def new_vectorstore_table_options(
    table_name: str,
    vector_size: int,
    *,
    schema_name: str = "",
    content_column_name: str = "",
    embedding_column: str = "",
    metadata_json_column: str = "",
) -> VectorstoreTableOptions:
    """Build options from possibly-empty names; defaults fill the gaps."""

    return VectorstoreTableOptions(
        table_name=table_name,
        vector_size=vector_size,
        schema_name=schema_name,
        content_column_name=content_column_name,
        embedding_column=embedding_column,
        metadata_json_column=metadata_json_column,
    )


def quote_identifier(name: str) -> str:
    """Double-quote an identifier. Names are not otherwise validated."""

    return '"' + name.replace('"', '""') + '"'


def qualified_name(schema_name: str, table_name: str) -> str:
    return f"{quote_identifier(schema_name)}.{quote_identifier(table_name)}"


def resolve_id_column(id_column: Column | None) -> Column:
    """Fill in the surrogate key name/type when missing."""

    if id_column is None:
        return DEFAULT_ID_COLUMN
    return Column(
        name=id_column.name or DEFAULT_ID_COLUMN.name,
        data_type=id_column.data_type or DEFAULT_ID_COLUMN.data_type,
        nullable=False,
    )


def create_vector_extension_statement() -> str:
    return "CREATE EXTENSION IF NOT EXISTS vector"


def drop_table_statement(schema_name: str, table_name: str) -> str:
    return f"DROP TABLE IF EXISTS {qualified_name(schema_name, table_name)}"


def create_vectorstore_table_statement(
    options: VectorstoreTableOptions,
    metadata_columns: Sequence[Column] = (),
    id_column: Column | None = None,
    store_metadata: bool = True,
) -> str:
    """CREATE TABLE for a vector store.

    Column order is fixed: id, content, embedding, the metadata columns in the
    order given, then the JSON metadata column when ``store_metadata`` is set.
    """

    key = resolve_id_column(id_column)
    columns = [
        f"{quote_identifier(key.name)} {key.data_type} PRIMARY KEY",
        f"{quote_identifier(options.content_column_name)} TEXT NOT NULL",
        f"{quote_identifier(options.embedding_column)} vector({options.vector_size}) NOT NULL",
    ]
    for column in metadata_columns:
        definition = f"{quote_identifier(column.name)} {column.data_type}"
        if not column.nullable:
            definition += " NOT NULL"
        columns.append(definition)
    if store_metadata:
        columns.append(f"{quote_identifier(options.metadata_json_column)} JSON")
    body = ",\n  ".join(columns)
    return f"CREATE TABLE {qualified_name(options.schema_name, options.table_name)} (\n  {body}\n);"


def create_chat_history_table_statement(table_name: str, schema_name: str = DEFAULT_SCHEMA) -> str:
    """CREATE TABLE IF NOT EXISTS for chat message history."""

    if not table_name:
        raise ConfigurationError("missing table name")
    return (
        f"CREATE TABLE IF NOT EXISTS {qualified_name(schema_name or DEFAULT_SCHEMA, table_name)} (\n"
        "  id SERIAL PRIMARY KEY,\n"
        "  session_id TEXT NOT NULL,\n"
        "  data JSONB NOT NULL,\n"
        "  type TEXT NOT NULL\n"
        ");"
    )


__all__ = [
    "DEFAULT_CONTENT_COLUMN",
    "DEFAULT_EMBEDDING_COLUMN",
    "DEFAULT_ID_COLUMN",
    "DEFAULT_METADATA_JSON_COLUMN",
    "DEFAULT_SCHEMA",
    "VectorstoreTableOptions",
    "create_chat_history_table_statement",
    "create_vector_extension_statement",
    "create_vectorstore_table_statement",
    "drop_table_statement",
    "new_vectorstore_table_options",
    "qualified_name",
    "quote_identifier",
    "resolve_id_column",
]
