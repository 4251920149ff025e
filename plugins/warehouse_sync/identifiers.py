"""
SQL Identifier Module

All table, schema, column and procedure names that end up inside a SQL
statement go through this module. Names are validated against a safe pattern
and then quoted for the dialect they are used in:

- mssql: [name] (source, SQL Server)
- postgres: "name" (target, PostgreSQL)

Values (dates, keys) are never formatted into SQL; they are always bound
parameters.
"""

from typing import Optional, Tuple
import re

MSSQL = "mssql"
POSTGRES = "postgres"

_IDENTIFIER_PATTERN = re.compile(r'^[a-zA-Z_][a-zA-Z0-9_]*$')


def validate_sql_identifier(identifier: str, identifier_type: str = "identifier") -> str:
    """
    Validate a SQL identifier to prevent SQL injection.

    Rules:
        - Non-empty
        - Max 128 characters (SQL Server limit)
        - Must start with letter or underscore
        - Can contain only alphanumeric characters and underscores

    Args:
        identifier: The identifier to validate
        identifier_type: Type description for error messages (e.g., "table name")

    Returns:
        The identifier, unchanged

    Raises:
        ValueError: If the identifier is invalid
    """
    if not identifier:
        raise ValueError(f"Invalid {identifier_type}: cannot be empty")

    if len(identifier) > 128:
        raise ValueError(
            f"Invalid {identifier_type}: exceeds maximum length of 128 characters "
            f"(got {len(identifier)} characters)"
        )

    if not _IDENTIFIER_PATTERN.match(identifier):
        raise ValueError(
            f"Invalid {identifier_type} '{identifier}': must start with letter or underscore "
            "and contain only alphanumeric characters and underscores"
        )

    return identifier


def quote_identifier(identifier: str, dialect: str, identifier_type: str = "identifier") -> str:
    """
    Validate and quote an identifier for the given dialect.

    Examples:
        >>> quote_identifier("orders", MSSQL)
        '[orders]'
        >>> quote_identifier("orders", POSTGRES)
        '"orders"'
    """
    validate_sql_identifier(identifier, identifier_type)

    if dialect == MSSQL:
        return "[" + identifier.replace("]", "]]") + "]"
    if dialect == POSTGRES:
        return '"' + identifier.replace('"', '""') + '"'

    raise ValueError(f"Unknown SQL dialect: {dialect}")


def qualified_name(schema: str, name: str, dialect: str) -> str:
    """Return schema.name with both parts quoted for the dialect."""
    return (
        f"{quote_identifier(schema, dialect, 'schema name')}."
        f"{quote_identifier(name, dialect, 'object name')}"
    )


def quote_column_list(columns, dialect: str) -> str:
    """Comma-separated list of quoted column names."""
    return ", ".join(quote_identifier(c, dialect, "column name") for c in columns)


def parse_qualified_name(text: str, default_schema: Optional[str] = None) -> Tuple[str, str]:
    """
    Split a 'schema.name' string into its parts.

    Handles:
    - Simple format: "reporting.sp_refresh" -> ("reporting", "sp_refresh")
    - Bracketed format: "[reporting].[sp_refresh]" -> ("reporting", "sp_refresh")
    - Unqualified: "sp_refresh" -> (default_schema, "sp_refresh")

    Raises:
        ValueError: If the name is unqualified and no default schema is given,
            or if either part is not a valid identifier
    """
    text = (text or "").strip()

    match = re.match(r'^\[([^\]]+)\]\.\[([^\]]+)\]$', text)
    if match:
        schema, name = match.group(1), match.group(2)
    elif '.' in text:
        schema, name = [part.strip() for part in text.split('.', 1)]
    else:
        if not default_schema:
            raise ValueError(f"'{text}' is not schema-qualified and no default schema is set")
        schema, name = default_schema, text

    validate_sql_identifier(schema, "schema name")
    validate_sql_identifier(name, "object name")
    return schema, name
