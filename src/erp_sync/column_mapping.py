"""
ColumnMapping module for validated table-to-JSON column rules and insert statement building
"""

import re
from dataclasses import dataclass
from typing import Iterable, List, Sequence, Tuple

IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
JSON_PATH_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\[\d+\])*(\.[A-Za-z_][A-Za-z0-9_]*(\[\d+\])*)*$")


class MappingError(Exception):
    """Raised when a table's column mapping is missing or unusable"""
    pass


def validate_identifier(name: str, kind: str = "identifier") -> str:
    """
    Check that ``name`` is a plain SQL identifier

    Raises:
        MappingError: If the name contains anything but letters, digits and underscores
    """
    if not isinstance(name, str) or not IDENTIFIER_PATTERN.match(name):
        raise MappingError(f"Invalid {kind}: {name!r}")
    return name


def quote_identifier(name: str) -> str:
    return f'"{validate_identifier(name)}"'


@dataclass(frozen=True)
class ColumnRule:
    """One target column and the JSON member path that populates it"""
    column: str
    json_path: str

    def __post_init__(self):
        validate_identifier(self.column, "column name")
        if not isinstance(self.json_path, str) or not JSON_PATH_PATTERN.match(self.json_path):
            raise MappingError(f"Invalid JSON path for column {self.column}: {self.json_path!r}")


@dataclass(frozen=True)
class ColumnMapping:
    """Ordered column rules for a single target table, never empty"""
    table_name: str
    rules: Tuple[ColumnRule, ...]

    def __post_init__(self):
        validate_identifier(self.table_name, "table name")
        if not self.rules:
            raise MappingError(f"API Dictionary has no mappings for {self.table_name}")

        columns = [rule.column.upper() for rule in self.rules]
        duplicates = sorted({c for c in columns if columns.count(c) > 1})
        if duplicates:
            raise MappingError(f"Duplicate mapped columns for {self.table_name}: {', '.join(duplicates)}")

    @classmethod
    def from_rows(cls, table_name: str, rows: Iterable[Sequence[str]]) -> 'ColumnMapping':
        """
        Build a mapping from ``(column_name, json_path)`` rows

        Args:
            table_name: Target table the rows belong to
            rows: Mapping rows as read from the dictionary table

        Returns:
            Validated ColumnMapping

        Raises:
            MappingError: If there are no rows or any row is invalid
        """
        rules = tuple(ColumnRule(column=str(row[0]).strip(), json_path=str(row[1]).strip()) for row in rows)
        return cls(table_name=table_name, rules=rules)

    @property
    def columns(self) -> List[str]:
        return [rule.column for rule in self.rules]

    def build_insert_sql(self) -> str:
        """
        Build one INSERT ... SELECT projecting every column out of a JSON array

        The statement takes a single parameter: the batch as a JSON array
        text. Each array element becomes one row; each column is the string
        value at its JSON path (NULL when the path is absent).
        """
        column_list = ", ".join(quote_identifier(column) for column in self.columns)
        projections = ",\n    ".join(
            f"json_extract_string(record, '$.{rule.json_path}')" for rule in self.rules
        )
        return (
            f"INSERT INTO {quote_identifier(self.table_name)} ({column_list})\n"
            f"SELECT\n    {projections}\n"
            f"FROM (SELECT unnest(from_json(CAST(? AS JSON), '[\"JSON\"]')) AS record)"
        )
