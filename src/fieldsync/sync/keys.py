"""
keys.py - Record identity for outbox entries.

Single-key tables use the decimal id as record_id. Junction tables
have no id column, so their record_id joins both foreign keys:
"<first_key>,<second_key>".
"""

from fieldsync.config import COMPOSITE_KEY_DELIMITER, JUNCTION_KEYS
from fieldsync.errors import ValidationError


def is_junction(table_name: str) -> bool:
    return table_name in JUNCTION_KEYS


def compose_key(first: int, second: int) -> str:
    """Build the record_id of a junction row."""
    return f"{int(first)}{COMPOSITE_KEY_DELIMITER}{int(second)}"


def decompose_key(record_id: str) -> tuple[int, int]:
    """
    Split a junction record_id back into its two keys.

    Args:
        record_id: Composite identity, e.g. "5,12"

    Returns:
        Tuple of both integer keys

    Raises:
        ValidationError: If record_id is not exactly two integers
    """
    parts = str(record_id).split(COMPOSITE_KEY_DELIMITER)
    if len(parts) != 2:
        raise ValidationError(
            "Composite record id must have exactly two parts",
            field="record_id",
            value=record_id,
        )
    try:
        return int(parts[0].strip()), int(parts[1].strip())
    except ValueError as e:
        raise ValidationError(
            "Composite record id parts must be integers",
            field="record_id",
            value=record_id,
        ) from e


def key_filters(table_name: str, record_id: str) -> dict[str, int]:
    """
    Map a record_id onto the key columns of its table.

    Junction tables yield both key columns, every other table yields id.
    """
    if is_junction(table_name):
        first, second = decompose_key(record_id)
        first_col, second_col = JUNCTION_KEYS[table_name]
        return {first_col: first, second_col: second}
    try:
        return {"id": int(record_id)}
    except ValueError as e:
        raise ValidationError(
            "Record id must be an integer", field="record_id", value=record_id
        ) from e


def record_id_for(table_name: str, row: dict) -> str:
    """Derive the record_id of a row about to be enqueued."""
    if is_junction(table_name):
        first_col, second_col = JUNCTION_KEYS[table_name]
        return compose_key(row[first_col], row[second_col])
    return str(int(row["id"]))
