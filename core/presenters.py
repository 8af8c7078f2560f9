"""
Role-aware data presentation and redaction.

Removes every field a caller may not see from records after they have been
fetched. Redaction never relies on the store to omit fields.
"""

from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Tuple


def redact_record(record: Mapping[str, Any], visible_fields: FrozenSet[str]) -> Dict[str, Any]:
    """
    Keep only visible keys of one record.

    Args:
        record: Row as returned by the repository
        visible_fields: Fields the caller may see

    Returns:
        New dict with disallowed keys removed

    Examples:
        >>> redact_record({"media_id": "m1", "full_name": "Ann"}, frozenset({"media_id"}))
        {'media_id': 'm1'}
    """
    return {key: value for key, value in record.items() if key in visible_fields}


def redact_records(
    records: Iterable[Mapping[str, Any]],
    visible_fields: FrozenSet[str],
) -> Tuple[List[Dict[str, Any]], int]:
    """
    Redact a result set.

    Returns:
        (redacted rows, number of field values removed)
    """
    redacted: List[Dict[str, Any]] = []
    removed = 0
    for record in records:
        clean = redact_record(record, visible_fields)
        removed += len(record) - len(clean)
        redacted.append(clean)
    return redacted, removed


def present_event(event) -> Dict[str, Any]:
    """API representation of an event record."""
    data = event.to_dict()
    data["is_active"] = event.is_active
    return data
