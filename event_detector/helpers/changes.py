# Helpers for writing detectors against a ChangeEvent.

from typing import Any, List

from event_detector.core.change_event import ChangeEvent, Operation

_MISSING = object()


def column_has_changed(column: str, change_event: ChangeEvent) -> bool:
    """True if `column` differs between the before and after records of an UPDATE.

    A column that is present on only one side counts as changed. INSERT, DELETE and
    MANUAL events never report a change.
    """
    if change_event.operation != Operation.UPDATE:
        return False
    before = change_event.before.get(column, _MISSING)
    after = change_event.after.get(column, _MISSING)
    return before != after


def changed_columns(change_event: ChangeEvent) -> List[str]:
    """Names of all columns whose value changed in an UPDATE, in after-record order."""
    if change_event.operation != Operation.UPDATE:
        return []
    columns = list(change_event.after) + [c for c in change_event.before if c not in change_event.after]
    return [column for column in columns if column_has_changed(column, change_event)]


def changed_to(column: str, value: Any, change_event: ChangeEvent) -> bool:
    """True if an UPDATE changed `column` to exactly `value`."""
    return column_has_changed(column, change_event) and change_event.after.get(column) == value
