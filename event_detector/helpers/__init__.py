from event_detector.helpers.changes import changed_columns, changed_to, column_has_changed
from event_detector.helpers.serialization import to_serializable

__all__ = ["changed_columns", "changed_to", "column_has_changed", "to_serializable"]
