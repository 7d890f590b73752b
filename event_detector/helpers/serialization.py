# Safe conversion of arbitrary job results into JSON-compatible values.

import logging
from typing import Any

from pydantic_core import PydanticSerializationError, to_jsonable_python

logger = logging.getLogger(__name__)


def _describe(value: Any) -> str:
    if callable(value):
        return f"[Function] {getattr(value, '__name__', None) or 'anonymous'}"
    return f"[{type(value).__name__}]"


def to_serializable(value: Any) -> Any:
    """Convert `value` into something `json.dumps` accepts.

    Pydantic models, dataclasses, datetimes and containers are converted by
    pydantic-core. Objects it cannot handle are replaced by a short description
    such as "[Function] send_email" or "[Connection]" instead of failing.
    """
    try:
        return to_jsonable_python(value, fallback=_describe)
    except (PydanticSerializationError, ValueError) as e:
        logger.debug(f"Could not serialize {type(value).__name__}: {e}")
        return _describe(value)
