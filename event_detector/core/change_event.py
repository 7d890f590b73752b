# Normalized representation of one database change and the webhook payload parser.

import json
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_serializer, field_validator, model_validator

from event_detector.exceptions import PayloadParseError


class Operation(str, Enum):
    """Kind of database mutation reported by the trigger."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    MANUAL = "MANUAL"

    def __str__(self) -> str:
        return self.value


class TableIdentity(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    schema_name: str = Field(alias="schema", min_length=1)
    name: str = Field(min_length=1)

    @property
    def qualified_name(self) -> str:
        return f"{self.schema_name}.{self.name}"


class ActorIdentity(BaseModel):
    """Session attributes of whoever caused the change."""

    model_config = ConfigDict(frozen=True)

    role: Optional[str] = None
    user_id: Optional[str] = None
    user_email: Optional[str] = None
    session_variables: Mapping[str, str] = Field(default_factory=dict)

    @field_validator("session_variables", mode="after")
    @classmethod
    def _freeze_session_variables(cls, value: Mapping[str, str]) -> Mapping[str, str]:
        return MappingProxyType(dict(value))

    @field_serializer("session_variables")
    def _serialize_session_variables(self, value: Mapping[str, str]) -> Dict[str, str]:
        return dict(value)

    @property
    def user(self) -> Optional[str]:
        """The user email, or "system" when the change was made with the admin role."""
        if self.user_email:
            return self.user_email
        return "system" if self.role == "admin" else None

    @classmethod
    def from_session_variables(cls, session_variables: Optional[Dict[str, str]]) -> "ActorIdentity":
        session_variables = session_variables or {}
        return cls(
            role=session_variables.get("x-hasura-role"),
            user_id=session_variables.get("x-hasura-user-id"),
            user_email=session_variables.get("x-hasura-user-email"),
            session_variables=session_variables,
        )


class ChangeEvent(BaseModel):
    """A single database mutation: operation, before/after state and actor.

    Instances are frozen; the record mappings are read-only views.

    Attributes:
        operation: INSERT, UPDATE, DELETE or MANUAL.
        table: Schema and name of the changed table.
        before: The row before the change (UPDATE/DELETE).
        after: The row after the change (INSERT/UPDATE).
        actor: Session identity of the caller.
        source_id: Opaque id assigned by the upstream trigger.
        created_at: When the trigger fired.
    """

    model_config = ConfigDict(frozen=True)

    operation: Operation
    table: TableIdentity
    before: Optional[Mapping[str, Any]] = None
    after: Optional[Mapping[str, Any]] = None
    actor: ActorIdentity = Field(default_factory=ActorIdentity)
    source_id: str
    created_at: datetime
    trigger_name: Optional[str] = None
    delivery_attempt: Optional[int] = None
    trace_context: Optional[Mapping[str, Any]] = None

    @field_validator("before", "after", "trace_context", mode="after")
    @classmethod
    def _freeze_record(cls, value: Optional[Mapping[str, Any]]) -> Optional[Mapping[str, Any]]:
        if value is None:
            return None
        return MappingProxyType(dict(value))

    @field_serializer("before", "after", "trace_context")
    def _serialize_record(self, value: Optional[Mapping[str, Any]]) -> Optional[Dict[str, Any]]:
        return dict(value) if value is not None else None

    @model_validator(mode="after")
    def _check_records_match_operation(self) -> "ChangeEvent":
        if self.operation == Operation.INSERT and (self.after is None or self.before is not None):
            raise ValueError("INSERT events must carry only the new record")
        if self.operation == Operation.DELETE and (self.before is None or self.after is not None):
            raise ValueError("DELETE events must carry only the old record")
        if self.operation == Operation.UPDATE and (self.before is None or self.after is None):
            raise ValueError("UPDATE events must carry both the old and the new record")
        return self

    @property
    def table_name(self) -> str:
        return self.table.name

    def value(self, column: str, default: Any = None) -> Any:
        """Current value of a column: from `after` when present, else from `before`."""
        record = self.after if self.after is not None else self.before
        if record is None:
            return default
        return record.get(column, default)


# --- Wire format ---


class _WireData(BaseModel):
    old: Optional[Dict[str, Any]] = None
    new: Optional[Dict[str, Any]] = None


class _WireEvent(BaseModel):
    op: Operation
    data: _WireData
    session_variables: Optional[Dict[str, Optional[str]]] = None
    trace_context: Optional[Dict[str, Any]] = None


class _WireTrigger(BaseModel):
    name: str


class _WireDeliveryInfo(BaseModel):
    max_retries: Optional[int] = None
    current_retry: Optional[int] = None


class _WirePayload(BaseModel):
    event: _WireEvent
    table: TableIdentity
    id: str = Field(min_length=1)
    created_at: datetime
    trigger: Optional[_WireTrigger] = None
    delivery_info: Optional[_WireDeliveryInfo] = None


RawPayload = Union[Dict[str, Any], str, bytes]


def _format_errors(exc: ValidationError) -> list[dict[str, Any]]:
    return [
        {"loc": ".".join(str(part) for part in error["loc"]), "msg": error["msg"], "type": error["type"]}
        for error in exc.errors()
    ]


def parse_change_event(raw_payload: RawPayload) -> ChangeEvent:
    """Normalize a raw webhook payload into a ChangeEvent.

    Args:
        raw_payload: The decoded webhook body, or its JSON text.

    Returns:
        The immutable ChangeEvent.

    Raises:
        PayloadParseError: If required fields are missing or malformed, or if the
            before/after records do not match the operation.
    """
    if isinstance(raw_payload, (str, bytes)):
        try:
            raw_payload = json.loads(raw_payload)
        except json.JSONDecodeError as e:
            raise PayloadParseError(f"Payload is not valid JSON: {e}") from e

    if not isinstance(raw_payload, dict):
        raise PayloadParseError(f"Payload must be an object, got {type(raw_payload).__name__}")

    try:
        wire = _WirePayload.model_validate(raw_payload)
    except ValidationError as e:
        errors = _format_errors(e)
        summary = "; ".join(f"{err['loc']}: {err['msg']}" for err in errors)
        raise PayloadParseError(f"Malformed change event payload: {summary}", errors=errors) from e

    session_variables = {k: v for k, v in (wire.event.session_variables or {}).items() if v is not None}

    try:
        return ChangeEvent(
            operation=wire.event.op,
            table=wire.table,
            before=wire.event.data.old,
            after=wire.event.data.new,
            actor=ActorIdentity.from_session_variables(session_variables),
            source_id=wire.id,
            created_at=wire.created_at,
            trigger_name=wire.trigger.name if wire.trigger else None,
            delivery_attempt=wire.delivery_info.current_retry if wire.delivery_info else None,
            trace_context=wire.event.trace_context,
        )
    except ValidationError as e:
        errors = _format_errors(e)
        summary = "; ".join(err["msg"] for err in errors)
        raise PayloadParseError(f"Inconsistent change event payload: {summary}", errors=errors) from e
