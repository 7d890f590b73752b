# Lineage tokens stamped into downstream mutations.

import uuid
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from event_detector.exceptions import TrackingTokenFormatError

TOKEN_VERSION = "tt1"
SEPARATOR = "|"


def is_uuid(value: object) -> bool:
    """Whether `value` is a hyphenated UUID string, in either case."""
    if not isinstance(value, str):
        return False
    try:
        return str(uuid.UUID(value)) == value.lower()
    except ValueError:
        return False


def _sanitize(part: str) -> str:
    return part.replace(SEPARATOR, "_")


class TrackingToken(BaseModel):
    """Who caused a mutation: `{source, correlation_id, job_execution_id}`.

    Build tokens through `CorrelationManager.for_job()` or `JobContext.tracking_token()`
    rather than by hand, so lineage continuation is handled in one place.

    Attributes:
        source: Origin of the change (a user, a role, or "system").
        correlation_id: Lowercase UUID of the invocation that produced the token.
        job_execution_id: Id of the job execution, if the token was minted for one.
    """

    model_config = ConfigDict(frozen=True)

    source: str = Field(min_length=1)
    correlation_id: str
    job_execution_id: Optional[str] = None

    @field_validator("source")
    @classmethod
    def _sanitize_source(cls, value: str) -> str:
        return _sanitize(value)

    @field_validator("job_execution_id")
    @classmethod
    def _sanitize_job_execution_id(cls, value: Optional[str]) -> Optional[str]:
        if value is None or value == "":
            return None
        return _sanitize(value)

    @field_validator("correlation_id")
    @classmethod
    def _check_correlation_id(cls, value: str) -> str:
        if not is_uuid(value):
            raise ValueError(f"correlation_id must be a UUID, got {value!r}")
        return value.lower()

    def encode(self) -> str:
        """Serialize as `tt1|<source>|<correlation_id>|<job_execution_id>`."""
        return SEPARATOR.join([TOKEN_VERSION, self.source, self.correlation_id, self.job_execution_id or ""])

    @classmethod
    def decode(cls, token: str) -> "TrackingToken":
        """Parse and validate an encoded token.

        Accepts the versioned form and the legacy unversioned
        `source|correlation_id[|job_execution_id]` form.

        Raises:
            TrackingTokenFormatError: If the token is not a string, has the wrong number
                of parts, an empty source, a non-UUID correlation id or an unknown version.
        """
        if not isinstance(token, str) or not token:
            raise TrackingTokenFormatError("Tracking token must be a non-empty string", token=token)

        parts = token.split(SEPARATOR)
        if parts[0] == TOKEN_VERSION:
            if len(parts) != 4:
                raise TrackingTokenFormatError(
                    f"Versioned tracking token must have 4 parts, got {len(parts)}", token=token
                )
            _, source, correlation_id, job_execution_id = parts
        elif parts[0].startswith("tt") and parts[0][2:].isdigit():
            raise TrackingTokenFormatError(f"Unsupported tracking token version: {parts[0]}", token=token)
        elif len(parts) in (2, 3):
            source, correlation_id = parts[0], parts[1]
            job_execution_id = parts[2] if len(parts) == 3 else ""
            if len(parts) == 3 and not job_execution_id:
                raise TrackingTokenFormatError("Tracking token has an empty job execution id", token=token)
        else:
            raise TrackingTokenFormatError(
                f"Tracking token must have 2 or 3 parts, got {len(parts)}", token=token
            )

        if not source:
            raise TrackingTokenFormatError("Tracking token has an empty source", token=token)
        if not is_uuid(correlation_id):
            raise TrackingTokenFormatError(
                f"Tracking token correlation id is not a UUID: {correlation_id!r}", token=token
            )
        return cls(source=source, correlation_id=correlation_id, job_execution_id=job_execution_id or None)

    @classmethod
    def try_decode(cls, token: object) -> Optional["TrackingToken"]:
        """Decode `token`, returning None instead of raising."""
        try:
            return cls.decode(token)  # type: ignore[arg-type]
        except TrackingTokenFormatError:
            return None

    @classmethod
    def is_valid(cls, token: object) -> bool:
        return cls.try_decode(token) is not None

    def with_job_execution_id(self, job_execution_id: Optional[str]) -> "TrackingToken":
        return TrackingToken(
            source=self.source, correlation_id=self.correlation_id, job_execution_id=job_execution_id
        )

    def with_source(self, source: str) -> "TrackingToken":
        return TrackingToken(
            source=source, correlation_id=self.correlation_id, job_execution_id=self.job_execution_id
        )

    def __str__(self) -> str:
        return self.encode()
