# Renders log entries from the plugin bus through the standard logging module.

import json
import logging
from datetime import UTC, datetime
from typing import Any, Mapping, Optional

from event_detector.core.change_event import ChangeEvent
from event_detector.core.plugins import BasePlugin
from event_detector.core.results import JobExecutionResult
from event_detector.helpers.serialization import to_serializable

LEVEL_ORDER = {"debug": 0, "info": 1, "warn": 2, "warning": 2, "error": 3}
LOGGING_LEVELS = {0: logging.DEBUG, 1: logging.INFO, 2: logging.WARNING, 3: logging.ERROR}
FORMATS = ("simple", "structured", "json")


class SimpleLoggingPlugin(BasePlugin):
    """Writes `on_log` entries and job outcomes to a logger.

    Config keys:
        log_level: Minimum level to write ("debug", "info", "warn", "error"). Default "info".
        format: "simple", "structured" (default) or "json".
        prefix: Text put in front of every line. Default "[event-detector]".
        include_correlation_id: Add the correlation id to each line. Default True.
        include_job_context: Add the job name to each line. Default True.
        logger_name: Target logger. Default this module's logger.
    """

    name = "simple-logging"

    def __init__(self, config: Optional[Mapping[str, Any]] = None, enabled: bool = True):
        defaults = {
            "log_level": "info",
            "format": "structured",
            "prefix": "[event-detector]",
            "include_correlation_id": True,
            "include_job_context": True,
            "logger_name": __name__,
        }
        super().__init__(config={**defaults, **(config or {})}, enabled=enabled)
        if self.config["format"] not in FORMATS:
            raise ValueError(f"format must be one of {FORMATS}, got {self.config['format']!r}")
        if self.config["log_level"] not in LEVEL_ORDER:
            raise ValueError(f"Unknown log_level {self.config['log_level']!r}")
        self.logger = logging.getLogger(self.config["logger_name"])

    def should_log(self, level: str) -> bool:
        return LEVEL_ORDER.get(level, LEVEL_ORDER["info"]) >= LEVEL_ORDER[self.config["log_level"]]

    def format_entry(
        self, level: str, message: str, data: Mapping[str, Any], job_name: Optional[str], correlation_id: str
    ) -> str:
        fmt = self.config["format"]
        if fmt == "json":
            entry = {
                "timestamp": datetime.now(UTC).isoformat(),
                "level": level,
                "message": message,
                "correlation_id": correlation_id,
                "job_name": job_name,
                "data": to_serializable(dict(data or {})),
            }
            return json.dumps(entry)

        parts = [self.config["prefix"]] if self.config["prefix"] else []
        if fmt == "structured":
            parts.append(f"[{level.upper()}]")
            if self.config["include_correlation_id"] and correlation_id:
                parts.append(f"[{correlation_id}]")
            if self.config["include_job_context"] and job_name:
                parts.append(f"[{job_name}]")
        parts.append(message)
        if fmt == "structured" and data:
            parts.append(json.dumps(to_serializable(dict(data))))
        return " ".join(parts)

    def on_log(
        self, level: str, message: str, data: Mapping[str, Any], job_name: Optional[str], correlation_id: str
    ) -> None:
        if not self.should_log(level):
            return
        rendered = self.format_entry(level, message, data, job_name, correlation_id)
        self.logger.log(LOGGING_LEVELS[LEVEL_ORDER.get(level, 1)], rendered)

    def on_job_end(
        self,
        job_name: str,
        job_result: JobExecutionResult,
        event_name: str,
        change_event: ChangeEvent,
        correlation_id: str,
    ) -> None:
        if job_result.completed:
            message = f"{event_name}: job completed in {job_result.duration_ms:.0f} ms"
            self.on_log("info", message, {}, job_name, correlation_id)
        else:
            state = "aborted" if job_result.aborted else "failed"
            self.on_log("error", f"{event_name}: job {state}: {job_result.error}", {}, job_name, correlation_id)
