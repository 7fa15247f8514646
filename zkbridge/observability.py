"""
ZKBRIDGE Observability

Structured logging and tamper-evident audit records for the claim path.

Architecture:
    Modules call ``get_logger(name, layer)`` once and log with keyword
    context. Records go through the standard ``logging`` module under
    ``zkbridge.<layer>.<name>``; the structured fields ride on the record as
    attributes. ``configure_logging`` puts one ``StructuredHandler`` on the
    ``zkbridge`` logger, rendering JSON lines (or plain text) stamped with
    the correlation id of the current context.

    Accepted claims and administrative changes are also appended to a
    ``ClaimAuditLog``. Each entry commits to its predecessor's digest, so an
    edited, dropped or reordered entry breaks the chain.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import contextvars
import functools
import json
import logging
import threading
import time
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from zkbridge.core import canonical_json_bytes, sha256_hex

ROOT_LOGGER_NAME = "zkbridge"

# One id per CLI command or pipeline run
correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("zkbridge_correlation_id", default="")

# Record attributes carrying the structured fields
_FIELDS = ("layer", "operation", "error_code", "duration_ms", "context")


class BridgeLayer(Enum):
    PARSER = "parser"
    COMMITMENT = "commitment"
    WITNESS = "witness"
    PROVER = "prover"
    CLAIM = "claim"
    PROVIDER = "provider"
    PIPELINE = "pipeline"
    CONFIG = "config"
    CLI = "cli"


# =============================================================================
# RENDERING
# =============================================================================

@dataclass
class LogEvent:
    """One rendered log line. Empty fields are left out of the output."""
    timestamp: str
    level: str
    logger: str
    message: str
    correlation_id: str = ""
    layer: str = ""
    operation: str = ""
    duration_ms: Optional[float] = None
    error_code: str = ""
    context: Dict[str, Any] = field(default_factory=dict)
    exception: Optional[str] = None

    @classmethod
    def from_record(cls, record: logging.LogRecord, exception: Optional[str] = None) -> "LogEvent":
        values = {name: getattr(record, name) for name in _FIELDS if getattr(record, name, None) is not None}
        return cls(
            timestamp=datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            level=record.levelname.lower(),
            logger=record.name,
            message=record.getMessage(),
            correlation_id=correlation_id_var.get(),
            exception=exception,
            **values,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v not in (None, "", {})}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    def to_text(self) -> str:
        line = f"{self.timestamp} {self.level.upper():<7} {self.logger}: {self.message}"
        extras = []
        if self.operation:
            extras.append(f"op={self.operation}")
        if self.error_code:
            extras.append(f"code={self.error_code}")
        if self.duration_ms is not None:
            extras.append(f"duration_ms={self.duration_ms:.2f}")
        extras.extend(f"{key}={value}" for key, value in sorted(self.context.items()))
        if extras:
            line += " [" + " ".join(extras) + "]"
        if self.exception:
            line += "\n" + self.exception
        return line


class StructuredFormatter(logging.Formatter):

    def __init__(self, fmt: str = "json"):
        super().__init__()
        if fmt not in ("json", "text"):
            raise ValueError(f"Unknown log format: {fmt}")
        self.style_name = fmt

    def format(self, record: logging.LogRecord) -> str:
        exception = self.formatException(record.exc_info).rstrip() if record.exc_info else None
        event = LogEvent.from_record(record, exception)
        return event.to_text() if self.style_name == "text" else event.to_json()


class StructuredHandler(logging.StreamHandler):
    """Stream handler writing one structured line per record (stderr by default)."""

    def __init__(self, stream: Any = None, fmt: str = "json"):
        super().__init__(stream)
        self.setFormatter(StructuredFormatter(fmt))


def configure_logging(level: str = "info", fmt: str = "json", stream: Any = None) -> logging.Logger:
    """Route ``zkbridge`` logging to a single StructuredHandler, replacing any earlier one."""
    root = logging.getLogger(ROOT_LOGGER_NAME)
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        raise ValueError(f"Unknown log level: {level}")
    root.setLevel(numeric)
    for handler in [h for h in root.handlers if isinstance(h, StructuredHandler)]:
        root.removeHandler(handler)
    root.addHandler(StructuredHandler(stream=stream, fmt=fmt))
    return root


# =============================================================================
# LOGGERS
# =============================================================================

class BridgeLogger:
    """
    Component logger. Keyword arguments other than the reserved
    ``operation``, ``error_code`` and ``duration_ms`` become the event's
    context mapping.
    """

    def __init__(self, name: str, layer: BridgeLayer):
        self.name = name
        self.layer = layer
        self._logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.{layer.value}.{name}")

    def log(
        self,
        level: int,
        message: str,
        *,
        operation: str = "",
        error_code: str = "",
        duration_ms: Optional[float] = None,
        exc_info: bool = False,
        **context: Any,
    ) -> None:
        if not self._logger.isEnabledFor(level):
            return
        self._logger.log(
            level,
            message,
            exc_info=exc_info,
            extra={
                "layer": self.layer.value,
                "operation": operation,
                "error_code": error_code,
                "duration_ms": duration_ms,
                "context": context,
            },
        )

    def debug(self, message: str, **context: Any) -> None:
        self.log(logging.DEBUG, message, **context)

    def info(self, message: str, **context: Any) -> None:
        self.log(logging.INFO, message, **context)

    def warning(self, message: str, **context: Any) -> None:
        self.log(logging.WARNING, message, **context)

    def error(self, message: str, error_code: str = "", exc_info: bool = False, **context: Any) -> None:
        self.log(logging.ERROR, message, error_code=error_code, exc_info=exc_info, **context)

    def operation(self, name: str, duration_ms: float, error: Optional[str] = None, **context: Any) -> None:
        """Record the end of a timed operation; ``error`` marks it failed."""
        if error is None:
            self.log(logging.INFO, f"Operation {name} completed", operation=name, duration_ms=duration_ms, **context)
        else:
            self.log(
                logging.WARNING,
                f"Operation {name} failed",
                operation=name,
                duration_ms=duration_ms,
                error=error,
                **context,
            )


def get_logger(name: str, layer: BridgeLayer) -> BridgeLogger:
    return BridgeLogger(name, layer)


def generate_correlation_id() -> str:
    return "corr-" + uuid.uuid4().hex[:12]


def set_correlation_id(correlation_id: str) -> contextvars.Token:
    return correlation_id_var.set(correlation_id)


def get_correlation_id() -> str:
    """Current correlation id; the first call in a fresh context assigns one."""
    current = correlation_id_var.get()
    if current:
        return current
    current = generate_correlation_id()
    correlation_id_var.set(current)
    return current


T = TypeVar("T")


def timed_operation(logger: BridgeLogger, operation_name: str) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Log how long each call takes, and the error code when it raises."""

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            started = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as exc:
                elapsed = (time.perf_counter() - started) * 1000
                logger.operation(operation_name, elapsed, error=getattr(exc, "code", type(exc).__name__))
                raise
            logger.operation(operation_name, (time.perf_counter() - started) * 1000)
            return result
        return wrapper
    return decorator


# =============================================================================
# AUDIT LOG
# =============================================================================

@dataclass
class AuditEvent:
    sequence: int
    timestamp: str
    actor: str
    action: str
    resource_id: str
    outcome: str  # success | denied
    details: Dict[str, Any] = field(default_factory=dict)
    correlation_id: str = ""
    previous_event_digest: Optional[str] = None
    event_digest: str = ""

    def __post_init__(self):
        if not self.event_digest:
            self.event_digest = self.compute_digest()

    def compute_digest(self) -> str:
        """SHA-256 over the canonical JSON of every field except the digest and correlation id."""
        body = asdict(self)
        del body["event_digest"], body["correlation_id"]
        return sha256_hex(canonical_json_bytes(body))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ClaimAuditLog:
    """Append-only, hash-chained record of claims and administrative actions."""

    def __init__(self, logger: Optional[BridgeLogger] = None):
        self._logger = logger or get_logger("audit", BridgeLayer.CLAIM)
        self._events: List[AuditEvent] = []
        self._lock = threading.Lock()

    def log(self, actor: str, action: str, resource_id: str, outcome: str, **details: Any) -> AuditEvent:
        with self._lock:
            event = AuditEvent(
                sequence=len(self._events) + 1,
                timestamp=datetime.now(timezone.utc).isoformat(),
                actor=actor,
                action=action,
                resource_id=resource_id,
                outcome=outcome,
                details=details,
                correlation_id=get_correlation_id(),
                previous_event_digest=self._events[-1].event_digest if self._events else None,
            )
            self._events.append(event)

        self._logger.info(
            f"Audit {action} {outcome}",
            operation="audit",
            actor=actor,
            resource=resource_id,
            digest=event.event_digest,
        )
        return event

    def verify_chain(self) -> Tuple[bool, Optional[int]]:
        """``(True, None)`` if intact, else ``(False, index)`` of the first bad entry."""
        with self._lock:
            previous = None
            for index, event in enumerate(self._events):
                if event.previous_event_digest != previous or event.compute_digest() != event.event_digest:
                    return False, index
                previous = event.event_digest
        return True, None

    def events(self) -> List[AuditEvent]:
        with self._lock:
            return list(self._events)

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)
