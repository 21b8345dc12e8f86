"""
Observability - logging, metrics and health for VetChain.

Every log line carries the request id (HTTP) and the connected account
(Session) when they are known, so a failed mint can be traced from the
request to the transaction hash.

Environment:
- VETCHAIN_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
- VETCHAIN_LOG_FORMAT: json or text (default: json in production)
- VETCHAIN_PRODUCTION: enable production defaults

Usage:
    from vetchain.observability import get_logger

    logger = get_logger(__name__)
    logger.info("Asset minted", asset_id=asset_id, tx_hash=tx_hash)
"""

import json
import logging
import os
import sys
import time
import uuid
from collections import deque
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Deque, Dict, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

request_id_var: ContextVar[str] = ContextVar("request_id", default="")
account_var: ContextVar[str] = ContextVar("account", default="")


# ============================================================
# CONFIGURATION
# ============================================================

_TRUTHY = ("1", "true", "yes")


@dataclass(frozen=True)
class LogConfig:
    level: int = logging.INFO
    json_output: bool = False

    @classmethod
    def from_env(cls) -> "LogConfig":
        production = os.environ.get("VETCHAIN_PRODUCTION", "").lower() in _TRUTHY
        fmt = os.environ.get("VETCHAIN_LOG_FORMAT", "").lower()
        level_name = os.environ.get("VETCHAIN_LOG_LEVEL", "INFO").upper()
        level = logging.getLevelName(level_name)
        return cls(
            level=level if isinstance(level, int) else logging.INFO,
            json_output=fmt == "json" or (fmt != "text" and production),
        )


# ============================================================
# STRUCTURED LOGGING
# ============================================================

# Attributes every LogRecord has; anything else came in through `extra`
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}


def _extra_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {
        k: v for k, v in vars(record).items()
        if k not in _RECORD_ATTRS and not k.startswith("_")
    }


def _short_account(account: str) -> str:
    return f"{account[:6]}…{account[-4:]}" if len(account) > 12 else account


class JsonFormatter(logging.Formatter):
    """
    One JSON object per line:

        {"timestamp": "...", "level": "INFO", "logger": "vetchain.core.mutations",
         "message": "Asset minted", "request_id": "3f2a9c1e",
         "account": "0xa1a1...", "asset_id": 9410001, "tx_hash": "0x..."}
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if request_id_var.get():
            entry["request_id"] = request_id_var.get()
        if account_var.get():
            entry["account"] = account_var.get()
        entry.update(_extra_fields(record))
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Readable single-line output for local development."""

    def format(self, record: logging.LogRecord) -> str:
        when = datetime.fromtimestamp(record.created, timezone.utc).strftime("%H:%M:%S")
        tags = ""
        if request_id_var.get():
            tags += f"[{request_id_var.get()[:8]}]"
        if account_var.get():
            tags += f"[{_short_account(account_var.get())}]"
        fields = " ".join(f"{k}={v}" for k, v in _extra_fields(record).items())

        line = f"{when} {record.levelname:<7} {record.name} {tags} {record.getMessage()}"
        if fields:
            line += f"  {fields}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class ContextLogger(logging.LoggerAdapter):
    """
    Adapter that turns keyword arguments into structured fields.

        logger.warning("Asset omitted", asset_id=7, kind="store_unavailable")
    """

    _PASSTHROUGH = ("exc_info", "stack_info", "stacklevel", "extra")

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        fields = dict(kwargs.pop("extra", None) or {})
        for key in [k for k in kwargs if k not in self._PASSTHROUGH]:
            fields[key] = kwargs.pop(key)
        kwargs["extra"] = fields
        return msg, kwargs


def get_logger(name: str) -> ContextLogger:
    return ContextLogger(logging.getLogger(name), {})


def setup_logging(config: Optional[LogConfig] = None) -> None:
    """Install a single stdout handler on the root logger."""
    config = config or LogConfig.from_env()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter() if config.json_output else ConsoleFormatter())

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(config.level)

    for noisy in ("uvicorn.access", "httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


# ============================================================
# REQUEST CONTEXT MIDDLEWARE
# ============================================================

class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Binds a request id for the duration of each request and logs the outcome.

    An incoming X-Request-ID is reused so a frontend can correlate its own
    logs; it is echoed back on the response.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:8]
        token = request_id_var.set(request_id)
        logger = get_logger("vetchain.request")
        route = f"{request.method} {request.url.path}"
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            elapsed = (time.perf_counter() - started) * 1000
            get_metrics().record_request(elapsed, success=False)
            logger.exception(f"{route} -> unhandled error", duration_ms=round(elapsed, 2))
            raise
        else:
            elapsed = (time.perf_counter() - started) * 1000
            get_metrics().record_request(elapsed, success=response.status_code < 500)
            logger.log(
                logging.WARNING if response.status_code >= 400 else logging.INFO,
                f"{route} -> {response.status_code}",
                status_code=response.status_code,
                duration_ms=round(elapsed, 2),
            )
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            request_id_var.reset(token)


# ============================================================
# METRICS
# ============================================================

class LatencyWindow:
    """The most recent latency samples, in milliseconds."""

    def __init__(self, size: int = 1000):
        self._samples: Deque[float] = deque(maxlen=size)

    def add(self, latency_ms: float) -> None:
        self._samples.append(latency_ms)

    def __len__(self) -> int:
        return len(self._samples)

    def percentile(self, p: float) -> Optional[float]:
        if not self._samples:
            return None
        ordered = sorted(self._samples)
        return round(ordered[min(int(len(ordered) * p), len(ordered) - 1)], 2)


@dataclass
class MetricsCollector:
    """
    Process-local counters for the content store, the ledger and HTTP.

    `items_degraded` counts entries an aggregate read omitted because
    their ledger read or document fetch failed.
    """

    content_fetches: int = 0
    content_fetch_failures: int = 0
    content_uploads: int = 0
    content_upload_failures: int = 0
    transactions_submitted: int = 0
    transactions_confirmed: int = 0
    transactions_failed: int = 0
    items_degraded: int = 0
    requests_total: int = 0
    requests_failed: int = 0

    fetch_latency: LatencyWindow = field(default_factory=LatencyWindow)
    finality_latency: LatencyWindow = field(default_factory=LatencyWindow)
    request_latency: LatencyWindow = field(default_factory=LatencyWindow)

    def record_fetch(self, latency_ms: float, success: bool) -> None:
        self.content_fetches += 1
        self.content_fetch_failures += not success
        self.fetch_latency.add(latency_ms)

    def record_upload(self, success: bool) -> None:
        self.content_uploads += 1
        self.content_upload_failures += not success

    def record_submission(self) -> None:
        self.transactions_submitted += 1

    def record_finality(self, latency_ms: float, success: bool) -> None:
        if success:
            self.transactions_confirmed += 1
        else:
            self.transactions_failed += 1
        self.finality_latency.add(latency_ms)

    def record_degraded(self, count: int = 1) -> None:
        self.items_degraded += count

    def record_request(self, latency_ms: float, success: bool) -> None:
        self.requests_total += 1
        self.requests_failed += not success
        self.request_latency.add(latency_ms)

    def get_summary(self) -> Dict[str, Any]:
        summary: Dict[str, Any] = {
            name: getattr(self, name)
            for name in (
                "content_fetches", "content_fetch_failures",
                "content_uploads", "content_upload_failures",
                "transactions_submitted", "transactions_confirmed", "transactions_failed",
                "items_degraded", "requests_total", "requests_failed",
            )
        }
        for label, window in (
            ("fetch", self.fetch_latency),
            ("finality", self.finality_latency),
            ("request", self.request_latency),
        ):
            summary[f"{label}_latency_p50_ms"] = window.percentile(0.5)
            summary[f"{label}_latency_p95_ms"] = window.percentile(0.95)
        return summary


_metrics = MetricsCollector()


def get_metrics() -> MetricsCollector:
    return _metrics


def reset_metrics() -> None:
    """Start from zero (tests)."""
    global _metrics
    _metrics = MetricsCollector()


# ============================================================
# HEALTH CHECKS
# ============================================================

@dataclass
class HealthStatus:
    healthy: bool
    checks: Dict[str, Dict[str, Any]]
    duration_ms: float


def _session_check(session) -> Dict[str, Any]:
    return {
        "status": "healthy" if session.is_connected else "unhealthy",
        "state": session.state.value,
        "chain_id": session.network.chain_id,
    }


def _content_store_check(content_store) -> Dict[str, Any]:
    # Reachability of a remote store is only known on the next upload/fetch
    return {"status": "healthy", "driver": type(content_store).__name__}


def check_health(session=None, content_store=None) -> HealthStatus:
    """
    Health of the service.

    Unhealthy when the session is not connected to the required network;
    no ledger read or write can happen in that state.
    """
    started = time.perf_counter()
    checks: Dict[str, Dict[str, Any]] = {"liveness": {"status": "healthy"}}

    if session is not None:
        checks["session"] = _session_check(session)
    if content_store is not None:
        checks["content_store"] = _content_store_check(content_store)

    return HealthStatus(
        healthy=all(c["status"] == "healthy" for c in checks.values()),
        checks=checks,
        duration_ms=round((time.perf_counter() - started) * 1000, 2),
    )
