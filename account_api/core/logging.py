"""Structured logging for the account API.

Each record is emitted as a single JSON line tagged with the id of the HTTP
request being served. Credentials, webhook signatures and raw gateway answers
are masked before they reach a handler.
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from logging import LogRecord
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Iterable, Mapping

from account_api.core.config import LogSettings, settings

REDACTED = "[REDACTED]"

_request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)

SENSITIVE_KEYS_DEFAULT: set[str] = {
    # service and user credentials
    "api_key",
    "x-api-key",
    "app_api_keys",
    "authorization",
    "token",
    "access_token",
    "password",
    "cookie",
    "set-cookie",
    # deployment secrets
    "secret",
    "client_secret",
    "jwt_secret",
    "service_role_key",
    "webhook_secret",
    # webhook authentication
    "signature",
    "x-webhook-signature",
    "paypal-transmission-sig",
    # raw payment provider payloads
    "gateway_body",
    "gateway_response",
}

# Provider payloads stay readable when APP_DEBUG is on.
DEBUG_VISIBLE_KEYS: set[str] = {"gateway_body", "gateway_response"}

# Attributes every LogRecord carries; anything else arrived through ``extra``.
_STANDARD_ATTRS = set(
    LogRecord("", logging.INFO, "", 0, "", (), None).__dict__
) | {"message", "asctime", "stack"}


def set_request_id(request_id: str | None) -> None:
    _request_id_var.set(request_id)


def get_request_id() -> str | None:
    return _request_id_var.get()


def clear_request_id() -> None:
    _request_id_var.set(None)


def sensitive_keys_for(debug: bool) -> set[str]:
    """Keys to mask; debug deployments keep raw gateway answers visible."""

    if debug:
        return SENSITIVE_KEYS_DEFAULT - DEBUG_VISIBLE_KEYS
    return set(SENSITIVE_KEYS_DEFAULT)


def _mask(value: Any, keys: set[str]) -> Any:
    """Mask sensitive entries at any depth of dicts, lists and tuples."""

    if isinstance(value, Mapping):
        return {
            k: REDACTED if str(k).lower() in keys else _mask(v, keys)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return type(value)(_mask(item, keys) for item in value)
    return value


def _extra_fields(record: LogRecord, keys: set[str]) -> dict[str, Any]:
    """Fields passed through ``extra=``, masked."""

    fields: dict[str, Any] = {}
    for name, value in record.__dict__.items():
        if name in _STANDARD_ATTRS or name.startswith("_"):
            continue
        fields[name] = REDACTED if name.lower() in keys else _mask(value, keys)
    return fields


class RequestIdFilter(logging.Filter):
    """Copy the active request id onto records that lack one."""

    def filter(self, record: LogRecord) -> bool:  # noqa: D401
        if getattr(record, "request_id", None) is None:
            request_id = get_request_id()
            if request_id:
                record.request_id = request_id
        return True


class SensitiveDataFilter(logging.Filter):
    """Mask sensitive ``extra`` fields in place.

    Runs on the handler so plain-text output is protected as well as JSON.
    """

    def __init__(self, sensitive_keys: Iterable[str] | None = None) -> None:
        super().__init__()
        self.sensitive_keys = set(sensitive_keys or SENSITIVE_KEYS_DEFAULT)

    def filter(self, record: LogRecord) -> bool:  # noqa: D401
        for name, value in _extra_fields(record, self.sensitive_keys).items():
            setattr(record, name, value)
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per record: timestamp, level, logger, message, extras."""

    def __init__(
        self,
        *,
        sensitive_keys: Iterable[str] | None = None,
        ensure_ascii: bool = True,
    ) -> None:
        super().__init__()
        self.sensitive_keys = set(sensitive_keys or SENSITIVE_KEYS_DEFAULT)
        self.ensure_ascii = ensure_ascii

    def format(self, record: LogRecord) -> str:  # noqa: D401
        payload: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        request_id = getattr(record, "request_id", None) or get_request_id()
        if request_id:
            payload["request_id"] = request_id
        payload.update(_extra_fields(record, self.sensitive_keys))
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str, ensure_ascii=self.ensure_ascii)


def _handler_for(cfg: LogSettings) -> logging.Handler:
    if cfg.output.lower() != "file":
        return logging.StreamHandler(sys.stdout)

    path = Path(cfg.file_path or "logs/account-api.log")
    path.parent.mkdir(parents=True, exist_ok=True)
    if cfg.max_bytes:
        return RotatingFileHandler(
            path,
            maxBytes=cfg.max_bytes,
            backupCount=cfg.backup_count,
            encoding="utf-8",
        )
    return logging.FileHandler(path, encoding="utf-8")


def configure_logging(
    log_settings: LogSettings | None = None, *, debug: bool | None = None
) -> None:
    """Install the single root handler used by the service.

    Args:
        log_settings: LOG_* settings; the global settings when omitted.
        debug: Overrides ``settings.app.debug`` when choosing what to mask.
    """

    cfg = log_settings or settings.log
    keys = sensitive_keys_for(settings.app.debug if debug is None else debug)

    handler = _handler_for(cfg)
    handler.addFilter(RequestIdFilter())
    handler.addFilter(SensitiveDataFilter(keys))
    if cfg.format.lower() == "plain":
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    else:
        handler.setFormatter(JsonFormatter(sensitive_keys=keys))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, cfg.level.upper(), logging.INFO))

    # uvicorn installs its own handlers; keep its records off the root handler
    logging.getLogger("uvicorn").propagate = False
    logging.getLogger("uvicorn.access").propagate = False
