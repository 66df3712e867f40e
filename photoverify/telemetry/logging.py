# photoverify/telemetry/logging.py
from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, MutableMapping, Optional, Tuple

from photoverify.middleware.request_id import get_request_id

# Attributes every LogRecord carries; anything else arrived through ``extra``.
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {
    "message",
    "asctime",
}

_HANDLER_MARK = "_photoverify_handler"


def _utc(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _encode(value: Any) -> Any:
    if isinstance(value, datetime):
        return _utc(value)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


class RequestJsonFormatter(logging.Formatter):
    """One JSON line per record, tagged with the request it belongs to.

    Verification context bound with :func:`bind` (tenant, task reference,
    model) and per-call ``extra`` fields land at the top level.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": _utc(datetime.fromtimestamp(record.created, tz=timezone.utc)),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        request_id = getattr(record, "request_id", None) or get_request_id()
        if request_id:
            payload["request_id"] = request_id
        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS and key != "request_id" and not key.startswith("_"):
                payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=_encode, ensure_ascii=False)


def configure_logging(level: str = "INFO", *, json_logs: bool = True) -> None:
    """Install the service's stdout handler on the root logger.

    Calling it again swaps the handler it installed before and leaves any
    other handler in place.
    """
    root = logging.getLogger()
    for handler in [h for h in root.handlers if getattr(h, _HANDLER_MARK, False)]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(stream=sys.stdout)
    setattr(handler, _HANDLER_MARK, True)
    if json_logs:
        handler.setFormatter(RequestJsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root.addHandler(handler)
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))


class VerificationLogAdapter(logging.LoggerAdapter):
    """Adds the bound verification context to each record; call ``extra`` wins on clashes."""

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> Tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        return msg, kwargs


def bind(
    logger: Optional[logging.Logger] = None,
    *,
    tenant_id: Optional[str] = None,
    task_reference: Optional[str] = None,
    model: Optional[str] = None,
    **context: Any,
) -> VerificationLogAdapter:
    """Logger for one verification run; unset identifiers are left out."""
    bound = {"tenant_id": tenant_id, "task_reference": task_reference, "model": model, **context}
    return VerificationLogAdapter(
        logger or logging.getLogger("photoverify"),
        {k: v for k, v in bound.items() if v is not None},
    )
