"""
Central logging for ServiceSync.

- Console handler on stderr: INFO..CRITICAL
- Timed rotated file handler: DEBUG (logs/app.log, daily rotation)
- Per-run file handler: DEBUG (logs/YYYY-MM-DD/<action>_<run_id>.log)
- Secret redaction: bearer tokens, passwords, api keys in msg and args
- UTC timestamps in ISO-8601
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import re
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

_FORMAT = (
    "%(asctime)s | %(levelname)-8s | %(name)s | "
    "run=%(run_id)s action=%(action)s ns=%(namespace)s owner=%(owner)s | "
    "%(message)s"
)


class MaskSecretsFilter(logging.Filter):
    """Redact bearer tokens, API keys and passwords from log records."""

    _patterns = [
        re.compile(r"(Authorization:\s*Bearer\s+)([A-Za-z0-9._-]+)", re.IGNORECASE),
        re.compile(r"(Bearer\s+)([A-Za-z0-9._-]{8,})", re.IGNORECASE),
        re.compile(r"(api[_-]?key\s*[=:]\s*)([A-Za-z0-9._-]+)", re.IGNORECASE),
        re.compile(r"(password\s*[=:]\s*)([^,\s]+)", re.IGNORECASE),
        re.compile(r"(\btoken\s*[=:]\s*)([A-Za-z0-9._-]+)", re.IGNORECASE),
    ]

    @classmethod
    def mask(cls, text: str) -> str:
        for pat in cls._patterns:
            text = pat.sub(r"\1***REDACTED***", text)
        return text

    def filter(self, record: logging.LogRecord) -> bool:
        if record.args:
            if isinstance(record.args, dict):
                record.args = {k: self.mask(str(v)) for k, v in record.args.items()}
            else:
                record.args = tuple(self.mask(a) if isinstance(a, str) else a for a in record.args)
        if isinstance(record.msg, str):
            record.msg = self.mask(record.msg)
        return True


class _ContextDefaults(logging.Filter):
    """Fill the context fields for records that did not come through the adapter."""

    _fields = ("run_id", "action", "namespace", "owner")

    def filter(self, record: logging.LogRecord) -> bool:
        for f in self._fields:
            if not hasattr(record, f):
                setattr(record, f, "-")
        return True


def _utc_formatter(fmt: str) -> logging.Formatter:
    f = logging.Formatter(fmt=fmt, datefmt="%Y-%m-%dT%H:%M:%SZ")
    f.converter = time.gmtime  # type: ignore[attr-defined]
    return f


def _level(name: str, default: int) -> int:
    return getattr(logging, str(name).upper(), default)


def _prepare(handler: logging.Handler, level: int, formatter: logging.Formatter) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    handler.addFilter(_ContextDefaults())
    handler.addFilter(MaskSecretsFilter())
    return handler


def _reset_console_handler(base: logging.Logger, level: int, formatter: logging.Formatter) -> None:
    """
    Keep exactly one StreamHandler bound to the current sys.stderr
    (pytest swaps stdio between tests).
    """
    for h in list(base.handlers):
        if type(h) is logging.StreamHandler:
            base.removeHandler(h)
            h.close()
    base.addHandler(_prepare(logging.StreamHandler(stream=sys.stderr), level, formatter))


def _ensure_app_file_handler(base: logging.Logger, base_dir: str, level: int, formatter: logging.Formatter) -> None:
    """Point a single TimedRotatingFileHandler at <base_dir>/app.log."""
    os.makedirs(base_dir, exist_ok=True)
    desired = os.path.abspath(os.path.join(base_dir, "app.log"))

    for h in list(base.handlers):
        if isinstance(h, logging.handlers.TimedRotatingFileHandler):
            if os.path.abspath(h.baseFilename) == desired:
                return
            base.removeHandler(h)
            h.close()

    rh = logging.handlers.TimedRotatingFileHandler(
        desired, when="midnight", backupCount=14, encoding="utf-8", utc=True, delay=False,
    )
    base.addHandler(_prepare(rh, level, formatter))


def build_logger(
    *,
    name: str = "svcsync",
    run_id: str,
    action: str,
    base_dir: str = "logs",
    console_level: str = "INFO",
    file_level: str = "DEBUG",
    extra: Optional[Dict[str, Any]] = None,
) -> logging.LoggerAdapter:
    """
    Configure and return a LoggerAdapter.

    A base logger `<name>` holds the console + rotating sinks, a child
    `<name>.<action>.<run_id>` holds the per-run file; records propagate up.
    Library modules log on `<name>.http` / `<name>.reconciler` and reach the
    base sinks as well.
    """
    formatter = _utc_formatter(_FORMAT)
    file_lvl = _level(file_level, logging.DEBUG)

    base = logging.getLogger(name)
    base.setLevel(logging.DEBUG)
    _reset_console_handler(base, _level(console_level, logging.INFO), formatter)
    _ensure_app_file_handler(base, base_dir, file_lvl, formatter)

    child = logging.getLogger(f"{name}.{action}.{run_id}")
    child.setLevel(logging.DEBUG)
    child.propagate = True

    if not any(isinstance(h, logging.FileHandler) for h in child.handlers):
        dated_dir = os.path.join(base_dir, datetime.now(timezone.utc).strftime("%Y-%m-%d"))
        os.makedirs(dated_dir, exist_ok=True)
        action_file = Path(dated_dir) / f"{action}_{run_id}.log"
        child.addHandler(_prepare(logging.FileHandler(action_file, encoding="utf-8"), file_lvl, formatter))

    ctx = extra or {}
    adapter = logging.LoggerAdapter(
        child,
        {
            "run_id": run_id,
            "action": action,
            "namespace": ctx.get("namespace") or "-",
            "owner": ctx.get("owner") or "-",
        },
    )
    adapter.debug("Logger initialised")
    return adapter
