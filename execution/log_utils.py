"""Thread-safe JSONL audit logging with size-based rotation."""

from __future__ import annotations

import dataclasses
import datetime as _dt
import gzip
import json
import logging
import os
import shutil
import socket
import threading
from pathlib import Path
from typing import Any, Dict, Mapping, MutableMapping

REPO_ROOT = Path(__file__).resolve().parent.parent
_HOSTNAME = socket.gethostname()

LOG = logging.getLogger("log_utils")


class JsonlLogger:
    """Append-only JSONL writer; rotates to ``name.N.jsonl`` past ``max_bytes``."""

    def __init__(self, path: Path, max_bytes: int, backup_count: int) -> None:
        self._path = path
        self.max_bytes = max_bytes
        self.backup_count = backup_count
        self._lock = threading.RLock()
        self._archive_root = self._path.parent / "archive"

    @property
    def path(self) -> Path:
        return self._path

    def write(self, record: Mapping[str, Any] | None) -> None:
        """Persist the provided record as a JSONL line."""
        payload = safe_dump(record or {})
        line = json.dumps(payload, ensure_ascii=False)
        encoded = f"{line}\n".encode("utf-8")

        with self._lock:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._rotate_if_needed(len(encoded))
            with self._path.open("ab") as handle:
                handle.write(encoded)
                handle.flush()
                os.fsync(handle.fileno())

    def _indexed_path(self, index: int) -> Path:
        if index == 0:
            return self._path
        suffix = self._path.suffix
        base_name = self._path.name
        base = base_name[: -len(suffix)] if suffix else base_name
        return self._path.with_name(f"{base}.{index}{suffix}")

    def _rotate_if_needed(self, incoming_len: int) -> None:
        if self.backup_count <= 0 or self.max_bytes <= 0 or not self._path.exists():
            return
        try:
            current_size = self._path.stat().st_size
        except FileNotFoundError:
            return
        if current_size + incoming_len <= self.max_bytes:
            return

        oldest = self._indexed_path(self.backup_count)
        if oldest.exists():
            self._archive_file(oldest)
        for idx in range(self.backup_count, 0, -1):
            src = self._indexed_path(idx - 1)
            if src.exists():
                os.replace(src, self._indexed_path(idx))

    def _archive_file(self, path: Path) -> None:
        self._archive_root.mkdir(parents=True, exist_ok=True)
        stamp = _dt.datetime.now(tz=_dt.timezone.utc).strftime("%Y%m%dT%H%M%S")
        archive_path = self._archive_root / f"{path.name}.{stamp}.gz"
        try:
            with path.open("rb") as src, gzip.open(archive_path, "wb") as dst:
                shutil.copyfileobj(src, dst)
            path.unlink(missing_ok=True)
            LOG.debug("[log_utils] archived %s -> %s", path, archive_path)
        except OSError as exc:
            LOG.warning("[log_utils] archive failed for %s: %s", path, exc)


_LOGGERS: Dict[str, JsonlLogger] = {}
_LOGGERS_LOCK = threading.Lock()


def get_logger(
    path: str, max_bytes: int = 10_000_000, backup_count: int = 5
) -> JsonlLogger:
    """Return a shared logger per target path, resolving relative paths under the repo root."""
    target = Path(path)
    if not target.is_absolute():
        target = REPO_ROOT / target
    key = str(target)
    with _LOGGERS_LOCK:
        logger = _LOGGERS.get(key)
        if logger is None:
            logger = JsonlLogger(target, max_bytes=max_bytes, backup_count=backup_count)
            _LOGGERS[key] = logger
        return logger


def append_jsonl(path: Path, record: Mapping[str, Any] | None) -> None:
    """Append a JSON serializable record to a JSONL file, creating parents if needed."""
    payload = safe_dump(record or {})
    path.parent.mkdir(parents=True, exist_ok=True)
    line = json.dumps(payload, ensure_ascii=False)
    with path.open("a", encoding="utf-8") as handle:
        handle.write(f"{line}\n")


def read_jsonl(path: Path) -> list:
    """Read every decodable line of a JSONL file; missing file reads as empty."""
    if not path.exists():
        return []
    rows = []
    with path.open("r", encoding="utf-8") as handle:
        for line in handle:
            line = line.strip()
            if not line:
                continue
            try:
                rows.append(json.loads(line))
            except json.JSONDecodeError:
                LOG.warning("[log_utils] skipping malformed line in %s", path)
    return rows


def log_event(logger: JsonlLogger, event_type: str, payload: Mapping[str, Any] | None) -> None:
    event: MutableMapping[str, Any] = safe_dump(payload or {})
    event.update(
        {
            "ts": _dt.datetime.now(tz=_dt.timezone.utc).isoformat(),
            "event_type": event_type,
            "pid": os.getpid(),
            "hostname": _HOSTNAME,
        }
    )
    logger.write(event)


def audit_event(path: str, event_type: str, payload: Mapping[str, Any] | None) -> bool:
    """Best-effort audit write; an unwritable log never fails the request."""
    try:
        log_event(get_logger(path), event_type, payload)
        return True
    except OSError as exc:
        LOG.warning("[audit] write failed for %s: %s", event_type, exc)
        return False


def safe_dump(obj: Any) -> MutableMapping[str, Any]:
    """Return a dict that can be JSON-serialized by coercing complex objects."""

    def coerce(value: Any) -> Any:
        if value is None or isinstance(value, (str, int, float, bool)):
            return value
        if isinstance(value, Mapping):
            return {str(k): coerce(v) for k, v in value.items()}
        if dataclasses.is_dataclass(value) and not isinstance(value, type):
            return coerce(dataclasses.asdict(value))
        if isinstance(value, (list, tuple, set)):
            return [coerce(v) for v in value]
        if isinstance(value, _dt.datetime):
            item = value
            if item.tzinfo is None:
                item = item.replace(tzinfo=_dt.timezone.utc)
            return item.astimezone(_dt.timezone.utc).isoformat()
        if isinstance(value, _dt.date):
            return value.isoformat()
        if hasattr(value, "__dict__"):
            return {str(k): coerce(v) for k, v in vars(value).items()}
        return repr(value)

    if obj is None:
        return {}
    if isinstance(obj, Mapping):
        return {str(k): coerce(v) for k, v in obj.items()}
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return safe_dump(dataclasses.asdict(obj))
    if hasattr(obj, "__dict__"):
        return safe_dump(vars(obj))
    return {"value": coerce(obj)}


__all__ = [
    "JsonlLogger",
    "append_jsonl",
    "audit_event",
    "get_logger",
    "log_event",
    "read_jsonl",
    "safe_dump",
]
