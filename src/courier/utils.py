"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Small clock, id and text helpers shared across subsystems.
"""

from __future__ import annotations

import json
import os
import time
import uuid
from pathlib import Path
from typing import Any, Callable

Clock = Callable[[], int]
IdFactory = Callable[[], str]


def now_ms() -> int:
    """Return current Unix epoch time in milliseconds."""
    return int(time.time() * 1000)


def new_id(prefix: str = "job") -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


def truncate_utf8(text: str, max_bytes: int) -> str:
    """
    Truncate `text` so its UTF-8 encoding fits in `max_bytes`.

    Never splits a multi-byte character; a partial trailing sequence is dropped.
    """
    if max_bytes <= 0:
        return ""
    encoded = text.encode("utf-8")
    if len(encoded) <= max_bytes:
        return text
    return encoded[:max_bytes].decode("utf-8", errors="ignore")


def json_dumps(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, indent=2)


def atomic_write_json(path: Path, payload: Any) -> None:
    """
    Write `payload` as JSON to `path` via a sibling temp file and `os.replace`.

    Readers observe either the previous document or the new one, never a
    partial write.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f"{path.name}.{uuid.uuid4().hex[:8]}.tmp")
    try:
        tmp.write_text(json_dumps(payload), encoding="utf-8")
        os.replace(tmp, path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise


def read_json(path: Path) -> Any | None:
    """Load one JSON document, or None when the file does not exist."""
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    return json.loads(raw)
