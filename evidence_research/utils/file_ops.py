"""Atomic file operations and run output directories."""

import os
import re
import json
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Union

PathLike = Union[str, Path]


def atomic_write_bytes(path: PathLike, data: bytes) -> None:
    """Write bytes atomically using temp file + rename."""
    path = str(path)
    directory = os.path.dirname(path) or "."
    os.makedirs(directory, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=directory, prefix=".tmp.")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp, path)
    finally:
        if os.path.exists(tmp):
            os.remove(tmp)


def atomic_write_text(path: PathLike, text: str, encoding: str = "utf-8") -> None:
    """Write text atomically."""
    atomic_write_bytes(path, text.encode(encoding))


def atomic_write_json(path: PathLike, obj: Dict[str, Any], indent: int = 2) -> None:
    """Write JSON atomically."""
    atomic_write_text(path, json.dumps(obj, indent=indent, ensure_ascii=False, default=str))


def run_output_dir(base: PathLike, query: str, now: datetime = None) -> Path:
    """Build a per-run subdirectory name from the query and a UTC timestamp."""
    now = now or datetime.now(timezone.utc)
    slug = re.sub(r"[^\w\s-]", "", query.lower())
    slug = re.sub(r"[\s_-]+", "_", slug).strip("_")[:50] or "query"
    return Path(base) / f"{slug}_{now.strftime('%Y%m%d_%H%M%S')}"
