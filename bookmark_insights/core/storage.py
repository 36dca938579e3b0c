"""JSON file persistence helpers.

All on-disk state (records, metric cache rows, settings) is plain JSON written
with temp file + rename so a crash never leaves a half-written file.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any


def load_json(path: Path, default: Any) -> Any:
    """Load JSON from ``path``, returning ``default`` if the file is missing."""
    if not path.exists():
        return default

    with open(path, encoding="utf-8") as f:
        return json.load(f)


def atomic_write_json(path: Path, data: Any, *, prefix: str = ".state_") -> None:
    """Write ``data`` to ``path`` atomically.

    Creates parent directories if they don't exist.

    Args:
        path: Destination file.
        data: JSON-serializable payload.
        prefix: Prefix for the temporary file created next to ``path``.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=prefix, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        # Atomic rename - the file is never partially written
        os.replace(temp_path, path)
    except Exception:
        if os.path.exists(temp_path):
            os.unlink(temp_path)
        raise
