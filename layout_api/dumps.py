import json
import logging
import os
import time
import uuid
from pathlib import Path
from typing import Any, Dict, Optional

log = logging.getLogger(__name__)


DUMPS_ENABLED = os.getenv("DEBUG_DUMPS", "0").lower() in {"1", "true", "yes", "on"}
DUMP_DIR = Path(os.getenv("DEBUG_DUMP_DIR", "cache/dumps"))
DUMP_MAX = int(os.getenv("DEBUG_DUMP_MAX", "50") or 50)


def _list_files() -> list[Path]:
    if not DUMP_DIR.exists():
        return []
    return sorted(DUMP_DIR.glob("*.json"))


def _prune() -> None:
    files = _list_files()
    for path in files[: max(0, len(files) - DUMP_MAX)]:
        path.unlink(missing_ok=True)


def dump_generation(
    label: str,
    raw: Optional[str],
    parsed: Optional[Dict[str, Any]],
    meta: Optional[Dict[str, Any]] = None,
) -> Optional[Path]:
    """Write one generation to the dump dir when enabled; returns the file path.

    Never raises: a failed dump is logged and skipped.
    """
    if not DUMPS_ENABLED:
        return None
    safe_label = "".join(ch if ch.isalnum() or ch in "-_" else "-" for ch in (label or "design"))[:40]
    # Nanosecond prefix keeps files in write order for pruning
    path = DUMP_DIR / f"{time.time_ns()}-{safe_label}-{uuid.uuid4().hex[:8]}.json"
    try:
        DUMP_DIR.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".tmp")
        payload = {"label": label, "raw": raw, "parsed": parsed, "meta": meta or {}}
        tmp.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        tmp.replace(path)
        _prune()
    except Exception:
        log.warning("dumps: failed to write %s", path.name, exc_info=True)
        return None
    log.debug("dumps: wrote %s", path.name)
    return path
