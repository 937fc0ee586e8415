from __future__ import annotations

import json
import logging
import re
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from jsonschema.validators import Draft202012Validator

from layout_api import json_repair

log = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).resolve().parent / "schemas" / "design_schema.json"

ELEMENT_TYPES = ("text", "rectangle", "button", "input", "circle", "line", "icon", "group", "frame")
DEFAULT_WIDTH = 1920
DEFAULT_HEIGHT = 1080
DEFAULT_BACKGROUND = "#FFFFFF"
DEFAULT_PRIMARY = "#2563EB"
DEFAULT_TEXT = "#111827"

_HEX_RE = re.compile(r"^#(?:[0-9A-Fa-f]{3}|[0-9A-Fa-f]{6}|[0-9A-Fa-f]{8})$")
_NUMBER_RE = re.compile(r"^\s*(-?\d+(?:\.\d+)?)\s*(?:px)?\s*$")


def _is_frame(value: Any) -> bool:
    return isinstance(value, dict) and str(value.get("type") or "").lower() == "frame"


def _has_frame_list(value: Any) -> bool:
    return isinstance(value, list) and any(isinstance(f, dict) for f in value)


def detect_shape(value: Any) -> Optional[str]:
    """Name the known design shape ``value`` carries, or None.

    - ``frames``: ``{"frames": [...]}``
    - ``nested``: ``{"design": {"frames": [...]}}``
    - ``legacy``: ``{"design": {<root frame>}, "elements": [...]}``
    - ``single_frame``: a bare frame object
    """
    if not isinstance(value, dict):
        return None
    if _has_frame_list(value.get("frames")):
        return "frames"
    design = value.get("design")
    if isinstance(design, dict):
        if _has_frame_list(design.get("frames")):
            return "nested"
        if isinstance(value.get("elements"), list):
            return "legacy"
    if _is_frame(value):
        return "single_frame"
    return None


def _number(value: Any, default: float) -> float:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        m = _NUMBER_RE.match(value)
        if m:
            num = float(m.group(1))
            return int(num) if num.is_integer() else num
    return default


def _hex(value: Any, default: str) -> str:
    if isinstance(value, str) and _HEX_RE.match(value.strip()):
        return value.strip()
    return default


def _normalize_children(children: Any) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    if not isinstance(children, list):
        return out
    for child in children:
        if not isinstance(child, dict):
            continue
        kind = str(child.get("type") or "").lower()
        if kind not in ELEMENT_TYPES:
            log.debug("documents: dropping element of unknown type %r", child.get("type"))
            continue
        if kind == "frame":
            out.append(normalize_frame(child, len(out)))
            continue
        element = dict(child)
        element["type"] = kind
        if "children" in child or kind == "group":
            element["children"] = _normalize_children(child.get("children"))
        out.append(element)
    return out


def normalize_frame(raw: Dict[str, Any], index: int = 0) -> Dict[str, Any]:
    """Fill the fields every frame must carry and clean its children."""
    frame = dict(raw)
    frame["type"] = "frame"
    frame["name"] = str(raw.get("name") or f"Frame {index + 1}")
    frame["x"] = _number(raw.get("x"), 0)
    frame["y"] = _number(raw.get("y"), 0)
    frame["width"] = _number(raw.get("width"), DEFAULT_WIDTH)
    frame["height"] = _number(raw.get("height"), DEFAULT_HEIGHT)
    frame["backgroundColor"] = _hex(
        raw.get("backgroundColor") or raw.get("background") or raw.get("fill"), DEFAULT_BACKGROUND
    )
    frame.pop("background", None)
    frame["children"] = _normalize_children(raw.get("children"))
    return frame


def decode_document(value: Any) -> Optional[Dict[str, Any]]:
    """Turn a repaired value into ``{"frames": [...]}``; None for unknown shapes."""
    shape = detect_shape(value)
    if shape == "frames":
        raw_frames = value["frames"]
    elif shape == "nested":
        raw_frames = value["design"]["frames"]
    elif shape == "legacy":
        root = dict(value["design"])
        root["children"] = value["elements"]
        raw_frames = [root]
    elif shape == "single_frame":
        raw_frames = [value]
    else:
        return None
    usable = [f for f in raw_frames if isinstance(f, dict)]
    frames = [normalize_frame(f, i) for i, f in enumerate(usable)]
    if not frames:
        return None
    return {"frames": frames}


def default_document(
    title: str,
    page_type: str = "home",
    colors: Optional[Dict[str, Optional[str]]] = None,
) -> Dict[str, Any]:
    """Deterministic single-frame document served when generation fails."""
    colors = colors or {}
    background = _hex(colors.get("background"), DEFAULT_BACKGROUND)
    primary = _hex(colors.get("primary"), DEFAULT_PRIMARY)
    text_color = _hex(colors.get("text"), DEFAULT_TEXT)
    heading = (title or "Untitled").strip()[:80] or "Untitled"
    page_label = (page_type or "home").replace("_", " ").title()
    return {
        "frames": [
            {
                "type": "frame",
                "name": f"{heading} - {page_label}",
                "x": 0,
                "y": 0,
                "width": DEFAULT_WIDTH,
                "height": DEFAULT_HEIGHT,
                "backgroundColor": background,
                "children": [
                    {
                        "type": "text",
                        "name": "Title",
                        "x": 160,
                        "y": 160,
                        "content": heading,
                        "fontSize": 48,
                        "fontFamily": "Inter",
                        "fontWeight": 700,
                        "color": text_color,
                    },
                    {
                        "type": "text",
                        "name": "Subtitle",
                        "x": 160,
                        "y": 240,
                        "content": f"{page_label} page",
                        "fontSize": 20,
                        "fontFamily": "Inter",
                        "color": text_color,
                    },
                    {
                        "type": "button",
                        "name": "Primary Button",
                        "x": 160,
                        "y": 320,
                        "width": 200,
                        "height": 52,
                        "label": "Get Started",
                        "backgroundColor": primary,
                        "textColor": "#FFFFFF",
                        "cornerRadius": 8,
                    },
                ],
            }
        ]
    }


def parse_design(
    raw_text: Optional[str],
    title: str,
    page_type: str = "home",
    colors: Optional[Dict[str, Optional[str]]] = None,
) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """Repair and decode model output; substitute the default document on failure.

    Returns (document, meta) where meta carries the repair stage, the decoded
    shape and whether the fallback was used.
    """
    result = json_repair.repair_json(raw_text, accept=lambda v: detect_shape(v) is not None)
    doc = decode_document(result.value) if result.ok else None
    if doc is None:
        log.warning(
            "documents.parse_design: falling back to default document (stage=%s error=%s)",
            result.stage,
            result.error,
        )
        meta = {"stage": result.stage, "shape": None, "fallback": True, "error": result.error}
        return default_document(title, page_type, colors), meta
    return doc, {"stage": result.stage, "shape": detect_shape(result.value), "fallback": False}


@lru_cache(maxsize=1)
def _validator() -> Draft202012Validator:
    schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
    Draft202012Validator.check_schema(schema)
    return Draft202012Validator(schema)


def validate_document(doc: Any) -> Tuple[bool, List[Dict[str, str]]]:
    """Return (valid, errors) with errors as {"path", "message"} dicts."""
    errors: List[Dict[str, str]] = []
    for err in sorted(_validator().iter_errors(doc), key=lambda e: [str(p) for p in e.absolute_path]):
        loc = ".".join(str(p) for p in err.absolute_path) or "(root)"
        errors.append({"path": loc, "message": str(err.message)})
    return not errors, errors
