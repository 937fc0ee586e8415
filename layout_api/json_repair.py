from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Iterator, List, Optional, Sequence, Tuple

log = logging.getLogger(__name__)

Pass = Callable[[str], str]
Accept = Callable[[Any], bool]

# Escape-aware double-quoted JSON string. Every structural pass matches this
# alternative first and hands it back untouched, so string contents survive.
_DQ = r'(?P<s>"(?:\\.|[^"\\])*")'

_FENCE_RE = re.compile(r"```[^\S\r\n]*[\w+.-]*")
_COMMENT_RE = re.compile(_DQ + r"|//[^\r\n]*|/\*[\s\S]*?\*/")
_SMART_QUOTE_RE = re.compile(_DQ + r"|(?P<q>[“”„‘’])")
_SINGLE_QUOTED_RE = re.compile(_DQ + r"|'(?P<body>(?:\\.|[^'\\\r\n])*)'")
_BARE_KEY_RE = re.compile(_DQ + r"|(?P<pre>[{,]\s*)(?P<key>[A-Za-z_$][\w$-]*)(?P<post>\s*:)")
_BARE_HEX_RE = re.compile(_DQ + r"|(?<![\w#\"])(?P<hex>#(?:[0-9A-Fa-f]{6}|[0-9A-Fa-f]{3}))(?![\w])")
_MISSING_COMMA_RE = re.compile(_DQ + r"|\}(?P<ws>\s*)\{")
_TRAILING_COMMA_RE = re.compile(_DQ + r"|,(?P<close>\s*[}\]])")
_UNESCAPED_DQ_RE = re.compile(r'(?<!\\)"')
_FRAMES_KEY_RE = re.compile(r'"frames"\s*:\s*\[')

_DOUBLE_SMART = {"“", "”", "„"}


@dataclass(frozen=True)
class RepairResult:
    """Outcome of a repair attempt; ``stage`` names the stage that succeeded."""

    ok: bool
    value: Any = None
    stage: Optional[str] = None
    error: Optional[str] = None


def _keep_strings(repl: Callable[[re.Match[str]], str]) -> Callable[[re.Match[str]], str]:
    def _sub(m: re.Match[str]) -> str:
        if m.group("s") is not None:
            return m.group("s")
        return repl(m)

    return _sub


# ---- stage 2: decoration ----

def strip_fences(text: str) -> str:
    """Drop Markdown fence markers with or without a language tag."""
    return _FENCE_RE.sub("", text)


def strip_comments(text: str) -> str:
    """Drop // line comments and /* block */ comments outside of strings."""
    return _COMMENT_RE.sub(_keep_strings(lambda m: ""), text)


def strip_whitespace(text: str) -> str:
    return text.strip()


# ---- stage 3: structural normalization ----

def normalize_smart_quotes(text: str) -> str:
    def _repl(m: re.Match[str]) -> str:
        return '"' if m.group("q") in _DOUBLE_SMART else "'"

    return _SMART_QUOTE_RE.sub(_keep_strings(_repl), text)


def single_to_double_quotes(text: str) -> str:
    def _repl(m: re.Match[str]) -> str:
        body = m.group("body").replace("\\'", "'")
        return '"' + _UNESCAPED_DQ_RE.sub('\\\\"', body) + '"'

    return _SINGLE_QUOTED_RE.sub(_keep_strings(_repl), text)


def quote_bare_keys(text: str) -> str:
    return _BARE_KEY_RE.sub(
        _keep_strings(lambda m: f'{m.group("pre")}"{m.group("key")}"{m.group("post")}'),
        text,
    )


def quote_hex_colors(text: str) -> str:
    return _BARE_HEX_RE.sub(_keep_strings(lambda m: f'"{m.group("hex")}"'), text)


def insert_missing_commas(text: str) -> str:
    return _MISSING_COMMA_RE.sub(_keep_strings(lambda m: "}," + m.group("ws") + "{"), text)


def remove_trailing_commas(text: str) -> str:
    return _TRAILING_COMMA_RE.sub(_keep_strings(lambda m: m.group("close")), text)


DECORATION_PASSES: Tuple[Pass, ...] = (strip_fences, strip_comments, strip_whitespace)

# Quote fixes run before key quoting so a single-quoted value holding ", x:"
# is already a proper string when keys are matched.
STRUCTURAL_PASSES: Tuple[Pass, ...] = (
    normalize_smart_quotes,
    single_to_double_quotes,
    quote_bare_keys,
    quote_hex_colors,
    insert_missing_commas,
    remove_trailing_commas,
)


# ---- stage 4: substring extraction ----

def _balanced_spans(text: str, opener: str = "{", closer: str = "}", start: int = 0) -> Iterator[str]:
    """Yield each outermost balanced opener..closer span, string-aware."""
    depth = 0
    begin = -1
    in_str = False
    esc = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_str:
            if esc:
                esc = False
            elif ch == "\\":
                esc = True
            elif ch == '"':
                in_str = False
            continue
        if ch == '"':
            in_str = depth > 0
        elif ch == opener:
            if depth == 0:
                begin = i
            depth += 1
        elif ch == closer and depth > 0:
            depth -= 1
            if depth == 0:
                yield text[begin : i + 1]
                if opener == "[":
                    return


def extract_object_candidates(text: str) -> List[str]:
    """Candidate spans for stage 4: balanced objects, then a wrapped frames array."""
    candidates = list(_balanced_spans(text))
    m = _FRAMES_KEY_RE.search(text)
    if m:
        for array in _balanced_spans(text, "[", "]", start=m.end() - 1):
            candidates.append('{"frames": ' + array + "}")
    return candidates


# ---- runner ----

def has_frames(value: Any) -> bool:
    """Default acceptance: an object with a non-empty ``frames`` list of objects."""
    if not isinstance(value, dict):
        return False
    frames = value.get("frames")
    return isinstance(frames, list) and any(isinstance(f, dict) for f in frames)


def _try_parse(text: str, accept: Accept) -> Tuple[bool, Any]:
    if not text:
        return False, None
    try:
        value = json.loads(text, strict=False)
    except (ValueError, RecursionError):
        # RecursionError: nesting deeper than the decoder's stack allows
        return False, None
    return accept(value), value


def _apply(text: str, passes: Sequence[Pass]) -> str:
    for p in passes:
        text = p(text)
    return text


def _try_structural(text: str, accept: Accept) -> Tuple[bool, Any]:
    """Apply structural passes cumulatively, parsing after each one."""
    for p in STRUCTURAL_PASSES:
        text = p(text)
        ok, value = _try_parse(text, accept)
        if ok:
            return True, value
    return False, None


def repair_json(text: Optional[str], accept: Accept = has_frames) -> RepairResult:
    """Best-effort recovery of a design object from model output.

    Stages escalate in order and stop at the first value that parses and is
    accepted: direct parse, stripped decoration, structural normalization,
    extraction of an embedded object. Never raises; failure is reported in
    the result.
    """
    if not isinstance(text, str) or not text.strip():
        return RepairResult(ok=False, error="empty input")

    ok, value = _try_parse(text, accept)
    if ok:
        return RepairResult(ok=True, value=value, stage="direct")

    stripped = _apply(text, DECORATION_PASSES)
    ok, value = _try_parse(stripped, accept)
    if ok:
        log.debug("json_repair: recovered after stripping decoration")
        return RepairResult(ok=True, value=value, stage="stripped")

    ok, value = _try_structural(stripped, accept)
    if ok:
        log.debug("json_repair: recovered after structural normalization")
        return RepairResult(ok=True, value=value, stage="normalized")

    for candidate in extract_object_candidates(stripped):
        ok, value = _try_parse(candidate, accept)
        if not ok:
            ok, value = _try_structural(candidate, accept)
        if ok:
            log.debug("json_repair: recovered embedded object len=%d", len(candidate))
            return RepairResult(ok=True, value=value, stage="extracted")

    log.debug("json_repair: unrecoverable input len=%d", len(text))
    return RepairResult(ok=False, error="no parseable design object found")
