from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from layout_api import page_rules

log = logging.getLogger(__name__)

RETENTION_SECONDS = 24 * 60 * 60
INTERACTIVE_TYPES = ("button", "input")


class SessionStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


class RecordStatus(str, Enum):
    RECORDED = "recorded"
    NOT_FOUND = "not_found"
    COMPLETED = "completed"


@dataclass
class InteractiveElement:
    page_type: str
    element_type: str
    text: str
    action: str
    name: str = ""


@dataclass
class Page:
    page_type: str
    frames: List[Dict[str, Any]]
    created_at: float


@dataclass
class ProjectSession:
    """One multi-page generation run.

    Mutated only by ``SessionStore`` while holding ``lock``.
    """

    id: str
    name: str
    description: str
    created_at: float
    updated_at: float
    expires_at: float
    status: SessionStatus = SessionStatus.ACTIVE
    pages: List[Page] = field(default_factory=list)
    pending: List[str] = field(default_factory=list)
    pages_generated: int = 0
    design_system: Dict[str, Optional[str]] = field(
        default_factory=lambda: {"primary": None, "background": None, "text": None}
    )
    interactive_elements: List[InteractiveElement] = field(default_factory=list)
    # (page_type, taken_from_queue) for pages claimed but not yet recorded
    in_flight: List[Tuple[str, bool]] = field(default_factory=list)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)


def next_page_type(
    session: ProjectSession,
    cta_margin: int = page_rules.CTA_MARGIN,
    max_pages: int = page_rules.MAX_PAGES,
) -> Optional[str]:
    """Page type to generate next, or None when the project needs no more pages."""
    if session.pending:
        return session.pending[0]
    # Claimed pages count as generated so concurrent callers never over-infer
    produced = session.pages_generated + len(session.in_flight)
    if produced >= max_pages:
        return None
    unresolved = len(session.interactive_elements) - produced
    if unresolved > cta_margin:
        return page_rules.DEFAULT_PAGE
    return None


def _first_frame(document: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not isinstance(document, dict):
        return None
    frames = document.get("frames")
    if isinstance(frames, list) and frames and isinstance(frames[0], dict):
        return frames[0]
    return None


def _direct_children(frame: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    if not frame:
        return []
    children = frame.get("children")
    if not isinstance(children, list):
        return []
    return [c for c in children if isinstance(c, dict)]


def _color(element: Dict[str, Any], *keys: str) -> Optional[str]:
    for key in keys:
        val = element.get(key)
        if isinstance(val, str) and val.strip():
            return val.strip()
    return None


def _element_text(element: Dict[str, Any]) -> str:
    for key in ("label", "text", "content", "placeholder", "name"):
        val = element.get(key)
        if isinstance(val, str) and val.strip():
            return val.strip()
    return ""


def dominant_colors(document: Optional[Dict[str, Any]]) -> Dict[str, Optional[str]]:
    """Background, primary button and text colours of the first frame."""
    frame = _first_frame(document)
    colors: Dict[str, Optional[str]] = {"primary": None, "background": None, "text": None}
    if frame is None:
        return colors
    colors["background"] = _color(frame, "backgroundColor", "fill")
    for child in _direct_children(frame):
        kind = str(child.get("type") or "").lower()
        if kind == "button" and colors["primary"] is None:
            colors["primary"] = _color(child, "backgroundColor", "fill")
        elif kind == "text" and colors["text"] is None:
            colors["text"] = _color(child, "color", "fill")
    return colors


def extract_interactive_elements(
    document: Optional[Dict[str, Any]],
    page_type: str,
    action_rules: Sequence[page_rules.ActionRule] = page_rules.ACTION_RULES,
) -> List[InteractiveElement]:
    """Buttons and inputs among the first frame's direct children, tagged with an action."""
    found: List[InteractiveElement] = []
    for child in _direct_children(_first_frame(document)):
        kind = str(child.get("type") or "").lower()
        if kind not in INTERACTIVE_TYPES:
            continue
        text = _element_text(child)
        found.append(
            InteractiveElement(
                page_type=page_type,
                element_type=kind,
                text=text,
                action=page_rules.infer_action(text, action_rules),
                name=str(child.get("name") or ""),
            )
        )
    return found


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


class SessionStore:
    """In-memory registry of project sessions.

    The registry map is guarded by one lock; each session carries its own
    lock so mutations of one session never block another. Sessions are
    dropped once their retention window has elapsed, either by
    ``sweep_expired`` or lazily on lookup.
    """

    def __init__(
        self,
        retention_seconds: float = RETENTION_SECONDS,
        clock: Callable[[], float] = time.time,
        sequence_rules: Sequence[page_rules.PageRule] = page_rules.PAGE_SEQUENCE_RULES,
        action_rules: Sequence[page_rules.ActionRule] = page_rules.ACTION_RULES,
        min_pages: int = page_rules.MIN_PAGES,
        cta_margin: int = page_rules.CTA_MARGIN,
        max_pages: int = page_rules.MAX_PAGES,
    ) -> None:
        self.retention_seconds = retention_seconds
        self._clock = clock
        self._sequence_rules = sequence_rules
        self._action_rules = action_rules
        self._min_pages = min_pages
        self._cta_margin = cta_margin
        self._max_pages = max_pages
        self._sessions: Dict[str, ProjectSession] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._sweeper: Optional[threading.Thread] = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def initialize(
        self,
        name: str,
        description: str,
        page_types: Optional[Sequence[str]] = None,
    ) -> ProjectSession:
        requested = [p.strip().lower() for p in (page_types or []) if isinstance(p, str) and p.strip()]
        if not requested:
            requested = page_rules.infer_page_sequence(description, self._sequence_rules, self._min_pages)
        now = self._clock()
        session = ProjectSession(
            id=f"proj_{uuid.uuid4().hex[:16]}",
            name=(name or "").strip() or "Untitled project",
            description=(description or "").strip(),
            created_at=now,
            updated_at=now,
            expires_at=now + self.retention_seconds,
            pending=requested,
        )
        with self._lock:
            self._sessions[session.id] = session
        log.info("sessions.initialize: id=%s pages=%s", session.id, ",".join(requested))
        return session

    def _lookup(self, session_id: str) -> Optional[ProjectSession]:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            if self._clock() >= session.expires_at:
                self._sessions.pop(session_id, None)
                log.info("sessions.expire: id=%s (retention elapsed)", session_id)
                return None
            return session

    def next_page_type(self, session_id: str) -> Tuple[bool, Optional[str]]:
        """Return (found, page_type); page_type None means the project is complete."""
        session = self._lookup(session_id)
        if session is None:
            return False, None
        with session.lock:
            page_type = next_page_type(session, self._cta_margin, self._max_pages)
            if page_type is None:
                self._complete_locked(session)
            return True, page_type

    def _complete_locked(self, session: ProjectSession) -> None:
        # Pages still being generated may add calls-to-action; stay active
        if session.status is SessionStatus.ACTIVE and not session.in_flight:
            session.status = SessionStatus.COMPLETED
            session.updated_at = self._clock()
            log.info("sessions.complete: id=%s pages=%d", session.id, session.pages_generated)

    def claim_next_page(self, session_id: str) -> Tuple[bool, Optional[str]]:
        """Reserve the next page for one caller; returns (found, page_type).

        A claimed queue head leaves the pending queue, so a concurrent caller
        gets the following page. Pair each claim with ``record_page`` or
        ``release_page``. page_type None means nothing is left to claim.
        """
        session = self._lookup(session_id)
        if session is None:
            return False, None
        with session.lock:
            if session.status is SessionStatus.COMPLETED:
                return True, None
            page_type = next_page_type(session, self._cta_margin, self._max_pages)
            if page_type is None:
                self._complete_locked(session)
                return True, None
            from_queue = bool(session.pending) and session.pending[0] == page_type
            if from_queue:
                session.pending.pop(0)
            session.in_flight.append((page_type, from_queue))
            session.updated_at = self._clock()
            log.info("sessions.claim: id=%s page=%s in_flight=%d", session.id, page_type, len(session.in_flight))
            return True, page_type

    def release_page(self, session_id: str, page_type: str) -> bool:
        """Give back an unrecorded claim; a queued page returns to the queue head."""
        session = self._lookup(session_id)
        if session is None:
            return False
        with session.lock:
            claim = self._take_claim_locked(session, page_type)
            if claim is None:
                return False
            if claim[1]:
                session.pending.insert(0, claim[0])
            log.info("sessions.release: id=%s page=%s", session.id, page_type)
            return True

    @staticmethod
    def _take_claim_locked(session: ProjectSession, page_type: str) -> Optional[Tuple[str, bool]]:
        for i, claim in enumerate(session.in_flight):
            if claim[0] == page_type:
                return session.in_flight.pop(i)
        return None

    def record_page(self, session_id: str, page_type: str, document: Dict[str, Any]) -> RecordStatus:
        session = self._lookup(session_id)
        if session is None:
            return RecordStatus.NOT_FOUND
        page_type = (page_type or "").strip().lower() or page_rules.DEFAULT_PAGE
        frames = document.get("frames") if isinstance(document, dict) else None
        with session.lock:
            if session.status is SessionStatus.COMPLETED:
                return RecordStatus.COMPLETED
            session.pages.append(
                Page(page_type=page_type, frames=list(frames or []), created_at=self._clock())
            )
            claim = self._take_claim_locked(session, page_type)
            if claim is None and page_type in session.pending:
                session.pending.remove(page_type)
            session.pages_generated += 1
            for key, value in dominant_colors(document).items():
                if value and not session.design_system.get(key):
                    session.design_system[key] = value
            found = extract_interactive_elements(document, page_type, self._action_rules)
            session.interactive_elements.extend(found)
            session.updated_at = self._clock()
            log.info(
                "sessions.record_page: id=%s page=%s generated=%d pending=%d interactive=+%d",
                session.id,
                page_type,
                session.pages_generated,
                len(session.pending),
                len(found),
            )
        return RecordStatus.RECORDED

    def status(self, session_id: str) -> Optional[Dict[str, Any]]:
        session = self._lookup(session_id)
        if session is None:
            return None
        return self.snapshot(session)

    @staticmethod
    def snapshot(session: ProjectSession) -> Dict[str, Any]:
        """Plain-dict view of a session, taken under its lock."""
        with session.lock:
            return {
                "id": session.id,
                "name": session.name,
                "description": session.description,
                "status": session.status.value,
                "pages_generated": session.pages_generated,
                "pending_count": len(session.pending),
                "pending": list(session.pending),
                "in_flight": [page_type for page_type, _ in session.in_flight],
                "pages": [p.page_type for p in session.pages],
                "design_system": dict(session.design_system),
                "interactive_element_count": len(session.interactive_elements),
                "created_at": _iso(session.created_at),
                "updated_at": _iso(session.updated_at),
                "expires_at": _iso(session.expires_at),
            }

    def expire(self, session_id: str) -> bool:
        """Drop a session; returns False when it was already gone."""
        with self._lock:
            removed = self._sessions.pop(session_id, None) is not None
        if removed:
            log.info("sessions.expire: id=%s", session_id)
        return removed

    def sweep_expired(self, now: Optional[float] = None) -> int:
        cutoff = self._clock() if now is None else now
        with self._lock:
            stale = [sid for sid, s in self._sessions.items() if cutoff >= s.expires_at]
            for sid in stale:
                self._sessions.pop(sid, None)
        if stale:
            log.info("sessions.sweep: removed=%d", len(stale))
        return len(stale)

    def start_sweeper(self, interval: float) -> None:
        if self._sweeper is not None and self._sweeper.is_alive():
            return
        self._stop.clear()
        self._sweeper = threading.Thread(
            target=self._sweep_loop, args=(max(0.01, interval),), name="session-sweeper", daemon=True
        )
        self._sweeper.start()

    def stop_sweeper(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout)
            self._sweeper = None

    def _sweep_loop(self, interval: float) -> None:
        while not self._stop.wait(interval):
            try:
                self.sweep_expired()
            except Exception:
                log.exception("sessions.sweeper: sweep failed")
