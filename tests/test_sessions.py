import threading
import time

import pytest

from layout_api import page_rules
from layout_api.sessions import (
    ProjectSession,
    RecordStatus,
    SessionStore,
    SessionStatus,
    dominant_colors,
    extract_interactive_elements,
    next_page_type,
)


class FakeClock:
    def __init__(self, t: float = 1_700_000_000.0):
        self.t = t

    def __call__(self) -> float:
        return self.t

    def advance(self, seconds: float) -> None:
        self.t += seconds


def _page(background="#FFFFFF", buttons=(), button_color="#2563EB", extra_children=()):
    children = [{"type": "text", "content": "Title", "color": "#111827"}]
    for label in buttons:
        children.append({"type": "button", "label": label, "backgroundColor": button_color})
    children.extend(extra_children)
    return {
        "frames": [
            {
                "type": "frame",
                "name": "Page",
                "width": 1440,
                "height": 900,
                "backgroundColor": background,
                "children": children,
            }
        ]
    }


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def store(clock):
    return SessionStore(clock=clock)


def test_initialize_without_auth_keywords_starts_with_home(store):
    session = store.initialize("Shop", "an online store")
    assert session.pending[0] == "home"
    assert "login" not in session.pending
    assert len(session.pending) >= 3
    assert session.status is SessionStatus.ACTIVE


def test_initialize_with_login_keyword_prepends_login(store):
    session = store.initialize("Bank", "a banking app with login")
    assert session.pending == ["login", "home", "detail"]


def test_initialize_appends_keyword_pages_in_table_order(store):
    session = store.initialize("Me", "portfolio with contact form, about me and features")
    assert session.pending == ["home", "features", "about", "contact"]


def test_initialize_uses_explicit_page_types(store):
    session = store.initialize("Explicit", "anything with login", ["Home", " contact "])
    assert session.pending == ["home", "contact"]


def test_initialize_schedules_expiry_after_retention(store, clock):
    session = store.initialize("Shop", "store")
    assert session.expires_at == clock() + 24 * 60 * 60


def test_record_page_removes_one_matching_instance_per_call(store):
    session = store.initialize("Docs", "", ["home", "detail", "detail", "detail"])
    assert store.record_page(session.id, "detail", _page()) is RecordStatus.RECORDED
    assert store.status(session.id)["pending"] == ["home", "detail", "detail"]
    assert store.record_page(session.id, "detail", _page()) is RecordStatus.RECORDED
    snapshot = store.status(session.id)
    assert snapshot["pending"] == ["home", "detail"]
    assert snapshot["pages_generated"] == 2
    assert snapshot["pages"] == ["detail", "detail"]


def test_record_page_not_in_queue_keeps_queue(store):
    session = store.initialize("Docs", "", ["home"])
    store.record_page(session.id, "about", _page())
    snapshot = store.status(session.id)
    assert snapshot["pending"] == ["home"]
    assert snapshot["pages_generated"] == 1


def test_design_system_is_first_writer_wins(store):
    session = store.initialize("Cafe", "", ["home", "detail"])
    store.record_page(session.id, "home", _page(background="#FFF7ED", buttons=["Order"], button_color="#EA580C"))
    store.record_page(session.id, "detail", _page(background="#000000", buttons=["Back"], button_color="#FFFFFF"))
    ds = store.status(session.id)["design_system"]
    assert ds["background"] == "#FFF7ED"
    assert ds["primary"] == "#EA580C"
    assert ds["text"] == "#111827"


def test_design_system_fills_fields_left_unset_by_earlier_pages(store):
    session = store.initialize("Cafe", "", ["home", "detail"])
    store.record_page(session.id, "home", _page(background="#FFF7ED"))
    store.record_page(session.id, "detail", _page(background="#000000", buttons=["Go"], button_color="#15803D"))
    ds = store.status(session.id)["design_system"]
    assert ds["background"] == "#FFF7ED"
    assert ds["primary"] == "#15803D"


def test_interactive_elements_tagged_by_first_matching_rule():
    nested = {"type": "group", "children": [{"type": "button", "label": "Sign In"}]}
    doc = _page(
        buttons=["Sign In", "Sign up free", "Reach out", "Learn more", "Start now", "Our Features", "About us",
                 "Login or register", "Buy"],
        extra_children=[{"type": "input", "placeholder": "Email"}, nested],
    )
    found = extract_interactive_elements(doc, "home")
    assert [e.action for e in found] == [
        "login",
        "register",
        "contact",
        "detail",
        "get_started",
        "features",
        "about",
        "login",
        "detail",
        "detail",
    ]
    assert found[-1].element_type == "input"
    assert all(e.page_type == "home" for e in found)


def test_interactive_elements_only_from_first_frame():
    doc = _page(buttons=["Sign In"])
    doc["frames"].append({"type": "frame", "children": [{"type": "button", "label": "Contact"}]})
    assert [e.action for e in extract_interactive_elements(doc, "home")] == ["login"]


def test_dominant_colors_of_empty_document():
    assert dominant_colors({"frames": []}) == {"primary": None, "background": None, "text": None}


def test_next_page_type_returns_queue_head(store):
    session = store.initialize("Shop", "", ["login", "home"])
    assert store.next_page_type(session.id) == (True, "login")
    # Query only; the queue is untouched
    assert store.status(session.id)["pending"] == ["login", "home"]


def test_next_page_type_terminal_when_queue_empty_and_no_ctas(store):
    session = store.initialize("Shop", "", ["home"])
    store.record_page(session.id, "home", _page())
    assert store.next_page_type(session.id) == (True, None)
    assert store.status(session.id)["status"] == "completed"


def test_completed_session_rejects_pages_but_stays_queryable(store):
    session = store.initialize("Shop", "", ["home"])
    store.record_page(session.id, "home", _page())
    store.next_page_type(session.id)
    assert store.record_page(session.id, "detail", _page()) is RecordStatus.COMPLETED
    snapshot = store.status(session.id)
    assert snapshot is not None
    assert snapshot["pages_generated"] == 1


def test_unresolved_ctas_infer_detail_page(store):
    session = store.initialize("Shop", "", ["home"])
    store.record_page(session.id, "home", _page(buttons=["Learn more", "Contact", "Start"]))
    assert store.next_page_type(session.id) == (True, page_rules.DEFAULT_PAGE)
    assert store.status(session.id)["status"] == "active"


def test_next_page_type_pure_respects_max_pages():
    session = ProjectSession(id="p", name="n", description="", created_at=0, updated_at=0, expires_at=1)
    session.pages_generated = 3
    session.interactive_elements = [object()] * 10  # type: ignore[list-item]
    assert next_page_type(session, cta_margin=1, max_pages=3) is None
    assert next_page_type(session, cta_margin=1, max_pages=10) == "detail"


def test_unknown_and_expired_sessions_report_not_found_identically(store, clock):
    session = store.initialize("Shop", "store")
    clock.advance(24 * 60 * 60)
    assert store.status("proj_missing") is None
    assert store.status(session.id) is None
    assert store.next_page_type(session.id) == store.next_page_type("proj_missing") == (False, None)
    assert store.record_page(session.id, "home", _page()) is RecordStatus.NOT_FOUND


def test_retention_counts_from_creation_not_activity(store, clock):
    session = store.initialize("Shop", "store")
    clock.advance(23 * 60 * 60)
    store.record_page(session.id, "home", _page())
    clock.advance(60 * 60)
    assert store.status(session.id) is None


def test_expire_is_idempotent(store):
    session = store.initialize("Shop", "store")
    assert store.expire(session.id) is True
    assert store.expire(session.id) is False
    assert store.status(session.id) is None


def test_sweep_expired_removes_only_stale_sessions(store, clock):
    old = store.initialize("Old", "")
    clock.advance(12 * 60 * 60)
    fresh = store.initialize("Fresh", "")
    clock.advance(12 * 60 * 60)
    assert store.sweep_expired() == 1
    assert len(store) == 1
    assert store.status(old.id) is None
    assert store.status(fresh.id) is not None


def test_concurrent_record_page_serializes_mutations(store):
    n = 16
    session = store.initialize("Busy", "", ["detail"] * n)
    barrier = threading.Barrier(n)
    results = []

    def _worker():
        barrier.wait()
        results.append(store.record_page(session.id, "detail", _page(buttons=["Go"])))

    threads = [threading.Thread(target=_worker) for _ in range(n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    snapshot = store.status(session.id)
    assert results == [RecordStatus.RECORDED] * n
    assert snapshot["pages_generated"] == n
    assert snapshot["pending"] == []
    assert snapshot["interactive_element_count"] == n


def test_background_sweeper_removes_expired_sessions():
    store = SessionStore(retention_seconds=0.05)
    store.initialize("Short", "")
    store.start_sweeper(0.01)
    try:
        deadline = time.time() + 2.0
        while len(store) and time.time() < deadline:
            time.sleep(0.01)
    finally:
        store.stop_sweeper()
    assert len(store) == 0


def test_store_uses_swapped_rule_tables(clock):
    store = SessionStore(
        clock=clock,
        sequence_rules=((("shop",), "features", "append"),),
        action_rules=((("buy",), "checkout"),),
        min_pages=2,
    )
    session = store.initialize("Shop", "a shop")
    assert session.pending == ["home", "features"]
    store.record_page(session.id, "home", _page(buttons=["Buy now"]))
    assert store.status(session.id)["interactive_element_count"] == 1


def test_claim_takes_queue_head_once(store):
    session = store.initialize("Shop", "", ["login", "home"])
    assert store.claim_next_page(session.id) == (True, "login")
    assert store.claim_next_page(session.id) == (True, "home")
    snapshot = store.status(session.id)
    assert snapshot["pending"] == []
    assert snapshot["in_flight"] == ["login", "home"]
    # Nothing left to claim, but pages are still in flight
    assert store.claim_next_page(session.id) == (True, None)
    assert store.status(session.id)["status"] == "active"

    store.record_page(session.id, "home", _page())
    store.record_page(session.id, "login", _page())
    snapshot = store.status(session.id)
    assert snapshot["in_flight"] == []
    assert snapshot["pages"] == ["home", "login"]
    assert store.claim_next_page(session.id) == (True, None)
    assert store.status(session.id)["status"] == "completed"


def test_release_returns_claimed_page_to_queue_head(store):
    session = store.initialize("Shop", "", ["login", "home"])
    store.claim_next_page(session.id)
    assert store.release_page(session.id, "login") is True
    assert store.release_page(session.id, "login") is False
    assert store.status(session.id)["pending"] == ["login", "home"]
    assert store.claim_next_page(session.id) == (True, "login")


def test_inferred_claims_count_toward_unresolved_ctas(store):
    session = store.initialize("Shop", "", ["home"])
    store.record_page(session.id, "home", _page(buttons=["Learn more", "Contact", "Start"]))
    assert store.claim_next_page(session.id) == (True, "detail")
    # 3 CTAs against 1 recorded + 1 claimed page leaves 1 unresolved
    assert store.claim_next_page(session.id) == (True, None)
    assert store.release_page(session.id, "detail") is True
    assert store.status(session.id)["pending"] == []
    assert store.claim_next_page(session.id) == (True, "detail")


def test_concurrent_claims_hand_out_distinct_pages(store):
    n = 8
    pages = ["home", "about", "contact", "features", "login", "register", "detail", "get_started"]
    session = store.initialize("Busy", "", pages)
    barrier = threading.Barrier(n)
    claimed = []

    def _worker():
        barrier.wait()
        claimed.append(store.claim_next_page(session.id)[1])

    threads = [threading.Thread(target=_worker) for _ in range(n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(claimed) == sorted(pages)


def test_unknown_session_cannot_be_claimed(store):
    assert store.claim_next_page("proj_missing") == (False, None)
    assert store.release_page("proj_missing", "home") is False
