import json

from layout_api import dumps


def test_disabled_dumps_write_nothing(monkeypatch, tmp_path):
    monkeypatch.setattr(dumps, "DUMPS_ENABLED", False)
    monkeypatch.setattr(dumps, "DUMP_DIR", tmp_path / "d")
    assert dumps.dump_generation("design", "raw", {"frames": []}) is None
    assert not (tmp_path / "d").exists()


def test_dump_records_raw_and_parsed(monkeypatch, tmp_path):
    monkeypatch.setattr(dumps, "DUMPS_ENABLED", True)
    monkeypatch.setattr(dumps, "DUMP_DIR", tmp_path)
    path = dumps.dump_generation("proj_1/home", "```json {}```", {"frames": []}, {"stage": "stripped"})
    assert path is not None and path.exists()
    assert "proj_1-home" in path.name
    payload = json.loads(path.read_text(encoding="utf-8"))
    assert payload["raw"] == "```json {}```"
    assert payload["parsed"] == {"frames": []}
    assert payload["meta"] == {"stage": "stripped"}
    assert not list(tmp_path.glob("*.tmp"))


def test_dumps_are_pruned_to_max(monkeypatch, tmp_path):
    monkeypatch.setattr(dumps, "DUMPS_ENABLED", True)
    monkeypatch.setattr(dumps, "DUMP_DIR", tmp_path)
    monkeypatch.setattr(dumps, "DUMP_MAX", 3)
    written = [dumps.dump_generation(f"n{i}", str(i), None) for i in range(5)]
    remaining = sorted(p.name for p in tmp_path.glob("*.json"))
    assert len(remaining) == 3
    assert remaining == sorted(p.name for p in written[-3:])


def test_dump_failure_is_swallowed(monkeypatch, tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("x", encoding="utf-8")
    monkeypatch.setattr(dumps, "DUMPS_ENABLED", True)
    monkeypatch.setattr(dumps, "DUMP_DIR", blocker / "sub")
    assert dumps.dump_generation("design", "raw", None) is None
