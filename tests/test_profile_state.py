# ------------------------------------------------------------------------
# tests/test_profile_state.py
# ------------------------------------------------------------------------
# Profile loading and the storage layer (documents, JSONL logs, layout
# migration).
# ------------------------------------------------------------------------

import json
import threading

import pytest

from hashcourier.miner.errors import ProfileError
from hashcourier.miner.profile import load_profile, profile_from_dict
from hashcourier.miner.state import JsonDocument, JsonlLog, Store


# ───── profiles ────────────────────────────────────────────────────── #

def test_nested_profile_yaml(tmp_path):
    path = tmp_path / "defensio.yaml"
    path.write_text(
        "id: defensio\n"
        "name: Defensio\n"
        "api:\n  base_url: https://mine.example.org/api/\n"
        "token:\n  decimals: 8\n"
        "challenge:\n  start_date: '2025-11-20'\n  validity_hours: 12\n"
        "fee_pool:\n  enabled: false\n  ratio: 30\n"
    )
    p = load_profile(path)
    assert p.id == "defensio"
    assert p.api_base_url == "https://mine.example.org/api"
    assert p.token_decimals == 8
    assert p.mining_start_date == "2025-11-20"
    assert p.validity_hours == 12
    assert p.fee_pool_enabled is False
    assert p.fee_pool_ratio == 30


def test_flat_profile_keys():
    p = profile_from_dict({"id": "midnight", "api_base_url": "http://localhost:8080", "token_decimals": 0})
    assert p.name == "midnight"
    assert p.api_base_url == "http://localhost:8080"
    assert p.token_decimals == 0


@pytest.mark.parametrize("raw", [
    [],
    {"name": "no id"},
    {"id": "x", "api_base_url": "ftp://nope"},
    {"id": "x", "challenge": {"validity_hours": 0}},
    {"id": "x", "fee_pool": {"ratio": 0}},
    {"id": "x", "token": {"decimals": "six"}},
])
def test_bad_profiles_are_rejected(raw):
    with pytest.raises(ProfileError):
        profile_from_dict(raw)


def test_missing_or_broken_profile_file(tmp_path):
    with pytest.raises(ProfileError):
        load_profile(tmp_path / "missing.yaml")
    broken = tmp_path / "broken.yaml"
    broken.write_text("id: [unclosed\n")
    with pytest.raises(ProfileError):
        load_profile(broken)


# ───── store layout ────────────────────────────────────────────────── #

def test_store_creates_project_dirs(tmp_path):
    s = Store(tmp_path, "defensio")
    assert s.storage_dir == tmp_path / "projects" / "defensio" / "storage"
    assert s.storage_dir.is_dir() and s.secure_dir.is_dir()


def test_migrate_flat_layout_never_overwrites(tmp_path):
    (tmp_path / "storage").mkdir()
    (tmp_path / "storage" / "receipts.jsonl").write_text("legacy\n")
    (tmp_path / "storage" / "challenge-history.json").write_text("[]")
    (tmp_path / "secure").mkdir()
    (tmp_path / "secure" / "wallet-seed.json.enc").write_text("secret")

    s = Store(tmp_path, "defensio")
    s.path("challenge-history.json").write_text("[1]")
    copied = s.migrate_flat_layout()
    assert copied == ["storage/receipts.jsonl", "secure/wallet-seed.json.enc"]
    assert s.path("challenge-history.json").read_text() == "[1]"
    assert (s.secure_dir / "wallet-seed.json.enc").read_text() == "secret"
    assert s.migrate_flat_layout() == []


def test_store_requires_project_id(tmp_path):
    with pytest.raises(ValueError):
        Store(tmp_path, "")


# ───── documents ───────────────────────────────────────────────────── #

def test_document_edit_is_atomic_on_error(tmp_path):
    doc = JsonDocument(tmp_path / "doc.json")
    doc.write({"n": 1})
    with pytest.raises(RuntimeError):
        with doc.edit(dict) as data:
            data["n"] = 2
            raise RuntimeError("boom")
    assert doc.read(dict) == {"n": 1}
    assert [p.name for p in tmp_path.iterdir() if p.suffix == ".tmp"] == []


def test_document_unreadable_falls_back_to_default(tmp_path):
    path = tmp_path / "doc.json"
    path.write_text("{broken")
    assert JsonDocument(path).read(list) == []


def test_concurrent_edits_do_not_lose_updates(tmp_path):
    doc = JsonDocument(tmp_path / "counter.json")

    def bump():
        for _ in range(25):
            with doc.edit(dict) as data:
                data["n"] = data.get("n", 0) + 1

    threads = [threading.Thread(target=bump) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert doc.read(dict)["n"] == 100


# ───── JSONL logs ──────────────────────────────────────────────────── #

def test_jsonl_append_read_and_remove(tmp_path):
    log = JsonlLog(tmp_path / "events.jsonl")
    assert log.read() == []
    for i in range(3):
        log.append({"i": i})
    with open(log.path, "a", encoding="utf-8") as f:
        f.write("[1, 2]\n")
        f.write("garbage\n")
    assert [r["i"] for r in log.read()] == [0, 1, 2]
    assert log.remove_where(lambda r: r["i"] == 1) == 1
    lines = log.path.read_text().splitlines()
    assert lines == [json.dumps({"i": 0}, separators=(",", ":")), json.dumps({"i": 2}, separators=(",", ":")),
                     "[1, 2]", "garbage"]
    assert log.remove_where(lambda r: False) == 0
