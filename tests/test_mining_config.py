# ------------------------------------------------------------------------
# tests/test_mining_config.py
# ------------------------------------------------------------------------
# Persisted mining tunables and the address registration map.
# ------------------------------------------------------------------------

import json

import pytest

from hashcourier.miner.errors import ConfigError
from hashcourier.miner.mining_config import CONFIG_FILE, MiningConfigStore
from hashcourier.miner.models import MiningConfig
from hashcourier.miner.registry import AddressRegistry


# ───── mining config ───────────────────────────────────────────────── #

def test_defaults_when_nothing_stored(store):
    cfg = MiningConfigStore(store).load()
    assert cfg == MiningConfig()
    assert cfg.batch_size is None


def test_update_writes_through(store):
    MiningConfigStore(store).update(worker_threads=8, batch_size=500)
    raw = json.loads(store.path(CONFIG_FILE).read_text())
    assert raw["workerThreads"] == 8
    assert raw["batchSize"] == 500
    assert MiningConfigStore(store).load().worker_threads == 8


def test_batch_size_can_be_reset_to_default(store):
    cs = MiningConfigStore(store)
    cs.update(batch_size=300)
    assert cs.update(batch_size=None).batch_size is None


@pytest.mark.parametrize("changes", [
    {"worker_threads": 0},
    {"batch_size": 10},
    {"batch_size": 20_000},
    {"worker_grouping_mode": "random"},
    {"workers_per_address": 50},
    {"worker_threads": True},
    {"colour": "blue"},
])
def test_out_of_contract_values_are_rejected_and_not_stored(store, changes):
    cs = MiningConfigStore(store)
    cs.update(worker_threads=6)
    with pytest.raises(ConfigError):
        cs.update(**changes)
    assert cs.load().worker_threads == 6


def test_invalid_stored_config_falls_back_to_defaults(store):
    store.path(CONFIG_FILE).write_text(json.dumps({"workerThreads": "many"}))
    assert MiningConfigStore(store).load() == MiningConfig()


@pytest.mark.parametrize("mode,per,threads,groups", [
    ("all-on-one", 5, 11, 1),
    ("grouped", 2, 11, 5),
    ("auto", 5, 11, 2),
    ("auto", 5, 3, 1),
])
def test_group_count(mode, per, threads, groups):
    cfg = MiningConfig(worker_threads=threads, worker_grouping_mode=mode, workers_per_address=min(per, threads))
    assert cfg.group_count() == groups


def test_assign_workers_round_robin():
    cfg = MiningConfig(worker_threads=5, worker_grouping_mode="grouped", workers_per_address=2)
    assert cfg.assign_workers([7, 8, 9]) == {0: 7, 1: 8, 2: 7, 3: 8, 4: 7}
    assert cfg.assign_workers([]) == {}


# ───── registry ────────────────────────────────────────────────────── #

def test_registration_is_per_project(store):
    reg = AddressRegistry(store)
    reg.mark_registered("addr1alice", "defensio")
    reg.mark_registered("addr1alice", "defensio")
    assert reg.is_registered("addr1alice", "defensio")
    assert not reg.is_registered("addr1alice", "midnight")
    assert reg.profiles_for("addr1alice") == ["defensio"]


def test_import_legacy_flags(store):
    reg = AddressRegistry(store)
    added = reg.import_legacy([
        {"bech32": "addr1alice", "registered": True},
        {"bech32": "addr1bob", "registeredProfiles": ["midnight"], "registered": True},
        {"address": "addr1carol", "registered": False},
        {"registered": True},
    ], "defensio")
    assert added == 3
    assert reg.profiles_for("addr1alice") == ["defensio"]
    assert reg.profiles_for("addr1bob") == ["midnight", "defensio"]
    assert reg.profiles_for("addr1carol") == []
    assert reg.import_legacy([{"bech32": "addr1alice", "registered": True}], "defensio") == 0
