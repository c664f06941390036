import json
import os

import pytest

from app_attest.errors import KeyStoreError
from app_attest.key_store import KEY_RECORD_KEY, KeyStore
from app_attest.models import KeyRecord


def test_load_empty_store(key_store):
    assert key_store.load() is None


def test_save_then_load(key_store):
    key_store.save(KeyRecord(identifier="abc123", usage_count=0))
    assert key_store.load() == KeyRecord(identifier="abc123", usage_count=0)

    key_store.save(KeyRecord(identifier="abc123", usage_count=5))
    assert key_store.load() == KeyRecord(identifier="abc123", usage_count=5)


def test_record_survives_new_instance(tmp_path):
    path = str(tmp_path / "defaults.json")
    KeyStore(path).save(KeyRecord(identifier="abc123", usage_count=3))

    assert KeyStore(path).load() == KeyRecord(identifier="abc123", usage_count=3)
    with open(path, encoding="utf-8") as f:
        assert json.load(f) == {KEY_RECORD_KEY: {"id": "abc123", "count": 3}}


def test_clear_with_and_without_record(key_store):
    key_store.clear()
    assert key_store.load() is None

    key_store.save(KeyRecord(identifier="abc123", usage_count=1))
    key_store.clear()
    assert key_store.load() is None
    key_store.clear()
    assert key_store.load() is None


def test_other_defaults_are_preserved(tmp_path):
    path = tmp_path / "defaults.json"
    path.write_text(json.dumps({"theme": "dark"}), encoding="utf-8")
    store = KeyStore(str(path))

    store.save(KeyRecord(identifier="abc123", usage_count=0))
    store.clear()

    assert json.loads(path.read_text(encoding="utf-8")) == {"theme": "dark"}


@pytest.mark.parametrize(
    "content",
    [
        "not json",
        json.dumps(["a list"]),
        json.dumps({KEY_RECORD_KEY: {"count": 2}}),
        json.dumps({KEY_RECORD_KEY: {"id": "abc123", "count": -4}}),
        json.dumps({KEY_RECORD_KEY: "abc123"}),
    ],
)
def test_undecodable_record_is_absent(tmp_path, content):
    path = tmp_path / "defaults.json"
    path.write_text(content, encoding="utf-8")

    assert KeyStore(str(path)).load() is None


def test_count_defaults_to_zero_when_missing(tmp_path):
    path = tmp_path / "defaults.json"
    path.write_text(json.dumps({KEY_RECORD_KEY: {"id": "abc123"}}), encoding="utf-8")

    assert KeyStore(str(path)).load() == KeyRecord(identifier="abc123", usage_count=0)


def test_write_leaves_no_temp_files(tmp_path):
    store = KeyStore(str(tmp_path / "nested" / "defaults.json"))
    store.save(KeyRecord(identifier="abc123", usage_count=0))

    assert os.listdir(tmp_path / "nested") == ["defaults.json"]


def test_write_failure_raises_key_store_error(tmp_path, monkeypatch):
    store = KeyStore(str(tmp_path / "defaults.json"))
    store.save(KeyRecord(identifier="abc123", usage_count=1))

    def failing_replace(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr("app_attest.key_store.os.replace", failing_replace)

    with pytest.raises(KeyStoreError):
        store.save(KeyRecord(identifier="abc123", usage_count=2))

    monkeypatch.undo()
    assert store.load() == KeyRecord(identifier="abc123", usage_count=1)
    assert os.listdir(tmp_path) == ["defaults.json"]
