"""
Draft Store Tests

Drafts are one JSON object per key. Stores report unreadable content with
ValueError; the wizard decides to start over.
"""

import json

import pytest

from core.storage.drafts import ONBOARDING_DRAFT_KEY, FileDraftStore, InMemoryDraftStore


@pytest.fixture(params=["file", "memory"])
def store(request, tmp_path):
    if request.param == "file":
        return FileDraftStore(tmp_path / "drafts")
    return InMemoryDraftStore()


def test_missing_draft_loads_as_none(store):
    assert store.load(ONBOARDING_DRAFT_KEY) is None
    assert store.exists(ONBOARDING_DRAFT_KEY) is False


def test_save_load_clear(store):
    store.save(ONBOARDING_DRAFT_KEY, {"schemaVersion": 1, "currentStep": 2})

    assert store.exists(ONBOARDING_DRAFT_KEY)
    assert store.load(ONBOARDING_DRAFT_KEY) == {"schemaVersion": 1, "currentStep": 2}

    store.clear(ONBOARDING_DRAFT_KEY)
    assert store.load(ONBOARDING_DRAFT_KEY) is None


def test_clear_missing_is_noop(store):
    store.clear("never-saved")


def test_keys_are_independent(store):
    store.save("a", {"n": 1})
    store.save("b", {"n": 2})
    store.clear("a")
    assert store.load("b") == {"n": 2}


class TestCorruptDrafts:

    def test_file_with_invalid_json(self, tmp_path):
        store = FileDraftStore(tmp_path)
        (tmp_path / f"{ONBOARDING_DRAFT_KEY}.json").write_text("{not json", encoding="utf-8")

        with pytest.raises(ValueError):
            store.load(ONBOARDING_DRAFT_KEY)
        assert store.exists(ONBOARDING_DRAFT_KEY)

    def test_json_that_is_not_an_object(self):
        store = InMemoryDraftStore()
        store.save_raw(ONBOARDING_DRAFT_KEY, json.dumps([1, 2, 3]))

        with pytest.raises(ValueError):
            store.load(ONBOARDING_DRAFT_KEY)

    def test_file_save_leaves_no_temp_file(self, tmp_path):
        store = FileDraftStore(tmp_path)
        store.save(ONBOARDING_DRAFT_KEY, {"currentStep": 1})

        assert [p.name for p in tmp_path.iterdir()] == [f"{ONBOARDING_DRAFT_KEY}.json"]
