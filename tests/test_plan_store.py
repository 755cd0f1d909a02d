"""Tests for durable plan storage."""

import json
import os

import pytest

from phasegate.core.exceptions import (
    ConcurrentWriterError,
    PlanCorruptionError,
    PlanNotFoundError,
    PlanStoreError,
)
from phasegate.core.phase_state import PhaseStatus
from phasegate.orchestrator.plan_store import PlanStore, serialize_plan


def reopen(store: PlanStore) -> PlanStore:
    """A second store over the same directories, as another process would see them."""
    return PlanStore(plans_dir=store.plans_dir, state_dir=store.state_dir)


class TestSaveAndLoad:
    """Tests for the two-copy persistence protocol."""

    def test_save_writes_identical_copies(self, store, make_plan):
        plan = make_plan()
        archive = store.save(plan)

        assert archive == store.plans_dir / "001-add-dark-mode.json"
        assert archive.read_bytes() == store.pointer_file.read_bytes()
        assert store.pointer_file.name == "current-plan.json"

    def test_serialized_form_is_readable_json(self, store, make_plan):
        plan = make_plan()
        data = serialize_plan(plan)

        assert data.endswith(b"\n")
        assert b'\n  "plan_number": 1' in data
        assert json.loads(data)["phases"][1]["presentation"] is True

    def test_save_leaves_no_temp_files(self, store, make_plan):
        store.save(make_plan())

        leftovers = list(store.plans_dir.glob(".*.tmp")) + list(store.state_dir.glob(".*.tmp"))
        assert leftovers == []

    def test_load_round_trip(self, store, make_plan):
        plan = make_plan()
        plan.phases[0].execution.add_note("hello")
        store.save(plan)

        loaded = reopen(store).load(plan.id)

        assert loaded == plan

    @pytest.mark.parametrize("ref", [1, "1", "001", "001-add-dark-mode"])
    def test_load_by_reference(self, store, make_plan, ref):
        store.save(make_plan())
        assert store.load(ref).id == "001-add-dark-mode"

    def test_load_by_archive_path(self, store, make_plan):
        archive = store.save(make_plan())
        assert store.load(archive).id == "001-add-dark-mode"

    def test_load_by_pointer_path(self, store, make_plan):
        store.save(make_plan(plan_number=1, slug="first"))
        store.save(make_plan(plan_number=2, slug="second"))

        assert store.load(store.pointer_file).id == "002-second"

    def test_load_current(self, store, make_plan):
        store.save(make_plan(plan_number=1, slug="first"))
        store.save(make_plan(plan_number=2, slug="second"))

        assert store.load_current().id == "002-second"
        assert store.current_plan_id() == "002-second"

    def test_load_missing_plan(self, store):
        with pytest.raises(PlanNotFoundError):
            store.load(7)

    def test_load_current_without_pointer(self, store):
        with pytest.raises(PlanNotFoundError, match="No current plan"):
            store.load_current()


class TestReconciliation:
    """Tests for recovering from a crash between the two writes."""

    def test_archive_wins_over_stale_pointer(self, store, make_plan):
        plan = make_plan()
        store.save(plan)

        # Crash after the archive write, before the pointer write
        plan.phases[0].status = PhaseStatus.IN_PROGRESS
        store.archive_path(plan.id).write_bytes(serialize_plan(plan))

        loaded = reopen(store).load(plan.id)

        assert loaded.phases[0].status == PhaseStatus.IN_PROGRESS
        assert store.pointer_file.read_bytes() == store.archive_path(plan.id).read_bytes()

    def test_missing_archive_restored_from_pointer(self, store, make_plan):
        plan = make_plan()
        store.save(plan)
        store.archive_path(plan.id).unlink()

        loaded = reopen(store).load(plan.id)

        assert loaded.id == plan.id
        assert store.archive_path(plan.id).read_bytes() == store.pointer_file.read_bytes()

    def test_pointer_for_other_plan_is_left_alone(self, store, make_plan):
        store.save(make_plan(plan_number=1, slug="first"))
        store.save(make_plan(plan_number=2, slug="second"))
        pointer_before = store.pointer_file.read_bytes()

        store.load(1)

        assert store.pointer_file.read_bytes() == pointer_before


class TestCorruption:
    def test_unparseable_archive(self, store, make_plan):
        plan = make_plan()
        store.save(plan)
        store.archive_path(plan.id).write_text("{ not json", encoding="utf-8")

        with pytest.raises(PlanCorruptionError, match="not valid JSON"):
            reopen(store).load(plan.id)

    def test_archive_violating_invariants(self, store, make_plan):
        plan = make_plan()
        store.save(plan)
        data = json.loads(store.archive_path(plan.id).read_text(encoding="utf-8"))
        data["phases"][1]["owns"] = data["phases"][0]["owns"]
        store.archive_path(plan.id).write_text(json.dumps(data), encoding="utf-8")

        with pytest.raises(PlanCorruptionError, match="failed validation"):
            reopen(store).load(plan.id)

    def test_list_plans_reports_corruption(self, store, make_plan):
        plan = make_plan()
        store.save(plan)
        store.archive_path(plan.id).write_text("[]", encoding="utf-8")

        with pytest.raises(PlanCorruptionError):
            store.list_plans()

    def test_unreadable_pointer(self, store):
        store.pointer_file.write_text("garbage", encoding="utf-8")

        with pytest.raises(PlanCorruptionError, match="pointer"):
            store.load_current()


class TestConcurrentWriters:
    def test_save_detects_external_modification(self, store, make_plan):
        plan = make_plan()
        store.save(plan)

        other = reopen(store)
        theirs = other.load(plan.id)
        theirs.phases[0].execution.add_note("written elsewhere")
        other.save(theirs)

        plan.phases[0].execution.add_note("written here")
        with pytest.raises(ConcurrentWriterError):
            store.save(plan)

        # The other writer's version survives
        assert reopen(store).load(plan.id).phases[0].execution.notes == ["written elsewhere"]

    def test_reload_clears_conflict(self, store, make_plan):
        plan = make_plan()
        store.save(plan)
        other = reopen(store)
        theirs = other.load(plan.id)
        theirs.phases[0].execution.add_note("written elsewhere")
        other.save(theirs)

        fresh = store.load(plan.id)
        fresh.phases[0].execution.add_note("after reload")
        store.save(fresh)


class TestNumbering:
    def test_first_plan_number(self, store):
        assert store.next_plan_number() == 1

    def test_next_number_follows_highest(self, store, make_plan):
        store.save(make_plan(plan_number=1, slug="first"))
        store.save(make_plan(plan_number=4, slug="fourth"))

        assert store.next_plan_number() == 5

    def test_create_rejects_used_number(self, store, make_plan):
        store.create(make_plan(plan_number=2, slug="first"))

        with pytest.raises(PlanStoreError, match="already used"):
            store.create(make_plan(plan_number=2, slug="other"))

    def test_list_plans_ordered_by_number(self, store, make_plan):
        store.save(make_plan(plan_number=10, slug="tenth"))
        store.save(make_plan(plan_number=2, slug="second"))

        assert [p.id for p in store.list_plans()] == ["002-second", "010-tenth"]

    def test_resolve_unknown_number(self, store, make_plan):
        store.save(make_plan())
        with pytest.raises(PlanNotFoundError, match="003"):
            store.resolve(3)


class TestLocking:
    def test_acquire_and_release(self, store):
        store.acquire_lock("001-x")

        assert store.is_locked("001-x")
        assert store.lock_holder("001-x") == os.getpid()

        store.release_lock("001-x")
        assert not store.is_locked("001-x")

    def test_lock_context_releases_on_error(self, store):
        with pytest.raises(RuntimeError):
            with store.lock("001-x"):
                raise RuntimeError("boom")

        assert not store.is_locked("001-x")

    def test_stale_lock_is_replaced(self, store):
        (store.locks_dir / "001-x.lock").write_text("999999999", encoding="utf-8")

        assert not store.is_locked("001-x")
        store.acquire_lock("001-x")
        assert store.lock_holder("001-x") == os.getpid()

    def test_live_lock_held_elsewhere(self, store):
        (store.locks_dir / "001-x.lock").write_text(str(os.getppid()), encoding="utf-8")

        with pytest.raises(ConcurrentWriterError, match=str(os.getppid())):
            store.acquire_lock("001-x")
