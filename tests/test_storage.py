"""
Tests for storage.py - placement persistence with optimistic concurrency.
"""

import pytest
from datetime import datetime, timezone

from placements.database import PlacementRecord, get_session, init_database
from placements.errors import Conflict, NotFound, StaleVersion
from placements.models import Actor, EventType, Placement, Role, Stage
from placements.storage import PlacementStore
from placements.transitions import apply_transition

EMPLOYER = Actor(id="emp-1", role=Role.EMPLOYER)


def make_placement(job_id="job-1", candidate_id="cand-1") -> Placement:
    now = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)
    placement = Placement(
        job_id=job_id,
        candidate_id=candidate_id,
        client_id="client-1",
        stage=Stage.SHORTLISTED,
        applied_date=now,
        last_updated=now,
    )
    placement.record(EventType.STAGE_CHANGE, "Candidate shortlisted", completed_by=EMPLOYER.id, now=now)
    return placement


class TestDatabaseInit:

    def test_init_creates_parent_directories(self, tmp_path):
        db_path = tmp_path / "nested" / "dir" / "placements.db"
        init_database(db_path)
        assert db_path.exists()

    def test_init_creates_table(self, tmp_path):
        db_path = tmp_path / "placements.db"
        init_database(db_path)
        session = get_session(db_path)
        assert session.query(PlacementRecord).count() == 0
        session.close()


class TestAddAndGet:

    def test_add_then_get(self, store):
        placement = store.add(make_placement())
        loaded = store.get(placement.id)

        assert loaded.to_dict() == placement.to_dict()
        assert loaded.version == 1

    def test_get_unknown(self, store):
        with pytest.raises(NotFound):
            store.get("plc_missing")

    def test_duplicate_pair_conflicts(self, store):
        store.add(make_placement())
        with pytest.raises(Conflict):
            store.add(make_placement())

    def test_find_by_pair(self, store):
        placement = store.add(make_placement())
        assert store.find("job-1", "cand-1").id == placement.id
        assert store.find("job-1", "cand-9") is None

    def test_list_filters(self, store):
        a = store.add(make_placement("job-1", "cand-1"))
        store.add(make_placement("job-2", "cand-1"))
        store.add(make_placement("job-2", "cand-2"))

        moved = store.get(a.id)
        apply_transition(moved, Stage.SCREENING_TEST, EMPLOYER)
        store.save(moved)

        assert len(store.list()) == 3
        assert [p.id for p in store.list(stage=Stage.SCREENING_TEST)] == [a.id]
        assert len(store.list(stage="Shortlisted")) == 2
        assert len(store.list(job_id="job-2")) == 2
        assert len(store.list(candidate_id="cand-1")) == 2
        assert store.list(job_id="job-2", candidate_id="cand-2")[0].candidate_id == "cand-2"


class TestOptimisticSave:

    def test_save_bumps_version(self, store):
        placement = store.add(make_placement())
        loaded = store.get(placement.id)
        apply_transition(loaded, Stage.SCREENING_TEST, EMPLOYER)
        store.save(loaded)

        assert loaded.version == 2
        reloaded = store.get(placement.id)
        assert reloaded.version == 2
        assert reloaded.stage == Stage.SCREENING_TEST
        assert store.raw(placement.id)["version"] == 2

    def test_stale_copy_is_refused(self, store):
        placement = store.add(make_placement())
        first = store.get(placement.id)
        second = store.get(placement.id)

        apply_transition(first, Stage.SCREENING_TEST, EMPLOYER)
        store.save(first)
        after_first = store.raw(placement.id)

        apply_transition(second, Stage.REJECTED, EMPLOYER, rejection_reason="Position filled")
        with pytest.raises(StaleVersion) as exc:
            store.save(second)

        assert exc.value.expected == 1
        assert exc.value.actual == 2
        assert second.version == 1
        assert store.raw(placement.id) == after_first

    def test_save_deleted_placement(self, store):
        placement = store.add(make_placement())
        loaded = store.get(placement.id)
        session = get_session(store.db_path)
        session.query(PlacementRecord).filter_by(id=placement.id).delete()
        session.commit()
        session.close()

        with pytest.raises(NotFound):
            store.save(loaded)

    def test_persists_across_store_instances(self, tmp_path):
        db_path = tmp_path / "placements.db"
        first = PlacementStore(db_path)
        placement = first.add(make_placement())
        first.close()

        second = PlacementStore(db_path)
        assert second.get(placement.id).candidate_id == "cand-1"
        second.close()
