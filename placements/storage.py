"""
Placement Store.

Loads and saves whole placement aggregates. Writes are optimistic: an
update only lands if the stored version still equals the version the
caller read, otherwise StaleVersion is raised and nothing is written.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from .database import PlacementRecord, get_engine, init_database
from .errors import Conflict, NotFound, StaleVersion
from .models import Placement, Stage


def _naive(dt):
    # SQLite DateTime columns hold naive values; the aware timestamp lives in the JSON document.
    return dt.replace(tzinfo=None) if dt is not None and dt.tzinfo else dt


class PlacementStore:
    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        init_database(self.db_path)
        self._engine = get_engine(self.db_path)
        self._Session = sessionmaker(bind=self._engine)

    def close(self) -> None:
        self._engine.dispose()

    def add(self, placement: Placement) -> Placement:
        """
        Insert a new placement.

        Raises:
            Conflict: If the (job, candidate) pair already has a placement
        """
        record = PlacementRecord(
            id=placement.id,
            job_id=placement.job_id,
            candidate_id=placement.candidate_id,
            client_id=placement.client_id,
            stage=placement.stage.value,
            version=placement.version,
            applied_date=_naive(placement.applied_date),
            last_updated=_naive(placement.last_updated),
            data=placement.to_dict(),
        )
        try:
            with self._Session.begin() as session:
                session.add(record)
        except IntegrityError:
            raise Conflict(
                f"A placement already exists for job {placement.job_id} "
                f"and candidate {placement.candidate_id}"
            )
        return placement

    def get(self, placement_id: str) -> Placement:
        with self._Session() as session:
            record = session.get(PlacementRecord, placement_id)
            if record is None:
                raise NotFound(f"Placement {placement_id} does not exist")
            return self._to_placement(record)

    def raw(self, placement_id: str) -> Dict[str, Any]:
        """Stored JSON document exactly as persisted."""
        with self._Session() as session:
            record = session.get(PlacementRecord, placement_id)
            if record is None:
                raise NotFound(f"Placement {placement_id} does not exist")
            return dict(record.data)

    def find(self, job_id: str, candidate_id: str) -> Optional[Placement]:
        with self._Session() as session:
            record = session.execute(
                select(PlacementRecord).where(
                    PlacementRecord.job_id == job_id,
                    PlacementRecord.candidate_id == candidate_id,
                )
            ).scalar_one_or_none()
            return self._to_placement(record) if record is not None else None

    def list(
        self,
        stage: Optional[Stage] = None,
        job_id: Optional[str] = None,
        candidate_id: Optional[str] = None,
    ) -> List[Placement]:
        """Placements matching the filters, most recently updated first."""
        query = select(PlacementRecord)
        if stage is not None:
            query = query.where(PlacementRecord.stage == Stage(stage).value)
        if job_id is not None:
            query = query.where(PlacementRecord.job_id == job_id)
        if candidate_id is not None:
            query = query.where(PlacementRecord.candidate_id == candidate_id)
        query = query.order_by(PlacementRecord.last_updated.desc(), PlacementRecord.id)

        with self._Session() as session:
            return [self._to_placement(r) for r in session.execute(query).scalars()]

    def save(self, placement: Placement) -> Placement:
        """
        Persist the aggregate if nobody wrote it since it was read.

        ``placement.version`` must be the version that was loaded; on
        success it is bumped to the stored version.

        Raises:
            StaleVersion: If the stored version moved on
            NotFound: If the placement no longer exists
        """
        expected = placement.version
        new_version = expected + 1
        data = placement.to_dict()
        data["version"] = new_version

        with self._Session.begin() as session:
            result = session.execute(
                update(PlacementRecord)
                .where(PlacementRecord.id == placement.id, PlacementRecord.version == expected)
                .values(
                    stage=placement.stage.value,
                    version=new_version,
                    last_updated=_naive(placement.last_updated),
                    data=data,
                )
            )
            if result.rowcount == 0:
                stored = session.get(PlacementRecord, placement.id)
                if stored is None:
                    raise NotFound(f"Placement {placement.id} does not exist")
                raise StaleVersion(placement.id, expected, stored.version, stage=stored.stage)

        placement.version = new_version
        return placement

    @staticmethod
    def _to_placement(record: PlacementRecord) -> Placement:
        placement = Placement.from_dict(record.data)
        placement.version = record.version
        return placement
