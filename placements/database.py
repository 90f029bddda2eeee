"""
Database schema and connection management.

Uses SQLite with SQLAlchemy. Each placement is one row: the whole
aggregate lives in a JSON document, with the fields used for lookups
(stage, job, candidate) and the optimistic-concurrency version mirrored
into columns.
"""

from datetime import datetime
from pathlib import Path
from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()


class PlacementRecord(Base):
    """Persisted placement aggregate."""

    __tablename__ = "placements"
    __table_args__ = (UniqueConstraint("job_id", "candidate_id", name="uq_placement_job_candidate"),)

    id = Column(String, primary_key=True)
    job_id = Column(String, nullable=False, index=True)
    candidate_id = Column(String, nullable=False, index=True)
    client_id = Column(String, nullable=False)
    stage = Column(String, nullable=False, index=True)
    version = Column(Integer, nullable=False, default=1)
    applied_date = Column(DateTime, nullable=False, default=datetime.now)
    last_updated = Column(DateTime, nullable=False, default=datetime.now)
    data = Column(JSON, nullable=False)  # Placement.to_dict()


def get_engine(db_path: Path) -> Engine:
    return create_engine(f"sqlite:///{db_path}")


def init_database(db_path: Path) -> None:
    """
    Initialize database and create tables.

    Args:
        db_path: Path to SQLite database file
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    engine = get_engine(db_path)
    Base.metadata.create_all(engine)
    engine.dispose()


def get_session(db_path: Path):
    """
    Get database session.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLAlchemy session
    """
    Session = sessionmaker(bind=get_engine(db_path))
    return Session()
