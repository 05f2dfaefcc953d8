"""Relational analysis repository and checkpoint store (SQLAlchemy).

Two tables back the contracts:

* ``analysis`` -- one row per Analysis, result map in a JSON column;
* ``analysis_checkpoint`` -- append-only snapshots, never updated.

The claim is a single ``UPDATE ... WHERE status IN (...)``; its row count
tells whether this process won the transition, so two processes racing to
resume the same analysis cannot both run it.

SQLAlchemy sessions are blocking; every public coroutine hands its work to a
worker thread with ``asyncio.to_thread``.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager, nullcontext
from typing import Any

from sqlalchemy import (
    JSON,
    Column,
    Float,
    ForeignKey,
    Integer,
    String,
    create_engine,
    select,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from due_diligence.domain.entities import Analysis
from due_diligence.domain.enums import AnalysisStatus
from due_diligence.domain.exceptions import (
    AnalysisClaimConflict,
    AnalysisNotFound,
    StorageError,
)
from due_diligence.domain.values import CheckpointSnapshot
from due_diligence.infrastructure.storage import CLAIMABLE, AnalysisRepository, CheckpointStore

logger = logging.getLogger(__name__)

Base = declarative_base()


# ===================================================================== #
#  Models                                                                #
# ===================================================================== #

class AnalysisRecord(Base):
    __tablename__ = "analysis"

    id = Column(String(64), primary_key=True)
    deal_id = Column(String(128), nullable=False, index=True)
    analysis_type = Column(String(64), nullable=False)
    mode = Column(String(32), nullable=False, default="full")
    status = Column(String(16), nullable=False, index=True)
    total_agents = Column(Integer, nullable=False, default=0)
    completed_agents = Column(Integer, nullable=False, default=0)
    total_cost = Column(Float, nullable=False, default=0.0)
    results = Column(JSON, nullable=False, default=dict)
    planned_agents = Column(JSON, nullable=False, default=list)
    accepted_failures = Column(JSON, nullable=False, default=list)
    early_warnings = Column(JSON, nullable=False, default=list)
    created_at = Column(Float, nullable=False)
    started_at = Column(Float, nullable=True)
    completed_at = Column(Float, nullable=True)

    def to_dict(self) -> dict[str, Any]:
        return {
            "analysis_id": self.id,
            "deal_id": self.deal_id,
            "analysis_type": self.analysis_type,
            "mode": self.mode,
            "status": self.status,
            "total_agents": self.total_agents,
            "completed_agents": self.completed_agents,
            "total_cost": self.total_cost,
            "results": self.results or {},
            "planned_agents": self.planned_agents or [],
            "accepted_failures": self.accepted_failures or [],
            "early_warnings": self.early_warnings or [],
            "created_at": self.created_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }

    def assign(self, analysis: Analysis) -> None:
        data = analysis.to_dict()
        self.deal_id = data["deal_id"]
        self.analysis_type = data["analysis_type"]
        self.mode = data["mode"]
        self.status = data["status"]
        self.total_agents = data["total_agents"]
        self.completed_agents = data["completed_agents"]
        self.total_cost = data["total_cost"]
        self.results = data["results"]
        self.planned_agents = data["planned_agents"]
        self.accepted_failures = data["accepted_failures"]
        self.early_warnings = data["early_warnings"]
        self.created_at = data["created_at"]
        self.started_at = data["started_at"]
        self.completed_at = data["completed_at"]


class CheckpointRecord(Base):
    __tablename__ = "analysis_checkpoint"

    id = Column(Integer, primary_key=True, autoincrement=True)
    checkpoint_id = Column(String(32), nullable=False, unique=True)
    analysis_id = Column(
        String(64), ForeignKey("analysis.id", ondelete="CASCADE"), nullable=False, index=True
    )
    label = Column(String(64), nullable=False, default="")
    snapshot = Column(JSON, nullable=False)
    created_at = Column(Float, nullable=False)


# ===================================================================== #
#  Store                                                                 #
# ===================================================================== #

def create_sql_engine(url: str, echo: bool = False) -> Engine:
    """Create an engine; in-memory SQLite shares one connection across threads."""
    if url.startswith("sqlite") and (":memory:" in url or url.rstrip("/") == "sqlite:"):
        return create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if url.startswith("sqlite"):
        return create_engine(url, echo=echo, connect_args={"check_same_thread": False})
    return create_engine(url, echo=echo)


class SqlStore(AnalysisRepository, CheckpointStore):
    """Both storage contracts on a relational database.

    Parameters
    ----------
    url:
        SQLAlchemy database URL (e.g. ``sqlite:///analyses.db``).
    engine:
        Pre-built engine; overrides *url*.
    create_schema:
        Create missing tables on construction.
    """

    def __init__(
        self,
        url: str = "sqlite:///:memory:",
        *,
        engine: Engine | None = None,
        create_schema: bool = True,
    ) -> None:
        self.engine = engine or create_sql_engine(url)
        self._sessions = sessionmaker(bind=self.engine, expire_on_commit=False)
        # SQLite allows one writer at a time; in-memory databases share one connection
        self._lock = threading.RLock() if self.engine.dialect.name == "sqlite" else None
        if create_schema:
            Base.metadata.create_all(self.engine)

    @contextmanager
    def transactional_session(self) -> Iterator[Session]:
        """Commit on success, roll back and re-raise on error.

        Backend errors surface as ``StorageError``; domain errors raised
        inside the block propagate unchanged.
        """
        with self._lock or nullcontext():
            session = self._sessions()
            try:
                yield session
                session.commit()
            except SQLAlchemyError as exc:
                session.rollback()
                logger.exception("SQLAlchemy error during transaction")
                raise StorageError(str(exc)) from exc
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

    def dispose(self) -> None:
        self.engine.dispose()

    # -- analyses -----------------------------------------------------------

    async def create(self, analysis: Analysis) -> Analysis:
        return await asyncio.to_thread(self._create, analysis)

    def _create(self, analysis: Analysis) -> Analysis:
        try:
            with self.transactional_session() as session:
                record = AnalysisRecord(id=analysis.analysis_id)
                record.assign(analysis)
                session.add(record)
        except StorageError as exc:
            if isinstance(exc.__cause__, IntegrityError):
                raise StorageError(f"Analysis {analysis.analysis_id!r} already exists") from exc
            raise
        return Analysis.from_dict(analysis.to_dict())

    async def get(self, analysis_id: str) -> Analysis | None:
        return await asyncio.to_thread(self._get, analysis_id)

    def _get(self, analysis_id: str) -> Analysis | None:
        with self.transactional_session() as session:
            record = session.get(AnalysisRecord, analysis_id)
            return Analysis.from_dict(record.to_dict()) if record is not None else None

    async def claim(
        self,
        analysis_id: str,
        allowed_from: Iterable[AnalysisStatus] = CLAIMABLE,
    ) -> Analysis:
        return await asyncio.to_thread(self._claim, analysis_id, tuple(allowed_from))

    def _claim(self, analysis_id: str, allowed: tuple[AnalysisStatus, ...]) -> Analysis:
        with self.transactional_session() as session:
            outcome = session.execute(
                update(AnalysisRecord)
                .where(
                    AnalysisRecord.id == analysis_id,
                    AnalysisRecord.status.in_([s.value for s in allowed]),
                )
                .values(
                    status=AnalysisStatus.RUNNING.value,
                    started_at=time.time(),
                    completed_at=None,
                )
            )
            if outcome.rowcount != 1:
                record = session.get(AnalysisRecord, analysis_id)
                if record is None:
                    raise AnalysisNotFound(analysis_id)
                raise AnalysisClaimConflict(
                    analysis_id, record.status, tuple(s.value for s in allowed)
                )
            record = session.get(AnalysisRecord, analysis_id)
            session.refresh(record)
            return Analysis.from_dict(record.to_dict())

    async def save(self, analysis: Analysis) -> None:
        await asyncio.to_thread(self._save, analysis)

    def _save(self, analysis: Analysis) -> None:
        with self.transactional_session() as session:
            record = session.get(AnalysisRecord, analysis.analysis_id)
            if record is None:
                raise AnalysisNotFound(analysis.analysis_id)
            record.assign(analysis)

    async def update_status(self, analysis_id: str, status: AnalysisStatus) -> None:
        await asyncio.to_thread(self._update_status, analysis_id, status)

    def _update_status(self, analysis_id: str, status: AnalysisStatus) -> None:
        with self.transactional_session() as session:
            outcome = session.execute(
                update(AnalysisRecord)
                .where(AnalysisRecord.id == analysis_id)
                .values(status=status.value)
            )
            if outcome.rowcount != 1:
                raise AnalysisNotFound(analysis_id)

    async def find_by_status(self, status: AnalysisStatus) -> Sequence[Analysis]:
        return await asyncio.to_thread(self._find_by_status, status)

    def _find_by_status(self, status: AnalysisStatus) -> list[Analysis]:
        with self.transactional_session() as session:
            rows = session.scalars(
                select(AnalysisRecord)
                .where(AnalysisRecord.status == status.value)
                .order_by(AnalysisRecord.created_at)
            ).all()
            return [Analysis.from_dict(r.to_dict()) for r in rows]

    # -- checkpoints ----------------------------------------------------------

    async def append(self, analysis_id: str, snapshot: CheckpointSnapshot) -> None:
        await asyncio.to_thread(self._append, analysis_id, snapshot)

    def _append(self, analysis_id: str, snapshot: CheckpointSnapshot) -> None:
        with self.transactional_session() as session:
            session.add(
                CheckpointRecord(
                    checkpoint_id=snapshot.checkpoint_id,
                    analysis_id=analysis_id,
                    label=snapshot.label,
                    snapshot=snapshot.to_dict(),
                    created_at=snapshot.created_at,
                )
            )

    async def latest(self, analysis_id: str) -> CheckpointSnapshot | None:
        return await asyncio.to_thread(self._latest, analysis_id)

    def _latest(self, analysis_id: str) -> CheckpointSnapshot | None:
        with self.transactional_session() as session:
            record = session.scalars(
                select(CheckpointRecord)
                .where(CheckpointRecord.analysis_id == analysis_id)
                .order_by(CheckpointRecord.id.desc())
                .limit(1)
            ).first()
            return CheckpointSnapshot.from_dict(record.snapshot) if record is not None else None

    async def history(self, analysis_id: str) -> Sequence[CheckpointSnapshot]:
        return await asyncio.to_thread(self._history, analysis_id)

    def _history(self, analysis_id: str) -> list[CheckpointSnapshot]:
        with self.transactional_session() as session:
            rows = session.scalars(
                select(CheckpointRecord)
                .where(CheckpointRecord.analysis_id == analysis_id)
                .order_by(CheckpointRecord.id)
            ).all()
            return [CheckpointSnapshot.from_dict(r.snapshot) for r in rows]
