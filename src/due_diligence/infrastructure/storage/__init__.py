"""Durable storage interfaces for analyses and checkpoints.

Two collaborators back the pipeline:

* :class:`AnalysisRepository` -- CRUD for ``Analysis`` records plus the
  atomic status transition (``claim``) that guarantees at most one process
  runs an analysis at a time.
* :class:`CheckpointStore` -- append-only progress snapshots with a "latest"
  read.  There is deliberately no update or delete.

Implementations raise :class:`~due_diligence.domain.exceptions.StorageError`
for backend failures so callers can tell them apart from agent failures.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence

from due_diligence.domain.entities import Analysis
from due_diligence.domain.enums import AnalysisStatus
from due_diligence.domain.values import CheckpointSnapshot

CLAIMABLE: tuple[AnalysisStatus, ...] = (AnalysisStatus.PENDING, AnalysisStatus.FAILED)


class AnalysisRepository(ABC):
    """Persistence contract for ``Analysis`` records."""

    @abstractmethod
    async def create(self, analysis: Analysis) -> Analysis:
        """Insert a new analysis.  Raises ``StorageError`` on duplicate ids."""

    @abstractmethod
    async def get(self, analysis_id: str) -> Analysis | None:
        """Return a detached copy of the analysis, or ``None``."""

    @abstractmethod
    async def claim(
        self,
        analysis_id: str,
        allowed_from: Iterable[AnalysisStatus] = CLAIMABLE,
    ) -> Analysis:
        """Atomically move the analysis to RUNNING.

        The transition only happens if the stored status is one of
        *allowed_from*; otherwise ``AnalysisClaimConflict`` is raised.
        Raises ``AnalysisNotFound`` for unknown ids.
        """

    @abstractmethod
    async def save(self, analysis: Analysis) -> None:
        """Persist the full analysis record (status, counters, results)."""

    @abstractmethod
    async def update_status(self, analysis_id: str, status: AnalysisStatus) -> None:
        """Set the status only, leaving everything else untouched."""

    @abstractmethod
    async def find_by_status(self, status: AnalysisStatus) -> Sequence[Analysis]:
        """Analyses currently in *status*, oldest first."""


class CheckpointStore(ABC):
    """Append-only checkpoint history."""

    @abstractmethod
    async def append(self, analysis_id: str, snapshot: CheckpointSnapshot) -> None:
        """Append *snapshot* to the history of *analysis_id*."""

    @abstractmethod
    async def latest(self, analysis_id: str) -> CheckpointSnapshot | None:
        """Most recently appended snapshot, or ``None``."""

    @abstractmethod
    async def history(self, analysis_id: str) -> Sequence[CheckpointSnapshot]:
        """Every snapshot for *analysis_id*, oldest first."""


__all__ = ["AnalysisRepository", "CheckpointStore", "CLAIMABLE"]
