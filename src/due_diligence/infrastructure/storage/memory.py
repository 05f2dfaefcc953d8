"""In-memory analysis repository and checkpoint store.

Records are stored as plain dicts and rebuilt on every read, so callers never
share mutable state with the store.  An ``asyncio.Lock`` serializes writers,
which is what makes :meth:`InMemoryStore.claim` atomic within one event loop.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Sequence
from typing import Any

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


class InMemoryStore(AnalysisRepository, CheckpointStore):
    """Both storage contracts backed by dictionaries.

    Suitable for tests, examples and single-process CLI runs.
    """

    def __init__(self) -> None:
        self._analyses: dict[str, dict[str, Any]] = {}
        self._checkpoints: dict[str, list[dict[str, Any]]] = {}
        self._lock = asyncio.Lock()

    # -- analyses -----------------------------------------------------------

    async def create(self, analysis: Analysis) -> Analysis:
        async with self._lock:
            if analysis.analysis_id in self._analyses:
                raise StorageError(f"Analysis {analysis.analysis_id!r} already exists")
            self._analyses[analysis.analysis_id] = analysis.to_dict()
        logger.debug("Created analysis %s for deal %s", analysis.analysis_id, analysis.deal_id)
        return Analysis.from_dict(self._analyses[analysis.analysis_id])

    async def get(self, analysis_id: str) -> Analysis | None:
        record = self._analyses.get(analysis_id)
        return Analysis.from_dict(record) if record is not None else None

    async def claim(
        self,
        analysis_id: str,
        allowed_from: Iterable[AnalysisStatus] = CLAIMABLE,
    ) -> Analysis:
        allowed = tuple(allowed_from)
        async with self._lock:
            record = self._analyses.get(analysis_id)
            if record is None:
                raise AnalysisNotFound(analysis_id)
            current = AnalysisStatus(record["status"])
            if current not in allowed:
                raise AnalysisClaimConflict(
                    analysis_id, current.value, tuple(s.value for s in allowed)
                )
            analysis = Analysis.from_dict(record)
            analysis.mark_running()
            self._analyses[analysis_id] = analysis.to_dict()
        return analysis

    async def save(self, analysis: Analysis) -> None:
        async with self._lock:
            if analysis.analysis_id not in self._analyses:
                raise AnalysisNotFound(analysis.analysis_id)
            self._analyses[analysis.analysis_id] = analysis.to_dict()

    async def update_status(self, analysis_id: str, status: AnalysisStatus) -> None:
        async with self._lock:
            record = self._analyses.get(analysis_id)
            if record is None:
                raise AnalysisNotFound(analysis_id)
            record["status"] = status.value

    async def find_by_status(self, status: AnalysisStatus) -> Sequence[Analysis]:
        found = [
            Analysis.from_dict(r) for r in self._analyses.values() if r["status"] == status.value
        ]
        return sorted(found, key=lambda a: a.created_at)

    # -- checkpoints ----------------------------------------------------------

    async def append(self, analysis_id: str, snapshot: CheckpointSnapshot) -> None:
        async with self._lock:
            self._checkpoints.setdefault(analysis_id, []).append(snapshot.to_dict())

    async def latest(self, analysis_id: str) -> CheckpointSnapshot | None:
        history = self._checkpoints.get(analysis_id)
        return CheckpointSnapshot.from_dict(history[-1]) if history else None

    async def history(self, analysis_id: str) -> Sequence[CheckpointSnapshot]:
        return [CheckpointSnapshot.from_dict(c) for c in self._checkpoints.get(analysis_id, [])]
