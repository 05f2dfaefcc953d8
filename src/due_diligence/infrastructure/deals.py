"""Deal-context providers.

Given a deal id, a provider returns the read-only :class:`DealContext` an
analysis runs against: metadata, documents with extracted text, known facts,
and externally supplied benchmark / competitive data.  How documents were
parsed is outside this package; providers only hand over the result.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable
from pathlib import Path

import yaml

from due_diligence.domain.exceptions import DealNotFound
from due_diligence.domain.values import DealContext

logger = logging.getLogger(__name__)


class DealContextProvider(ABC):
    """Source of deal contexts."""

    @abstractmethod
    async def load(self, deal_id: str) -> DealContext:
        """Return the context for *deal_id*; raise ``DealNotFound`` if unknown."""


class InMemoryDealProvider(DealContextProvider):
    """Provider over a fixed set of contexts."""

    def __init__(self, deals: Iterable[DealContext] = ()) -> None:
        self._deals: dict[str, DealContext] = {d.deal_id: d for d in deals}
        self.loads = 0

    def add(self, deal: DealContext) -> None:
        self._deals[deal.deal_id] = deal

    async def load(self, deal_id: str) -> DealContext:
        self.loads += 1
        try:
            return self._deals[deal_id]
        except KeyError:
            raise DealNotFound(deal_id) from None


class FileDealProvider(DealContextProvider):
    """Provider reading ``<deal_id>.json`` / ``.yaml`` / ``.yml`` files.

    Parameters
    ----------
    directory:
        Folder holding one file per deal.
    """

    SUFFIXES = (".json", ".yaml", ".yml")

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    def _path_for(self, deal_id: str) -> Path:
        for suffix in self.SUFFIXES:
            candidate = self.directory / f"{deal_id}{suffix}"
            if candidate.is_file():
                return candidate
        raise DealNotFound(deal_id, details={"directory": str(self.directory)})

    def _read(self, deal_id: str) -> DealContext:
        path = self._path_for(deal_id)
        text = path.read_text(encoding="utf-8")
        raw = json.loads(text) if path.suffix == ".json" else yaml.safe_load(text)
        if not isinstance(raw, dict):
            raise ValueError(f"Deal file {path} must contain a mapping")
        raw.setdefault("deal_id", deal_id)
        logger.debug("Loaded deal %s from %s", deal_id, path)
        return DealContext.from_dict(raw)

    async def load(self, deal_id: str) -> DealContext:
        return await asyncio.to_thread(self._read, deal_id)
