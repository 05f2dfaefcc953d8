"""Tests for deal-context providers."""

from __future__ import annotations

import json

import pytest
import yaml

from due_diligence.domain.exceptions import DealNotFound
from due_diligence.domain.values import DealContext
from due_diligence.infrastructure.deals import FileDealProvider, InMemoryDealProvider


class TestInMemoryDealProvider:
    """Fixed set of deals."""

    @pytest.mark.asyncio
    async def test_load_and_count(self, deal: DealContext) -> None:
        provider = InMemoryDealProvider([deal])
        assert await provider.load("acme") is deal
        assert provider.loads == 1

    @pytest.mark.asyncio
    async def test_unknown_deal(self) -> None:
        with pytest.raises(DealNotFound) as excinfo:
            await InMemoryDealProvider().load("ghost")
        assert excinfo.value.deal_id == "ghost"

    @pytest.mark.asyncio
    async def test_add(self) -> None:
        provider = InMemoryDealProvider()
        provider.add(DealContext(deal_id="late"))
        assert (await provider.load("late")).deal_id == "late"


class TestFileDealProvider:
    """One YAML or JSON file per deal."""

    @pytest.mark.asyncio
    async def test_load_yaml(self, tmp_path) -> None:
        (tmp_path / "acme.yaml").write_text(
            yaml.safe_dump(
                {
                    "name": "Acme",
                    "sector": "Fintech",
                    "stage": "seed",
                    "documents": [{"name": "deck.pdf", "text": "hello"}],
                }
            )
        )
        deal = await FileDealProvider(tmp_path).load("acme")
        assert deal.deal_id == "acme"
        assert deal.sector == "Fintech"
        assert deal.documents[0].kind == "other"

    @pytest.mark.asyncio
    async def test_load_json_keeps_explicit_id(self, tmp_path) -> None:
        (tmp_path / "file-name.json").write_text(json.dumps({"deal_id": "inner", "name": "X"}))
        deal = await FileDealProvider(tmp_path).load("file-name")
        assert deal.deal_id == "inner"

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path) -> None:
        with pytest.raises(DealNotFound):
            await FileDealProvider(tmp_path).load("ghost")

    @pytest.mark.asyncio
    async def test_non_mapping_file(self, tmp_path) -> None:
        (tmp_path / "bad.yml").write_text("- just\n- a list\n")
        with pytest.raises(ValueError, match="mapping"):
            await FileDealProvider(tmp_path).load("bad")
