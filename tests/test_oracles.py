"""Tests for the classification oracles."""

import pytest

from conftest import FakeProvider, interpretation
from conversation.state import PendingMultiProductSelection, PendingProduct
from llm.oracles import (
    InteractionType,
    MessageInterpreter,
    OracleParseError,
    PromiseArbiter,
    SelectionOracle,
    parse_json_object,
)


class TestParseJsonObject:
    def test_plain_object(self):
        assert parse_json_object('{"a": 1}') == {"a": 1}

    def test_object_wrapped_in_prose(self):
        text = 'Claro, aqui está:\n```json\n{"confirmed": true}\n```'
        assert parse_json_object(text) == {"confirmed": True}

    @pytest.mark.parametrize("text", ["", "sem json", "{quebrado", None])
    def test_invalid_output(self, text):
        with pytest.raises(OracleParseError):
            parse_json_object(text)


class TestMessageInterpreter:
    @pytest.mark.asyncio
    async def test_interpretation(self):
        provider = FakeProvider(interpretation(
            interaction_type="pricing", has_clear_product=True,
            product_name="Curso de Confeitaria", normalized_query="preço curso confeitaria",
            confidence=0.92,
        ))
        result = await MessageInterpreter(provider).interpret("quanto é o de confeitaria?")

        assert result.interaction_type == InteractionType.PRICING
        assert result.product_name == "Curso de Confeitaria"
        assert result.names_product_confidently
        assert provider.calls[0]["json_mode"]

    @pytest.mark.asyncio
    async def test_current_product_is_in_prompt(self):
        provider = FakeProvider(interpretation())
        await MessageInterpreter(provider).interpret("e o preço?", "Curso de Panificação")
        assert "Curso de Panificação" in provider.calls[0]["prompt"]

    @pytest.mark.asyncio
    async def test_unknown_interaction_type_is_general(self):
        provider = FakeProvider({"interaction_type": "smalltalk", "confidence": "alta"})
        result = await MessageInterpreter(provider).interpret("oi tudo bem")
        assert result.interaction_type == InteractionType.GENERAL
        assert result.confidence == 0.0
        assert result.normalized_query == "oi tudo bem"

    @pytest.mark.asyncio
    async def test_failure_degrades_to_general(self):
        provider = FakeProvider(RuntimeError("rate limited"))
        result = await MessageInterpreter(provider).interpret("quero reembolso")
        assert result.interaction_type == InteractionType.GENERAL
        assert not result.has_clear_product
        assert result.normalized_query == "quero reembolso"


class TestPromiseArbiter:
    @pytest.mark.asyncio
    async def test_verdict(self):
        provider = FakeProvider({
            "unauthorized": [
                {"promise": "desconto de 50%", "reason": "não autorizado", "severity": "HIGH"},
                "lixo",
            ],
            "confidence": 0.7,
        })
        verdict = await PromiseArbiter(provider).judge(["desconto de 50%"], ["Garantia de 7 dias"])

        assert len(verdict.unauthorized) == 1
        assert verdict.unauthorized[0].severity == "high"
        assert verdict.confidence == pytest.approx(0.7)
        assert "Garantia de 7 dias" in provider.calls[0]["prompt"]

    @pytest.mark.asyncio
    async def test_failure_returns_none(self):
        assert await PromiseArbiter(FakeProvider("nada")).judge(["grátis"], []) is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("unauthorized", [1, "desconto", {"promise": "x"}])
    async def test_malformed_unauthorized_list_returns_none(self, unauthorized):
        provider = FakeProvider({"unauthorized": unauthorized, "confidence": 0.9})
        assert await PromiseArbiter(provider).judge(["grátis"], []) is None


def _pending_list():
    return PendingMultiProductSelection(
        products=[
            PendingProduct(1, "prod-a", "Curso de Confeitaria", "APPROVED"),
            PendingProduct(2, "prod-b", "Curso de Panificação", "ABANDONED"),
        ],
        original_message="como acesso as aulas?",
    )


class TestSelectionOracle:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("index,expected", [(2, 2), (2.0, 2), ("1", 1)])
    async def test_whole_number_index(self, index, expected):
        provider = FakeProvider({"selected_index": index, "is_selection": True})
        verdict = await SelectionOracle(provider).detect(_pending_list(), "o segundo")
        assert verdict.selected_index == expected
        assert verdict.is_selection

    @pytest.mark.asyncio
    @pytest.mark.parametrize("index", [float("inf"), float("nan"), 2.7, "abc", True, [2]])
    async def test_unusable_index_is_no_selection(self, index):
        provider = FakeProvider({"selected_index": index, "is_selection": True})
        verdict = await SelectionOracle(provider).detect(_pending_list(), "o segundo")
        assert verdict.selected_index is None
        assert not verdict.is_selection

    @pytest.mark.asyncio
    async def test_failure_is_no_selection(self):
        verdict = await SelectionOracle(FakeProvider("???")).detect(_pending_list(), "2")
        assert verdict.selected_index is None
        assert not verdict.is_selection
