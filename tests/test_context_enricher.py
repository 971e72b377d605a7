"""Tests for context enrichment and catalog formatting helpers."""

import pytest

from conftest import CURSO_A, FakeCatalog, FakeCustomerHistory
from retrieval.context_enricher import ContextEnricher, clean_checkout_link, format_price_brl
from retrieval.customer_history import OwnershipStatus
from retrieval.sales_strategy import fallback_strategy

PHONE = "5511987654321"


class BrokenCatalog(FakeCatalog):
    async def rules_for(self, product_id):
        raise RuntimeError("rules table missing")


@pytest.mark.parametrize("cents,expected", [
    (4788, "R$ 47,88"),
    (123456, "R$ 1.234,56"),
    (5, "R$ 0,05"),
    (100000000, "R$ 1.000.000,00"),
])
def test_format_price_brl(cents, expected):
    assert format_price_brl(cents) == expected


@pytest.mark.parametrize("link,expected", [
    ("https://pay.example.com/a", "https://pay.example.com/a"),
    ("[LINK DE CHECKOUT]", ""),
    ("link aqui", ""),
    (None, ""),
])
def test_clean_checkout_link(link, expected):
    assert clean_checkout_link(link) == expected


@pytest.mark.parametrize("message,framework", [
    ("achei muito caro", "Objeção de Preço"),
    ("preciso comprar hoje", "Escassez Real"),
    ("me fala do curso", "Genérico"),
])
def test_fallback_strategy(message, framework):
    assert fallback_strategy(message).framework == framework


class TestContextEnricher:
    @pytest.mark.asyncio
    async def test_full_enrichment(self):
        enricher = ContextEnricher(
            catalog=FakeCatalog({"prod-a": CURSO_A}, rules={"prod-a": ["Garantia de 7 dias"]}),
            customer_history=FakeCustomerHistory(
                status=OwnershipStatus.APPROVED, purchased={"prod-a", "prod-b"}
            ),
        )
        context = await enricher.enrich("team-1", product_id="prod-a", customer_phone=PHONE,
                                        user_intent="quanto custa?")

        assert context.product.name == "Curso de Confeitaria"
        assert context.rules == ["Garantia de 7 dias"]
        assert context.owns_product
        assert context.is_multi_product_customer
        assert context.degraded == []
        assert "Garantia de 7 dias" in context.to_prompt_context()

    @pytest.mark.asyncio
    async def test_lookup_by_name(self):
        enricher = ContextEnricher(catalog=FakeCatalog({"prod-a": CURSO_A}))
        context = await enricher.enrich("team-1", product_name="curso de confeitaria")
        assert context.product.product_id == "prod-a"

    @pytest.mark.asyncio
    async def test_failed_fetches_degrade_independently(self):
        enricher = ContextEnricher(
            catalog=BrokenCatalog({"prod-a": CURSO_A}),
            customer_history=FakeCustomerHistory(error=RuntimeError("events down")),
        )
        context = await enricher.enrich("team-1", product_id="prod-a", customer_phone=PHONE,
                                        user_intent="está caro")

        assert context.product.name == "Curso de Confeitaria"
        assert context.rules == []
        assert context.customer_status == OwnershipStatus.UNKNOWN
        assert context.purchased_product_ids == set()
        assert context.sales_strategy.framework == "Objeção de Preço"
        assert set(context.degraded) == {"rules", "customer_status", "purchased_products"}

    @pytest.mark.asyncio
    async def test_without_phone_status_is_unknown(self):
        history = FakeCustomerHistory(status=OwnershipStatus.APPROVED)
        enricher = ContextEnricher(catalog=FakeCatalog({"prod-a": CURSO_A}), customer_history=history)
        context = await enricher.enrich("team-1", product_id="prod-a")
        assert context.customer_status == OwnershipStatus.UNKNOWN
        assert not context.owns_product

    @pytest.mark.asyncio
    async def test_without_catalog_product_is_degraded(self):
        context = await ContextEnricher(catalog=None).enrich("team-1", product_id="prod-a")
        assert context.product is None
        assert "product" in context.degraded
