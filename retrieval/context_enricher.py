"""
Context enrichment for reply generation.

Given the resolved product, gathers in parallel the authorized rules,
the customer's ownership status, a sales strategy and the customer's
purchased products. Each fetch fails on its own: a failure degrades
that field to its safe default and is listed in ``degraded``.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Set

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.models import ProductCatalog
from database.repositories import ProductCatalogRepository, ProductRuleRepository

from .customer_history import CustomerHistory, OwnershipStatus
from .embedder import EmbeddingService, cosine_similarity
from .sales_strategy import SalesStrategyPlan, fallback_strategy

logger = logging.getLogger(__name__)

NAME_MATCH_THRESHOLD = 0.9
CHECKOUT_PLACEHOLDERS = ("LINK DE CHECKOUT", "LINK DO PRODUTO", "LINK AQUI")


@dataclass
class ProductInfo:
    product_id: str
    name: str
    price: str = ""
    checkout_link: str = ""
    description: str = ""
    platform_product_id: Optional[str] = None


@dataclass
class EnrichedContext:
    """Everything reply generation needs about the product and customer."""
    product: Optional[ProductInfo] = None
    rules: List[str] = field(default_factory=list)
    customer_status: OwnershipStatus = OwnershipStatus.UNKNOWN
    sales_strategy: SalesStrategyPlan = field(default_factory=lambda: fallback_strategy(""))
    purchased_product_ids: Set[str] = field(default_factory=set)
    degraded: List[str] = field(default_factory=list)

    @property
    def is_multi_product_customer(self) -> bool:
        return len(self.purchased_product_ids) > 1

    @property
    def owns_product(self) -> bool:
        return self.customer_status == OwnershipStatus.APPROVED

    def to_prompt_context(self) -> str:
        lines = []
        if self.product:
            lines.append(f"Produto: {self.product.name}")
            if self.product.description:
                lines.append(f"Descrição: {self.product.description}")
            if self.product.price:
                lines.append(f"Preço: {self.product.price}")
            if self.product.checkout_link:
                lines.append(f"Link de checkout: {self.product.checkout_link}")
        lines.append(f"Situação do cliente neste produto: {self.customer_status.value}")
        if self.rules:
            lines.append("Regras autorizadas:")
            lines.extend(f"- {r}" for r in self.rules)
        else:
            lines.append("Regras autorizadas: nenhuma cadastrada")
        lines.append(
            f"Estratégia de vendas: {self.sales_strategy.framework}. "
            f"{self.sales_strategy.instruction} CTA sugerido: {self.sales_strategy.cta_suggested}"
        )
        return "\n".join(lines)


def format_price_brl(cents: int) -> str:
    """4788 -> 'R$ 47,88'; 123456 -> 'R$ 1.234,56'."""
    reais, centavos = divmod(int(cents), 100)
    return f"R$ {reais:,}".replace(",", ".") + f",{centavos:02d}"


def clean_checkout_link(link: Optional[str]) -> str:
    if not link:
        return ""
    upper = link.upper()
    if any(p in upper for p in CHECKOUT_PLACEHOLDERS):
        return ""
    return link


class ProductCatalogReader(Protocol):
    async def get_product(self, team_id: str, product_id: str) -> Optional[ProductInfo]:
        ...

    async def find_by_name(self, team_id: str, name: str) -> Optional[ProductInfo]:
        ...

    async def rules_for(self, product_id: str) -> List[str]:
        ...


class StrategySelector(Protocol):
    async def select(self, team_id: str, message: str) -> SalesStrategyPlan:
        ...


class CatalogService:
    """Product catalog reads backed by the product_catalog tables."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        embedder: Optional[EmbeddingService] = None,
        name_threshold: float = NAME_MATCH_THRESHOLD,
    ):
        self._session_factory = session_factory
        self.embedder = embedder
        self.name_threshold = name_threshold

    async def get_product(self, team_id: str, product_id: str) -> Optional[ProductInfo]:
        async with self._session_factory() as session:
            product = await ProductCatalogRepository(session).get_by_id(team_id, product_id)
        return self._to_info(product, team_id) if product else None

    async def find_by_name(self, team_id: str, name: str) -> Optional[ProductInfo]:
        """Closest catalog product by name embedding, accepted at >= name_threshold."""
        if self.embedder is None:
            return None
        query = await self.embedder.embed_text(name)
        async with self._session_factory() as session:
            products = await ProductCatalogRepository(session).list_with_embeddings(team_id)

        best, best_score = None, 0.0
        for product in products:
            score = cosine_similarity(query, product.embedding or [])
            if score > best_score:
                best, best_score = product, score

        if best is None or best_score < self.name_threshold:
            logger.info(f"No catalog product close enough to '{name}' (best {best_score:.3f})")
            return None
        return self._to_info(best, team_id)

    async def rules_for(self, product_id: str) -> List[str]:
        async with self._session_factory() as session:
            rules = await ProductRuleRepository(session).list_active(product_id)
        return [r.rule_text for r in rules]

    @staticmethod
    def _to_info(product: ProductCatalog, team_id: str) -> ProductInfo:
        metadata: Dict[str, Any] = product.metadata_json or {}
        if product.price_cents is not None:
            price = format_price_brl(product.price_cents)
        elif isinstance(metadata.get("preco"), (int, float)):
            price = format_price_brl(metadata["preco"])
        else:
            price = str(metadata.get("preco") or "")

        checkout = clean_checkout_link(product.checkout_url or metadata.get("link_checkout"))
        if not checkout:
            logger.error(
                f"Valid checkout link not found for product {product.id} (team {team_id})"
            )

        return ProductInfo(
            product_id=product.id,
            name=product.name,
            price=price,
            checkout_link=checkout,
            description=product.description or metadata.get("descricao") or "",
            platform_product_id=product.platform_product_id,
        )


class ContextEnricher:
    """Aggregates product, rules, ownership and strategy for one turn."""

    def __init__(
        self,
        catalog: Optional[ProductCatalogReader],
        customer_history: Optional[CustomerHistory] = None,
        strategies: Optional[StrategySelector] = None,
        timeout_seconds: float = 15.0,
    ):
        self.catalog = catalog
        self.customer_history = customer_history
        self.strategies = strategies
        self.timeout_seconds = timeout_seconds

    async def enrich(
        self,
        team_id: str,
        product_id: Optional[str] = None,
        product_name: Optional[str] = None,
        customer_phone: Optional[str] = None,
        user_intent: str = "",
    ) -> EnrichedContext:
        """
        Build the enriched context.

        Args:
            team_id: Tenant
            product_id: Resolved product id (preferred)
            product_name: Name for similarity lookup when no id is known
            customer_phone: Digits-only phone for ownership lookups
            user_intent: The customer's message, used for strategy selection

        Returns:
            EnrichedContext; never raises for a failed fetch
        """
        context = EnrichedContext()

        try:
            if self.catalog is None:
                if product_id or product_name:
                    context.degraded.append("product")
            elif product_id:
                context.product = await self._bounded(self.catalog.get_product(team_id, product_id))
            elif product_name:
                context.product = await self._bounded(self.catalog.find_by_name(team_id, product_name))
        except Exception as e:
            logger.warning(f"Product lookup failed: {e!r}")
            context.degraded.append("product")

        resolved_id = context.product.product_id if context.product else product_id
        platform_id = context.product.platform_product_id if context.product else None

        rules, status, strategy, purchased = await asyncio.gather(
            self._rules(resolved_id),
            self._status(team_id, customer_phone, platform_id),
            self._strategy(team_id, user_intent),
            self._purchased(team_id, customer_phone),
            return_exceptions=True,
        )

        context.rules = self._or_default("rules", rules, [], context)
        context.customer_status = self._or_default("customer_status", status, OwnershipStatus.UNKNOWN, context)
        context.sales_strategy = self._or_default(
            "sales_strategy", strategy, fallback_strategy(user_intent), context
        )
        context.purchased_product_ids = self._or_default("purchased_products", purchased, set(), context)

        logger.info(
            f"Context enriched: product={context.product.name if context.product else None}, "
            f"rules={len(context.rules)}, status={context.customer_status.value}, "
            f"strategy={context.sales_strategy.framework}, degraded={context.degraded}"
        )
        return context

    async def _bounded(self, coro):
        return await asyncio.wait_for(coro, timeout=self.timeout_seconds)

    async def _rules(self, product_id: Optional[str]) -> List[str]:
        if not product_id or self.catalog is None:
            return []
        return await self._bounded(self.catalog.rules_for(product_id))

    async def _status(
        self, team_id: str, customer_phone: Optional[str], platform_id: Optional[str]
    ) -> OwnershipStatus:
        if not (customer_phone and platform_id and self.customer_history):
            return OwnershipStatus.UNKNOWN
        return await self._bounded(
            self.customer_history.ownership_status(team_id, customer_phone, platform_id)
        )

    async def _strategy(self, team_id: str, message: str) -> SalesStrategyPlan:
        if self.strategies is None:
            return fallback_strategy(message)
        return await self._bounded(self.strategies.select(team_id, message))

    async def _purchased(self, team_id: str, customer_phone: Optional[str]) -> Set[str]:
        if not (customer_phone and self.customer_history):
            return set()
        return await self._bounded(
            self.customer_history.purchased_product_ids(team_id, customer_phone)
        )

    @staticmethod
    def _or_default(name: str, value: Any, default: Any, context: EnrichedContext) -> Any:
        if isinstance(value, BaseException):
            logger.warning(f"Enrichment fetch '{name}' failed, using default: {value!r}")
            context.degraded.append(name)
            return default
        return value
