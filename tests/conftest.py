"""Shared fixtures and fakes for the Luvia assistant tests."""

import json
import os
from typing import Dict, List, Optional, Set

import pytest
from fastapi.testclient import TestClient

# Ensure we use test settings before anything imports config.settings
os.environ.setdefault("LLM_PROVIDER", "openai")
os.environ.setdefault("OPENAI_API_KEY", "test-key")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")
os.environ.setdefault("MESSAGE_BUFFER_SECONDS", "0")
os.environ.pop("DATABASE_URL", None)

from api.handoff.manager import EscalationService  # noqa: E402
from conversation.disambiguation import DisambiguationStateMachine  # noqa: E402
from conversation.store import InMemoryStateStore  # noqa: E402
from llm.guardrails import GuardrailValidator  # noqa: E402
from llm.oracles import (  # noqa: E402
    ConfirmationOracle,
    MessageInterpreter,
    PromiseArbiter,
    SelectionOracle,
)
from llm.orchestrator import ChatOrchestrator  # noqa: E402
from llm.reply_generator import ReplyGenerator  # noqa: E402
from retrieval.context_enricher import ContextEnricher, ProductInfo  # noqa: E402
from retrieval.customer_history import CustomerProduct, OwnershipStatus  # noqa: E402
from retrieval.hybrid_search import RankedCandidate  # noqa: E402
from retrieval.product_resolver import ProductResolver  # noqa: E402
from security import RateLimiter, SecurityGate  # noqa: E402


# ── Fakes ─────────────────────────────────────────────

class FakeProvider:
    """Completion provider returning scripted replies (last one repeats)."""

    def __init__(self, *replies):
        self.replies = list(replies) or [""]
        self.calls: List[Dict] = []

    async def agenerate(self, prompt, system=None, history=None, max_tokens=None,
                        temperature=None, json_mode=False):
        self.calls.append({"prompt": prompt, "system": system, "json_mode": json_mode})
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, BaseException):
            raise reply
        if isinstance(reply, dict):
            return json.dumps(reply)
        return reply


class FakeEmbedder:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.texts: List[str] = []

    async def embed_text(self, text):
        self.texts.append(text)
        if self.fail:
            raise RuntimeError("embedding service down")
        return [0.1, 0.2, 0.3]


class FakeSearch:
    def __init__(self, candidates=None, error: Optional[Exception] = None):
        self.candidates = candidates or []
        self.error = error
        self.queries: List[str] = []

    async def search(self, embedding, query_text, team_id, limit=None):
        self.queries.append(query_text)
        if self.error:
            raise self.error
        return list(self.candidates)


class FakeReranker:
    def __init__(self, scores=None, error: Optional[Exception] = None):
        self.scores = scores or []
        self.error = error

    async def rerank(self, query, documents):
        if self.error:
            raise self.error
        return list(self.scores)


class FakeCustomerHistory:
    def __init__(
        self,
        products: Optional[List[CustomerProduct]] = None,
        recent: Optional[Set[str]] = None,
        status: OwnershipStatus = OwnershipStatus.UNKNOWN,
        purchased: Optional[Set[str]] = None,
        error: Optional[Exception] = None,
    ):
        self.products = products or []
        self.recent = recent or set()
        self.status = status
        self.purchased = purchased or set()
        self.error = error
        self.event_type_requests: List[Optional[List[str]]] = []

    async def recent_platform_ids(self, team_id, customer_phone):
        if self.error:
            raise self.error
        return set(self.recent)

    async def customer_products(self, team_id, customer_phone, event_types=None):
        self.event_type_requests.append(event_types)
        if self.error:
            raise self.error
        if event_types:
            return [p for p in self.products if p.event_type in event_types]
        return list(self.products)

    async def ownership_status(self, team_id, customer_phone, platform_product_id):
        if self.error:
            raise self.error
        return self.status

    async def purchased_product_ids(self, team_id, customer_phone):
        if self.error:
            raise self.error
        return set(self.purchased)


class FakeCatalog:
    def __init__(self, products: Optional[Dict[str, ProductInfo]] = None,
                 rules: Optional[Dict[str, List[str]]] = None):
        self.products = products or {}
        self.rules = rules or {}

    async def get_product(self, team_id, product_id):
        return self.products.get(product_id)

    async def find_by_name(self, team_id, name):
        for product in self.products.values():
            if product.name.lower() == name.lower():
                return product
        return None

    async def rules_for(self, product_id):
        return list(self.rules.get(product_id, []))


def make_candidate(product_id, name, score, platform_id=None, **metadata):
    metadata = {"nome": name, **metadata} if name else dict(metadata)
    return RankedCandidate(
        product_id=product_id,
        metadata=metadata,
        combined_score=score,
        platform_product_id=platform_id,
    )


def interpretation(interaction_type="general", has_clear_product=False, product_name=None,
                   normalized_query="", confidence=0.5):
    return {
        "interaction_type": interaction_type,
        "has_clear_product": has_clear_product,
        "product_name": product_name,
        "normalized_query": normalized_query,
        "confidence": confidence,
    }


CURSO_A = ProductInfo(
    product_id="prod-a",
    name="Curso de Confeitaria",
    price="R$ 497,00",
    checkout_link="https://pay.example.com/a",
    platform_product_id="plat-a",
)
CURSO_B = ProductInfo(
    product_id="prod-b",
    name="Curso de Panificação",
    price="R$ 297,00",
    checkout_link="https://pay.example.com/b",
    platform_product_id="plat-b",
)


class Pipeline:
    """An orchestrator wired entirely with fakes; attributes are the fakes."""

    def __init__(
        self,
        candidates=None,
        interpreter_replies=None,
        confirmation_replies=None,
        selection_replies=None,
        agent_replies=None,
        arbiter_replies=None,
        customer_history: Optional[FakeCustomerHistory] = None,
        catalog: Optional[FakeCatalog] = None,
        search_error: Optional[Exception] = None,
        max_requests: int = 100,
        handoff_pauses_bot: bool = False,
        escalate_on_failure: bool = True,
    ):
        self.store = InMemoryStateStore(pending_ttl_seconds=24 * 3600)
        self.search = FakeSearch(candidates, error=search_error)
        self.interpreter_llm = FakeProvider(*(interpreter_replies or [interpretation()]))
        self.confirmation_llm = FakeProvider(*(confirmation_replies or ["{}"]))
        self.selection_llm = FakeProvider(*(selection_replies or ["{}"]))
        self.agent_llm = FakeProvider(*(agent_replies or ["Claro! Posso te ajudar com isso."]))
        self.arbiter_llm = FakeProvider(*(arbiter_replies or [{"unauthorized": [], "confidence": 0.9}]))
        self.customer_history = customer_history
        self.catalog = catalog or FakeCatalog({"prod-a": CURSO_A, "prod-b": CURSO_B})
        self.escalation = EscalationService(webhook_url=None)

        self.orchestrator = ChatOrchestrator(
            gate=SecurityGate(RateLimiter(max_requests=max_requests, window_seconds=10)),
            state_store=self.store,
            disambiguation=DisambiguationStateMachine(
                ConfirmationOracle(self.confirmation_llm),
                SelectionOracle(self.selection_llm),
            ),
            interpreter=MessageInterpreter(self.interpreter_llm),
            resolver=ProductResolver(
                embedder=FakeEmbedder(),
                search=self.search,
                customer_history=customer_history,
            ),
            enricher=ContextEnricher(catalog=self.catalog, customer_history=customer_history),
            reply_generator=ReplyGenerator(self.agent_llm),
            guardrails=GuardrailValidator(PromiseArbiter(self.arbiter_llm)),
            escalation=self.escalation,
            customer_history=customer_history,
            handoff_pauses_bot=handoff_pauses_bot,
            escalate_on_failure=escalate_on_failure,
        )


# ── Fixtures ──────────────────────────────────────────

@pytest.fixture
def pipeline_factory():
    return Pipeline


@pytest.fixture
def app():
    from api.main import app as fastapi_app
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    """FastAPI test client (lifespan not started; services are overridden per test)."""
    return TestClient(app)


@pytest.fixture
def admin_headers():
    return {"X-API-Key": "test-admin-key"}
