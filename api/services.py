"""
Service initialization and dependency injection for the Luvia product assistant API.

Creates and manages all service instances used by the API.
"""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.settings import Settings, get_settings
from conversation.db_store import DbStateStore
from conversation.disambiguation import DisambiguationStateMachine
from conversation.store import ConversationStateStore, InMemoryStateStore
from llm.guardrails import GuardrailValidator
from llm.oracles import ConfirmationOracle, MessageInterpreter, PromiseArbiter, SelectionOracle
from llm.orchestrator import ChatOrchestrator
from llm.providers import LLMProvider, create_provider
from llm.reply_generator import ReplyGenerator
from retrieval.context_enricher import CatalogService, ContextEnricher
from retrieval.customer_history import CustomerHistoryService
from retrieval.embedder import EmbeddingConfig, EmbeddingProvider, EmbeddingService
from retrieval.hybrid_search import HybridSearchClient
from retrieval.product_resolver import ProductResolver
from retrieval.reranker import CohereReranker
from retrieval.sales_strategy import SalesStrategyService
from security import RateLimiter, SecurityGate

from .handoff.manager import EscalationService
from .message_buffer import MessageBuffer

logger = logging.getLogger(__name__)


class Services:
    """Container for all application services."""

    def __init__(self):
        self.settings: Optional[Settings] = None
        self.session_factory: Optional[async_sessionmaker[AsyncSession]] = None
        self.state_store: Optional[ConversationStateStore] = None
        self.embedding_service: Optional[EmbeddingService] = None
        self.search: Optional[HybridSearchClient] = None
        self.reranker: Optional[CohereReranker] = None
        self.llm: Optional[LLMProvider] = None
        self.escalation: Optional[EscalationService] = None
        self.message_buffer: Optional[MessageBuffer] = None
        self.orchestrator: Optional[ChatOrchestrator] = None
        self._initialized = False

    def initialize(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        """
        Initialize all services.

        Args:
            session_factory: Database session factory; without one the
                state lives in memory and product search is unavailable
        """
        if self._initialized:
            return

        self.settings = get_settings()
        self.session_factory = session_factory
        logger.info(f"Initializing services with provider: {self.settings.llm_provider}")

        try:
            self._init_state_store()
            self._init_escalation()
            self._init_embedding()
            self._init_search()
            self._init_orchestrator()
            self._initialized = True
            logger.info("All services initialized successfully")
        except Exception as e:
            logger.error(f"Service initialization failed: {e}")
            # Allow API to start even if some services fail
            self._initialized = True
            logger.warning("API starting in degraded mode")

    def _init_state_store(self):
        ttl = self.settings.pending_ttl_hours * 3600
        if self.session_factory is not None:
            self.state_store = DbStateStore(self.session_factory, pending_ttl_seconds=ttl)
        else:
            logger.warning("DATABASE_URL not set, conversation state kept in memory")
            self.state_store = InMemoryStateStore(pending_ttl_seconds=ttl)

    def _init_escalation(self):
        s = self.settings
        self.escalation = EscalationService(
            webhook_url=s.escalation_webhook_url,
            timeout=s.webhook_timeout_seconds,
            session_factory=self.session_factory,
        )
        self.message_buffer = MessageBuffer(window_seconds=s.message_buffer_seconds)

    def _init_embedding(self):
        """Initialize embedding service."""
        s = self.settings

        if s.is_openai:
            provider = EmbeddingProvider.OPENAI
        else:
            provider = EmbeddingProvider.BEDROCK_TITAN

        config = EmbeddingConfig(
            provider=provider,
            model_id=s.embed_model_id,
            aws_region=s.aws_region,
            openai_api_key=s.openai_api_key,
        )
        self.embedding_service = EmbeddingService(config)
        logger.info(f"Embedding service ready: {provider.value}")

    def _init_search(self):
        """Initialize hybrid search and the optional reranker."""
        s = self.settings

        if self.session_factory is None:
            logger.warning("No database configured, product search disabled")
        else:
            self.search = HybridSearchClient(
                self.session_factory,
                match_threshold=s.search_match_threshold,
                bm25_weight=s.search_bm25_weight,
                vector_weight=s.search_vector_weight,
                result_limit=s.search_result_limit,
            )

        if s.reranker_available:
            self.reranker = CohereReranker(
                api_key=s.cohere_api_key,
                model=s.cohere_rerank_model,
                api_url=s.cohere_api_url,
                timeout=s.external_call_timeout_seconds,
            )
            logger.info(f"Cohere reranker ready: {s.cohere_rerank_model}")

    def _init_orchestrator(self):
        """Initialize the chat orchestrator."""
        s = self.settings
        timeout = s.external_call_timeout_seconds

        self.llm = create_provider(s)
        oracle_llm = create_provider(s, model_id=s.oracle_model_id)

        customer_history = None
        catalog = None
        strategies = None
        if self.session_factory is not None:
            customer_history = CustomerHistoryService(
                self.session_factory, lookback_days=s.history_lookback_days
            )
            catalog = CatalogService(self.session_factory, embedder=self.embedding_service)
            strategies = SalesStrategyService(self.session_factory)

        confirmation_oracle = ConfirmationOracle(oracle_llm, timeout_seconds=timeout)
        selection_oracle = SelectionOracle(oracle_llm, timeout_seconds=timeout)

        self.orchestrator = ChatOrchestrator(
            gate=SecurityGate(RateLimiter(
                max_requests=s.rate_limit_max_requests,
                window_seconds=s.rate_limit_window_seconds,
            )),
            state_store=self.state_store,
            disambiguation=DisambiguationStateMachine(confirmation_oracle, selection_oracle),
            interpreter=MessageInterpreter(oracle_llm, timeout_seconds=timeout),
            resolver=ProductResolver(
                embedder=self.embedding_service,
                search=self.search,
                customer_history=customer_history,
                reranker=self.reranker,
                timeout_seconds=timeout,
                result_limit=s.search_result_limit,
            ),
            enricher=ContextEnricher(
                catalog=catalog,
                customer_history=customer_history,
                strategies=strategies,
                timeout_seconds=timeout,
            ),
            reply_generator=ReplyGenerator(self.llm, agent_name=s.agent_name, timeout_seconds=timeout),
            guardrails=GuardrailValidator(PromiseArbiter(oracle_llm, timeout_seconds=timeout)),
            escalation=self.escalation,
            customer_history=customer_history,
            agent_name=s.agent_name,
            escalate_on_failure=s.escalate_on_failure,
            handoff_pauses_bot=s.handoff_pauses_bot,
            timeout_seconds=timeout,
        )
        logger.info("Chat orchestrator ready")

    @property
    def is_ready(self) -> bool:
        return self._initialized and self.orchestrator is not None

    def health(self) -> dict:
        """Return health status of all services."""
        return {
            "initialized": self._initialized,
            "database": self.session_factory is not None,
            "llm": self.llm is not None,
            "search": self.search is not None,
            "reranker": self.reranker is not None,
            "orchestrator": self.orchestrator is not None,
        }


# Singleton
_services = Services()


def get_services() -> Services:
    """Get the global services instance."""
    return _services


def initialize_services(session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
    """Initialize all services (called at startup)."""
    _services.initialize(session_factory)
