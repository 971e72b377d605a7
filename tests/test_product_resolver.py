"""Tests for product resolution, ranking and the continuity override."""

import pytest

from conftest import FakeCustomerHistory, FakeEmbedder, FakeReranker, FakeSearch, make_candidate
from retrieval.product_resolver import (
    AmbiguousEmpty,
    BestMatch,
    NoCandidates,
    ProductResolver,
    Resolution,
    apply_context_override,
    assess,
    is_short_follow_up,
    rank_candidates,
)
from retrieval.reranker import RerankScore


def make_best(product_id):
    return BestMatch(product_id=product_id, name=product_id, score=0.8)


def _resolver(candidates=None, search_error=None, reranker=None, history=None, embed_fail=False):
    return ProductResolver(
        embedder=FakeEmbedder(fail=embed_fail),
        search=FakeSearch(candidates, error=search_error),
        customer_history=history,
        reranker=reranker,
    )


class TestRanking:
    def test_boost_is_additive_and_never_lowers(self):
        candidates = [
            make_candidate("a", "Curso A", 0.80, platform_id="pa"),
            make_candidate("b", "Curso B", 0.82, platform_id="pb"),
        ]
        ranked = rank_candidates(candidates, {"pa"})
        scores = {c.product_id: c.score for c in ranked}
        assert scores["a"] == pytest.approx(0.95)
        assert scores["b"] == pytest.approx(0.82)
        assert ranked[0].product_id == "a"
        assert ranked[0].boost_applied

    def test_inputs_are_not_mutated(self):
        candidate = make_candidate("a", "Curso A", 0.5, platform_id="pa")
        rank_candidates([candidate], {"pa"})
        assert candidate.score == 0.5
        assert not candidate.boost_applied

    def test_sort_is_stable_for_ties(self):
        candidates = [make_candidate(str(i), f"Curso {i}", 0.7) for i in range(4)]
        ranked = rank_candidates(candidates, set())
        assert [c.product_id for c in ranked] == ["0", "1", "2", "3"]

    @pytest.mark.parametrize("top,second,ambiguous", [
        (0.95, 0.91, True),
        (0.95, 0.89, False),
        (0.95, 0.70, False),
    ])
    def test_ambiguity_gap(self, top, second, ambiguous):
        ranked = [make_candidate("a", "A", top), make_candidate("b", "B", second)]
        is_ambiguous, _ = assess(ranked)
        assert is_ambiguous is ambiguous

    @pytest.mark.parametrize("score,needs", [(0.89, True), (0.9, False), (0.97, False)])
    def test_confirmation_threshold(self, score, needs):
        _, needs_confirmation = assess([make_candidate("a", "A", score)])
        assert needs_confirmation is needs

    def test_single_candidate_is_never_ambiguous(self):
        is_ambiguous, _ = assess([make_candidate("a", "A", 0.3)])
        assert not is_ambiguous


class TestResolve:
    @pytest.mark.asyncio
    async def test_clear_best_match(self):
        resolver = _resolver([
            make_candidate("prod-a", "Curso de Confeitaria", 0.95, platform_id="plat-a"),
            make_candidate("prod-b", "Curso de Panificação", 0.60, platform_id="plat-b"),
        ])
        outcome = await resolver.resolve("quanto custa o curso de confeitaria?", "team-1")

        assert isinstance(outcome, Resolution)
        assert outcome.best_match.product_id == "prod-a"
        assert outcome.best_match.platform_product_id == "plat-a"
        assert not outcome.needs_clarification
        assert not outcome.reranked

    @pytest.mark.asyncio
    async def test_close_scores_need_clarification(self):
        resolver = _resolver([
            make_candidate("prod-a", "Curso de Confeitaria", 0.92),
            make_candidate("prod-b", "Curso de Panificação", 0.90),
        ])
        outcome = await resolver.resolve("o curso", "team-1")
        assert outcome.is_ambiguous
        assert outcome.needs_clarification
        assert outcome.alternative_names == ["Curso de Confeitaria", "Curso de Panificação"]

    @pytest.mark.asyncio
    async def test_close_high_scores_are_ambiguous_but_confident(self):
        resolver = _resolver([
            make_candidate("prod-a", "Curso de Confeitaria", 0.92),
            make_candidate("prod-b", "Curso de Panificação", 0.88),
        ])
        outcome = await resolver.resolve("o curso", "team-1")
        assert outcome.is_ambiguous
        assert not outcome.needs_confirmation

    @pytest.mark.asyncio
    async def test_history_boost_breaks_tie(self):
        history = FakeCustomerHistory(recent={"plat-b"})
        resolver = _resolver(
            [
                make_candidate("prod-a", "Curso de Confeitaria", 0.80, platform_id="plat-a"),
                make_candidate("prod-b", "Curso de Panificação", 0.79, platform_id="plat-b"),
            ],
            history=history,
        )
        outcome = await resolver.resolve("o curso", "team-1", customer_phone="5511987654321")
        assert outcome.best_match.product_id == "prod-b"
        assert outcome.best_match.score == pytest.approx(0.94)
        assert not outcome.is_ambiguous

    @pytest.mark.asyncio
    async def test_history_failure_skips_boost(self):
        history = FakeCustomerHistory(recent={"plat-b"}, error=RuntimeError("db down"))
        resolver = _resolver(
            [
                make_candidate("prod-a", "A", 0.95, platform_id="plat-a"),
                make_candidate("prod-b", "B", 0.60, platform_id="plat-b"),
            ],
            history=history,
        )
        outcome = await resolver.resolve("o curso", "team-1", customer_phone="5511987654321")
        assert outcome.best_match.product_id == "prod-a"

    @pytest.mark.asyncio
    async def test_no_boost_without_phone(self):
        history = FakeCustomerHistory(recent={"plat-b"})
        resolver = _resolver(
            [
                make_candidate("prod-a", "A", 0.80, platform_id="plat-a"),
                make_candidate("prod-b", "B", 0.79, platform_id="plat-b"),
            ],
            history=history,
        )
        outcome = await resolver.resolve("o curso", "team-1")
        assert outcome.best_match.product_id == "prod-a"

    @pytest.mark.asyncio
    async def test_reranker_scores_replace_search_scores(self):
        reranker = FakeReranker([RerankScore(index=1, relevance_score=0.97),
                                 RerankScore(index=0, relevance_score=0.40)])
        resolver = _resolver(
            [make_candidate("prod-a", "A", 0.95), make_candidate("prod-b", "B", 0.60)],
            reranker=reranker,
        )
        outcome = await resolver.resolve("curso b", "team-1")
        assert outcome.reranked
        assert outcome.best_match.product_id == "prod-b"
        assert outcome.best_match.score == pytest.approx(0.97)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reranker", [
        FakeReranker(error=RuntimeError("cohere down")),
        FakeReranker(scores=[]),
    ])
    async def test_reranker_failure_falls_back(self, reranker):
        resolver = _resolver(
            [make_candidate("prod-a", "A", 0.95), make_candidate("prod-b", "B", 0.60)],
            reranker=reranker,
        )
        outcome = await resolver.resolve("curso", "team-1")
        assert not outcome.reranked
        assert outcome.best_match.product_id == "prod-a"
        assert outcome.best_match.score == pytest.approx(0.95)

    @pytest.mark.asyncio
    async def test_empty_search(self):
        outcome = await _resolver([]).resolve("xyz", "team-1")
        assert isinstance(outcome, NoCandidates)
        assert outcome.reason == "empty"

    @pytest.mark.asyncio
    async def test_search_error_is_unavailable(self):
        outcome = await _resolver(search_error=RuntimeError("boom")).resolve("xyz", "team-1")
        assert isinstance(outcome, NoCandidates)
        assert outcome.reason == "search_unavailable"

    @pytest.mark.asyncio
    async def test_embedding_error_is_unavailable(self):
        outcome = await _resolver([make_candidate("a", "A", 0.9)], embed_fail=True).resolve("x", "t")
        assert isinstance(outcome, NoCandidates)
        assert outcome.reason == "search_unavailable"

    @pytest.mark.asyncio
    async def test_unconfigured_search(self):
        resolver = ProductResolver(embedder=FakeEmbedder(), search=None)
        outcome = await resolver.resolve("x", "t")
        assert isinstance(outcome, NoCandidates)
        assert outcome.reason == "search_unavailable"

    @pytest.mark.asyncio
    async def test_nameless_candidates(self):
        outcome = await _resolver([make_candidate("a", None, 0.9)]).resolve("x", "t")
        assert isinstance(outcome, AmbiguousEmpty)
        assert len(outcome.candidates) == 1

    @pytest.mark.asyncio
    async def test_search_query_is_used_for_search(self):
        search = FakeSearch([make_candidate("a", "A", 0.95)])
        resolver = ProductResolver(embedder=FakeEmbedder(), search=search)
        await resolver.resolve("quanto custa o curso de bolo?", "t", search_query="curso de bolo")
        assert search.queries == ["curso de bolo"]


class TestContextOverride:
    @pytest.mark.parametrize("message,short", [
        ("e o preço?", True),
        ("tem certificado?", True),
        ("quero saber do outro curso", False),
        ("não é esse produto", False),
        ("x" * 61, False),
    ])
    def test_short_follow_up(self, message, short):
        assert is_short_follow_up(message) is short

    def test_follow_up_keeps_current_product(self):
        outcome = Resolution(
            best_match=make_best("prod-b"), is_ambiguous=True, needs_confirmation=True,
        )
        overridden = apply_context_override(outcome, "e o preço?", "prod-a")
        assert overridden.best_match.product_id == "prod-a"
        assert not overridden.needs_clarification
        assert overridden.overridden

    def test_follow_up_rescues_empty_search(self):
        outcome = NoCandidates(query="e o preço?", team_id="t")
        overridden = apply_context_override(outcome, "e o preço?", "prod-a")
        assert isinstance(overridden, Resolution)
        assert overridden.best_match.product_id == "prod-a"

    def test_confident_interpretation_clears_flags(self):
        outcome = Resolution(
            best_match=make_best("prod-b"), is_ambiguous=True, needs_confirmation=True,
        )
        overridden = apply_context_override(
            outcome, "quero o curso de panificação", None, names_product_confidently=True
        )
        assert overridden.best_match.product_id == "prod-b"
        assert not overridden.needs_clarification

    def test_no_override_without_context(self):
        outcome = Resolution(
            best_match=make_best("prod-b"), is_ambiguous=True, needs_confirmation=False,
        )
        assert apply_context_override(outcome, "e o preço?", None) is outcome
