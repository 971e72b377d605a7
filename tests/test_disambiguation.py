"""Tests for the disambiguation state machine and its oracles."""

import asyncio

import pytest

from conftest import FakeProvider
from conversation import messages
from conversation.disambiguation import (
    DisambiguationState,
    DisambiguationStateMachine,
    TransitionKind,
)
from conversation.state import (
    ConversationMode,
    ConversationState,
    EventType,
    PendingContextSwitch,
    PendingMultiProductSelection,
    PendingProduct,
    PendingProductConfirmation,
)
from llm.oracles import ConfirmationOracle, SelectionOracle


def _machine(confirmation=None, selection=None):
    return DisambiguationStateMachine(
        ConfirmationOracle(FakeProvider(*(confirmation or ["{}"]))),
        SelectionOracle(FakeProvider(*(selection or ["{}"]))),
    )


def _single_pending_state():
    state = ConversationState.new("5511987654321", team_id="team-1")
    state.set_pending_product_confirmation(PendingProductConfirmation(
        suggested_product_id="prod-a",
        suggested_product_name="Curso de Confeitaria",
        event_type=EventType.APPROVED,
        original_message="como acesso as aulas?",
    ))
    return state


def _multi_pending_state():
    state = ConversationState.new("5511987654321", team_id="team-1")
    state.set_pending_multi_product_selection(PendingMultiProductSelection(
        products=[
            PendingProduct(1, "prod-a", "Curso de Confeitaria", "APPROVED"),
            PendingProduct(2, "prod-b", "Curso de Panificação", "ABANDONED"),
        ],
        original_message="como acesso as aulas?",
        original_intent="support",
    ))
    return state


def _switch_pending_state(to_mode=ConversationMode.SALES):
    state = ConversationState.new("5511987654321", team_id="team-1")
    state.switch_product("prod-a")
    state.set_active_support_product("prod-a")
    state.set_pending_context_switch(PendingContextSwitch(
        from_product_id="prod-a",
        from_product_name="Curso de Confeitaria",
        from_mode=ConversationMode.SUPPORT,
        to_product_id="prod-b",
        to_product_name="Curso de Panificação",
        to_mode=to_mode,
        original_message="quero comprar o curso de panificação",
    ))
    return state


class TestSingleConfirmation:
    @pytest.mark.asyncio
    async def test_confirmed_sets_current_product(self):
        state = _single_pending_state()
        machine = _machine(confirmation=[{"user_response_type": "confirmed"}])

        transition = await machine.handle(state, "sim, esse mesmo")

        assert transition.kind == TransitionKind.CONFIRMED
        assert transition.product_id == "prod-a"
        assert transition.question == "como acesso as aulas?"
        assert transition.continues_pipeline
        assert state.current_product_id == "prod-a"
        assert not state.has_pending

    @pytest.mark.asyncio
    async def test_rejected_asks_which_product(self):
        state = _single_pending_state()
        machine = _machine(confirmation=[{"user_response_type": "rejected"}])

        transition = await machine.handle(state, "não")

        assert transition.kind == TransitionKind.REJECTED
        assert transition.reply == messages.ASK_WHICH_PRODUCT
        assert state.current_product_id is None
        assert not state.has_pending

    @pytest.mark.asyncio
    async def test_indecisive_keeps_pending_untouched(self):
        state = _single_pending_state()
        before = state.pending_product_confirmation.to_dict()
        machine = _machine(confirmation=[{"user_response_type": "indecisive"}])

        first = await machine.handle(state, "hmm, talvez")
        second = await machine.handle(state, "não sei")

        assert first.kind == second.kind == TransitionKind.INDECISIVE
        assert first.reply == second.reply
        assert state.pending_product_confirmation.to_dict() == before

    @pytest.mark.asyncio
    async def test_confirmed_without_stored_question_defers_to_caller(self):
        state = ConversationState.new("5511987654321", team_id="team-1")
        state.set_pending_product_confirmation(PendingProductConfirmation(
            suggested_product_id="prod-a",
            suggested_product_name="Curso de Confeitaria",
            event_type=EventType.APPROVED,
        ))
        machine = _machine(confirmation=[{"user_response_type": "confirmed"}])

        transition = await machine.handle(state, "sim")
        assert transition.question is None

    @pytest.mark.asyncio
    async def test_legacy_boolean_shape(self):
        state = _single_pending_state()
        machine = _machine(confirmation=[{"confirmed": True, "rejected": False}])
        transition = await machine.handle(state, "isso")
        assert transition.kind == TransitionKind.CONFIRMED

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reply", [
        "not json at all",
        asyncio.TimeoutError(),
        RuntimeError("provider down"),
    ])
    async def test_oracle_failure_is_indecisive(self, reply):
        state = _single_pending_state()
        machine = _machine(confirmation=[reply])
        transition = await machine.handle(state, "sim")
        assert transition.kind == TransitionKind.INDECISIVE
        assert state.pending_product_confirmation is not None


class TestMultiSelection:
    @pytest.mark.asyncio
    async def test_selection_by_index(self):
        state = _multi_pending_state()
        machine = _machine(selection=[{"selected_index": 2, "is_selection": True, "confidence": 0.9}])

        transition = await machine.handle(state, "o 2")

        assert transition.kind == TransitionKind.SELECTED
        assert transition.product_id == "prod-b"
        assert transition.question == "como acesso as aulas?"
        assert transition.intent == "support"
        assert state.current_product_id == "prod-b"
        assert not state.has_pending

    @pytest.mark.asyncio
    async def test_out_of_range_index_is_ambiguous(self):
        state = _multi_pending_state()
        machine = _machine(selection=[{"selected_index": 7, "is_selection": True}])

        transition = await machine.handle(state, "o 7")

        assert transition.kind == TransitionKind.AMBIGUOUS
        assert transition.reply == messages.product_list_reask(state.pending_multi_product_selection)
        assert state.current_product_id is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("index", [float("inf"), 1.5, "abc"])
    async def test_unusable_index_is_ambiguous(self, index):
        state = _multi_pending_state()
        machine = _machine(selection=[{"selected_index": index, "is_selection": True}])

        transition = await machine.handle(state, "esse aí")

        assert transition.kind == TransitionKind.AMBIGUOUS
        assert state.pending_multi_product_selection is not None
        assert state.current_product_id is None

    @pytest.mark.asyncio
    async def test_ambiguous_reply_keeps_list(self):
        state = _multi_pending_state()
        machine = _machine(selection=[{"selected_index": None, "is_selection": False}])

        transition = await machine.handle(state, "aquele lá")

        assert transition.kind == TransitionKind.AMBIGUOUS
        assert len(state.pending_multi_product_selection.products) == 2

    @pytest.mark.asyncio
    async def test_new_question_clears_list(self):
        state = _multi_pending_state()
        machine = _machine(selection=[{"is_new_question": True}])

        transition = await machine.handle(state, "vocês têm curso de doces finos?")

        assert transition.kind == TransitionKind.NEW_QUESTION
        assert transition.continues_pipeline
        assert transition.question == "vocês têm curso de doces finos?"
        assert not state.has_pending

    @pytest.mark.asyncio
    async def test_unparseable_oracle_is_ambiguous(self):
        state = _multi_pending_state()
        machine = _machine(selection=["???"])
        transition = await machine.handle(state, "o primeiro")
        assert transition.kind == TransitionKind.AMBIGUOUS


class TestContextSwitch:
    @pytest.mark.asyncio
    async def test_confirm_switch_to_sales_leaves_support(self):
        state = _switch_pending_state(ConversationMode.SALES)
        machine = _machine(confirmation=[{"user_response_type": "confirmed"}])

        transition = await machine.handle(state, "sim, quero mudar")

        assert transition.kind == TransitionKind.CONFIRMED
        assert transition.question == "quero comprar o curso de panificação"
        assert state.current_product_id == "prod-b"
        assert state.active_support_product_id is None
        assert state.support_mode_since is None

    @pytest.mark.asyncio
    async def test_confirm_switch_to_support_moves_support(self):
        state = _switch_pending_state(ConversationMode.SUPPORT)
        machine = _machine(confirmation=[{"user_response_type": "confirmed"}])

        await machine.handle(state, "sim")

        assert state.current_product_id == "prod-b"
        assert state.active_support_product_id == "prod-b"

    @pytest.mark.asyncio
    async def test_reject_keeps_original_product(self):
        state = _switch_pending_state()
        machine = _machine(confirmation=[{"keep_current_context": True}])

        transition = await machine.handle(state, "não, continua no outro")

        assert transition.kind == TransitionKind.REJECTED
        assert transition.product_id == "prod-a"
        assert state.current_product_id == "prod-a"
        assert state.active_support_product_id == "prod-a"
        assert not state.has_pending

    @pytest.mark.asyncio
    async def test_indecisive_reasks(self):
        state = _switch_pending_state()
        machine = _machine(confirmation=[{"user_response_type": "indecisive"}])

        transition = await machine.handle(state, "hmm")

        assert transition.reply == messages.context_switch_reask(state.pending_context_switch)
        assert DisambiguationStateMachine.current_state(state) == DisambiguationState.PENDING_CONTEXT_SWITCH


@pytest.mark.asyncio
async def test_handle_without_pending_raises():
    state = ConversationState.new("5511987654321")
    with pytest.raises(ValueError):
        await _machine().handle(state, "oi")
