"""액션 디스패처 테스트.

FakeTransport는 응답 전에 실제로 양보하므로 동시 디스패치 경합을 재현할 수 있다.
"""

import asyncio

import pytest

from src.concierge.dispatcher import NEED_ORDER_MESSAGE, SNAG_MESSAGE, ActionDispatcher
from src.concierge.state import ConversationState, EscalationDraft, LastOrder
from src.concierge.types import ConciergeIntent, ProductSummary
from src.config import ConciergeConfig, FeatureFlags

THANK_YOU = {
    "module": {"type": "info-card", "id": "info-card-1", "title": "Thank you"},
    "messages": [],
    "sessionPatch": {"lastIntent": "csat", "missCount": 0},
    "intent": "csat",
}

PRODUCT = {"id": "prod-halo-band", "title": "Halo Pave Band", "price": 920, "readyToShip": True}


def _dispatcher(state, transport, flags=None):
    return ActionDispatcher(state, transport, ConciergeConfig(), flags)


class TestDispatchGuards:
    """무시/검증 경로 테스트."""

    @pytest.mark.asyncio
    async def test_unknown_action_leaves_state(self, fake_transport):
        """알 수 없는 액션은 상태를 건드리지 않음."""
        state = ConversationState()
        before = state.to_context()

        await _dispatcher(state, fake_transport).dispatch({"type": "launch-rocket", "data": {}})

        assert fake_transport.calls == []
        assert state.messages == []
        assert state.error is None
        assert state.to_context() == before

    @pytest.mark.asyncio
    async def test_malformed_action_ignored(self, fake_transport):
        state = ConversationState()
        await _dispatcher(state, fake_transport).dispatch({"data": {"rating": "great"}})

        assert fake_transport.calls == []
        assert state.error is None

    @pytest.mark.asyncio
    async def test_double_submit_sends_once(self, transport_factory):
        """처리 중 두 번째 제출은 무시."""
        transport = transport_factory({"/concierge/intents/csat": THANK_YOU})
        state = ConversationState()
        dispatcher = _dispatcher(state, transport)
        action = {"type": "submit-csat", "data": {"response": {"rating": "great"}}}

        await asyncio.gather(dispatcher.dispatch(action), dispatcher.dispatch(action))

        assert len(transport.calls) == 1
        assert state.is_processing is False
        assert state.current_module.type == "info-card"

    @pytest.mark.asyncio
    async def test_invalid_rating_no_call(self, fake_transport):
        state = ConversationState()
        await _dispatcher(state, fake_transport).dispatch({"type": "submit-csat", "data": {"response": {"rating": "meh"}}})

        assert fake_transport.calls == []
        assert state.error is not None
        assert state.error.retry_action is None

    @pytest.mark.asyncio
    async def test_invalid_email_no_call(self, fake_transport):
        """로컬 검증 실패는 네트워크로 나가지 않음."""
        state = ConversationState()
        await _dispatcher(state, fake_transport).dispatch({
            "type": "submit-escalation",
            "data": {"name": "Maya", "email": "maya@", "notes": "Ring sizing"},
        })

        assert fake_transport.calls == []
        assert state.error.message == "Add a valid email so a stylist can reach you."
        assert state.escalation == EscalationDraft(name="Maya", email="maya@", notes="Ring sizing")

    @pytest.mark.asyncio
    async def test_return_without_order(self, fake_transport):
        state = ConversationState()
        await _dispatcher(state, fake_transport).dispatch({"type": "submit-return-option", "data": {"option": "resize"}})

        assert fake_transport.calls == []
        assert state.messages[-1].text == NEED_ORDER_MESSAGE

    @pytest.mark.asyncio
    async def test_text_updates_need_order(self, fake_transport):
        state = ConversationState()
        await _dispatcher(state, fake_transport).dispatch({"type": "text-updates"})

        assert fake_transport.calls == []
        assert state.error is not None


class TestDispatchCalls:
    """전송 호출 테스트."""

    @pytest.mark.asyncio
    async def test_failed_escalation_keeps_draft(self, transport_factory):
        """전송 실패 시 초안 보존 + 재시도 안내."""
        transport = transport_factory(fail=True)
        state = ConversationState()
        action = {"type": "submit-escalation", "data": {"name": "Maya", "email": "maya@example.com", "notes": "Hi"}}

        await _dispatcher(state, transport).dispatch(action)

        assert len(transport.calls) == 1
        assert state.escalation.email == "maya@example.com"
        assert state.error.message == SNAG_MESSAGE
        assert state.error.retry_action.to_wire() == action
        assert state.is_processing is False

    @pytest.mark.asyncio
    async def test_retry_after_failure(self, transport_factory):
        transport = transport_factory({"/concierge/intents/csat": THANK_YOU}, fail=True)
        state = ConversationState()
        dispatcher = _dispatcher(state, transport)

        await dispatcher.dispatch({"type": "submit-csat", "data": {"response": {"rating": "great"}}})
        transport.fail = False
        await dispatcher.dispatch(state.error.retry_action)

        assert state.error is None
        assert state.current_module.type == "info-card"

    @pytest.mark.asyncio
    async def test_chooser_find_product_preset(self, fake_transport):
        """상품 탐색 선택 시 ready-to-ship 프리셋."""
        state = ConversationState(miss_count=2)
        await _dispatcher(state, fake_transport).dispatch({
            "type": "intent-chooser-select",
            "data": {"intent": "find_product"},
        })

        call = fake_transport.calls[0]
        assert call["path"] == "/concierge/intents/find_product"
        assert call["body"]["payload"]["source"] == "intent-chooser"
        assert call["body"]["payload"]["slug"] == "ready-to-ship"
        assert call["body"]["context"]["missCount"] == 0
        assert call["request_id"].startswith("find_product-")
        assert state.miss_count == 0

    @pytest.mark.asyncio
    async def test_chooser_preset_flag_off(self, fake_transport):
        state = ConversationState()
        flags = FeatureFlags(ready_to_ship_default=False)
        await _dispatcher(state, fake_transport, flags).dispatch({
            "type": "intent-chooser-select",
            "data": {"intent": "find_product"},
        })

        assert fake_transport.calls[0]["body"]["payload"] == {"source": "intent-chooser"}

    @pytest.mark.asyncio
    async def test_return_option_sends_last_order(self, fake_transport):
        state = ConversationState(last_order=LastOrder(order_id="ord_1003", order_number="GG-10321"))
        await _dispatcher(state, fake_transport).dispatch({"type": "submit-return-option", "data": {"option": "resize"}})

        call = fake_transport.calls[0]
        assert call["path"] == "/concierge/intents/return_exchange"
        assert call["body"]["payload"] == {"orderId": "ord_1003", "orderNumber": "GG-10321"}

    @pytest.mark.asyncio
    async def test_shortlist_product(self, transport_factory):
        transport = transport_factory({"/concierge/shortlist": {"sessionId": "s", "count": 1}})
        state = ConversationState()
        dispatcher = _dispatcher(state, transport)
        action = {"type": "shortlist-product", "data": {"product": PRODUCT}}

        await dispatcher.dispatch(action)
        await dispatcher.dispatch(action)

        assert [item.id for item in state.shortlist] == ["prod-halo-band"]
        assert transport.calls[0]["body"]["items"][0]["id"] == "prod-halo-band"
        assert state.current_module.type == "shortlist-panel"
        assert len([m for m in state.messages if m.is_module]) == 1

    @pytest.mark.asyncio
    async def test_shortlist_failure_keeps_items(self, transport_factory):
        transport = transport_factory(fail=True)
        saved = ProductSummary(id="prod-tide-hoops", title="Tide Huggie Hoops", price=260)
        state = ConversationState(shortlist=[saved])

        await _dispatcher(state, transport).dispatch({"type": "shortlist-clear"})

        assert state.shortlist == [saved]
        assert state.error.message == SNAG_MESSAGE

    @pytest.mark.asyncio
    async def test_shortlist_remove(self, transport_factory):
        transport = transport_factory({"/concierge/shortlist": {"count": 0}})
        state = ConversationState(shortlist=[ProductSummary.model_validate(PRODUCT)])

        await _dispatcher(state, transport).dispatch({"type": "shortlist-remove", "data": {"productId": "prod-halo-band"}})

        assert state.shortlist == []
        assert transport.calls[0]["body"]["items"] == []

    @pytest.mark.asyncio
    async def test_text_updates(self, transport_factory):
        transport = transport_factory({"/concierge/order-updates": {"subscribed": True, "message": "Subscribed!"}})
        state = ConversationState(last_order=LastOrder(order_id="ord_1001", order_number="GG-10452"))

        await _dispatcher(state, transport).dispatch({"type": "text-updates", "data": {"orderNumber": "GG-10452"}})

        assert transport.calls[0]["body"]["orderNumber"] == "GG-10452"
        assert state.messages[-1].text == "Subscribed!"

    @pytest.mark.asyncio
    async def test_send_text(self, transport_factory):
        transport = transport_factory({
            "/concierge/resolve": {
                "module": {"type": "order-lookup", "id": "order-lookup-1"},
                "messages": ["Share your order number."],
                "sessionPatch": {"lastIntent": "track_order"},
                "intent": "track_order",
            }
        })
        state = ConversationState()

        await _dispatcher(state, transport).send_text("  where is my order  ")

        assert state.messages[0].role == "guest"
        assert state.messages[0].text == "where is my order"
        assert transport.calls[0]["body"]["text"] == "where is my order"
        assert state.last_intent == ConciergeIntent.TRACK_ORDER
        assert state.current_module.type == "order-lookup"

    @pytest.mark.asyncio
    async def test_send_blank_text(self, fake_transport):
        state = ConversationState()
        await _dispatcher(state, fake_transport).send_text("   ")

        assert fake_transport.calls == []
        assert state.messages == []

    @pytest.mark.asyncio
    async def test_view_product_is_local(self, fake_transport):
        state = ConversationState()
        await _dispatcher(state, fake_transport).dispatch({"type": "view-product", "data": {"product": PRODUCT}})

        assert fake_transport.calls == []
        assert state.error is None


class TestMalformedResponses:
    """2xx지만 형식이 잘못된 응답 테스트.

    dispatch는 예외를 던지지 않고 상태를 그대로 둔 채 재시도 안내만 남긴다.
    """

    CSAT_ACTION = {"type": "submit-csat", "data": {"response": {"rating": "great"}}}

    async def _dispatch_with(self, transport_factory, response):
        transport = transport_factory({"/concierge/intents/csat": response})
        saved = ProductSummary.model_validate(PRODUCT)
        state = ConversationState(shortlist=[saved], miss_count=1)
        before = state.to_context()

        await _dispatcher(state, transport).dispatch(self.CSAT_ACTION)

        assert len(transport.calls) == 1
        assert state.messages == []
        assert state.current_module is None
        assert state.to_context() == before
        assert state.is_processing is False
        assert state.error.message == SNAG_MESSAGE
        assert state.error.retry_action.to_wire() == self.CSAT_ACTION
        return state

    @pytest.mark.asyncio
    async def test_shortlist_item_without_id(self, transport_factory):
        """패치 검증 실패 시 메시지도 추가되지 않음."""
        await self._dispatch_with(transport_factory, {
            "module": {"type": "info-card", "id": "info-card-1", "title": "Thank you"},
            "messages": ["hi"],
            "sessionPatch": {"lastIntent": "csat", "shortlist": [{"title": "no id"}]},
        })

    @pytest.mark.asyncio
    async def test_module_not_an_object(self, transport_factory):
        await self._dispatch_with(transport_factory, {"module": "csat", "messages": ["hi"]})

    @pytest.mark.asyncio
    async def test_known_module_with_bad_fields(self, transport_factory):
        """알려진 타입의 필드 오류도 내부 메시지 대신 재시도 안내."""
        state = await self._dispatch_with(transport_factory, {
            "module": {"type": "info-card", "id": "info-card-1", "title": "Thank you", "rogue": 1},
        })

        assert "Malformed" not in state.error.message

    @pytest.mark.asyncio
    async def test_non_numeric_miss_count(self, transport_factory):
        await self._dispatch_with(transport_factory, {"messages": ["hi"], "sessionPatch": {"missCount": "lots"}})

    @pytest.mark.asyncio
    async def test_response_not_an_object(self, transport_factory):
        await self._dispatch_with(transport_factory, ["not", "a", "resolution"])

    @pytest.mark.asyncio
    async def test_send_text_keeps_guest_turn(self, transport_factory):
        transport = transport_factory({"/concierge/resolve": {"module": 42}})
        state = ConversationState()

        await _dispatcher(state, transport).send_text("hello")

        assert [m.text for m in state.messages] == ["hello"]
        assert state.error.message == SNAG_MESSAGE
        assert state.error.retry_action is None

    @pytest.mark.asyncio
    async def test_order_updates_non_object(self, transport_factory):
        transport = transport_factory({"/concierge/order-updates": "ok"})
        state = ConversationState(last_order=LastOrder(order_id="ord_1001", order_number="GG-10452"))

        await _dispatcher(state, transport).dispatch({"type": "text-updates"})

        assert state.messages == []
        assert state.error.message == SNAG_MESSAGE
