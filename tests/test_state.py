"""대화 상태 테스트."""

import pytest

from src.concierge.state import ConversationState, EscalationDraft, WidgetMessage
from src.concierge.types import (
    ConciergeIntent,
    CsatModule,
    InfoCardModule,
    IntentChooserModule,
    ProductSummary,
)
from src.core.exceptions import ValidationError


class TestAppendMessages:
    """메시지 추가/모듈 정리 테스트."""

    def test_keeps_latest_module_per_type(self):
        """같은 타입 모듈은 최신 하나만 유지."""
        state = ConversationState()
        state.append_messages([
            WidgetMessage.concierge("first"),
            WidgetMessage.concierge(IntentChooserModule(id="chooser-a")),
        ])
        state.append_messages([
            WidgetMessage.concierge("second"),
            WidgetMessage.concierge(IntentChooserModule(id="chooser-b")),
        ])

        modules = [m.module for m in state.messages if m.is_module]
        texts = [m.text for m in state.messages if not m.is_module]

        assert [m.id for m in modules] == ["chooser-b"]
        assert texts == ["first", "second"]
        assert state.current_module.id == "chooser-b"

    def test_different_types_coexist(self):
        state = ConversationState()
        state.append_messages([WidgetMessage.concierge(CsatModule(id="csat-1"))])
        state.append_messages([WidgetMessage.concierge(InfoCardModule(id="card-1", title="Thanks"))])

        assert {m.module.type for m in state.messages if m.is_module} == {"csat", "info-card"}
        assert state.current_module.type == "info-card"

    def test_text_only_keeps_current_module(self):
        state = ConversationState()
        state.append_messages([WidgetMessage.concierge(CsatModule(id="csat-1"))])
        state.append_messages([WidgetMessage.guest("hello")])

        assert state.current_module.id == "csat-1"


class TestApplyPatch:
    """sessionPatch 반영 테스트."""

    def test_apply_known_keys(self):
        state = ConversationState()
        state.apply_patch({
            "lastIntent": "find_product",
            "lastFilters": {"metal": "gold"},
            "lastOrder": {"orderId": "ord_1001", "orderNumber": "GG-10452", "email": "maya@example.com"},
            "missCount": 2,
        })

        assert state.last_intent == ConciergeIntent.FIND_PRODUCT
        assert state.last_filters == {"metal": "gold"}
        assert state.last_order.reference == "GG-10452"
        assert state.miss_count == 2

    def test_unknown_keys_ignored(self):
        state = ConversationState()
        state.apply_patch({"favoriteColor": "teal"})

        assert state.last_intent is None
        assert state.miss_count == 0

    def test_escalation_cleared(self):
        state = ConversationState(escalation=EscalationDraft(name="Maya", email="maya@example.com"))
        state.apply_patch({"escalation": {"name": "", "email": "", "notes": ""}})

        assert state.escalation.is_empty()

    def test_shortlist_patch(self):
        state = ConversationState()
        state.apply_patch({"shortlist": [{"id": "p1", "title": "Ring", "price": 100}]})

        assert [item.id for item in state.shortlist] == ["p1"]


class TestApplyResolution:
    """서버 응답 반영 테스트."""

    def test_messages_then_module(self):
        state = ConversationState()
        state.apply_resolution({
            "module": {"type": "info-card", "id": "card-1", "title": "Care & warranty"},
            "messages": ["Here you go."],
            "sessionPatch": {"lastIntent": "care_warranty"},
            "intent": "care_warranty",
        })

        assert state.messages[0].text == "Here you go."
        assert state.messages[1].module.type == "info-card"
        assert state.messages[1].intent == ConciergeIntent.CARE_WARRANTY
        assert state.last_intent == ConciergeIntent.CARE_WARRANTY

    def test_unknown_module_skipped(self):
        """알 수 없는 모듈은 건너뛰고 메시지/패치는 반영."""
        state = ConversationState()
        state.apply_resolution({
            "module": {"type": "hologram", "id": "h1"},
            "messages": ["Still here."],
            "sessionPatch": {"missCount": 1},
        })

        assert [m.text for m in state.messages] == ["Still here."]
        assert state.current_module is None
        assert state.miss_count == 1

    def test_malformed_patch_changes_nothing(self):
        """패치가 잘못되면 메시지도 반영하지 않음."""
        state = ConversationState()
        with pytest.raises(ValidationError):
            state.apply_resolution({
                "messages": ["Saved."],
                "sessionPatch": {"lastIntent": "csat", "shortlist": [{"title": "no id"}]},
            })

        assert state.messages == []
        assert state.last_intent is None

    def test_apply_patch_is_all_or_nothing(self):
        state = ConversationState()
        with pytest.raises(ValidationError):
            state.apply_patch({"lastIntent": "csat", "missCount": "lots"})

        assert state.last_intent is None
        assert state.miss_count == 0


class TestToContext:
    """리졸버 컨텍스트 테스트."""

    def test_context_shape(self):
        state = ConversationState(session_id="session-abc")
        state.shortlist = [ProductSummary(id="p1", title="Ring", price=100)]
        context = state.to_context()

        assert context["sessionId"] == "session-abc"
        assert context["lastIntent"] is None
        assert context["shortlist"][0]["readyToShip"] is False
        assert context["escalation"] == {"name": "", "email": "", "notes": ""}
        assert "lastOrder" not in context

    def test_session_ids_unique(self):
        assert ConversationState().session_id != ConversationState().session_id
