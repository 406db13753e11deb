"""서버 의도 리졸버 테스트."""

import pytest
from pydantic import ValidationError as PydanticValidationError

from src.concierge.resolver import IntentResolver, ResolveRequest, SNAG_MESSAGE, module_id
from src.concierge.types import ConciergeIntent
from src.config import ConciergeConfig, FeatureFlags
from src.core.exceptions import ProviderError, UnknownIntentError, ValidationError


class FailingProvider:
    """모든 호출이 실패하는 프로바이더."""

    async def search_products(self, **kwargs):
        raise ProviderError(details={"operation": "search_products"})

    async def lookup_order(self, **kwargs):
        raise ProviderError(details={"operation": "lookup_order"})

    async def record_csat(self, **kwargs):
        raise ProviderError(details={"operation": "record_csat"})


def _request(**kwargs) -> ResolveRequest:
    kwargs.setdefault("context", {"sessionId": "session-test"})
    return ResolveRequest(**kwargs)


class TestFallback:
    """의도 불명 시 선택 모듈 테스트."""

    @pytest.mark.asyncio
    async def test_no_intent_returns_chooser(self, resolver):
        """의도도 텍스트도 없으면 intent-chooser."""
        resolution = await resolver.resolve(_request())

        assert resolution.module.type == "intent-chooser"
        assert [o.intent for o in resolution.module.options] == [
            ConciergeIntent.FIND_PRODUCT,
            ConciergeIntent.TRACK_ORDER,
            ConciergeIntent.STYLIST_CONTACT,
        ]
        assert resolution.module.emphasize_human is False
        assert resolution.session_patch == {"missCount": 1}
        assert resolution.intent is None

    @pytest.mark.asyncio
    async def test_repeated_miss_emphasizes_stylist(self, resolver):
        """연속 미스면 스타일리스트 강조."""
        resolution = await resolver.resolve(_request(text="hmm", context={"missCount": 1}))

        assert resolution.module.type == "intent-chooser"
        assert resolution.module.emphasize_human is True
        assert resolution.session_patch == {"missCount": 2}

    @pytest.mark.asyncio
    async def test_low_confidence_returns_chooser(self, resolver):
        resolution = await resolver.resolve(_request(text="track my return"))

        assert resolution.module.type == "intent-chooser"
        assert resolution.module.emphasize_human is False

    @pytest.mark.asyncio
    async def test_very_low_confidence_emphasizes_stylist(self, provider):
        config = ConciergeConfig(intent_rules={"financing": {"confidence": 0.4, "keywords": ["layaway"]}})
        resolver = IntentResolver(config, FeatureFlags(), provider)

        resolution = await resolver.resolve(_request(text="layaway?"))

        assert resolution.module.type == "intent-chooser"
        assert resolution.module.emphasize_human is True

    @pytest.mark.asyncio
    async def test_unknown_explicit_intent(self, resolver):
        with pytest.raises(UnknownIntentError):
            await resolver.resolve(_request(intent="teleport"))

    @pytest.mark.asyncio
    async def test_deterministic(self, resolver):
        """같은 입력이면 같은 출력 (모듈 ID 포함)."""
        request = _request(text="show me gold rings")
        first = await resolver.resolve(request)
        second = await resolver.resolve(request)

        assert first.to_wire() == second.to_wire()

    @pytest.mark.asyncio
    async def test_deterministic_explicit_intent_with_action(self, resolver, support_repo):
        """명시적 의도 + 일치하는 액션도 반복 호출 시 같은 출력."""
        request = _request(
            intent="csat",
            action={"type": "submit-csat", "data": {"response": {"rating": "great"}}},
        )
        first = await resolver.resolve(request)
        second = await resolver.resolve(request)

        assert first.to_wire() == second.to_wire()
        assert first.module.type == "info-card"
        assert len(support_repo.list_csat("session-test")) == 2

    @pytest.mark.asyncio
    async def test_explicit_intent_overrides_text(self, resolver):
        """선택한 의도가 텍스트에서 추론한 의도보다 우선."""
        resolution = await resolver.resolve(_request(intent="stylist_contact", text="where is my order GG-10452"))

        assert resolution.intent == ConciergeIntent.STYLIST_CONTACT
        assert resolution.module.type == "escalation-form"

    @pytest.mark.asyncio
    async def test_action_intent_overrides_text(self, resolver):
        resolution = await resolver.resolve(_request(
            action={"type": "shortlist-escalate"},
            text="show me gold rings",
        ))

        assert resolution.module.type == "escalation-form"

    @pytest.mark.parametrize("context", [
        {"lastOrder": "GG-10452"},
        {"shortlist": [{"title": "no id"}]},
        {"missCount": "lots"},
    ])
    def test_malformed_context_rejected(self, context):
        with pytest.raises(PydanticValidationError):
            ResolveRequest(context=context)

    def test_module_id_depends_on_content(self):
        assert module_id("csat", ["great"]) == module_id("csat", ["great"])
        assert module_id("csat", ["great"]) != module_id("csat", ["bad"])
        assert module_id("csat", ["great"]).startswith("csat-")


class TestFindProduct:
    """상품 탐색 테스트."""

    @pytest.mark.asyncio
    async def test_first_turn_returns_filter(self, resolver):
        resolution = await resolver.resolve(_request(intent="find_product"))

        assert resolution.module.type == "product-filter"
        assert {g.key for g in resolution.module.filters} == {"category", "metal", "readyToShip"}
        assert resolution.session_patch["lastIntent"] == "find_product"

    @pytest.mark.asyncio
    async def test_chooser_ready_to_ship_preset(self, resolver):
        """선택 모듈에서 고르면 ready-to-ship 프리셋 + 확인 문구."""
        resolution = await resolver.resolve(_request(
            intent="find_product",
            payload={"source": "intent-chooser", "slug": "ready-to-ship", "filters": {"readyToShip": True}},
        ))

        assert resolution.module.type == "product-carousel"
        assert resolution.module.products
        assert all(p.ready_to_ship for p in resolution.module.products)
        assert resolution.messages[0] == resolver.config.confirmations["find_product_ready_to_ship"]

    @pytest.mark.asyncio
    async def test_filter_submission(self, resolver):
        """폼 필드가 data 최상위로 와도 필터로 해석."""
        resolution = await resolver.resolve(_request(
            action={
                "type": "submit-product-filters",
                "data": {"metal": "silver", "category": "", "readyToShip": "true", "sortBy": "price-asc"},
            },
        ))

        assert resolution.module.type == "product-carousel"
        assert [p.id for p in resolution.module.products] == ["prod-drift-chain", "prod-tide-hoops"]
        assert resolution.session_patch["lastFilters"] == {"metal": "silver", "readyToShip": True}

    @pytest.mark.asyncio
    async def test_empty_results(self, resolver):
        resolution = await resolver.resolve(_request(
            action={"type": "apply-filters", "data": {"filters": {"priceMax": 10}}},
        ))

        assert resolution.module.type == "product-carousel"
        assert resolution.module.products == []
        assert resolution.module.empty_message
        assert resolution.session_patch["lastFilters"] == {"priceMax": 10}

    @pytest.mark.asyncio
    async def test_refinement_text(self, resolver):
        resolution = await resolver.resolve(_request(
            text="something cheaper",
            context={"lastIntent": "find_product", "lastFilters": {"category": "rings"}},
        ))

        prices = [p.price for p in resolution.module.products]
        assert resolution.module.type == "product-carousel"
        assert prices == sorted(prices)
        assert all(p.category == "rings" for p in resolution.module.products)


class TestTrackOrder:
    """주문 조회 테스트."""

    @pytest.mark.asyncio
    async def test_text_with_order_number(self, resolver):
        resolution = await resolver.resolve(_request(text="where is my order GG-10452?"))
        module = resolution.module

        assert module.type == "order-timeline"
        assert module.order_number == "GG-10452"
        assert [s.state for s in module.steps] == ["done", "done", "current", "upcoming"]
        assert module.steps[-1].date == "2024-09-10"
        assert module.offer_text_updates is True
        assert resolution.session_patch["lastOrder"]["orderNumber"] == "GG-10452"

    @pytest.mark.asyncio
    async def test_delivered_order(self, resolver):
        resolution = await resolver.resolve(_request(
            action={"type": "submit-order-lookup", "data": {"orderNumber": "GG-10321"}},
        ))

        assert all(s.state == "done" for s in resolution.module.steps)
        assert resolution.module.offer_text_updates is False

    @pytest.mark.asyncio
    async def test_email_only_returns_newest(self, resolver):
        resolution = await resolver.resolve(_request(
            action={"type": "submit-order-lookup", "data": {"email": "MAYA@example.com"}},
        ))

        assert resolution.module.order_number == "GG-10452"

    @pytest.mark.asyncio
    async def test_empty_submission_asks_again(self, resolver):
        """번호도 이메일도 없이 제출하면 선택 모듈."""
        resolution = await resolver.resolve(_request(
            action={"type": "submit-order-lookup", "data": {"orderNumber": "", "email": " "}},
        ))

        assert resolution.module.type == "intent-chooser"

    @pytest.mark.asyncio
    async def test_not_found(self, resolver):
        resolution = await resolver.resolve(_request(
            action={"type": "submit-order-lookup", "data": {"orderNumber": "GG-99999"}},
        ))

        assert resolution.module.type == "order-lookup"
        assert resolution.module.error
        assert resolution.module.known_fields.order_number == "GG-99999"

    @pytest.mark.asyncio
    async def test_prefill_from_last_order(self, resolver):
        resolution = await resolver.resolve(_request(
            intent="track_order",
            context={"lastOrder": {"orderNumber": "GG-10488", "email": "jordan@example.com"}},
        ))

        assert resolution.module.type == "order-lookup"
        assert resolution.module.known_fields.order_number == "GG-10488"
        assert resolution.module.known_fields.email == "jordan@example.com"


class TestReturnExchange:
    """반품/교환 테스트."""

    @pytest.mark.asyncio
    async def test_needs_order(self, resolver):
        resolution = await resolver.resolve(_request(intent="return_exchange"))

        assert resolution.module.type == "order-lookup"
        assert resolution.module.heading == "Which order is this for?"

    @pytest.mark.asyncio
    async def test_options_for_last_order(self, resolver):
        resolution = await resolver.resolve(_request(
            intent="return_exchange",
            context={"lastOrder": {"orderNumber": "GG-10321"}},
        ))

        assert resolution.module.type == "return-options"
        assert [o.value for o in resolution.module.options] == ["resize", "exchange", "refund"]

    @pytest.mark.asyncio
    async def test_submit_option_opens_ticket(self, resolver, support_repo):
        resolution = await resolver.resolve(_request(
            action={"type": "submit-return-option", "data": {"option": "resize", "notes": "half size up"}},
            payload={"orderNumber": "GG-10321"},
        ))

        tickets = support_repo.list_tickets("session-test")
        assert resolution.module.type == "info-card"
        assert resolution.module.title == "Return started"
        assert len(tickets) == 1
        assert tickets[0].kind == "return"
        assert tickets[0].ticket_id in resolution.module.body

    @pytest.mark.asyncio
    async def test_invalid_option(self, resolver):
        with pytest.raises(ValidationError):
            await resolver.resolve(_request(
                action={"type": "submit-return-option", "data": {"option": "melt"}},
                payload={"orderNumber": "GG-10321"},
            ))


class TestStylistContact:
    """스타일리스트 연결 테스트."""

    @pytest.mark.asyncio
    async def test_form_prefilled_with_shortlist(self, resolver):
        resolution = await resolver.resolve(_request(
            action={"type": "shortlist-escalate"},
            context={"shortlist": [{"id": "prod-halo-band", "title": "Halo Pave Band", "price": 920}]},
        ))

        assert resolution.module.type == "escalation-form"
        assert "Halo Pave Band" in resolution.module.prefill.notes

    @pytest.mark.asyncio
    async def test_draft_preserved_in_form(self, resolver):
        resolution = await resolver.resolve(_request(
            intent="stylist_contact",
            context={"escalation": {"name": "Maya", "email": "maya@example.com", "notes": "Sizing"}},
        ))

        assert resolution.module.prefill.name == "Maya"
        assert resolution.module.prefill.notes == "Sizing"

    @pytest.mark.asyncio
    async def test_submit_creates_ticket(self, resolver, support_repo):
        resolution = await resolver.resolve(_request(
            action={"type": "submit-escalation", "data": {"name": "Maya", "email": "maya@example.com", "notes": ""}},
            context={
                "sessionId": "session-test",
                "shortlist": [{"id": "prod-halo-band", "title": "Halo Pave Band", "price": 920}],
            },
        ))

        ticket = support_repo.list_tickets("session-test")[0]
        assert resolution.module.type == "info-card"
        assert ticket.priority == "high"
        assert ticket.shortlist[0]["id"] == "prod-halo-band"
        assert resolution.session_patch["escalation"] == {"name": "", "email": "", "notes": ""}

    @pytest.mark.asyncio
    async def test_invalid_email(self, resolver):
        with pytest.raises(ValidationError):
            await resolver.resolve(_request(
                action={"type": "submit-escalation", "data": {"name": "Maya", "email": "maya@"}},
            ))


class TestCsat:
    """CSAT 테스트."""

    @pytest.mark.asyncio
    async def test_prompt(self, resolver):
        resolution = await resolver.resolve(_request(intent="csat"))

        assert resolution.module.type == "csat"
        assert [o.value for o in resolution.module.options] == ["great", "good", "okay", "poor", "bad"]

    @pytest.mark.asyncio
    async def test_negative_rating_offers_stylist(self, resolver, support_repo):
        resolution = await resolver.resolve(_request(
            action={"type": "submit-csat", "data": {"response": {"rating": "bad"}}},
        ))

        records = support_repo.list_csat("session-test")
        assert resolution.module.title == "Thanks for telling us"
        assert resolution.module.links[0].label == "Talk to a stylist"
        assert records[0].score == 1

    @pytest.mark.asyncio
    async def test_positive_rating(self, resolver):
        resolution = await resolver.resolve(_request(
            action={"type": "submit-csat", "data": {"response": {"rating": "great"}}},
        ))

        assert resolution.module.title == "Thank you"
        assert resolution.module.links == []

    @pytest.mark.asyncio
    async def test_unknown_rating(self, resolver):
        with pytest.raises(ValidationError):
            await resolver.resolve(_request(
                action={"type": "submit-csat", "data": {"response": {"rating": "meh"}}},
            ))


class TestInfoCardsAndErrors:
    """안내 카드 및 프로바이더 실패 테스트."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("intent", ["sizing_repairs", "care_warranty", "financing"])
    async def test_info_card_intents(self, resolver, intent):
        resolution = await resolver.resolve(_request(intent=intent))

        assert resolution.module.type == "info-card"
        assert resolution.module.title == resolver.config.info_cards[intent]["title"]
        assert resolution.intent.value == intent

    @pytest.mark.asyncio
    async def test_chooser_selection_confirms(self, resolver):
        resolution = await resolver.resolve(_request(
            action={"type": "intent-chooser-select", "data": {"intent": "track_order"}},
            payload={"source": "intent-chooser"},
        ))

        assert resolution.module.type == "order-lookup"
        assert resolution.messages[0] == resolver.config.confirmations["track_order"]

    @pytest.mark.asyncio
    async def test_provider_failure_returns_error_notice(self):
        """프로바이더 실패는 재시도 가능한 에러 모듈."""
        resolver = IntentResolver(ConciergeConfig(), FeatureFlags(), FailingProvider())
        action = {"type": "submit-order-lookup", "data": {"orderNumber": "GG-10452"}}

        resolution = await resolver.resolve(_request(action=action))

        assert resolution.module.type == "error-notice"
        assert resolution.module.message == SNAG_MESSAGE
        assert resolution.module.retry_action == action
