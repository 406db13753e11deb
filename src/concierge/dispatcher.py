"""액션 디스패처.

모듈이 방출한 `{type, data}` 액션을 API 호출로 바꾸고 결과를 대화 상태에 반영합니다.

- 처리 중(`is_processing`)이면 새 액션은 무시합니다 (중복 제출 방지).
- 알 수 없는 액션은 경고 로그만 남기고 상태를 건드리지 않습니다.
- 로컬 검증 실패는 네트워크로 나가지 않고 인라인 에러로 표시합니다.
- 네트워크/서버 실패 시 누적 상태(에스컬레이션 초안, 숏리스트, 필터)는 보존됩니다.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from src.config import ConciergeConfig, FeatureFlags
from src.core.exceptions import TransportError, ValidationError
from src.core.logging import log_event, new_request_id
from src.monitoring.metrics import track_action

from .state import ConversationState, EscalationDraft, InlineError, WidgetMessage
from .transport import ConciergeTransport
from .types import ConciergeIntent, ConversationAction, ProductSummary, ShortlistPanelModule

logger = logging.getLogger(__name__)

SNAG_MESSAGE = "I ran into a snag—mind trying that again?"
NEED_ORDER_MESSAGE = "I need an order number first—tap “Track order” so I can file the return with the studio."
READY_TO_SHIP_PRESET = {"slug": "ready-to-ship", "filters": {"readyToShip": True}}

ActionHandler = Callable[[ConversationAction], Awaitable[None]]


class ActionDispatcher:
    """위젯 액션 디스패처."""

    def __init__(
        self,
        state: ConversationState,
        transport: ConciergeTransport,
        config: Optional[ConciergeConfig] = None,
        flags: Optional[FeatureFlags] = None,
    ):
        """초기화.

        Args:
            state: 이 디스패처만 변경하는 대화 상태
            transport: API 전송 계층
            config: 컨시어지 설정 (CSAT 척도, 이메일 패턴)
            flags: 기능 플래그 (없으면 config.flags)
        """
        self.state = state
        self.transport = transport
        self.config = config or ConciergeConfig()
        self.flags = flags or self.config.flags
        self._handlers: Dict[str, ActionHandler] = {
            "submit-product-filters": self._find_product,
            "filter_change": self._find_product,
            "apply-filters": self._find_product,
            "submit-order-lookup": self._track_order,
            "submit-return-option": self._submit_return_option,
            "submit-escalation": self._submit_escalation,
            "submit-csat": self._submit_csat,
            "intent-chooser-select": self._select_intent,
            "shortlist-product": self._shortlist_product,
            "shortlist-remove": self._shortlist_remove,
            "shortlist-clear": self._shortlist_clear,
            "shortlist-escalate": self._shortlist_escalate,
            "text-updates": self._text_updates,
            "view-product": self._noop,
            "offer-action": self._noop,
        }

    @property
    def action_types(self) -> List[str]:
        return sorted(self._handlers)

    async def dispatch(self, action: Union[ConversationAction, Mapping[str, Any]]) -> None:
        """액션 처리.

        예외를 던지지 않으며 결과는 모두 상태(messages, error, shortlist 등)로 반영됩니다.
        """
        try:
            action = ConversationAction.from_wire(action)
        except ValidationError as e:
            logger.warning(f"잘못된 액션 무시: {e.message}")
            track_action("unknown", "unknown")
            return

        if self.state.is_processing:
            logger.debug(f"처리 중 액션 무시: {action.type}")
            track_action(action.type, "skipped")
            return

        handler = self._handlers.get(action.type)
        if handler is None:
            logger.warning(f"알 수 없는 액션 타입 무시: {action.type}")
            track_action("unknown", "unknown")
            return

        try:
            await handler(action)
        except ValidationError as e:
            self.state.error = InlineError(e.message)
            track_action(action.type, "invalid")
            log_event("concierge.action_invalid", level=logging.WARNING, action=action.type, reason=e.message)

    async def send_text(self, text: str) -> None:
        """자유 텍스트 턴. 서버가 의도를 추론합니다."""
        trimmed = (text or "").strip()
        if not trimmed or self.state.is_processing:
            return

        self.state.append_messages([WidgetMessage.guest(trimmed)])
        body = {"text": trimmed, "context": self.state.to_context()}
        await self._call(None, "/concierge/resolve", body, "resolve", self.state.apply_resolution)

    # ============================================
    # 공통
    # ============================================

    async def _call(
        self,
        action: Optional[ConversationAction],
        path: str,
        body: Dict[str, Any],
        scope: str,
        on_success: Callable[[Any], None],
    ) -> bool:
        """전송 호출 후 응답 반영.

        전송 실패나 응답 형식 오류는 재시도 가능한 인라인 에러로 남기고 False.
        `on_success`는 형식 오류 시 상태를 바꾸기 전에 ValidationError를 던져야 합니다.
        """
        request_id = new_request_id(scope)
        action_type = action.type if action else "send-text"
        self.state.is_processing = True
        try:
            data = await self.transport.post(path, body, request_id)
        except TransportError as e:
            logger.warning(f"컨시어지 호출 실패 ({action_type}, {request_id}): {e.message}")
            self.state.error = InlineError(SNAG_MESSAGE, retry_action=action)
            track_action(action_type, "error")
            return False
        finally:
            self.state.is_processing = False

        try:
            on_success(data)
        except ValidationError as e:
            logger.warning(f"잘못된 응답 무시 ({action_type}, {request_id}): {e.message}")
            self.state.error = InlineError(SNAG_MESSAGE, retry_action=action)
            track_action(action_type, "malformed")
            return False

        self.state.error = None
        track_action(action_type, "success")
        return True

    async def _run_intent(
        self,
        intent: ConciergeIntent,
        action: ConversationAction,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        body = {
            "action": action.to_wire(),
            "payload": payload or {},
            "context": self.state.to_context(),
        }
        await self._call(action, f"/concierge/intents/{intent.value}", body, intent.value, self.state.apply_resolution)

    # ============================================
    # 의도 액션
    # ============================================

    async def _find_product(self, action: ConversationAction) -> None:
        await self._run_intent(ConciergeIntent.FIND_PRODUCT, action)

    async def _track_order(self, action: ConversationAction) -> None:
        # 주문번호/이메일이 모두 없어도 서버가 판단하도록 그대로 전송
        await self._run_intent(ConciergeIntent.TRACK_ORDER, action)

    async def _submit_return_option(self, action: ConversationAction) -> None:
        last_order = self.state.last_order
        if last_order is None or not last_order.reference:
            self.state.append_messages([WidgetMessage.concierge(NEED_ORDER_MESSAGE)])
            track_action(action.type, "invalid")
            return
        if not (action.field("option") or action.field("value")):
            raise ValidationError("Pick an option to continue.")

        payload = {
            "orderId": last_order.order_id or last_order.order_number,
            "orderNumber": last_order.order_number or last_order.order_id,
        }
        await self._run_intent(ConciergeIntent.RETURN_EXCHANGE, action, payload)

    async def _submit_escalation(self, action: ConversationAction) -> None:
        # 초안은 호출 전에 저장하고 성공 응답의 sessionPatch로만 비움
        self.state.escalation = EscalationDraft(
            name=str(action.field("name") or "").strip(),
            email=str(action.field("email") or "").strip(),
            notes=str(action.field("notes") or "").strip(),
        )
        if not re.fullmatch(self.config.email_pattern, self.state.escalation.email):
            raise ValidationError("Add a valid email so a stylist can reach you.")
        await self._run_intent(ConciergeIntent.STYLIST_CONTACT, action)

    async def _submit_csat(self, action: ConversationAction) -> None:
        response = action.field("response")
        rating = response.get("rating") if isinstance(response, Mapping) else action.field("rating")
        if rating not in self.config.csat_scale:
            raise ValidationError("Pick a rating to share feedback.")
        await self._run_intent(ConciergeIntent.CSAT, action)

    async def _select_intent(self, action: ConversationAction) -> None:
        intent = ConciergeIntent.parse(action.field("intent"))
        if intent is None:
            raise ValidationError("Pick one of the options.")

        self.state.miss_count = 0
        chooser_payload = action.field("payload")
        chooser_payload = dict(chooser_payload) if isinstance(chooser_payload, Mapping) else {}

        payload: Dict[str, Any] = {"source": "intent-chooser"}
        if intent == ConciergeIntent.FIND_PRODUCT and not chooser_payload and self.flags.ready_to_ship_default:
            payload.update(READY_TO_SHIP_PRESET)
        payload.update(chooser_payload)

        log_event("concierge.intent_selected", intent=intent.value, session_id=self.state.session_id)
        await self._run_intent(intent, action, payload)

    # ============================================
    # 숏리스트
    # ============================================

    async def _shortlist_product(self, action: ConversationAction) -> None:
        product = action.field("product")
        if not isinstance(product, Mapping):
            raise ValidationError("Pick a piece to save.")
        try:
            item = ProductSummary.model_validate(product)
        except PydanticValidationError as e:
            raise ValidationError("Pick a piece to save.", details={"errors": e.error_count()}) from e

        current = self.state.shortlist
        updated = current if any(existing.id == item.id for existing in current) else [*current, item]
        count = len(updated)
        await self._save_shortlist(
            action,
            updated,
            [
                f"Saved {item.title} to your shortlist.",
                f"You now have {count} item{'' if count == 1 else 's'} saved.",
            ],
        )

    async def _shortlist_remove(self, action: ConversationAction) -> None:
        product = action.field("product")
        product_id = action.field("productId") or (product.get("id") if isinstance(product, Mapping) else None)
        if not product_id:
            raise ValidationError("Pick a piece to remove.")

        updated = [item for item in self.state.shortlist if item.id != product_id]
        await self._save_shortlist(action, updated, ["Removed from your shortlist."])

    async def _shortlist_clear(self, action: ConversationAction) -> None:
        await self._save_shortlist(action, [], ["Your shortlist is clear."])

    async def _save_shortlist(
        self,
        action: ConversationAction,
        updated: List[ProductSummary],
        messages: List[str],
    ) -> None:
        body = {"sessionId": self.state.session_id, "items": [item.to_wire() for item in updated]}

        def commit(_data: Any) -> None:
            self.state.shortlist = updated
            panel = ShortlistPanelModule(items=updated)
            self.state.append_messages(
                [WidgetMessage.concierge(text) for text in messages]
                + [WidgetMessage.concierge(panel, self.state.last_intent)]
            )

        await self._call(action, "/concierge/shortlist", body, "shortlist", commit)

    async def _shortlist_escalate(self, action: ConversationAction) -> None:
        await self._run_intent(ConciergeIntent.STYLIST_CONTACT, action, {"source": "shortlist"})

    # ============================================
    # 기타
    # ============================================

    async def _text_updates(self, action: ConversationAction) -> None:
        last_order = self.state.last_order
        order_number = action.field("orderNumber") or (last_order.order_number if last_order else None)
        order_id = last_order.order_id if last_order else None
        if not (order_number or order_id):
            raise ValidationError("Look up an order first so I know which updates to send.")

        body = {"sessionId": self.state.session_id, "orderId": order_id, "orderNumber": order_number}

        def confirm(data: Any) -> None:
            if data is not None and not isinstance(data, Mapping):
                raise ValidationError("Malformed order-updates response")
            message = (data or {}).get("message")
            if not isinstance(message, str) or not message:
                message = "Perfect—I'll text studio milestones to you in real time."
            self.state.append_messages([WidgetMessage.concierge(message)])

        await self._call(action, "/concierge/order-updates", body, "order-updates", confirm)

    async def _noop(self, action: ConversationAction) -> None:
        track_action(action.type, "noop")
