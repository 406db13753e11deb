"""위젯 대화 상태.

호스팅 페이지(위젯 세션)가 소유하는 누적 컨텍스트입니다.
액션 디스패처만 변경하며, 서버 리졸버에는 읽기 전용 뷰(`to_context`)로 전달됩니다.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from src.core.exceptions import ValidationError

from .types import (
    ConciergeIntent,
    ConversationAction,
    ModulePayload,
    ProductSummary,
    parse_module_payload,
)

logger = logging.getLogger(__name__)


@dataclass
class EscalationDraft:
    """작성 중인 스타일리스트 연결 요청."""

    name: str = ""
    email: str = ""
    notes: str = ""

    def is_empty(self) -> bool:
        return not (self.name or self.email or self.notes)

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "email": self.email, "notes": self.notes}


@dataclass
class LastOrder:
    """마지막으로 조회한 주문."""

    order_id: Optional[str] = None
    order_number: Optional[str] = None
    email: Optional[str] = None

    @property
    def reference(self) -> Optional[str]:
        return self.order_number or self.order_id


@dataclass
class InlineError:
    """인라인 재시도 안내."""

    message: str
    retry_action: Optional[ConversationAction] = None


@dataclass
class WidgetMessage:
    """위젯 대화 메시지 (텍스트 또는 모듈)."""

    role: str  # guest, concierge
    text: Optional[str] = None
    module: Optional[ModulePayload] = None
    intent: Optional[ConciergeIntent] = None

    @property
    def is_module(self) -> bool:
        return self.module is not None

    @classmethod
    def concierge(
        cls,
        content: Union[str, ModulePayload],
        intent: Optional[ConciergeIntent] = None,
    ) -> "WidgetMessage":
        if isinstance(content, str):
            return cls(role="concierge", text=content, intent=intent)
        return cls(role="concierge", module=content, intent=intent)

    @classmethod
    def guest(cls, text: str) -> "WidgetMessage":
        return cls(role="guest", text=text)


@dataclass
class ConversationState:
    """위젯 세션의 대화 상태."""

    session_id: str = field(default_factory=lambda: f"session-{uuid.uuid4().hex[:12]}")
    last_intent: Optional[ConciergeIntent] = None
    last_filters: Optional[Dict[str, Any]] = None
    shortlist: List[ProductSummary] = field(default_factory=list)
    last_order: Optional[LastOrder] = None
    escalation: EscalationDraft = field(default_factory=EscalationDraft)
    miss_count: int = 0
    messages: List[WidgetMessage] = field(default_factory=list)
    current_module: Optional[ModulePayload] = None
    is_processing: bool = False
    error: Optional[InlineError] = None

    def append_messages(self, messages: List[WidgetMessage]) -> None:
        """메시지 추가 후 모듈 정리.

        같은 타입의 모듈은 가장 최근 것 하나만 남깁니다.
        텍스트 메시지는 항상 유지합니다.
        """
        combined = self.messages + list(messages)
        kept_types = set()
        pruned_reversed: List[WidgetMessage] = []
        for msg in reversed(combined):
            if msg.is_module:
                if msg.module.type in kept_types:
                    continue
                kept_types.add(msg.module.type)
            pruned_reversed.append(msg)
        pruned_reversed.reverse()

        if len(pruned_reversed) != len(combined):
            logger.debug(f"모듈 정리: {len(combined)} -> {len(pruned_reversed)}")
        self.messages = pruned_reversed

        modules = [m.module for m in messages if m.is_module]
        if modules:
            self.current_module = modules[-1]

    def apply_patch(self, patch: Optional[Mapping[str, Any]]) -> None:
        """서버 sessionPatch를 상태에 반영.

        알 수 없는 키는 무시합니다. 형식이 잘못되면 아무것도 바꾸지 않습니다.

        Raises:
            ValidationError: 패치 값의 형식이 잘못된 경우
        """
        for name, value in self._patch_updates(patch).items():
            setattr(self, name, value)

    def _patch_updates(self, patch: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        """패치를 (속성 -> 새 값)으로 변환. 상태는 변경하지 않습니다."""
        if not patch:
            return {}
        if not isinstance(patch, Mapping):
            raise ValidationError("Malformed session patch")

        updates: Dict[str, Any] = {}
        try:
            if "lastIntent" in patch:
                updates["last_intent"] = ConciergeIntent.parse(patch["lastIntent"])
            if "lastFilters" in patch:
                filters = patch["lastFilters"]
                updates["last_filters"] = dict(filters) if isinstance(filters, Mapping) else None
            if "shortlist" in patch and isinstance(patch["shortlist"], list):
                updates["shortlist"] = [ProductSummary.model_validate(item) for item in patch["shortlist"]]
            if "lastOrder" in patch:
                order = patch["lastOrder"]
                updates["last_order"] = LastOrder(
                    order_id=order.get("orderId"),
                    order_number=order.get("orderNumber"),
                    email=order.get("email"),
                ) if isinstance(order, Mapping) else None
            if "escalation" in patch:
                draft = patch["escalation"]
                updates["escalation"] = EscalationDraft(
                    name=str(draft.get("name") or ""),
                    email=str(draft.get("email") or ""),
                    notes=str(draft.get("notes") or ""),
                ) if isinstance(draft, Mapping) else EscalationDraft()
            if "missCount" in patch:
                updates["miss_count"] = int(patch["missCount"] or 0)
        except (PydanticValidationError, TypeError, ValueError) as e:
            raise ValidationError("Malformed session patch", details={"reason": str(e)}) from e
        return updates

    def apply_resolution(self, data: Mapping[str, Any]) -> None:
        """서버 응답(data)을 상태에 반영.

        메시지와 패치를 모두 검증한 뒤에 반영하므로 실패 시 상태는 그대로입니다.
        알 수 없는 모듈 타입은 경고 후 건너뜁니다.

        Raises:
            ValidationError: 응답 형식이 잘못된 경우
        """
        if not isinstance(data, Mapping):
            raise ValidationError("Malformed resolver response")

        raw_messages = data.get("messages") or []
        if not isinstance(raw_messages, list):
            raise ValidationError("Malformed resolver response", details={"field": "messages"})
        new_messages = [WidgetMessage.concierge(t) for t in raw_messages if isinstance(t, str)]

        raw_module = data.get("module")
        if raw_module is not None and not isinstance(raw_module, Mapping):
            raise ValidationError("Malformed resolver response", details={"field": "module"})
        module = parse_module_payload(raw_module)
        if module is not None:
            new_messages.append(WidgetMessage.concierge(module, ConciergeIntent.parse(data.get("intent"))))
        elif raw_module:
            logger.warning(f"알 수 없는 모듈 타입 무시: {raw_module.get('type')}")

        updates = self._patch_updates(data.get("sessionPatch"))

        self.append_messages(new_messages)
        for name, value in updates.items():
            setattr(self, name, value)

    def to_context(self) -> Dict[str, Any]:
        """리졸버에 전달할 읽기 전용 컨텍스트 (camelCase 와이어)."""
        context: Dict[str, Any] = {
            "sessionId": self.session_id,
            "lastIntent": self.last_intent.value if self.last_intent else None,
            "lastFilters": self.last_filters,
            "shortlist": [item.to_wire() for item in self.shortlist],
            "missCount": self.miss_count,
            "escalation": self.escalation.to_dict(),
        }
        if self.last_order:
            context["lastOrder"] = {
                "orderId": self.last_order.order_id,
                "orderNumber": self.last_order.order_number,
                "email": self.last_order.email,
            }
        return context
