"""컨시어지 모듈 라우터.

서버 리졸버가 다음 UI 모듈을 고르고, 렌더러가 모듈을 HTML로 그리며,
디스패처가 모듈 액션을 API 호출과 상태 변경으로 바꿉니다.
"""

from .dispatcher import ActionDispatcher
from .intent_rules import DetectedIntent, detect_intent
from .provider import DataProvider, StoreDataProvider, get_data_provider, reset_data_provider
from .renderer import render_module, renderer_for
from .resolver import IntentResolver, ResolveRequest, Resolution, get_resolver, reset_resolver
from .state import ConversationState, EscalationDraft, InlineError, LastOrder, WidgetMessage
from .transport import AiohttpTransport, ConciergeTransport
from .types import (
    MODULE_TYPES,
    ConciergeIntent,
    ConversationAction,
    ModulePayload,
    ProductSummary,
    dump_module_payload,
    parse_module_payload,
)

__all__ = [
    "ActionDispatcher",
    "DetectedIntent",
    "detect_intent",
    "DataProvider",
    "StoreDataProvider",
    "get_data_provider",
    "reset_data_provider",
    "render_module",
    "renderer_for",
    "IntentResolver",
    "ResolveRequest",
    "Resolution",
    "get_resolver",
    "reset_resolver",
    "ConversationState",
    "EscalationDraft",
    "InlineError",
    "LastOrder",
    "WidgetMessage",
    "AiohttpTransport",
    "ConciergeTransport",
    "MODULE_TYPES",
    "ConciergeIntent",
    "ConversationAction",
    "ModulePayload",
    "ProductSummary",
    "dump_module_payload",
    "parse_module_payload",
]
