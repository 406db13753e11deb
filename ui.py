from __future__ import annotations
"""Gradio UI (컨시어지 위젯 데모).

기능
- 자유 텍스트 → 서버 리졸버 → 모듈 렌더
- 모듈 액션(`{type, data}`)을 직접 디스패치해 흐름 확인
- 우측 패널에 리졸버로 전달되는 대화 컨텍스트 표시

API 서버(api.py)가 먼저 떠 있어야 합니다.
"""

import json
from functools import partial
from html import escape
from typing import Any, Tuple

import gradio as gr

from src.concierge.dispatcher import ActionDispatcher
from src.concierge.renderer import render_module
from src.concierge.state import ConversationState
from src.concierge.transport import AiohttpTransport
from src.config import get_config

concierge_config = get_config().concierge
transport = AiohttpTransport(concierge_config.client)

ACTION_TYPES = ActionDispatcher(ConversationState(), transport, concierge_config).action_types

WIDGET_CSS = """
.concierge-transcript { display: flex; flex-direction: column; gap: 8px; }
.bubble { padding: 8px 12px; border-radius: 12px; max-width: 80%; }
.bubble--guest { align-self: flex-end; background: #1f2937; color: #fff; }
.bubble--concierge { align-self: flex-start; background: #f3f4f6; }
.concierge-module { border: 1px solid #e5e7eb; border-radius: 12px; padding: 12px; }
.concierge-module.is-emphasized { border-color: #b45309; }
"""


def _transcript(state: ConversationState) -> str:
    """대화 메시지와 모듈을 HTML로."""
    parts = []
    for message in state.messages:
        if message.is_module:
            parts.append(render_module(message.module, is_processing=state.is_processing))
        elif message.text:
            parts.append(f'<div class="bubble bubble--{message.role}">{escape(message.text)}</div>')
    if not parts:
        parts.append('<div class="bubble bubble--concierge">Hi! I can help you find a piece, track an order, or reach a stylist.</div>')
    return f'<style>{WIDGET_CSS}</style><div class="concierge-transcript">{"".join(parts)}</div>'


def _view(state: ConversationState) -> Tuple[ConversationState, str, str, str]:
    error = f"⚠️ {state.error.message}" if state.error else ""
    context = json.dumps(state.to_context(), ensure_ascii=False, indent=2)
    return state, _transcript(state), error, context


def _dispatcher(state: ConversationState) -> ActionDispatcher:
    return ActionDispatcher(state, transport, concierge_config)


async def on_send(text: str, state: ConversationState) -> Tuple[Any, ...]:
    await _dispatcher(state).send_text(text)
    return (*_view(state), "")


async def on_action(action_type: str, data_json: str, state: ConversationState) -> Tuple[Any, ...]:
    data: Any = None
    if data_json and data_json.strip():
        try:
            data = json.loads(data_json)
        except json.JSONDecodeError as e:
            view = _view(state)
            return view[0], view[1], f"⚠️ data JSON 파싱 실패: {e}", view[3]
    await _dispatcher(state).dispatch({"type": action_type, "data": data})
    return _view(state)


async def on_quick(intent: str, state: ConversationState) -> Tuple[Any, ...]:
    await _dispatcher(state).dispatch({"type": "intent-chooser-select", "data": {"intent": intent}})
    return _view(state)


async def on_retry(state: ConversationState) -> Tuple[Any, ...]:
    if state.error and state.error.retry_action:
        await _dispatcher(state).dispatch(state.error.retry_action)
    return _view(state)


def on_reset() -> Tuple[Any, ...]:
    return _view(ConversationState())


with gr.Blocks(title="Concierge Widget (Demo)") as demo:
    gr.Markdown("""
    ### 컨시어지 위젯 데모
    - 메시지를 보내면 서버가 의도를 추론하고 다음 모듈을 돌려줍니다.
    - 모듈 버튼의 `data-action`/`data-payload`를 아래 액션 패널로 디스패치할 수 있습니다.
    """)
    state = gr.State(ConversationState)

    with gr.Row():
        with gr.Column(scale=2):
            transcript = gr.HTML(_transcript(ConversationState()))
            error_box = gr.Markdown("")
            with gr.Row():
                msg = gr.Textbox(label="메시지", placeholder="e.g. where is my order GG-10452", scale=4)
                send = gr.Button("보내기", variant="primary", scale=1)
            with gr.Row():
                quick_product = gr.Button("Find a piece")
                quick_order = gr.Button("Track an order")
                quick_stylist = gr.Button("Talk to a stylist")
            with gr.Accordion("액션 디스패치", open=False):
                with gr.Row():
                    action_type = gr.Dropdown(ACTION_TYPES, label="action type", value="submit-order-lookup")
                    action_data = gr.Textbox(label="data (JSON)", value='{"orderNumber": "GG-10452"}')
                with gr.Row():
                    dispatch_btn = gr.Button("디스패치")
                    retry_btn = gr.Button("재시도")
                    reset_btn = gr.Button("초기화")
        with gr.Column(scale=1):
            context_json = gr.Code(label="대화 컨텍스트", language="json")

    outputs = [state, transcript, error_box, context_json]

    send.click(on_send, inputs=[msg, state], outputs=outputs + [msg])
    msg.submit(on_send, inputs=[msg, state], outputs=outputs + [msg])
    quick_product.click(partial(on_quick, "find_product"), inputs=[state], outputs=outputs)
    quick_order.click(partial(on_quick, "track_order"), inputs=[state], outputs=outputs)
    quick_stylist.click(partial(on_quick, "stylist_contact"), inputs=[state], outputs=outputs)
    dispatch_btn.click(on_action, inputs=[action_type, action_data, state], outputs=outputs)
    retry_btn.click(on_retry, inputs=[state], outputs=outputs)
    reset_btn.click(on_reset, inputs=[], outputs=outputs)


if __name__ == "__main__":
    import os
    cfg = get_config().app
    host = os.environ.get("UI_HOST", cfg.host)
    try:
        port = int(os.environ.get("UI_PORT", str(cfg.ui_port)))
    except ValueError:
        port = cfg.ui_port
    demo.queue().launch(server_name=host, server_port=port)
