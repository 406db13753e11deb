"""컨시어지 API 전송 계층.

디스패처가 서버 리졸버/지원 엔드포인트를 호출할 때 사용합니다.
성공 envelope(`{success: true, data}`)의 data만 반환하고 나머지는 TransportError로 변환합니다.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Protocol

import aiohttp

from src.config import ClientConfig
from src.core.exceptions import TransportError

logger = logging.getLogger(__name__)


class ConciergeTransport(Protocol):
    """디스패처용 전송 인터페이스."""

    async def post(self, path: str, body: Dict[str, Any], request_id: str) -> Dict[str, Any]:
        ...


class AiohttpTransport:
    """aiohttp 기반 전송."""

    def __init__(self, config: Optional[ClientConfig] = None):
        self.config = config or ClientConfig()
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        try:
            if self._session is None or self._session.closed:
                timeout = aiohttp.ClientTimeout(total=self.config.timeout)
                self._session = aiohttp.ClientSession(timeout=timeout)
        except RuntimeError:
            # 이벤트 루프가 닫힌 경우 새로 생성
            timeout = aiohttp.ClientTimeout(total=self.config.timeout)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    async def post(self, path: str, body: Dict[str, Any], request_id: str) -> Dict[str, Any]:
        """JSON POST 후 envelope의 data 반환.

        Args:
            path: API 경로 (예: /concierge/intents/track_order)
            body: 요청 본문
            request_id: x-request-id 헤더 값

        Raises:
            TransportError: 연결 실패, 타임아웃, 2xx가 아닌 응답, success=false
        """
        session = await self._get_session()
        url = f"{self.config.api_base.rstrip('/')}{path}"
        headers = {"Content-Type": "application/json", "x-request-id": request_id}

        try:
            async with session.post(url, json=body, headers=headers) as resp:
                try:
                    envelope = await resp.json(content_type=None)
                except ValueError:
                    envelope = None

                if resp.status >= 400 or not isinstance(envelope, dict) or not envelope.get("success"):
                    error = (envelope or {}).get("error") if isinstance(envelope, dict) else None
                    message = (error or {}).get("message") or f"HTTP {resp.status}"
                    logger.error(f"컨시어지 API 오류: {resp.status} - {path} ({request_id}): {message}")
                    raise TransportError(
                        message,
                        status=resp.status,
                        details={"path": path, "code": (error or {}).get("code")},
                    )

                return envelope.get("data") or {}
        except aiohttp.ClientError as e:
            logger.error(f"컨시어지 API 연결 오류: {path} ({request_id}): {e}")
            raise TransportError(f"Connection error: {e}", details={"path": path}) from e
        except asyncio.TimeoutError as e:
            logger.error(f"컨시어지 API 타임아웃: {path} ({request_id})")
            raise TransportError("Request timed out", details={"path": path}) from e
