"""커스텀 예외 클래스 모듈.

애플리케이션 전역에서 사용되는 예외 클래스를 정의합니다.
API 응답은 `{success: false, error: {code, message}}` 봉투 형식을 사용합니다.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class AppError(Exception):
    """애플리케이션 기본 예외.

    모든 커스텀 예외의 기반 클래스입니다.
    """

    status_code: int = 500
    error_code: str = "INTERNAL_ERROR"
    message: str = "Something went wrong on our side."

    def __init__(
        self,
        message: Optional[str] = None,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message or self.message
        self.error_code = error_code or self.error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """예외 정보를 딕셔너리로 반환."""
        result = {
            "code": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result

    def to_envelope(self) -> Dict[str, Any]:
        """실패 응답 봉투 반환."""
        return {"success": False, "error": self.to_dict()}


class ValidationError(AppError):
    """입력 검증 실패 예외."""

    status_code = 400
    error_code = "VALIDATION_ERROR"
    message = "The request data is not valid."


class NotFoundError(AppError):
    """리소스를 찾을 수 없음 예외."""

    status_code = 404
    error_code = "NOT_FOUND"
    message = "The requested resource was not found."


class UnknownIntentError(NotFoundError):
    """알 수 없는 의도 예외."""

    error_code = "UNKNOWN_INTENT"
    message = "That concierge intent is not supported."


class ServiceUnavailableError(AppError):
    """서비스 이용 불가 예외."""

    status_code = 503
    error_code = "SERVICE_UNAVAILABLE"
    message = "The service is temporarily unavailable."


class ProviderError(ServiceUnavailableError):
    """데이터 프로바이더(상품/주문/지원 저장소) 호출 실패."""

    error_code = "PROVIDER_ERROR"
    message = "We could not reach the studio systems just now."


class TransportError(AppError):
    """클라이언트 측 네트워크/서버 오류.

    디스패처가 인라인 재시도 안내로 변환합니다.
    """

    status_code = 502
    error_code = "TRANSPORT_ERROR"
    message = "The concierge service could not be reached."

    def __init__(
        self,
        message: Optional[str] = None,
        status: Optional[int] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.status = status
