"""pytest 설정 및 공통 fixture."""

import asyncio
from pathlib import Path
from typing import Any, Dict, List

import pytest
from fastapi.testclient import TestClient

from api import app
from src.concierge.catalog import InMemoryCatalog
from src.concierge.provider import StoreDataProvider, get_data_provider, reset_data_provider
from src.concierge.repository import SupportRepository
from src.concierge.resolver import IntentResolver, get_resolver, reset_resolver
from src.config import Config, ConciergeConfig, FeatureFlags
from src.core.exceptions import TransportError

# pytest-asyncio 모드 설정
pytest_plugins = ["pytest_asyncio"]

SEED_PATH = Path(__file__).resolve().parent.parent / "data" / "concierge_seed.json"


@pytest.fixture(autouse=True)
def reset_config():
    """각 테스트 전/후에 Config 및 전역 인스턴스 리셋."""
    Config.reset_instance()
    reset_data_provider()
    reset_resolver()
    yield
    Config.reset_instance()
    reset_data_provider()
    reset_resolver()


@pytest.fixture
def concierge_config():
    """기본값 컨시어지 설정 (YAML 영향 없음)."""
    return ConciergeConfig()


@pytest.fixture
def flags():
    return FeatureFlags()


@pytest.fixture
def catalog():
    """시드 카탈로그."""
    return InMemoryCatalog.from_seed(SEED_PATH)


@pytest.fixture
def support_repo(tmp_path):
    """임시 sqlite 지원 저장소."""
    return SupportRepository(db_path=tmp_path / "concierge.db")


@pytest.fixture
def provider(catalog, support_repo):
    return StoreDataProvider(catalog=catalog, support=support_repo)


@pytest.fixture
def resolver(concierge_config, flags, provider):
    return IntentResolver(concierge_config, flags, provider)


@pytest.fixture
def client(provider, resolver):
    """FastAPI TestClient fixture (임시 저장소 주입)."""
    app.dependency_overrides[get_data_provider] = lambda: provider
    app.dependency_overrides[get_resolver] = lambda: resolver
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.dependency_overrides.clear()


class FakeTransport:
    """디스패처 테스트용 전송 계층.

    실제 네트워크처럼 한 번 양보(await)한 뒤 응답합니다.
    """

    def __init__(self, responses: Dict[str, Any] = None, fail: bool = False, delay: float = 0.01):
        self.responses = responses or {}
        self.fail = fail
        self.delay = delay
        self.calls: List[Dict[str, Any]] = []

    async def post(self, path: str, body: Dict[str, Any], request_id: str) -> Dict[str, Any]:
        self.calls.append({"path": path, "body": body, "request_id": request_id})
        await asyncio.sleep(self.delay)
        if self.fail:
            raise TransportError("boom", status=500)
        response = self.responses.get(path, {})
        return response(body) if callable(response) else response


@pytest.fixture
def fake_transport():
    return FakeTransport()


@pytest.fixture
def transport_factory():
    """응답/실패를 지정해 FakeTransport 생성."""
    return FakeTransport
