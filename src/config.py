"""통합 설정 로더 모듈.

configs/ 아래 YAML 설정 파일을 로드하고 관리합니다.
환경변수 오버라이드를 지원합니다.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml


# 기본 설정 디렉토리
DEFAULT_CONFIG_DIR = Path("configs")


def load_yaml(path: Path | str) -> Dict[str, Any]:
    """YAML 파일 로드."""
    path = Path(path)
    if not path.exists():
        return {}
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def get_env_or_default(key: str, default: Any) -> Any:
    """환경변수 또는 기본값 반환."""
    env_val = os.environ.get(key)
    if env_val is not None:
        # 타입 변환
        if isinstance(default, bool):
            return env_val.lower() in ("true", "1", "yes")
        if isinstance(default, int):
            return int(env_val)
        if isinstance(default, float):
            return float(env_val)
        return env_val
    return default


@dataclass
class AppConfig:
    """앱 전역 설정."""

    name: str = "aurora-concierge"
    version: str = "0.3.0"
    description: str = "Jewelry storefront concierge module router"
    environment: str = "development"
    host: str = "0.0.0.0"
    port: int = 8000
    ui_port: int = 7860
    log_level: str = "INFO"
    json_logs: bool = True


@dataclass
class FeatureFlags:
    """컨시어지 기능 플래그.

    전역 상태로 읽지 않고 리졸버/디스패처에 명시적으로 전달합니다.
    """

    ready_to_ship_default: bool = True
    emphasize_human_after_misses: int = 2
    offer_text_updates: bool = True


@dataclass
class ClientConfig:
    """위젯 클라이언트(디스패처) 설정."""

    api_base: str = "http://localhost:8000"
    timeout: int = 15


DEFAULT_CHOOSER_OPTIONS: List[Dict[str, str]] = [
    {"intent": "find_product", "label": "Find a piece"},
    {"intent": "track_order", "label": "Track an order"},
    {"intent": "stylist_contact", "label": "Talk to a stylist"},
]

DEFAULT_CSAT_SCALE: Dict[str, int] = {
    "great": 5,
    "good": 4,
    "okay": 3,
    "poor": 2,
    "bad": 1,
}

DEFAULT_CONFIRMATIONS: Dict[str, str] = {
    "find_product": "On it—I'll open product recommendations.",
    "find_product_ready_to_ship": "On it—pulling ready-to-ship picks to get you started.",
    "track_order": "On it—opening order lookup.",
    "return_exchange": "On it—starting returns & resizing.",
    "sizing_repairs": "On it—starting sizing help.",
    "care_warranty": "On it—sharing care & warranty info.",
    "financing": "On it—pulling financing options.",
    "stylist_contact": "On it—bringing in a stylist.",
    "csat": "Happy to take feedback.",
}

DEFAULT_INFO_CARDS: Dict[str, Dict[str, Any]] = {
    "sizing_repairs": {
        "title": "Sizing & repairs",
        "body": "Every purchase includes one complimentary resize within 60 days.",
        "links": [{"label": "Ring size guide", "href": "/sizing"}],
    },
    "care_warranty": {
        "title": "Care & warranty",
        "body": "Stick with mild soap and water. Avoid harsh chemicals or at-home ultrasonic machines.",
        "links": [{"label": "Care rituals", "href": "/support/help"}],
    },
    "financing": {
        "title": "Financing options",
        "body": "Split your purchase into monthly installments at checkout.",
        "links": [{"label": "How financing works", "href": "/support/help#financing"}],
    },
}


@dataclass
class ConciergeConfig:
    """컨시어지 라우팅 설정."""

    confidence_threshold: float = 0.7
    human_threshold: float = 0.5
    negative_csat_max: int = 2
    order_number_pattern: str = r"\b(?:GG|ORD)[-_]?\d{4,}\b"
    email_pattern: str = r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}"
    chooser_options: List[Dict[str, str]] = field(default_factory=lambda: list(DEFAULT_CHOOSER_OPTIONS))
    csat_scale: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_CSAT_SCALE))
    # 의도별 키워드 규칙: {intent: {keywords: [...], confidence: 0.9}}
    intent_rules: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    # 정적 안내 카드: {intent: {title, body, links}}
    info_cards: Dict[str, Dict[str, Any]] = field(default_factory=lambda: dict(DEFAULT_INFO_CARDS))
    # 의도 선택 확인 문구
    confirmations: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_CONFIRMATIONS))
    product_page_size: int = 8
    flags: FeatureFlags = field(default_factory=FeatureFlags)
    client: ClientConfig = field(default_factory=ClientConfig)


@dataclass
class PathsConfig:
    """경로 설정."""

    sqlite_path: str = "data/concierge.db"
    seed_path: str = "data/concierge_seed.json"
    logs_dir: str = "logs"


class Config:
    """통합 설정 클래스."""

    _instance: Optional["Config"] = None

    def __init__(self, config_dir: Path | str = DEFAULT_CONFIG_DIR):
        self.config_dir = Path(config_dir)
        self._app: Optional[AppConfig] = None
        self._concierge: Optional[ConciergeConfig] = None
        self._paths: Optional[PathsConfig] = None
        self._raw: Dict[str, Dict[str, Any]] = {}
        self._load_all()

    @classmethod
    def get_instance(cls, config_dir: Path | str = DEFAULT_CONFIG_DIR) -> "Config":
        """싱글톤 인스턴스 반환."""
        if cls._instance is None:
            cls._instance = cls(config_dir)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """싱글톤 인스턴스 리셋 (테스트용)."""
        cls._instance = None

    def _load_all(self) -> None:
        """모든 설정 파일 로드."""
        self._raw["app"] = load_yaml(self.config_dir / "app.yaml")
        self._raw["concierge"] = load_yaml(self.config_dir / "concierge.yaml")
        self._raw["paths"] = load_yaml(self.config_dir / "paths.yaml")

    @property
    def app(self) -> AppConfig:
        """앱 설정."""
        if self._app is None:
            raw = self._raw.get("app", {})
            app_cfg = raw.get("app", {})
            server_cfg = raw.get("server", {})
            logging_cfg = raw.get("logging", {})

            self._app = AppConfig(
                name=app_cfg.get("name", "aurora-concierge"),
                version=app_cfg.get("version", "0.3.0"),
                description=app_cfg.get("description", ""),
                environment=get_env_or_default("APP_ENV", app_cfg.get("environment", "development")),
                host=get_env_or_default("APP_HOST", server_cfg.get("host", "0.0.0.0")),
                port=get_env_or_default("APP_PORT", server_cfg.get("port", 8000)),
                ui_port=get_env_or_default("UI_PORT", server_cfg.get("ui_port", 7860)),
                log_level=get_env_or_default("LOG_LEVEL", logging_cfg.get("level", "INFO")),
                json_logs=logging_cfg.get("json", True),
            )
        return self._app

    @property
    def concierge(self) -> ConciergeConfig:
        """컨시어지 설정."""
        if self._concierge is None:
            raw = self._raw.get("concierge", {})
            routing = raw.get("routing", {})
            patterns = raw.get("patterns", {})
            flags_cfg = raw.get("flags", {})
            client_cfg = raw.get("client", {})

            flags = FeatureFlags(
                ready_to_ship_default=flags_cfg.get("ready_to_ship_default", True),
                emphasize_human_after_misses=flags_cfg.get("emphasize_human_after_misses", 2),
                offer_text_updates=flags_cfg.get("offer_text_updates", True),
            )

            client = ClientConfig(
                api_base=get_env_or_default("CONCIERGE_API_BASE", client_cfg.get("api_base", "http://localhost:8000")),
                timeout=client_cfg.get("timeout", 15),
            )

            self._concierge = ConciergeConfig(
                confidence_threshold=routing.get("confidence_threshold", 0.7),
                human_threshold=routing.get("human_threshold", 0.5),
                negative_csat_max=routing.get("negative_csat_max", 2),
                order_number_pattern=patterns.get("order_number", r"\b(?:GG|ORD)[-_]?\d{4,}\b"),
                email_pattern=patterns.get("email", r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}"),
                chooser_options=raw.get("chooser_options") or list(DEFAULT_CHOOSER_OPTIONS),
                csat_scale=raw.get("csat_scale") or dict(DEFAULT_CSAT_SCALE),
                intent_rules=raw.get("intents", {}),
                info_cards=raw.get("info_cards") or dict(DEFAULT_INFO_CARDS),
                confirmations=raw.get("confirmations") or dict(DEFAULT_CONFIRMATIONS),
                product_page_size=routing.get("product_page_size", 8),
                flags=flags,
                client=client,
            )
        return self._concierge

    @property
    def paths(self) -> PathsConfig:
        """경로 설정."""
        if self._paths is None:
            raw = self._raw.get("paths", {})
            storage = raw.get("storage", {})
            outputs = raw.get("outputs", {})

            self._paths = PathsConfig(
                sqlite_path=get_env_or_default("CONCIERGE_DB_PATH", storage.get("sqlite_path", "data/concierge.db")),
                seed_path=storage.get("seed_path", "data/concierge_seed.json"),
                logs_dir=outputs.get("logs", "logs"),
            )
        return self._paths

    def get_raw(self, section: str) -> Dict[str, Any]:
        """원시 설정 데이터 반환."""
        return self._raw.get(section, {})


def get_config(config_dir: Path | str = DEFAULT_CONFIG_DIR) -> Config:
    """설정 인스턴스 반환."""
    return Config.get_instance(config_dir)
