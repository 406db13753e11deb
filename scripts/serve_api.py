#!/usr/bin/env python3
"""컨시어지 API 서버 실행.

APP_HOST/APP_PORT 환경변수가 configs/app.yaml보다 우선합니다.
"""
from __future__ import annotations

import os

import uvicorn

from src.config import get_config


def main() -> None:
    cfg = get_config().app
    # get_config가 APP_HOST/APP_PORT 오버라이드를 이미 반영
    host = cfg.host
    port = cfg.port

    reload = os.environ.get("APP_RELOAD", "false").lower() in ("1", "true", "yes")

    uvicorn.run("api:app", host=host, port=port, reload=reload, log_level=cfg.log_level.lower())


if __name__ == "__main__":
    main()
