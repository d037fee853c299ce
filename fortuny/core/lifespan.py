# fortuny/core/lifespan.py

import logging
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI

from fortuny.core.config import settings
from fortuny.domains.fortune.client import OpenAIClient
from fortuny.domains.fortune.rate_limiter import DailyRateLimiter
from fortuny.domains.fortune.repository import (
    FortuneRepository,
    InMemoryFortuneRepository,
    RedisFortuneRepository,
)
from fortuny.domains.fortune.service import FortuneGate

logger = logging.getLogger(__name__)


def build_repository() -> FortuneRepository:
    if settings.REDIS_URL:
        logger.info("✅ [Store] Redis 저장소 사용")
        return RedisFortuneRepository.from_url(
            settings.REDIS_URL,
            lock_duration=timedelta(hours=settings.LOCK_HOURS),
        )
    logger.warning("⚠️ [Store] REDIS_URL 없음: 메모리 저장소 사용 (재시작 시 초기화)")
    return InMemoryFortuneRepository()


def build_gate() -> FortuneGate:
    return FortuneGate(
        repository=build_repository(),
        provider=OpenAIClient(),
        rate_limiter=DailyRateLimiter(
            limit=settings.RATE_LIMIT_PER_DAY,
            enabled=settings.PRODUCTION,
        ),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    # [Startup]
    logger.info("🚀 [System] 서버 시작: 저장소 및 OpenAI 클라이언트 준비")
    gate = build_gate()
    app.state.fortune_gate = gate
    if settings.DEV_ALLOW_FORCE:
        logger.warning("⚠️ DEV_ALLOW_FORCE 활성화: ?force=1 로 잠금 우회 가능")
    if not settings.PRODUCTION:
        logger.info("rate limit 비활성화 (PRODUCTION=false)")

    yield

    # [Shutdown]
    logger.info("🛑 [System] 서버 종료: 연결 정리")
    await gate.provider.close()
    await gate.repository.close()
