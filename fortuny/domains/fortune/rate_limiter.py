# fortuny/domains/fortune/rate_limiter.py

import logging
import time
from collections import deque
from typing import Callable, Deque, Dict

from fortuny.domains.fortune.exceptions import RateLimited

logger = logging.getLogger(__name__)

DAY_SECONDS = 24 * 60 * 60
SWEEP_INTERVAL_SECONDS = 60 * 60


class DailyRateLimiter:
    """
    IP 단위로 최근 24시간 동안의 '생성' 요청 수를 제한합니다.
    캐시 응답은 세지 않습니다. 운영 모드가 아니면 항상 통과.
    """

    def __init__(
        self,
        limit: int = 10,
        enabled: bool = True,
        window_seconds: int = DAY_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.limit = limit
        self.enabled = enabled
        self.window_seconds = window_seconds
        self.clock = clock
        self._hits: Dict[str, Deque[float]] = {}
        self._last_sweep = clock()

    def _prune(self, key: str, now: float) -> Deque[float]:
        hits = self._hits.get(key)
        if hits is None:
            return deque()
        cutoff = now - self.window_seconds
        while hits and hits[0] <= cutoff:
            hits.popleft()
        if not hits:
            del self._hits[key]
        return hits

    def _sweep(self, now: float) -> None:
        # 다시 오지 않는 키도 한 시간에 한 번은 정리
        if now - self._last_sweep < SWEEP_INTERVAL_SECONDS:
            return
        self._last_sweep = now
        for key in list(self._hits):
            self._prune(key, now)

    def remaining(self, key: str) -> int:
        if not self.enabled:
            return self.limit
        return max(self.limit - len(self._prune(key, self.clock())), 0)

    def hit(self, key: str) -> None:
        """한도 내면 기록, 넘으면 RateLimited"""
        if not self.enabled:
            return
        now = self.clock()
        self._sweep(now)
        hits = self._prune(key, now)
        if len(hits) >= self.limit:
            logger.warning(f"[rate-limit] {key} exceeded {self.limit}/day")
            raise RateLimited(key)
        hits.append(now)
        self._hits[key] = hits
