# fortuny/domains/fortune/repository.py

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

import redis.asyncio as aioredis
from pydantic import ValidationError
from redis.exceptions import RedisError

from fortuny.domains.fortune.exceptions import StoreUnavailable
from fortuny.domains.fortune.schemas import FortuneRecord

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class FortuneRepository:
    """
    기기별 운세 기록 저장소 인터페이스.
    게이트는 어떤 백엔드인지 몰라도 됩니다.
    refreshAt이 지난 기록은 물리적으로 남아 있어도 없는 것으로 취급합니다.
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self.clock = clock

    async def read(self, device_id: str) -> Optional[FortuneRecord]:
        raise NotImplementedError

    async def write(self, device_id: str, record: FortuneRecord) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        return None

    def _is_live(self, record: FortuneRecord) -> bool:
        return record.refresh_at > self.clock()


class InMemoryFortuneRepository(FortuneRepository):
    """REDIS_URL이 없을 때 쓰는 프로세스 메모리 저장소 (재시작 시 전부 사라짐)"""

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        super().__init__(clock)
        self._records: Dict[str, FortuneRecord] = {}

    async def read(self, device_id: str) -> Optional[FortuneRecord]:
        record = self._records.get(device_id)
        if record is None:
            return None
        if not self._is_live(record):
            # lazy expiry
            self._records.pop(device_id, None)
            return None
        return record.model_copy(deep=True)

    async def write(self, device_id: str, record: FortuneRecord) -> None:
        self._sweep()
        self._records[device_id] = record.model_copy(deep=True)

    def _sweep(self) -> None:
        # 쿠키 없는 클라이언트는 매번 새 id라 다시 읽히지 않으므로 쓰기 때마다 만료분 정리
        expired = [key for key, record in self._records.items() if not self._is_live(record)]
        for key in expired:
            del self._records[key]

    def __len__(self):
        return len(self._records)


class RedisFortuneRepository(FortuneRepository):
    """
    Redis 저장소. 값은 JSON, 만료(PX)는 남은 잠금 시간으로 설정.
    저장된 값에 refreshAt이 없으면 남은 TTL로 복원합니다.
    """

    KEY_PREFIX = "fortune:"

    def __init__(
        self,
        client: "aioredis.Redis",
        lock_duration: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = utc_now,
    ):
        super().__init__(clock)
        self.client = client
        self.lock_duration = lock_duration

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RedisFortuneRepository":
        client = aioredis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=2.0,
            socket_timeout=2.0,
        )
        return cls(client, **kwargs)

    def _key(self, device_id: str) -> str:
        return f"{self.KEY_PREFIX}{device_id}"

    async def read(self, device_id: str) -> Optional[FortuneRecord]:
        key = self._key(device_id)
        try:
            raw = await self.client.get(key)
            if raw is None:
                return None
            data = json.loads(raw)
            if not isinstance(data, dict):
                logger.warning(f"[store] non-object value under {key}, ignoring")
                return None
            if not data.get("refreshAt"):
                ttl_ms = await self.client.pttl(key)
                if ttl_ms is None or ttl_ms <= 0:
                    return None
                self._restore_times(data, ttl_ms)
        except RedisError as e:
            raise StoreUnavailable(f"redis read failed: {e}") from e
        except ValueError:
            logger.warning(f"[store] corrupt JSON under {key}, ignoring")
            return None

        try:
            record = FortuneRecord.model_validate(data)
        except ValidationError as e:
            logger.warning(f"[store] invalid record under {key}: {e.error_count()} errors")
            return None

        if not self._is_live(record):
            return None
        return record

    def _restore_times(self, data: dict, ttl_ms: int) -> None:
        refresh_at = self.clock() + timedelta(milliseconds=ttl_ms)
        data["refreshAt"] = refresh_at.isoformat()
        if not data.get("createdAt"):
            data["createdAt"] = (refresh_at - self.lock_duration).isoformat()

    async def write(self, device_id: str, record: FortuneRecord) -> None:
        ttl_ms = int((record.refresh_at - self.clock()).total_seconds() * 1000)
        if ttl_ms <= 0:
            return
        payload = record.model_dump_json(by_alias=True)
        try:
            await self.client.set(self._key(device_id), payload, px=ttl_ms)
        except RedisError as e:
            raise StoreUnavailable(f"redis write failed: {e}") from e

    async def close(self) -> None:
        await self.client.aclose()
