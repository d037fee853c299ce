# fortuny/domains/fortune/service.py

import asyncio
import logging
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Callable, Dict, NamedTuple, Optional

from fortuny.core.config import settings
from fortuny.domains.fortune.exceptions import (
    FortuneUnavailable,
    MalformedOutput,
    ProviderExhausted,
    StoreUnavailable,
)
from fortuny.domains.fortune.rate_limiter import DailyRateLimiter
from fortuny.domains.fortune.repository import FortuneRepository, utc_now
from fortuny.domains.fortune.schemas import FortuneRecord, FortuneResult, FortuneText
from fortuny.domains.fortune.utils import (
    DEFAULT_MOOD,
    fallback_fortune,
    is_fallback_fortune,
    parse_fortune_payload,
)

logger = logging.getLogger(__name__)

NOTE_CACHED_DUE_ERROR = "returned_cached_due_error"

BASE_PROMPT = """
You are a careful, warm fortune writer.

Goal:
Write ONE short, street-savvy, gossip-flavored relationship fortune that feels human-written: grounded, a tad messy in rhythm, specific, never generic.

Human vibe (do these):
- Use 1 small concrete detail (e.g., late-night status, blue tick, screenshot, playlist). No names or brands.
- Mix sentence lengths (1-2 sentences), natural punctuation, mild hedges (looks like / maybe / sanki / galiba).
- TR uses light "sokak ağzı" (e.g., "bakarsın", "valla"); EN uses casual contractions ("don't", "won't").
- EN & TR should be cousins, not mirror translations: same idea, different natural phrasing.

Avoid AI tells:
- No clichés ("the universe", "manifest", "journey", "energy alignment").
- No lists, no templates, no symmetry between languages, no "as an AI".
- No certainty; hint instead of declare.

Safety:
- Family-friendly. No emojis. No medical/legal/financial advice.
- No spying/harassing/stalking directives; no slurs or profanity.

Output rules:
- Return ONLY a single one-line JSON object, no code fences, no extra text.
- Keys: "en" and "tr". Max 30 words each.
- Do NOT mix languages in one value.

Format EXACTLY:
{"en":"<english>","tr":"<turkish>"}
""".strip()

STRICT_PROMPT = (
    BASE_PROMPT
    + "\n\nSTRICT MODE: Output ONLY raw JSON exactly as specified. No prose, no backticks."
)


class Generated(NamedTuple):
    fortune: FortuneText
    mood: str
    source: str  # "generated" | "fallback"


class FortuneGate:
    """
    기기별 '하루 한 번' 게이트.

    - 기록 없음 / 잠금 만료           -> 새로 생성
    - 잠금 중 + generated            -> 캐시 그대로
    - 잠금 중 + fallback + tries < N  -> 다시 생성 (tries 누적)
    - 잠금 중 + fallback + tries >= N -> 캐시 그대로
    같은 기기의 동시 요청은 진행 중인 생성 하나를 공유합니다.
    """

    def __init__(
        self,
        repository: FortuneRepository,
        provider,
        rate_limiter: Optional[DailyRateLimiter] = None,
        clock: Callable[[], datetime] = utc_now,
        lock_duration: timedelta = None,
        max_tries: int = None,
        max_length: int = None,
        allow_force: bool = None,
        last_known_size: int = 10_000,
    ):
        self.repository = repository
        self.provider = provider
        self.rate_limiter = rate_limiter
        self.clock = clock
        self.lock_duration = lock_duration or timedelta(hours=settings.LOCK_HOURS)
        self.max_tries = settings.MAX_FALLBACK_TRIES if max_tries is None else max_tries
        self.max_length = max_length or settings.FORTUNE_MAX_LENGTH
        self.allow_force = settings.DEV_ALLOW_FORCE if allow_force is None else allow_force

        self._inflight: Dict[str, asyncio.Future] = {}
        # 저장소 장애 시 돌려줄 마지막 기록 (LRU)
        self._last_known: "OrderedDict[str, FortuneRecord]" = OrderedDict()
        self._last_known_size = last_known_size

    # ------------------------------------------------------------------
    # 조회 (생성 없음)
    # ------------------------------------------------------------------
    async def peek(self, device_id: str) -> Optional[FortuneRecord]:
        try:
            record = await self.repository.read(device_id)
        except StoreUnavailable as e:
            logger.error(f"[store] peek failed for {device_id}: {e}")
            known = self._recall(device_id)
            if known is None:
                # "아직 없음"(204)과 장애를 구분해야 함
                raise
            return known
        if record is not None:
            self._remember(device_id, record)
        return record

    # ------------------------------------------------------------------
    # 쿠키 깨기 (POST)
    # ------------------------------------------------------------------
    async def crack(self, device_id: str, client_key: str = "unknown", force: bool = False) -> FortuneResult:
        task = self._inflight.get(device_id)
        if task is None:
            task = asyncio.ensure_future(self._crack(device_id, client_key, force))
            self._inflight[device_id] = task
            task.add_done_callback(lambda t: self._forget_inflight(device_id, t))
        else:
            logger.info(f"[gate] {device_id} already in flight, joining")
        # 클라이언트가 끊겨도 생성은 끝까지 진행
        return await asyncio.shield(task)

    def _forget_inflight(self, device_id: str, task: asyncio.Future) -> None:
        if self._inflight.get(device_id) is task:
            del self._inflight[device_id]
        if not task.cancelled():
            # 기다리는 쪽이 없을 때 "exception was never retrieved" 방지
            task.exception()

    async def _crack(self, device_id: str, client_key: str, force: bool) -> FortuneResult:
        force = force and self.allow_force

        try:
            existing = await self.repository.read(device_id)
        except StoreUnavailable as e:
            known = self._recall(device_id)
            if known is not None:
                logger.error(f"[store] read failed, serving last known record: {e}")
                return FortuneResult(record=known, cached=True, note=NOTE_CACHED_DUE_ERROR)
            raise

        existing_is_fallback = existing is not None and (
            existing.source == "fallback" or is_fallback_fortune(existing.fortune)
        )

        if existing is not None and not force:
            if not existing_is_fallback:
                self._remember(device_id, existing)
                return FortuneResult(record=existing, cached=True)
            if existing.tries >= self.max_tries:
                self._remember(device_id, existing)
                return FortuneResult(record=existing, cached=True)
            logger.info(f"[gate] {device_id} holds fallback (tries={existing.tries}), regenerating")

        if force:
            logger.warning(f"[gate] DEV force regeneration for {device_id}")

        # 실제 생성이 일어날 때만 카운트
        if self.rate_limiter is not None:
            self.rate_limiter.hit(client_key)
            logger.info(f"[rate-limit] {client_key} has {self.rate_limiter.remaining(client_key)} generations left today")

        try:
            fresh = await self.generate_fortune()
            carried = existing.tries if existing_is_fallback else 0
            tries = carried + 1 if fresh.source == "fallback" else 0
            record = self._new_record(fresh, tries)
            await self.repository.write(device_id, record)
        except Exception as e:
            logger.error(f"fortune error for {device_id}: {e}", exc_info=True)
            # 기존 기록이 있으면 그거라도 돌려줌 (사용자가 빈 화면을 보지 않도록)
            if existing is not None:
                return FortuneResult(record=existing, cached=True, note=NOTE_CACHED_DUE_ERROR)
            raise FortuneUnavailable(str(e)) from e

        self._remember(device_id, record)
        return FortuneResult(record=record)

    def _new_record(self, fresh: Generated, tries: int) -> FortuneRecord:
        created_at = self.clock()
        return FortuneRecord(
            fortune=fresh.fortune,
            mood=fresh.mood,
            created_at=created_at,
            refresh_at=created_at + self.lock_duration,
            source=fresh.source,
            tries=tries,
        )

    # ------------------------------------------------------------------
    # 생성: 1차 시도 -> STRICT 재시도 1회 -> 로컬 폴백
    # ------------------------------------------------------------------
    async def generate_fortune(self) -> Generated:
        try:
            out = await self.provider.generate(BASE_PROMPT)
        except ProviderExhausted as e:
            logger.warning(f"[openai] chain exhausted ({e}), using local fallback")
            return self._fallback()

        logger.info(f"[openai] raw out (first 200): {(out or '')[:200]}")
        try:
            fortune, mood = parse_fortune_payload(out, self.max_length)
            return Generated(fortune, mood, "generated")
        except MalformedOutput as e:
            logger.warning(f"[openai] parse failed ({e}), strict retry")

        try:
            out = await self.provider.generate(STRICT_PROMPT)
            logger.info(f"[openai][strict] raw out (first 200): {(out or '')[:200]}")
            fortune, mood = parse_fortune_payload(out, self.max_length)
            return Generated(fortune, mood, "generated")
        except (ProviderExhausted, MalformedOutput) as e:
            logger.warning(f"[openai] strict retry failed ({e}), using local fallback")
            return self._fallback()

    @staticmethod
    def _fallback() -> Generated:
        return Generated(fallback_fortune(), DEFAULT_MOOD, "fallback")

    # ------------------------------------------------------------------
    # 마지막으로 본 기록 (저장소 장애 대비)
    # ------------------------------------------------------------------
    def _remember(self, device_id: str, record: FortuneRecord) -> None:
        self._last_known[device_id] = record
        self._last_known.move_to_end(device_id)
        while len(self._last_known) > self._last_known_size:
            self._last_known.popitem(last=False)

    def _recall(self, device_id: str) -> Optional[FortuneRecord]:
        record = self._last_known.get(device_id)
        if record is None or record.refresh_at <= self.clock():
            return None
        return record
