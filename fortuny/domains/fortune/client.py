# fortuny/domains/fortune/client.py

import logging
from dataclasses import dataclass
from typing import List, Optional

import httpx

from fortuny.core.config import settings
from fortuny.domains.fortune.exceptions import ProviderCallFailed, ProviderExhausted
from fortuny.domains.fortune.utils import extract_json_block, pick_output_text, safe_json_parse

logger = logging.getLogger(__name__)

PROBE_PROMPT = 'Return ONLY this JSON: {"ok":true} (no backticks, no prose)'


@dataclass(frozen=True)
class Attempt:
    model: str
    api_key: str
    label: str  # 로그용: "primary" / "backup"


def build_attempt_chain(
    model: str, fallback_model: str, primary_key: str, backup_key: str
) -> List[Attempt]:
    """
    시도 순서:
    1) 기본 모델 + 기본 키  2) 기본 모델 + 백업 키
    3) fallback 모델 + 기본 키  4) fallback 모델 + 백업 키
    키가 비어 있는 조합은 건너뜁니다.
    """
    chain = []
    for m in (model, fallback_model):
        for label, key in (("primary", primary_key), ("backup", backup_key)):
            if not m or not key:
                continue
            attempt = Attempt(model=m, api_key=key, label=label)
            if attempt not in chain:
                chain.append(attempt)
    return chain


def supports_temperature(model: str) -> bool:
    # reasoning 계열(gpt-5, o1, o3 ...)은 temperature 파라미터를 거부함
    name = model.lower()
    return not (name.startswith("gpt-5") or (name.startswith("o") and name[1:2].isdigit()))


class OpenAIClient:
    def __init__(
        self,
        model: str = None,
        fallback_model: str = None,
        api_key: str = None,
        backup_key: str = None,
        base_url: str = None,
        timeout: float = None,
        max_output_tokens: int = None,
        temperature: float = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.primary_model = model or settings.OPENAI_MODEL
        self.fallback_model = fallback_model or settings.OPENAI_MODEL_FALLBACK
        self.attempts = build_attempt_chain(
            self.primary_model,
            self.fallback_model,
            settings.OPENAI_API_KEY if api_key is None else api_key,
            settings.OPENAI_API_KEY_BACKUP if backup_key is None else backup_key,
        )
        self.base_url = (base_url or settings.OPENAI_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.OPENAI_TIMEOUT_SECONDS
        self.max_output_tokens = max_output_tokens or settings.OPENAI_MAX_OUTPUT_TOKENS
        self.temperature = settings.OPENAI_TEMPERATURE if temperature is None else temperature
        # 테스트에서는 MockTransport 클라이언트 주입
        self._http_client = http_client
        self._owns_client = http_client is None

        if not self.attempts:
            logger.warning("OpenAI API 키가 설정되지 않았습니다. 항상 폴백 운세가 나갑니다.")

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    def _payload(self, model: str, prompt: str) -> dict:
        payload = {
            "model": model,
            "input": prompt,
            # JSON 출력 강제 (Responses API는 response_format 대신 text.format)
            "text": {"format": {"type": "json_object"}},
            "max_output_tokens": self.max_output_tokens,
        }
        if supports_temperature(model):
            payload["temperature"] = self.temperature
        return payload

    async def _call(self, attempt: Attempt, prompt: str) -> str:
        """한 번의 네트워크 호출. 재시도 없음."""
        headers = {
            "Authorization": f"Bearer {attempt.api_key}",
            "Content-Type": "application/json",
        }
        try:
            response = await self._client().post(
                f"{self.base_url}/responses",
                headers=headers,
                json=self._payload(attempt.model, prompt),
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            # 타임아웃, 연결 실패 등
            raise ProviderCallFailed(attempt.model, None, f"{type(e).__name__}: {e}") from e

        if not response.is_success:
            raise ProviderCallFailed(attempt.model, response.status_code, response.text)

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderCallFailed(attempt.model, response.status_code, "non-JSON body") from e
        return pick_output_text(data)

    async def generate(self, prompt: str) -> str:
        """fallback 체인을 순서대로 시도하고 첫 성공 텍스트를 반환"""
        for attempt in self.attempts:
            try:
                out = await self._call(attempt, prompt)
                logger.info(f"[openai] ok model={attempt.model} key={attempt.label} len={len(out)}")
                return out
            except ProviderCallFailed as e:
                logger.warning(f"[openai] {attempt.label} key failed on {attempt.model}: {e}")
        raise ProviderExhausted("all_openai_attempts_failed")

    async def probe(self) -> dict:
        """체인 진단용: {"ok":true}를 그대로 돌려주는지 확인"""
        out = await self.generate(PROBE_PROMPT)
        data = safe_json_parse(out)
        if not isinstance(data, dict):
            data = extract_json_block(out)
        return {
            "ok": bool(isinstance(data, dict) and data.get("ok") is True),
            "model_primary": self.primary_model,
            "model_fallback": self.fallback_model,
            "raw": (out or "")[:180],
        }

    async def close(self):
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
