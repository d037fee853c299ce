# fortuny/domains/fortune/utils.py

import json
import re
from typing import Any, Optional

from fortuny.domains.fortune.exceptions import MalformedOutput
from fortuny.domains.fortune.schemas import FortuneText

# 폴백 문구 (캐시된 기록이 폴백인지 판별할 때도 사용)
FALLBACK_EN = "Make room. New things are arriving."
FALLBACK_TR = "Yer aç. Yeni şeyler geliyor."

DEFAULT_MOOD = "light"
MOOD_MAX_LENGTH = 24

_FENCE_OPEN = re.compile(r"^```(?:json)?", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"```$")
_WHITESPACE = re.compile(r"\s+")


def safe_json_parse(text: str, default: Any = None) -> Any:
    try:
        return json.loads(text)
    except (TypeError, ValueError):
        return default


def strip_code_fences(text: str) -> str:
    """```json ... ``` 로 감싼 응답에서 펜스 제거"""
    t = str(text or "").strip()
    t = _FENCE_OPEN.sub("", t)
    t = _FENCE_CLOSE.sub("", t)
    return t.strip()


def extract_json_block(text: str) -> Optional[Any]:
    """
    첫 번째 '{' 부터 마지막 '}' 까지 잘라서 JSON 파싱.
    뒤에 괄호 섞인 잡담이 붙어 실패하면 '{' 위치마다 raw_decode로 첫 객체를 찾습니다.
    """
    if not text:
        return None
    t = strip_code_fences(text)
    start = t.find("{")
    end = t.rfind("}")
    if start == -1 or end == -1 or end <= start:
        return None

    data = safe_json_parse(t[start:end + 1])
    if data is not None:
        return data

    decoder = json.JSONDecoder()
    while start != -1:
        try:
            data, _ = decoder.raw_decode(t, start)
            if isinstance(data, dict):
                return data
        except ValueError:
            pass
        start = t.find("{", start + 1)
    return None


def clean_text(value: Any, max_length: int) -> str:
    return _WHITESPACE.sub(" ", str(value or "")).strip()[:max_length]


def parse_fortune_payload(raw: str, max_length: int = 120) -> tuple[FortuneText, str]:
    """
    모델 원문 -> (FortuneText, mood)
    1) 블록 추출  2) 원문 그대로 파싱  3) en/tr 검증
    실패 시 MalformedOutput
    """
    data = extract_json_block(raw)
    if not isinstance(data, dict):
        data = safe_json_parse(raw)
    if not isinstance(data, dict):
        raise MalformedOutput(f"no JSON object in output: {str(raw or '')[:120]!r}")

    en, tr = data.get("en"), data.get("tr")
    if not isinstance(en, str) or not isinstance(tr, str):
        raise MalformedOutput("en/tr missing or not strings")

    fortune = FortuneText(en=clean_text(en, max_length), tr=clean_text(tr, max_length))
    if not fortune.en or not fortune.tr:
        raise MalformedOutput("en/tr empty after normalization")

    mood = data.get("mood")
    if isinstance(mood, str) and clean_text(mood, MOOD_MAX_LENGTH):
        mood = clean_text(mood, MOOD_MAX_LENGTH).lower()
    else:
        mood = DEFAULT_MOOD
    return fortune, mood


def fallback_fortune() -> FortuneText:
    return FortuneText(en=FALLBACK_EN, tr=FALLBACK_TR)


def is_fallback_fortune(fortune: Optional[FortuneText]) -> bool:
    if fortune is None:
        return False
    return fortune.en.strip() == FALLBACK_EN or fortune.tr.strip() == FALLBACK_TR


def pick_output_text(data: Any) -> str:
    """Responses API 응답 JSON에서 텍스트만 꺼내기"""
    if not isinstance(data, dict):
        return ""
    if data.get("output_text"):
        return str(data["output_text"])

    for item in data.get("output") or []:
        if not isinstance(item, dict):
            continue
        for content in item.get("content") or []:
            if not isinstance(content, dict):
                continue
            text = content.get("text")
            if isinstance(text, dict):
                text = text.get("value")
            if text:
                return str(text)
    return ""
