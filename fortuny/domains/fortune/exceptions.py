# fortuny/domains/fortune/exceptions.py

from typing import Optional


class FortunyError(Exception):
    """운세 도메인 공통 예외"""


class ProviderCallFailed(FortunyError):
    """fallback 체인 중 한 번의 호출 실패 (다음 체인으로 넘어감)"""

    def __init__(self, model: str, status: Optional[int] = None, detail: str = ""):
        self.model = model
        self.status = status
        self.detail = detail
        super().__init__(f"{model} failed ({status or 'network'}): {detail[:200]}")


class ProviderExhausted(FortunyError):
    """모든 (모델, 키) 조합이 실패"""


class MalformedOutput(FortunyError):
    """모델 응답에서 {en, tr} 구조를 뽑아내지 못함"""


class StoreUnavailable(FortunyError):
    """저장소 읽기/쓰기 실패"""


class RateLimited(FortunyError):
    """일일 생성 한도 초과"""

    message = "Too many requests today. Try again later."


class FortuneUnavailable(FortunyError):
    """생성도 실패하고 돌려줄 캐시도 없음"""

    message = "Too many requests today. Try again later."
