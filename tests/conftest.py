import os
from datetime import datetime, timedelta, timezone

import pytest

# settings 로드 전에 테스트 환경 고정
os.environ["LOG_TO_FILE"] = "false"
os.environ["PRODUCTION"] = "false"
os.environ["DEV_ALLOW_FORCE"] = "false"
os.environ.pop("REDIS_URL", None)
os.environ["OPENAI_API_KEY"] = ""
os.environ["OPENAI_API_KEY_BACKUP"] = ""
os.environ["ADMIN_PASSWORD"] = ""

from fortuny.domains.fortune.exceptions import ProviderExhausted  # noqa: E402
from fortuny.domains.fortune.repository import InMemoryFortuneRepository  # noqa: E402
from fortuny.domains.fortune.service import FortuneGate  # noqa: E402

GOOD_OUTPUT = '{"en":"Someone keeps rereading your last message.","tr":"Biri son mesajını tekrar tekrar okuyor, valla."}'


class FakeClock:
    """수동으로 시간을 넘기는 시계"""

    def __init__(self, start=None):
        self.now = start or datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class ScriptedProvider:
    """
    generate() 호출마다 스크립트를 하나씩 소비.
    항목이 Exception이면 raise, 문자열이면 반환. 스크립트가 끝나면 마지막 항목 반복.
    """

    def __init__(self, *script):
        self.script = list(script) or [GOOD_OUTPUT]
        self.calls = []

    async def generate(self, prompt):
        self.calls.append(prompt)
        index = min(len(self.calls) - 1, len(self.script) - 1)
        item = self.script[index]
        if isinstance(item, Exception):
            raise item
        return item

    async def probe(self):
        await self.generate("probe")
        return {"ok": True, "model_primary": "m1", "model_fallback": "m2", "raw": '{"ok":true}'}

    async def close(self):
        return None


def exhausted():
    return ProviderExhausted("all_openai_attempts_failed")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def repo(clock):
    return InMemoryFortuneRepository(clock=clock)


@pytest.fixture
def make_gate(repo, clock):
    def _make(provider, **kwargs):
        return FortuneGate(repository=repo, provider=provider, clock=clock, **kwargs)
    return _make
