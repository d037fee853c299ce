# check_provider.py
# OpenAI 체인 진단 스크립트: python check_provider.py

import asyncio

from fortuny.core.config import settings
from fortuny.domains.fortune.client import OpenAIClient
from fortuny.domains.fortune.exceptions import ProviderExhausted


async def main():
    print("------------ 진단 시작 ------------")

    # 1. 키 확인
    for name, key in (("primary", settings.OPENAI_API_KEY), ("backup", settings.OPENAI_API_KEY_BACKUP)):
        if key:
            print(f"1. {name} 키: [있음] {key[:5]}...")
        else:
            print(f"1. {name} 키: [없음]")

    client = OpenAIClient()
    print(f"2. 시도 순서: {[(a.model, a.label) for a in client.attempts]}")

    # 2. 실제 호출
    try:
        result = await client.probe()
        status = "성공" if result["ok"] else "응답은 왔지만 JSON 아님"
        print(f"3. 모델 응답 테스트: [{status}] {result['raw']}")
    except ProviderExhausted as e:
        print(f"3. 모델 응답 테스트: [실패] {e}")
    finally:
        await client.close()

    print("------------ 진단 종료 ------------")


if __name__ == "__main__":
    asyncio.run(main())
