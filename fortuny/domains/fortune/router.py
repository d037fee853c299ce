# fortuny/domains/fortune/router.py

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response

from fortuny.domains.fortune.schemas import ErrorResponse, FortuneResponse
from fortuny.domains.fortune.service import FortuneGate
from fortuny.domains.identity.device_handler import DeviceIdentity, client_key, resolve_device

router = APIRouter()


def get_fortune_gate(request: Request) -> FortuneGate:
    # lifespan에서 app.state에 올려둔 게이트 (테스트에서는 dependency_overrides)
    return request.app.state.fortune_gate


@router.get(
    "",
    response_model=FortuneResponse,
    response_model_exclude_none=True,
    responses={204: {"description": "아직 오늘의 운세 없음"}},
)
async def peek_fortune(
    identity: DeviceIdentity = Depends(resolve_device),
    gate: FortuneGate = Depends(get_fortune_gate),
):
    """
    오늘 이미 받은 운세만 조회합니다. 새로 생성하지 않습니다.
    """
    record = await gate.peek(identity.device_id)
    if record is None:
        response = Response(status_code=204)
        identity.persist(response)
        return response
    return FortuneResponse.from_record(record, server_now=gate.clock())


@router.post(
    "",
    response_model=FortuneResponse,
    response_model_exclude_none=True,
    responses={
        429: {"model": ErrorResponse, "description": "생성 한도 초과 또는 생성 실패"},
        503: {"model": ErrorResponse, "description": "저장소 장애"},
    },
)
async def crack_fortune(
    request: Request,
    force: Optional[str] = Query(None, description="개발용 강제 재생성 (DEV_ALLOW_FORCE=1 일 때만)"),
    identity: DeviceIdentity = Depends(resolve_device),
    gate: FortuneGate = Depends(get_fortune_gate),
):
    """
    쿠키 깨기: 24시간 안이면 같은 운세, 아니면 새로 생성합니다.
    """
    result = await gate.crack(
        identity.device_id,
        client_key=client_key(request),
        force=force == "1",
    )
    return FortuneResponse.from_record(result.record, server_now=gate.clock(), note=result.note)
