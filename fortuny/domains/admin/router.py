# fortuny/domains/admin/router.py

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.openapi.docs import get_swagger_ui_html
from fastapi.openapi.utils import get_openapi
from fastapi.responses import JSONResponse

from fortuny.domains.admin.security import get_current_username
from fortuny.domains.fortune.exceptions import ProviderExhausted
from fortuny.domains.fortune.router import get_fortune_gate
from fortuny.domains.fortune.schemas import DiagResponse
from fortuny.domains.fortune.service import FortuneGate

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/docs", include_in_schema=False)
async def get_documentation(username: str = Depends(get_current_username)):
    return get_swagger_ui_html(openapi_url="/openapi.json", title="Fortuny API Docs")


@router.get("/openapi.json", include_in_schema=False)
async def get_open_api_endpoint(request: Request, username: str = Depends(get_current_username)):
    app = request.app
    return get_openapi(title=app.title, version=app.version, routes=app.routes)


@router.get("/api/diag", response_model=DiagResponse)
async def diag(
    username: str = Depends(get_current_username),
    gate: FortuneGate = Depends(get_fortune_gate),
):
    """
    OpenAI 체인 진단 ({"ok":true}를 돌려주는지). 실제 호출이 나가므로 관리자 전용.
    """
    try:
        result = await gate.provider.probe()
    except ProviderExhausted as e:
        logger.error(f"[diag] provider chain exhausted: {e}")
        return JSONResponse(status_code=500, content={"ok": False, "error": str(e)})
    return DiagResponse(**result)
