# fortuny/main.py
import logging
import os
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.staticfiles import StaticFiles
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from fortuny.core.config import settings
from fortuny.core.logger import setup_logging
from fortuny.core.lifespan import lifespan
from fortuny.middleware import APIAccessLoggerMiddleware
from fortuny.domains.fortune.exceptions import FortuneUnavailable, RateLimited, StoreUnavailable

# 라우터 임포트
from fortuny.domains.fortune.router import router as fortune_router
from fortuny.domains.admin.router import router as admin_router

# 로깅 설정 활성화
setup_logging()
logger = logging.getLogger("api_monitor")

app = FastAPI(
    title=settings.PROJECT_NAME,
    description="하루 한 번 포춘쿠키 (EN/TR) API",
    version="1.0.0",
    lifespan=lifespan,
    docs_url=None,
    redoc_url=None,
    openapi_url=None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,  # 기기 쿠키
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(
    APIAccessLoggerMiddleware,
)

# 가장 바깥: 신뢰하는 프록시가 보낸 X-Forwarded-For만 client 주소로 반영
app.add_middleware(
    ProxyHeadersMiddleware,
    trusted_hosts=[ip.strip() for ip in settings.FORWARDED_ALLOW_IPS.split(",") if ip.strip()],
)

app.include_router(admin_router, tags=["Admin"])
app.include_router(fortune_router, prefix="/api/fortune", tags=["Fortune"])


@app.get("/health")
def health_check():
    return {"ok": True, "time": datetime.now(timezone.utc).isoformat()}


# 웹 클라이언트 (선택). 라우터보다 뒤에 마운트해야 /api가 가려지지 않음
if settings.STATIC_DIR:
    if os.path.isdir(settings.STATIC_DIR):
        app.mount("/", StaticFiles(directory=settings.STATIC_DIR, html=True), name="static")
    else:
        logger.warning(f"STATIC_DIR not found, skipping mount: {settings.STATIC_DIR}")


# ==========================================================
# 전역 에러 핸들러
# 클라이언트에는 제공자 원본 에러를 절대 노출하지 않습니다.
# ==========================================================

# 1. 생성 한도 초과 / 생성 실패 + 캐시 없음 -> 429
@app.exception_handler(RateLimited)
@app.exception_handler(FortuneUnavailable)
async def rate_limited_handler(request: Request, exc: Exception):
    return JSONResponse(
        status_code=429,
        content={"ok": False, "error": "rate_limited", "message": exc.message},
    )


# 2. 저장소 장애 + 마지막 기록도 없음 -> 503
@app.exception_handler(StoreUnavailable)
async def store_unavailable_handler(request: Request, exc: StoreUnavailable):
    logger.error(f"🛑 STORE_UNAVAILABLE | {request.url.path} | {exc}")
    return JSONResponse(
        status_code=503,
        content={
            "ok": False,
            "error": "store_unavailable",
            "message": "Fortunes are resting for a moment. Try again soon.",
        },
    )


# 3. 예상치 못한 시스템 에러 (500)
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"🛑 [System Error] {request.url.path} : {exc}", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"ok": False, "error": "internal_error", "message": "Something went wrong."},
    )


# 4. 의도한 에러 (HTTPException, 라우팅 404/405 포함)
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"ok": False, "error": "http_error", "message": exc.detail},
        headers=exc.headers,
    )


# 5. 요청 형식 오류 (Validation Error)
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    error_details = exc.errors()
    logger.error(f"❌ VALIDATION_ERROR | {request.url.path} | Details: {error_details}")
    return JSONResponse(
        status_code=422,
        content={
            "ok": False,
            "error": "validation_error",
            "message": "Invalid request.",
            "details": jsonable_errors(error_details),
        },
    )


def jsonable_errors(errors):
    # ctx 안에 예외 객체가 들어 있으면 직렬화가 안 되므로 문자열로
    return [{k: (str(v) if k == "ctx" else v) for k, v in err.items()} for err in errors]
