# fortuny/middleware.py
import time
import logging
import json
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from fortuny.core.config import settings

logger = logging.getLogger("api_monitor")

# 정적 파일 요청은 로그에서 제외
LOGGED_PREFIXES = ("/api", "/health", "/docs", "/openapi.json")


class APIAccessLoggerMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if not path.startswith(LOGGED_PREFIXES):
            return await call_next(request)

        start_time = time.time()
        method = request.method
        client_ip = request.client.host if request.client else "unknown"
        has_device = settings.DEVICE_COOKIE_NAME in request.cookies

        try:
            response = await call_next(request)
            duration = time.time() - start_time

            # 400번대 이상 (rate limit, 인증 실패 등)
            if response.status_code >= 400:
                error_log = {
                    "event": "HTTP_ERROR",
                    "status": response.status_code,
                    "method": method,
                    "path": path,
                    "client_ip": client_ip,
                    "has_device": has_device,
                    "duration": f"{duration:.4f}s"
                }
                logger.warning(json.dumps(error_log, ensure_ascii=False))
            else:
                logger.info(f"SUCCESS | {method} {path} | {response.status_code} | Time: {duration:.4f}s")

            return response

        except Exception as e:
            duration = time.time() - start_time
            critical_log = {
                "event": "SYSTEM_CRITICAL_ERROR",
                "method": method,
                "path": path,
                "client_ip": client_ip,
                "error_type": type(e).__name__,
                "error_message": str(e),
                "duration": f"{duration:.4f}s"
            }
            logger.error(json.dumps(critical_log, ensure_ascii=False), exc_info=True)

            # 예외를 다시 raise하지 않고 500 응답으로 종결 (uvicorn 중복 로그 방지)
            return JSONResponse(
                status_code=500,
                content={"ok": False, "error": "internal_error", "support_id": f"{time.time()}"}
            )
