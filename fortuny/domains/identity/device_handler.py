# fortuny/domains/identity/device_handler.py

import logging
import uuid
from dataclasses import dataclass

from fastapi import Request, Response

from fortuny.core.config import settings

logger = logging.getLogger(__name__)


@dataclass
class DeviceIdentity:
    device_id: str
    is_new: bool = False

    def persist(self, response: Response) -> None:
        """새로 발급한 경우에만 쿠키 심기 (잃어버려도 새로 발급하면 그만)"""
        if not self.is_new:
            return
        response.set_cookie(
            key=settings.DEVICE_COOKIE_NAME,
            value=self.device_id,
            max_age=settings.DEVICE_COOKIE_MAX_AGE_DAYS * 24 * 60 * 60,
            httponly=False,
            samesite="lax",
        )


def mint_device_id() -> str:
    # uuid4는 os.urandom 기반
    return str(uuid.uuid4())


def resolve_device(request: Request, response: Response) -> DeviceIdentity:
    """
    요청의 기기 쿠키를 읽어 식별자를 반환.
    없으면 새로 만들어 응답에 쿠키를 심습니다. 실패하는 경우 없음.
    """
    device_id = (request.cookies.get(settings.DEVICE_COOKIE_NAME) or "").strip()
    if device_id:
        return DeviceIdentity(device_id=device_id)

    identity = DeviceIdentity(device_id=mint_device_id(), is_new=True)
    identity.persist(response)
    logger.info(f"[identity] new device {identity.device_id}")
    return identity


def client_key(request: Request) -> str:
    """
    rate limit 키: 접속한 peer 주소.
    X-Forwarded-For는 ProxyHeadersMiddleware가 신뢰하는 프록시(FORWARDED_ALLOW_IPS)에서 온 경우에만
    request.client에 반영하므로 여기서 헤더를 직접 읽지 않습니다.
    """
    return request.client.host if request.client else "unknown"
