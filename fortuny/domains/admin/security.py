# fortuny/domains/admin/security.py

from secrets import compare_digest

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from fortuny.core.config import settings

security = HTTPBasic()


def get_current_username(credentials: HTTPBasicCredentials = Depends(security)):
    """/docs, /api/diag 접근용 관리자 인증. 비밀번호 미설정이면 무조건 거절."""
    if not settings.ADMIN_PASSWORD:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Admin access is disabled.",
            headers={"WWW-Authenticate": "Basic"},
        )
    correct_username = compare_digest(credentials.username.encode(), settings.ADMIN_USER.encode())
    correct_password = compare_digest(credentials.password.encode(), settings.ADMIN_PASSWORD.encode())
    if not (correct_username and correct_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password.",
            headers={"WWW-Authenticate": "Basic"},
        )
    return credentials.username
