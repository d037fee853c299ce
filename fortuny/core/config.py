# fortuny/core/config.py

from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    PROJECT_NAME: str = "Fortuny"

    # OpenAI Responses API (기본 모델 -> 저렴한 fallback 모델 순서)
    OPENAI_API_KEY: str = ""
    OPENAI_API_KEY_BACKUP: str = ""
    OPENAI_MODEL: str = "gpt-5"
    OPENAI_MODEL_FALLBACK: str = "gpt-4.1-mini"
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"
    OPENAI_TIMEOUT_SECONDS: float = 20.0
    OPENAI_MAX_OUTPUT_TOKENS: int = 200
    OPENAI_TEMPERATURE: float = 0.8

    # 저장소: REDIS_URL이 없으면 프로세스 메모리 사용 (재시작 시 초기화)
    REDIS_URL: Optional[str] = None

    # 운영 모드일 때만 rate limit 활성화
    PRODUCTION: bool = False
    # 개발용 ?force=1 허용 여부 (운영에서는 반드시 꺼둘 것)
    DEV_ALLOW_FORCE: bool = False
    RATE_LIMIT_PER_DAY: int = 10
    # X-Forwarded-For를 믿을 프록시 주소 (쉼표 구분, "*"이면 전부)
    FORWARDED_ALLOW_IPS: str = "127.0.0.1"

    # 하루 한 번 규칙
    LOCK_HOURS: int = 24
    MAX_FALLBACK_TRIES: int = 3
    FORTUNE_MAX_LENGTH: int = 120

    # 기기 식별 쿠키
    DEVICE_COOKIE_NAME: str = "fc_device"
    DEVICE_COOKIE_MAX_AGE_DAYS: int = 400

    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:8000",
    ]

    # /docs, /api/diag 보호용 (비밀번호가 비어 있으면 전부 막힘)
    ADMIN_USER: str = "fortuny_admin"
    ADMIN_PASSWORD: str = ""

    # 웹 클라이언트 정적 파일 (선택)
    STATIC_DIR: Optional[str] = None

    LOG_DIR: str = "logs"
    LOG_TO_FILE: bool = True
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
