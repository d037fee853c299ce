# fortuny/domains/fortune/schemas.py

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    # 저장/응답 모두 camelCase (createdAt, refreshAt ...)
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


#
# ============저장===============
#
class FortuneText(BaseModel):
    en: str
    tr: str


class FortuneRecord(CamelModel):
    """기기 하나당 하나만 존재하는 운세 기록"""
    fortune: FortuneText
    mood: str = "light"
    created_at: datetime
    refresh_at: datetime
    source: Literal["generated", "fallback"]
    tries: int = 0


class FortuneResult(BaseModel):
    """게이트 처리 결과 (record + 캐시 여부 등)"""
    record: FortuneRecord
    cached: bool = False
    note: Optional[str] = None


#
# ============출력===============
#
class FortuneResponse(CamelModel):
    ok: bool = True
    fortune: FortuneText
    mood: str
    created_at: datetime
    refresh_at: datetime
    server_now: datetime
    source: Literal["generated", "fallback"]
    tries: int
    note: Optional[str] = None

    @classmethod
    def from_record(cls, record: FortuneRecord, server_now: datetime, note: Optional[str] = None):
        return cls(
            fortune=record.fortune,
            mood=record.mood,
            created_at=record.created_at,
            refresh_at=record.refresh_at,
            server_now=server_now,
            source=record.source,
            tries=record.tries,
            note=note,
        )


class ErrorResponse(BaseModel):
    ok: bool = False
    error: str
    message: str


class DiagResponse(CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, protected_namespaces=()
    )

    ok: bool
    model_primary: str
    model_fallback: str
    raw: str
