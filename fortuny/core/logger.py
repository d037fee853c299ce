import logging
import os
import json
from logging.handlers import TimedRotatingFileHandler
from datetime import datetime

from fortuny.core.config import settings


class JsonFormatter(logging.Formatter):
    def format(self, record):
        log_record = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        # 에러 발생 시 파일 위치와 상세 스택 정보 추가
        if record.levelno >= logging.ERROR:
            log_record["location"] = f"{record.pathname}:{record.lineno}"
            if record.exc_info:
                log_record["stack_trace"] = self.formatException(record.exc_info)
        return json.dumps(log_record, ensure_ascii=False)


def setup_logging(log_dir: str = None, to_file: bool = None):
    log_dir = log_dir or settings.LOG_DIR
    to_file = settings.LOG_TO_FILE if to_file is None else to_file

    root_logger = logging.getLogger()
    root_logger.setLevel(settings.LOG_LEVEL.upper())

    # 재호출 시 핸들러 중복 방지 (uvicorn --reload, 테스트)
    for handler in list(root_logger.handlers):
        if isinstance(handler.formatter, JsonFormatter):
            root_logger.removeHandler(handler)
            handler.close()

    # 노이즈 라이브러리 로그 차단
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.ERROR)
    logging.getLogger("uvicorn.error").setLevel(logging.ERROR)
    logging.getLogger("watchfiles").setLevel(logging.ERROR)

    # 파일 핸들러 (운영용: 7일 보관)
    if to_file:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = TimedRotatingFileHandler(
            filename=os.path.join(log_dir, "server.log"),
            when="midnight", interval=1, backupCount=7, encoding="utf-8"
        )
        file_handler.setFormatter(JsonFormatter())
        root_logger.addHandler(file_handler)

    # 콘솔 핸들러 (개발용)
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(JsonFormatter())
    root_logger.addHandler(console_handler)
