"""
Memory Engine - Server Logger
장애 대응을 위한 구조화된 로깅

로그 구조:
  logs/
  ├── memory.log           # 전체 로그 (INFO+)
  └── error.log            # 에러만 (ERROR+)

사용법:
    from memory_engine.utils.server_logger import setup_logger, log_error, log_compaction

    setup_logger()                                   # 시작 시 1회
    logger = logging.getLogger(__name__)             # 모듈별 자식 로거
    log_compaction("sess-1", before=40, after=6, tokens_before=9000, tokens_after=1200)
"""
import json
import logging
import os
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

LOGGER_NAME = "memory_engine"

# extra 로 전달 가능한 필드
EXTRA_FIELDS = ("session_id", "model", "tokens", "messages", "duration_ms", "error_type")


# =============================================================================
# 커스텀 포매터
# =============================================================================

class JsonFormatter(logging.Formatter):
    """JSON 형식 로그 포매터"""

    def format(self, record):
        log_data = {
            "timestamp": datetime.now().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for name in EXTRA_FIELDS:
            if hasattr(record, name):
                log_data[name] = getattr(record, name)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False)


class ReadableFormatter(logging.Formatter):
    """사람이 읽기 좋은 포매터 (콘솔용)"""

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",    # Cyan
        "INFO": "\033[32m",     # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",    # Red
        "CRITICAL": "\033[35m", # Magenta
    }
    RESET = "\033[0m"

    def format(self, record):
        color = self.LEVEL_COLORS.get(record.levelname, "")
        timestamp = datetime.now().strftime("%H:%M:%S")

        msg = f"{color}[{timestamp}] {record.levelname:8}{self.RESET} {record.getMessage()}"

        extras = []
        if hasattr(record, "session_id"):
            extras.append(f"session={record.session_id}")
        if hasattr(record, "model"):
            extras.append(f"model={record.model}")
        if hasattr(record, "tokens"):
            extras.append(f"tokens={record.tokens}")
        if hasattr(record, "messages"):
            extras.append(f"messages={record.messages}")
        if hasattr(record, "duration_ms"):
            extras.append(f"time={record.duration_ms}ms")

        if extras:
            msg += f" | {' '.join(extras)}"

        if record.exc_info:
            msg += f"\n{self.formatException(record.exc_info)}"

        return msg


# =============================================================================
# 로거 설정
# =============================================================================

def setup_logger(log_dir: Optional[str] = None, console_level: int = logging.INFO) -> logging.Logger:
    """
    메인 로거 설정 (중복 호출 안전)

    Args:
        log_dir: 파일 로그 디렉토리. None이면 MEMORY_ENGINE_LOG_DIR 환경변수,
                 그것도 없으면 콘솔만 사용
        console_level: 콘솔 핸들러 레벨
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)

    # 중복 핸들러 방지
    if logger.handlers:
        return logger

    # 1. 콘솔 핸들러
    console_handler = logging.StreamHandler()
    console_handler.setLevel(console_level)
    console_handler.setFormatter(ReadableFormatter())
    logger.addHandler(console_handler)

    log_dir = log_dir or os.getenv("MEMORY_ENGINE_LOG_DIR")
    if not log_dir:
        return logger

    path = Path(log_dir)
    path.mkdir(parents=True, exist_ok=True)

    # 2. 전체 로그 파일 (JSON, 10MB 로테이션, 5개 보관)
    server_handler = RotatingFileHandler(
        path / "memory.log",
        maxBytes=10*1024*1024,  # 10MB
        backupCount=5,
        encoding="utf-8"
    )
    server_handler.setLevel(logging.INFO)
    server_handler.setFormatter(JsonFormatter())
    logger.addHandler(server_handler)

    # 3. 에러 전용 파일 (JSON, 5MB 로테이션, 10개 보관)
    error_handler = RotatingFileHandler(
        path / "error.log",
        maxBytes=5*1024*1024,  # 5MB
        backupCount=10,
        encoding="utf-8"
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(JsonFormatter())
    logger.addHandler(error_handler)

    return logger


# =============================================================================
# 헬퍼 함수
# =============================================================================

def log_error(
    message: str,
    session_id: str = None,
    model: str = None,
    error_type: str = None,
    exc_info: bool = True,
):
    """
    에러 로그 (자동 스택트레이스)

    Args:
        message: 에러 메시지
        session_id: 세션 ID
        model: 모델명
        error_type: 에러 타입 (COMPACTION_FAILED, QUEUE_FULL 등)
        exc_info: 스택트레이스 포함 여부
    """
    extra = {}
    if session_id:
        extra["session_id"] = session_id
    if model:
        extra["model"] = model
    if error_type:
        extra["error_type"] = error_type

    logging.getLogger(LOGGER_NAME).error(message, extra=extra, exc_info=exc_info)


def log_compaction(
    session_id: str,
    before: int,
    after: int,
    tokens_before: int,
    tokens_after: int,
    duration_ms: int = 0,
    model: str = None,
):
    """압축 결과 로그"""
    extra = {
        "session_id": session_id,
        "messages": f"{before}->{after}",
        "tokens": f"{tokens_before}->{tokens_after}",
        "duration_ms": duration_ms,
    }
    if model:
        extra["model"] = model

    logging.getLogger(LOGGER_NAME).info(f"[Compaction] Session {session_id} compacted", extra=extra)
