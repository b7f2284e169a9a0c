"""
Memory Engine - Settings (Pydantic 스키마)

설정 구조:
  shortTerm.compression.*   단기 기억 압축 정책
  longTerm.*                장기 기억 파일 탐색/병합
  tokenBudget.*             모델 컨텍스트 윈도우 분배 비율 (합계 1.0)
  modelLimits               모델별 컨텍스트 윈도우 크기

YAML 은 camelCase, 코드에서는 snake_case 로 접근.
비율 합계 오류 등 잘못된 설정은 시작 시점에 ConfigurationError.
"""
from __future__ import annotations
import os
from pathlib import Path
from typing import Dict, List, Literal, Optional, Union

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic.alias_generators import to_camel

from .errors import ConfigurationError

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config" / "memory.yaml"
RATIO_EPSILON = 1e-6

BoundaryStrategy = Literal["USER_MESSAGE"]
RejectionPolicy = Literal["reject", "caller_runs"]


class _Settings(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="forbid", protected_namespaces=()
    )


class CompressionSettings(_Settings):
    enabled: bool = True
    trigger_threshold: float = Field(default=0.7, gt=0, le=1)
    min_message_count: int = Field(default=10, ge=1)
    preserve_threshold: float = Field(default=0.3, gt=0, lt=1)
    boundary_strategy: BoundaryStrategy = "USER_MESSAGE"
    min_interval_seconds: float = Field(default=300, ge=0)
    compression_model: str = "gpt-4o-mini"
    async_compression: bool = True
    summarize_timeout_seconds: Optional[float] = Field(default=60, gt=0)
    worker_count: int = Field(default=2, ge=1)
    queue_capacity: int = Field(default=100, ge=1)
    rejection_policy: RejectionPolicy = "reject"


class ShortTermSettings(_Settings):
    enabled: bool = True
    compression: CompressionSettings = Field(default_factory=CompressionSettings)


class LongTermSettings(_Settings):
    enabled: bool = True
    filename: str = "MEMORY.md"
    global_directory: str = ".memory_engine"
    home_directory: Optional[str] = None  # None이면 사용자 홈
    max_search_depth: int = Field(default=3, ge=0)
    max_search_dirs: int = Field(default=50, ge=0)
    max_file_size: int = Field(default=51200, ge=1)  # 50KB
    ignore_patterns: List[str] = Field(
        default_factory=lambda: [".git", "node_modules", "target", "build", "dist", "__pycache__", ".venv"]
    )
    project_markers: List[str] = Field(
        default_factory=lambda: [".git", "pom.xml", "package.json", "pyproject.toml", "setup.py"]
    )

    def resolve_home(self) -> Path:
        if self.home_directory:
            return Path(self.home_directory).expanduser()
        return Path.home()

    def global_memory_path(self) -> Path:
        return self.resolve_home() / self.global_directory / self.filename


class TokenBudgetSettings(_Settings):
    system_prompt_ratio: float = Field(default=0.05, ge=0, le=1)
    long_term_memory_ratio: float = Field(default=0.05, ge=0, le=1)
    compressed_history_ratio: float = Field(default=0.10, ge=0, le=1)
    preserved_history_ratio: float = Field(default=0.30, ge=0, le=1)
    response_buffer_ratio: float = Field(default=0.50, ge=0, le=1)

    def ratio_sum(self) -> float:
        return (
            self.system_prompt_ratio
            + self.long_term_memory_ratio
            + self.compressed_history_ratio
            + self.preserved_history_ratio
            + self.response_buffer_ratio
        )

    @model_validator(mode="after")
    def _check_sum(self) -> "TokenBudgetSettings":
        total = self.ratio_sum()
        if abs(total - 1.0) > RATIO_EPSILON:
            raise ValueError(f"token budget ratios must sum to 1.0 (got {total:.6f})")
        return self


class MemorySettings(_Settings):
    short_term: ShortTermSettings = Field(default_factory=ShortTermSettings)
    long_term: LongTermSettings = Field(default_factory=LongTermSettings)
    token_budget: TokenBudgetSettings = Field(default_factory=TokenBudgetSettings)
    model_limits: Dict[str, int] = Field(default_factory=dict)
    default_model_limit: int = Field(default=8192, ge=1)
    default_model: str = "gpt-4o-mini"

    @property
    def compression(self) -> CompressionSettings:
        return self.short_term.compression


def build_settings(data: Optional[dict] = None) -> MemorySettings:
    """
    dict → MemorySettings

    Raises:
        ConfigurationError: 스키마 검증 실패 (비율 합계 포함)
    """
    try:
        return MemorySettings.model_validate(data or {})
    except ValidationError as e:
        raise ConfigurationError(f"Invalid memory settings: {e}") from e


def load_settings(path: Union[str, Path, None] = None) -> MemorySettings:
    """
    YAML 설정 파일 로드

    우선순위:
    1. path 인자
    2. MEMORY_ENGINE_CONFIG 환경변수 (.env 포함)
    3. config/memory.yaml

    파일이 없으면 기본값. MEMORY_ENGINE_HOME 이 있으면 longTerm.homeDirectory 덮어씀.
    """
    load_dotenv()

    config_path = Path(path or os.getenv("MEMORY_ENGINE_CONFIG") or DEFAULT_CONFIG_PATH)
    data: dict = {}
    if config_path.exists():
        try:
            data = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Cannot parse {config_path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"{config_path}: top level must be a mapping")

    home_override = os.getenv("MEMORY_ENGINE_HOME")
    if home_override:
        key = "long_term" if "long_term" in data else "longTerm"
        long_term = dict(data.get(key) or {})
        long_term.pop("home_directory", None)
        long_term["homeDirectory"] = home_override
        data[key] = long_term

    return build_settings(data)
