"""
Memory Engine - Memory Types

대화 메시지, 기억 범위, 장기 기억 파일 모델
"""
from __future__ import annotations
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional


class Role(str, Enum):
    """메시지 역할"""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    SUMMARY = "summary"  # 압축으로 생성된 합성 메시지


class MemoryScope(str, Enum):
    """장기 기억 범위 (PROJECT 가 GLOBAL 보다 우선)"""
    GLOBAL = "global"
    PROJECT = "project"


def new_message_id(prefix: str = "msg") -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class Message:
    """대화 메시지 (append 이후 불변)"""
    role: Role
    content: str
    id: str = field(default_factory=new_message_id)
    timestamp: datetime = field(default_factory=datetime.now)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not isinstance(self.role, Role):
            object.__setattr__(self, "role", Role(self.role))

    @classmethod
    def user(cls, content: str, **metadata) -> "Message":
        return cls(role=Role.USER, content=content, metadata=metadata)

    @classmethod
    def assistant(cls, content: str, **metadata) -> "Message":
        return cls(role=Role.ASSISTANT, content=content, metadata=metadata)

    @property
    def is_summary(self) -> bool:
        return self.role == Role.SUMMARY

    @property
    def model(self) -> Optional[str]:
        return self.metadata.get("model")

    def with_content(self, content: str) -> "Message":
        return replace(self, content=content)

    def to_chat_dict(self) -> Dict[str, str]:
        """
        프로바이더 전송용 dict

        summary 역할은 대부분의 Chat API 에 없으므로 system 으로 변환
        """
        role = Role.SYSTEM if self.role == Role.SUMMARY else self.role
        return {"role": role.value, "content": self.content}


@dataclass
class MemoryFile:
    """장기 기억 파일"""
    path: Path
    scope: MemoryScope
    content: str = ""
    size_bytes: int = 0
    truncated: bool = False
