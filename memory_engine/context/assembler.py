"""
Memory Engine - Context Assembler

장기 기억 + 단기 기억 + 현재 메시지 → 프로바이더 전송용 메시지 목록

구조:
    [system (기본 지시 + 장기 기억)] + [세션 히스토리 (summary 포함)] + [new_message]

- new_message 는 저장소에 추가하지 않는다 (응답 후 호출자가 append)
- 예산 초과는 경고 로그만 남긴다
- 장기 기억 로딩 실패 시 기본 지시만 사용
"""
from __future__ import annotations
import hashlib
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..memory.loader import LongTermMemoryLoader
from ..memory.store import ShortTermMemoryStore
from ..memory.types import Message, Role
from .budget import TokenBudget, TokenBudgetManager
from .counter import TokenCounter

logger = logging.getLogger(__name__)

BASE_INSTRUCTIONS = "You are an intelligent programming assistant."
MEMORY_PREAMBLE = "Here is the project context and user preferences you need to know:"
CLOSING_INSTRUCTIONS = "Use the information above to give the user accurate, targeted help."


@dataclass
class AssembledContext:
    """조립된 컨텍스트"""
    messages: List[Message]
    total_tokens: int
    budget: TokenBudget
    session_id: str
    project_root: Optional[Path] = None
    over_budget: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_chat_messages(self) -> List[Dict[str, str]]:
        return [m.to_chat_dict() for m in self.messages]


def build_system_prompt(long_term_memory: str) -> str:
    """기본 지시 + 장기 기억"""
    parts = [BASE_INSTRUCTIONS]
    if long_term_memory and long_term_memory.strip():
        parts.append(f"{MEMORY_PREAMBLE}\n\n{long_term_memory}")
    parts.append(CLOSING_INSTRUCTIONS)
    return "\n\n".join(parts)


def system_message_id(content: str) -> str:
    """내용 기반 id (같은 입력 → 같은 id)"""
    return "system_" + hashlib.sha256(content.encode("utf-8")).hexdigest()[:16]


class ContextAssembler:
    """컨텍스트 조립기"""

    def __init__(
        self,
        loader: LongTermMemoryLoader,
        store: ShortTermMemoryStore,
        counter: TokenCounter,
        budget_manager: TokenBudgetManager,
        default_model: Optional[str] = None,
    ):
        self.loader = loader
        self.store = store
        self.counter = counter
        self.budget_manager = budget_manager
        self.default_model = default_model

    def assemble_context(
        self,
        session_id: str,
        user_id: Optional[str],
        new_message: Message,
        working_directory: Union[str, Path],
        model: Optional[str] = None,
    ) -> AssembledContext:
        """
        컨텍스트 조립

        Args:
            session_id: 세션 ID
            user_id: 사용자 ID (로그용)
            new_message: 현재 사용자 메시지
            working_directory: 장기 기억 탐색 시작 디렉토리
            model: 대상 모델 (없으면 기본 모델)

        Returns:
            AssembledContext (messages = [system] + history + [new_message])
        """
        model = model or self.default_model

        project_root, long_term = self._load_long_term(working_directory)
        system_prompt = build_system_prompt(long_term)
        system_message = Message(
            role=Role.SYSTEM,
            content=system_prompt,
            id=system_message_id(system_prompt),
            timestamp=new_message.timestamp,
        )

        budget = self.budget_manager.calculate_budget(model)
        history = self.store.get_compacted_history(session_id, model)

        messages = [system_message] + history + [new_message]
        total_tokens = self.counter.count_message_tokens(messages, model)
        over_budget = total_tokens > budget.prompt_limit

        long_term_tokens = self.counter.count_tokens(long_term, model)
        if long_term_tokens > budget.long_term_memory:
            logger.warning(
                f"[ContextAssembler] Long-term memory uses {long_term_tokens} tokens "
                f"(budget {budget.long_term_memory}) for session {session_id}"
            )
        if over_budget:
            logger.warning(
                f"[ContextAssembler] Context exceeds budget: {total_tokens} > {budget.prompt_limit} "
                f"tokens for session {session_id} ({model})"
            )

        logger.info(
            f"[ContextAssembler] Assembled context: {len(messages)} messages, {total_tokens} tokens "
            f"for session {session_id} (user={user_id})"
        )

        return AssembledContext(
            messages=messages,
            total_tokens=total_tokens,
            budget=budget,
            session_id=session_id,
            project_root=project_root,
            over_budget=over_budget,
            metadata={"user_id": user_id, "model": model, "history_messages": len(history)},
        )

    def _load_long_term(self, working_directory: Union[str, Path]):
        try:
            project_root = self.loader.find_project_root(working_directory)
            return project_root, self.loader.load_and_merge_memories(working_directory, project_root)
        except Exception as e:
            logger.warning(f"[ContextAssembler] Long-term memory unavailable, using base instructions: {e}")
            return None, ""
