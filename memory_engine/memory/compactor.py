"""
Memory Engine - Compression Engine

기능:
1. 압축 범위 메시지 → 요약 프롬프트 → summarize(text) 호출
2. 압축 모델 윈도우 초과 시 청크 분할 요약 후 병합
3. <conversation_summary> XML 응답 파싱 (비정형 응답은 원문 유지)
4. summarize 타임아웃 / 예외 / 빈 응답 → CompactionError

summarize 는 외부 LLM 호출 (prompt → summary). 실패해도 대화는 계속된다.
"""
from __future__ import annotations
import logging
import re
import threading
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from ..config import CompressionSettings
from ..context.counter import TokenCounter
from ..errors import CompactionError
from .types import Message, Role, new_message_id

logger = logging.getLogger(__name__)

Summarizer = Callable[[str], str]

# 압축 모델 윈도우 중 프롬프트에 쓸 비율 (나머지는 응답용)
PROMPT_WINDOW_RATIO = 0.8

SUMMARY_HEADER = "[Conversation summary]"

COMPRESSION_INSTRUCTIONS = """Compress the following conversation history into a structured summary.

Requirements:
1. Keep every key fact (decisions, code logic, user requirements)
2. Drop repetition and filler
3. Answer in the XML format below

<conversation_summary>
  <main_topics>topics discussed</main_topics>
  <key_decisions>
    <decision>a decision that was made</decision>
  </key_decisions>
  <code_context>
    <file path="path/to/file">what it does</file>
  </code_context>
  <user_requirements>
    <requirement>user requirement or preference</requirement>
  </user_requirements>
  <pending_tasks>
    <task>unfinished task</task>
  </pending_tasks>
  <technical_details>
    <detail>technical detail or configuration</detail>
  </technical_details>
</conversation_summary>

Conversation:
"""


@dataclass
class CodeContext:
    file_path: str
    description: str


@dataclass
class CompressedSummary:
    """압축 요약"""
    main_topics: List[str] = field(default_factory=list)
    key_decisions: List[str] = field(default_factory=list)
    code_contexts: List[CodeContext] = field(default_factory=list)
    user_requirements: List[str] = field(default_factory=list)
    pending_tasks: List[str] = field(default_factory=list)
    technical_details: List[str] = field(default_factory=list)
    original_message_count: int = 0
    raw_text: str = ""

    @property
    def is_structured(self) -> bool:
        return any((
            self.main_topics, self.key_decisions, self.code_contexts,
            self.user_requirements, self.pending_tasks, self.technical_details,
        ))

    def to_xml(self) -> str:
        lines = ["<conversation_summary>"]

        if self.main_topics:
            lines.append("  <main_topics>")
            lines.extend(f"    - {topic}" for topic in self.main_topics)
            lines.append("  </main_topics>")

        def block(tag: str, item: str, values: List[str]):
            if values:
                lines.append(f"  <{tag}>")
                lines.extend(f"    <{item}>{v}</{item}>" for v in values)
                lines.append(f"  </{tag}>")

        block("key_decisions", "decision", self.key_decisions)

        if self.code_contexts:
            lines.append("  <code_context>")
            lines.extend(f'    <file path="{c.file_path}">{c.description}</file>' for c in self.code_contexts)
            lines.append("  </code_context>")

        block("user_requirements", "requirement", self.user_requirements)
        block("pending_tasks", "task", self.pending_tasks)
        block("technical_details", "detail", self.technical_details)

        lines.append("</conversation_summary>")
        return "\n".join(lines)

    def render(self) -> str:
        """summary 메시지 본문"""
        if self.is_structured:
            return f"{SUMMARY_HEADER}\n{self.to_xml()}"
        return self.raw_text.strip()


def _extract(pattern: str, text: str) -> List[str]:
    return [m.strip() for m in re.findall(pattern, text, re.DOTALL) if m.strip()]


def parse_summary_response(response: str) -> CompressedSummary:
    """LLM 응답 → CompressedSummary (태그가 없으면 raw_text 만)"""
    topics_block = _extract(r"<main_topics>(.*?)</main_topics>", response)
    topics = []
    for block in topics_block:
        for line in block.splitlines():
            line = line.strip().lstrip("-").strip()
            if line:
                topics.append(line)

    return CompressedSummary(
        main_topics=topics,
        key_decisions=_extract(r"<decision>(.*?)</decision>", response),
        code_contexts=[
            CodeContext(file_path=p.strip(), description=d.strip())
            for p, d in re.findall(r'<file path="(.*?)">(.*?)</file>', response, re.DOTALL)
        ],
        user_requirements=_extract(r"<requirement>(.*?)</requirement>", response),
        pending_tasks=_extract(r"<task>(.*?)</task>", response),
        technical_details=_extract(r"<detail>(.*?)</detail>", response),
        raw_text=response,
    )


def merge_summaries(summaries: List[CompressedSummary], total_messages: int) -> CompressedSummary:
    """청크 요약 병합"""
    merged = CompressedSummary(original_message_count=total_messages)
    raw_parts = []
    for s in summaries:
        merged.main_topics.extend(s.main_topics)
        merged.key_decisions.extend(s.key_decisions)
        merged.code_contexts.extend(s.code_contexts)
        merged.user_requirements.extend(s.user_requirements)
        merged.pending_tasks.extend(s.pending_tasks)
        merged.technical_details.extend(s.technical_details)
        if not s.is_structured and s.raw_text.strip():
            # 비정형 청크는 주제로 보존
            merged.main_topics.append(s.raw_text.strip())
        raw_parts.append(s.raw_text.strip())
    merged.raw_text = "\n\n".join(p for p in raw_parts if p)
    return merged


def format_messages(messages: List[Message]) -> str:
    """메시지를 텍스트로 포맷"""
    return "".join(f"[{m.role.value}]: {m.content}\n" for m in messages)


class CompressionEngine:
    """
    압축 엔진

    summarize 호출은 내부 executor 에서 실행해 타임아웃을 강제한다.
    타임아웃된 호출의 스레드는 계속 돌 수 있지만 결과는 버려지고,
    executor 는 새로 만들어 다음 호출이 대기하지 않는다.
    """

    def __init__(
        self,
        counter: TokenCounter,
        summarizer: Summarizer,
        settings: Optional[CompressionSettings] = None,
    ):
        """
        Args:
            counter: TokenCounter
            summarizer: 외부 요약 함수 (prompt → summary)
            settings: 압축 설정 (compression_model, summarize_timeout_seconds)
        """
        self.counter = counter
        self.summarizer = summarizer
        self.settings = settings or CompressionSettings()

        self._executor_lock = threading.Lock()
        self._executor: Optional[ThreadPoolExecutor] = None
        if self.settings.summarize_timeout_seconds:
            self._executor = self._new_executor()

    # =========================================================================
    # Public
    # =========================================================================

    def compress(self, messages: List[Message], session_id: str = "") -> CompressedSummary:
        """
        메시지 목록 압축

        Raises:
            CompactionError: 요약 실패 / 타임아웃 / 빈 응답
        """
        if not messages:
            return CompressedSummary(original_message_count=0)

        model = self.settings.compression_model
        base_tokens = self.counter.count_tokens(COMPRESSION_INSTRUCTIONS, model)
        window = self.counter.get_model_token_limit(model)
        available = int(window * PROMPT_WINDOW_RATIO) - base_tokens
        message_tokens = self.counter.count_message_tokens(messages, model)

        logger.info(
            f"[Compression] Compressing {len(messages)} messages ({message_tokens} tokens) "
            f"with {model} (limit={window}, available={available})"
        )

        if message_tokens > available:
            summary = self._compress_in_chunks(messages, available, session_id)
        else:
            summary = self._summarize_chunk(messages, session_id)

        summary.original_message_count = len(messages)
        return summary

    def build_summary_message(self, summary: CompressedSummary) -> Message:
        """압축 범위를 대체할 summary 메시지"""
        return Message(
            role=Role.SUMMARY,
            content=summary.render(),
            id=new_message_id("summary"),
            metadata={
                "source": "compression",
                "original_message_count": summary.original_message_count,
            },
        )

    def shutdown(self) -> None:
        with self._executor_lock:
            if self._executor is not None:
                self._executor.shutdown(wait=False)

    # =========================================================================
    # Internal
    # =========================================================================

    def _compress_in_chunks(self, messages: List[Message], available: int, session_id: str) -> CompressedSummary:
        chunks: List[List[Message]] = []
        current: List[Message] = []
        current_tokens = 0

        for message in messages:
            tokens = self.counter.count_message_tokens([message], self.settings.compression_model)
            if current and current_tokens + tokens > available:
                chunks.append(current)
                current, current_tokens = [], 0

            if tokens > available:
                # 단일 메시지가 윈도우를 넘으면 앞부분만 사용
                keep_chars = max(1, available * 4)
                message = message.with_content(message.content[:keep_chars])
                tokens = available

            current.append(message)
            current_tokens += tokens

        if current:
            chunks.append(current)

        logger.info(f"[Compression] Messages exceed window, summarizing {len(chunks)} chunks")
        summaries = [self._summarize_chunk(chunk, session_id) for chunk in chunks]
        return merge_summaries(summaries, len(messages))

    def _summarize_chunk(self, messages: List[Message], session_id: str) -> CompressedSummary:
        prompt = COMPRESSION_INSTRUCTIONS + format_messages(messages)
        response = self._call_summarizer(prompt, session_id)
        return parse_summary_response(response)

    def _call_summarizer(self, prompt: str, session_id: str) -> str:
        timeout = self.settings.summarize_timeout_seconds
        executor = self._executor
        try:
            if executor is None:
                response = self.summarizer(prompt)
            else:
                response = executor.submit(self.summarizer, prompt).result(timeout=timeout)
        except FutureTimeout as e:
            self._replace_executor(executor)
            raise CompactionError(session_id, f"summarize timed out after {timeout}s") from e
        except CompactionError:
            raise
        except Exception as e:
            raise CompactionError(session_id, f"summarize failed: {e}") from e

        if not response or not response.strip():
            raise CompactionError(session_id, "summarize returned empty text")
        return response

    def _new_executor(self) -> ThreadPoolExecutor:
        return ThreadPoolExecutor(
            max_workers=self.settings.worker_count,
            thread_name_prefix="summarize",
        )

    def _replace_executor(self, stale: ThreadPoolExecutor) -> None:
        """타임아웃 후 새 executor 로 교체 (멈춘 스레드는 버림)"""
        with self._executor_lock:
            if self._executor is not stale:
                return
            self._executor = self._new_executor()
        stale.shutdown(wait=False)
        logger.warning("[Compression] Summarize call timed out, replaced summarize executor")
