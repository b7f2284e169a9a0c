"""
Memory Engine - CompressionEngine 테스트

summarizer 는 Mock 으로 대체
"""
import threading
import time
from unittest.mock import Mock

import pytest

from memory_engine.config import CompressionSettings
from memory_engine.context.counter import TokenCounter
from memory_engine.errors import CompactionError
from memory_engine.memory.compactor import (
    COMPRESSION_INSTRUCTIONS,
    SUMMARY_HEADER,
    CompressionEngine,
    format_messages,
    parse_summary_response,
)
from memory_engine.memory.types import Message, Role

XML_RESPONSE = """<conversation_summary>
  <main_topics>
    - login feature
  </main_topics>
  <key_decisions>
    <decision>use JWT</decision>
  </key_decisions>
  <code_context>
    <file path="auth/login.py">login handler</file>
  </code_context>
  <user_requirements>
    <requirement>answer in Korean</requirement>
  </user_requirements>
  <pending_tasks>
    <task>write tests</task>
  </pending_tasks>
  <technical_details>
    <detail>python 3.11</detail>
  </technical_details>
</conversation_summary>"""


def make_engine(summarizer, **settings):
    params = {"summarize_timeout_seconds": None}
    params.update(settings)
    counter = TokenCounter({"tiny": 1000})
    return CompressionEngine(counter, summarizer, CompressionSettings(**params))


class TestParseSummary:
    """응답 파싱"""

    def test_structured_response(self):
        summary = parse_summary_response(XML_RESPONSE)
        assert summary.is_structured
        assert summary.main_topics == ["login feature"]
        assert summary.key_decisions == ["use JWT"]
        assert summary.code_contexts[0].file_path == "auth/login.py"
        assert summary.pending_tasks == ["write tests"]

    def test_render_structured(self):
        rendered = parse_summary_response(XML_RESPONSE).render()
        assert rendered.startswith(SUMMARY_HEADER)
        assert "<decision>use JWT</decision>" in rendered

    def test_unstructured_kept_verbatim(self):
        summary = parse_summary_response("  The user asked about logging.  ")
        assert not summary.is_structured
        assert summary.render() == "The user asked about logging."


class TestCompressionEngine:
    """압축 엔진"""

    def test_compress_calls_summarizer_with_transcript(self):
        summarizer = Mock(return_value=XML_RESPONSE)
        engine = make_engine(summarizer)
        messages = [Message.user("build login"), Message.assistant("done")]

        summary = engine.compress(messages, "s1")

        prompt = summarizer.call_args[0][0]
        assert prompt.startswith(COMPRESSION_INSTRUCTIONS)
        assert "[user]: build login\n" in prompt
        assert "[assistant]: done\n" in prompt
        assert summary.original_message_count == 2

    def test_empty_input_skips_summarizer(self):
        summarizer = Mock()
        summary = make_engine(summarizer).compress([])
        summarizer.assert_not_called()
        assert summary.original_message_count == 0

    def test_empty_response_raises(self):
        engine = make_engine(Mock(return_value="   "))
        with pytest.raises(CompactionError) as exc_info:
            engine.compress([Message.user("x")], "s1")
        assert exc_info.value.session_id == "s1"

    def test_summarizer_exception_wrapped(self):
        engine = make_engine(Mock(side_effect=RuntimeError("provider down")))
        with pytest.raises(CompactionError) as exc_info:
            engine.compress([Message.user("x")], "s1")
        assert "provider down" in exc_info.value.reason

    def test_timeout(self):
        """summarize 가 타임아웃을 넘기면 CompactionError"""
        def slow(prompt):
            time.sleep(0.5)
            return "late"

        engine = make_engine(slow, summarize_timeout_seconds=0.05)
        try:
            with pytest.raises(CompactionError) as exc_info:
                engine.compress([Message.user("x")], "s1")
            assert "timed out" in exc_info.value.reason
        finally:
            engine.shutdown()

    def test_large_input_is_chunked(self):
        """압축 모델 윈도우 초과 → 청크별 요약 후 병합"""
        summarizer = Mock(return_value=XML_RESPONSE)
        engine = make_engine(summarizer, compression_model="tiny")
        messages = [Message.user("a" * 1200) for _ in range(4)]

        summary = engine.compress(messages, "s1")

        assert summarizer.call_count > 1
        assert summary.original_message_count == 4
        assert summary.key_decisions.count("use JWT") == summarizer.call_count

    def test_build_summary_message(self):
        engine = make_engine(Mock(return_value=XML_RESPONSE))
        summary = engine.compress([Message.user("a"), Message.assistant("b")])

        message = engine.build_summary_message(summary)

        assert message.role == Role.SUMMARY
        assert message.is_summary
        assert message.id.startswith("summary_")
        assert message.metadata["original_message_count"] == 2
        assert message.to_chat_dict()["role"] == "system"

    def test_format_messages(self):
        assert format_messages([Message.user("q")]) == "[user]: q\n"


class TestSummarizeTimeoutRecovery:
    """타임아웃 후 다음 호출"""

    def test_hung_call_does_not_block_next_call(self):
        """멈춘 summarize 가 워커를 붙잡아도 다음 압축은 정상 호출"""
        release = threading.Event()
        calls = []

        def summarizer(prompt):
            calls.append(prompt)
            if len(calls) == 1:
                release.wait(5)
                return "too late"
            return "fresh summary"

        engine = make_engine(summarizer, summarize_timeout_seconds=0.3, worker_count=1)
        try:
            with pytest.raises(CompactionError):
                engine.compress([Message.user("first")], "s1")

            summary = engine.compress([Message.user("second")], "s1")

            assert len(calls) == 2
            assert summary.render() == "fresh summary"
        finally:
            release.set()
            engine.shutdown()
