"""
Memory Engine - ContextAssembler 테스트
"""
from unittest.mock import Mock

import pytest

from conftest import conversation, make_settings
from memory_engine.context.assembler import BASE_INSTRUCTIONS, ContextAssembler, build_system_prompt
from memory_engine.context.budget import TokenBudgetManager
from memory_engine.context.counter import TokenCounter
from memory_engine.memory.compactor import CompressionEngine
from memory_engine.memory.loader import LongTermMemoryLoader
from memory_engine.memory.store import ShortTermMemoryStore
from memory_engine.memory.types import Message, Role


@pytest.fixture
def project(tmp_path):
    root = tmp_path / "proj"
    (root / ".git").mkdir(parents=True)
    return root


def make_assembler(tmp_path, compression=None, loader=None, **extra):
    settings = make_settings(
        compression=compression or {"enabled": False},
        long_term={"homeDirectory": str(tmp_path / "home")},
        **extra,
    )
    counter = TokenCounter(settings.model_limits, settings.default_model_limit)
    budget_manager = TokenBudgetManager(counter, settings.token_budget)
    engine = CompressionEngine(counter, Mock(return_value="summary"), settings.compression)
    store = ShortTermMemoryStore(counter, budget_manager, engine, settings)
    loader = loader or LongTermMemoryLoader(settings.long_term)
    assembler = ContextAssembler(loader, store, counter, budget_manager, settings.default_model)
    return assembler, store


class TestBuildSystemPrompt:
    """시스템 프롬프트"""

    def test_without_long_term(self):
        prompt = build_system_prompt("")
        assert prompt.startswith(BASE_INSTRUCTIONS)
        assert "project context" not in prompt

    def test_with_long_term(self):
        prompt = build_system_prompt("## Style\nuse tabs")
        assert "use tabs" in prompt
        assert prompt.index(BASE_INSTRUCTIONS) < prompt.index("use tabs")


class TestAssembleContext:
    """컨텍스트 조립"""

    def test_missing_session_gives_system_and_new_message(self, tmp_path, project):
        assembler, _ = make_assembler(tmp_path)
        new = Message.user("first question")

        ctx = assembler.assemble_context("fresh", "u1", new, project, "test-model")

        assert len(ctx.messages) == 2
        assert ctx.messages[0].role == Role.SYSTEM
        assert ctx.messages[1] is new
        assert ctx.project_root == project.resolve()

    def test_empty_long_term_still_has_system(self, tmp_path, project):
        assembler, _ = make_assembler(tmp_path)
        ctx = assembler.assemble_context("s1", None, Message.user("q"), project, "test-model")
        assert ctx.messages[0].content == build_system_prompt("")

    def test_long_term_in_system_message(self, tmp_path, project):
        (project / "MEMORY.md").write_text("## Build\nrun make test", encoding="utf-8")
        assembler, _ = make_assembler(tmp_path)

        ctx = assembler.assemble_context("s1", "u1", Message.user("q"), project, "test-model")

        assert "run make test" in ctx.messages[0].content

    def test_history_between_system_and_new(self, tmp_path, project):
        assembler, store = make_assembler(tmp_path)
        history = conversation(4)
        for m in history:
            store.append("s1", m)
        new = Message.user("next")

        ctx = assembler.assemble_context("s1", "u1", new, project, "test-model")

        assert ctx.messages[1:-1] == history
        assert ctx.messages[-1] is new
        assert ctx.total_tokens == assembler.counter.count_message_tokens(ctx.messages)

    def test_new_message_not_stored(self, tmp_path, project):
        assembler, store = make_assembler(tmp_path)
        assembler.assemble_context("s1", "u1", Message.user("q"), project, "test-model")
        assert store.get_history("s1") == []

    def test_idempotent(self, tmp_path, project):
        """같은 입력 두 번 → 같은 결과"""
        (project / "MEMORY.md").write_text("notes", encoding="utf-8")
        assembler, store = make_assembler(tmp_path)
        for m in conversation(3):
            store.append("s1", m)
        new = Message.user("q")

        first = assembler.assemble_context("s1", "u1", new, project, "test-model")
        second = assembler.assemble_context("s1", "u1", new, project, "test-model")

        assert first.messages == second.messages
        assert first.messages[0].id == second.messages[0].id
        assert first.total_tokens == second.total_tokens

    def test_loader_failure_degrades_to_base_instructions(self, tmp_path, project):
        loader = Mock()
        loader.find_project_root.side_effect = PermissionError("denied")
        assembler, _ = make_assembler(tmp_path, loader=loader)

        ctx = assembler.assemble_context("s1", "u1", Message.user("q"), project, "test-model")

        assert ctx.messages[0].content == build_system_prompt("")
        assert ctx.project_root is None

    def test_over_budget_is_warning_only(self, tmp_path, project, caplog):
        assembler, _ = make_assembler(tmp_path, modelLimits={"test-model": 8000, "tiny": 100})
        new = Message.user("x" * 1000)

        with caplog.at_level("WARNING", logger="memory_engine"):
            ctx = assembler.assemble_context("s1", "u1", new, project, "tiny")

        assert ctx.over_budget is True
        assert ctx.messages[-1] is new
        assert any("exceeds budget" in r.getMessage() for r in caplog.records)

    def test_default_model_used(self, tmp_path, project):
        assembler, _ = make_assembler(tmp_path)
        ctx = assembler.assemble_context("s1", "u1", Message.user("q"), project)
        assert ctx.budget.total == 8000

    def test_compaction_applied_before_assembly(self, tmp_path, project):
        assembler, store = make_assembler(tmp_path, compression={"minMessageCount": 1000})
        for m in conversation(12):
            store.append("s1", m)

        # tiny 모델은 history budget 이 작아 조립 시 토큰 트리거
        assembler.counter.model_limits["tiny"] = 200
        ctx = assembler.assemble_context("s1", "u1", Message.user("q"), project, "tiny")

        assert ctx.messages[1].role == Role.SUMMARY
        assert ctx.to_chat_messages()[1]["role"] == "system"
