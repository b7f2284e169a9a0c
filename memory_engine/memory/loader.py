"""
Memory Engine - Long-Term Memory Loader

장기 기억 파일 탐색 + 병합

탐색 순서 (뒤로 갈수록 우선순위 높음):
1. GLOBAL   ~/<global_directory>/<filename>
2. PROJECT  <project_root>/<filename> → 하위 경로 → current_dir
3. PROJECT  current_dir 아래 BFS (max_search_dirs, ignore_patterns 제외)

병합 규칙:
- "## 섹션" 단위. 우선순위 높은 파일에 같은 섹션이 있으면 앞 파일의 섹션 제거
- 결과는 current_dir 별로 캐시, 저장 경로에서 invalidate() 호출
"""
from __future__ import annotations
import logging
import re
import threading
from collections import deque
from pathlib import Path
from typing import Callable, Deque, Dict, List, Optional, Tuple, Union

from ..config import LongTermSettings
from .types import MemoryFile, MemoryScope

logger = logging.getLogger(__name__)

# (scope, path) → bytes | None. 파일이 없으면 None
MemoryFileReader = Callable[[MemoryScope, Path], Optional[bytes]]

PathLike = Union[str, Path]

# 최근 경고만 보관
MAX_WARNINGS = 100

SECTION_PATTERN = re.compile(r"^##\s+(.+?)\s*$", re.MULTILINE)


def read_file_bytes(scope: MemoryScope, path: Path, limit: Optional[int] = None) -> Optional[bytes]:
    """기본 reader: 로컬 파일 읽기 (limit 바이트까지)"""
    if not path.is_file():
        return None
    with open(path, "rb") as f:
        return f.read(limit) if limit is not None else f.read()


def split_sections(text: str) -> Tuple[str, List[Tuple[str, str]]]:
    """
    마크다운을 (서문, [(섹션명, 섹션 전체 텍스트)]) 로 분리

    섹션 텍스트는 "## 이름" 헤더 줄부터 다음 "## " 직전까지
    """
    matches = list(SECTION_PATTERN.finditer(text))
    if not matches:
        return text, []

    preamble = text[:matches[0].start()]
    sections = []
    for i, m in enumerate(matches):
        end = matches[i + 1].start() if i + 1 < len(matches) else len(text)
        sections.append((m.group(1).strip(), text[m.start():end]))
    return preamble, sections


def merge_memory_files(files: List[MemoryFile]) -> str:
    """
    우선순위 오름차순 파일 목록 병합

    뒤 파일에 정의된 섹션은 앞 파일에서 제거된다.
    """
    parsed = [split_sections(f.content) for f in files]

    result = []
    for i, (memory, (preamble, sections)) in enumerate(zip(files, parsed)):
        overridden = {name for _, later in parsed[i + 1:] for name, _ in later}
        kept = [body for name, body in sections if name not in overridden]

        content = (preamble + "".join(kept)).strip()
        if not content:
            continue

        result.append(
            f"\n--- Context from: {memory.path} ---\n"
            f"{content}\n"
            f"--- End of Context from: {memory.path} ---\n"
        )

    return "".join(result)


def _is_relative_to(path: Path, other: Path) -> bool:
    try:
        path.relative_to(other)
        return True
    except ValueError:
        return False


class LongTermMemoryLoader:
    """
    장기 기억 로더

    캐시는 copy-on-write dict: 읽기는 락 없이 현재 dict 참조,
    쓰기/무효화는 새 dict 를 만들어 교체한다.
    """

    def __init__(
        self,
        settings: LongTermSettings,
        reader: Optional[MemoryFileReader] = None,
    ):
        """
        Args:
            settings: longTerm 설정
            reader: (scope, path) → bytes 파일 읽기 (테스트/원격 저장소 교체용)
        """
        self.settings = settings
        self._reader = reader
        self._cache: Dict[Tuple[str, str], str] = {}
        self._cache_lock = threading.Lock()
        # invalidate() 마다 증가. 로드 중 무효화되면 결과를 캐시하지 않음
        self._generation = 0
        self.warnings: Deque[str] = deque(maxlen=MAX_WARNINGS)

    # =========================================================================
    # Project root
    # =========================================================================

    def find_project_root(self, start_dir: PathLike) -> Path:
        """
        프로젝트 루트 탐색

        start_dir 부터 최대 max_search_depth 단계 위까지 마커(.git 등) 확인.
        찾지 못하면 start_dir 그대로 반환.
        """
        start = Path(start_dir).resolve()
        current = start

        for _ in range(self.settings.max_search_depth + 1):
            if self._has_marker(current):
                return current
            parent = current.parent
            if parent == current:
                break
            current = parent

        logger.debug(f"[MemoryLoader] No project marker within {self.settings.max_search_depth} levels of {start}")
        return start

    def _has_marker(self, directory: Path) -> bool:
        for marker in self.settings.project_markers:
            candidate = directory / marker
            if marker == ".git":
                if candidate.is_dir():
                    return True
            elif candidate.exists():
                return True
        return False

    # =========================================================================
    # Load + merge
    # =========================================================================

    def load_and_merge_memories(self, current_dir: PathLike, project_root: Optional[PathLike] = None) -> str:
        """
        GLOBAL + PROJECT 기억 로드 후 병합 (캐시)

        Returns:
            병합된 텍스트. 비활성화 또는 파일 없음 → ""
        """
        if not self.settings.enabled:
            return ""

        current = Path(current_dir).resolve()
        root = Path(project_root).resolve() if project_root else current
        key = (str(current), str(root))

        cached = self._cache.get(key)
        if cached is not None:
            return cached

        generation = self._generation
        files = self.load_memory_files(current, root)
        merged = merge_memory_files(files)

        with self._cache_lock:
            if generation != self._generation:
                logger.debug(f"[MemoryLoader] Cache invalidated during load of {current}, not caching")
                return merged
            updated = dict(self._cache)
            updated[key] = merged
            self._cache = updated

        logger.debug(f"[MemoryLoader] Loaded {len(files)} memory files for {current}")
        return merged

    def load_memory_files(self, current_dir: Path, project_root: Path) -> List[MemoryFile]:
        """우선순위 오름차순 기억 파일 목록"""
        files: List[MemoryFile] = []
        seen = set()

        def add(scope: MemoryScope, path: Path):
            resolved = path.resolve()
            if resolved in seen:
                return
            seen.add(resolved)
            memory = self.read_memory_file(scope, resolved)
            if memory is not None:
                files.append(memory)

        add(MemoryScope.GLOBAL, self.settings.global_memory_path())

        for directory in self._upward_dirs(current_dir, project_root):
            add(MemoryScope.PROJECT, directory / self.settings.filename)

        for path in self._search_downward(current_dir):
            add(MemoryScope.PROJECT, path)

        return files

    def read_memory_file(self, scope: MemoryScope, path: Path) -> Optional[MemoryFile]:
        """
        기억 파일 1개 읽기 (max_file_size 초과분은 잘라냄, 예외 없음)

        Returns:
            MemoryFile, 파일이 없거나 읽기 실패 시 None
        """
        cap = self.settings.max_file_size
        try:
            if self._reader is not None:
                data = self._reader(scope, path)
            else:
                data = read_file_bytes(scope, path, limit=cap + 1)
        except OSError as e:
            logger.warning(f"[MemoryLoader] Failed to read memory file {path}: {e}")
            return None

        if data is None:
            return None

        truncated = len(data) > cap
        if truncated:
            data = data[:cap]
            warning = f"Memory file {path} exceeds {cap} bytes, truncated"
            self.warnings.append(warning)
            logger.warning(f"[MemoryLoader] {warning}")

        return MemoryFile(
            path=path,
            scope=scope,
            content=data.decode("utf-8", errors="ignore"),
            size_bytes=len(data),
            truncated=truncated,
        )

    def _upward_dirs(self, current_dir: Path, project_root: Path) -> List[Path]:
        """project_root → current_dir 순서의 디렉토리"""
        if not _is_relative_to(current_dir, project_root):
            return [project_root, current_dir]

        dirs = []
        current = current_dir
        while True:
            dirs.append(current)
            if current == project_root or current.parent == current:
                break
            current = current.parent
        dirs.reverse()
        return dirs

    def _search_downward(self, start_dir: Path) -> List[Path]:
        """BFS 하위 탐색 (start_dir 자체 파일은 upward 에서 처리)"""
        found: List[Path] = []
        queue = deque([start_dir])
        visited = 0
        filename = self.settings.filename

        while queue and visited < self.settings.max_search_dirs:
            directory = queue.popleft()
            visited += 1
            try:
                entries = sorted(directory.iterdir())
            except OSError as e:
                logger.warning(f"[MemoryLoader] Cannot list {directory}: {e}")
                continue

            for entry in entries:
                if entry.is_dir():
                    if not self._should_skip(entry):
                        queue.append(entry)
                elif entry.name == filename and directory != start_dir:
                    found.append(entry)

        return found

    def _should_skip(self, directory: Path) -> bool:
        name = directory.name
        if name.startswith("."):
            return True
        return any(name == p or name.startswith(p) for p in self.settings.ignore_patterns)

    # =========================================================================
    # Cache
    # =========================================================================

    def invalidate(self, path: Optional[PathLike] = None) -> int:
        """
        캐시 무효화 (기억 저장 경로에서 호출)

        Args:
            path: 변경된 파일 또는 디렉토리. None 이거나 GLOBAL 경로면 전체 삭제

        Returns:
            삭제된 항목 수
        """
        with self._cache_lock:
            self._generation += 1
            before = len(self._cache)

            if path is None:
                self._cache = {}
                return before

            target = Path(path).resolve()
            if target.name == self.settings.filename:
                target = target.parent

            global_dir = self.settings.global_memory_path().parent.resolve()
            if _is_relative_to(target, global_dir):
                self._cache = {}
                return before

            def affected(key: Tuple[str, str]) -> bool:
                current, root = Path(key[0]), Path(key[1])
                # 탐색 범위(root ~ current 아래)에 변경 경로가 걸치면 무효
                return _is_relative_to(target, root) or _is_relative_to(current, target)

            self._cache = {k: v for k, v in self._cache.items() if not affected(k)}
            removed = before - len(self._cache)

        if removed:
            logger.info(f"[MemoryLoader] Invalidated {removed} cached entries for {target}")
        return removed

    def cache_size(self) -> int:
        return len(self._cache)
