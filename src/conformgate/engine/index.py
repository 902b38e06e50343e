from __future__ import annotations

import logging
import os
import re
import threading
from collections.abc import Iterable
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_SKIP_DIRS = frozenset(
    {
        ".git",
        ".hg",
        ".svn",
        ".idea",
        ".vscode",
        ".venv",
        "venv",
        "node_modules",
        "vendor",
        "__pycache__",
    }
)

DEFAULT_MAX_FILE_BYTES = 1024 * 1024


class ProjectIOError(OSError):
    """Raised when the project root cannot be indexed."""

    def __init__(self, message: str, *, path: Path) -> None:
        super().__init__(f"{message}: {path}")
        self.path = path


@dataclass(frozen=True, slots=True)
class IndexEntry:
    path: str  # POSIX, relative to the root
    is_dir: bool
    size: int
    mtime: float


@lru_cache(maxsize=512)
def compile_glob(pattern: str) -> re.Pattern[str]:
    """
    Translate a path glob into an anchored regex over POSIX relative paths.

    - `*` matches within one path segment
    - `?` matches one character within a segment
    - `**/` matches zero or more leading directories
    - a trailing `**` matches everything below
    """

    pattern = pattern.strip().replace("\\", "/")
    if pattern.startswith("./"):
        pattern = pattern[2:]
    pattern = pattern.rstrip("/") or pattern

    out: list[str] = []
    i = 0
    n = len(pattern)
    while i < n:
        if pattern.startswith("**/", i):
            out.append("(?:.*/)?")
            i += 3
        elif pattern.startswith("**", i):
            out.append(".*")
            i += 2
        elif pattern[i] == "*":
            out.append("[^/]*")
            i += 1
        elif pattern[i] == "?":
            out.append("[^/]")
            i += 1
        else:
            out.append(re.escape(pattern[i]))
            i += 1
    return re.compile("".join(out) + r"\Z")


class FileSystemIndex:
    """
    A single-pass, read-only view of a project tree.

    Metadata for every path is captured up front. File content is read lazily,
    at most once per path, and capped at `max_file_bytes`. A per-path lock lets
    rules on worker threads share one index without serialising all reads.
    """

    def __init__(
        self,
        root: Path,
        entries: Iterable[IndexEntry],
        *,
        max_file_bytes: int = DEFAULT_MAX_FILE_BYTES,
        unreadable: Iterable[str] = (),
    ) -> None:
        self.root = root
        self.max_file_bytes = max_file_bytes
        ordered = sorted(entries, key=lambda e: e.path)
        self._entries: dict[str, IndexEntry] = {e.path: e for e in ordered}
        self._paths: tuple[str, ...] = tuple(self._entries)
        self._content: dict[str, str | None] = {}
        self._truncated: set[str] = set()
        self._unreadable: set[str] = set(unreadable)
        self._lock = threading.Lock()
        self._path_locks: dict[str, threading.Lock] = {}

    @classmethod
    def build(
        cls,
        root: Path,
        *,
        max_file_bytes: int = DEFAULT_MAX_FILE_BYTES,
        ignore: Iterable[str] = (),
        skip_dirs: Iterable[str] = DEFAULT_SKIP_DIRS,
    ) -> FileSystemIndex:
        root = Path(root)
        if not root.exists():
            raise ProjectIOError("Project root does not exist", path=root)
        if not root.is_dir():
            raise ProjectIOError("Project root is not a directory", path=root)
        if not os.access(root, os.R_OK | os.X_OK):
            raise ProjectIOError("Project root is not readable", path=root)

        root = root.resolve()
        skip = set(skip_dirs)
        ignore_res = [compile_glob(p) for p in ignore if p.strip()]
        entries: list[IndexEntry] = []
        unreadable: list[str] = []

        def on_walk_error(exc: OSError) -> None:
            failed = Path(exc.filename) if exc.filename else root
            rel = _relative(failed, root)
            logger.warning("cannot list %s: %s", rel or ".", exc.strerror or exc)
            if rel:
                unreadable.append(rel)

        for dirpath, dirnames, filenames in os.walk(root, topdown=True, onerror=on_walk_error):
            base = Path(dirpath)
            dirnames[:] = sorted(d for d in dirnames if d not in skip)
            for name in [*dirnames, *sorted(filenames)]:
                path = base / name
                rel = _relative(path, root)
                if _is_ignored(rel, ignore_res):
                    if name in dirnames:
                        dirnames.remove(name)
                    continue
                try:
                    st = path.stat()
                except OSError as exc:
                    logger.debug("cannot stat %s: %s", rel, exc)
                    unreadable.append(rel)
                    continue
                is_dir = name in dirnames
                entries.append(IndexEntry(path=rel, is_dir=is_dir, size=0 if is_dir else st.st_size, mtime=st.st_mtime))

        index = cls(root, entries, max_file_bytes=max_file_bytes, unreadable=unreadable)
        logger.debug("indexed %d path(s) under %s", len(index), root)
        return index

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def paths(self) -> tuple[str, ...]:
        return self._paths

    @property
    def file_count(self) -> int:
        return sum(1 for e in self._entries.values() if not e.is_dir)

    def entry(self, path: str) -> IndexEntry | None:
        return self._entries.get(_normalize(path))

    def is_dir(self, path: str) -> bool:
        entry = self.entry(path)
        return entry is not None and entry.is_dir

    def glob(self, pattern: str) -> list[str]:
        regex = compile_glob(pattern)
        return [p for p in self._paths if regex.match(p)]

    def files(self, pattern: str) -> list[str]:
        return [p for p in self.glob(pattern) if not self._entries[p].is_dir]

    def dirs(self, pattern: str) -> list[str]:
        return [p for p in self.glob(pattern) if self._entries[p].is_dir]

    def exists(self, pattern: str) -> bool:
        regex = compile_glob(pattern)
        return any(regex.match(p) for p in self._paths)

    def content(self, path: str) -> str | None:
        key = _normalize(path)
        entry = self._entries.get(key)
        if entry is None or entry.is_dir:
            return None

        with self._lock:
            if key in self._content:
                return self._content[key]
            path_lock = self._path_locks.setdefault(key, threading.Lock())

        # One read per path; different paths are read concurrently.
        with path_lock:
            with self._lock:
                if key in self._content:
                    return self._content[key]
            text = self._read(key)
            with self._lock:
                self._content[key] = text
                self._path_locks.pop(key, None)
            return text

    @property
    def truncated_paths(self) -> tuple[str, ...]:
        with self._lock:
            return tuple(sorted(self._truncated))

    @property
    def unreadable_paths(self) -> tuple[str, ...]:
        with self._lock:
            return tuple(sorted(self._unreadable))

    def _read(self, key: str) -> str | None:
        try:
            with (self.root / key).open("rb") as fh:
                raw = fh.read(self.max_file_bytes + 1)
        except OSError as exc:
            logger.warning("cannot read %s: %s", key, exc)
            with self._lock:
                self._unreadable.add(key)
            return None

        if len(raw) > self.max_file_bytes:
            raw = raw[: self.max_file_bytes]
            with self._lock:
                self._truncated.add(key)
            logger.debug("truncated %s at %d bytes", key, self.max_file_bytes)
        return raw.decode("utf-8", errors="replace")


def _relative(path: Path, root: Path) -> str:
    try:
        return path.relative_to(root).as_posix()
    except ValueError:
        return path.as_posix()


def _normalize(path: str) -> str:
    out = path.strip().replace("\\", "/")
    if out.startswith("./"):
        out = out[2:]
    return out.rstrip("/")


def _is_ignored(rel: str, patterns: list[re.Pattern[str]]) -> bool:
    return any(p.match(rel) for p in patterns)
