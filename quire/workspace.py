from __future__ import annotations

import logging
import os
import shutil
import tempfile
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Mapping, Optional, Union

from .archive import canonical_member, extract_archive, member_to_path, pack_directory, read_members
from .env import DEFAULT_TREE_DEPTH, temp_dir_kwargs
from .models import FileNode
from .search import compile_pattern, count_matches, replace_text
from .tree import build_tree, walk_entries

logger = logging.getLogger("quire.workspace")

PathLike = Union[str, os.PathLike]


class ArchiveNotLoadedError(LookupError):
    def __init__(self, archive_identity: str) -> None:
        super().__init__(f"EPUB not loaded or cache expired: {archive_identity}")
        self.archive_identity = archive_identity


@dataclass
class EpubSession:
    archive_identity: str
    working_dir: tempfile.TemporaryDirectory
    text_cache: dict[str, str] = field(default_factory=dict)
    binary_cache: dict[str, bytes] = field(default_factory=dict)

    @property
    def root(self) -> Path:
        return Path(self.working_dir.name)

    def is_alive(self) -> bool:
        return self.root.is_dir()

    def invalidate(self, member: str) -> None:
        self.text_cache.pop(member, None)
        self.binary_cache.pop(member, None)

    def invalidate_tree(self, member: str) -> None:
        prefix = f"{member}/"
        for cache in (self.text_cache, self.binary_cache):
            for key in [key for key in cache if key == member or key.startswith(prefix)]:
                del cache[key]

    def close(self) -> None:
        self.text_cache.clear()
        self.binary_cache.clear()
        self.working_dir.cleanup()


def _identity(epub_path: PathLike) -> str:
    return os.fspath(epub_path)


def _write_bytes(target: Path, data: bytes) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(data)


class EpubWorkspace:
    """Editable working copy of one EPUB at a time.

    Every call names the archive it expects; a call naming any other archive
    fails with :class:`ArchiveNotLoadedError`. The lock only guards the
    session pointer and the caches, never disk or zip I/O.
    """

    def __init__(self, *, tree_depth: Optional[int] = DEFAULT_TREE_DEPTH) -> None:
        self.tree_depth = tree_depth
        self._lock = threading.Lock()
        self._session: Optional[EpubSession] = None

    @property
    def active_archive(self) -> Optional[str]:
        with self._lock:
            return self._session.archive_identity if self._session is not None else None

    def __enter__(self) -> "EpubWorkspace":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _require(self, epub_path: PathLike) -> EpubSession:
        identity = _identity(epub_path)
        with self._lock:
            session = self._session
        if session is None or session.archive_identity != identity or not session.is_alive():
            raise ArchiveNotLoadedError(identity)
        return session

    def _target(self, epub_path: PathLike, path: str) -> tuple[EpubSession, str, Path]:
        session = self._require(epub_path)
        member = canonical_member(path)
        return session, member, member_to_path(session.root, member)

    # -- lifecycle ---------------------------------------------------------

    def open(self, epub_path: PathLike, *, titles: bool = False) -> list[FileNode]:
        identity = _identity(epub_path)
        with self._lock:
            session = self._session
        if session is not None and session.archive_identity == identity and session.is_alive():
            logger.debug("reusing working directory %s for %s", session.root, identity)
        else:
            working_dir = tempfile.TemporaryDirectory(**temp_dir_kwargs())
            try:
                extract_archive(Path(identity), Path(working_dir.name))
            except Exception:
                working_dir.cleanup()
                raise
            session = EpubSession(archive_identity=identity, working_dir=working_dir)
            with self._lock:
                previous, self._session = self._session, session
            if previous is not None:
                logger.info("discarding working directory of %s", previous.archive_identity)
                previous.close()

        entries = walk_entries(session.root, titles=titles)
        return build_tree(entries, depth=self.tree_depth)

    def close(self, epub_path: Optional[PathLike] = None) -> bool:
        with self._lock:
            session = self._session
            if session is None:
                return False
            if epub_path is not None and session.archive_identity != _identity(epub_path):
                return False
            self._session = None
        session.close()
        return True

    # -- reads -------------------------------------------------------------

    def read_text(self, epub_path: PathLike, path: str) -> str:
        session, member, target = self._target(epub_path, path)
        with self._lock:
            cached = session.text_cache.get(member)
        if cached is not None:
            logger.debug("text cache hit for %s", member)
            return cached
        return target.read_bytes().decode("utf-8")

    def read_binary(self, epub_path: PathLike, path: str) -> bytes:
        session, member, target = self._target(epub_path, path)
        with self._lock:
            cached = session.binary_cache.get(member)
        if cached is not None:
            logger.debug("binary cache hit for %s", member)
            return cached
        return target.read_bytes()

    def _read_batch(self, epub_path: PathLike, paths: Iterable[str], *, text: bool) -> dict:
        session = self._require(epub_path)
        results: dict = {}
        to_read: list[str] = []
        with self._lock:
            cache = session.text_cache if text else session.binary_cache
            for path in paths:
                cached = cache.get(canonical_member(path))
                if cached is not None:
                    results[path] = cached
                else:
                    to_read.append(path)
        if not to_read:
            return results

        loaded: dict = {}
        for path, data in read_members(Path(session.archive_identity), to_read).items():
            if not text:
                loaded[path] = data
                continue
            try:
                loaded[path] = data.decode("utf-8")
            except UnicodeDecodeError:
                logger.debug("skipping non UTF-8 member %s", path)
        results.update(loaded)

        with self._lock:
            if self._session is session:
                cache = session.text_cache if text else session.binary_cache
                for path, value in loaded.items():
                    cache[canonical_member(path)] = value
        return results

    def read_text_batch(self, epub_path: PathLike, paths: Iterable[str]) -> dict[str, str]:
        return self._read_batch(epub_path, paths, text=True)

    def read_binary_batch(self, epub_path: PathLike, paths: Iterable[str]) -> dict[str, bytes]:
        return self._read_batch(epub_path, paths, text=False)

    # -- mutations ---------------------------------------------------------

    def write_text(self, epub_path: PathLike, path: str, content: str) -> None:
        session, member, target = self._target(epub_path, path)
        _write_bytes(target, content.encode("utf-8"))
        with self._lock:
            session.binary_cache.pop(member, None)
            session.text_cache[member] = content

    def write_binary(self, epub_path: PathLike, path: str, data: bytes) -> None:
        session, member, target = self._target(epub_path, path)
        _write_bytes(target, bytes(data))
        with self._lock:
            session.invalidate(member)

    def write_batch(self, epub_path: PathLike, files: Mapping[str, Union[bytes, str]]) -> None:
        session = self._require(epub_path)
        for path, content in files.items():
            member = canonical_member(path)
            target = member_to_path(session.root, member)
            data = content.encode("utf-8") if isinstance(content, str) else bytes(content)
            _write_bytes(target, data)
            with self._lock:
                session.invalidate(member)

    def add_file(self, epub_path: PathLike, path: str, content: str) -> None:
        self.add_file_binary(epub_path, path, content.encode("utf-8"))

    def add_file_binary(self, epub_path: PathLike, path: str, data: bytes) -> None:
        self.write_binary(epub_path, path, data)

    def delete(self, epub_path: PathLike, path: str) -> None:
        session, member, target = self._target(epub_path, path)
        if target.is_dir() and not target.is_symlink():
            shutil.rmtree(target)
        elif target.exists() or target.is_symlink():
            target.unlink()
        with self._lock:
            session.invalidate_tree(member)

    def rename(self, epub_path: PathLike, old_path: str, new_path: str) -> None:
        session, old_member, old_target = self._target(epub_path, old_path)
        new_member = canonical_member(new_path)
        new_target = member_to_path(session.root, new_member)
        new_target.parent.mkdir(parents=True, exist_ok=True)
        old_target.replace(new_target)
        with self._lock:
            session.invalidate_tree(old_member)
            session.invalidate_tree(new_member)

    # -- search ------------------------------------------------------------

    def _read_disk_text(self, session: EpubSession, path: str) -> Optional[str]:
        try:
            return member_to_path(session.root, path).read_bytes().decode("utf-8")
        except (OSError, UnicodeDecodeError, ValueError):
            return None

    def search_in_files(self, epub_path: PathLike, paths: Iterable[str], pattern: str, is_regex: bool) -> int:
        session = self._require(epub_path)
        paths = list(paths)
        if not paths:
            return 0
        compiled = compile_pattern(pattern, is_regex)
        count = 0
        for path in paths:
            content = self._read_disk_text(session, path)
            if content is not None:
                count += count_matches(content, compiled)
        return count

    def replace_in_files(
        self,
        epub_path: PathLike,
        paths: Iterable[str],
        pattern: str,
        replacement: str,
        is_regex: bool,
    ) -> dict[str, int]:
        session = self._require(epub_path)
        compile_pattern(pattern, is_regex)
        replaced: dict[str, int] = {}
        for path in paths:
            content = self._read_disk_text(session, path)
            if content is None:
                continue
            updated, count = replace_text(content, pattern, replacement, is_regex)
            if count and updated != content:
                self.write_text(epub_path, path, updated)
                replaced[path] = count
        return replaced

    # -- repackaging -------------------------------------------------------

    def save(self, epub_path: PathLike) -> int:
        session = self._require(epub_path)
        try:
            return pack_directory(session.root, Path(session.archive_identity))
        except (OSError, ValueError) as exc:
            logger.warning("repackaging %s failed: %s", session.archive_identity, exc)
            raise
