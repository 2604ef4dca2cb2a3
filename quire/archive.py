from __future__ import annotations

import logging
import os
import posixpath
import shutil
import tempfile
import zipfile
import zlib
from pathlib import Path
from typing import Iterable, Iterator

MIMETYPE_MEMBER = "mimetype"
METADATA_DIR = "META-INF"
COPY_CHUNK_SIZE = 1024 * 1024

logger = logging.getLogger("quire.archive")


class ArchiveError(ValueError):
    pass


class ArchiveUnreadableError(ArchiveError):
    pass


class InvalidArchiveError(ArchiveError):
    pass


def canonical_member(name: str) -> str:
    normalized = posixpath.normpath((name or "").replace("\\", "/")).lstrip("/")
    while normalized.startswith("../"):
        normalized = normalized[3:]
    return "" if normalized in {"", ".", ".."} else normalized


def member_to_path(root: Path, member: str) -> Path:
    canonical = canonical_member(member)
    if not canonical:
        raise ValueError(f"Invalid archive path: {member!r}")
    return root.joinpath(*canonical.split("/"))


def open_archive(epub_file: Path) -> zipfile.ZipFile:
    try:
        return zipfile.ZipFile(epub_file, "r")
    except zipfile.BadZipFile as exc:
        raise InvalidArchiveError(f"Not a valid EPUB archive: {epub_file} ({exc})") from exc
    except OSError as exc:
        raise ArchiveUnreadableError(f"Cannot open EPUB {epub_file}: {exc}") from exc


def _zip_member_index(zf: zipfile.ZipFile) -> dict[str, str]:
    mapping: dict[str, str] = {}
    for info in zf.infolist():
        if info.is_dir():
            continue
        canonical = canonical_member(info.filename)
        if canonical and canonical not in mapping:
            mapping[canonical] = info.filename
    return mapping


def extract_archive(epub_file: Path, target: Path) -> int:
    """Unpack every member of ``epub_file`` below ``target``.

    Member names are canonicalised first, so entries such as ``../x`` or
    ``\\OEBPS\\a.xhtml`` land inside ``target`` under their ``/`` form.
    Returns the number of files written.
    """
    count = 0
    with open_archive(epub_file) as zf:
        try:
            for info in zf.infolist():
                canonical = canonical_member(info.filename)
                if not canonical:
                    continue
                dest = member_to_path(target, canonical)
                if info.is_dir():
                    dest.mkdir(parents=True, exist_ok=True)
                    continue
                dest.parent.mkdir(parents=True, exist_ok=True)
                with zf.open(info, "r") as src_stream, dest.open("wb") as dst_stream:
                    shutil.copyfileobj(src_stream, dst_stream, COPY_CHUNK_SIZE)
                count += 1
        except (zipfile.BadZipFile, zlib.error, NotImplementedError, RuntimeError) as exc:
            raise InvalidArchiveError(f"Not a valid EPUB archive: {epub_file} ({exc})") from exc
    logger.info("extracted %d files from %s into %s", count, epub_file, target)
    return count


def read_members(epub_file: Path, members: Iterable[str]) -> dict[str, bytes]:
    """Read the named members straight from the archive.

    Missing or unreadable members are left out of the result.
    """
    results: dict[str, bytes] = {}
    with open_archive(epub_file) as zf:
        index = _zip_member_index(zf)
        for member in members:
            actual = index.get(canonical_member(member))
            if actual is None:
                logger.debug("member %s not found in %s", member, epub_file)
                continue
            try:
                results[member] = zf.read(actual)
            except (zipfile.BadZipFile, zlib.error, NotImplementedError, RuntimeError) as exc:
                logger.debug("skipping unreadable member %s in %s: %s", member, epub_file, exc)
    return results


def iter_directory_files(root: Path) -> Iterator[tuple[str, Path]]:
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        base = Path(dirpath)
        for filename in sorted(filenames):
            full_path = base / filename
            member = full_path.relative_to(root).as_posix()
            yield member, full_path


def is_hidden_member(member: str) -> bool:
    return member == MIMETYPE_MEMBER or member == METADATA_DIR or member.startswith(f"{METADATA_DIR}/")


def _write_member(dst: zipfile.ZipFile, source: Path, member: str) -> None:
    if member == MIMETYPE_MEMBER:
        dst.write(source, MIMETYPE_MEMBER, compress_type=zipfile.ZIP_STORED)
        return
    dst.write(source, member, compress_type=zipfile.ZIP_DEFLATED)


def pack_directory(source_dir: Path, epub_file: Path) -> int:
    """Serialise ``source_dir`` into ``epub_file``, replacing it atomically.

    The archive is written to a sibling temp file and renamed over the
    original, so a failure at any step leaves ``epub_file`` as it was.
    ``mimetype`` goes first and uncompressed; everything else is deflated.
    An existing ``epub_file`` keeps its permission bits.
    """
    files = list(iter_directory_files(source_dir))
    files.sort(key=lambda item: item[0] != MIMETYPE_MEMBER)

    tmp_handle = tempfile.NamedTemporaryFile(
        prefix=f"{epub_file.stem}.",
        suffix=".epub",
        dir=str(epub_file.parent),
        delete=False,
    )
    tmp_path = Path(tmp_handle.name)
    tmp_handle.close()

    try:
        with zipfile.ZipFile(tmp_path, "w") as dst:
            for member, source in files:
                _write_member(dst, source, member)
        # NamedTemporaryFile creates 0600; keep the book's own mode.
        if epub_file.exists():
            shutil.copymode(epub_file, tmp_path)
        tmp_path.replace(epub_file)
    finally:
        if tmp_path.exists():
            tmp_path.unlink(missing_ok=True)
    logger.info("packed %d files from %s into %s", len(files), source_dir, epub_file)
    return len(files)
