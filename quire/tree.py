from __future__ import annotations

from pathlib import Path
from typing import Iterable, Optional

from lxml import etree as LXML_ET

from .archive import is_hidden_member, iter_directory_files
from .env import DEFAULT_TREE_DEPTH
from .models import FileEntry, FileNode, FileType, file_type_for_name, folder_node, leaf_from_entry


def _tag_local_name(tag: object) -> str:
    if not tag or not isinstance(tag, str):
        return ""
    if "}" in tag:
        return tag.split("}", 1)[1]
    return tag


def probe_html_title(path: Path) -> Optional[str]:
    try:
        raw = path.read_bytes()
    except OSError:
        return None
    if not raw.strip():
        return None
    parser = LXML_ET.XMLParser(resolve_entities=False, no_network=True, recover=True)
    try:
        root = LXML_ET.fromstring(raw, parser=parser)
    except LXML_ET.XMLSyntaxError:
        return None
    if root is None:
        return None
    for node in root.iter():
        if _tag_local_name(node.tag).lower() == "title":
            text = "".join(node.itertext()).strip()
            return text or None
    return None


def walk_entries(root: Path, *, titles: bool = False) -> list[FileEntry]:
    """List the displayable files of a working directory.

    ``META-INF`` and ``mimetype`` are skipped; they stay on disk and are
    still packed on save.
    """
    entries: list[FileEntry] = []
    for member, full_path in iter_directory_files(root):
        if is_hidden_member(member):
            continue
        name = full_path.name
        file_type = file_type_for_name(name)
        try:
            size = full_path.stat().st_size
        except OSError:
            size = 0
        title = probe_html_title(full_path) if titles and file_type == FileType.HTML else None
        entries.append(FileEntry(path=member, name=name, file_type=file_type, size=size, title=title))
    return entries


def _build_folder(
    name: str,
    path: str,
    entries: list[FileEntry],
    level: int,
    depth: Optional[int],
) -> FileNode:
    direct: list[FileEntry] = []
    subgroups: dict[str, list[FileEntry]] = {}
    prefix_len = len(path) + 1
    for entry in entries:
        head, sep, _ = entry.path[prefix_len:].partition("/")
        # Past the depth limit deeper files are attached to this folder.
        if not sep or (depth is not None and level >= depth):
            direct.append(entry)
        else:
            subgroups.setdefault(head, []).append(entry)

    children = [leaf_from_entry(entry) for entry in sorted(direct, key=lambda item: item.name)]
    for sub_name in sorted(subgroups):
        children.append(
            _build_folder(sub_name, f"{path}/{sub_name}", subgroups[sub_name], level + 1, depth)
        )
    return folder_node(name, path, children)


def build_tree(entries: Iterable[FileEntry], *, depth: Optional[int] = DEFAULT_TREE_DEPTH) -> list[FileNode]:
    """Group a flat file list into folder nodes.

    Root-level files come first in input order, then top-level folders by
    name. Inside a folder, files sort by name ahead of subfolders. With
    ``depth=2`` nothing nests below ``top/sub``; ``depth=None`` nests fully.
    """
    nodes: list[FileNode] = []
    groups: dict[str, list[FileEntry]] = {}
    for entry in entries:
        head, sep, _ = entry.path.partition("/")
        if not sep:
            nodes.append(leaf_from_entry(entry))
            continue
        groups.setdefault(head, []).append(entry)

    for name in sorted(groups):
        nodes.append(_build_folder(name, name, groups[name], 1, depth))
    return nodes
