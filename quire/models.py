from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class FileType(str, Enum):
    FOLDER = "folder"
    HTML = "html"
    CSS = "css"
    XML = "xml"
    IMAGE = "image"
    FONT = "font"
    OTHER = "other"


# Checked in order against the lower-cased file name.
FILE_TYPE_SUFFIXES: tuple[tuple[tuple[str, ...], FileType], ...] = (
    ((".html", ".xhtml"), FileType.HTML),
    ((".css",), FileType.CSS),
    ((".xml", ".opf", ".ncx"), FileType.XML),
    ((".jpg", ".jpeg", ".png"), FileType.IMAGE),
    ((".ttf", ".otf"), FileType.FONT),
)


def file_type_for_name(name: str) -> FileType:
    lowered = (name or "").lower()
    for suffixes, file_type in FILE_TYPE_SUFFIXES:
        if lowered.endswith(suffixes):
            return file_type
    return FileType.OTHER


@dataclass(frozen=True)
class FileEntry:
    path: str
    name: str
    file_type: FileType
    size: int
    title: Optional[str] = None


@dataclass
class FileNode:
    name: str
    path: str
    file_type: FileType
    size: Optional[int] = None
    title: Optional[str] = None
    children: Optional[list["FileNode"]] = None

    @property
    def is_folder(self) -> bool:
        return self.children is not None


@dataclass(frozen=True)
class MatchLocation:
    line: int
    start_char: int
    end_char: int


@dataclass
class SearchResult:
    found: bool = False
    count: int = 0
    matches: list[MatchLocation] = field(default_factory=list)


def leaf_from_entry(entry: FileEntry) -> FileNode:
    return FileNode(
        name=entry.name,
        path=entry.path,
        file_type=entry.file_type,
        size=entry.size,
        title=entry.title,
    )


def folder_node(name: str, path: str, children: list[FileNode]) -> FileNode:
    return FileNode(name=name, path=path, file_type=FileType.FOLDER, children=children)


def node_to_dict(node: FileNode) -> dict:
    return {
        "name": node.name,
        "path": node.path,
        "file_type": node.file_type.value,
        "size": node.size,
        "title": node.title,
        "children": None if node.children is None else [node_to_dict(child) for child in node.children],
    }


def tree_to_dicts(nodes: list[FileNode]) -> list[dict]:
    return [node_to_dict(node) for node in nodes]


def search_result_to_dict(result: SearchResult) -> dict:
    return {
        "found": result.found,
        "count": result.count,
        "matches": [
            {"line": match.line, "start_char": match.start_char, "end_char": match.end_char}
            for match in result.matches
        ],
    }
