from __future__ import annotations

import base64
import binascii
import logging
import mimetypes
from typing import Any, Callable

from fastapi import FastAPI, HTTPException, Query, Request, Response
from starlette.concurrency import run_in_threadpool

from .archive import ArchiveUnreadableError
from .env import tree_depth
from .models import search_result_to_dict, tree_to_dicts
from .search import PatternError, replace_text, search_text
from .workspace import ArchiveNotLoadedError, EpubWorkspace

app = FastAPI()
logger = logging.getLogger("quire.web")
workspace = EpubWorkspace(tree_depth=tree_depth())


def _no_store_headers() -> dict[str, str]:
    return {
        "Cache-Control": "no-store, max-age=0",
        "Pragma": "no-cache",
    }


async def _json_payload(request: Request) -> dict:
    try:
        payload = await request.json()
    except Exception:
        raise HTTPException(status_code=400, detail="Invalid JSON payload")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON payload")
    return payload


def _require_str(payload: dict, key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value:
        raise HTTPException(status_code=400, detail=f"Missing field: {key}")
    return value


def _optional_str(payload: dict, key: str) -> str:
    value = payload.get(key, "")
    if not isinstance(value, str):
        raise HTTPException(status_code=400, detail=f"Field must be a string: {key}")
    return value


def _str_list(payload: dict, key: str) -> list[str]:
    value = payload.get(key)
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise HTTPException(status_code=400, detail=f"Field must be a list of paths: {key}")
    return value


def _decode_b64(value: object, key: str) -> bytes:
    if not isinstance(value, str):
        raise HTTPException(status_code=400, detail=f"Field must be base64 text: {key}")
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=400, detail=f"Invalid base64 payload: {key}")


def _encode_b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


async def _run(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    try:
        return await run_in_threadpool(func, *args, **kwargs)
    except ArchiveNotLoadedError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except ArchiveUnreadableError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except FileNotFoundError as exc:
        raise HTTPException(status_code=404, detail=f"File not found: {exc.filename or exc}")
    except PatternError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except UnicodeDecodeError:
        raise HTTPException(status_code=400, detail="File is not valid UTF-8 text")
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except OSError as exc:
        logger.exception("filesystem error in %s", getattr(func, "__name__", func))
        raise HTTPException(status_code=500, detail=f"Filesystem error: {exc}")


@app.post("/epub/open")
async def open_epub(request: Request) -> dict[str, object]:
    payload = await _json_payload(request)
    epub_path = _require_str(payload, "epub_path")
    tree = await _run(workspace.open, epub_path, titles=bool(payload.get("titles")))
    return {"epub_path": epub_path, "tree": tree_to_dicts(tree)}


@app.post("/epub/close")
async def close_epub(request: Request) -> dict[str, object]:
    payload = await _json_payload(request)
    epub_path = _require_str(payload, "epub_path")
    closed = await _run(workspace.close, epub_path)
    return {"ok": True, "closed": closed}


@app.get("/epub/file")
async def read_file(epub_path: str = Query(...), path: str = Query(...)) -> Response:
    content = await _run(workspace.read_text, epub_path, path)
    return Response(content=content, media_type="text/plain; charset=utf-8", headers=_no_store_headers())


@app.get("/epub/file/raw")
async def read_file_raw(epub_path: str = Query(...), path: str = Query(...)) -> Response:
    data = await _run(workspace.read_binary, epub_path, path)
    media_type = mimetypes.guess_type(path)[0] or "application/octet-stream"
    return Response(content=data, media_type=media_type, headers=_no_store_headers())


@app.post("/epub/files/read")
async def read_files(request: Request) -> dict[str, object]:
    payload = await _json_payload(request)
    epub_path = _require_str(payload, "epub_path")
    files = await _run(workspace.read_text_batch, epub_path, _str_list(payload, "paths"))
    return {"files": files}


@app.post("/epub/files/read-binary")
async def read_files_binary(request: Request) -> dict[str, object]:
    payload = await _json_payload(request)
    epub_path = _require_str(payload, "epub_path")
    files = await _run(workspace.read_binary_batch, epub_path, _str_list(payload, "paths"))
    return {"files": {path: _encode_b64(data) for path, data in files.items()}}


@app.put("/epub/file")
async def write_file(request: Request) -> dict[str, object]:
    payload = await _json_payload(request)
    epub_path = _require_str(payload, "epub_path")
    path = _require_str(payload, "path")
    await _run(workspace.write_text, epub_path, path, _optional_str(payload, "content"))
    return {"ok": True}


@app.put("/epub/file/raw")
async def write_file_raw(request: Request) -> dict[str, object]:
    payload = await _json_payload(request)
    epub_path = _require_str(payload, "epub_path")
    path = _require_str(payload, "path")
    await _run(workspace.write_binary, epub_path, path, _decode_b64(payload.get("data"), "data"))
    return {"ok": True}


@app.post("/epub/files/write")
async def write_files(request: Request) -> dict[str, object]:
    payload = await _json_payload(request)
    epub_path = _require_str(payload, "epub_path")
    raw_files = payload.get("files")
    if not isinstance(raw_files, dict):
        raise HTTPException(status_code=400, detail="Field must be an object: files")
    files = {path: _decode_b64(value, path) for path, value in raw_files.items()}
    await _run(workspace.write_batch, epub_path, files)
    return {"ok": True, "written": len(files)}


@app.post("/epub/file/add")
async def add_file(request: Request) -> dict[str, object]:
    payload = await _json_payload(request)
    epub_path = _require_str(payload, "epub_path")
    path = _require_str(payload, "path")
    if "data" in payload:
        await _run(workspace.add_file_binary, epub_path, path, _decode_b64(payload.get("data"), "data"))
    else:
        await _run(workspace.add_file, epub_path, path, _optional_str(payload, "content"))
    return {"ok": True}


@app.post("/epub/file/delete")
async def delete_file(request: Request) -> dict[str, object]:
    payload = await _json_payload(request)
    epub_path = _require_str(payload, "epub_path")
    await _run(workspace.delete, epub_path, _require_str(payload, "path"))
    return {"ok": True}


@app.post("/epub/file/rename")
async def rename_file(request: Request) -> dict[str, object]:
    payload = await _json_payload(request)
    epub_path = _require_str(payload, "epub_path")
    old_path = _require_str(payload, "old_path")
    new_path = _require_str(payload, "new_path")
    await _run(workspace.rename, epub_path, old_path, new_path)
    return {"ok": True}


@app.post("/epub/search")
async def search_files(request: Request) -> dict[str, object]:
    payload = await _json_payload(request)
    epub_path = _require_str(payload, "epub_path")
    count = await _run(
        workspace.search_in_files,
        epub_path,
        _str_list(payload, "paths"),
        _optional_str(payload, "pattern"),
        bool(payload.get("is_regex")),
    )
    return {"count": count}


@app.post("/epub/replace")
async def replace_files(request: Request) -> dict[str, object]:
    """Regex replacements take ``$1`` / ``${name}`` group references and ``$$``."""
    payload = await _json_payload(request)
    epub_path = _require_str(payload, "epub_path")
    replaced = await _run(
        workspace.replace_in_files,
        epub_path,
        _str_list(payload, "paths"),
        _optional_str(payload, "pattern"),
        _optional_str(payload, "replacement"),
        bool(payload.get("is_regex")),
    )
    return {"replaced": replaced, "count": sum(replaced.values())}


@app.post("/epub/save")
async def save_epub(request: Request) -> dict[str, object]:
    payload = await _json_payload(request)
    epub_path = _require_str(payload, "epub_path")
    await _run(workspace.save, epub_path)
    return {"ok": True}


@app.post("/text/search")
async def search_content(request: Request) -> dict[str, object]:
    payload = await _json_payload(request)
    result = await _run(
        search_text,
        _optional_str(payload, "content"),
        _optional_str(payload, "pattern"),
        bool(payload.get("is_regex")),
    )
    return search_result_to_dict(result)


@app.post("/text/replace")
async def replace_content(request: Request) -> dict[str, object]:
    """Regex replacements take ``$1`` / ``${name}`` group references and ``$$``."""
    payload = await _json_payload(request)
    content, count = await _run(
        replace_text,
        _optional_str(payload, "content"),
        _optional_str(payload, "pattern"),
        _optional_str(payload, "replacement"),
        bool(payload.get("is_regex")),
    )
    return {"content": content, "count": count}
