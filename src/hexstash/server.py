"""hexstash web server: hex grid page plus a JSON API over one editing session.

Run from a project directory; the key-value store lives in db/hexstash.db
unless hexstash.toml or HEXSTASH_DB says otherwise.
"""

from __future__ import annotations

import gzip
import json
import logging
import platform
import subprocess
import threading
import webbrowser
from pathlib import Path
from typing import Any, cast
from urllib.parse import quote

import bottle  # type: ignore

from hexstash import __version__
from hexstash.config import Settings, load_settings
from hexstash.edit import Accepted
from hexstash.session import Session
from hexstash.storage import SqliteStorage
from hexstash.store import ChunkedStore

Bottle = cast(Any, bottle.Bottle)
request = cast(Any, bottle.request)
response = cast(Any, bottle.response)
redirect = cast(Any, bottle.redirect)
HTTPResponse = cast(Any, bottle.HTTPResponse)

_log = logging.getLogger(__name__)

# CORS: set to True by CLI --cors flag
CORS_ENABLED = False

# Request bodies up to this size are buffered in memory.
bottle.BaseRequest.MEMFILE_MAX = 64 * 1024 * 1024

try:
    import brotli  # type: ignore

    HAS_BROTLI = True
except ImportError:
    HAS_BROTLI = False

try:
    import zstandard as zstd  # type: ignore

    HAS_ZSTD = True
except ImportError:
    HAS_ZSTD = False


# ── Session ────────────────────────────────────────────────────────

SESSION: Session | None = None
SESSION_LOCK = threading.RLock()


def build_session(settings: Settings) -> Session:
    storage = SqliteStorage(settings.db_path, quota=settings.quota)
    store = ChunkedStore(storage, journal=settings.journal)
    return Session(store, settings.bytes_per_row, settings.visible_rows)


def configure(session: Session | None) -> None:
    """Install the session the routes operate on (None resets to lazy default)."""
    global SESSION
    with SESSION_LOCK:
        SESSION = session


def _session() -> Session:
    global SESSION
    if SESSION is None:
        SESSION = build_session(load_settings())
    return SESSION


# ── Compression ────────────────────────────────────────────────────


def _best_encoding(accept_encoding: str) -> str:
    if HAS_ZSTD and "zstd" in accept_encoding:
        return "zstd"
    if HAS_BROTLI and "br" in accept_encoding:
        return "br"
    if "gzip" in accept_encoding:
        return "gzip"
    return ""


def compress_payload(body: bytes, accept_encoding: str) -> tuple[bytes, str]:
    """Compress payload using the best available algorithm."""
    encoding = _best_encoding(accept_encoding)
    if encoding == "zstd":
        cctx = zstd.ZstdCompressor(level=3)  # type: ignore
        return cctx.compress(body), "zstd"
    if encoding == "br":
        return brotli.compress(body), "br"  # type: ignore
    if encoding == "gzip":
        return gzip.compress(body), "gzip"
    return body, ""


# ── Response helpers ───────────────────────────────────────────────


def _compressed(body: bytes, content_type: str, **headers: str) -> bytes:
    """Compress body, set response headers, return final body."""
    accept_enc = request.headers.get("Accept-Encoding", "")
    body, encoding = compress_payload(body, accept_enc)
    response.content_type = content_type
    if encoding:
        response.set_header("Content-Encoding", encoding)
    response.set_header("Content-Length", str(len(body)))
    for k, v in headers.items():
        response.set_header(k.replace("_", "-"), v)
    return body


def _json_ok(data: Any, **headers: str) -> bytes:
    """Return compressed JSON 200."""
    body = data if isinstance(data, bytes) else json.dumps(data).encode("utf-8")
    return _compressed(body, "application/json", **headers)


def _json_err(status: int, data: dict) -> Any:
    """Return a JSON error response."""
    body = json.dumps(data).encode("utf-8")
    accept_enc = request.headers.get("Accept-Encoding", "")
    body, encoding = compress_payload(body, accept_enc)
    resp = HTTPResponse(status=status, body=body)
    resp.content_type = "application/json"
    if encoding:
        resp.set_header("Content-Encoding", encoding)
    resp.set_header("Content-Length", str(len(body)))
    return resp


def _json_body() -> dict:
    try:
        doc = request.json
    except (ValueError, bottle.HTTPError):
        return {}
    return doc if isinstance(doc, dict) else {}


def _int_arg(value: Any, default: int | None = None) -> int | None:
    if value is None or value == "":
        return default
    try:
        return int(value, 0) if isinstance(value, str) else int(value)
    except (TypeError, ValueError):
        return None


def _content_disposition(name: str) -> str:
    filename = Path(name).name or "download.bin"
    fallback = filename.encode("ascii", "replace").decode("ascii")
    fallback = fallback.replace('"', "_").replace("\\", "_")
    encoded = quote(filename, safe="")
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{encoded}"


def _state(**extra: Any) -> bytes:
    data = _session().snapshot()
    data.update(extra)
    return _json_ok(data, Cache_Control="no-cache, no-store, must-revalidate")


# ── Bottle app ─────────────────────────────────────────────────────

app = Bottle()


@app.hook("after_request")
def _cors_headers() -> None:
    if CORS_ENABLED:
        response.set_header("Access-Control-Allow-Origin", "*")
        response.set_header("Access-Control-Allow-Methods", "GET, POST, DELETE, OPTIONS")
        response.set_header("Access-Control-Allow-Headers", "Content-Type")


# ── HTML routes ────────────────────────────────────────────────────


@app.get("/")
@app.get("/index.html")
def handle_index() -> bytes | Any:
    from hexstash.render import render_page

    try:
        with SESSION_LOCK:
            body = render_page(_session()).encode("utf-8")
    except Exception as e:
        from html import escape as _esc

        _log.exception("page render failed")
        return HTTPResponse(status=500, body=f"Error: {_esc(str(e))}")
    return _compressed(
        body,
        "text/html; charset=utf-8",
        Cache_Control="no-cache, no-store, must-revalidate",
    )


@app.get("/select")
def handle_select() -> Any:
    address = _int_arg(request.query.get("addr"))
    with SESSION_LOCK:
        s = _session()
        if address is not None and s.loaded:
            # in edit mode a click moves the edit to the clicked byte
            was_editing = s.editing
            s.set_active_address(address)
            if was_editing or request.query.get("edit"):
                s.enter_edit_mode(s.active_address)
    return redirect("/")


@app.get("/scroll")
def handle_scroll() -> Any:
    delta = _int_arg(request.query.get("delta"), 0)
    with SESSION_LOCK:
        _session().scroll(delta or 0)
    return redirect("/")


@app.post("/edit")
def handle_edit_form() -> Any:
    action = request.forms.get("action", "commit")
    with SESSION_LOCK:
        s = _session()
        if action == "cancel":
            s.cancel()
        elif s.editing:
            s.edit.clear()  # type: ignore[union-attr]
            for ch in request.forms.get("value", ""):
                s.append_hex_digit(ch)
            s.commit()
    return redirect("/")


@app.post("/command")
def handle_command_form() -> Any:
    command = request.forms.get("command", "")
    with SESSION_LOCK:
        _session().execute(command)
    return redirect("/")


@app.post("/upload")
def handle_upload_form() -> Any:
    upload = request.files.get("file")
    with SESSION_LOCK:
        s = _session()
        if upload is None:
            s.status = "No file selected"
        else:
            s.open_file(upload.raw_filename, upload.file.read(), mime_type=upload.content_type)
    return redirect("/")


@app.post("/save")
def handle_save_form() -> Any:
    with SESSION_LOCK:
        _session().save()
    return redirect("/")


@app.get("/open/<name:path>")
def handle_open_saved(name: str) -> Any:
    with SESSION_LOCK:
        _session().load_saved(name)
    return redirect("/")


# ── JSON API ───────────────────────────────────────────────────────


@app.get("/api/health")
def handle_api_health() -> bytes:
    with SESSION_LOCK:
        s = _session()
        port = s.store.port
        used = getattr(port, "used", None)
        quota = getattr(port, "quota", None)
        return _json_ok(
            {
                "version": __version__,
                "storage": {"kind": type(port).__name__, "used": used, "quota": quota},
                "extras": {"brotli": HAS_BROTLI, "zstd": HAS_ZSTD},
                "loaded": s.loaded,
                "cors": CORS_ENABLED,
            }
        )


@app.get("/api/view")
def handle_api_view() -> bytes:
    with SESSION_LOCK:
        return _state()


@app.get("/api/files")
def handle_api_files() -> bytes:
    with SESSION_LOCK:
        records = _session().saved_files()
    return _json_ok(
        {"files": [r.to_dict() for r in records]},
        Cache_Control="no-cache, no-store, must-revalidate",
    )


@app.get("/api/files/<name:path>/raw")
def handle_api_file_raw(name: str) -> bytes | Any:
    from hexstash.errors import Corrupted, NotFound

    with SESSION_LOCK:
        try:
            data, record = _session().store.load(name)
        except NotFound as e:
            return _json_err(404, {"error": str(e)})
        except Corrupted as e:
            return _json_err(409, {"error": str(e)})
    response.set_header("Content-Disposition", _content_disposition(name))
    mime = record.mime_type if record else "application/octet-stream"
    return _compressed(data, mime)


@app.post("/api/files/<name:path>/load")
def handle_api_file_load(name: str) -> bytes | Any:
    with SESSION_LOCK:
        s = _session()
        if not s.load_saved(name):
            code = 404 if s.status.startswith("File not found") else 409
            return _json_err(code, {"error": s.status})
        return _state()


@app.delete("/api/files/<name:path>")
def handle_api_file_delete(name: str) -> bytes | Any:
    with SESSION_LOCK:
        s = _session()
        if not s.delete_saved(name):
            return _json_err(507, {"error": s.status})
        return _json_ok({"ok": True, "status": s.status})


@app.post("/api/upload")
def handle_api_upload() -> bytes | Any:
    name = request.query.get("name", "").strip()
    if not name:
        return _json_err(400, {"error": "missing name"})
    data = request.body.read()
    with SESSION_LOCK:
        s = _session()
        if not s.open_file(name, data, mime_type=request.content_type or None):
            return _json_err(400, {"error": s.status})
        return _state()


@app.post("/api/save")
def handle_api_save() -> bytes | Any:
    with SESSION_LOCK:
        s = _session()
        if not s.loaded:
            return _json_err(409, {"error": "No file loaded"})
        if not s.save():
            return _json_err(507, {"error": s.status})
        return _state()


@app.post("/api/command")
def handle_api_command() -> bytes | Any:
    command = _json_body().get("command")
    if not isinstance(command, str):
        return _json_err(400, {"error": "missing command"})
    with SESSION_LOCK:
        s = _session()
        s.execute(command)
        return _state(exit=s.exit_requested)


@app.post("/api/address")
def handle_api_address() -> bytes | Any:
    address = _int_arg(_json_body().get("address"))
    if address is None:
        return _json_err(400, {"error": "invalid address"})
    with SESSION_LOCK:
        _session().set_active_address(address)
        return _state()


@app.post("/api/scroll")
def handle_api_scroll() -> bytes | Any:
    delta = _int_arg(_json_body().get("delta"))
    if delta is None:
        return _json_err(400, {"error": "invalid delta"})
    with SESSION_LOCK:
        _session().scroll(delta)
        return _state()


@app.post("/api/edit")
def handle_api_edit() -> bytes | Any:
    """Drive the edit state machine: begin, type, backspace, commit, cancel."""
    doc = _json_body()
    action = doc.get("action")
    with SESSION_LOCK:
        s = _session()
        if not s.loaded:
            return _json_err(409, {"error": "No file loaded"})
        if action == "begin":
            address = _int_arg(doc.get("address"), s.active_address)
            if address is None or not s.enter_edit_mode(address):
                return _json_err(400, {"error": s.status})
            return _state()
        if action == "type":
            results = [s.append_hex_digit(ch) for ch in str(doc.get("chars", ""))]
            return _state(accepted=[bool(r) for r in results])
        if action == "backspace":
            return _state(accepted=bool(s.backspace()))
        if action == "commit":
            result = s.commit()
            if isinstance(result, Accepted):
                return _state(accepted=True)
            return _state(accepted=False, reason=result.reason)
        if action == "cancel":
            s.cancel()
            return _state()
    return _json_err(400, {"error": f"unknown action: {action!r}"})


# ── Browser opener ─────────────────────────────────────────────────


def open_browser(url: str) -> None:
    system = platform.system()
    try:
        if system == "Linux":
            subprocess.Popen(
                ["xdg-open", url], stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL
            )
        elif system == "Darwin":
            subprocess.Popen(
                ["open", url], stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL
            )
        else:
            webbrowser.open(url)
    except OSError:
        webbrowser.open(url)
