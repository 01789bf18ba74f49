import gzip
import json
from io import BytesIO
from wsgiref.util import setup_testing_defaults

import pytest

import hexstash.server as server
from hexstash.errors import StorageError
from hexstash.render import render_page
from hexstash.server import app, compress_payload
from hexstash.session import Session
from hexstash.storage import MemoryStorage
from hexstash.store import ChunkedStore


@pytest.fixture
def session():
    s = Session(ChunkedStore(MemoryStorage()))
    server.configure(s)
    yield s
    server.configure(None)


def _wsgi(
    method: str,
    path: str,
    body: bytes = b"",
    headers: dict[str, str] | None = None,
    content_type: str = "",
) -> tuple[str, dict[str, str], bytes]:
    environ: dict = {}
    setup_testing_defaults(environ)
    url_path, _, query = path.partition("?")
    environ["REQUEST_METHOD"] = method
    environ["PATH_INFO"] = url_path
    environ["QUERY_STRING"] = query
    environ["wsgi.input"] = BytesIO(body)
    environ["CONTENT_LENGTH"] = str(len(body))
    if content_type:
        environ["CONTENT_TYPE"] = content_type
    if headers:
        for k, v in headers.items():
            environ[f"HTTP_{k.upper().replace('-', '_')}"] = v

    status_holder: dict = {"status": "", "headers": {}}

    def _start_response(status: str, response_headers, exc_info=None):
        status_holder["status"] = status
        status_holder["headers"] = {k: v for k, v in response_headers}
        return None

    result = app(environ, _start_response)
    out = b"".join(result)
    return status_holder["status"], status_holder["headers"], out


def _json(method: str, path: str, doc: dict | None = None) -> tuple[str, dict]:
    body = json.dumps(doc).encode() if doc is not None else b""
    status, _, out = _wsgi(method, path, body, content_type="application/json")
    return status, json.loads(out)


def _form(path: str, fields: dict[str, str]) -> str:
    from urllib.parse import urlencode

    body = urlencode(fields).encode()
    status, _, _ = _wsgi("POST", path, body, content_type="application/x-www-form-urlencoded")
    return status


def _upload(session_bytes: bytes, name: str = "t.bin") -> dict:
    status, _, out = _wsgi(
        "POST", f"/api/upload?name={name}", session_bytes, content_type="application/octet-stream"
    )
    assert status.startswith("200")
    return json.loads(out)


def test_compress_payload():
    body = b"x" * 1000
    assert compress_payload(body, "") == (body, "")
    packed, enc = compress_payload(body, "gzip")
    assert enc == "gzip"
    assert gzip.decompress(packed) == body


def test_health(session):
    status, doc = _json("GET", "/api/health")
    assert status.startswith("200")
    assert doc["storage"]["kind"] == "MemoryStorage"
    assert doc["loaded"] is False


def test_upload_and_view(session):
    doc = _upload(bytes([0x00, 0x1F, 0x41, 0xFF]))
    assert doc["status"] == "t.bin (4 bytes)"
    assert doc["length"] == 4
    assert doc["rows"][0]["ascii"].startswith("..A.")

    status, view = _json("GET", "/api/view")
    assert status.startswith("200")
    assert view["file"]["name"] == "t.bin"


def test_upload_requires_name_and_data(session):
    status, doc = _json("POST", "/api/upload")
    assert status.startswith("400")
    status, _, out = _wsgi("POST", "/api/upload?name=e.bin", b"")
    assert status.startswith("400")
    assert "empty" in json.loads(out)["error"]


def test_edit_api_flow(session):
    _upload(bytes(4))
    status, doc = _json("POST", "/api/edit", {"action": "begin", "address": "0x2"})
    assert doc["mode"] == "EDIT"
    assert doc["pending"] == "00"
    _json("POST", "/api/edit", {"action": "backspace"})
    _json("POST", "/api/edit", {"action": "backspace"})
    status, doc = _json("POST", "/api/edit", {"action": "type", "chars": "fzf1"})
    assert doc["accepted"] == [True, False, True, False]
    status, doc = _json("POST", "/api/edit", {"action": "commit"})
    assert doc["accepted"] is True
    assert doc["activeAddress"] == 3
    assert doc["rows"][0]["bytes"][:4] == [0, 0, 0xFF, 0]


def test_edit_api_errors(session):
    status, doc = _json("POST", "/api/edit", {"action": "begin", "address": 0})
    assert status.startswith("409")
    _upload(bytes(4))
    status, doc = _json("POST", "/api/edit", {"action": "begin", "address": 9})
    assert status.startswith("400")
    status, doc = _json("POST", "/api/edit", {"action": "explode"})
    assert status.startswith("400")


def test_address_and_scroll(session):
    _upload(bytes(1000))
    status, doc = _json("POST", "/api/address", {"address": 999})
    assert doc["activeAddress"] == 999
    assert doc["offsetRow"] == 43
    status, doc = _json("POST", "/api/scroll", {"delta": -100})
    assert doc["offsetRow"] == 0
    status, doc = _json("POST", "/api/scroll", {"delta": "x"})
    assert status.startswith("400")


def test_command_api(session):
    status, doc = _json("POST", "/api/command", {"command": "bogus"})
    assert doc["status"] == "Unknown command: bogus. Type 'help' for available commands."
    status, doc = _json("POST", "/api/command", {"command": "exit"})
    assert doc["exit"] is True
    status, doc = _json("POST", "/api/command", {})
    assert status.startswith("400")


def test_save_list_load_delete(session):
    status, _ = _json("POST", "/api/save")
    assert status.startswith("409")
    _upload(b"hello world", name="h.txt")
    status, doc = _json("POST", "/api/save")
    assert doc["status"] == "File saved: h.txt"

    status, doc = _json("GET", "/api/files")
    assert [f["name"] for f in doc["files"]] == ["h.txt"]
    assert doc["files"][0]["size"] == 11

    status, headers, raw = _wsgi("GET", "/api/files/h.txt/raw")
    assert status.startswith("200")
    assert raw == b"hello world"

    status, doc = _json("POST", "/api/files/h.txt/load")
    assert doc["status"] == "Loaded saved file: h.txt (11 bytes)"

    status, doc = _json("DELETE", "/api/files/h.txt")
    assert doc["ok"] is True
    status, doc = _json("POST", "/api/files/h.txt/load")
    assert status.startswith("404")
    status, _, _ = _wsgi("GET", "/api/files/h.txt/raw")
    assert status.startswith("404")


def test_save_failure_maps_to_507():
    s = Session(ChunkedStore(MemoryStorage(quota=40)))
    server.configure(s)
    try:
        _upload(bytes(100))
        status, doc = _json("POST", "/api/save")
        assert status.startswith("507")
        assert doc["error"] == "Error saving file: t.bin"
    finally:
        server.configure(None)


# ── HTML ───────────────────────────────────────────────────────────


def test_index_empty(session):
    status, headers, body = _wsgi("GET", "/")
    assert status.startswith("200")
    html = body.decode()
    assert "Upload a file to begin" in html
    assert "No saved files" in html
    assert "<script" not in html.lower()


def test_index_gzip(session):
    status, headers, body = _wsgi("GET", "/", headers={"Accept-Encoding": "gzip"})
    assert headers["Content-Encoding"] == "gzip"
    assert b"<html" in gzip.decompress(body)


def test_index_grid(session):
    _upload(bytes([0x00, 0x1F, 0x41, 0xFF]) + b"<&>")
    html = render_page(session)
    assert 'id="grid"' in html
    assert "00000000" in html
    assert '<a href="/select?addr=2">41</a>' in html
    assert "&lt;&amp;&gt;" in html
    assert "Showing bytes 0 to 7 of 7" in html
    assert "Mode: VIEW" in html


def test_saved_links_are_percent_encoded(session):
    session.store.save("a#b c.bin", b"abc")
    html = render_page(session)
    assert 'href="/open/a%23b%20c.bin"' in html
    assert ">a#b c.bin</a>" in html

    # the WSGI server hands the route an already-decoded path
    status, _, _ = _wsgi("GET", "/open/a#b c.bin")
    assert status.startswith("30")
    assert session.status == "Loaded saved file: a#b c.bin (3 bytes)"


def test_raw_download_filename_is_quoted(session):
    session.store.save('dir/we"ird.bin', b"xyz")
    status, headers, raw = _wsgi("GET", '/api/files/dir/we"ird.bin/raw')
    assert status.startswith("200")
    assert raw == b"xyz"
    assert headers["Content-Disposition"] == (
        "attachment; filename=\"we_ird.bin\"; filename*=UTF-8''we%22ird.bin"
    )


def test_render_keeps_status_when_listing_fails(session, monkeypatch):
    def boom():
        raise StorageError("locked")

    monkeypatch.setattr(session.store.port, "keys", boom)
    session.status = "File saved: t.bin"
    html = render_page(session)
    assert "No saved files" in html
    assert session.status == "File saved: t.bin"


def test_form_routes(session):
    _upload(bytes(1024))
    assert _wsgi("GET", "/select?addr=20")[0].startswith("30")
    assert session.active_address == 20
    assert not session.editing

    assert _form("/command", {"command": "edit 21"}).startswith("30")
    assert session.editing
    html = render_page(session)
    assert 'id="edit-form"' in html
    assert "Mode: EDIT" in html

    _wsgi("GET", "/select?addr=30")
    assert session.edit.target_address == 30

    assert _form("/edit", {"value": "a5"}).startswith("30")
    assert session.buffer.read(30) == 0xA5
    assert session.active_address == 31

    _wsgi("GET", "/select?addr=5&edit=1")
    _form("/edit", {"action": "cancel", "value": "ff"})
    assert session.buffer.read(5) == 0
    assert not session.editing

    _wsgi("GET", "/scroll?delta=2")
    assert session.viewport.offset_row == 2

    _form("/save", {})
    assert session.status == "File saved: t.bin"
    _wsgi("GET", "/open/t.bin")
    assert session.status == "Loaded saved file: t.bin (1024 bytes)"


if __name__ == "__main__":
    raise SystemExit(pytest.main([__file__, "-v"]))
