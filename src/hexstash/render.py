"""Server-rendered hex grid page (plain HTML forms and links, no scripts)."""

from __future__ import annotations

from html import escape as _html_escape
from urllib.parse import quote

from bottle import SimpleTemplate  # type: ignore

from hexstash import __version__
from hexstash.session import APP_NAME, Session
from hexstash.store import FileRecord
from hexstash.viewport import Row, byte_to_char, format_address, format_bytes

# --- UI Constants ---
BG_COLOR = "#111827"
PANEL_COLOR = "#1f2937"
BORDER_COLOR = "#374151"
TEXT_COLOR = "#e5e7eb"
MUTED_COLOR = "#9ca3af"
ADDRESS_COLOR = "#2dd4bf"
ACTIVE_COLOR = "#1e3a8a"
EDIT_COLOR = "#115e59"
MONO_FONT = "SFMono-Regular, Consolas, Liberation Mono, Courier New, monospace"


def _esc(text: object) -> str:
    """HTML-escape text for safe rendering."""
    return _html_escape(str(text))


def _cell_html(session: Session, address: int, value: int | None) -> str:
    if value is None:
        return '<td width="24"></td>'
    if session.editing and session.edit and session.edit.target_address == address:
        return (
            f'<td width="24" bgcolor="{EDIT_COLOR}" align="center">'
            f'<form method="post" action="/edit" id="edit-form">'
            f'<input type="text" name="value" size="2" maxlength="2" autofocus'
            f' value="{_esc(session.edit.pending_text)}" aria-label="byte value">'
            f"</form></td>"
        )
    active = address == session.active_address
    bg = f' bgcolor="{ACTIVE_COLOR}"' if active else ""
    return (
        f'<td width="24" align="center"{bg}>'
        f'<a href="/select?addr={address}">{value:02x}</a></td>'
    )


def _ascii_html(session: Session, row: Row) -> str:
    parts: list[str] = []
    for address, value in zip(row.addresses(), row.slots):
        ch = _esc(byte_to_char(value)) if value is not None else "&nbsp;"
        if address == session.active_address and value is not None:
            parts.append(f'<font color="#93c5fd">{ch}</font>')
        else:
            parts.append(ch)
    return "".join(parts)


def _saved_list_html(records: list[FileRecord]) -> str:
    if not records:
        return f'<font color="{MUTED_COLOR}">No saved files</font>'
    items = []
    for r in records:
        items.append(
            f'<li><a href="/open/{quote(r.name, safe="")}">{_esc(r.name)}</a>'
            f' <font color="{MUTED_COLOR}">{_esc(format_bytes(r.size))}</font></li>'
        )
    return "<ul>" + "".join(items) + "</ul>"


# ── SimpleTemplate: Page Layout ─────────────────────────────────────

_PAGE_SRC = r"""<!DOCTYPE html>
<html lang="en">
<head><meta charset="utf-8"><title>{{app_name}}</title></head>
<body bgcolor="{{BG_COLOR}}" text="{{TEXT_COLOR}}" link="{{TEXT_COLOR}}" vlink="{{TEXT_COLOR}}">
<font face="{{MONO_FONT}}">

<table id="toolbar" width="100%" border="0" cellpadding="4" bgcolor="{{PANEL_COLOR}}">
  <tr>
    <td><b>{{app_name}}</b></td>
    <td>
      <form method="post" action="/upload" enctype="multipart/form-data">
        <label for="upload-input">Open</label>
        <input id="upload-input" type="file" name="file">
        <input type="submit" value="Upload">
      </form>
    </td>
    <td>
      <form method="post" action="/save"><input type="submit" value="Save"{{!save_disabled}}></form>
    </td>
  </tr>
</table>

% if file:
<table id="status" width="100%" border="0" cellpadding="4">
  <tr><td colspan="2"><font color="#4ade80">{{status}}</font></td></tr>
  <tr>
    <td><font size="1" color="{{MUTED_COLOR}}">Address: 0x{{active}}</font></td>
    <td align="right"><font size="1" color="{{MUTED_COLOR}}">Mode: {{mode}}</font></td>
  </tr>
</table>

<p id="scroll">
  <a href="/scroll?delta=-10">&laquo;</a>
  <a href="/scroll?delta=-1">&lsaquo;</a>
  <a href="/scroll?delta=1">&rsaquo;</a>
  <a href="/scroll?delta=10">&raquo;</a>
</p>

<table id="grid" border="0" cellpadding="2" cellspacing="0" bgcolor="{{PANEL_COLOR}}">
  <tr>
    <th scope="col" align="left" width="96"><font color="{{MUTED_COLOR}}">Address</font></th>
  % for col in columns:
    <th scope="col" width="24"><font color="{{MUTED_COLOR}}">{{col}}</font></th>
  % end
    <th scope="col" align="left"><font color="{{MUTED_COLOR}}">ASCII</font></th>
  </tr>
  % for row in rows:
  <tr>
    <th scope="row" align="left"><font color="{{ADDRESS_COLOR}}">{{row["address"]}}</font></th>
    % for cell in row["cells"]:
    {{!cell}}
    % end
    <td>{{!row["ascii"]}}</td>
  </tr>
  % end
</table>
<p><font size="1" color="{{MUTED_COLOR}}">{{range_text}}</font></p>

% if editing:
<form method="post" action="/edit">
  <input type="submit" name="action" value="commit" form="edit-form">
  <input type="submit" name="action" value="cancel">
</form>
% end
% else:
<p>{{status}}</p>
<p><font color="{{MUTED_COLOR}}">Upload a file to begin editing its hexadecimal values</font></p>
% end

<form method="post" action="/command" id="command-line">
  <label for="command-input">&gt;</label>
  <input id="command-input" type="text" name="command" size="60"
    placeholder="Type command (help, ?, load, save, edit, exit)...">
</form>
% if history:
<p><font size="1" color="{{MUTED_COLOR}}">
% for cmd in history:
$ {{cmd}}<br>
% end
</font></p>
% end

<h3>Saved Files</h3>
{{!saved}}

<hr>
<font size="1" color="{{MUTED_COLOR}}">{{app_name}} v{{version}}{{file_line}}</font>
</font>
</body>
</html>
"""

_PAGE_TPL = SimpleTemplate(source=_PAGE_SRC)


def render_page(session: Session) -> str:
    """Render the full editor page for the current session state."""
    vp = session.viewport
    rows = []
    for row in session.rows():
        rows.append(
            {
                "address": format_address(row.start_address),
                "cells": [
                    _cell_html(session, addr, value)
                    for addr, value in zip(row.addresses(), row.slots)
                ],
                "ascii": _ascii_html(session, row),
            }
        )
    record = session.record
    file_line = f" | {record.name} | {format_bytes(record.size)}" if record else ""
    return _PAGE_TPL.render(
        app_name=APP_NAME,
        version=__version__,
        BG_COLOR=BG_COLOR,
        PANEL_COLOR=PANEL_COLOR,
        TEXT_COLOR=TEXT_COLOR,
        MUTED_COLOR=MUTED_COLOR,
        ADDRESS_COLOR=ADDRESS_COLOR,
        MONO_FONT=MONO_FONT,
        file=session.loaded,
        status=session.status,
        active=format_address(session.active_address),
        mode=session.mode,
        editing=session.editing,
        columns=[f"{i:02X}" for i in range(vp.bytes_per_row)],
        rows=rows,
        range_text=session.range_text(),
        history=session.history[-5:],
        saved=_saved_list_html(session.saved_files(quiet=True)),
        save_disabled="" if session.loaded else " disabled",
        file_line=file_line,
    )
