import pytest
from typer.testing import CliRunner

from hexstash.cli import app
from hexstash.session import HELP_TEXT

runner = CliRunner()


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HEXSTASH_DB", str(tmp_path / "kv.db"))
    monkeypatch.delenv("HEXSTASH_QUOTA", raising=False)
    monkeypatch.setenv("COLUMNS", "200")
    return tmp_path


def _put(workdir, name: str, data: bytes) -> None:
    src = workdir / name
    src.write_bytes(data)
    result = runner.invoke(app, ["put", str(src)])
    assert result.exit_code == 0, result.output


def test_put_ls_get_rm(workdir):
    _put(workdir, "hello.bin", b"hello world")

    result = runner.invoke(app, ["ls"])
    assert result.exit_code == 0
    assert "hello.bin" in result.output
    assert "11 Bytes" in result.output

    out = workdir / "restored.bin"
    result = runner.invoke(app, ["get", "hello.bin", "-o", str(out)])
    assert result.exit_code == 0
    assert "Wrote 11 bytes" in result.output
    assert out.read_bytes() == b"hello world"

    result = runner.invoke(app, ["rm", "hello.bin"])
    assert result.exit_code == 0
    assert "File deleted: hello.bin" in result.output

    result = runner.invoke(app, ["ls"])
    assert "No saved files." in result.output


def test_put_reports_chunks(workdir):
    src = workdir / "data.bin"
    src.write_bytes(bytes(10))
    result = runner.invoke(app, ["put", str(src), "--name", "renamed"])
    assert result.exit_code == 0
    assert "File saved: renamed (10 bytes, 1 chunks)" in result.output


def test_get_missing(workdir):
    result = runner.invoke(app, ["get", "ghost"])
    assert result.exit_code == 1
    assert "File not found: ghost" in result.output


def test_dump(workdir):
    _put(workdir, "seq.bin", bytes(range(32)) + b"AB")
    result = runner.invoke(app, ["dump", "seq.bin"])
    assert result.exit_code == 0
    lines = result.output.splitlines()
    assert len(lines) == 3
    assert lines[0].startswith("00000000")
    assert lines[2].startswith("00000020")
    assert "|AB" in lines[2]

    result = runner.invoke(app, ["dump", "seq.bin", "--offset-row", "1", "--rows", "1"])
    assert result.output.splitlines()[0].startswith("00000010")


def test_shell_help_and_exit(workdir):
    result = runner.invoke(app, ["shell"], input="help\nexit\n")
    assert result.exit_code == 0
    assert HELP_TEXT in result.output
    assert "Thank you for using hexstash." in result.output


def test_shell_edit_session(workdir):
    (workdir / "disk.bin").write_bytes(b"\x00\x01\x02\x03")
    script = "\n".join(["view", "edit 2", "type 7f", "commit", "save", "exit"]) + "\n"
    result = runner.invoke(app, ["shell", "disk.bin"], input=script)
    assert result.exit_code == 0
    assert "disk.bin (4 bytes)" in result.output
    assert "Pending value: 7f" in result.output
    assert "Wrote 0x7f at 0x00000002" in result.output
    assert "File saved: disk.bin" in result.output

    out = workdir / "back.bin"
    runner.invoke(app, ["get", "disk.bin", "-o", str(out)])
    assert out.read_bytes() == b"\x00\x01\x7f\x03"


def test_shell_ends_on_eof(workdir):
    result = runner.invoke(app, ["shell"], input="")
    assert result.exit_code == 0


if __name__ == "__main__":
    raise SystemExit(pytest.main([__file__, "-v"]))
