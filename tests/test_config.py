import pytest

from hexstash.config import DEFAULT_QUOTA, Settings, load_settings


def test_defaults(tmp_path):
    settings = load_settings(tmp_path, env={})
    assert settings.db_path == tmp_path / "db" / "hexstash.db"
    assert settings.quota == DEFAULT_QUOTA
    assert settings.bytes_per_row == 16
    assert settings.visible_rows == 20
    assert settings.journal is False


def test_toml_file(tmp_path):
    (tmp_path / "hexstash.toml").write_text(
        '[hexstash]\ndb_path = "data/kv.db"\nquota = 0\nvisible_rows = 8\njournal = true\n',
        encoding="utf-8",
    )
    settings = load_settings(tmp_path, env={})
    assert settings.db_path == tmp_path / "data" / "kv.db"
    assert settings.quota == 0
    assert settings.visible_rows == 8
    assert settings.journal is True


def test_env_overrides(tmp_path):
    (tmp_path / "hexstash.toml").write_text("[hexstash]\nquota = 100\n", encoding="utf-8")
    abs_db = tmp_path / "elsewhere.db"
    settings = load_settings(
        tmp_path, env={"HEXSTASH_DB": str(abs_db), "HEXSTASH_QUOTA": "4096"}
    )
    assert settings.db_path == abs_db
    assert settings.quota == 4096


def test_bad_inputs_are_ignored(tmp_path, caplog):
    (tmp_path / "hexstash.toml").write_text("[hexstash\nbroken", encoding="utf-8")
    settings = load_settings(tmp_path, env={"HEXSTASH_QUOTA": "lots"})
    assert settings.quota == DEFAULT_QUOTA
    assert "ignoring" in caplog.text


def test_unknown_key_warns(tmp_path, caplog):
    (tmp_path / "hexstash.toml").write_text("[hexstash]\ncolour = 'teal'\n", encoding="utf-8")
    load_settings(tmp_path, env={})
    assert "unknown setting" in caplog.text


def test_invalid_geometry():
    with pytest.raises(ValueError):
        Settings(bytes_per_row=0)
    with pytest.raises(ValueError):
        Settings(quota=-1)
