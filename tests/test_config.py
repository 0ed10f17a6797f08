from __future__ import annotations

import pytest

from poster_sync.config import load_settings


def test_load_settings_reads_env_file(tmp_path, monkeypatch) -> None:
    for name in ("POSTER_TOKEN", "SYNC_TIMEZONE", "SYNC_CHUNK_DAYS"):
        monkeypatch.delenv(name, raising=False)
    env_file = tmp_path / ".env"
    env_file.write_text("POSTER_TOKEN=abc\nSYNC_TIMEZONE=America/Mexico_City\nSYNC_CHUNK_DAYS=15\n")

    settings = load_settings(env_file)

    assert settings.poster_token is not None
    assert settings.poster_token.get_secret_value() == "abc"
    assert settings.sync_timezone == "America/Mexico_City"
    assert settings.sync_chunk_days == 15
    assert settings.sync_max_per_chunk == 1000


def test_invalid_environment_raises_runtime_error(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("SYNC_CHUNK_DAYS", "many")

    with pytest.raises(RuntimeError):
        load_settings(tmp_path / "missing.env")
