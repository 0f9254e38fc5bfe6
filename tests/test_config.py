from pathlib import Path

import config


def _write_config(path: Path, text: str) -> None:
    path.write_text(text, encoding="utf-8")


def _point_config_at(monkeypatch, config_dir: Path) -> Path:
    config_path = config_dir / "config.toml"
    monkeypatch.setattr(config, "CONFIG_DIR", config_dir)
    monkeypatch.setattr(config, "CONFIG_PATH", config_path)
    for name in ("CURVEBALL_DELAY_DAYS", "OLLAMA_MODEL", "OLLAMA_TIMEOUT",
                 "GENERATION_MAX_ATTEMPTS", "GENERATION_BACKOFF_SECONDS"):
        monkeypatch.delenv(name, raising=False)
    return config_path


def test_load_config_copies_example_when_missing(tmp_path, monkeypatch):
    config_path = _point_config_at(monkeypatch, tmp_path / ".bookcoach")

    loaded = config.load_config()

    assert config_path.exists()
    assert loaded["curveball"]["delay_days"] == 3
    assert loaded["review_queue"] == {"mcq_cap": 3, "open_cap": 1}
    assert loaded["generation"]["max_attempts"] == 3


def test_env_overrides_file_values(tmp_path, monkeypatch):
    config_dir = tmp_path / ".bookcoach"
    config_dir.mkdir()
    config_path = _point_config_at(monkeypatch, config_dir)
    _write_config(config_path, "[curveball]\ndelay_days = 5\n\n[ollama]\nmodel = \"mistral\"\n")
    monkeypatch.setenv("CURVEBALL_DELAY_DAYS", "1")

    loaded = config.load_config()

    assert loaded["curveball"]["delay_days"] == 1
    assert loaded["ollama"]["model"] == "mistral"
    assert config.get_config_value("ollama", "timeout") == 60
    assert config.get_config_value("missing", "key", "fallback") == "fallback"


def test_scheduler_settings_reads_sections(tmp_path, monkeypatch):
    config_dir = tmp_path / ".bookcoach"
    config_dir.mkdir()
    config_path = _point_config_at(monkeypatch, config_dir)
    _write_config(
        config_path,
        "[curveball]\ndelay_days = 7\n\n[review_queue]\nmcq_cap = 2\nopen_cap = 2\n\n[lessons]\nreview_limit = 1\n",
    )

    settings = config.scheduler_settings()

    assert settings == config.SchedulerSettings(
        curveball_delay_days=7, mcq_cap=2, open_cap=2, review_limit=1, correction_limit=2
    )
