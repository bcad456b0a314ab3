"""Configuration loader tests."""
from __future__ import annotations

from pathlib import Path

import pytest

from dbdoctor.config import AppConfig, ConfigError, load_config
from dbdoctor.doctor import DEFAULT_POOLING_PARAMS, ProbePolicy


def _missing(tmp_path: Path) -> Path:
    return tmp_path / "absent.yml"


def test_load_config_defaults_when_file_missing(tmp_path: Path) -> None:
    """Defaults apply when no config file is present."""
    config = load_config(config_file=_missing(tmp_path), env={})

    assert isinstance(config, AppConfig)
    assert config.config_file == _missing(tmp_path)
    assert config.database_url is None
    assert config.database_url_env == "DATABASE_URL"
    assert config.logs_dir is None
    assert config.probes == ProbePolicy()
    assert config.probes.pooling_params == DEFAULT_POOLING_PARAMS


def test_load_config_reads_yaml_file(tmp_path: Path) -> None:
    """Values are loaded from the YAML config file."""
    cfg = tmp_path / "dbdoctor.yml"
    cfg.write_text(
        "database_url: postgresql://u@h/db\n"
        "logs_dir: {logs}\n"
        "probes:\n"
        "  stability_repetitions: 5\n"
        "  stability_delay_ms: 0\n"
        "  capacity_warn_threshold: 0.7\n"
        "  capacity_error_threshold: 0.9\n"
        "  pooling_params: [pgbouncer]\n".format(logs=tmp_path / "logs"),
        encoding="utf-8",
    )

    config = load_config(config_file=cfg, env={})

    assert config.config_file == cfg
    assert config.database_url == "postgresql://u@h/db"
    assert config.logs_dir == tmp_path / "logs"
    assert config.probes.stability_repetitions == 5
    assert config.probes.stability_delay_ms == 0
    assert config.probes.capacity_warn_threshold == 0.7
    assert config.probes.capacity_error_threshold == 0.9
    assert config.probes.pooling_params == ("pgbouncer",)


def test_env_overrides_take_precedence(tmp_path: Path) -> None:
    """Environment variables override defaults and file settings."""
    cfg = tmp_path / "dbdoctor.yml"
    cfg.write_text("probes:\n  stability_repetitions: 5\n", encoding="utf-8")
    env = {
        "DBDOCTOR_CONFIG_FILE": str(cfg),
        "DBDOCTOR_PROBES__STABILITY_REPETITIONS": "7",
        "DBDOCTOR_PROBES__FAIL_ON_DEGRADED": "false",
        "DBDOCTOR_PROBES__POOLING_PARAMS": "connection_limit, pgbouncer",
        "DBDOCTOR_LOGS_DIR": str(tmp_path / "logs"),
        "UNRELATED": "ignored",
    }

    config = load_config(env=env)

    assert config.config_file == cfg
    assert config.probes.stability_repetitions == 7
    assert config.probes.fail_on_degraded is False
    assert config.probes.pooling_params == ("connection_limit", "pgbouncer")
    assert config.logs_dir == tmp_path / "logs"


def test_explicit_overrides_win(tmp_path: Path) -> None:
    """Programmatic overrides beat environment values."""
    config = load_config(
        config_file=_missing(tmp_path),
        env={"DBDOCTOR_PROBES__QUERY_TIMEOUT": "10"},
        overrides={"probes": {"query_timeout": 2.5}},
    )

    assert config.probes.query_timeout == 2.5


def test_empty_pooling_list_disables_pooling_check(tmp_path: Path) -> None:
    """An explicit empty list clears the expected pooling parameters."""
    config = load_config(
        config_file=_missing(tmp_path),
        env={"DBDOCTOR_PROBES__POOLING_PARAMS": "[]"},
    )

    assert config.probes.pooling_params == ()


def test_resolve_database_url_prefers_config(tmp_path: Path) -> None:
    """The configured URL wins over the named environment variable."""
    cfg = tmp_path / "dbdoctor.yml"
    cfg.write_text("database_url: postgresql://cfg/db\n", encoding="utf-8")
    config = load_config(config_file=cfg, env={})

    assert config.resolve_database_url({"DATABASE_URL": "postgresql://env/db"}) == (
        "postgresql://cfg/db"
    )


def test_resolve_database_url_reads_named_variable(tmp_path: Path) -> None:
    """Without a configured URL the named variable is consulted."""
    config = load_config(
        config_file=_missing(tmp_path),
        env={"DBDOCTOR_DATABASE_URL_ENV": "PRIMARY_DB"},
    )

    assert config.database_url_env == "PRIMARY_DB"
    assert config.resolve_database_url({"PRIMARY_DB": "postgresql://p/db"}) == (
        "postgresql://p/db"
    )
    assert config.resolve_database_url({"PRIMARY_DB": ""}) is None
    assert config.resolve_database_url({}) is None


def test_to_dict_hides_database_url(tmp_path: Path) -> None:
    """The serialised config never exposes the connection string."""
    config = load_config(
        config_file=_missing(tmp_path),
        overrides={"database_url": "postgresql://u:secret@h/db"},
    )

    payload = config.to_dict()

    assert payload["database_url"] == "<set>"
    assert "secret" not in str(payload)


@pytest.mark.parametrize(
    ("content", "fragment"),
    [
        ("unexpected: true\n", "Unknown configuration keys"),
        ("probes:\n  bogus: 1\n", "Unknown probes configuration keys"),
        ("probes:\n  stability_repetitions: 0\n", "at least 1"),
        ("probes:\n  stability_delay_ms: -5\n", "non-negative"),
        ("probes:\n  query_timeout: 0\n", "greater than zero"),
        ("probes:\n  capacity_warn_threshold: 1.5\n", "must not exceed"),
        (
            "probes:\n  capacity_warn_threshold: 0.8\n  capacity_error_threshold: 0.5\n",
            "must be greater than",
        ),
        ("probes:\n  fail_on_degraded: maybe\n", "boolean"),
        ("probes:\n  pooling_params: 5\n", "sequence"),
        ("database_url: 42\n", "database_url"),
        ("- just\n- a list\n", "mapping"),
    ],
)
def test_invalid_config_raises(tmp_path: Path, content: str, fragment: str) -> None:
    """Invalid values surface as ConfigError."""
    cfg = tmp_path / "dbdoctor.yml"
    cfg.write_text(content, encoding="utf-8")

    with pytest.raises(ConfigError) as excinfo:
        load_config(config_file=cfg, env={})

    assert fragment in str(excinfo.value)
