from pathlib import Path
import textwrap

import pytest

from giveaway_engine.config import ConfigError, load_config

BASE_CONFIG = """
token: abc
application_id: 42
giveaways:
  reaction: "🎉"
"""


def write_config(tmp_path, body):
    path = tmp_path / "config.yaml"
    path.write_text(textwrap.dedent(body), encoding="utf-8")
    return path


def test_minimal_config_uses_defaults(tmp_path):
    config = load_config(write_config(tmp_path, BASE_CONFIG))

    assert config.token == "abc"
    assert config.application_id == 42
    assert config.logging.level == "INFO"
    assert config.logging.logger_channel_id is None
    assert config.giveaways.reaction == "🎉"
    assert config.giveaways.bots_can_win is False
    assert config.giveaways.language == "en"
    assert config.giveaways.finalize_retry_delay == 30.0
    assert config.storage.backend == "json"
    assert config.storage.path == Path("data") / "giveaways.json"
    assert config.permissions.admin_roles == []
    assert config.permissions.development_guild_id is None


def test_full_config(tmp_path):
    config = load_config(
        write_config(
            tmp_path,
            """
            token: abc
            application_id: "42"
            logging:
              level: DEBUG
              logger_channel_id: 777
            giveaways:
              reaction: "🎁"
              bots_can_win: true
              language: cs
              custom_check_timeout: 2.5
              rejection_notice_ttl: 30
              finalize_retry_delay: 5
            storage:
              backend: SQLite
            permissions:
              admin_roles: [1, "2"]
              development_guild_id: 99
            """,
        )
    )

    options = config.giveaways.engine_options()
    assert options.reaction == "🎁"
    assert options.bots_can_win is True
    assert options.language == "cs"
    assert options.custom_check_timeout == 2.5
    assert options.rejection_notice_ttl == 30.0
    assert options.finalize_retry_delay == 5.0
    assert config.storage.backend == "sqlite"
    assert config.storage.path == Path("data") / "giveaways.sqlite"
    assert config.permissions.admin_roles == [1, 2]
    assert config.permissions.development_guild_id == 99
    assert config.logging.logger_channel_id == 777


def test_token_from_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("GIVEAWAY_TEST_TOKEN", "from-env")
    body = BASE_CONFIG.replace("token: abc", "token: ${GIVEAWAY_TEST_TOKEN}")
    assert load_config(write_config(tmp_path, body)).token == "from-env"


def test_missing_environment_variable(tmp_path, monkeypatch):
    monkeypatch.delenv("GIVEAWAY_TEST_TOKEN", raising=False)
    body = BASE_CONFIG.replace("token: abc", "token: ${GIVEAWAY_TEST_TOKEN}")
    with pytest.raises(ConfigError, match="GIVEAWAY_TEST_TOKEN"):
        load_config(write_config(tmp_path, body))


@pytest.mark.parametrize(
    "old,new,message",
    [
        ('reaction: "🎉"', "language: en", "reaction"),
        ('reaction: "🎉"', 'reaction: "🎉"\n  language: de', "language"),
        ('reaction: "🎉"', 'reaction: "🎉"\n  bots_can_win: "yes"', "bots_can_win"),
        ('reaction: "🎉"', 'reaction: "🎉"\n  custom_check_timeout: 0', "custom_check_timeout"),
        ('reaction: "🎉"', 'reaction: "🎉"\n  finalize_retry_delay: -1', "finalize_retry_delay"),
        ("application_id: 42", "application_id: nope", "application_id"),
    ],
)
def test_invalid_values_are_reported(tmp_path, old, new, message):
    body = BASE_CONFIG.replace(old, new)
    with pytest.raises(ConfigError, match=message):
        load_config(write_config(tmp_path, body))


def test_unknown_storage_backend(tmp_path):
    body = BASE_CONFIG + "storage:\n  backend: redis\n"
    with pytest.raises(ConfigError, match="storage.backend"):
        load_config(write_config(tmp_path, body))


def test_missing_file(tmp_path):
    with pytest.raises(ConfigError):
        load_config(tmp_path / "absent.yaml")


def test_example_config_is_valid(monkeypatch):
    monkeypatch.setenv("DISCORD_TOKEN", "example-token")
    example = Path(__file__).resolve().parent.parent / "config" / "config.example.yaml"
    config = load_config(example)
    assert config.storage.backend == "sqlite"


def test_logging_section(tmp_path):
    body = BASE_CONFIG + "logging:\n  level: debug\n  file: null\n  logger_channel_id: '123'\n"
    config = load_config(write_config(tmp_path, body))
    assert config.logging.level == "DEBUG"
    assert config.logging.file is None
    assert config.logging.logger_channel_id == 123


def test_unknown_log_level(tmp_path):
    body = BASE_CONFIG + "logging:\n  level: chatty\n"
    with pytest.raises(ConfigError, match="logging.level"):
        load_config(write_config(tmp_path, body))


def test_invalid_admin_role(tmp_path):
    body = BASE_CONFIG + "permissions:\n  admin_roles: [1, admin]\n"
    with pytest.raises(ConfigError, match=r"admin_roles\[1\]"):
        load_config(write_config(tmp_path, body))
