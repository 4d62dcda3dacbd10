import pytest

from config.settings import (
    ConfigError,
    DEFAULT_DRAIN_TIMEOUT,
    DEFAULT_ENVIRONMENT,
    DEFAULT_PORT,
    ServerSettings,
    load_env_file,
    load_settings,
    resolve_environment,
    resolve_port,
)
from models.enums import LogLevel


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("8080", 8080),
        (" 5000 ", 5000),
        (443, 443),
        ("0", 0),
        ("65535", 65535),
        (None, DEFAULT_PORT),
        ("", DEFAULT_PORT),
        ("abc", DEFAULT_PORT),
        ("80.5", DEFAULT_PORT),
        ("-1", DEFAULT_PORT),
        ("70000", DEFAULT_PORT),
        (True, DEFAULT_PORT),
    ],
)
def test_resolve_port(raw, expected):
    assert resolve_port(raw) == expected


def test_invalid_port_logs_warning(capsys):
    resolve_port("not-a-port")
    assert "Invalid PORT 'not-a-port'" in capsys.readouterr().out


def test_defaults_from_empty_environment():
    settings = load_settings(environ={})

    assert settings.host == "0.0.0.0"
    assert settings.port == DEFAULT_PORT == 3000
    assert settings.environment == DEFAULT_ENVIRONMENT == "development"
    assert settings.app == "api.main:app"
    assert settings.drain_timeout == DEFAULT_DRAIN_TIMEOUT
    assert settings.log_level is LogLevel.INFO
    assert settings.use_colors is True


@pytest.mark.parametrize("label", ["production", "Staging-EU", "qa 2", "ünïcode"])
def test_environment_label_is_verbatim(label):
    assert load_settings(environ={"APP_ENV": label}).environment == label


def test_node_env_is_accepted_as_fallback():
    assert resolve_environment({"NODE_ENV": "production"}) == "production"
    assert resolve_environment({"APP_ENV": "qa", "NODE_ENV": "production"}) == "qa"
    assert resolve_environment({"APP_ENV": ""}) == "development"


def test_environment_variables():
    settings = load_settings(environ={
        "HOST": "127.0.0.1",
        "PORT": "8081",
        "APP": "myservice.web:app",
        "DRAIN_TIMEOUT": "12.5",
        "LOG_LEVEL": "debug",
        "NO_COLOR": "1",
    })

    assert settings.host == "127.0.0.1"
    assert settings.port == 8081
    assert settings.app == "myservice.web:app"
    assert settings.drain_timeout == 12.5
    assert settings.log_level is LogLevel.DEBUG
    assert settings.use_colors is False


def test_zero_drain_timeout_means_unbounded():
    assert load_settings(environ={"DRAIN_TIMEOUT": "0"}).drain_timeout is None


@pytest.mark.parametrize("raw", ["soon", "-3"])
def test_invalid_drain_timeout_falls_back(raw):
    assert load_settings(environ={"DRAIN_TIMEOUT": raw}).drain_timeout == DEFAULT_DRAIN_TIMEOUT


def test_invalid_log_level_falls_back_to_info():
    assert load_settings(environ={"LOG_LEVEL": "LOUD"}).log_level is LogLevel.INFO


def test_yaml_file_with_environment_override(tmp_path):
    config_file = tmp_path / "server.yaml"
    config_file.write_text(
        "host: 127.0.0.1\n"
        "port: 9000\n"
        "environment: staging\n"
        "drain_timeout: 5\n"
        "log_level: warn\n"
    )

    settings = load_settings(environ={"SERVER_CONFIG": str(config_file), "PORT": "9100"})

    assert settings.host == "127.0.0.1"
    assert settings.port == 9100
    assert settings.environment == "staging"
    assert settings.drain_timeout == 5.0
    assert settings.log_level is LogLevel.WARN


def test_missing_yaml_file_raises(tmp_path):
    with pytest.raises(ConfigError):
        load_settings(environ={}, config_path=tmp_path / "missing.yaml")


def test_malformed_yaml_raises(tmp_path):
    config_file = tmp_path / "broken.yaml"
    config_file.write_text("port: [3000\n")

    with pytest.raises(ConfigError):
        load_settings(environ={}, config_path=config_file)


def test_yaml_must_be_a_mapping(tmp_path):
    config_file = tmp_path / "list.yaml"
    config_file.write_text("- 3000\n- 3001\n")

    with pytest.raises(ConfigError):
        load_settings(environ={}, config_path=config_file)


def test_wrongly_typed_yaml_value_raises(tmp_path):
    config_file = tmp_path / "typed.yaml"
    config_file.write_text("host: [a, b]\n")

    with pytest.raises(ConfigError):
        load_settings(environ={}, config_path=config_file)


def test_settings_are_frozen():
    settings = ServerSettings()
    with pytest.raises(Exception):
        settings.port = 1234


def test_env_file_does_not_override_existing_variables(tmp_path, monkeypatch):
    env_file = tmp_path / ".env"
    env_file.write_text("PORT=4000\nAPP_ENV=from-dotenv\n")
    monkeypatch.setenv("PORT", "5000")
    # setenv first so monkeypatch restores APP_ENV after dotenv writes it
    monkeypatch.setenv("APP_ENV", "placeholder")
    monkeypatch.delenv("APP_ENV")

    assert load_env_file(env_file) is True

    settings = load_settings()
    assert settings.port == 5000
    assert settings.environment == "from-dotenv"


def test_missing_env_file_is_ignored(tmp_path):
    assert load_env_file(tmp_path / ".env") is False
