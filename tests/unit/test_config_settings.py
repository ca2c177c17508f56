import json
import logging

from remoteaccess.base.config import (
    LogConfig,
    RemoteAccessConfig,
    SecurityConfig,
    StorageConfig,
    get_config,
    set_config,
    setup_logging,
)
from remoteaccess.base.settings import PLAYBACK_CONTROL, JsonSettings


def test_security_defaults():
    security = SecurityConfig()

    assert security.bypass_auth is False
    assert security.session_max_age == 7 * 24 * 3600
    assert security.cookie_name == "user_session"
    assert security.login_code_length == 4


def test_storage_layout_is_created(tmp_path):
    config = RemoteAccessConfig(storage=StorageConfig(base_dir=tmp_path / "data"))

    for path in (
        config.storage.static_path,
        config.storage.sessions_path,
        config.storage.tls_path,
        config.storage.downloads_path,
        config.storage.logs_path,
    ):
        assert path.is_dir()
    assert config.storage.uploads_path == tmp_path / "data" / "uploads"


def test_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("REMOTE_ACCESS_DATA_DIR", str(tmp_path / "env"))
    monkeypatch.setenv("REMOTE_ACCESS_HTTP_PORT", "9090")
    monkeypatch.setenv("REMOTE_ACCESS_TLS", "false")
    monkeypatch.setenv("REMOTE_ACCESS_SESSION_MAX_AGE", "60")
    monkeypatch.setenv("REMOTE_ACCESS_UPLOADS_DIR", str(tmp_path / "inbox"))

    config = RemoteAccessConfig.from_env()

    assert config.server.http_port == 9090
    assert config.server.tls_enabled is False
    assert config.security.session_max_age == 60
    assert config.storage.base_dir == tmp_path / "env"
    assert config.storage.uploads_path == tmp_path / "inbox"


def test_set_config_replaces_singleton(config):
    assert get_config() is config
    other = RemoteAccessConfig(storage=config.storage)
    set_config(other)
    assert get_config() is other


def test_setup_logging_writes_to_logs_dir(tmp_path):
    config = RemoteAccessConfig(
        storage=StorageConfig(base_dir=tmp_path / "data"),
        log=LogConfig(level="DEBUG", file_name="test.log"),
    )
    root = logging.getLogger()
    saved = root.handlers[:], root.level
    try:
        setup_logging(config)
        logging.getLogger("remoteaccess.test").info("hello from the test")
        for handler in root.handlers:
            handler.flush()
        assert "hello from the test" in (config.storage.logs_path / "test.log").read_text()
    finally:
        for handler in root.handlers:
            if handler not in saved[0]:
                handler.close()
        root.handlers[:] = saved[0]
        root.setLevel(saved[1])


# --- JsonSettings ---

def test_settings_persist_across_instances(tmp_path):
    path = tmp_path / "settings.json"
    settings = JsonSettings(path)
    settings.put(PLAYBACK_CONTROL, False)
    settings.put("name", "living room")

    reopened = JsonSettings(path)

    assert reopened.get_bool(PLAYBACK_CONTROL, True) is False
    assert reopened.get_string("name") == "living room"
    assert json.loads(path.read_text())["name"] == "living room"


def test_settings_typed_getters_fall_back_on_wrong_type(tmp_path):
    settings = JsonSettings(tmp_path / "settings.json")
    settings.put("flag", "yes")
    settings.put("text", 3)

    assert settings.get_bool("flag", True) is True
    assert settings.get_string("text", "dflt") == "dflt"
    assert settings.get("text") == 3


def test_settings_remove(tmp_path):
    settings = JsonSettings(tmp_path / "settings.json")
    settings.put("key", "value")
    settings.remove("key")
    settings.remove("missing")

    assert settings.get_string("key") == ""
    assert JsonSettings(tmp_path / "settings.json").get("key") is None


def test_unreadable_settings_start_empty(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text("{not json")

    settings = JsonSettings(path)

    assert settings.get("anything") is None
    settings.put("anything", 1)
    assert json.loads(path.read_text()) == {"anything": 1}
