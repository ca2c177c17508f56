"""Pytest configuration for the remote access server."""
import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(__file__))

from remoteaccess.base.config import RemoteAccessConfig, ServerConfig, StorageConfig, set_config  # noqa: E402
from remoteaccess.base.settings import JsonSettings  # noqa: E402


@pytest.fixture
def config(tmp_path):
    cfg = RemoteAccessConfig(
        server=ServerConfig(host="127.0.0.1", http_port=0, https_port=0, startup_timeout=10.0),
        storage=StorageConfig(base_dir=tmp_path / "data"),
    )
    set_config(cfg)
    return cfg


@pytest.fixture
def settings(config):
    return JsonSettings(config.storage.settings_path)
