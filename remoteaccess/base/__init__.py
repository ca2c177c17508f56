# ============================================================================
# remoteaccess/base/__init__.py
# Base Package - configuration and settings shared by every component
# ============================================================================
#
# KEY MODULES:
# - **config.py**: RemoteAccessConfig dataclasses, env loading, logging setup
# - **settings.py**: key/value settings store (feature toggles, persisted secrets)
#
# ============================================================================
