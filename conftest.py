"""Pytest configuration for azdo-agent tests.

CRITICAL: Protects the user's configuration from test modifications.
"""

import shutil
from pathlib import Path

import pytest


@pytest.fixture(scope="session", autouse=True)
def protect_production_config():
    """Protect ~/.azdo-agent/config.toml from being modified by tests.

    Tests should NEVER modify the real config file; the per-test
    ``isolated_config`` fixture redirects ConfigManager to tmp_path. This
    session fixture is the backstop:
    1. Backs up the real config.toml before any tests run
    2. Restores it after all tests complete
    """
    config_path = Path.home() / ".azdo-agent" / "config.toml"
    backup_path = Path.home() / ".azdo-agent" / ".config.toml.pytest-backup"

    config_existed = config_path.exists()
    if config_existed:
        shutil.copy2(config_path, backup_path)
        print(f"\n[PYTEST] Protected config.toml - backup at {backup_path}")

    yield

    if config_existed and backup_path.exists():
        shutil.copy2(backup_path, config_path)
        backup_path.unlink()
        print("\n[PYTEST] Restored config.toml from backup")
    elif backup_path.exists():
        backup_path.unlink()
