# Make `import core.*`, `import utils.*` and `import main` work when the
# project is not installed and tests are collected from their own folders.
import logging
import os
import sys

import pytest

PROJECT_ROOT = os.path.dirname(__file__)

if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)


@pytest.fixture
def app_home(tmp_path, monkeypatch):
    """Redirect the app data directory (config, logs) into a temp folder"""
    monkeypatch.setenv("LINKRELAY_HOME", str(tmp_path))
    return tmp_path


@pytest.fixture
def restore_root_logging():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield root
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)
