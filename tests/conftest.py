"""
Global test fixtures for Just Send tests
"""
import os
import shutil
import tempfile

# Keep config.py from touching the real home directory.
os.environ.setdefault("JUSTSEND_CONFIG_DIR", tempfile.mkdtemp(prefix="justsend_cfg_"))

from pathlib import Path
from typing import Generator

import pytest

from fixtures.fake_channel import LoopbackChannel, ScriptedChannel
from fixtures.fake_relay import RecordingObserver, RecordingRelay


class Identity:
    def __init__(self, name: str) -> None:
        self.name = name


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files"""
    path = Path(tempfile.mkdtemp(prefix="justsend_test_"))
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def observer() -> RecordingObserver:
    return RecordingObserver()


@pytest.fixture
def relay() -> RecordingRelay:
    return RecordingRelay()


@pytest.fixture
def channel_pair():
    """Two open loopback channel ends: (sender side, receiver side)."""
    a, b = LoopbackChannel.pair()
    a.open()
    return a, b


@pytest.fixture
def scripted_channel() -> ScriptedChannel:
    return ScriptedChannel()


@pytest.fixture
def identity_factory():
    return Identity
