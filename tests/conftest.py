"""Shared pytest fixtures for all tests."""

import shutil
import sys
from pathlib import Path

import pytest

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from knx_sync.config import normalize_config  # noqa: E402
from knx_sync.storage.file_store import FileStore  # noqa: E402
from knx_sync.storage.object_store import JsonObjectStore  # noqa: E402


class FakeDatapoint:
    """Datapoint recording reads and writes instead of sending telegrams."""

    def __init__(self, ga, dpt):
        self.ga = ga
        self.dpt = dpt
        self.reads = 0
        self.writes = []
        self.callbacks = []

    def read(self):
        self.reads += 1

    def write(self, value):
        self.writes.append(value)

    def on_change(self, callback):
        self.callbacks.append(callback)

        def unsubscribe():
            if callback in self.callbacks:
                self.callbacks.remove(callback)
        return unsubscribe

    def emit(self, old_value, new_value):
        for callback in list(self.callbacks):
            callback(old_value, new_value)


class FakeConnection:
    def __init__(self, settings, fail_gas):
        self.settings = settings
        self.fail_gas = fail_gas
        self.handlers = None
        self.disconnected = False
        self.datapoints = {}
        self.created = []

    def connect(self, handlers):
        self.handlers = handlers

    def disconnect(self):
        self.disconnected = True

    def create_datapoint(self, ga, dpt):
        if ga in self.fail_gas:
            raise RuntimeError(f"unsupported datapoint {dpt}")
        dp = FakeDatapoint(ga, dpt)
        self.datapoints[ga] = dp
        self.created.append(dp)
        return dp


class FakeBus:
    """Connection factory handing out FakeConnection objects."""

    def __init__(self):
        self.fail_gas = set()
        self.connections = []

    def __call__(self, settings):
        conn = FakeConnection(settings, self.fail_gas)
        self.connections.append(conn)
        return conn

    @property
    def connection(self):
        return self.connections[-1]


@pytest.fixture(scope="session")
def project_root_dir():
    """Return the project root directory."""
    return project_root


@pytest.fixture(scope="session")
def test_data_dir():
    """Return the test data directory."""
    return Path(__file__).parent / "fixtures"


@pytest.fixture
def ets_tree_bytes(test_data_dir):
    return (test_data_dir / "ets_tree_project.json").read_bytes()


@pytest.fixture
def file_store(tmp_path, test_data_dir):
    """File store pre-populated with both project fixtures."""
    files_dir = tmp_path / "files"
    files_dir.mkdir()
    for name in ("ets_tree_project.json", "knxproject_two_level.json"):
        shutil.copy(test_data_dir / name, files_dir / name)
    return FileStore(str(files_dir))


@pytest.fixture
def data_dir(tmp_path):
    return str(tmp_path / "data")


@pytest.fixture
def store():
    """In-memory object store."""
    return JsonObjectStore()


@pytest.fixture
def bus():
    return FakeBus()


@pytest.fixture
def config(tmp_path):
    """Bridge configuration pointing at the fixture project."""
    return normalize_config({
        'gateway_ip': '192.168.1.10',
        'ets_project_file': 'ets_tree_project.json',
        'data_dir': str(tmp_path / "data"),
        'files_dir': str(tmp_path / "files"),
        'store_path': str(tmp_path / "objects.json"),
    })
