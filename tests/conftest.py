"""Shared test fixtures for crossbar-fixture tests"""

import logging

import pytest

from crossbar_fixture.config import ConnectionConfig, ProcessSettings, Settings
from tests.utils.fakes import get_free_port, write_fake_router, write_node_config


@pytest.fixture
def cbdir(tmp_path):
    path = tmp_path / ".crossbar"
    path.mkdir()
    write_node_config(path)
    return path


@pytest.fixture
def fake_router(tmp_path):
    """Path of an executable crossbar look-alike"""
    return write_fake_router(tmp_path)


@pytest.fixture
def free_port():
    return get_free_port()


@pytest.fixture
def make_settings(fake_router, cbdir):
    def _make(port=8080, **process_overrides):
        process = dict(
            executable=fake_router,
            cbdir=str(cbdir),
            readiness_interval_ms=20,
            readiness_retries=250,
            stop_timeout_ms=2000,
            shutdown_timeout_ms=5000,
        )
        process.update(process_overrides)
        return Settings(
            connection=ConnectionConfig(host="127.0.0.1", port=port, path="/ws"),
            process=ProcessSettings(**process),
        )

    return _make


@pytest.fixture
def spawned_processes():
    """Collects Popen objects and kills whatever is still alive after the test"""
    processes = []
    yield processes
    for process in processes:
        if process is not None and process.poll() is None:
            logging.getLogger(__name__).warning(f"killing leftover process {process.pid}")
            process.kill()
            process.wait()
