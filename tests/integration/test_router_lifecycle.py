"""End-to-end lifecycle against a stand-in router speaking WebSocket"""

import subprocess
import sys
import time
from pathlib import Path

import pytest
import yaml
from websockets.sync.client import connect

from crossbar_fixture.errors import ReadinessFailure
from crossbar_fixture.events import SuiteFinished
from crossbar_fixture.lifecycle import HandlerState, start_fixture
from tests.utils.fakes import node_pid, pid_alive, stop_calls, write_node_config


def wait_until(predicate, timeout=10.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.05)
    return predicate()


@pytest.fixture
def router_settings(make_settings, cbdir, free_port):
    write_node_config(cbdir, port=free_port, listen_delay=0.3)
    return make_settings(port=free_port)


@pytest.mark.integration
def test_start_serve_and_stop(router_settings, cbdir, spawned_processes):
    manager = start_fixture(router_settings)
    handler = manager.handlers[0]
    handle = handler.state.handle
    spawned_processes.append(handle.process)

    assert handler.status is HandlerState.RUNNING
    with connect(router_settings.uri, subprotocols=["wamp.2.json"]) as websocket:
        assert websocket.subprotocol == "wamp.2.json"

    manager.notify(SuiteFinished(exit_status=0))
    manager.stop(timeout_ms=router_settings.process.shutdown_timeout_ms)

    assert handler.status is HandlerState.STOPPED
    assert stop_calls(cbdir) == 1
    assert handler.state.exit_status == 0
    assert not handle.is_alive()


@pytest.mark.integration
def test_teardown_without_suite_finished(router_settings, cbdir, spawned_processes):
    manager = start_fixture(router_settings)
    handle = manager.handlers[0].state.handle
    spawned_processes.append(handle.process)

    manager.stop(timeout_ms=router_settings.process.shutdown_timeout_ms)

    assert stop_calls(cbdir) == 1
    assert not handle.is_alive()


@pytest.mark.integration
def test_router_crash_surfaces_as_handler_error(router_settings, cbdir, spawned_processes, caplog):
    manager = start_fixture(router_settings)
    handler = manager.handlers[0]
    handle = handler.state.handle
    spawned_processes.append(handle.process)

    handle.process.kill()

    assert wait_until(lambda: not manager.handlers)
    # Queued behind the teardown
    manager.stop(timeout_ms=router_settings.process.shutdown_timeout_ms)

    assert handler.status is HandlerState.STOPPED
    assert "managed router closed unexpectedly" in caplog.text
    # Teardown still asked the (dead) router to stop
    assert stop_calls(cbdir) == 1


@pytest.mark.integration
def test_start_failure_reported(make_settings, cbdir, free_port, spawned_processes):
    write_node_config(cbdir, exit_code=1)
    settings = make_settings(port=free_port)

    with pytest.raises(ReadinessFailure, match="exited with code 1") as exc_info:
        start_fixture(settings)
    spawned_processes.append(exc_info.value.process)

    assert stop_calls(cbdir) == 0

OWNER_SCRIPT = """
import sys

from crossbar_fixture.config import Settings
from crossbar_fixture.lifecycle import start_fixture

manager = start_fixture(Settings.load(sys.argv[1]))
print("owner started router", flush=True)
raise RuntimeError("owner crashed")
"""


@pytest.mark.integration
def test_router_stopped_when_owner_crashes(tmp_path, fake_router, cbdir, free_port):
    write_node_config(cbdir, port=free_port)
    config_file = tmp_path / "owner.yaml"
    config_file.write_text(yaml.safe_dump({
        "connection": {"host": "127.0.0.1", "port": free_port},
        "process": {
            "executable": fake_router,
            "cbdir": str(cbdir),
            "readiness_interval_ms": 20,
            "readiness_retries": 250,
        },
    }))

    result = subprocess.run(
        [sys.executable, "-c", OWNER_SCRIPT, str(config_file)],
        cwd=str(Path(__file__).resolve().parents[2]),
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        universal_newlines=True,
        timeout=30,
    )

    assert result.returncode == 1, result.stdout
    assert "owner started router" in result.stdout
    assert "owner crashed" in result.stdout
    assert stop_calls(cbdir) == 1
    assert wait_until(lambda: not pid_alive(node_pid(cbdir)))
