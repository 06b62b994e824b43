"""pytest integration: run a crossbar router for the whole test session.

Enabled with ``pytest --crossbar``. The router is started in
``pytest_sessionstart`` and asked to stop when the session finishes.
"""

from logging import getLogger

import pytest

from .config import Settings
from .errors import CrossbarFixtureError, ReadinessFailure, StopTimeout
from .events import SuiteFinished
from .lifecycle import start_fixture


logger = getLogger(__name__)

_manager_key = pytest.StashKey()
_settings_key = pytest.StashKey()


def pytest_addoption(parser):
    group = parser.getgroup("crossbar")
    group.addoption(
        "--crossbar",
        action="store_true",
        default=False,
        help="Start a crossbar router for the test session",
    )
    group.addoption(
        "--crossbar-config",
        default=None,
        help="crossbar fixture config file (YAML)",
    )


def _load_settings(config):
    settings = config.stash.get(_settings_key, None)
    if settings is None:
        settings = Settings.load(config.getoption("--crossbar-config"))
        config.stash[_settings_key] = settings
    return settings


def pytest_sessionstart(session):
    config = session.config
    if not config.getoption("--crossbar"):
        return

    settings = _load_settings(config)
    try:
        manager = start_fixture(settings)
    except ReadinessFailure as e:
        if e.process is not None and e.process.poll() is None:
            logger.warning(f"Killing unreachable crossbar process {e.process.pid}")
            e.process.kill()
        pytest.exit(f"crossbar failed to start: {e}", returncode=pytest.ExitCode.INTERNAL_ERROR)
    except CrossbarFixtureError as e:
        pytest.exit(f"crossbar failed to start: {e}", returncode=pytest.ExitCode.INTERNAL_ERROR)
    config.stash[_manager_key] = manager


def pytest_sessionfinish(session, exitstatus):
    config = session.config
    manager = config.stash.get(_manager_key, None)
    if manager is None:
        return
    del config.stash[_manager_key]

    manager.notify(SuiteFinished(exit_status=int(exitstatus)))
    try:
        manager.stop(_load_settings(config).process.shutdown_timeout_ms)
    except StopTimeout as e:
        logger.warning(f"crossbar shutdown unconfirmed: {e}")


@pytest.fixture(scope="session")
def crossbar_settings(pytestconfig):
    return _load_settings(pytestconfig)


@pytest.fixture(scope="session")
def crossbar_config(crossbar_settings):
    return crossbar_settings.connection


@pytest.fixture(scope="session")
def crossbar_uri(crossbar_config):
    return crossbar_config.uri


@pytest.fixture(scope="session")
def crossbar_realm(crossbar_settings):
    return crossbar_settings.realm
