import importlib.metadata

from .config import ConnectionConfig, ProcessSettings, Settings, get_uri
from .errors import (
    CrossbarFixtureError,
    OtherConnectError,
    ReadinessFailure,
    ReadinessTimeout,
    SpawnFailure,
    StopTimeout,
    UnexpectedRemoteClose,
)
from .events import EventManager, Other, RemoteClosed, SuiteFinished
from .lifecycle import HandlerState, LifecycleHandler, LifecycleState, start_fixture
from .main import main
from .process import ProcessHandle
from .readiness import ReadinessOutcome, ReadinessStatus, await_ready

try:
    __version__ = importlib.metadata.version("crossbar-fixture")
except importlib.metadata.PackageNotFoundError:
    __version__ = "unknown"  # fallback version
