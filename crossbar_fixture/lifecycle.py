from dataclasses import dataclass, field
from enum import Enum
from logging import getLogger

from .config import Settings
from .connector import WebSocketConnector
from .errors import CrossbarFixtureError, StopTimeout, UnexpectedRemoteClose
from .events import EventManager, RemoteClosed, SuiteFinished
from .process import ProcessHandle
from .utils import run_command


logger = getLogger(__name__)


class HandlerState(Enum):
    UNINITIALIZED = 'uninitialized'
    STARTING = 'starting'
    RUNNING = 'running'
    STOPPED = 'stopped'
    FAILED = 'failed'


@dataclass
class LifecycleState:
    handle: ProcessHandle
    executable: str
    arguments: list = field(default_factory=list)
    exit_status: int | None = None


class LifecycleHandler:
    """Keeps a crossbar router alive for the duration of a test run.

    ``init`` starts the router and waits for it, ``SuiteFinished`` or
    ``teardown`` stop it, and an unexpected router exit while running is
    raised as ``UnexpectedRemoteClose`` so the event manager drops the
    handler.

    The router is stopped twice over: the ``<executable> stop`` command asks
    it to shut down, then the spawned process is signalled and its exit
    confirmed. The two paths are not synchronised with each other.
    """

    STOP_DIRECTIVE = 'stop'

    def __init__(self, settings: Settings, *, connector=None, run_command=run_command, notify=None):
        self.settings = settings
        self.connector = connector or WebSocketConnector()
        self.run_command = run_command
        self.notify = notify
        self.status = HandlerState.UNINITIALIZED
        self.state: LifecycleState | None = None

    def __repr__(self):
        return f'<LifecycleHandler {self.status.name}>'

    def init(self, options=None):
        if self.status is not HandlerState.UNINITIALIZED:
            raise RuntimeError(f'handler already initialized (state {self.status.name})')

        options = options or {}
        process_settings = self.settings.process
        executable = options.get('executable', process_settings.executable)
        arguments = list(options.get('arguments', process_settings.arguments))

        self.status = HandlerState.STARTING
        logger.debug(f'Starting crossbar: {[executable] + arguments}')
        try:
            handle = ProcessHandle.start(
                executable,
                arguments,
                self.settings.connection,
                connector=self.connector,
                interval_ms=process_settings.readiness_interval_ms,
                max_retries=process_settings.readiness_retries,
                framed=process_settings.framed,
                on_exit=self._on_process_exit,
            )
        except Exception:
            self.status = HandlerState.FAILED
            raise

        self.state = LifecycleState(handle=handle, executable=executable, arguments=arguments)
        self.status = HandlerState.RUNNING
        logger.info(f'Crossbar started at {self.settings.connection.uri}')
        return self.state

    def on_event(self, event):
        if isinstance(event, SuiteFinished):
            self._stop_managed_process()

    def on_notification(self, message):
        if isinstance(message, RemoteClosed):
            if self.status is HandlerState.RUNNING:
                raise UnexpectedRemoteClose(message.reason)
            logger.debug(f'Ignoring {message!r} in state {self.status.name}')
            return
        logger.debug(f'Info: {message!r}')

    def teardown(self, reason):
        logger.warning(f'Terminating due to: {reason}')
        self._stop_managed_process()

    def _on_process_exit(self, returncode):
        # Runs on the exit-watch thread: only hand the news over, never touch state here.
        if self.notify is not None:
            self.notify(RemoteClosed(f'exit code {returncode}'))

    def _stop_managed_process(self):
        if self.status is not HandlerState.RUNNING:
            return
        self.status = HandlerState.STOPPED

        state = self.state
        process_settings = self.settings.process
        state.handle.expect_exit()

        argv = [state.executable, self.STOP_DIRECTIVE] + state.arguments
        try:
            result = self.run_command(argv, timeout=process_settings.shutdown_timeout_ms / 1000.0)
        except CrossbarFixtureError as e:
            logger.error(f'Stop command {argv} failed: {e}')
        else:
            state.exit_status = result.returncode
            logger.debug(f'Exited crossbar [status: {result.returncode}] -- {result.output!r}')

        try:
            state.handle.stop(process_settings.stop_timeout_ms)
        except StopTimeout as e:
            logger.warning(f'Stop requested but unconfirmed: {e}')


def start_fixture(settings: Settings, options=None, connector=None) -> EventManager:
    """Start an event manager with a LifecycleHandler installed.

    Returns once the router accepts connections. Stop everything with
    ``manager.stop()``; if the owner never gets there, the manager is
    stopped at interpreter exit.
    """
    manager = EventManager().stop_at_exit(settings.process.shutdown_timeout_ms)
    handler = LifecycleHandler(settings, connector=connector, notify=manager.send_notification)
    try:
        manager.add_handler(handler, options)
    except Exception:
        manager.stop(settings.process.shutdown_timeout_ms)
        raise
    return manager
