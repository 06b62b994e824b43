import os
import subprocess
import threading
from logging import getLogger

from .config import ConnectionConfig
from .connector import WebSocketConnector
from .errors import (
    OtherConnectError,
    ReadinessFailure,
    ReadinessTimeout,
    SpawnFailure,
    StopTimeout,
)
from .framing import iter_frames
from .readiness import ReadinessStatus, await_ready


logger = getLogger(__name__)


class ProcessHandle:
    """Owns one spawned router process.

    Two daemon threads are attached to the process: one forwards its combined
    stdout/stderr to the logger, the other waits for it to exit and records
    the exit code. ``stop`` blocks on the latter instead of polling.
    """

    START_DIRECTIVE = 'start'

    def __init__(self, executable, arguments, framed=False, on_exit=None):
        self.executable = executable
        self.arguments = list(arguments)
        self.framed = framed
        self.on_exit = on_exit
        self.process = None
        self.pid = None
        self.returncode = None
        self.log_forwarding_thread = None
        self.exit_watch_thread = None
        self._popen = None
        self._exited = threading.Event()
        self._exit_expected = False

    @property
    def cmd(self):
        return [self.executable, self.START_DIRECTIVE] + self.arguments

    @classmethod
    def start(
        cls,
        executable,
        arguments,
        config: ConnectionConfig,
        *,
        connector=None,
        interval_ms=250,
        max_retries=40,
        framed=False,
        on_exit=None,
    ):
        """Spawn the router and block until it accepts connections.

        Raises:
            SpawnFailure: the executable could not be launched
            ReadinessTimeout: no connection within the retry budget
            OtherConnectError: the handshake failed for another reason
            ReadinessFailure: the process exited before becoming ready

        Readiness errors leave the process running and carry it as
        ``error.process``.
        """
        handle = cls(executable, arguments, framed=framed, on_exit=on_exit)
        handle.spawn()

        outcome = await_ready(
            connector or WebSocketConnector(),
            config,
            interval_ms,
            max_retries,
            should_abort=handle.exit_reason,
        )
        if outcome.is_ready:
            logger.debug(f'Crossbar started (pid {handle.pid}).')
            return handle

        # The caller gets the process through the error; this handle is abandoned.
        handle.on_exit = None
        process = handle.process
        if outcome.status is ReadinessStatus.TIMED_OUT:
            raise ReadinessTimeout(
                f'crossbar not reachable at {config.uri} after {outcome.attempts} attempt(s)',
                process=process,
            )
        if handle.exit_reason() is not None:
            raise ReadinessFailure(outcome.reason, process=process)
        raise OtherConnectError(outcome.reason, process=process)

    def spawn(self):
        if self.process is not None:
            raise RuntimeError(f'process {self.pid} already spawned')
        logger.debug(f'Starting crossbar: {self.cmd}')
        try:
            self._popen = subprocess.Popen(
                self.cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,  # Combine stderr with stdout
                start_new_session=True,
                cwd=os.getcwd(),
            )
        except OSError as e:
            logger.error(f'Failed to start process {self.cmd}: {e}')
            raise SpawnFailure(f'failed to start {self.cmd}: {e}') from e

        self.process = self._popen
        self.pid = self._popen.pid
        logger.debug(f'Started process {self.pid}: {self.cmd}')

        self.log_forwarding_thread = threading.Thread(
            target=self._forward_logs,
            args=(self._popen,),
            daemon=True,
            name=f'LogForwarder-{self.pid}',
        )
        self.log_forwarding_thread.start()

        self.exit_watch_thread = threading.Thread(
            target=self._watch_exit,
            args=(self._popen,),
            daemon=True,
            name=f'ExitWatch-{self.pid}',
        )
        self.exit_watch_thread.start()

    def _forward_logs(self, process):
        """Forward subprocess output to the logger in real-time."""
        stream = process.stdout
        try:
            if self.framed:
                for frame in iter_frames(stream):
                    logger.info(f'[crossbar] frame {frame!r}')
                return
            for line in iter(stream.readline, b''):
                clean_line = line.decode('utf-8', errors='replace').strip()
                if clean_line:
                    logger.info(f'[crossbar] {clean_line}')
        except (OSError, ValueError, EOFError) as e:
            logger.debug(f'Error forwarding logs for {process.pid}: {e}')

    def _watch_exit(self, process):
        returncode = process.wait()
        self.returncode = returncode
        self._exited.set()

        if self._exit_expected:
            logger.debug(f'Crossbar process {process.pid} exited with code {returncode}')
            return

        logger.warning(f'Crossbar process {process.pid} exited unexpectedly with code {returncode}')
        on_exit = self.on_exit
        if on_exit is None:
            return
        try:
            on_exit(returncode)
        except Exception as e:
            logger.warning(f'Exit callback for process {process.pid} failed: {e}', exc_info=True)

    def exit_reason(self):
        if not self._exited.is_set():
            return None
        return f'crossbar exited with code {self.returncode} before accepting connections'

    def expect_exit(self):
        """Mark the coming exit as requested so it is not reported."""
        self._exit_expected = True

    def is_alive(self):
        return self._popen is not None and not self._exited.is_set()

    def stop(self, timeout_ms=1000):
        """Request normal termination and wait for the exit to be confirmed.

        Returns the exit code, or None if the handle was already stopped.
        Raises StopTimeout when no exit is seen within ``timeout_ms``; the
        termination request stays in effect.
        """
        process = self.process
        if process is None:
            return None

        self._exit_expected = True
        try:
            if not self._exited.is_set():
                try:
                    process.terminate()
                except ProcessLookupError:
                    pass
            if not self._exited.wait(timeout_ms / 1000.0):
                raise StopTimeout(
                    f'crossbar process {self.pid} did not confirm exit within {timeout_ms}ms'
                )
            logger.debug(f'Crossbar process {self.pid} stopped with code {self.returncode}')
            return self.returncode
        finally:
            self.process = None
            if self._exited.is_set() and self.log_forwarding_thread is not None:
                self.log_forwarding_thread.join(timeout=1.0)

    def kill(self):
        """Forcibly terminate the process, e.g. one left over by a failed start."""
        if not self.is_alive():
            return
        self._exit_expected = True
        logger.warning(f'Killing crossbar process {self.pid}')
        try:
            self._popen.kill()
        except ProcessLookupError:
            pass
