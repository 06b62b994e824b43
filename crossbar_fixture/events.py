"""Test-run events and the dispatcher that delivers them to handlers.

Handlers implement four plain methods::

    init(options)              -> state, raises on failure
    on_event(event)            -> test-run milestones (SuiteFinished, Other)
    on_notification(message)   -> process-originated messages (RemoteClosed, Other)
    teardown(reason)           -> called once when the handler is removed

The EventManager calls them from a single dispatcher thread, in the order
events were posted, so a handler never sees two callbacks at once.
"""

import atexit
import queue
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from logging import getLogger
from typing import Any

from .errors import CrossbarFixtureError, StopTimeout


logger = getLogger(__name__)


@dataclass(frozen=True)
class SuiteFinished:
    exit_status: int | None = None


@dataclass(frozen=True)
class RemoteClosed:
    reason: str


@dataclass(frozen=True)
class Other:
    payload: Any = None


_STOP = object()


class EventManager:

    def __init__(self, name='crossbar-events'):
        self.name = name
        self.handlers = []
        self.queue: queue.Queue = queue.Queue()
        self.dispatch_thread = None
        self.stopped = False
        self.exit_guard = None

    def start(self):
        if self.stopped:
            raise RuntimeError(f'{self.name} is stopped')
        if self.dispatch_thread is not None:
            return self
        self.dispatch_thread = threading.Thread(
            target=self._dispatch_loop,
            daemon=True,
            name=self.name,
        )
        self.dispatch_thread.start()
        return self

    def add_handler(self, handler, options=None):
        """Run ``handler.init(options)`` on the dispatcher thread and install it.

        Blocks until init returns; an init error is re-raised here unchanged
        and the handler is not installed.
        """
        self.start()
        future = Future()
        self.queue.put(('add', (handler, options, future)))
        return future.result()

    def notify(self, event):
        self.queue.put(('event', event))

    def send_notification(self, message):
        self.queue.put(('notification', message))

    def is_running(self):
        return self.dispatch_thread is not None and self.dispatch_thread.is_alive()

    def stop_at_exit(self, timeout_ms=10000):
        """Stop the manager when the interpreter exits, unless stopped earlier.

        The dispatcher is a daemon thread, so an owner that raises or returns
        without ``stop()`` still gets its handlers torn down.
        """
        if self.exit_guard is None:
            self.exit_guard = self._stop_on_exit
            atexit.register(self.exit_guard, timeout_ms)
        return self

    def _stop_on_exit(self, timeout_ms):
        self.exit_guard = None
        if not self.is_running():
            return
        logger.warning(f'{self.name} still running at exit, stopping it')
        try:
            self.stop(timeout_ms)
        except StopTimeout as e:
            logger.error(f'{e}')

    def __enter__(self):
        return self.start()

    def __exit__(self, exc_type, exc, tb):
        self.stop()

    def stop(self, timeout_ms=10000):
        """Tear down all handlers after already queued events, then exit.

        Raises StopTimeout if the dispatcher does not finish in time.
        """
        if self.exit_guard is not None:
            atexit.unregister(self.exit_guard)
            self.exit_guard = None
        if not self.is_running():
            return
        self.stopped = True
        self.queue.put(('stop', _STOP))
        self.dispatch_thread.join(timeout_ms / 1000.0)
        if self.dispatch_thread.is_alive():
            raise StopTimeout(f'{self.name} did not stop within {timeout_ms}ms')

    def _dispatch_loop(self):
        while True:
            kind, payload = self.queue.get()
            if kind == 'stop':
                for handler in list(self.handlers):
                    self._remove_handler(handler, 'stop')
                return
            if kind == 'add':
                self._install(*payload)
            elif kind == 'event':
                self._deliver(payload, 'on_event')
            elif kind == 'notification':
                self._deliver(payload, 'on_notification')

    def _install(self, handler, options, future):
        try:
            state = handler.init(options)
        except Exception as e:
            future.set_exception(e)
            return
        self.handlers.append(handler)
        future.set_result(state)

    def _deliver(self, message, callback_name):
        for handler in list(self.handlers):
            try:
                getattr(handler, callback_name)(message)
            except CrossbarFixtureError as e:
                logger.error(f'Handler {handler!r} failed on {message!r}: {e}')
                self._remove_handler(handler, e)
            except Exception as e:
                logger.error(f'Handler {handler!r} crashed on {message!r}: {e}', exc_info=True)
                self._remove_handler(handler, e)

    def _remove_handler(self, handler, reason):
        self.handlers.remove(handler)
        try:
            handler.teardown(reason)
        except Exception as e:
            logger.warning(f'Teardown of {handler!r} failed: {e}', exc_info=True)
