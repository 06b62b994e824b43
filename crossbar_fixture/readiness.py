import time
from dataclasses import dataclass
from enum import Enum
from logging import getLogger
from typing import Any, Callable

from .config import ConnectionConfig
from .errors import OtherConnectError


logger = getLogger(__name__)


class ReadinessStatus(Enum):
    READY = 'ready'
    TIMED_OUT = 'timed_out'
    FAILED = 'failed'


@dataclass(frozen=True)
class ReadinessOutcome:
    status: ReadinessStatus
    attempts: int = 0
    reason: str | None = None
    connection: Any = None

    @classmethod
    def ready(cls, attempts, connection=None):
        return cls(ReadinessStatus.READY, attempts=attempts, connection=connection)

    @classmethod
    def timed_out(cls, attempts):
        return cls(ReadinessStatus.TIMED_OUT, attempts=attempts)

    @classmethod
    def failed(cls, attempts, reason):
        return cls(ReadinessStatus.FAILED, attempts=attempts, reason=reason)

    @property
    def is_ready(self):
        return self.status is ReadinessStatus.READY


def await_ready(
    connector,
    config: ConnectionConfig,
    interval_ms: int = 250,
    max_retries: int = 40,
    *,
    keep_connection: bool = False,
    should_abort: Callable[[], str | None] | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> ReadinessOutcome:
    """Poll ``connector`` until the router accepts a connection.

    ``max_retries`` is the number of connection attempts. Only a refused
    connection is retried, with ``interval_ms`` between attempts and no sleep
    after the last one. Zero retries makes no attempt at all and reports a
    timeout right away.

    ``should_abort`` is asked after every refused attempt; returning a reason
    stops polling with a failed outcome (e.g. the router process died).

    The probe connection is closed on success unless ``keep_connection`` is
    set, in which case it is handed to the caller in the outcome.
    """
    if interval_ms <= 0:
        raise ValueError(f'interval_ms should be positive, got {interval_ms}')
    if max_retries < 0:
        raise ValueError(f'max_retries should be non-negative, got {max_retries}')

    attempts = 0
    while attempts < max_retries:
        attempts += 1
        try:
            connection = connector.connect(config)
        except ConnectionRefusedError:
            logger.debug(f'{config.uri} refused connection (attempt {attempts}/{max_retries})')
        except OtherConnectError as e:
            logger.debug(f'{config.uri} not usable: {e}')
            return ReadinessOutcome.failed(attempts, str(e))
        else:
            logger.debug(f'{config.uri} accepted connection after {attempts} attempt(s)')
            if not keep_connection:
                connection.close()
                connection = None
            return ReadinessOutcome.ready(attempts, connection)

        if should_abort is not None:
            reason = should_abort()
            if reason is not None:
                return ReadinessOutcome.failed(attempts, reason)

        if attempts < max_retries:
            sleep(interval_ms / 1000.0)

    return ReadinessOutcome.timed_out(attempts)
