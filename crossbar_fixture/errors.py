"""Errors raised while starting, watching and stopping the managed router."""


class CrossbarFixtureError(Exception):
    pass


class SpawnFailure(CrossbarFixtureError):
    """The router executable is missing or could not be launched."""


class ReadinessFailure(CrossbarFixtureError):
    """The router was spawned but never became reachable.

    The spawned process is left running; ``process`` holds it so the caller
    can decide whether to kill it.
    """

    def __init__(self, message, process=None):
        super().__init__(message)
        self.process = process


class ReadinessTimeout(ReadinessFailure):
    pass


class OtherConnectError(ReadinessFailure):
    """A handshake failure that is not worth retrying."""


class StopTimeout(CrossbarFixtureError):
    """Stop was requested but the exit was not confirmed in time.

    This does not mean the process is still running, only that nobody saw it go.
    """


class UnexpectedRemoteClose(CrossbarFixtureError):
    def __init__(self, reason):
        super().__init__(f"managed router closed unexpectedly: {reason}")
        self.reason = reason
