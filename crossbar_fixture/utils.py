import signal
import subprocess
from dataclasses import dataclass
from logging import getLogger

from .errors import SpawnFailure, StopTimeout

logger = getLogger(__name__)


class GracefulKiller:
    kill_now = False

    def __init__(self):
        signal.signal(signal.SIGINT, self.exit_gracefully)
        signal.signal(signal.SIGTERM, self.exit_gracefully)

    def exit_gracefully(self, signum, frame):
        self.kill_now = True


@dataclass(frozen=True)
class CommandResult:
    returncode: int
    output: str


def run_command(argv, timeout=None) -> CommandResult:
    """Run ``argv`` to completion, capturing stdout and stderr together."""
    logger.debug(f"Running command: {argv}")
    try:
        completed = subprocess.run(
            argv,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            universal_newlines=True,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired as e:
        raise StopTimeout(f"command {argv} did not finish in {timeout}s") from e
    except OSError as e:
        raise SpawnFailure(f"failed to run {argv}: {e}") from e
    return CommandResult(returncode=completed.returncode, output=completed.stdout or "")
