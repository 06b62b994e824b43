#!/usr/bin/env python3

import argparse
import logging
import sys
import time
from dataclasses import replace

from .config import Settings
from .connector import WebSocketConnector
from .errors import CrossbarFixtureError, ReadinessFailure, StopTimeout
from .events import SuiteFinished
from .lifecycle import LifecycleHandler, start_fixture
from .readiness import await_ready
from .utils import GracefulKiller, run_command


def set_logging_config(tags, log_level_str=None):
    """Configure logging to output only to stderr."""
    handlers = [logging.StreamHandler(sys.stderr)]

    log_levels = {
        'critical': logging.CRITICAL,
        'error': logging.ERROR,
        'warning': logging.WARNING,
        'info': logging.INFO,
        'debug': logging.DEBUG,
    }

    log_level = log_levels.get(log_level_str)
    if log_level is None:
        logging.warning(f'Unknown log level {log_level_str}, setting info')
        log_level = logging.INFO

    logging.basicConfig(
        level=log_level,
        format=f'[{tags} %(asctime)s %(levelname)8s] %(message)s',
        handlers=handlers,
    )


def run_start(args, config: Settings):
    set_logging_config('crossbar', log_level_str=config.log_level)
    try:
        manager = start_fixture(config)
    except ReadinessFailure as e:
        if e.process is not None and e.process.poll() is None:
            logging.warning(f'Killing unreachable crossbar process {e.process.pid}')
            e.process.kill()
        logging.critical(f'Crossbar failed to start: {e}')
        return 1
    except CrossbarFixtureError as e:
        logging.critical(f'Crossbar failed to start: {e}')
        return 1

    logging.info(f'Crossbar ready at {config.uri} (realm {config.realm}), press Ctrl+C to stop')
    killer = GracefulKiller()
    while not killer.kill_now and manager.handlers:
        time.sleep(0.5)

    # The handler is only removed early when the router went away
    router_lost = not manager.handlers
    if router_lost:
        logging.critical('Crossbar exited unexpectedly')

    manager.notify(SuiteFinished())
    try:
        manager.stop(config.process.shutdown_timeout_ms)
    except StopTimeout as e:
        logging.error(f'Crossbar shutdown unconfirmed: {e}')
        return 1
    return 1 if router_lost else 0


def run_stop(args, config: Settings):
    set_logging_config('crossbar', log_level_str=config.log_level)
    argv = [config.process.executable, LifecycleHandler.STOP_DIRECTIVE] + config.process.arguments
    try:
        result = run_command(argv, timeout=config.process.shutdown_timeout_ms / 1000.0)
    except CrossbarFixtureError as e:
        logging.error(f'Stop command failed: {e}')
        return 1
    logging.info(f'Exited crossbar [status: {result.returncode}] -- {result.output!r}')
    return result.returncode


def run_wait(args, config: Settings):
    set_logging_config('crossbar', log_level_str=config.log_level)
    outcome = await_ready(
        WebSocketConnector(),
        config.connection,
        config.process.readiness_interval_ms,
        config.process.readiness_retries,
    )
    if outcome.is_ready:
        logging.info(f'{config.uri} ready after {outcome.attempts} attempt(s)')
        return 0
    logging.error(f'{config.uri} not ready: {outcome.status.value} {outcome.reason or ""}'.rstrip())
    return 1


def run_uri(args, config: Settings):
    print(config.uri, flush=True)
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(prog='crossbar-fixture')
    parser.add_argument(
        "mode", help="run mode",
        type=str,
        choices=["start", "stop", "wait", "uri"])
    parser.add_argument("--config", help="config file path", default=None, type=str)
    parser.add_argument("--executable", help="crossbar executable, overrides config", type=str)
    parser.add_argument("--cbdir", help="crossbar node directory, overrides config", type=str)
    parser.add_argument(
        "--log-level", type=str, default=None,
        choices=["critical", "error", "warning", "info", "debug"],
        help="overrides log_level from config",
    )
    args = parser.parse_args(argv)

    config = Settings.load(args.config)
    process_overrides = {}
    if args.executable:
        process_overrides['executable'] = args.executable
    if args.cbdir:
        process_overrides['cbdir'] = args.cbdir
    config = replace(config, process=replace(config.process, **process_overrides))
    if args.log_level:
        config = replace(config, log_level=args.log_level)
    config.validate()

    modes = {
        'start': run_start,
        'stop': run_stop,
        'wait': run_wait,
        'uri': run_uri,
    }
    return modes[args.mode](args, config)


if __name__ == '__main__':
    sys.exit(main())
