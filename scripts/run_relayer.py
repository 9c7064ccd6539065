#!/usr/bin/env python3
"""
Relayer runner.

By default the runner supervises: it starts the relayer as a child process
and restarts it after ``restart_delay_seconds`` whenever it exits with a
non-zero code. ``--child`` runs the relayer in this process; ``--once`` runs
a single discovery and execution pass and exits.

Usage:
    SAVINGS_RELAYER_KEY=0x... python scripts/run_relayer.py
"""

import argparse
import signal
import subprocess
import sys
import time
from pathlib import Path

# Add the project root to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import structlog

from savings_app.config.loader import ConfigLoader
from savings_app.engine import SavingsRelayerEngine
from savings_app.errors import ConfigurationError
from savings_app.logging.config import configure_from_params

logger = structlog.get_logger("savings.runner")


def run_relayer(config_dir, once: bool) -> int:
    try:
        engine = SavingsRelayerEngine(config_dir=config_dir, setup_logging=True)
    except ConfigurationError as e:
        logger.error("Relayer configuration invalid", error=str(e), errors=e.errors)
        return 2

    if once:
        summary = engine.run_once()
        engine.stop()
        logger.info("Single pass complete", **summary)
        return 0

    def _shutdown(signum, frame):
        logger.info("Shutdown requested", signal=signum)
        engine.scheduler.request_stop()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    engine.start()
    engine.scheduler.wait()
    engine.stop()
    return 0


def supervise(config_dir, restart_delay: float) -> int:
    command = [sys.executable, str(Path(__file__).resolve()), "--child"]
    if config_dir:
        command += ["--config-dir", str(config_dir)]

    while True:
        logger.info("Starting relayer process")
        child = subprocess.Popen(command)
        try:
            code = child.wait()
        except KeyboardInterrupt:
            child.send_signal(signal.SIGTERM)
            return child.wait()

        logger.info("Relayer process exited", exit_code=code)
        if code == 0:
            return 0
        logger.info("Restarting relayer", delay_seconds=restart_delay)
        time.sleep(restart_delay)


def main():
    parser = argparse.ArgumentParser(description="Run the savings relayer")
    parser.add_argument("--config-dir", type=Path, default=None)
    parser.add_argument("--child", action="store_true", help="Run without supervision")
    parser.add_argument("--once", action="store_true", help="Single pass, then exit")
    args = parser.parse_args()

    if args.child or args.once:
        sys.exit(run_relayer(args.config_dir, args.once))

    config = ConfigLoader.create(args.config_dir).load()
    configure_from_params(config.logging)
    sys.exit(supervise(args.config_dir, config.relayer.restart_delay_seconds))


if __name__ == "__main__":
    main()
