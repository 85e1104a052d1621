"""Background daemon process, launched by ``bb server start``.

Runs a keep-alive loop until SIGTERM/SIGINT and removes its PID marker on
the way out. Settings arrive through BB_DATA_DIR and BB_TESTNET.
"""
import asyncio
import os
from pathlib import Path

from .config import CliConfig
from .logging_setup import logger, setup_logging
from .server import get_pid_file_path, read_pid, remove_pid
from .watch import install_shutdown_handler

KEEPALIVE_SECONDS = 30.0


async def run_daemon(data_dir: Path, keepalive: float = KEEPALIVE_SECONDS) -> None:
    stop_event = asyncio.Event()
    install_shutdown_handler(stop_event.set, loop=asyncio.get_running_loop())
    logger.info(f"Daemon started | pid={os.getpid()} data_dir={data_dir}")
    try:
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=keepalive)
            except asyncio.TimeoutError:
                logger.debug("Daemon keep-alive tick")
    finally:
        # only remove the marker if it still names this process
        if read_pid(data_dir) == os.getpid():
            remove_pid(data_dir)
        logger.info("Daemon stopped")


def main() -> None:
    config = CliConfig.from_env()
    data_dir = config.vault.path
    setup_logging(
        log_file=str(data_dir / "server.log"),
        level="INFO",
        enable_console=False,
    )
    logger.debug(f"PID marker at {get_pid_file_path(data_dir)}")
    asyncio.run(run_daemon(data_dir))


if __name__ == "__main__":
    main()
