import asyncio
import logging
import platform
import signal
import sys

from oce_status.config import POLL_INTERVAL_SECONDS, SERVERS_FILE, ConfigError, load_servers
from oce_status.handlers import ConsoleEventHandler
from oce_status.monitor import StatusMonitor

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%S",
    handlers=[logging.StreamHandler(sys.stdout)],
)
log = logging.getLogger("main")


async def main(servers_file: str = SERVERS_FILE) -> int:
    try:
        servers = load_servers(servers_file)
    except ConfigError as exc:
        log.error("Cannot start: %s", exc)
        return 1

    handler = ConsoleEventHandler()

    async with StatusMonitor(servers, interval=POLL_INTERVAL_SECONDS) as monitor:
        monitor.subscribe(handler.handle)
        loop = asyncio.get_running_loop()

        if platform.system() != "Windows":

            def _shutdown(sig: signal.Signals) -> None:
                log.info("Received %s, shutting down gracefully...", sig.name)
                monitor.stop()

            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, _shutdown, sig)

            # SIGHUP reloads the server list; applies from the next round
            def _reload() -> None:
                try:
                    monitor.set_servers(load_servers(servers_file))
                except ConfigError as exc:
                    log.error("Reload failed, keeping current servers: %s", exc)

            loop.add_signal_handler(signal.SIGHUP, _reload)

        try:
            await monitor.run()
        except (asyncio.CancelledError, KeyboardInterrupt):
            log.info("Shutting down...")
            monitor.stop()

    log.info("Monitor stopped.")
    return 0


def cli() -> None:
    path = sys.argv[1] if len(sys.argv) > 1 else SERVERS_FILE
    sys.exit(asyncio.run(main(path)))


if __name__ == "__main__":
    cli()
