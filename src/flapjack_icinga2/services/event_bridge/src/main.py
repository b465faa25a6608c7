"""Event bridge service - Icinga 2 event stream to Flapjack."""

import asyncio
import logging
import signal
import sys
from datetime import datetime
from typing import Optional

from .clients.redis_sink import FlapjackRedisSink
from .config.settings import BridgeSettings, load_settings, load_ssl_context
from .errors import ConfigurationError, SinkError
from .health import HealthCheckServer
from .stream_supervisor import StreamSupervisor, SupervisorState
from .utils.logging import setup_logging


logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1


class EventBridgeService:
    """Main service wiring the stream supervisor to the Flapjack sink."""

    def __init__(self, settings: BridgeSettings):
        self.settings = settings
        self.sink: Optional[FlapjackRedisSink] = None
        self.supervisor: Optional[StreamSupervisor] = None
        self.health_server: Optional[HealthCheckServer] = None

    async def start(self) -> int:
        """
        Run the service until shutdown.

        Returns:
            Process exit status: 0 after a requested shutdown, 1 after a
            fatal error
        """
        logger.info("Starting event bridge service")

        try:
            ssl_context = load_ssl_context(self.settings.icinga) if self.settings.icinga.scheme == "https" else False
        except ConfigurationError as e:
            logger.error(f"Error: {e}")
            return EXIT_FATAL

        self.sink = FlapjackRedisSink(self.settings.flapjack)
        try:
            await self.sink.initialize()
        except SinkError as e:
            logger.error(str(e))
            await self.sink.close()
            return EXIT_FATAL

        self.supervisor = StreamSupervisor(self.settings, self.sink, ssl_context=ssl_context)

        # Setup signal handlers
        self._setup_signal_handlers()

        try:
            if self.settings.health.enabled:
                self.health_server = HealthCheckServer(
                    self, host=self.settings.health.host, port=self.settings.health.port
                )
                try:
                    await self.health_server.start()
                except OSError as e:
                    logger.error(f"Could not start health check server: {e}")
                    await self.sink.close()
                    return EXIT_FATAL

            final_state = await self.supervisor.run()
        finally:
            if self.health_server:
                await self.health_server.stop()
            self._remove_signal_handlers()

        if final_state == SupervisorState.FATAL:
            logger.error(f"Event bridge stopped on fatal error: {self.supervisor.last_error}")
            return EXIT_FATAL

        logger.info("Event bridge service stopped")
        return EXIT_OK

    def stop(self):
        """Request a graceful shutdown."""
        if self.supervisor:
            self.supervisor.cancel()

    def _setup_signal_handlers(self):
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        def signal_handler(signum):
            logger.info(f"Received signal {signum}, initiating shutdown")
            self.stop()

        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, signal_handler, signum)

    def _remove_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(signum)

    async def health_check(self) -> dict:
        """Perform health check."""
        health_status = {
            "service": self.settings.service_name,
            "status": "healthy",
            "timestamp": datetime.now().isoformat(),
            "components": {}
        }

        if self.supervisor:
            health_status["components"]["stream_supervisor"] = await self.supervisor.health_check()

        if self.sink:
            health_status["components"]["flapjack_sink"] = await self.sink.health_check()

        # Determine overall health
        component_statuses = [
            comp.get("status", "unknown")
            for comp in health_status["components"].values()
        ]

        if not component_statuses or any(status == "unhealthy" for status in component_statuses):
            health_status["status"] = "unhealthy"
        elif any(status == "degraded" for status in component_statuses):
            health_status["status"] = "degraded"

        return health_status


async def run_service(config_file: Optional[str] = None) -> int:
    """Load settings, configure logging and run the service."""
    try:
        settings = load_settings(config_file)
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FATAL

    setup_logging(settings.logging, service_name=settings.service_name, debug=settings.debug)
    logger.info(f"Booting with config: {settings.summary()}")

    service = EventBridgeService(settings)

    try:
        return await service.start()
    except Exception as e:
        logger.error(f"Service failed: {e}", exc_info=True)
        return EXIT_FATAL


def main():
    """Console entry point."""
    config_file = sys.argv[1] if len(sys.argv) > 1 else None
    sys.exit(asyncio.run(run_service(config_file)))


if __name__ == "__main__":
    main()
