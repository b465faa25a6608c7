"""Health check endpoints for the event bridge service."""

import json
import logging
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from aiohttp import web

if TYPE_CHECKING:
    from .main import EventBridgeService


logger = logging.getLogger(__name__)


def _dumps(data) -> str:
    return json.dumps(data, default=str)


class HealthCheckHandler:
    """Health check HTTP handler."""

    def __init__(self, service: "EventBridgeService"):
        self.service = service

    async def health(self, request: web.Request) -> web.Response:
        """Basic health check endpoint."""
        try:
            health_data = await self.service.health_check()
            status = 200 if health_data["status"] == "healthy" else 503
            return web.json_response(health_data, status=status, dumps=_dumps)

        except Exception as e:
            logger.error(f"Health check failed: {e}", exc_info=True)
            return web.json_response(
                {
                    "service": self.service.settings.service_name,
                    "status": "unhealthy",
                    "error": str(e),
                    "timestamp": datetime.now().isoformat()
                },
                status=503
            )

    async def ready(self, request: web.Request) -> web.Response:
        """Readiness check: ready while streaming or reconnecting."""
        try:
            health_data = await self.service.health_check()

            is_ready = health_data["status"] in ["healthy", "degraded"]
            return web.json_response(
                {
                    "ready": is_ready,
                    "status": health_data["status"],
                    "timestamp": datetime.now().isoformat()
                },
                status=200 if is_ready else 503
            )

        except Exception as e:
            logger.error(f"Readiness check failed: {e}", exc_info=True)
            return web.json_response(
                {
                    "ready": False,
                    "status": "unhealthy",
                    "error": str(e),
                    "timestamp": datetime.now().isoformat()
                },
                status=503
            )

    async def live(self, request: web.Request) -> web.Response:
        """Liveness check."""
        return web.json_response(
            {
                "alive": True,
                "timestamp": datetime.now().isoformat()
            },
            status=200
        )


class HealthCheckServer:
    """HTTP server for health check endpoints."""

    def __init__(self, service: "EventBridgeService", host: str = "0.0.0.0", port: int = 8080):
        self.service = service
        self.host = host
        self.port = port
        self.app: Optional[web.Application] = None
        self.runner: Optional[web.AppRunner] = None
        self.site: Optional[web.TCPSite] = None

    def create_app(self) -> web.Application:
        app = web.Application()

        handler = HealthCheckHandler(self.service)
        app.router.add_get('/health', handler.health)
        app.router.add_get('/ready', handler.ready)
        app.router.add_get('/live', handler.live)

        return app

    async def start(self):
        """Start the health check server."""
        logger.info(f"Starting health check server on {self.host}:{self.port}")

        self.app = self.create_app()
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()

        self.site = web.TCPSite(self.runner, self.host, self.port)
        await self.site.start()

        logger.info(f"Health check server started on http://{self.host}:{self.port}")

    async def stop(self):
        """Stop the health check server."""
        logger.info("Stopping health check server")

        if self.runner:
            await self.runner.cleanup()

        logger.info("Health check server stopped")
