"""HTTP surface for the ingress handler.

Routes:
- POST / and POST /events: accept an event body, respond with the handler's JSON
- GET /health/live: liveness probe
"""

import logging

from aiohttp import web

from relay.ingress.handler import IngressHandler

logger = logging.getLogger(__name__)

HANDLER_KEY = web.AppKey("ingress_handler", IngressHandler)


async def _post_event(request: web.Request) -> web.Response:
    handler = request.app[HANDLER_KEY]
    raw = await request.read() if request.can_read_body else None
    response = await handler.handle(raw)
    return web.json_response(response.payload, status=response.status)


async def _live(request: web.Request) -> web.Response:
    return web.json_response({"status": "alive"})


def create_app(handler: IngressHandler) -> web.Application:
    app = web.Application()
    app[HANDLER_KEY] = handler
    app.router.add_post("/", _post_event)
    app.router.add_post("/events", _post_event)
    app.router.add_get("/health/live", _live)
    return app


class IngressServer:
    """Runs the ingress app on the current event loop."""

    def __init__(self, handler: IngressHandler, host: str = "127.0.0.1", port: int = 8080) -> None:
        self.host = host
        self.port = port
        self._app = create_app(handler)
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None

    @property
    def actual_port(self) -> int | None:
        """Bound port; differs from `port` when started with port 0."""
        if self._runner is None:
            return None
        for address in self._runner.addresses:
            if isinstance(address, tuple):
                return address[1]
        return None

    async def start(self) -> None:
        self._runner = web.AppRunner(self._app, access_log=None)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self.host, self.port)
        await self._site.start()
        logger.info("Ingress listening on http://%s:%s", self.host, self.actual_port)

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            self._site = None
        logger.info("Ingress stopped")
