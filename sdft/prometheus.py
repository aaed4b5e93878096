import logging
from aiohttp import web
from prometheus_client import generate_latest as prom_generate_latest
from prometheus_client import Counter, Gauge

NAMESPACE = 'sdft'

SESSIONS_REGISTERED = Counter(
    "sessions_registered_total", "Number of upload sessions registered", namespace=NAMESPACE
)
SESSIONS_ACTIVE = Gauge(
    "sessions_active", "Number of upload sessions waiting for or serving a download", namespace=NAMESPACE
)
PAIRINGS = Counter("pairings_total", "Number of downloaders paired with an upload", namespace=NAMESPACE)
REJECTIONS = Counter(
    "rejections_total", "Number of handshakes rejected", namespace=NAMESPACE, labelnames=("reason",)
)
RELAYED_BYTES = Counter("relayed_bytes_total", "Number of payload bytes relayed", namespace=NAMESPACE)


class PrometheusServer:
    def __init__(self, logger=None):
        self.runner = None
        self.logger = logger or logging.getLogger(__name__)

    async def start(self, interface: str, port: int):
        self.logger.info("start prometheus metrics")
        prom_app = web.Application()
        prom_app.router.add_get('/metrics', self.handle_metrics_get_request)
        self.runner = web.AppRunner(prom_app)
        await self.runner.setup()

        metrics_site = web.TCPSite(self.runner, interface, port, shutdown_timeout=.5)
        await metrics_site.start()
        self.logger.info(
            'prometheus metrics server listening on %s:%i', *metrics_site._server.sockets[0].getsockname()[:2]
        )

    async def handle_metrics_get_request(self, request: web.Request):
        try:
            return web.Response(
                text=prom_generate_latest().decode(),
                content_type='text/plain',
                charset='utf-8'
            )
        except Exception:
            self.logger.exception('could not generate prometheus data')
            raise

    async def stop(self):
        if self.runner:
            await self.runner.cleanup()
        self.runner = None
