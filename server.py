# server.py
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from kafka_exporter.api.metrics import build_router
from kafka_exporter.core.config import Settings, get_settings
from kafka_exporter.core.errors import install_exception_handlers
from kafka_exporter.infra.kafka.gateway import ClusterGateway, KafkaGateway
from kafka_exporter.services.collector import Exporter
from kafka_exporter.services.coordinator import ScrapeCoordinator

VERSION = "1.0.0"

logger = logging.getLogger("kafka_exporter")


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    # kafka-python is chatty; only surface it when asked to
    logging.getLogger("kafka").setLevel(logging.DEBUG if settings.log_kafka_client else logging.WARNING)


def create_app(settings: Settings | None = None, gateway: ClusterGateway | None = None) -> FastAPI:
    settings = settings or get_settings()

    # Lifespan handler owns the cluster connection and the rate state
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings)
        gw = gateway if gateway is not None else KafkaGateway(settings)
        exporter = Exporter(gw, settings)
        app.state.exporter = exporter
        app.state.coordinator = ScrapeCoordinator(exporter.collect, allow_concurrent=settings.allow_concurrent)
        logger.info("Starting kafka_exporter %s against %s", VERSION, ",".join(settings.kafka_server))
        try:
            yield
        finally:
            close = getattr(gw, "close", None)
            if close is not None:
                with contextlib.suppress(Exception):
                    close()

    app = FastAPI(
        title="Kafka Exporter",
        version=VERSION,
        lifespan=lifespan,
        openapi_url=None,
        docs_url=None,
        redoc_url=None,
    )
    app.state.settings = settings
    app.state.version = VERSION
    install_exception_handlers(app)
    app.include_router(build_router(settings.telemetry_path))
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    _settings = get_settings()
    uvicorn.run(app, host=_settings.listen_host, port=_settings.listen_port)
