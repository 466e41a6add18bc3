from typing import Dict, List

from fastapi import APIRouter, Request, Response
from fastapi.responses import HTMLResponse, PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Gauge, Info, generate_latest

from kafka_exporter.domain.models.metrics import Sample


def render(samples: List[Sample], const_labels: Dict[str, str] | None = None, version: str | None = None) -> bytes:
    """Expose one scrape's samples as Prometheus text, constant labels appended to every series."""
    const = const_labels or {}
    reg = CollectorRegistry()
    if version:
        Info("kafka_exporter_build", "Build information of the kafka exporter", registry=reg).info({"version": version})

    gauges: Dict[str, Gauge] = {}
    for s in samples:
        g = gauges.get(s.desc.name)
        if g is None:
            g = gauges[s.desc.name] = Gauge(
                s.desc.name, s.desc.documentation, list(s.desc.labelnames) + list(const), registry=reg
            )
        values = list(s.labels) + list(const.values())
        if values:
            g.labels(*values).set(s.value)
        else:
            g.set(s.value)
    return generate_latest(reg)


def build_router(telemetry_path: str = "/metrics") -> APIRouter:
    router = APIRouter()

    def metrics(request: Request):
        state = request.app.state
        samples = state.coordinator.request_scrape()
        body = render(samples, state.settings.labels, getattr(state, "version", None))
        return Response(body, media_type=CONTENT_TYPE_LATEST)

    def index():
        return HTMLResponse(
            "<html><head><title>Kafka Exporter</title></head><body>"
            "<h1>Kafka Exporter</h1>"
            f"<p><a href='{telemetry_path}'>Metrics</a></p>"
            "</body></html>"
        )

    def healthz():
        return PlainTextResponse("ok")

    # sync handlers: FastAPI runs them in its threadpool, so overlapping
    # scrapes reach the coordinator concurrently
    router.add_api_route(telemetry_path, metrics, methods=["GET"])
    router.add_api_route("/", index, methods=["GET"], response_class=HTMLResponse)
    router.add_api_route("/healthz", healthz, methods=["GET"], response_class=PlainTextResponse)
    return router
