"""Exporter exception types and RFC 7807 *Problem Details* handlers for FastAPI."""
from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ExporterError(Exception):
    """Base class for every error raised by the exporter itself."""


class ConfigurationError(ExporterError):
    """Raised at startup when settings cannot be turned into a working client.

    Examples: unparsable duration, unknown SASL mechanism, a TLS certificate
    supplied without its key.
    """


class GatewayError(ExporterError):
    """A single call against the Kafka cluster failed.

    Collection code catches these per item (partition, topic, broker) so one
    failing fetch only drops the samples it was meant to produce.
    """


def _problem(status: int, title: str, detail: str):
    return {"type": "about:blank", "status": status, "title": title, "detail": detail}


def install_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ExporterError)
    async def exporter_error_handler(_: Request, exc: ExporterError):
        logger.error("Request failed: %s", exc)
        return JSONResponse(status_code=503, content=_problem(503, "Service Unavailable", str(exc)))

    # Catch-all
    @app.exception_handler(Exception)
    async def unhandled(_: Request, exc: Exception):
        logger.exception("Unhandled error")
        return JSONResponse(status_code=500, content=_problem(500, "Internal Server Error", str(exc)))
