"""FastAPI application entrypoint and health reporting utilities."""

import logging
from typing import Any

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError

from vodhub.api.cors import ApiCORSMiddleware
from vodhub.api.deps import close_clients, get_source_registry
from vodhub.api.router import api_router
from vodhub.api.routes.search import search_validation_handler
from vodhub.catalog.observability import source_monitor
from vodhub.core.config import settings

LOG_FORMAT = "%(asctime)s %(name)s [%(levelname)s] %(message)s"
REPEATED_FAILURE_THRESHOLD = 3

logger = logging.getLogger("vodhub.main")

app = FastAPI(title=settings.app_name)

app.add_middleware(
    ApiCORSMiddleware,
    exempt_prefixes=[f"{settings.api_prefix}/proxy"],
    allow_origins=settings.cors_origins,
    allow_credentials=False,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)
app.add_exception_handler(RequestValidationError, search_validation_handler)
app.include_router(api_router, prefix=settings.api_prefix)


def _configure_logging() -> None:
    logging.basicConfig(level=settings.log_level, format=LOG_FORMAT, force=True)
    for noisy in ("httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


@app.on_event("startup")
async def _startup() -> None:
    """Configure logging and load the source registry snapshot."""
    _configure_logging()
    registry = get_source_registry()
    logger.info("%s started with %d source(s)", settings.app_name, len(registry.sources))


@app.on_event("shutdown")
async def _shutdown() -> None:
    await close_clients()


def _summarize_sources(snapshot: dict[str, Any]) -> dict[str, Any]:
    """Condense source monitor state into health-friendly telemetry.

    A source is degraded while its circuit is open, when its last search
    failed, or once failures and timeouts add up to a repeated pattern.
    """
    issues: list[dict[str, Any]] = []
    sources: dict[str, Any] = {}
    for source, record in snapshot.items():
        circuit = record.get("circuit", {})
        searches = record.get("searches", {})
        failures = int(record.get("failures") or 0)
        last_error = record.get("last_error")
        state = "ok"
        if circuit.get("open"):
            issues.append(
                {
                    "source": source,
                    "reason": "circuit_open",
                    "remaining_cooldown": circuit.get("remaining_cooldown"),
                }
            )
            state = "degraded"
        if last_error:
            issues.append({"source": source, "reason": "last_error", "error": last_error})
            state = "degraded"
        if failures >= REPEATED_FAILURE_THRESHOLD:
            issues.append(
                {
                    "source": source,
                    "reason": "repeated_failures",
                    "failed": searches.get("failed", 0),
                    "timed_out": searches.get("timed_out", 0),
                }
            )
            state = "degraded"
        sources[source] = {
            "state": state,
            "circuit_open": bool(circuit.get("open")),
            "searches": searches,
            "failure_total": failures,
            "last_error": last_error,
        }
    return {"sources": sources, "issues": issues}


@app.get("/health", tags=["internal"])
@app.get(f"{settings.api_prefix}/health", tags=["internal"])
async def health() -> dict[str, Any]:
    """Return health status with per-source search telemetry."""
    telemetry = _summarize_sources(source_monitor.snapshot())
    status = "ok" if not telemetry["issues"] else "degraded"
    return {"status": status, "sources": telemetry}
