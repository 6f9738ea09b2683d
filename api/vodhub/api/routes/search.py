from __future__ import annotations

import logging
from typing import AsyncIterator

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response, StreamingResponse

from vodhub.api.deps import get_search_aggregator, get_source_registry
from vodhub.catalog.registry import SourceRegistry
from vodhub.core.config import settings
from vodhub.schema.search import ErrorEvent, SearchErrorResponse, SearchEvent, SearchRequest, SearchResponse
from vodhub.services.search_service import InvalidSearchInput, SearchAggregator, build_search_query

logger = logging.getLogger("vodhub.api.search")

router = APIRouter()

_ERROR_RESPONSES = {
    400: {"model": SearchErrorResponse},
    500: {"model": SearchErrorResponse},
}


def _error(message: str, status_code: int) -> JSONResponse:
    body = SearchErrorResponse(error=message).model_dump(by_alias=True)
    return JSONResponse(body, status_code=status_code)


async def _run_batch(
    aggregator: SearchAggregator,
    text: str | None,
    source_ids: list[str] | None,
    page: int | None,
    check_availability: bool | None,
) -> SearchResponse | JSONResponse:
    try:
        query = build_search_query(text, source_ids, page)
        check = settings.availability_check_enabled if check_availability is None else check_availability
        run, available = await aggregator.run(query, check_availability=check)
    except InvalidSearchInput as exc:
        return _error(str(exc), status.HTTP_400_BAD_REQUEST)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Search failed")
        return _error(str(exc) or "Internal server error", status.HTTP_500_INTERNAL_SERVER_ERROR)
    return aggregator.build_batch_response(run, available)


@router.post("", response_model=SearchResponse, responses=_ERROR_RESPONSES)
async def search(
    payload: SearchRequest,
    aggregator: SearchAggregator = Depends(get_search_aggregator),
) -> SearchResponse | JSONResponse:
    """Search every requested source and return the confirmed-playable results."""
    return await _run_batch(
        aggregator, payload.query, payload.sources, payload.page, payload.check_availability
    )


@router.get("", response_model=SearchResponse, responses=_ERROR_RESPONSES)
async def search_get(
    q: str | None = Query(default=None),
    query: str | None = Query(default=None),
    sources: str | None = Query(default=None),
    page: int = Query(default=1),
    check_availability: bool | None = Query(default=None, alias="checkAvailability"),
    aggregator: SearchAggregator = Depends(get_search_aggregator),
    registry: SourceRegistry = Depends(get_source_registry),
) -> SearchResponse | JSONResponse:
    """Query-string variant; ``sources`` defaults to every enabled source."""
    if sources:
        source_ids = [item.strip() for item in sources.split(",") if item.strip()]
    else:
        source_ids = [source.id for source in registry.enabled()]
    return await _run_batch(aggregator, q or query, source_ids, page, check_availability)


def _format_event(event: SearchEvent) -> str:
    return f"data: {event.model_dump_json(by_alias=True)}\n\n"


async def _event_stream(aggregator: SearchAggregator, payload: SearchRequest) -> AsyncIterator[str]:
    try:
        query = build_search_query(payload.query, payload.sources, payload.page)
        events = aggregator.stream(query)
        async for event in events:
            yield _format_event(event)
    except InvalidSearchInput as exc:
        yield _format_event(ErrorEvent(message=str(exc)))
    except Exception as exc:  # noqa: BLE001
        logger.exception("Streaming search failed")
        yield _format_event(ErrorEvent(message=str(exc) or "Unknown error"))


@router.post("/stream")
async def search_stream(
    payload: SearchRequest,
    aggregator: SearchAggregator = Depends(get_search_aggregator),
) -> StreamingResponse:
    """Stream per-source results as server-sent events as soon as each source answers."""
    return StreamingResponse(
        _event_stream(aggregator, payload),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


def _describe_validation_error(exc: RequestValidationError) -> str:
    problems: list[str] = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part not in ("body", "query"))
        message = error.get("msg", "invalid value")
        problems.append(f"{location}: {message}" if location else message)
    return "Invalid request: " + "; ".join(problems)


async def _single_event(event: SearchEvent) -> AsyncIterator[str]:
    yield _format_event(event)


async def search_validation_handler(request: Request, exc: RequestValidationError) -> Response:
    """Answer malformed search input in the search wire format.

    Batch search gets the ``{success: false, error}`` envelope and the stream
    gets a single ``error`` event; every other route keeps FastAPI's default.
    """
    prefix = f"{settings.api_prefix}/search"
    path = request.url.path.rstrip("/")
    if path == f"{prefix}/stream":
        message = _describe_validation_error(exc)
        return StreamingResponse(
            _single_event(ErrorEvent(message=message)),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache"},
        )
    if path == prefix:
        return _error(_describe_validation_error(exc), status.HTTP_400_BAD_REQUEST)
    return await request_validation_exception_handler(request, exc)
