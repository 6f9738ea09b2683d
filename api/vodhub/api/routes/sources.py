"""Read-only view of the source registry snapshot."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from vodhub.api.deps import get_source_registry
from vodhub.catalog.registry import SourceRegistry
from vodhub.schema.search import SourceListResponse, SourceRead

router = APIRouter()


@router.get("", response_model=SourceListResponse)
async def list_sources(registry: SourceRegistry = Depends(get_source_registry)) -> SourceListResponse:
    """Return every registered source ordered by display priority."""
    return SourceListResponse(
        version=registry.version,
        sources=[SourceRead.model_validate(source.model_dump()) for source in registry.ordered()],
    )
