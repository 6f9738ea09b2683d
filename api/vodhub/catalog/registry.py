"""Source registry manifests and the read-only registry snapshot.

Invariants:
- The registry is never mutated by search; a run receives one snapshot.
- Unknown or disabled source ids resolve to nothing rather than an error.
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from vodhub.utils.urls import is_http_url

logger = logging.getLogger("vodhub.catalog.registry")

KNOWN_FAMILIES = {"maccms_json", "maccms_xml"}


class SourceDescriptor(BaseModel):
    """One catalog backend as declared in the registry manifest."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    id: str
    name: str
    base_endpoint: str = Field(alias="baseEndpoint")
    enabled: bool = True
    priority: int = 0
    family: str = "maccms_json"

    @field_validator("id", "name")
    @classmethod
    def _require_text(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("must be non-empty")
        return stripped

    @field_validator("base_endpoint")
    @classmethod
    def _validate_endpoint(cls, value: str) -> str:
        if not is_http_url(value):
            raise ValueError("baseEndpoint must be an absolute http(s) URL")
        return value.strip()

    @field_validator("family")
    @classmethod
    def _validate_family(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in KNOWN_FAMILIES:
            raise ValueError(f"family must be one of {sorted(KNOWN_FAMILIES)}")
        return normalized


class SourceManifest(BaseModel):
    """Top-level registry manifest."""

    sources: list[SourceDescriptor] = Field(default_factory=list)

    model_config = {"extra": "forbid"}

    @model_validator(mode="after")
    def _unique_ids(self) -> "SourceManifest":
        seen: set[str] = set()
        for source in self.sources:
            if source.id in seen:
                raise ValueError(f"duplicate source id '{source.id}'")
            seen.add(source.id)
        return self


@dataclass(slots=True, frozen=True)
class SourceRegistry:
    """Versioned, read-only snapshot of the source registry."""
    sources: tuple[SourceDescriptor, ...]
    version: str

    @classmethod
    def from_descriptors(cls, descriptors: Iterable[SourceDescriptor]) -> "SourceRegistry":
        ordered = tuple(descriptors)
        payload = json.dumps([item.model_dump() for item in ordered], sort_keys=True)
        version = hashlib.sha256(payload.encode("utf-8")).hexdigest()[:12]
        return cls(sources=ordered, version=version)

    def get(self, source_id: str) -> SourceDescriptor | None:
        for source in self.sources:
            if source.id == source_id:
                return source
        return None

    def enabled(self) -> list[SourceDescriptor]:
        """Return enabled sources ordered by priority."""
        return sorted((s for s in self.sources if s.enabled), key=lambda s: s.priority)

    def ordered(self) -> list[SourceDescriptor]:
        return sorted(self.sources, key=lambda s: s.priority)

    def resolve(self, source_ids: Iterable[str]) -> list[SourceDescriptor]:
        """Map requested ids to enabled descriptors, collapsing duplicates.

        Unknown and disabled ids are dropped silently; first-seen order is kept.
        """
        resolved: list[SourceDescriptor] = []
        seen: set[str] = set()
        for source_id in source_ids:
            if source_id in seen:
                continue
            seen.add(source_id)
            source = self.get(source_id)
            if source is None or not source.enabled:
                continue
            resolved.append(source)
        return resolved


def load_source_manifest(path: Path) -> SourceManifest:
    """Load and validate a registry manifest from YAML."""
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return SourceManifest()
    if not isinstance(data, dict):
        raise ValueError("source manifest must be a YAML mapping")
    return SourceManifest.model_validate(data)


def load_registry(sources_file: str | None) -> SourceRegistry:
    """Build a registry snapshot from the configured manifest file."""
    if not sources_file:
        return SourceRegistry.from_descriptors([])
    path = Path(sources_file)
    if not path.is_file():
        logger.warning("Source manifest %s not found; starting with an empty registry", path)
        return SourceRegistry.from_descriptors([])
    manifest = load_source_manifest(path)
    registry = SourceRegistry.from_descriptors(manifest.sources)
    logger.info(
        "Loaded %d source(s) from %s (version %s)", len(registry.sources), path, registry.version
    )
    return registry


def validate_source_file(path: Path) -> list[str]:
    """Validate a single manifest file and return any errors."""
    try:
        load_source_manifest(path)
    except (ValidationError, ValueError, yaml.YAMLError) as exc:
        return [f"{path}: {exc}"]
    return []


def validate_source_paths(paths: Iterable[Path]) -> list[str]:
    """Validate manifests and collect error messages."""
    errors: list[str] = []
    for path in paths:
        errors.extend(validate_source_file(path))
    return errors
