"""Document store boundary and the JSON directory store."""
from __future__ import annotations

import asyncio
import json
import logging
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Protocol

from civicscore.normalizer import parse_questions
from civicscore.schemas import Domain, Entity, Question

log = logging.getLogger(__name__)

ID_RE = re.compile(r"^[a-zA-Z0-9_-]+$")
_UNSAFE_ID_CHARS = re.compile(r"[^a-zA-Z0-9_-]")


class StoreError(Exception):
    """The document store could not be read."""


class DocumentNotFound(StoreError):
    """A required document (e.g. a domain's question list) does not exist."""


class DocumentStore(Protocol):
    """What the scoring engine needs from storage.

    ``get_analysis`` and ``load_metadata`` return ``None`` when there is no
    record; they raise only when the store itself fails.
    """

    async def get_questions(self, domain_id: str) -> list[Question]: ...

    async def get_analysis(self, domain_id: str, entity_id: str) -> Any | None: ...

    async def load_metadata(self, domain_id: str, entity_id: str) -> Any | None: ...

    async def list_entities(self) -> list[Entity]: ...

    async def get_domains(self) -> list[Domain]: ...


def validate_id(value: str, label: str = "domain") -> str:
    """Raise ValueError unless *value* is a plain identifier."""
    if not value or not ID_RE.match(value):
        raise ValueError(f"Invalid {label} ID: {value!r}")
    return value


def sanitize_entity_id(entity_id: str) -> str:
    """Strip path-unsafe characters; raise ValueError if nothing is left."""
    cleaned = _UNSAFE_ID_CHARS.sub("", entity_id)
    if not cleaned:
        raise ValueError(f"Invalid entity ID: {entity_id!r}")
    return cleaned


def parse_entity(raw: Any) -> Entity | None:
    if isinstance(raw, Entity):
        return raw
    if not isinstance(raw, Mapping) or not raw.get("id"):
        return None
    name = str(raw.get("name") or "")
    display = str(raw.get("displayName") or raw.get("display_name") or name or raw["id"])
    return Entity(id=str(raw["id"]), name=name, display_name=display)


def parse_domain(raw: Any) -> Domain | None:
    if isinstance(raw, Domain):
        return raw
    if not isinstance(raw, Mapping) or not raw.get("id"):
        return None
    name = str(raw.get("name") or "")
    return Domain(
        id=str(raw["id"]),
        name=name,
        display_name=str(raw.get("displayName") or raw.get("display_name") or name or raw["id"]),
        description=raw.get("description"),
    )


def _unwrap(data: Any, *keys: str) -> list[Any]:
    if isinstance(data, list):
        return data
    if isinstance(data, Mapping):
        for key in keys:
            if isinstance(data.get(key), list):
                return data[key]
    return []


class FileDocumentStore:
    """Reads questions, analyses and metadata from a JSON directory tree.

    Layout is driven by path patterns with ``{domainId}`` / ``{entityId}``
    placeholders, relative to *base_path*.  Paths that resolve outside the
    base directory are refused.
    """

    def __init__(
        self,
        base_path: str | Path,
        *,
        entities_file: str = "entities.json",
        domains_file: str = "domains.json",
        questions_pattern: str = "questions/{domainId}.json",
        analysis_pattern: str = "{domainId}/{entityId}/analysis.json",
        metadata_pattern: str = "{domainId}/{entityId}/metadata.json",
    ):
        self.base_path = Path(base_path).resolve()
        self.entities_file = entities_file
        self.domains_file = domains_file
        self.questions_pattern = questions_pattern
        self.analysis_pattern = analysis_pattern
        self.metadata_pattern = metadata_pattern

    def safe_resolve(self, relative: str) -> Path:
        resolved = (self.base_path / relative).resolve()
        if not resolved.is_relative_to(self.base_path):
            raise StoreError(f"Path traversal detected: {relative}")
        return resolved

    def _path(self, pattern: str, domain_id: str, entity_id: str = "") -> Path:
        rel = pattern.replace("{domainId}", domain_id).replace("{entityId}", entity_id)
        return self.safe_resolve(rel)

    async def _load_json(self, path: Path) -> Any | None:
        """Parsed JSON at *path*, ``None`` if the file does not exist."""
        try:
            text = await asyncio.to_thread(path.read_text, encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StoreError(f"Cannot read {path}: {exc}") from exc
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise StoreError(f"Invalid JSON in {path}: {exc}") from exc

    async def get_questions(self, domain_id: str) -> list[Question]:
        validate_id(domain_id)
        data = await self._load_json(self._path(self.questions_pattern, domain_id))
        if data is None:
            raise DocumentNotFound(f"No questions for domain {domain_id!r}")
        return parse_questions(data)

    async def get_analysis(self, domain_id: str, entity_id: str) -> Any | None:
        validate_id(domain_id)
        path = self._path(self.analysis_pattern, domain_id, sanitize_entity_id(entity_id))
        log.debug("Looking up analysis at %s", path)
        return await self._load_json(path)

    async def load_metadata(self, domain_id: str, entity_id: str) -> Any | None:
        validate_id(domain_id)
        path = self._path(self.metadata_pattern, domain_id, sanitize_entity_id(entity_id))
        return await self._load_json(path)

    async def list_entities(self) -> list[Entity]:
        data = await self._load_json(self.safe_resolve(self.entities_file))
        entities: list[Entity] = []
        for raw in _unwrap(data, "entities", "municipalities", "school-districts"):
            entity = parse_entity(raw)
            if entity is None:
                log.warning("Skipping entity record without an id: %r", raw)
                continue
            entities.append(entity)
        return entities

    async def get_domains(self) -> list[Domain]:
        data = await self._load_json(self.safe_resolve(self.domains_file))
        domains = (parse_domain(raw) for raw in _unwrap(data, "domains"))
        return [d for d in domains if d is not None]
