"""Source resolution: which catalogued document backs an entity's analysis."""
from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from civicscore.calculus import as_float
from civicscore.config import RealmConfig
from civicscore.schemas import Metadata, MetadataSource

if TYPE_CHECKING:
    from civicscore.stores import DocumentStore

log = logging.getLogger(__name__)

# Historical type tags accepted for each realm document type
SOURCE_ALIASES: dict[str, tuple[str, ...]] = {
    "statute": ("ordinance", "code"),
    "policy": (),
}


def _str(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


def _coerce_source(raw: Any) -> MetadataSource | None:
    if isinstance(raw, MetadataSource):
        return raw
    if not isinstance(raw, Mapping) or not isinstance(raw.get("type"), str):
        return None
    length = as_float(raw.get("contentLength", raw.get("content_length")))
    sections = raw.get("sections")
    return MetadataSource(
        type=raw["type"],
        source_url=str(raw.get("sourceUrl") or raw.get("source_url") or raw.get("url") or ""),
        title=_str(raw.get("title")),
        name=_str(raw.get("name")),
        downloaded_at=_str(raw.get("downloadedAt") or raw.get("downloaded_at")),
        content_length=int(length) if length is not None else None,
        sections=[str(s) for s in sections] if isinstance(sections, list) else None,
    )


def coerce_metadata(raw: Any) -> Metadata | None:
    """Parse a raw metadata record; malformed source entries are dropped."""
    if raw is None:
        return None
    if isinstance(raw, Metadata):
        return raw
    if not isinstance(raw, Mapping):
        log.warning("Ignoring metadata record of type %s", type(raw).__name__)
        return None

    sources: list[MetadataSource] = []
    raw_sources = raw.get("sources")
    if isinstance(raw_sources, list):
        for item in raw_sources:
            src = _coerce_source(item)
            if src is None:
                log.warning("Dropping malformed metadata source %r", item)
                continue
            sources.append(src)

    def pick(*keys: str) -> str | None:
        for key in keys:
            if raw.get(key):
                return str(raw[key])
        return None

    return Metadata(
        sources=sources,
        source_url=pick("sourceUrl", "source_url"),
        policy_url=pick("policyUrl", "policy_url"),
        statute_title=pick("statuteTitle", "statute_title"),
        policy_title=pick("policyTitle", "policy_title"),
        title=pick("title"),
        number=pick("statuteNumber", "policyNumber", "number"),
        downloaded_at=pick("downloadedAt", "downloaded_at", "downloadDate"),
        section=pick("section"),
        references_state_code=raw.get("referencesStateCode", raw.get("references_state_code")) is True,
    )


def resolve_source(metadata: Metadata | Mapping[str, Any] | None, wanted_type: str) -> MetadataSource | None:
    """Pick the source matching *wanted_type* ("statute" or "policy").

    Order: exact type match, alias match, legacy ``policyUrl`` (policy only),
    legacy ``sourceUrl``.  Returns ``None`` when nothing applies.
    """
    meta = coerce_metadata(metadata)
    if meta is None:
        return None

    wanted = wanted_type.lower()
    for src in meta.sources:
        if src.type.lower() == wanted:
            return src
    aliases = SOURCE_ALIASES.get(wanted, ())
    for src in meta.sources:
        if src.type.lower() in aliases:
            return src

    if wanted == "policy" and meta.policy_url:
        return MetadataSource(
            type=wanted,
            source_url=meta.policy_url,
            title=meta.policy_title or meta.title,
        )
    if meta.source_url:
        return MetadataSource(
            type=wanted,
            source_url=meta.source_url,
            title=meta.statute_title or meta.policy_title or meta.title,
        )
    return None


class MetadataResolver:
    """Realm-aware lookups over a document store's metadata records."""

    def __init__(self, store: DocumentStore, realm: RealmConfig):
        self.store = store
        self.realm = realm

    async def source_for_entity(self, domain_id: str, entity_id: str) -> MetadataSource | None:
        raw = await self.store.load_metadata(domain_id, entity_id)
        return resolve_source(raw, self.realm.type)

    async def primary_source_url(self, domain_id: str, entity_id: str) -> str | None:
        src = await self.source_for_entity(domain_id, entity_id)
        return src.source_url if src and src.source_url else None

    async def formatted_metadata(self, domain_id: str, entity_id: str) -> dict[str, Any] | None:
        """Metadata for display with the realm's source and a titled fallback."""
        meta = coerce_metadata(await self.store.load_metadata(domain_id, entity_id))
        if meta is None:
            return None
        src = resolve_source(meta, self.realm.type)
        doc = self.realm.terminology.document_singular
        return {
            **meta.model_dump(),
            "source_url": (src.source_url if src else None) or meta.source_url,
            "title": (src.title if src else None) or meta.title or f"{doc} for {entity_id}",
            "download_date": meta.downloaded_at,
            "section": meta.section,
        }

    async def has_data(self, domain_id: str, entity_id: str) -> bool:
        return await self.store.get_analysis(domain_id, entity_id) is not None

    async def entity_display_name(self, entity_id: str) -> str:
        for entity in await self.store.list_entities():
            if entity.id == entity_id:
                return entity.display_name or entity.name or entity_id
        return entity_id
