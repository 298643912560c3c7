"""Realm configuration: document type, terminology and scoring options."""
from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, field_validator

log = logging.getLogger(__name__)

RealmType = Literal["statute", "policy"]

DEFAULT_CONCURRENCY = 5


def env_concurrency() -> int:
    """Fan-out width for domain summaries, from ``CIVICSCORE_CONCURRENCY``."""
    raw = os.environ.get("CIVICSCORE_CONCURRENCY", "")
    try:
        value = int(raw)
    except ValueError:
        if raw:
            log.warning("Ignoring invalid CIVICSCORE_CONCURRENCY=%r", raw)
        return DEFAULT_CONCURRENCY
    return value if value > 0 else DEFAULT_CONCURRENCY


def data_dir() -> Path:
    return Path(os.environ.get("CIVICSCORE_DATA_DIR") or Path(__file__).parent / "data")


class Terminology(BaseModel):
    document_singular: str = "statute"
    document_plural: str = "statutes"
    entity_singular: str = "municipality"
    entity_plural: str = "municipalities"


class ScoringOptions(BaseModel):
    thresholds: tuple[float, float] = (0.3, 0.7)  # 0-1 scale
    color_gradient: dict[str, str] | None = None  # {"low", "medium", "high"}
    ignore_state_code: bool = True

    @field_validator("color_gradient")
    @classmethod
    def gradient_has_stops(cls, v: dict[str, str] | None) -> dict[str, str] | None:
        if v is not None and not {"low", "medium", "high"} <= set(v):
            raise ValueError("color_gradient needs low, medium and high colors")
        return v


class RealmConfig(BaseModel):
    id: str
    display_name: str = ""
    type: RealmType = "statute"
    entity_type: str = "municipalities"
    data_path: str = ""
    terminology: Terminology = Terminology()
    scoring: ScoringOptions = ScoringOptions()


# realms.json keys -> RealmConfig fields
_REALM_KEYS = {
    "displayName": "display_name",
    "realmType": "type",
    "entityType": "entity_type",
    "datapath": "data_path",
    "dataPath": "data_path",
}
_TERMINOLOGY_KEYS = {
    "documentSingular": "document_singular",
    "documentPlural": "document_plural",
    "entitySingular": "entity_singular",
    "entityPlural": "entity_plural",
}
_SCORING_KEYS = {
    "colorGradient": "color_gradient",
    "ignoreStateCode": "ignore_state_code",
}


def _rename(raw: dict[str, Any], keys: dict[str, str]) -> dict[str, Any]:
    return {keys.get(k, k): v for k, v in raw.items()}


def realm_from_dict(raw: dict[str, Any]) -> RealmConfig:
    """Build a RealmConfig from a realms.json entry (camelCase accepted)."""
    data = _rename(raw, _REALM_KEYS)
    if isinstance(data.get("terminology"), dict):
        data["terminology"] = _rename(data["terminology"], _TERMINOLOGY_KEYS)
    if isinstance(data.get("scoring"), dict):
        scoring = _rename(data["scoring"], _SCORING_KEYS)
        th = scoring.get("thresholds")
        if isinstance(th, dict):
            scoring["thresholds"] = (th.get("low", 0.3), th.get("high", 0.7))
        data["scoring"] = scoring
    return RealmConfig.model_validate(data)


def load_realms(path: str | Path) -> list[RealmConfig]:
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    entries = raw.get("realms", []) if isinstance(raw, dict) else raw
    return [realm_from_dict(e) for e in entries]


def get_realm(realms: list[RealmConfig], realm_id: str) -> RealmConfig:
    for realm in realms:
        if realm.id == realm_id:
            return realm
    raise KeyError(f"Unknown realm: {realm_id!r}")
