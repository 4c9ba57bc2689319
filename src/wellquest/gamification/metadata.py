"""Typed mission completion metadata.

Each mission category has its own payload shape; anything else falls back to
``GenericCompletion`` which keeps the fields as an opaque dict. Payloads are
accepted in camelCase (as sent by the app) or snake_case.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel


class _Completion(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class HeroCompletion(_Completion):
    category: Literal["hero"] = "hero"
    categories: list[str] = []
    evidence: str = ""


class CalmStep(_Completion):
    step: str
    response: str | None = None


class CalmCompletion(_Completion):
    category: Literal["calm"] = "calm"
    steps: list[CalmStep] = []
    focus_step: str | None = None


class ScriptsCompletion(_Completion):
    category: Literal["scripts"] = "scripts"
    script_type: str | None = None
    adapted_script: str = ""


class SelfcareCompletion(_Completion):
    category: Literal["selfcare"] = "selfcare"
    actions: list[str] = []


class SupportCompletion(_Completion):
    category: Literal["support"] = "support"
    contact_id: str | None = None
    message: str | None = None


class SosCardCompletion(_Completion):
    category: Literal["sos_card"] = "sos_card"
    card_type: str | None = None
    card_title: str | None = None
    saved: bool = False


class RoleplayCompletion(_Completion):
    category: Literal["roleplay"] = "roleplay"
    scenario: str | None = None
    turns: int = Field(default=0, ge=0)


class RiskMapCompletion(_Completion):
    category: Literal["risk_map"] = "risk_map"
    situation: str | None = None
    risk_level: Literal["green", "yellow", "red"] | None = None


class GenericCompletion(BaseModel):
    category: str
    fields: dict[str, Any] = {}


KnownCompletion = Annotated[
    Union[
        HeroCompletion,
        CalmCompletion,
        ScriptsCompletion,
        SelfcareCompletion,
        SupportCompletion,
        SosCardCompletion,
        RoleplayCompletion,
        RiskMapCompletion,
    ],
    Field(discriminator="category"),
]

CompletionMetadata = Union[KnownCompletion, GenericCompletion]

KNOWN_CATEGORIES: frozenset[str] = frozenset(
    {"hero", "calm", "scripts", "selfcare", "support", "sos_card", "roleplay", "risk_map"}
)

_known_adapter: TypeAdapter[Any] = TypeAdapter(KnownCompletion)


def parse_completion_metadata(category: str, data: dict[str, Any] | None) -> CompletionMetadata:
    """Validate raw completion data against the payload shape of ``category``."""
    raw = dict(data or {})
    if category in KNOWN_CATEGORIES:
        raw["category"] = category
        return _known_adapter.validate_python(raw)
    raw.pop("category", None)
    return GenericCompletion(category=category, fields=raw)


def dump_completion_metadata(metadata: CompletionMetadata) -> dict[str, Any]:
    """JSON-safe dict for storage on the award row."""
    return metadata.model_dump(mode="json")
