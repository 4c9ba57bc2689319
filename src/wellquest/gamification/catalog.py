"""Mission catalog interface and the default static catalog.

The catalog is configuration, not engine state: the engine only looks up a
mission's category and base XP, and asks which missions make up a day's
required set for the perfect-day bonus.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import date
from typing import Protocol

PERFECT_DAY_MISSION_ID = "perfect_day"
PERFECT_DAY_CATEGORY = "bonus"

SUNDAY = 6


@dataclass(frozen=True)
class MissionDefinition:
    id: str
    category: str
    title: str
    base_xp: int
    is_premium: bool = False


class MissionCatalog(Protocol):
    """Read-only mission lookup keyed by mission id."""

    def get(self, mission_id: str) -> MissionDefinition:
        """Return the mission, raising KeyError for unknown ids."""
        ...

    def required_missions(self, local_date: date) -> list[MissionDefinition]:
        """Missions that must all be completed on ``local_date`` for a perfect day."""
        ...


HERO = MissionDefinition("hero", "hero", "Detect (H.E.R.O.)", 20)
CALM = MissionDefinition("calm", "calm", "Regulate (C.A.L.M.)", 20)
SCRIPTS = MissionDefinition("scripts", "scripts", "Boundary scripts", 25)
SELFCARE = MissionDefinition("selfcare", "selfcare", "Self-care plan", 25)
SUPPORT = MissionDefinition("support", "support", "Support network", 25)
REVIEW = replace(SELFCARE, id="review", title="Weekly review")
SOS_CARD = MissionDefinition("sos_card", "sos_card", "SOS card of the day", 30, is_premium=True)
ROLEPLAY = MissionDefinition("roleplay", "roleplay", "Conversation simulator", 60, is_premium=True)
RISK_MAP = MissionDefinition("risk_map", "risk_map", "Risk traffic light", 100, is_premium=True)
AUDIO_STATE = replace(SOS_CARD, id="audio_state", title="Audio for your state")


class StaticMissionCatalog:
    """In-memory catalog.

    Every day requires the core missions plus one variable mission picked
    deterministically from the date, so every user sees the same set. On
    Sundays the variable slot is the weekly review.
    """

    def __init__(
        self,
        missions: Iterable[MissionDefinition],
        core_ids: list[str],
        variable_ids: list[str],
        sunday_id: str | None = None,
    ) -> None:
        self._missions = {m.id: m for m in missions}
        for mission_id in [*core_ids, *variable_ids, *([sunday_id] if sunday_id else [])]:
            if mission_id not in self._missions:
                raise ValueError(f"Unknown mission in daily set: {mission_id}")
        if PERFECT_DAY_MISSION_ID in self._missions:
            raise ValueError(f"'{PERFECT_DAY_MISSION_ID}' is reserved for the perfect-day bonus")
        self._core_ids = core_ids
        self._variable_ids = variable_ids
        self._sunday_id = sunday_id

    def get(self, mission_id: str) -> MissionDefinition:
        return self._missions[mission_id]

    def all(self) -> list[MissionDefinition]:
        return list(self._missions.values())

    def required_missions(self, local_date: date) -> list[MissionDefinition]:
        ids = list(self._core_ids)
        if local_date.weekday() == SUNDAY and self._sunday_id:
            ids.append(self._sunday_id)
        elif self._variable_ids:
            ids.append(self._variable_ids[local_date.toordinal() % len(self._variable_ids)])
        return [self._missions[i] for i in ids]


def default_catalog() -> StaticMissionCatalog:
    """The product's daily challenge configuration."""
    return StaticMissionCatalog(
        missions=[HERO, CALM, SCRIPTS, SELFCARE, SUPPORT, REVIEW, SOS_CARD, ROLEPLAY, RISK_MAP, AUDIO_STATE],
        core_ids=["hero", "calm"],
        variable_ids=["scripts", "selfcare", "support"],
        sunday_id="review",
    )
