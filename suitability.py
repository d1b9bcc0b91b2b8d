"""
suitability.py — Score how friendly an OSM way is for cyclists.

The classifier is a fixed rule table over a small, enumerated set of tag keys.
Rules are applied in order of precedence:

  1. hostile highway class without a bicycle override  -> UNUSABLE
  2. any cycleway-type tag                             -> MAX_TIER
  3. explicit bicycle=* tag                            -> shift the base tier
  4. permissive sidewalk=* tag                         -> one tier up
  5. otherwise                                         -> base tier of the highway class

Values that are unknown or malformed simply fall through to the default tier.
"""

from dataclasses import dataclass
from typing import Mapping

from config import (
    BICYCLE_ACCESS_OVERRIDE, BICYCLE_TIER_SHIFT, CYCLEWAY_KEYS, DEFAULT_TIER,
    HIGHWAY_BASE_TIER, HOSTILE_HIGHWAYS, IMPLIED_ONEWAY_HIGHWAYS, IMPLIED_ONEWAY_JUNCTIONS,
    MAX_TIER, MIN_TIER, NO_CYCLEWAY_VALUES, ONEWAY_FORWARD_VALUES, ONEWAY_NONE_VALUES,
    ONEWAY_REVERSE_VALUES, SIDEWALK_KEYS, SIDEWALK_PERMISSIVE,
)


@dataclass(frozen=True, order=True)
class SuitabilityScore:
    """Ordinal cyclist-friendliness of a way; ``UNUSABLE`` excludes it entirely."""

    tier: int

    @property
    def unusable(self) -> bool:
        return self.tier < MIN_TIER

    def __str__(self) -> str:
        return "unusable" if self.unusable else str(self.tier)


UNUSABLE = SuitabilityScore(MIN_TIER - 1)


def _value(tags: Mapping[str, str], key: str) -> str:
    value = tags.get(key)
    if not isinstance(value, str):
        return ""
    return value.strip().lower()


def _clamp(tier: int) -> SuitabilityScore:
    return SuitabilityScore(max(MIN_TIER, min(MAX_TIER, tier)))


def has_cycleway(tags: Mapping[str, str]) -> bool:
    """True if the way is a cycleway or carries a cycleway along it."""
    if _value(tags, "highway") == "cycleway":
        return True
    for key in CYCLEWAY_KEYS:
        value = _value(tags, key)
        if value and value not in NO_CYCLEWAY_VALUES:
            return True
    return False


def has_sidewalk(tags: Mapping[str, str]) -> bool:
    return any(_value(tags, key) in SIDEWALK_PERMISSIVE for key in SIDEWALK_KEYS)


def classify(tags: Mapping[str, str]) -> SuitabilityScore:
    """Return the suitability of a way from its tags.  Never raises."""
    highway = _value(tags, "highway")
    bicycle = _value(tags, "bicycle")
    cycleway = has_cycleway(tags)

    if highway in HOSTILE_HIGHWAYS and not cycleway and bicycle not in BICYCLE_ACCESS_OVERRIDE:
        return UNUSABLE

    if cycleway:
        return SuitabilityScore(MAX_TIER)

    tier = HIGHWAY_BASE_TIER.get(highway, DEFAULT_TIER)
    tier += BICYCLE_TIER_SHIFT.get(bicycle, 0)
    if has_sidewalk(tags):
        tier += 1
    return _clamp(tier)


def oneway_direction(tags: Mapping[str, str]) -> int:
    """Return 1 if bicycles may only ride forward, -1 if only backward, 0 if both.

    oneway:bicycle wins over oneway; a contraflow cycleway (cycleway=opposite*)
    opens a one-way street to bicycles in both directions.
    """
    if _value(tags, "cycleway").startswith("opposite"):
        return 0

    for key in ("oneway:bicycle", "oneway"):
        value = _value(tags, key)
        if value in ONEWAY_FORWARD_VALUES:
            return 1
        if value in ONEWAY_REVERSE_VALUES:
            return -1
        if value in ONEWAY_NONE_VALUES:
            return 0

    if _value(tags, "highway") in IMPLIED_ONEWAY_HIGHWAYS:
        return 1
    if _value(tags, "junction") in IMPLIED_ONEWAY_JUNCTIONS:
        return 1
    return 0
