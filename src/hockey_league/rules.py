"""Season rules: point values per outcome and the ordered tiebreaker list."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from .config import DEFAULT_POINTS, DEFAULT_TIEBREAKERS, TIEBREAKER_FIELDS

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SeasonRules:
    win: float = DEFAULT_POINTS["win"]
    ot_loss: float = DEFAULT_POINTS["otLoss"]
    loss: float = DEFAULT_POINTS["loss"]
    tiebreakers: tuple[str, ...] = field(default=DEFAULT_TIEBREAKERS)

    def to_dict(self) -> dict[str, Any]:
        return {
            "points": {"win": self.win, "otLoss": self.ot_loss, "loss": self.loss},
            "tiebreakers": list(self.tiebreakers),
        }


DEFAULT_RULES = SeasonRules()


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _parse_points(raw: Any) -> dict[str, float]:
    points = dict(DEFAULT_POINTS)
    if not isinstance(raw, dict):
        return points
    for key in points:
        value = raw.get(key)
        if _is_number(value):
            points[key] = value
    return points


def _parse_tiebreakers(raw: Any) -> tuple[str, ...]:
    if not isinstance(raw, (list, tuple)):
        return DEFAULT_TIEBREAKERS
    keys: list[str] = []
    for key in raw:
        if isinstance(key, str) and key in TIEBREAKER_FIELDS and key not in keys:
            keys.append(key)
    return tuple(keys) or DEFAULT_TIEBREAKERS


def parse_rules(raw: Any) -> SeasonRules:
    """Build rules from a season's stored document.

    Missing or malformed parts fall back to the defaults (2/1/0 points and the
    points, regulationWins, goalDifferential, headToHead, goalsFor order) instead
    of failing; unknown tiebreaker keys are dropped.
    """
    if raw is None:
        return DEFAULT_RULES
    if not isinstance(raw, dict):
        logger.warning("Season rules are not a mapping (%s); using defaults", type(raw).__name__)
        return DEFAULT_RULES
    points = _parse_points(raw.get("points"))
    return SeasonRules(
        win=points["win"],
        ot_loss=points["otLoss"],
        loss=points["loss"],
        tiebreakers=_parse_tiebreakers(raw.get("tiebreakers")),
    )
