"""Expert/task fit scoring.

Every signal is normalised to [0, 1] and combined as a weighted sum. The
functions here are pure: given the same task, expert, weights and ``now``
they always return the same result, which keeps ranking deterministic.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime

from assignmint.db_models import Expert, Task
from assignmint.utils import ensure_utc, safe_json_loads, utcnow

DEFAULT_WEIGHTS: dict[str, float] = {
    "subject_fit": 0.25,
    "price_fit": 0.15,
    "deadline_fit": 0.15,
    "rating": 0.15,
    "accept_rate": 0.10,
    "response_speed": 0.10,
    "level_match": 0.05,
    "historical_success": 0.05,
}

# Minimum completed tasks in a subject that count as subject fit
SUBJECT_EXPERIENCE_FLOOR = 2
# Hours an expert needs to deliver
MIN_DELIVERY_HOURS = 2.0
# Ratings below this count carry no accept-rate signal
ACCEPT_RATE_MIN_SAMPLES = 10
PRICE_MIDPOINT_TOLERANCE = 0.2


def clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


def map_linear(value: float, in_min: float, in_max: float, out_min: float, out_max: float) -> float:
    normalized = (value - in_min) / (in_max - in_min)
    return out_min + normalized * (out_max - out_min)


def expert_subjects(expert: Expert) -> set[str]:
    parsed = safe_json_loads(expert.subjects)
    if isinstance(parsed, list):
        return {s for s in parsed if isinstance(s, str)}
    return set()


def completed_in(expert: Expert, subject: str) -> int:
    parsed = safe_json_loads(expert.completed_by_subject)
    if isinstance(parsed, dict):
        try:
            return int(parsed.get(subject, 0) or 0)
        except (TypeError, ValueError):
            return 0
    return 0


def resolve_weights(overrides: Mapping[str, float] | None = None) -> dict[str, float]:
    """Merge partial weight overrides onto the defaults."""
    weights = dict(DEFAULT_WEIGHTS)
    if overrides:
        unknown = set(overrides) - set(DEFAULT_WEIGHTS)
        if unknown:
            raise ValueError(f"Unknown scoring signals: {', '.join(sorted(unknown))}")
        weights.update(overrides)
    return weights


# ---------------------------------------------------------------------------
# Signals
# ---------------------------------------------------------------------------


def subject_fit(task: Task, expert: Expert) -> float:
    if task.subject in expert_subjects(expert):
        return 1.0
    if completed_in(expert, task.subject) >= SUBJECT_EXPERIENCE_FLOOR:
        return 1.0
    return 0.0


def price_fit(task: Task, expert: Expert) -> float:
    if expert.min_price is None or expert.max_price is None:
        return 0.5

    if expert.min_price <= task.price <= expert.max_price:
        return 1.0

    midpoint = (expert.min_price + expert.max_price) / 2
    if abs(task.price - midpoint) <= abs(midpoint) * PRICE_MIDPOINT_TOLERANCE:
        return 0.5
    return 0.0


def deadline_fit(task: Task, now: datetime) -> float:
    deadline = ensure_utc(task.deadline_at)
    if deadline is None:
        return 1.0
    hours_left = (deadline - now).total_seconds() / 3600
    if hours_left >= MIN_DELIVERY_HOURS:
        return 1.0
    if hours_left >= MIN_DELIVERY_HOURS * 0.5:
        return 0.4
    return 0.0


def rating_score(expert: Expert) -> float:
    return clamp01(map_linear(expert.rating_avg, 3.5, 5.0, 0.0, 1.0))


def accept_rate_score(expert: Expert) -> float:
    if expert.rating_count < ACCEPT_RATE_MIN_SAMPLES:
        return 0.5
    return clamp01(expert.accept_rate)


def response_speed_score(expert: Expert) -> float:
    minutes = expert.median_response_minutes
    if minutes <= 5:
        return 1.0
    if minutes >= 120:
        return 0.2
    return map_linear(minutes, 5, 120, 1.0, 0.2)


def level_match(task: Task, expert: Expert) -> float:
    # No level constraint is enforced yet.
    return 1.0


def historical_success(task: Task, expert: Expert) -> float:
    return clamp01(map_linear(completed_in(expert, task.subject), 0, 10, 0.5, 1.0))


# ---------------------------------------------------------------------------
# Scoring and ranking
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ScoreResult:
    total: float
    signals: dict[str, float]
    weights: dict[str, float] = field(repr=False)

    def breakdown(self) -> dict[str, dict[str, float]]:
        return {
            name: {
                "score": value,
                "weight": self.weights[name],
                "weighted": value * self.weights[name],
            }
            for name, value in self.signals.items()
        }


@dataclass(frozen=True)
class RankedExpert:
    expert: Expert
    score: ScoreResult

    @property
    def total(self) -> float:
        return self.score.total


def score(
    task: Task,
    expert: Expert,
    weights: Mapping[str, float] | None = None,
    now: datetime | None = None,
) -> ScoreResult:
    """Compute the weighted fit of ``expert`` for ``task``."""
    final_weights = resolve_weights(weights)
    now = now or utcnow()

    signals = {
        "subject_fit": subject_fit(task, expert),
        "price_fit": price_fit(task, expert),
        "deadline_fit": deadline_fit(task, now),
        "rating": rating_score(expert),
        "accept_rate": accept_rate_score(expert),
        "response_speed": response_speed_score(expert),
        "level_match": level_match(task, expert),
        "historical_success": historical_success(task, expert),
    }
    total = sum(value * final_weights[name] for name, value in signals.items())
    return ScoreResult(total=clamp01(total), signals=signals, weights=final_weights)


def rank_experts(
    task: Task,
    experts: Iterable[Expert],
    weights: Mapping[str, float] | None = None,
    now: datetime | None = None,
) -> list[RankedExpert]:
    """Score and sort experts, best first. Ties keep input order."""
    now = now or utcnow()
    ranked = [RankedExpert(expert, score(task, expert, weights, now)) for expert in experts]
    # sorted() is stable, so equal totals keep their input order
    return sorted(ranked, key=lambda r: -r.total)
