"""
Overlap engine
Turns per-user availability slots into ranked candidate meeting windows.

Pure functions over plain inputs: no database access, no clock reads.
"""

from datetime import datetime, timedelta
from typing import Iterable, Optional

from pydantic import BaseModel, ConfigDict

from ... import config


class Slot(BaseModel):
    """Half-open UTC interval [start, end)"""

    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime
    preferred: bool = False


class ResponseSlots(BaseModel):
    user_id: str
    slots: list[Slot] = []


class ScoringPolicy(BaseModel):
    """score = participant_weight * participants + preferred_weight * preferred"""

    model_config = ConfigDict(frozen=True)

    participant_weight: float = 1.0
    preferred_weight: float = 0.5

    @classmethod
    def from_config(cls) -> "ScoringPolicy":
        return cls(
            participant_weight=config.SUGGESTION_PARTICIPANT_WEIGHT,
            preferred_weight=config.SUGGESTION_PREFERRED_WEIGHT,
        )

    def score(self, participant_count: int, preferred_count: int) -> float:
        return round(
            participant_count * self.participant_weight + preferred_count * self.preferred_weight, 4
        )


class Candidate(BaseModel):
    start: datetime
    end: datetime
    participant_user_ids: list[str]
    participant_count: int
    preferred_count: int
    meets_minimum: bool
    score: float
    rank: int = 0


def _boundaries(responses: list[ResponseSlots]) -> list[datetime]:
    points = set()
    for response in responses:
        for slot in response.slots:
            points.add(slot.start)
            points.add(slot.end)
    return sorted(points)


def _coverage(
    responses: list[ResponseSlots], start: datetime, end: datetime
) -> tuple[frozenset, frozenset]:
    """Users whose slots cover [start, end), and the subset who marked it preferred"""
    covering = set()
    preferred = set()
    for response in responses:
        for slot in response.slots:
            if slot.start <= start and slot.end >= end:
                covering.add(response.user_id)
                if slot.preferred:
                    preferred.add(response.user_id)
    return frozenset(covering), frozenset(preferred)


def _usable(responses: Iterable[ResponseSlots]) -> list[ResponseSlots]:
    """Drop empty and inverted slots; collapse duplicate user entries"""
    by_user: dict[str, list[Slot]] = {}
    for response in responses:
        valid = [slot for slot in response.slots if slot.end > slot.start]
        by_user.setdefault(response.user_id, []).extend(valid)
    return [
        ResponseSlots(user_id=user_id, slots=slots)
        for user_id, slots in sorted(by_user.items())
        if slots
    ]


def compute_suggestions(
    responses: Iterable[ResponseSlots],
    min_participants: int,
    min_duration: timedelta = timedelta(0),
    policy: Optional[ScoringPolicy] = None,
) -> list[Candidate]:
    """
    Sweep the shared timeline and return ranked candidate windows.

    1. Every slot boundary across all users splits the timeline into elementary intervals.
    2. Each interval is labelled with the set of users covering it.
    3. Adjacent intervals with the same covering set are merged into one window.
    4. Windows nobody covers, or shorter than min_duration, are discarded.

    A user counts as preferring a merged window only if they preferred every part of it.
    Ranking is score descending, then earliest start, then earliest end.
    """
    policy = policy or ScoringPolicy()
    usable = _usable(responses)
    points = _boundaries(usable)

    windows = []  # [start, end, covering, preferred]
    for start, end in zip(points, points[1:]):
        covering, preferred = _coverage(usable, start, end)
        if windows and windows[-1][1] == start and windows[-1][2] == covering:
            windows[-1][1] = end
            windows[-1][3] = windows[-1][3] & preferred
        else:
            windows.append([start, end, covering, preferred])

    candidates = []
    for start, end, covering, preferred in windows:
        if not covering or end - start < min_duration:
            continue
        participant_count = len(covering)
        preferred_count = len(preferred)
        candidates.append(
            Candidate(
                start=start,
                end=end,
                participant_user_ids=sorted(covering),
                participant_count=participant_count,
                preferred_count=preferred_count,
                meets_minimum=participant_count >= min_participants,
                score=policy.score(participant_count, preferred_count),
            )
        )

    candidates.sort(key=lambda c: (-c.score, c.start, c.end))
    for position, candidate in enumerate(candidates, start=1):
        candidate.rank = position
    return candidates
