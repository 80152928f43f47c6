"""
Assignment strategies.

Each strategy is a pure function over an ordered candidate list plus a
``StrategyContext``; none of them touch the database. Round-robin reports the
cursor it wants persisted through ``Pick.next_cursor`` and the engine writes
it back.
"""
import enum
import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence


class StrategyType(str, enum.Enum):
    ROUND_ROBIN = "ROUND_ROBIN"
    WORKLOAD_BASED = "WORKLOAD_BASED"
    SKILLS_BASED = "SKILLS_BASED"
    AVAILABILITY_BASED = "AVAILABILITY_BASED"
    EXPERIENCE_BASED = "EXPERIENCE_BASED"
    RANDOM = "RANDOM"


AVAILABILITY_WINDOW = timedelta(hours=24)


@dataclass(frozen=True)
class Candidate:
    user_id: int
    name: str
    role: str
    department_role: Optional[str] = None
    last_seen: Optional[datetime] = None
    open_tasks: int = 0
    completed_tasks: int = 0


@dataclass
class StrategyContext:
    now: datetime
    required_skills: List[str] = field(default_factory=list)
    cursor: int = 0
    rng: random.Random = field(default_factory=random.Random)


@dataclass
class Pick:
    candidate: Optional[Candidate]
    next_cursor: Optional[int] = None


def select_by_workload(candidates: Sequence[Candidate]) -> Optional[Candidate]:
    """Fewest open tasks; min() keeps the first of equals, so ties go to input order."""
    if not candidates:
        return None
    return min(candidates, key=lambda c: c.open_tasks)


def round_robin(candidates: Sequence[Candidate], ctx: StrategyContext) -> Pick:
    if not candidates:
        return Pick(None)
    n = len(candidates)
    index = ctx.cursor % n
    return Pick(candidates[index], next_cursor=(index + 1) % n)


def workload_based(candidates: Sequence[Candidate], ctx: StrategyContext) -> Pick:
    return Pick(select_by_workload(candidates))


def skills_based(candidates: Sequence[Candidate], ctx: StrategyContext) -> Pick:
    skills = [s.lower() for s in ctx.required_skills if s]
    matched = [
        c for c in candidates
        if c.department_role and any(s in c.department_role.lower() for s in skills)
    ]
    return Pick(select_by_workload(matched or candidates))


def availability_based(candidates: Sequence[Candidate], ctx: StrategyContext) -> Pick:
    active = [
        c for c in candidates
        if c.last_seen is not None and ctx.now - c.last_seen < AVAILABILITY_WINDOW
    ]
    if active:
        return Pick(select_by_workload(active))
    return Pick(candidates[0] if candidates else None)


def experience_based(candidates: Sequence[Candidate], ctx: StrategyContext) -> Pick:
    if not candidates:
        return Pick(None)
    # sorted() is stable: equal experience keeps input order
    ranked = sorted(candidates, key=lambda c: c.completed_tasks, reverse=True)
    return Pick(ranked[0])


def random_pick(candidates: Sequence[Candidate], ctx: StrategyContext) -> Pick:
    if not candidates:
        return Pick(None)
    return Pick(candidates[ctx.rng.randrange(len(candidates))])


STRATEGIES: Dict[StrategyType, Callable[[Sequence[Candidate], StrategyContext], Pick]] = {
    StrategyType.ROUND_ROBIN: round_robin,
    StrategyType.WORKLOAD_BASED: workload_based,
    StrategyType.SKILLS_BASED: skills_based,
    StrategyType.AVAILABILITY_BASED: availability_based,
    StrategyType.EXPERIENCE_BASED: experience_based,
    StrategyType.RANDOM: random_pick,
}


def run_strategy(strategy: StrategyType | str, candidates: Sequence[Candidate], ctx: StrategyContext) -> Pick:
    """Raises ValueError for an unknown strategy tag."""
    return STRATEGIES[StrategyType(strategy)](candidates, ctx)
