"""
Task auto-assignment.

Active rules of the task's company are tried in priority order. The first
matching rule whose strategy yields a candidate wins; otherwise the default
(least-loaded plain user of the task's department) applies, and when that
finds nobody the task stays unassigned.
"""
import logging
import random
import threading
from contextlib import ExitStack, contextmanager
from dataclasses import asdict, dataclass, field
from datetime import datetime, time, timezone
from typing import Callable, Dict, Iterator, List, Optional, Tuple
from zoneinfo import ZoneInfo

from sqlalchemy import desc, func, update
from sqlalchemy.orm import Session

from collabnotes.core.clock import utcnow
from collabnotes.core.permissions import Role
from collabnotes.models.assignment_rules import AssignmentRule
from collabnotes.models.tasks import TERMINAL_STATUSES, Task, TaskStatus
from collabnotes.models.user import User
from collabnotes.services.assignment.conditions import evaluate_conditions
from collabnotes.services.assignment.strategies import (
    Candidate, Pick, StrategyContext, StrategyType, run_strategy, select_by_workload,
)

logger = logging.getLogger(__name__)

METHOD_MANUAL = "manual"
METHOD_AUTO = "auto-assigned"
METHOD_UNASSIGNED = "unassigned"
DEFAULT_STRATEGY = "DEFAULT_WORKLOAD"

# one lock per rule id, guards the round-robin read-modify-write in this process
_cursor_locks: Dict[int, threading.Lock] = {}
_cursor_locks_guard = threading.Lock()


def _cursor_lock(rule_id: int) -> threading.Lock:
    with _cursor_locks_guard:
        return _cursor_locks.setdefault(rule_id, threading.Lock())


@dataclass
class TaskFacts:
    """The task attributes rule conditions can look at."""
    company_id: int
    department_id: int
    title: str = ""
    description: Optional[str] = None
    priority: str = "MEDIUM"
    category: Optional[str] = None
    skills: List[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class AssignmentResult:
    assignee_id: Optional[int] = None
    rule_id: Optional[int] = None
    strategy: Optional[str] = None

    @property
    def method(self) -> str:
        return METHOD_AUTO if self.assignee_id is not None else METHOD_UNASSIGNED


def within_business_hours(hours: dict, now: datetime) -> bool:
    """``now`` is naive UTC; the window is evaluated in the rule's timezone."""
    tz = ZoneInfo(hours.get("timezone") or "UTC")
    local = now.replace(tzinfo=timezone.utc).astimezone(tz)
    workdays = hours.get("workdays") or [1, 2, 3, 4, 5]
    if local.isoweekday() not in workdays:
        return False
    start = time.fromisoformat(hours.get("start") or "00:00")
    end = time.fromisoformat(hours.get("end") or "23:59")
    return start <= local.time() < end


class AssignmentEngine:

    def __init__(self, rng: Optional[random.Random] = None, clock: Callable[[], datetime] = utcnow):
        self.rng = rng or random.Random()
        self.clock = clock

    # --------------------------------------------------
    # Rules and candidates
    # --------------------------------------------------
    def active_rules(self, db: Session, company_id: int) -> List[AssignmentRule]:
        return (
            db.query(AssignmentRule)
            .filter(AssignmentRule.company_id == company_id, AssignmentRule.is_active == True)  # noqa: E712
            .order_by(desc(AssignmentRule.priority), AssignmentRule.created_at, AssignmentRule.id)
            .all()
        )

    def load_candidates(self, db: Session, logic: dict, task: TaskFacts) -> List[Candidate]:
        query = db.query(User).filter(User.company_id == task.company_id)

        allowed_roles = logic.get("allowed_roles") or []
        if allowed_roles:
            query = query.filter(User.role.in_(allowed_roles))
        else:
            query = query.filter(User.role != Role.SUPER_ADMIN.value)

        if not logic.get("cross_department"):
            query = query.filter(User.department_id == task.department_id)

        exclude = logic.get("exclude_users") or []
        if exclude:
            query = query.filter(User.id.notin_(exclude))

        users = query.order_by(User.id).all()
        candidates = self._with_task_counts(db, users)

        max_tasks = logic.get("max_tasks_per_user")
        if isinstance(max_tasks, int) and not isinstance(max_tasks, bool):
            candidates = [c for c in candidates if c.open_tasks < max_tasks]
        return candidates

    def _with_task_counts(self, db: Session, users: List[User]) -> List[Candidate]:
        ids = [u.id for u in users]
        if not ids:
            return []
        open_counts = dict(
            db.query(Task.assignee_id, func.count(Task.id))
            .filter(Task.assignee_id.in_(ids), Task.status.notin_(TERMINAL_STATUSES))
            .group_by(Task.assignee_id)
            .all()
        )
        done_counts = dict(
            db.query(Task.assignee_id, func.count(Task.id))
            .filter(Task.assignee_id.in_(ids), Task.status == TaskStatus.DONE.value)
            .group_by(Task.assignee_id)
            .all()
        )
        return [
            Candidate(
                user_id=u.id,
                name=u.name,
                role=u.role,
                department_role=u.department_role,
                last_seen=u.last_seen,
                open_tasks=open_counts.get(u.id, 0),
                completed_tasks=done_counts.get(u.id, 0),
            )
            for u in users
        ]

    # --------------------------------------------------
    # Assignment
    # --------------------------------------------------
    def assign(self, db: Session, task: TaskFacts) -> AssignmentResult:
        with self.assigning(db, task) as result:
            return result

    @contextmanager
    def assigning(self, db: Session, task: TaskFacts) -> Iterator[AssignmentResult]:
        """
        Pick an assignee for ``task``. Round-robin cursor locks taken while
        picking stay held until the block exits, so the caller inserts and
        commits the task before anyone else reads the cursor.

        Nothing here commits or rolls back the caller's transaction; each rule
        runs inside its own savepoint.
        """
        with ExitStack() as held:
            yield self._pick(db, task, held)

    def _pick(self, db: Session, task: TaskFacts, held: ExitStack) -> AssignmentResult:
        facts = task.as_dict()
        for rule in self.active_rules(db, task.company_id):
            rule_id = rule.id
            try:
                if not evaluate_conditions(rule.conditions, facts):
                    continue
                if (rule.assignment_logic or {}).get("type") == StrategyType.ROUND_ROBIN.value:
                    held.enter_context(_cursor_lock(rule_id))
                with db.begin_nested():
                    candidate, strategy = self._apply_rule(db, rule, task)
            except Exception as e:
                # a broken rule counts as "no candidate"
                logger.error(f"Assignment rule {rule_id} failed: {e}")
                continue
            if candidate is not None:
                logger.info(f"Rule {rule_id} ({strategy}) picked user {candidate.user_id}")
                return AssignmentResult(candidate.user_id, rule_id, strategy)

        candidate = self.default_candidate(db, task)
        if candidate is not None:
            logger.info(f"Default assignment picked user {candidate.user_id}")
            return AssignmentResult(candidate.user_id, None, DEFAULT_STRATEGY)

        logger.info(f"No assignee found in department {task.department_id}, task left unassigned")
        return AssignmentResult()

    def default_candidate(self, db: Session, task: TaskFacts) -> Optional[Candidate]:
        candidates = self.load_candidates(db, {"allowed_roles": [Role.USER.value]}, task)
        return select_by_workload(candidates)

    def _apply_rule(self, db: Session, rule: AssignmentRule, task: TaskFacts) -> Tuple[Optional[Candidate], str]:
        logic = rule.assignment_logic or {}
        strategy = StrategyType(logic.get("type"))
        now = self.clock()

        hours = logic.get("business_hours")
        if hours and not within_business_hours(hours, now):
            return None, strategy.value

        candidates = self.load_candidates(db, logic, task)
        if not candidates:
            return None, strategy.value

        ctx = StrategyContext(
            now=now,
            required_skills=list(task.skills or logic.get("required_skills") or []),
            rng=self.rng,
        )
        if strategy == StrategyType.ROUND_ROBIN:
            pick = self._round_robin(db, rule.id, candidates, ctx)
        else:
            pick = run_strategy(strategy, candidates, ctx)
        return pick.candidate, strategy.value

    def _round_robin(self, db: Session, rule_id: int, candidates: List[Candidate], ctx: StrategyContext) -> Pick:
        """
        Advance the cursor inside the caller's transaction. The caller holds
        the rule's lock for this process; the row lock and the conditional
        UPDATE cover other workers.
        """
        current = (
            db.query(AssignmentRule.rr_cursor)
            .filter(AssignmentRule.id == rule_id)
            .with_for_update()
            .scalar()
        ) or 0
        ctx.cursor = current
        pick = run_strategy(StrategyType.ROUND_ROBIN, candidates, ctx)
        result = db.execute(
            update(AssignmentRule)
            .where(AssignmentRule.id == rule_id, AssignmentRule.rr_cursor == current)
            .values(rr_cursor=pick.next_cursor, updated_at=AssignmentRule.updated_at)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise RuntimeError(f"Round-robin cursor of rule {rule_id} moved concurrently")
        return pick


assignment_engine = AssignmentEngine()
