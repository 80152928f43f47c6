import copy
import logging
from typing import Optional
from sqlalchemy import desc
from sqlalchemy.orm import Session
from collabnotes.core.errors import Forbidden, NotFound
from collabnotes.core.permissions import Action, can
from collabnotes.models.assignment_rules import AssignmentRule
from collabnotes.models.user import User
from collabnotes.schemas.assignment_rules import (
    AssignmentLogic, AssignmentRuleCreate, AssignmentRulePage, AssignmentRuleResponse,
    AssignmentRuleUpdate, Condition, RuleFromTemplate,
)

logger = logging.getLogger(__name__)


# Built-in starting points for new rules
TEMPLATES = [
    {
        "name": "Lagos Business Hours Round Robin",
        "description": "Assigns tasks during Lagos business hours using round-robin",
        "category": "time_based",
        "conditions": {},
        "assignment_logic": {
            "type": "ROUND_ROBIN",
            "allowed_roles": ["USER", "DEPT_HEAD"],
            "business_hours": {
                "timezone": "Africa/Lagos",
                "start": "08:00",
                "end": "17:00",
                "workdays": [1, 2, 3, 4, 5],
            },
        },
    },
    {
        "name": "Urgent Task Priority Assignment",
        "description": "Assigns urgent tasks to most experienced available users",
        "category": "priority_based",
        "conditions": {"priority": {"operator": "in", "value": ["HIGH", "URGENT"]}},
        "assignment_logic": {
            "type": "EXPERIENCE_BASED",
            "allowed_roles": ["USER", "DEPT_HEAD"],
            "cross_department": True,
        },
    },
    {
        "name": "Skills-Based Developer Assignment",
        "description": "Assigns development tasks based on technical skills",
        "category": "skills_based",
        "conditions": {"category": {"operator": "contains", "value": "development"}},
        "assignment_logic": {
            "type": "SKILLS_BASED",
            "required_skills": ["javascript", "react", "node.js", "python"],
            "allowed_roles": ["USER"],
        },
    },
    {
        "name": "Workload Balancing",
        "description": "Distributes tasks evenly across team members",
        "category": "workload_based",
        "conditions": {},
        "assignment_logic": {
            "type": "WORKLOAD_BASED",
            "allowed_roles": ["USER"],
            "max_tasks_per_user": 5,
        },
    },
    {
        "name": "Department Head Approval Tasks",
        "description": "Assigns approval tasks to department heads",
        "category": "approval_based",
        "conditions": {"title": {"operator": "contains", "value": "approval"}},
        "assignment_logic": {
            "type": "RANDOM",
            "allowed_roles": ["DEPT_HEAD", "ADMIN"],
        },
    },
]


def _dump_logic(logic: AssignmentLogic) -> dict:
    return logic.model_dump(mode="json", exclude_none=True)


def _dump_conditions(conditions: dict[str, Condition]) -> dict:
    return {attr: cond.model_dump(mode="json") for attr, cond in conditions.items()}


def _get_visible_rule(db: Session, rule_id: int, user: User) -> AssignmentRule:
    rule = db.query(AssignmentRule).filter(
        AssignmentRule.id == rule_id,
        AssignmentRule.company_id == user.company_id,
    ).first()
    if not rule:
        raise NotFound("Assignment rule not found")
    return rule


def _check_can_manage(rule: AssignmentRule, user: User) -> None:
    if rule.created_by != user.id and not can(user.role, Action.MANAGE_ANY_ASSIGNMENT_RULE):
        raise Forbidden("Only the creator or a company admin can change this rule")


# --------------------------------------------------
# CRUD
# --------------------------------------------------
def create_rule(db: Session, user: User, data: AssignmentRuleCreate) -> AssignmentRule:
    if not can(user.role, Action.CREATE_ASSIGNMENT_RULE):
        raise Forbidden("Not allowed to create assignment rules")

    rule = AssignmentRule(
        company_id=user.company_id,
        name=data.name,
        description=data.description,
        is_active=data.is_active,
        conditions=_dump_conditions(data.conditions),
        assignment_logic=_dump_logic(data.assignment_logic),
        priority=data.priority,
        created_by=user.id,
    )
    db.add(rule)
    db.commit()
    db.refresh(rule)
    logger.info(f"User {user.id} created assignment rule {rule.id} ({rule.name})")
    return rule


def list_rules(
    db: Session,
    user: User,
    is_active: Optional[bool] = None,
    limit: int = 50,
    offset: int = 0,
) -> AssignmentRulePage:
    query = db.query(AssignmentRule).filter(AssignmentRule.company_id == user.company_id)
    if is_active is not None:
        query = query.filter(AssignmentRule.is_active == is_active)

    total = query.count()
    rules = (
        query.order_by(desc(AssignmentRule.priority), AssignmentRule.created_at, AssignmentRule.id)
        .offset(offset)
        .limit(limit)
        .all()
    )
    return AssignmentRulePage(
        rules=[AssignmentRuleResponse.model_validate(r) for r in rules],
        total=total,
        limit=limit,
        offset=offset,
        has_more=offset + limit < total,
    )


def update_rule(db: Session, rule_id: int, user: User, data: AssignmentRuleUpdate) -> AssignmentRule:
    rule = _get_visible_rule(db, rule_id, user)
    _check_can_manage(rule, user)

    if data.name is not None:
        rule.name = data.name
    if data.description is not None:
        rule.description = data.description
    if data.conditions is not None:
        rule.conditions = _dump_conditions(data.conditions)
    if data.assignment_logic is not None:
        rule.assignment_logic = _dump_logic(data.assignment_logic)
    if data.priority is not None:
        rule.priority = data.priority
    if data.is_active is not None:
        rule.is_active = data.is_active

    db.commit()
    db.refresh(rule)
    logger.info(f"User {user.id} updated assignment rule {rule.id}")
    return rule


def delete_rule(db: Session, rule_id: int, user: User) -> None:
    rule = _get_visible_rule(db, rule_id, user)
    _check_can_manage(rule, user)
    db.delete(rule)
    db.commit()
    logger.info(f"User {user.id} deleted assignment rule {rule_id}")


# --------------------------------------------------
# Templates
# --------------------------------------------------
def get_templates() -> list[dict]:
    return copy.deepcopy(TEMPLATES)


def create_rule_from_template(db: Session, user: User, data: RuleFromTemplate) -> AssignmentRule:
    """Template fields, shallow-merged with the caller's customisations."""
    template = next((t for t in TEMPLATES if t["name"] == data.template_name), None)
    if template is None:
        raise NotFound(f"Template '{data.template_name}' not found")

    conditions = {**template["conditions"], **_dump_conditions(data.conditions)}
    logic = {**template["assignment_logic"], **data.assignment_logic}

    rule_data = AssignmentRuleCreate(
        name=data.name or template["name"],
        description=data.description or template["description"],
        conditions=conditions,
        assignment_logic=logic,
        priority=data.priority if data.priority is not None else 100,
    )
    return create_rule(db, user, rule_data)
