from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session
from typing import Optional
from collabnotes.db.database import get_db
from collabnotes.core.dependencies import get_current_user
from collabnotes.models.user import User
from collabnotes.schemas.assignment_rules import (
    AssignmentRuleCreate, AssignmentRulePage, AssignmentRuleResponse, AssignmentRuleUpdate, RuleFromTemplate,
)
from collabnotes.services.assignment import rules_service

router = APIRouter()


@router.get("", response_model=AssignmentRulePage)
def list_rules(
    is_active: Optional[bool] = Query(None),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Company rules in evaluation order (priority desc, oldest first)."""
    return rules_service.list_rules(db, current_user, is_active, limit, offset)


@router.post("", response_model=AssignmentRuleResponse, status_code=201)
def create_rule(
    rule_data: AssignmentRuleCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return rules_service.create_rule(db, current_user, rule_data)


@router.get("/templates")
def get_templates(current_user: User = Depends(get_current_user)):
    return {"templates": rules_service.get_templates()}


@router.post("/from-template", response_model=AssignmentRuleResponse, status_code=201)
def create_rule_from_template(
    body: RuleFromTemplate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Start from a built-in template; given fields override the template's."""
    return rules_service.create_rule_from_template(db, current_user, body)


@router.patch("/{rule_id}", response_model=AssignmentRuleResponse)
def update_rule(
    rule_id: int,
    rule_data: AssignmentRuleUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Creator or company admin only."""
    return rules_service.update_rule(db, rule_id, current_user, rule_data)


@router.delete("/{rule_id}", status_code=204, response_class=Response)
def delete_rule(
    rule_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    rules_service.delete_rule(db, rule_id, current_user)
    return Response(status_code=204)
