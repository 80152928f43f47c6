from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from datetime import datetime
from typing import Any, Dict, List, Optional
from collabnotes.services.assignment.conditions import Operator
from collabnotes.services.assignment.strategies import StrategyType


class Condition(BaseModel):
    operator: Operator
    value: Any = None


class BusinessHours(BaseModel):
    timezone: str = "UTC"
    start: str = "08:00"
    end: str = "17:00"
    workdays: List[int] = Field(default_factory=lambda: [1, 2, 3, 4, 5])  # ISO weekdays


class AssignmentLogic(BaseModel):
    # unknown keys (e.g. max_tasks_per_user) are kept as-is
    model_config = ConfigDict(extra="allow", use_enum_values=True)

    type: StrategyType
    allowed_roles: List[str] = Field(default_factory=list)
    exclude_users: List[int] = Field(default_factory=list)
    cross_department: bool = False
    required_skills: List[str] = Field(default_factory=list)
    business_hours: Optional[BusinessHours] = None


class AssignmentRuleCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = None
    conditions: Dict[str, Condition] = Field(default_factory=dict)
    assignment_logic: AssignmentLogic = Field(
        validation_alias=AliasChoices("assignment_logic", "assignmentLogic")
    )
    priority: int = 100
    is_active: bool = Field(True, validation_alias=AliasChoices("is_active", "isActive"))


class AssignmentRuleUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    conditions: Optional[Dict[str, Condition]] = None
    assignment_logic: Optional[AssignmentLogic] = Field(
        None, validation_alias=AliasChoices("assignment_logic", "assignmentLogic")
    )
    priority: Optional[int] = None
    is_active: Optional[bool] = Field(None, validation_alias=AliasChoices("is_active", "isActive"))


class RuleFromTemplate(BaseModel):
    template_name: str = Field(validation_alias=AliasChoices("template_name", "templateName"))
    name: Optional[str] = None
    description: Optional[str] = None
    conditions: Dict[str, Condition] = Field(default_factory=dict)
    assignment_logic: Dict[str, Any] = Field(
        default_factory=dict, validation_alias=AliasChoices("assignment_logic", "assignmentLogic")
    )
    priority: Optional[int] = None


class AssignmentRuleResponse(BaseModel):
    id: int
    company_id: int
    name: str
    description: Optional[str] = None
    is_active: bool
    conditions: Dict[str, Any]
    assignment_logic: Dict[str, Any]
    priority: int
    rr_cursor: int
    created_by: int
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class AssignmentRulePage(BaseModel):
    rules: List[AssignmentRuleResponse]
    total: int
    limit: int
    offset: int
    has_more: bool
