from pydantic import AliasChoices, BaseModel, Field
from datetime import datetime
from typing import List, Optional
from collabnotes.models.tasks import TaskPriority, TaskStatus


class TaskCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    department_id: int = Field(validation_alias=AliasChoices("department_id", "departmentId"))
    priority: TaskPriority = TaskPriority.MEDIUM
    category: Optional[str] = Field(None, max_length=100)
    skills: List[str] = Field(default_factory=list)
    # explicit assignee skips auto-assignment
    assignee_id: Optional[int] = Field(None, validation_alias=AliasChoices("assignee_id", "assigneeId"))


class TaskStatusUpdate(BaseModel):
    status: TaskStatus


class TaskResponse(BaseModel):
    id: int
    company_id: int
    department_id: int
    title: str
    description: Optional[str] = None
    status: str
    priority: str
    category: Optional[str] = None
    skills: List[str] = []
    assignee_id: Optional[int] = None
    assignment_rule_id: Optional[int] = None
    created_by: int
    created_at: datetime

    class Config:
        from_attributes = True


class TaskCreateResponse(BaseModel):
    task: TaskResponse
    assignment_method: str  # "manual" | "auto-assigned" | "unassigned"
    strategy: Optional[str] = None
