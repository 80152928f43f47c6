from typing import List, Optional
import logging
from sqlalchemy import desc
from sqlalchemy.orm import Session
from collabnotes.core.errors import Forbidden, NotFound
from collabnotes.core.permissions import Action, can
from collabnotes.models.company import Department
from collabnotes.models.tasks import Task, TaskStatus
from collabnotes.models.user import User
from collabnotes.schemas.tasks import TaskCreate, TaskCreateResponse, TaskResponse
from collabnotes.services.assignment.engine import (
    METHOD_MANUAL, AssignmentEngine, AssignmentResult, TaskFacts, assignment_engine,
)

logger = logging.getLogger(__name__)


def create_task(
    db: Session,
    creator: User,
    data: TaskCreate,
    engine: Optional[AssignmentEngine] = None,
) -> TaskCreateResponse:
    """Create a task, auto-assigning it unless an assignee was given."""
    if not can(creator.role, Action.CREATE_TASK):
        raise Forbidden("Not allowed to create tasks")

    department = db.query(Department).filter(
        Department.id == data.department_id,
        Department.company_id == creator.company_id,
    ).first()
    if not department:
        raise NotFound("Department not found")

    if data.assignee_id is not None:
        assignee = db.query(User).filter(
            User.id == data.assignee_id,
            User.company_id == creator.company_id,
        ).first()
        if not assignee:
            raise NotFound("Assignee not found")
        result = AssignmentResult(assignee_id=assignee.id)
        task = _insert_task(db, creator, department, data, result)
        method = METHOD_MANUAL
    else:
        facts = TaskFacts(
            company_id=creator.company_id,
            department_id=department.id,
            title=data.title,
            description=data.description,
            priority=data.priority.value,
            category=data.category,
            skills=list(data.skills),
        )
        # the task commits together with any round-robin cursor move
        with (engine or assignment_engine).assigning(db, facts) as result:
            task = _insert_task(db, creator, department, data, result)
        method = result.method

    logger.info(f"Task {task.id} created by {creator.id}, {method} to {task.assignee_id}")

    return TaskCreateResponse(
        task=TaskResponse.model_validate(task),
        assignment_method=method,
        strategy=result.strategy,
    )


def _insert_task(db: Session, creator: User, department: Department, data: TaskCreate,
                 result: AssignmentResult) -> Task:
    task = Task(
        company_id=creator.company_id,
        department_id=department.id,
        title=data.title,
        description=data.description,
        priority=data.priority.value,
        category=data.category,
        skills=list(data.skills),
        assignee_id=result.assignee_id,
        assignment_rule_id=result.rule_id,
        created_by=creator.id,
    )
    try:
        db.add(task)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(task)
    return task


def list_tasks(
    db: Session,
    user: User,
    assignee_id: Optional[int] = None,
    department_id: Optional[int] = None,
    status: Optional[TaskStatus] = None,
) -> List[Task]:
    query = db.query(Task).filter(Task.company_id == user.company_id)
    if assignee_id is not None:
        query = query.filter(Task.assignee_id == assignee_id)
    if department_id is not None:
        query = query.filter(Task.department_id == department_id)
    if status is not None:
        query = query.filter(Task.status == status.value)
    return query.order_by(desc(Task.created_at), desc(Task.id)).all()


def update_status(db: Session, task_id: int, user: User, status: TaskStatus) -> Task:
    task = db.query(Task).filter(Task.id == task_id, Task.company_id == user.company_id).first()
    if not task:
        raise NotFound("Task not found")
    if user.id not in (task.assignee_id, task.created_by) and not can(user.role, Action.UPDATE_ANY_TASK):
        raise Forbidden("Only the assignee or creator can update this task")

    task.status = status.value
    db.commit()
    db.refresh(task)
    logger.info(f"Task {task.id} moved to {task.status} by {user.id}")
    return task
