from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from typing import Optional
import logging
from collabnotes.db.database import get_db
from collabnotes.core.dependencies import get_current_user
from collabnotes.models.tasks import TaskStatus
from collabnotes.models.user import User
from collabnotes.schemas.tasks import TaskCreate, TaskCreateResponse, TaskResponse, TaskStatusUpdate
from collabnotes.services import task_service

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("", response_model=TaskCreateResponse, status_code=201)
def create_task(
    task_data: TaskCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Create a task.

    Without assignee_id the assignment rules pick one; a task nobody can
    take is created unassigned.
    """
    try:
        return task_service.create_task(db, current_user, task_data)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Create task failed: {e}")
        raise HTTPException(500, detail=f"Failed to create task: {str(e)}")


@router.get("", response_model=list[TaskResponse])
def list_tasks(
    assignee_id: Optional[int] = Query(None),
    department_id: Optional[int] = Query(None),
    status: Optional[TaskStatus] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return task_service.list_tasks(db, current_user, assignee_id, department_id, status)


@router.patch("/{task_id}/status", response_model=TaskResponse)
def update_task_status(
    task_id: int,
    body: TaskStatusUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return task_service.update_status(db, task_id, current_user, body.status)
