import enum
from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, Text
from collabnotes.core.clock import utcnow
from collabnotes.db.database import Base


class TaskStatus(str, enum.Enum):
    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"


class TaskPriority(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


# statuses that no longer count towards a user's workload
TERMINAL_STATUSES = (TaskStatus.DONE.value,)


class Task(Base):
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    department_id = Column(Integer, ForeignKey("departments.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default=TaskStatus.TODO.value)
    priority = Column(String(20), nullable=False, default=TaskPriority.MEDIUM.value)
    category = Column(String(100), nullable=True)
    skills = Column(JSON, nullable=False, default=list)
    assignee_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    # which rule picked the assignee, None for manual/default/unassigned
    assignment_rule_id = Column(Integer, ForeignKey("assignment_rules.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
