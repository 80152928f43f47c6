from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from collabnotes.core.clock import utcnow
from collabnotes.db.database import Base


class AssignmentRule(Base):
    __tablename__ = "assignment_rules"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    # {attribute: {"operator": ..., "value": ...}}
    conditions = Column(JSON, nullable=False, default=dict)
    # {"type": "ROUND_ROBIN", "allowed_roles": [...], ...}
    assignment_logic = Column(JSON, nullable=False, default=dict)
    priority = Column(Integer, nullable=False, default=100)
    # next round-robin slot; re-normalised against the eligible count on every use
    rr_cursor = Column(Integer, nullable=False, default=0)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
