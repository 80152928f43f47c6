from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from collabnotes.core.permissions import Role
from collabnotes.db.database import Base

class User(Base):
    __tablename__ = "users"

    id            = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name          = Column(String(64), nullable=False)
    email         = Column(String(128), unique=True, nullable=False)
    company_id    = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    department_id = Column(Integer, ForeignKey("departments.id", ondelete="SET NULL"), nullable=True, index=True)
    role          = Column(String(20), nullable=False, default=Role.USER.value)
    # free-text role inside the department, doubles as the skill tag for assignment
    department_role = Column(String(128), nullable=True)
    last_seen     = Column(DateTime, nullable=True)
