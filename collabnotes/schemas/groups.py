from pydantic import AliasChoices, BaseModel, Field
from datetime import datetime
from typing import List


# Create a group; the creator joins as admin
class GroupCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: str | None = Field(None, max_length=500)
    member_ids: List[int] = Field(default_factory=list, validation_alias=AliasChoices("member_ids", "memberIds"))


# Update group details (admins only)
class GroupUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=100)
    description: str | None = Field(None, max_length=500)


class GroupMembersAdd(BaseModel):
    member_ids: List[int] = Field(min_length=1, validation_alias=AliasChoices("member_ids", "memberIds"))


class GroupMemberResponse(BaseModel):
    id: int
    group_id: int
    user_id: int
    role: str
    joined_at: datetime

    class Config:
        from_attributes = True


class GroupResponse(BaseModel):
    id: int
    name: str
    description: str | None = None
    company_id: int
    created_by: int
    created_at: datetime
    updated_at: datetime
    members: List[GroupMemberResponse] = []

    class Config:
        from_attributes = True
