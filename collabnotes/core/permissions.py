import enum
from types import MappingProxyType
from typing import Mapping


class Role(str, enum.Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    ADMIN = "ADMIN"
    DEPT_HEAD = "DEPT_HEAD"
    USER = "USER"


class Action(str, enum.Enum):
    DELETE_ANY_MESSAGE = "message:delete_any"
    VIEW_COMPANY_MESSAGES = "message:view_company"
    CREATE_ASSIGNMENT_RULE = "assignment_rule:create"
    MANAGE_ANY_ASSIGNMENT_RULE = "assignment_rule:manage_any"
    CREATE_TASK = "task:create"
    UPDATE_ANY_TASK = "task:update_any"


# Every (role, action) pair is listed; test_permissions checks the table is total.
PERMISSIONS: Mapping[tuple[Role, Action], bool] = MappingProxyType({
    (Role.SUPER_ADMIN, Action.DELETE_ANY_MESSAGE): True,
    (Role.SUPER_ADMIN, Action.VIEW_COMPANY_MESSAGES): True,
    (Role.SUPER_ADMIN, Action.CREATE_ASSIGNMENT_RULE): True,
    (Role.SUPER_ADMIN, Action.MANAGE_ANY_ASSIGNMENT_RULE): True,
    (Role.SUPER_ADMIN, Action.CREATE_TASK): True,
    (Role.SUPER_ADMIN, Action.UPDATE_ANY_TASK): True,

    (Role.ADMIN, Action.DELETE_ANY_MESSAGE): False,
    (Role.ADMIN, Action.VIEW_COMPANY_MESSAGES): False,
    (Role.ADMIN, Action.CREATE_ASSIGNMENT_RULE): True,
    (Role.ADMIN, Action.MANAGE_ANY_ASSIGNMENT_RULE): True,
    (Role.ADMIN, Action.CREATE_TASK): True,
    (Role.ADMIN, Action.UPDATE_ANY_TASK): True,

    (Role.DEPT_HEAD, Action.DELETE_ANY_MESSAGE): False,
    (Role.DEPT_HEAD, Action.VIEW_COMPANY_MESSAGES): False,
    (Role.DEPT_HEAD, Action.CREATE_ASSIGNMENT_RULE): True,
    (Role.DEPT_HEAD, Action.MANAGE_ANY_ASSIGNMENT_RULE): False,
    (Role.DEPT_HEAD, Action.CREATE_TASK): True,
    (Role.DEPT_HEAD, Action.UPDATE_ANY_TASK): True,

    (Role.USER, Action.DELETE_ANY_MESSAGE): False,
    (Role.USER, Action.VIEW_COMPANY_MESSAGES): False,
    (Role.USER, Action.CREATE_ASSIGNMENT_RULE): False,
    (Role.USER, Action.MANAGE_ANY_ASSIGNMENT_RULE): False,
    (Role.USER, Action.CREATE_TASK): True,
    (Role.USER, Action.UPDATE_ANY_TASK): False,
})


def can(role: Role | str, action: Action) -> bool:
    """Unknown roles get nothing."""
    try:
        role = Role(role)
    except ValueError:
        return False
    return PERMISSIONS.get((role, action), False)
