from collabnotes.core.permissions import PERMISSIONS, Action, Role, can


def test_every_role_action_pair_is_listed():
    for role in Role:
        for action in Action:
            assert (role, action) in PERMISSIONS, f"missing {role.value} / {action.value}"
    assert len(PERMISSIONS) == len(Role) * len(Action)


def test_super_admin_can_do_everything():
    assert all(can(Role.SUPER_ADMIN, action) for action in Action)


def test_only_super_admin_deletes_any_message():
    assert [r for r in Role if can(r, Action.DELETE_ANY_MESSAGE)] == [Role.SUPER_ADMIN]


def test_rule_management():
    assert can(Role.ADMIN, Action.MANAGE_ANY_ASSIGNMENT_RULE)
    assert can(Role.DEPT_HEAD, Action.CREATE_ASSIGNMENT_RULE)
    assert not can(Role.DEPT_HEAD, Action.MANAGE_ANY_ASSIGNMENT_RULE)
    assert not can(Role.USER, Action.CREATE_ASSIGNMENT_RULE)


def test_string_roles_and_unknown_roles():
    assert can("ADMIN", Action.CREATE_TASK)
    assert not can("GUEST", Action.CREATE_TASK)
    assert not can(None, Action.CREATE_TASK)
