import pytest

from models import db, Project, TeamMember, Message, Notification
from permissions import (
    RULES, Action, Relation, Forbidden, NotFound,
    is_creator, is_team_member, is_project_member, project_role,
    authorize, check_project_access, get_task_or_404, get_message_or_404,
    get_notification_for
)


@pytest.fixture
def world(make_user):
    """兩個專案: alice 建立 apollo (bob 是成員), dave 建立 gemini"""
    alice = make_user('Alice')
    bob = make_user('Bob')
    dave = make_user('Dave')

    apollo = Project(title='Apollo', created_by_id=alice.id)
    gemini = Project(title='Gemini', created_by_id=dave.id)
    db.session.add_all([apollo, gemini])
    db.session.commit()

    db.session.add(TeamMember(project_id=apollo.id, user_id=bob.id, role='admin'))
    db.session.commit()

    return {'alice': alice, 'bob': bob, 'dave': dave, 'apollo': apollo, 'gemini': gemini}


def test_every_action_has_a_rule():
    assert set(RULES) == set(Action)
    assert all(isinstance(relation, Relation) for relation in RULES.values())


def test_creator_is_member_without_team_member_row(world):
    apollo, alice = world['apollo'], world['alice']

    assert is_creator(apollo, alice.id)
    assert not is_team_member(apollo.id, alice.id)
    assert is_project_member(apollo, alice.id)


def test_membership(world):
    apollo, bob, dave = world['apollo'], world['bob'], world['dave']

    assert is_project_member(apollo, bob.id)
    assert not is_creator(apollo, bob.id)
    assert not is_project_member(apollo, dave.id)


def test_project_role(world):
    apollo = world['apollo']

    assert project_role(apollo, world['alice'].id) == 'creator'
    assert project_role(apollo, world['bob'].id) == 'admin'
    assert project_role(apollo, world['dave'].id) is None


@pytest.mark.parametrize('action', [
    Action.UPDATE_PROJECT,
    Action.DELETE_PROJECT,
    Action.ADD_MEMBER,
    Action.REMOVE_MEMBER,
])
def test_creator_only_actions(world, action):
    apollo = world['apollo']

    authorize(action, world['alice'].id, project=apollo)

    # admin 角色沒有額外權限
    with pytest.raises(Forbidden):
        authorize(action, world['bob'].id, project=apollo)


@pytest.mark.parametrize('action', [
    Action.VIEW_PROJECT,
    Action.VIEW_MEMBERS,
    Action.CREATE_TASK,
    Action.UPDATE_TASK,
    Action.DELETE_TASK,
    Action.CREATE_MESSAGE,
    Action.VIEW_MESSAGE,
])
def test_member_actions(world, action):
    apollo = world['apollo']

    authorize(action, world['alice'].id, project=apollo)
    authorize(action, world['bob'].id, project=apollo)

    with pytest.raises(Forbidden) as exc_info:
        authorize(action, world['dave'].id, project=apollo)
    assert exc_info.value.status_code == 403
    assert 'not a member' in exc_info.value.message


def test_only_author_can_delete_message(world):
    apollo, alice, bob = world['apollo'], world['alice'], world['bob']
    message = Message(content='hi', project_id=apollo.id, user_id=bob.id)
    db.session.add(message)
    db.session.commit()

    authorize(Action.DELETE_MESSAGE, bob.id, project=apollo, resource=message)

    with pytest.raises(Forbidden):
        authorize(Action.DELETE_MESSAGE, alice.id, project=apollo, resource=message)


def test_denial_is_logged(world, caplog):
    with pytest.raises(Forbidden):
        authorize(Action.DELETE_PROJECT, world['bob'].id, project=world['apollo'])

    assert 'Denied delete_project' in caplog.text


def test_missing_project_is_not_found_for_anyone(world):
    with pytest.raises(NotFound):
        check_project_access(9999, world['dave'].id)


def test_check_project_access_returns_role(world):
    project, role = check_project_access(world['apollo'].id, world['bob'].id, Action.CREATE_TASK)

    assert project.id == world['apollo'].id
    assert role == 'admin'


def test_message_from_other_project_is_not_found(world):
    dave = world['dave']
    message = Message(content='hi', project_id=world['gemini'].id, user_id=dave.id)
    db.session.add(message)
    db.session.commit()

    assert get_message_or_404(world['gemini'], message.id).id == message.id
    with pytest.raises(NotFound):
        get_message_or_404(world['apollo'], message.id)


def test_missing_task_is_not_found(world):
    with pytest.raises(NotFound):
        get_task_or_404(world['apollo'], 12345)


def test_notification_access(world):
    alice, bob = world['alice'], world['bob']
    notification = Notification(user_id=alice.id, type='message_posted', content='hello')
    db.session.add(notification)
    db.session.commit()

    assert get_notification_for(notification.id, alice.id).id == notification.id

    with pytest.raises(Forbidden):
        get_notification_for(notification.id, bob.id, Action.UPDATE_NOTIFICATION)

    with pytest.raises(NotFound):
        get_notification_for(9999, alice.id)
