# ============================================
# 專案權限規則
#
# 每一種動作對應一種關係 (成員 / 建立者 / 作者 / 收件人),
# 所有 blueprint 都透過 authorize() 檢查,不要在各個 endpoint 重複寫判斷
# ============================================

import enum
import logging

from models import db, Project, TeamMember, Task, Message, Notification

logger = logging.getLogger(__name__)


class AccessError(Exception):
    """規則引擎拒絕動作時拋出的錯誤,由 app 的 errorhandler 轉成 JSON"""

    status_code = 400
    error = 'access_error'
    default_message = 'Action not allowed'

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self):
        return {
            'error': self.error,
            'message': self.message,
            'status': self.status_code
        }


class NotFound(AccessError):
    """資源不存在,或子資源不屬於這個專案"""
    status_code = 404
    error = 'not_found'
    default_message = 'Resource not found'


class Forbidden(AccessError):
    """資源存在但使用者沒有對應的關係"""
    status_code = 403
    error = 'forbidden'
    default_message = 'Permission denied'


class Relation(enum.Enum):
    MEMBER = 'member'        # 建立者或 team member
    CREATOR = 'creator'
    AUTHOR = 'author'
    RECIPIENT = 'recipient'


class Action(enum.Enum):
    VIEW_PROJECT = 'view_project'
    UPDATE_PROJECT = 'update_project'
    DELETE_PROJECT = 'delete_project'
    VIEW_MEMBERS = 'view_members'
    ADD_MEMBER = 'add_member'
    REMOVE_MEMBER = 'remove_member'
    CREATE_TASK = 'create_task'
    VIEW_TASK = 'view_task'
    UPDATE_TASK = 'update_task'
    DELETE_TASK = 'delete_task'
    CREATE_MESSAGE = 'create_message'
    VIEW_MESSAGE = 'view_message'
    DELETE_MESSAGE = 'delete_message'
    READ_NOTIFICATION = 'read_notification'
    UPDATE_NOTIFICATION = 'update_notification'
    DELETE_NOTIFICATION = 'delete_notification'


# ============================================
# 規則表
# ============================================

RULES = {
    Action.VIEW_PROJECT: Relation.MEMBER,
    Action.UPDATE_PROJECT: Relation.CREATOR,
    Action.DELETE_PROJECT: Relation.CREATOR,
    Action.VIEW_MEMBERS: Relation.MEMBER,
    Action.ADD_MEMBER: Relation.CREATOR,
    Action.REMOVE_MEMBER: Relation.CREATOR,
    Action.CREATE_TASK: Relation.MEMBER,
    Action.VIEW_TASK: Relation.MEMBER,
    Action.UPDATE_TASK: Relation.MEMBER,
    Action.DELETE_TASK: Relation.MEMBER,
    Action.CREATE_MESSAGE: Relation.MEMBER,
    Action.VIEW_MESSAGE: Relation.MEMBER,
    # 專案建立者也不能刪別人的留言
    Action.DELETE_MESSAGE: Relation.AUTHOR,
    Action.READ_NOTIFICATION: Relation.RECIPIENT,
    Action.UPDATE_NOTIFICATION: Relation.RECIPIENT,
    Action.DELETE_NOTIFICATION: Relation.RECIPIENT,
}

DENIAL_MESSAGES = {
    Action.UPDATE_PROJECT: 'Only the project creator can update project details',
    Action.DELETE_PROJECT: 'Only the project creator can delete the project',
    Action.ADD_MEMBER: 'Only the project creator can add team members',
    Action.REMOVE_MEMBER: 'Only the project creator can remove team members',
    Action.DELETE_MESSAGE: 'You can only delete your own messages',
}

MEMBER_DENIAL = 'Access denied. You are not a member of this project.'
RECIPIENT_DENIAL = 'You can only access your own notifications'


# ============================================
# 關係判斷
# ============================================

def is_creator(project, user_id):
    """比對建立者 id"""
    return project.created_by_id == user_id


def find_team_member(project_id, user_id):
    return TeamMember.query.filter_by(
        project_id=project_id,
        user_id=user_id
    ).first()


def is_team_member(project_id, user_id):
    return find_team_member(project_id, user_id) is not None


def is_project_member(project, user_id):
    """建立者不需要 TeamMember 紀錄也算成員"""
    return is_creator(project, user_id) or is_team_member(project.id, user_id)


def project_role(project, user_id):
    """
    取得使用者在專案中的角色

    Returns:
        str|None: 'creator', team member 的 role, 或 None
    """
    if is_creator(project, user_id):
        return 'creator'
    member = find_team_member(project.id, user_id)
    return member.role if member else None


def has_relation(relation, user_id, project=None, resource=None):
    if relation is Relation.MEMBER:
        return is_project_member(project, user_id)
    if relation is Relation.CREATOR:
        return is_creator(project, user_id)
    if relation in (Relation.AUTHOR, Relation.RECIPIENT):
        # Message.user_id 是作者, Notification.user_id 是收件人
        return resource.user_id == user_id
    raise ValueError(f'Unknown relation: {relation}')


def authorize(action, user_id, project=None, resource=None):
    """
    檢查使用者能不能執行某個動作

    資源必須已經確認存在 (不存在要先拋 NotFound),
    這裡只比對關係,不通過就拋 Forbidden
    """
    relation = RULES[action]

    if has_relation(relation, user_id, project=project, resource=resource):
        return

    if relation is Relation.MEMBER:
        message = MEMBER_DENIAL
    elif relation is Relation.RECIPIENT:
        message = RECIPIENT_DENIAL
    else:
        message = DENIAL_MESSAGES.get(action)

    target = f" on project {project.id}" if project is not None else ''
    logger.warning(f"Denied {action.value} for user {user_id}{target}")
    raise Forbidden(message)


# ============================================
# 查詢 (存在性先於關係)
# ============================================

def get_project_or_404(project_id):
    project = db.session.get(Project, project_id)
    if not project:
        raise NotFound('Project not found')
    return project


def check_project_access(project_id, user_id, action=Action.VIEW_PROJECT):
    """
    先確認專案存在,再檢查權限

    Returns:
        tuple: (project: Project, role: str|None)
    """
    project = get_project_or_404(project_id)
    authorize(action, user_id, project=project)
    return project, project_role(project, user_id)


def get_task_or_404(project, task_id):
    task = db.session.get(Task, task_id)
    if not task or task.project_id != project.id:
        raise NotFound('Task not found in this project')
    return task


def get_message_or_404(project, message_id, message='Message not found in this project'):
    """其他專案的留言一律視為不存在"""
    found = db.session.get(Message, message_id)
    if not found or found.project_id != project.id:
        raise NotFound(message)
    return found


def get_notification_for(notification_id, user_id, action=Action.READ_NOTIFICATION):
    notification = db.session.get(Notification, notification_id)
    if not notification:
        raise NotFound('Notification not found')
    authorize(action, user_id, resource=notification)
    return notification
