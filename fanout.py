# ============================================
# 通知 fan-out
#
# 先用純函數算出「要通知誰、通知什麼」(NotificationCommand),
# 主要動作 commit 之後再交給 dispatch() 寫入資料庫
# ============================================

import logging
from dataclasses import dataclass
from typing import Optional

from models import db, Notification

logger = logging.getLogger(__name__)

MESSAGE_POSTED = 'message_posted'
TASK_ASSIGNED = 'task_assigned'

# 通知內容對應
NOTIFICATION_TEMPLATES = {
    MESSAGE_POSTED: 'New message in project {project_title}',
    'task_created': 'You have been assigned a new task: {task_title}',
    'task_reassigned': 'You have been assigned a task: {task_title}',
}


@dataclass(frozen=True)
class NotificationCommand:
    """一筆待建立的通知"""
    user_id: int
    type: str
    content: str
    related_project_id: Optional[int] = None
    related_task_id: Optional[int] = None


# ============================================
# 1. 討論區留言
# ============================================

def message_posted(project, author_id, member_user_ids):
    """
    留言 (主題或回覆) 通知

    收件人 = 所有 team member (排除作者) + 建立者 (如果建立者不是作者)。
    建立者同時有 TeamMember 紀錄時會收到兩則,不做去重
    """
    recipients = [user_id for user_id in member_user_ids if user_id != author_id]

    if project.created_by_id != author_id:
        recipients.append(project.created_by_id)

    content = NOTIFICATION_TEMPLATES[MESSAGE_POSTED].format(project_title=project.title)
    return [
        NotificationCommand(
            user_id=user_id,
            type=MESSAGE_POSTED,
            content=content,
            related_project_id=project.id
        )
        for user_id in recipients
    ]


# ============================================
# 2. 任務指派
# ============================================

def task_created(task):
    """建立任務時有指派對象就通知他一次"""
    if not task.assigned_to_id:
        return []

    return [NotificationCommand(
        user_id=task.assigned_to_id,
        type=TASK_ASSIGNED,
        content=NOTIFICATION_TEMPLATES['task_created'].format(task_title=task.title),
        related_project_id=task.project_id,
        related_task_id=task.id
    )]


def task_updated(task, previous_assignee_id):
    """只有換了新的負責人才通知;沒變或清空都不通知"""
    if not task.assigned_to_id or task.assigned_to_id == previous_assignee_id:
        return []

    return [NotificationCommand(
        user_id=task.assigned_to_id,
        type=TASK_ASSIGNED,
        content=NOTIFICATION_TEMPLATES['task_reassigned'].format(task_title=task.title),
        related_project_id=task.project_id,
        related_task_id=task.id
    )]


# ============================================
# 3. 寫入
# ============================================

def dispatch(commands):
    """
    逐筆建立通知

    每一筆各自 commit,某一筆失敗只 rollback 那一筆並記錄,
    不影響其他收件人,也不影響已經完成的主要動作
    """
    created = []

    for command in commands:
        try:
            notification = Notification(
                user_id=command.user_id,
                type=command.type,
                content=command.content,
                related_project_id=command.related_project_id,
                related_task_id=command.related_task_id
            )
            db.session.add(notification)
            db.session.commit()
            created.append(notification)
        except Exception as e:
            # 主要動作已經 commit,通知失敗不能讓 request 變成 500
            db.session.rollback()
            logger.error(
                f"Failed to create {command.type} notification for user {command.user_id}: {str(e)}",
                exc_info=True
            )

    if created:
        logger.info(f"Created {len(created)} notification(s)")

    return created
