
from flask_sqlalchemy import SQLAlchemy
from datetime import datetime

db = SQLAlchemy()

TASK_STATUSES = ['todo', 'in_progress', 'review', 'done']
TASK_PRIORITIES = ['low', 'medium', 'high']
MEMBER_ROLES = ['member', 'admin']

# ============================================
# 1. User 模型
# ============================================
class User(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(225), nullable=False)
    name = db.Column(db.String(100), nullable=False)
    is_active = db.Column(db.Boolean, default=True)
    last_login = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # 關聯
    created_projects = db.relationship('Project', backref='creator', lazy=True)
    tasks_assigned = db.relationship('Task', foreign_keys='Task.assigned_to_id', backref='assignee', lazy=True)
    tasks_created = db.relationship('Task', foreign_keys='Task.created_by_id', backref='author', lazy=True)
    messages = db.relationship('Message', backref='user', lazy=True)
    notifications = db.relationship('Notification', backref='user', lazy=True, cascade='all,delete-orphan')

# ============================================
# 2. Project 模型
# ============================================
class Project(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    # 建立者只在建立時設定,之後不會轉移
    created_by_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # 關聯 (刪除專案時一併刪除)
    tasks = db.relationship('Task', backref='project', lazy=True, cascade='all,delete-orphan')
    team_members = db.relationship('TeamMember', backref='project', lazy=True, cascade='all,delete-orphan')
    messages = db.relationship('Message', backref='project', lazy=True, cascade='all,delete-orphan')
    notifications = db.relationship('Notification', backref='project', lazy=True)

    __table_args__ = (
        db.Index('idx_project_creator', 'created_by_id'),
    )

# ============================================
# 3. TeamMember 模型
# ============================================
class TeamMember(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    project_id = db.Column(db.Integer, db.ForeignKey('project.id'), nullable=False)
    role = db.Column(db.String(20), nullable=False, default='member')  # admin or member
    joined_at = db.Column(db.DateTime, default=datetime.utcnow)

    # 關聯
    user = db.relationship('User', backref='team_memberships')

    # 唯一性約束: 同一個使用者在同一個專案只能有一筆
    __table_args__ = (
        db.UniqueConstraint('project_id', 'user_id', name='unique_team_member'),
    )

# ============================================
# 4. Task 模型
# ============================================
class Task(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(20), nullable=False, default='todo')  # todo, in_progress, review, done
    priority = db.Column(db.String(20), nullable=False, default='medium')  # low, medium, high

    # 關聯欄位
    project_id = db.Column(db.Integer, db.ForeignKey('project.id'), nullable=False)
    assigned_to_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    created_by_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)

    # 時間欄位
    due_date = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    notifications = db.relationship('Notification', backref='task', lazy=True)

    # 索引
    __table_args__ = (
        db.Index('idx_task_project_status', 'project_id', 'status'),
        db.Index('idx_task_assigned_status', 'assigned_to_id', 'status'),
        db.Index('idx_task_due_date', 'due_date'),
    )

# ============================================
# 5. Message 模型 (專案討論串)
# ============================================
class Message(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    content = db.Column(db.Text, nullable=False)
    project_id = db.Column(db.Integer, db.ForeignKey('project.id'), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    # parent 必須屬於同一個專案 (在 discussions.py 建立時檢查)
    parent_id = db.Column(db.Integer, db.ForeignKey('message.id'), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # 自我關聯 (回覆)
    replies = db.relationship(
        'Message',
        backref=db.backref('parent', remote_side=[id]),
        cascade='all,delete-orphan'
    )

    __table_args__ = (
        db.Index('idx_message_project_parent', 'project_id', 'parent_id'),
        db.Index('idx_message_created_at', 'created_at'),
    )

# ============================================
# 6. Notification 模型
# ============================================
class Notification(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    type = db.Column(db.String(50), nullable=False)  # message_posted, task_assigned, etc
    content = db.Column(db.Text, nullable=False)
    is_read = db.Column(db.Boolean, default=False, nullable=False)
    related_project_id = db.Column(db.Integer, db.ForeignKey('project.id'), nullable=True)
    related_task_id = db.Column(db.Integer, db.ForeignKey('task.id'), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.Index('idx_notification_user_read', 'user_id', 'is_read'),
    )
