from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import jwt_required
from sqlalchemy.orm import joinedload
from sqlalchemy import func, case, and_, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from marshmallow import Schema, fields, validate
from models import db, Project, TeamMember, User, Task, MEMBER_ROLES
from auth import get_current_user, validate_request_data, serialize_user
from permissions import Action, NotFound, check_project_access
from tasks import serialize_task
from datetime import datetime
import logging

projects_bp = Blueprint('projects', __name__)
logger = logging.getLogger(__name__)

# ============================================
# Input Validation Schemas
# ============================================

class CreateProjectSchema(Schema):
    """建立專案驗證"""
    title = fields.Str(
        required=True,
        validate=validate.Length(min=1, max=255),
        error_messages={'required': 'Project title is required'}
    )
    description = fields.Str(validate=validate.Length(max=2000), allow_none=True)

class UpdateProjectSchema(Schema):
    """更新專案驗證"""
    title = fields.Str(validate=validate.Length(min=1, max=255))
    description = fields.Str(validate=validate.Length(max=2000), allow_none=True)

class AddMemberSchema(Schema):
    """新增成員驗證 (用 email 邀請)"""
    email = fields.Email(required=True, error_messages={'required': 'Email is required'})
    role = fields.Str(validate=validate.OneOf(MEMBER_ROLES), load_default='member')

# ============================================
# 輔助函數
# ============================================

def serialize_project(project, role=None):
    data = {
        'id': project.id,
        'title': project.title,
        'description': project.description,
        'created_by': serialize_user(project.creator),
        'created_at': project.created_at.isoformat(),
        'updated_at': project.updated_at.isoformat() if project.updated_at else None
    }
    if role is not None:
        data['my_role'] = role
    return data

def serialize_member(membership):
    return {
        'id': membership.user.id,
        'name': membership.user.name,
        'email': membership.user.email,
        'role': membership.role,
        'joined_at': membership.joined_at.isoformat()
    }

# ============================================
# 建立專案
# ============================================

@projects_bp.route('', methods=['POST'])
@jwt_required()
def create_project():
    """建立新專案,建立者就是當前使用者"""
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Authentication required'}), 401

    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(CreateProjectSchema, data)
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    project = Project(
        title=result['title'],
        description=result.get('description'),
        created_by_id=current_user.id
    )

    try:
        db.session.add(project)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Project creation error: {str(e)}", exc_info=True)
        return jsonify({'error': 'Project creation failed due to server error'}), 500

    logger.info(f"Project created: {project.title} by user {current_user.email}")

    return jsonify({
        'message': 'Project created successfully',
        'project': serialize_project(project, role='creator')
    }), 201

# ============================================
# 查詢我的所有專案
# ============================================

@projects_bp.route('', methods=['GET'])
@jwt_required()
def get_my_projects():
    """查詢我建立或參與的所有專案"""
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Authentication required'}), 401

    page = request.args.get('page', 1, type=int)
    per_page = request.args.get('per_page', current_app.config['DEFAULT_PAGE_SIZE'], type=int)
    per_page = min(per_page, current_app.config['MAX_PAGE_SIZE'])

    try:
        member_project_ids = db.select(TeamMember.project_id).where(
            TeamMember.user_id == current_user.id
        )

        projects = Project.query.filter(
            or_(
                Project.created_by_id == current_user.id,
                Project.id.in_(member_project_ids)
            )
        ).options(
            joinedload(Project.creator)
        ).order_by(Project.created_at.desc()).paginate(
            page=page, per_page=per_page, error_out=False
        )

        project_ids = [p.id for p in projects.items]

        # 用聚合查詢統計,避免 N+1
        task_counts = dict(db.session.query(
            Task.project_id, func.count(Task.id)
        ).filter(Task.project_id.in_(project_ids)).group_by(Task.project_id).all())

        member_counts = dict(db.session.query(
            TeamMember.project_id, func.count(TeamMember.id)
        ).filter(TeamMember.project_id.in_(project_ids)).group_by(TeamMember.project_id).all())

        my_roles = dict(db.session.query(
            TeamMember.project_id, TeamMember.role
        ).filter(
            TeamMember.project_id.in_(project_ids),
            TeamMember.user_id == current_user.id
        ).all())

        projects_list = []
        for project in projects.items:
            if project.created_by_id == current_user.id:
                role = 'creator'
            else:
                role = my_roles.get(project.id)

            projects_list.append({
                **serialize_project(project, role=role),
                'member_count': member_counts.get(project.id, 0),
                'task_count': task_counts.get(project.id, 0)
            })

        return jsonify({
            'projects': projects_list,
            'total': projects.total,
            'page': page,
            'per_page': per_page,
            'total_pages': projects.pages
        }), 200

    except SQLAlchemyError as e:
        logger.error(f"Error fetching projects: {str(e)}", exc_info=True)
        return jsonify({'error': 'Failed to fetch projects'}), 500

# ============================================
# 查詢單一專案
# ============================================

@projects_bp.route('/<int:project_id>', methods=['GET'])
@jwt_required()
def get_project(project_id):
    """查詢專案詳細資訊 (成員和任務)"""
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Authentication required'}), 401

    project, role = check_project_access(project_id, current_user.id)

    members = TeamMember.query.filter_by(project_id=project_id).options(
        joinedload(TeamMember.user)
    ).all()

    tasks = Task.query.filter_by(project_id=project_id).order_by(
        Task.created_at.desc(), Task.id.desc()
    ).all()

    return jsonify({
        **serialize_project(project, role=role),
        'members': [serialize_member(m) for m in members],
        'tasks': [serialize_task(t) for t in tasks]
    }), 200

# ============================================
# 更新專案
# ============================================

@projects_bp.route('/<int:project_id>', methods=['PATCH'])
@jwt_required()
def update_project(project_id):
    """更新專案標題 / 描述 (只有建立者可以)"""
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Authentication required'}), 401

    project, role = check_project_access(project_id, current_user.id, Action.UPDATE_PROJECT)

    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(UpdateProjectSchema, data)
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    # 記錄變更
    changes = {}
    for field in ['title', 'description']:
        if field in result:
            old_value = getattr(project, field)
            new_value = result[field]
            if old_value != new_value:
                changes[field] = {'old': old_value, 'new': new_value}
                setattr(project, field, new_value)

    if not changes:
        return jsonify({
            'message': 'No changes to update',
            'project': serialize_project(project, role=role)
        }), 200

    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Project update error: {str(e)}", exc_info=True)
        return jsonify({'error': 'Project update failed due to server error'}), 500

    logger.info(f"Project {project_id} updated by user {current_user.email}")

    return jsonify({
        'message': 'Project updated successfully',
        'project': serialize_project(project, role=role),
        'changes': changes
    }), 200

# ============================================
# 刪除專案
# ============================================

@projects_bp.route('/<int:project_id>', methods=['DELETE'])
@jwt_required()
def delete_project(project_id):
    """刪除專案 (只有建立者可以),任務 / 留言 / 成員一併刪除"""
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Authentication required'}), 401

    project, _ = check_project_access(project_id, current_user.id, Action.DELETE_PROJECT)
    project_title = project.title

    try:
        db.session.delete(project)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Project deletion error: {str(e)}", exc_info=True)
        return jsonify({'error': 'Project deletion failed due to server error'}), 500

    logger.info(f"Project deleted: {project_title} by user {current_user.email}")

    return jsonify({'message': 'Project deleted successfully'}), 200

# ============================================
# 專案成員管理
# ============================================

@projects_bp.route('/<int:project_id>/members', methods=['GET'])
@jwt_required()
def get_project_members(project_id):
    """取得專案成員列表"""
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Authentication required'}), 401

    check_project_access(project_id, current_user.id, Action.VIEW_MEMBERS)

    members = TeamMember.query.filter_by(project_id=project_id).options(
        joinedload(TeamMember.user)
    ).order_by(TeamMember.joined_at.asc()).all()

    return jsonify({
        'members': [serialize_member(m) for m in members],
        'total': len(members)
    }), 200

@projects_bp.route('/<int:project_id>/members', methods=['POST'])
@jwt_required()
def add_project_member(project_id):
    """新增專案成員 (只有建立者可以),不發通知"""
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Authentication required'}), 401

    check_project_access(project_id, current_user.id, Action.ADD_MEMBER)

    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(AddMemberSchema, data)
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    user = User.query.filter_by(email=result['email']).first()
    if not user:
        raise NotFound('User not found')

    existing = TeamMember.query.filter_by(
        project_id=project_id,
        user_id=user.id
    ).first()

    if existing:
        return jsonify({'error': 'User is already a team member'}), 409

    member = TeamMember(
        project_id=project_id,
        user_id=user.id,
        role=result['role']
    )

    try:
        db.session.add(member)
        db.session.commit()
    except IntegrityError:
        # 兩個請求同時新增同一個人,由 unique_team_member 擋下
        db.session.rollback()
        return jsonify({'error': 'User is already a team member'}), 409
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Error adding member: {str(e)}", exc_info=True)
        return jsonify({'error': 'Failed to add member due to server error'}), 500

    logger.info(f"Member added to project {project_id}: user {user.email}")

    return jsonify({
        'message': 'Team member added successfully',
        'member': serialize_member(member)
    }), 201

@projects_bp.route('/<int:project_id>/members/<int:user_id>', methods=['DELETE'])
@jwt_required()
def remove_project_member(project_id, user_id):
    """移除專案成員 (只有建立者可以,成員不能自己退出)"""
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Authentication required'}), 401

    check_project_access(project_id, current_user.id, Action.REMOVE_MEMBER)

    member = TeamMember.query.filter_by(project_id=project_id, user_id=user_id).first()
    if not member:
        raise NotFound('Team member not found in this project')

    try:
        db.session.delete(member)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Error removing member: {str(e)}", exc_info=True)
        return jsonify({'error': 'Failed to remove member due to server error'}), 500

    logger.info(f"Member removed from project {project_id}: user {user_id}")

    return jsonify({'message': 'Team member removed successfully'}), 200

# ============================================
# 專案統計
# ============================================

@projects_bp.route('/<int:project_id>/stats', methods=['GET'])
@jwt_required()
def get_project_stats(project_id):
    """取得專案統計資訊 (聚合查詢)"""
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Authentication required'}), 401

    check_project_access(project_id, current_user.id)

    task_stats = db.session.query(
        func.count(Task.id).label('total'),
        func.sum(case((Task.status == 'todo', 1), else_=0)).label('todo'),
        func.sum(case((Task.status == 'in_progress', 1), else_=0)).label('in_progress'),
        func.sum(case((Task.status == 'review', 1), else_=0)).label('review'),
        func.sum(case((Task.status == 'done', 1), else_=0)).label('done'),
        func.sum(case((and_(Task.due_date < datetime.utcnow(), Task.status != 'done'), 1), else_=0)).label('overdue')
    ).filter(Task.project_id == project_id).first()

    member_count = TeamMember.query.filter_by(project_id=project_id).count()

    return jsonify({
        'tasks': {
            'total': task_stats.total or 0,
            'todo': task_stats.todo or 0,
            'in_progress': task_stats.in_progress or 0,
            'review': task_stats.review or 0,
            'done': task_stats.done or 0,
            'overdue': task_stats.overdue or 0
        },
        'members': member_count,
        'completion_rate': round((task_stats.done or 0) / (task_stats.total or 1) * 100, 2)
    }), 200
