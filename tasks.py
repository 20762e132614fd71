from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import jwt_required
from sqlalchemy.orm import joinedload
from sqlalchemy.exc import SQLAlchemyError
from marshmallow import Schema, fields, validate
from models import db, Task, TASK_STATUSES, TASK_PRIORITIES
from auth import get_current_user, validate_request_data
from permissions import Action, check_project_access, get_task_or_404, is_project_member
from datetime import datetime
import fanout
import logging

tasks_bp = Blueprint('tasks', __name__)
logger = logging.getLogger(__name__)

# ============================================
# Input Validation Schemas
# ============================================

class CreateTaskSchema(Schema):
    """建立任務驗證"""
    title = fields.Str(
        required=True,
        validate=validate.Length(min=1, max=255),
        error_messages={'required': 'Task title is required'}
    )
    description = fields.Str(validate=validate.Length(max=5000), allow_none=True)
    status = fields.Str(validate=validate.OneOf(TASK_STATUSES), load_default='todo')
    priority = fields.Str(validate=validate.OneOf(TASK_PRIORITIES), load_default='medium')
    assigned_to_id = fields.Int(allow_none=True)
    due_date = fields.DateTime(allow_none=True)

class UpdateTaskSchema(Schema):
    """更新任務驗證"""
    title = fields.Str(validate=validate.Length(min=1, max=255))
    description = fields.Str(validate=validate.Length(max=5000), allow_none=True)
    status = fields.Str(validate=validate.OneOf(TASK_STATUSES))
    priority = fields.Str(validate=validate.OneOf(TASK_PRIORITIES))
    assigned_to_id = fields.Int(allow_none=True)
    due_date = fields.DateTime(allow_none=True)

# ============================================
# 輔助函數
# ============================================

def serialize_task(task):
    return {
        'id': task.id,
        'title': task.title,
        'description': task.description,
        'status': task.status,
        'priority': task.priority,
        'project_id': task.project_id,
        'assigned_to': {
            'id': task.assignee.id,
            'name': task.assignee.name
        } if task.assigned_to_id else None,
        'created_by': task.created_by_id,
        'due_date': task.due_date.isoformat() if task.due_date else None,
        'created_at': task.created_at.isoformat(),
        'updated_at': task.updated_at.isoformat() if task.updated_at else None
    }

def assignee_error(project, assigned_to_id):
    """指派對象必須是專案成員 (建立者也可以)"""
    if assigned_to_id is not None and not is_project_member(project, assigned_to_id):
        return jsonify({
            'error': 'Validation failed',
            'details': {'assigned_to_id': ['Assigned user is not a member of this project']}
        }), 400
    return None

# ============================================
# 建立任務
# ============================================

@tasks_bp.route('/projects/<int:project_id>/tasks', methods=['POST'])
@jwt_required()
def create_task(project_id):
    """在專案中建立任務,有指派對象就通知他"""
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Authentication required'}), 401

    project, _ = check_project_access(project_id, current_user.id, Action.CREATE_TASK)

    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(CreateTaskSchema, data)
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    error = assignee_error(project, result.get('assigned_to_id'))
    if error:
        return error

    task = Task(
        title=result['title'],
        description=result.get('description'),
        project_id=project_id,
        created_by_id=current_user.id,
        assigned_to_id=result.get('assigned_to_id'),
        status=result['status'],
        priority=result['priority'],
        due_date=result.get('due_date')
    )

    try:
        db.session.add(task)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Task creation error: {str(e)}", exc_info=True)
        return jsonify({'error': 'Task creation failed due to server error'}), 500

    logger.info(f"Task created: {task.title} in project {project_id} by user {current_user.email}")

    fanout.dispatch(fanout.task_created(task))

    return jsonify({
        'message': 'Task created successfully',
        'task': serialize_task(task)
    }), 201

# ============================================
# 查詢專案的所有任務
# ============================================

@tasks_bp.route('/projects/<int:project_id>/tasks', methods=['GET'])
@jwt_required()
def get_project_tasks(project_id):
    """查詢專案的任務列表 (可依狀態 / 負責人篩選)"""
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Authentication required'}), 401

    check_project_access(project_id, current_user.id, Action.VIEW_TASK)

    query = Task.query.filter_by(project_id=project_id).options(
        joinedload(Task.assignee)
    )

    # 篩選: 按狀態
    status = request.args.get('status')
    if status:
        query = query.filter_by(status=status)

    # 篩選: 按負責人
    assigned_to = request.args.get('assigned_to', type=int)
    if assigned_to:
        query = query.filter_by(assigned_to_id=assigned_to)

    # 篩選: 按優先級
    priority = request.args.get('priority')
    if priority:
        query = query.filter_by(priority=priority)

    # 排序
    sort_by = request.args.get('sort_by', 'created_at')
    sort_order = request.args.get('sort_order', 'desc')

    if sort_by == 'due_date':
        order_column = Task.due_date
    elif sort_by == 'priority':
        order_column = Task.priority
    else:
        order_column = Task.created_at

    if sort_order == 'asc':
        query = query.order_by(order_column.asc(), Task.id.asc())
    else:
        query = query.order_by(order_column.desc(), Task.id.desc())

    page = request.args.get('page', 1, type=int)
    per_page = request.args.get('per_page', current_app.config['DEFAULT_PAGE_SIZE'], type=int)
    per_page = min(per_page, current_app.config['MAX_PAGE_SIZE'])

    tasks_paginated = query.paginate(page=page, per_page=per_page, error_out=False)

    return jsonify({
        'tasks': [serialize_task(task) for task in tasks_paginated.items],
        'total': tasks_paginated.total,
        'page': page,
        'per_page': per_page,
        'total_pages': tasks_paginated.pages
    }), 200

# ============================================
# 查詢單一任務
# ============================================

@tasks_bp.route('/projects/<int:project_id>/tasks/<int:task_id>', methods=['GET'])
@jwt_required()
def get_task(project_id, task_id):
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Authentication required'}), 401

    project, _ = check_project_access(project_id, current_user.id, Action.VIEW_TASK)
    task = get_task_or_404(project, task_id)

    return jsonify({'task': serialize_task(task)}), 200

# ============================================
# 更新任務
# ============================================

@tasks_bp.route('/projects/<int:project_id>/tasks/<int:task_id>', methods=['PATCH'])
@jwt_required()
def update_task(project_id, task_id):
    """
    更新任務資訊

    負責人換成新的人時通知新負責人;
    負責人沒變或被清空則不通知
    """
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Authentication required'}), 401

    project, _ = check_project_access(project_id, current_user.id, Action.UPDATE_TASK)
    task = get_task_or_404(project, task_id)

    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(UpdateTaskSchema, data)
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    # 負責人有變更才檢查成員資格
    if result.get('assigned_to_id', task.assigned_to_id) != task.assigned_to_id:
        error = assignee_error(project, result['assigned_to_id'])
        if error:
            return error

    # 記錄變更
    changes = {}
    previous_assignee_id = task.assigned_to_id

    for field in ['title', 'description', 'status', 'priority', 'due_date', 'assigned_to_id']:
        if field in result:
            old_value = getattr(task, field)
            new_value = result[field]
            if old_value != new_value:
                changes[field] = {
                    'old': old_value.isoformat() if isinstance(old_value, datetime) else old_value,
                    'new': new_value.isoformat() if isinstance(new_value, datetime) else new_value
                }
                setattr(task, field, new_value)

    if not changes:
        return jsonify({
            'message': 'No changes to update',
            'task': serialize_task(task)
        }), 200

    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Task update error: {str(e)}", exc_info=True)
        return jsonify({'error': 'Task update failed due to server error'}), 500

    logger.info(f"Task {task_id} updated by user {current_user.email}")

    fanout.dispatch(fanout.task_updated(task, previous_assignee_id))

    return jsonify({
        'message': 'Task updated successfully',
        'task': serialize_task(task),
        'changes': changes
    }), 200

# ============================================
# 刪除任務
# ============================================

@tasks_bp.route('/projects/<int:project_id>/tasks/<int:task_id>', methods=['DELETE'])
@jwt_required()
def delete_task(project_id, task_id):
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Authentication required'}), 401

    project, _ = check_project_access(project_id, current_user.id, Action.DELETE_TASK)
    task = get_task_or_404(project, task_id)
    task_title = task.title

    try:
        db.session.delete(task)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Task deletion error: {str(e)}", exc_info=True)
        return jsonify({'error': 'Task deletion failed due to server error'}), 500

    logger.info(f"Task deleted: {task_title} by user {current_user.email}")

    return jsonify({'message': 'Task deleted successfully'}), 200

# ============================================
# 我的任務
# ============================================

@tasks_bp.route('/tasks/my', methods=['GET'])
@jwt_required()
def get_my_tasks():
    """指派給我的任務,依截止日排序 (沒有截止日的排最後)"""
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Authentication required'}), 401

    tasks = Task.query.filter_by(assigned_to_id=current_user.id).options(
        joinedload(Task.project)
    ).order_by(
        Task.due_date.is_(None), Task.due_date.asc(), Task.id.asc()
    ).all()

    return jsonify({
        'tasks': [{
            **serialize_task(task),
            'project': {
                'id': task.project.id,
                'title': task.project.title
            }
        } for task in tasks],
        'total': len(tasks)
    }), 200
