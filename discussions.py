# ============================================
# 專案討論區
#
# 主題列表: 最新的主題在前
# 每個主題的回覆: 最舊的在前 (照時間順序閱讀)
# ============================================

from flask import Blueprint, request, jsonify
from flask_jwt_extended import jwt_required
from sqlalchemy.orm import joinedload
from sqlalchemy.exc import SQLAlchemyError
from marshmallow import Schema, fields, validate
from models import db, Message, TeamMember
from auth import get_current_user, validate_request_data, serialize_user
from permissions import Action, authorize, check_project_access, get_message_or_404
import fanout
import logging

discussions_bp = Blueprint('discussions', __name__)
logger = logging.getLogger(__name__)


class CreateMessageSchema(Schema):
    """留言驗證"""
    content = fields.Str(
        required=True,
        validate=validate.Length(min=1, max=1000),
        error_messages={'required': 'Message content is required'}
    )
    parent_id = fields.Int(allow_none=True)

# ============================================
# 討論串排序
# ============================================

def top_level_messages(project_id):
    """沒有 parent 的主題留言,新的在前"""
    return Message.query.filter_by(project_id=project_id, parent_id=None).options(
        joinedload(Message.user)
    ).order_by(Message.created_at.desc(), Message.id.desc()).all()

def thread_replies(message):
    """某則留言的回覆,舊的在前"""
    return Message.query.filter_by(parent_id=message.id).options(
        joinedload(Message.user)
    ).order_by(Message.created_at.asc(), Message.id.asc()).all()

def serialize_message(message):
    return {
        'id': message.id,
        'content': message.content,
        'project_id': message.project_id,
        'parent_id': message.parent_id,
        'user': serialize_user(message.user),
        'created_at': message.created_at.isoformat()
    }

def serialize_thread(message):
    return {
        'message': serialize_message(message),
        'replies': [serialize_message(reply) for reply in thread_replies(message)]
    }

# ============================================
# 發表留言 / 回覆
# ============================================

@discussions_bp.route('/projects/<int:project_id>/messages', methods=['POST'])
@jwt_required()
def create_message(project_id):
    """
    在專案討論區留言

    parent_id 指定時是回覆,parent 必須在同一個專案,
    否則當作找不到。成功後通知其他成員和建立者
    """
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Authentication required'}), 401

    project, _ = check_project_access(project_id, current_user.id, Action.CREATE_MESSAGE)

    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(CreateMessageSchema, data)
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    parent_id = result.get('parent_id')
    if parent_id is not None:
        get_message_or_404(project, parent_id, 'Parent message not found in this project')

    message = Message(
        content=result['content'],
        project_id=project_id,
        user_id=current_user.id,
        parent_id=parent_id
    )

    try:
        db.session.add(message)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Message creation error: {str(e)}", exc_info=True)
        return jsonify({'error': 'Failed to post message due to server error'}), 500

    logger.info(f"Message posted in project {project_id} by user {current_user.email}")

    member_ids = [
        user_id for (user_id,) in db.session.query(TeamMember.user_id).filter_by(
            project_id=project_id
        ).all()
    ]
    fanout.dispatch(fanout.message_posted(project, current_user.id, member_ids))

    return jsonify({
        'message': 'Message posted successfully',
        'data': serialize_message(message)
    }), 201

# ============================================
# 查詢討論區
# ============================================

@discussions_bp.route('/projects/<int:project_id>/messages', methods=['GET'])
@jwt_required()
def get_project_messages(project_id):
    """主題留言 (新的在前),每則附上回覆 (舊的在前)"""
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Authentication required'}), 401

    check_project_access(project_id, current_user.id, Action.VIEW_MESSAGE)

    messages = [
        {
            **serialize_message(message),
            'replies': [serialize_message(reply) for reply in thread_replies(message)]
        }
        for message in top_level_messages(project_id)
    ]

    return jsonify({
        'messages': messages,
        'total': len(messages)
    }), 200

@discussions_bp.route('/projects/<int:project_id>/messages/<int:message_id>', methods=['GET'])
@jwt_required()
def get_message_thread(project_id, message_id):
    """單一討論串: {message, replies}"""
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Authentication required'}), 401

    project, _ = check_project_access(project_id, current_user.id, Action.VIEW_MESSAGE)
    message = get_message_or_404(project, message_id)

    return jsonify(serialize_thread(message)), 200

# ============================================
# 刪除留言
# ============================================

@discussions_bp.route('/projects/<int:project_id>/messages/<int:message_id>', methods=['DELETE'])
@jwt_required()
def delete_message(project_id, message_id):
    """只有作者本人可以刪除,回覆會一起刪除"""
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Authentication required'}), 401

    project, _ = check_project_access(project_id, current_user.id, Action.VIEW_MESSAGE)
    message = get_message_or_404(project, message_id)
    authorize(Action.DELETE_MESSAGE, current_user.id, project=project, resource=message)

    try:
        db.session.delete(message)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Message deletion error: {str(e)}", exc_info=True)
        return jsonify({'error': 'Failed to delete message due to server error'}), 500

    logger.info(f"Message {message_id} deleted by user {current_user.email}")

    return jsonify({'message': 'Message deleted successfully'}), 200
