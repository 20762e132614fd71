# ============================================
# 通知
# 通知由 fanout.py 在其他動作之後建立,
# 這裡只提供收件人查詢 / 標記已讀 / 刪除
# ============================================

from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import jwt_required
from sqlalchemy.exc import SQLAlchemyError
from models import db, Notification
from auth import get_current_user
from permissions import Action, get_notification_for
import logging

notifications_bp = Blueprint('notifications', __name__)
logger = logging.getLogger(__name__)


def serialize_notification(n):
    return {
        'id': n.id,
        'type': n.type,
        'content': n.content,
        'is_read': n.is_read,
        'project_id': n.related_project_id,
        'task_id': n.related_task_id,
        'created_at': n.created_at.isoformat()
    }

# ============================================
# 1. 取得使用者的通知
# ============================================

@notifications_bp.route('/notifications', methods=['GET'])
@jwt_required()
def get_notifications():
    """取得當前使用者的通知 (最新的在前)"""
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Authentication required'}), 401

    # 查詢參數
    unread_only = request.args.get('unread_only', 'false').lower() == 'true'
    notification_type = request.args.get('type')
    page = request.args.get('page', 1, type=int)
    per_page = request.args.get('per_page', current_app.config['DEFAULT_PAGE_SIZE'], type=int)
    per_page = min(per_page, current_app.config['MAX_PAGE_SIZE'])

    query = Notification.query.filter_by(user_id=current_user.id)

    if unread_only:
        query = query.filter_by(is_read=False)

    if notification_type:
        query = query.filter_by(type=notification_type)

    query = query.order_by(Notification.created_at.desc(), Notification.id.desc())

    notifications = query.paginate(page=page, per_page=per_page, error_out=False)

    return jsonify({
        'notifications': [serialize_notification(n) for n in notifications.items],
        'total': notifications.total,
        'unread_count': Notification.query.filter_by(user_id=current_user.id, is_read=False).count(),
        'page': page,
        'per_page': per_page,
        'total_pages': notifications.pages
    }), 200

@notifications_bp.route('/notifications/<int:notification_id>', methods=['GET'])
@jwt_required()
def get_notification(notification_id):
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Authentication required'}), 401

    notification = get_notification_for(notification_id, current_user.id)

    return jsonify({'notification': serialize_notification(notification)}), 200

# ============================================
# 2. 標記通知為已讀
# ============================================

@notifications_bp.route('/notifications/<int:notification_id>/read', methods=['PATCH'])
@jwt_required()
def mark_notification_read(notification_id):
    """標記單個通知為已讀"""
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Authentication required'}), 401

    notification = get_notification_for(notification_id, current_user.id, Action.UPDATE_NOTIFICATION)
    notification.is_read = True

    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Failed to mark notification {notification_id} as read: {str(e)}", exc_info=True)
        return jsonify({'error': 'Failed to update notification due to server error'}), 500

    return jsonify({
        'message': 'Notification marked as read',
        'notification': serialize_notification(notification)
    }), 200

@notifications_bp.route('/notifications/read-all', methods=['PATCH'])
@jwt_required()
def mark_all_notifications_read():
    """標記所有通知為已讀"""
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Authentication required'}), 401

    try:
        updated = Notification.query.filter_by(user_id=current_user.id, is_read=False)\
            .update({'is_read': True})
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Failed to mark notifications as read: {str(e)}", exc_info=True)
        return jsonify({'error': 'Failed to update notifications due to server error'}), 500

    return jsonify({
        'message': 'All notifications marked as read',
        'updated': updated
    }), 200

# ============================================
# 3. 刪除通知
# ============================================

@notifications_bp.route('/notifications/<int:notification_id>', methods=['DELETE'])
@jwt_required()
def delete_notification(notification_id):
    """刪除單個通知"""
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Authentication required'}), 401

    notification = get_notification_for(notification_id, current_user.id, Action.DELETE_NOTIFICATION)

    try:
        db.session.delete(notification)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Failed to delete notification {notification_id}: {str(e)}", exc_info=True)
        return jsonify({'error': 'Failed to delete notification due to server error'}), 500

    return jsonify({'message': 'Notification deleted'}), 200
