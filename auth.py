from datetime import datetime
from flask import Blueprint, request, jsonify
from flask_jwt_extended import create_access_token, create_refresh_token, jwt_required, get_jwt_identity
from marshmallow import Schema, fields, validate, ValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from models import db, User
from extensions import bcrypt, limiter
import logging

auth_bp = Blueprint('auth', __name__)
logger = logging.getLogger(__name__)


# ============================================
# Input Validation Schemas (用 marshmallow)
# ============================================

class RegisterSchema(Schema):
    """註冊輸入驗證"""
    email = fields.Email(required=True, error_messages={
        'required': 'Email is required',
        'invalid': 'Invalid email format'
    })
    password = fields.Str(
        required=True,
        validate=validate.Length(min=8, max=128, error='Password must be 8-128 characters'),
        error_messages={'required': 'Password is required'}
    )
    name = fields.Str(
        required=True,
        validate=validate.Length(min=2, max=50, error='Name must be 2-50 characters'),
        error_messages={'required': 'Name is required'}
    )

class LoginSchema(Schema):
    """登入輸入驗證"""
    email = fields.Email(required=True)
    password = fields.Str(required=True)

class UpdateProfileSchema(Schema):
    """個人資料更新驗證"""
    name = fields.Str(validate=validate.Length(min=2, max=50))

class ChangePasswordSchema(Schema):
    """密碼修改驗證"""
    current_password = fields.Str(required=True)
    new_password = fields.Str(
        required=True,
        validate=validate.Length(min=8, max=128)
    )

# ============================================
# Helper Functions (供其他模組使用)
# ============================================

def validate_request_data(schema_class, data):
    """
    統一的輸入驗證函數

    Returns:
        tuple: (is_valid, data_or_errors)
    """
    schema = schema_class()
    try:
        validated_data = schema.load(data)
        return True, validated_data
    except ValidationError as err:
        return False, err.messages

def get_current_user():
    """取得當前登入的使用者,token 的 identity 是字串形式的 user id"""
    user_id = get_jwt_identity()
    if not user_id:
        return None
    return db.session.get(User, int(user_id))

def serialize_user(user):
    return {
        'id': user.id,
        'name': user.name,
        'email': user.email
    }

# ============================================
# 註冊 API
# ============================================

@auth_bp.route('/register', methods=['POST'])
@limiter.limit("5 per hour")
def register():
    """使用者註冊"""
    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(RegisterSchema, data)
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    if User.query.filter_by(email=result['email']).first():
        return jsonify({'error': 'Email already exists'}), 409

    user = User(
        email=result['email'],
        name=result['name'],
        password_hash=bcrypt.generate_password_hash(result['password']).decode('utf-8')
    )

    try:
        db.session.add(user)
        db.session.commit()
    except IntegrityError:
        # 同時註冊同一個 email,交給 unique constraint 擋
        db.session.rollback()
        return jsonify({'error': 'Email already exists'}), 409
    except SQLAlchemyError as e:
        db.session.rollback()
        # 不要把 exception 細節洩漏給前端
        logger.error(f"Registration error for {result['email']}: {str(e)}", exc_info=True)
        return jsonify({'error': 'Registration failed due to server error'}), 500

    logger.info(f"New user registered: {user.email}")

    return jsonify({
        'message': 'User registered successfully',
        'user': serialize_user(user)
    }), 201

# ============================================
# 登入 API
# ============================================

@auth_bp.route('/login', methods=['POST'])
@limiter.limit("10 per minute")
def login():
    """
    使用者登入

    回傳 access token 和 refresh token,
    錯誤訊息不區分 email/password,避免帳號枚舉
    """
    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(LoginSchema, data)
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    user = User.query.filter_by(email=result['email']).first()

    if not user or not bcrypt.check_password_hash(user.password_hash, result['password']):
        logger.warning(f"Failed login attempt for email: {result['email']}")
        return jsonify({'error': 'Invalid credentials'}), 401

    if not user.is_active:
        logger.warning(f"Inactive user login attempt: {user.email}")
        return jsonify({'error': 'Account is disabled'}), 403

    access_token = create_access_token(identity=str(user.id))
    refresh_token = create_refresh_token(identity=str(user.id))

    # 更新最後登入時間 (失敗不影響登入)
    try:
        user.last_login = datetime.utcnow()
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Failed to update last_login for {user.email}: {str(e)}")

    logger.info(f"User logged in: {user.email}")

    return jsonify({
        'message': 'Login successful',
        'access_token': access_token,
        'refresh_token': refresh_token,
        'user': serialize_user(user)
    }), 200

# ============================================
# Token 刷新 API
# ============================================

@auth_bp.route('/refresh', methods=['POST'])
@jwt_required(refresh=True)
def refresh():
    """用 refresh token 換新的 access token"""
    user = get_current_user()

    if not user or not user.is_active:
        return jsonify({'error': 'Invalid or inactive user'}), 401

    return jsonify({
        'access_token': create_access_token(identity=str(user.id))
    }), 200

# ============================================
# 取得 / 更新當前使用者資訊
# ============================================

@auth_bp.route('/me', methods=['GET'])
@jwt_required()
def get_me():
    """取得當前登入使用者的資訊"""
    user = get_current_user()

    if not user:
        logger.warning(f"Token valid but user not found: {get_jwt_identity()}")
        return jsonify({'error': 'User not found'}), 404

    return jsonify({
        **serialize_user(user),
        'is_active': user.is_active,
        'last_login': user.last_login.isoformat() if user.last_login else None,
        'created_at': user.created_at.isoformat()
    }), 200

@auth_bp.route('/me', methods=['PATCH'])
@jwt_required()
def update_me():
    """更新當前使用者資料"""
    user = get_current_user()
    if not user:
        return jsonify({'error': 'User not found'}), 404

    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(UpdateProfileSchema, data)
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    if 'name' in result:
        user.name = result['name']

    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Profile update error for {user.email}: {str(e)}", exc_info=True)
        return jsonify({'error': 'Update failed due to server error'}), 500

    logger.info(f"User profile updated: {user.email}")

    return jsonify({
        'message': 'Profile updated successfully',
        'user': serialize_user(user)
    }), 200

# ============================================
# 修改密碼
# ============================================

@auth_bp.route('/change-password', methods=['POST'])
@jwt_required()
def change_password():
    """修改密碼"""
    user = get_current_user()
    if not user:
        return jsonify({'error': 'User not found'}), 404

    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(ChangePasswordSchema, data)
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    if not bcrypt.check_password_hash(user.password_hash, result['current_password']):
        return jsonify({'error': 'Current password is incorrect'}), 401

    user.password_hash = bcrypt.generate_password_hash(result['new_password']).decode('utf-8')

    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Password change error for {user.email}: {str(e)}", exc_info=True)
        return jsonify({'error': 'Password change failed due to server error'}), 500

    logger.info(f"Password changed for user: {user.email}")

    return jsonify({'message': 'Password changed successfully'}), 200
