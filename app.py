from flask import Flask, request, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException
from config import get_config
from models import db
from extensions import jwt, bcrypt, cors, limiter
from permissions import AccessError
from datetime import datetime
import logging
from logging.handlers import RotatingFileHandler
import os

# ============================================
# Logging 設定
# ============================================

def setup_logging(app):
    """
    設定 logging

    info 和 error 分開寫檔,用 RotatingFileHandler 避免 log 檔案過大。
    debug / testing 模式不寫檔
    """
    if app.debug or app.testing:
        return

    log_dir = os.path.dirname(app.config['LOG_FILE'])
    if log_dir and not os.path.exists(log_dir):
        os.makedirs(log_dir)

    formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )

    # Info log handler (記錄一般資訊)
    info_handler = RotatingFileHandler(
        app.config['LOG_FILE'],
        maxBytes=10240000,  # 10MB
        backupCount=10
    )
    info_handler.setLevel(logging.INFO)
    info_handler.setFormatter(formatter)

    # Error log handler (只記錄錯誤)
    error_handler = RotatingFileHandler(
        app.config['ERROR_LOG_FILE'],
        maxBytes=10240000,  # 10MB
        backupCount=10
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(formatter)

    # blueprint 和規則引擎都用 module logger,掛在 root 才收得到
    root_logger = logging.getLogger()
    root_logger.addHandler(info_handler)
    root_logger.addHandler(error_handler)
    root_logger.setLevel(app.config['LOG_LEVEL'])

    app.logger.info('Application startup')

# ============================================
# JWT 錯誤處理
# ============================================

@jwt.expired_token_loader
def expired_token_callback(jwt_header, jwt_payload):
    """處理 token 過期"""
    logging.getLogger(__name__).warning(f"Expired token attempt from: {request.remote_addr}")
    return jsonify({
        'error': 'token_expired',
        'message': 'The token has expired. Please refresh your token or login again.'
    }), 401

@jwt.invalid_token_loader
def invalid_token_callback(error):
    """處理無效的 token"""
    logging.getLogger(__name__).warning(f"Invalid token attempt from: {request.remote_addr}, error: {error}")
    return jsonify({
        'error': 'invalid_token',
        'message': 'Token validation failed. Please provide a valid token.'
    }), 401

@jwt.unauthorized_loader
def unauthorized_callback(error):
    """處理缺少 token"""
    return jsonify({
        'error': 'authorization_required',
        'message': 'Access token is required. Please provide an authorization token.'
    }), 401

# ============================================
# 全域錯誤處理
# ============================================

def register_error_handlers(app):

    @app.errorhandler(AccessError)
    def handle_access_error(error):
        """規則引擎的 NotFound / Forbidden"""
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(400)
    def bad_request(error):
        return jsonify({
            'error': 'bad_request',
            'message': 'The request is malformed or invalid',
            'status': 400
        }), 400

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({
            'error': 'not_found',
            'message': 'The requested resource does not exist',
            'status': 404
        }), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({
            'error': 'method_not_allowed',
            'message': 'The HTTP method is not allowed for this endpoint',
            'status': 405
        }), 405

    @app.errorhandler(429)
    def rate_limit_exceeded(error):
        app.logger.warning(f"Rate limit exceeded from: {request.remote_addr}")
        return jsonify({
            'error': 'rate_limit_exceeded',
            'message': 'Too many requests. Please try again later.',
            'status': 429
        }), 429

    @app.errorhandler(500)
    def internal_server_error(error):
        """不洩漏錯誤細節給前端,完整 stack trace 只寫進 log"""
        db.session.rollback()
        app.logger.error(f"Internal server error: {str(error)}", exc_info=True)
        return jsonify({
            'error': 'internal_server_error',
            'message': 'An internal error occurred. Our team has been notified.',
            'status': 500
        }), 500

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        """最後的防線,捕捉所有沒被處理的 exception"""
        if isinstance(error, HTTPException):
            return error

        db.session.rollback()
        app.logger.error(f"Unexpected error: {str(error)}", exc_info=True)
        return jsonify({
            'error': 'unexpected_error',
            'message': 'An unexpected error occurred. Please try again later.',
            'status': 500
        }), 500

# ============================================
# Request/Response Logging
# ============================================

def register_request_hooks(app):

    @app.before_request
    def log_request():
        if not app.debug:
            app.logger.info(f"Request: {request.method} {request.path} from {request.remote_addr}")

    @app.after_request
    def log_response(response):
        if not app.debug:
            app.logger.info(f"Response: {response.status_code} for {request.method} {request.path}")

        # 加上 security headers
        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['X-Frame-Options'] = 'DENY'
        response.headers['X-XSS-Protection'] = '1; mode=block'

        return response

# ============================================
# 健康檢查與 API 首頁
# ============================================

def register_service_routes(app):

    @app.route('/health', methods=['GET'])
    @limiter.exempt
    def health_check():
        """健康檢查端點,給 load balancer 或監控系統用"""
        try:
            db.session.execute(text('SELECT 1'))
            return jsonify({
                'status': 'healthy',
                'database': 'connected',
                'timestamp': datetime.utcnow().isoformat()
            }), 200
        except SQLAlchemyError as e:
            app.logger.error(f"Health check failed: {str(e)}")
            return jsonify({
                'status': 'unhealthy',
                'database': 'disconnected',
                'error': 'Database connection failed'
            }), 503

    @app.route('/')
    @limiter.limit("10 per minute")
    def home():
        """API 首頁,列出所有 endpoint (依 blueprint 分組)"""
        endpoints = {}
        for rule in app.url_map.iter_rules():
            if rule.endpoint == 'static':
                continue
            group = rule.endpoint.split('.')[0] if '.' in rule.endpoint else 'service'
            endpoints.setdefault(group, []).append({
                'path': rule.rule,
                'methods': sorted(rule.methods - {'HEAD', 'OPTIONS'})
            })

        return jsonify({
            'message': 'SynergySphere API',
            'version': app.config['API_VERSION'],
            'endpoints': endpoints
        })

# ============================================
# App Factory
# ============================================

def create_app(config_class=None):
    """建立 Flask app,預設依 FLASK_ENV 選擇設定"""
    config_class = config_class or get_config()
    config_class.validate()

    app = Flask(__name__)
    app.config.from_object(config_class)

    # 擴展初始化
    db.init_app(app)
    jwt.init_app(app)
    bcrypt.init_app(app)
    limiter.init_app(app)
    cors.init_app(
        app,
        supports_credentials=True,
        origins=app.config['CORS_ORIGINS'],
        methods=['GET', 'POST', 'PATCH', 'DELETE', 'OPTIONS'],
        allow_headers=['Content-Type', 'Authorization']
    )

    setup_logging(app)

    # 註冊 Blueprints
    from auth import auth_bp
    from projects import projects_bp
    from tasks import tasks_bp
    from discussions import discussions_bp
    from notifications import notifications_bp

    app.register_blueprint(auth_bp, url_prefix='/auth')
    app.register_blueprint(projects_bp, url_prefix='/projects')
    app.register_blueprint(tasks_bp)
    app.register_blueprint(discussions_bp)
    app.register_blueprint(notifications_bp, url_prefix='/api')

    register_error_handlers(app)
    register_request_hooks(app)
    register_service_routes(app)

    with app.app_context():
        db.create_all()
        app.logger.info('Database tables created')

    return app

# ============================================
# 啟動應用
# ============================================

if __name__ == '__main__':
    # production 環境用 gunicorn: gunicorn "app:create_app()"
    app = create_app()
    app.run(
        debug=app.config['DEBUG'],
        port=int(os.getenv('FLASK_PORT', 8888)),
        host='0.0.0.0'
    )
