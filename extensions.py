# ============================================
# Flask 擴展實例
# 在 create_app() 裡面用 init_app 綁定到 app,
# blueprint 可以直接 import 使用 (例如 limiter 裝飾器)
# ============================================

from flask_bcrypt import Bcrypt
from flask_cors import CORS
from flask_jwt_extended import JWTManager
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

jwt = JWTManager()
bcrypt = Bcrypt()
cors = CORS()

# storage 由 RATELIMIT_STORAGE_URI 決定 (開發環境用記憶體,production 用 Redis)
limiter = Limiter(
    get_remote_address,
    default_limits=["1000 per day", "200 per hour"],
)
