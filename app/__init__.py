import os
import secrets
import logging
from logging.handlers import RotatingFileHandler
from datetime import datetime
import pytz

from flask import Flask, g, request, redirect, render_template
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_login import LoginManager, current_user
from flask_caching import Cache
from flask_wtf.csrf import CSRFError

from config import get_config
from app.services.image_service import ImagePipeline

# 初始化擴充套件
db = SQLAlchemy()
migrate = Migrate()
login_manager = LoginManager()
cache = Cache()
images = ImagePipeline()
csrf = None

# 配置登入管理器
login_manager.login_view = 'auth.login'
login_manager.login_message = 'Please log in to access this page.'
login_manager.login_message_category = 'info'

@login_manager.user_loader
def load_user(user_id: str) -> 'User':
    """為 Flask-Login 載入使用者"""
    from app.models import User
    try:
        return db.session.get(User, int(user_id))
    except (ValueError, TypeError):
        return None


def init_csrf(app: 'Flask') -> None:
    """設定啟用時初始化 CSRF 保護"""
    global csrf

    if not app.config.get('WTF_CSRF_ENABLED', True):
        return

    from flask_wtf.csrf import CSRFProtect
    csrf = CSRFProtect(app)
    app.logger.info('CSRF protection enabled')


def configure_logging(app: 'Flask') -> None:
    """根據環境配置應用程式日誌"""
    if app.testing:
        app.logger.setLevel(logging.DEBUG)
        return

    if app.debug:
        # 開發環境日誌 - 控制台輸出
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(logging.Formatter(
            '%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
        ))
        console_handler.setLevel(logging.DEBUG)
        app.logger.addHandler(console_handler)
        app.logger.setLevel(logging.DEBUG)
        app.logger.info('Development logging configured')
    else:
        # 生產環境日誌 - 檔案輸出與輪替
        log_file = app.config.get('LOG_FILE', 'logs/app.log')

        log_dir = os.path.dirname(log_file)
        if log_dir and not os.path.exists(log_dir):
            try:
                os.makedirs(log_dir, exist_ok=True)
            except OSError as e:
                app.logger.error(f"Failed to create log directory {log_dir}: {e}. "
                                 f"Falling back to 'app.log'.")
                log_file = 'app.log'

        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=10*1024*1024,  # 10MB
            backupCount=10
        )
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
        ))
        file_handler.setLevel(logging.INFO)
        app.logger.addHandler(file_handler)
        app.logger.setLevel(logging.INFO)
        app.logger.info('Production logging configured')


def register_blueprints(app: 'Flask') -> None:
    """註冊所有應用程式藍圖"""
    # 註冊公開路由 (main, auth)
    from app.routes.public import register_public_blueprints
    register_public_blueprints(app)

    # 註冊登入後的後台路由
    from app.routes.dashboard import bp as dashboard_bp
    app.register_blueprint(dashboard_bp)

    app.logger.info('All blueprints registered successfully')


def setup_security_headers(app: 'Flask') -> None:
    """配置安全相關的請求處理器"""

    @app.before_request
    def before_request():
        """在每個請求之前生成 nonce 並強制使用 HTTPS"""
        g.csp_nonce = secrets.token_urlsafe(16)
        # 除錯與測試模式下跳過，以免干擾本地 HTTP
        if not app.debug and not app.testing and app.config.get('FORCE_HTTPS', True):
            if not request.is_secure and request.headers.get('X-Forwarded-Proto') != 'https':
                if request.method == 'GET':
                    return redirect(request.url.replace('http://', 'https://'), code=301)

    @app.after_request
    def set_security_headers(response):
        """為所有回應新增安全標頭"""
        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['X-Frame-Options'] = 'DENY'
        response.headers['Referrer-Policy'] = 'strict-origin-when-cross-origin'

        # HSTS 標頭（僅在非除錯模式）
        if not app.debug and app.config.get('FORCE_HTTPS', True):
            response.headers['Strict-Transport-Security'] = 'max-age=31536000; includeSubDomains; preload'

        csp_config = app.config.get('CSP')
        if csp_config:
            csp_parts = []
            for directive, values in csp_config.items():
                if values:
                    csp_parts.append(f"{directive} {' '.join(values)}")
                else:
                    csp_parts.append(directive)
            response.headers['Content-Security-Policy'] = '; '.join(csp_parts)

        return response


def register_error_handlers(app: 'Flask') -> None:
    """為應用程式註冊錯誤處理器"""

    @app.errorhandler(400)
    def bad_request_error(error):
        """處理 400 錯誤請求"""
        app.logger.info(f"Bad request from {request.remote_addr}: {request.url} ({error.description})")
        return render_template('error/400.html', message=error.description), 400

    @app.errorhandler(CSRFError)
    def csrf_error(error):
        """處理 CSRF 驗證失敗；未登入者（例如工作階段已過期）導向登入頁"""
        if current_user.is_anonymous:
            app.logger.info(f"CSRF check failed for anonymous request: {request.url}")
            return login_manager.unauthorized()
        app.logger.warning(f"CSRF check failed from {request.remote_addr}: {request.url} ({error.description})")
        return render_template('error/400.html', message=error.description), 400

    @app.errorhandler(403)
    def forbidden_error(error):
        """處理 403 禁止存取錯誤"""
        app.logger.warning(f"Forbidden access attempt from {request.remote_addr}: {request.url}")
        return render_template('error/403.html'), 403

    @app.errorhandler(404)
    def not_found_error(error):
        """處理 404 找不到頁面錯誤"""
        app.logger.info(f"Page not found: {request.url}")
        return render_template('error/404.html'), 404

    @app.errorhandler(413)
    def too_large_error(error):
        """處理 413 上傳內容過大錯誤"""
        app.logger.warning(f"Upload too large from {request.remote_addr}: {request.url}")
        return render_template('error/413.html'), 413

    @app.errorhandler(500)
    def internal_error(error):
        """處理 500 伺服器內部錯誤"""
        db.session.rollback()
        app.logger.error(f"Server Error: {error}")
        return render_template('error/500.html'), 500


def register_context_processors(app: 'Flask') -> None:
    """Register template context processors

    'csrf_enabled' lets templates skip the hidden csrf_token input when CSRF
    protection is off.
    """

    @app.context_processor
    def inject_template_vars():
        """注入模板共用變數"""
        tz = pytz.timezone(app.config.get('TIMEZONE', 'UTC'))
        return {
            'now': datetime.now(tz),
            'csp_nonce': getattr(g, 'csp_nonce', ''),
            'app_version': app.config.get('VERSION', '1.0.0'),
            'debug_mode': app.debug,
            'csrf_enabled': csrf is not None,
        }


def create_app(config_name: str = None, config_class = None) -> 'Flask':
    """
    Application factory function

    Args:
        config_name (str): Configuration environment name
        config_class: Configuration class (overrides config_name if provided)

    Returns:
        Flask: Configured Flask application instance
    """
    global csrf
    csrf = None

    app = Flask(__name__)

    # Load configuration
    if config_class is None:
        config_class = get_config(config_name)
    app.config.from_object(config_class)

    config_class.init_app(app)

    # Logging first so extension setup is recorded
    configure_logging(app)

    # Initialize core extensions
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    cache.init_app(app)
    images.init_app(app)
    init_csrf(app)

    # Configure application components
    register_blueprints(app)
    setup_security_headers(app)
    register_error_handlers(app)
    register_context_processors(app)

    if app.debug:
        app.logger.info('Application started in development mode')

    app.logger.info(f'Application created with {config_name or config_class.__name__} configuration')
    return app


def create_tables(app: 'Flask') -> None:
    """
    Create database tables

    Suitable for development or one-time initialization. Use Flask-Migrate
    (flask db init/migrate/upgrade) to manage schema changes afterwards.

    Args:
        app: Flask application instance
    """
    with app.app_context():
        try:
            db.create_all()
            app.logger.info('Database tables created successfully')
        except Exception as e:
            app.logger.error(f'Error creating database tables: {e}')
            raise
