# -*- coding: utf-8 -*-
"""
公開路由藍圖模組

本模組包含所有對外的路由：文章列表、文章頁面、已儲存的圖片檔案
與帳號相關頁面。除了登出之外，這些路由都不需要登入。

概覽:
- 主要路由：文章列表、單篇文章、圖片檔案
- 帳號路由：註冊、登入、登出
"""
from __future__ import annotations

from typing import TYPE_CHECKING
from urllib.parse import urlparse

from flask import (
    Blueprint, render_template, request,
    redirect, url_for, flash, Response, abort,
    current_app, send_file
)
from flask_login import login_user, logout_user, login_required, current_user

if TYPE_CHECKING:
    from flask import Flask

from app import images
from app.models import PostImage
from app.forms import LoginForm, RegistrationForm
from app.services.post_service import PostService
from app.services.user_service import UserService
from app.services.storage_service import ORIGINAL_DIR


# ========================================
# 輔助函數
# ========================================

def _handle_login_error(message: str, name: str = None) -> Response:
    """
    統一處理登入失敗

    無論名稱不存在或密碼錯誤都顯示相同訊息，避免帳號被列舉。
    細節只寫入日誌。

    參數:
        message (str): 顯示給使用者的訊息
        name (str, optional): 嘗試登入的名稱，供日誌使用

    回傳:
        Response: 導回登入頁
    """
    if name:
        current_app.logger.warning(f"Login failed: {message} (name: {name})")
    else:
        current_app.logger.warning(f"Login failed: {message}")

    flash(message, 'danger')
    return redirect(url_for('auth.login'))


def _get_safe_next_url(default_endpoint: str = 'dashboard.index') -> str:
    """
    解析 'next' 參數並防止開放式重新導向

    只接受相對網址；帶有主機名稱的網址一律改用預設端點。

    參數:
        default_endpoint (str): 'next' 不存在或不安全時使用的端點

    回傳:
        str: 要導向的網址
    """
    next_page = request.args.get('next')
    if not next_page or urlparse(next_page).netloc != '' or not next_page.startswith('/'):
        return url_for(default_endpoint)
    return next_page


# ========================================
# 藍圖
# ========================================

# 文章列表、文章頁面與圖片檔案
main_bp = Blueprint('main', __name__)

# 註冊、登入與登出
auth_bp = Blueprint('auth', __name__)


# ========================================
# 主要路由
# ========================================

@main_bp.route('/')
def index():
    """
    首頁：所有文章，最新的在前

    URL:
        GET /
    """
    posts = PostService.list_posts()
    return render_template('main/index.html', posts=posts, active_page='home')


@main_bp.route('/post/<int:post_id>')
def post(post_id):
    """
    單篇文章頁面

    URL:
        GET /post/<id>

    找不到該編號的文章時回傳 404。
    """
    post = PostService.get_post(post_id)
    if post is None:
        abort(404)
    return render_template('main/post.html', post=post)


@main_bp.route('/images/<path:relpath>')
def image(relpath):
    """
    提供已儲存的原圖或縮圖

    URL:
        GET /images/<directory>/<filename>
        例如 /images/small/3f2a....webp 或 /images/original/3f2a...

    只能存取圖片目錄配置內的目錄；其他路徑（包括路徑穿越與不存在的檔案）
    一律回傳 404。
    """
    directory, _, filename = relpath.partition('/')
    path = images.layout.resolve(directory, filename)
    if path is None:
        abort(404)
    if directory == ORIGINAL_DIR:
        stored = PostImage.query.filter_by(filename=filename).first()
        mimetype = stored.content_type if stored else None
    else:
        mimetype = f'image/{images.settings.image_format}'
    return send_file(path, mimetype=mimetype)


# ========================================
# 帳號路由
# ========================================

@auth_bp.route('/register', methods=['GET', 'POST'])
def register():
    """
    註冊頁面

    URL:
        GET /register  - 顯示表單
        POST /register - 驗證並建立帳號

    驗證失敗時重新顯示表單，每個欄位附上錯誤訊息，並保留已填入的名稱
    與電子郵件。密碼欄位不會回填。成功後導向登入頁。
    """
    form = RegistrationForm()

    if form.validate_on_submit():
        result = UserService.register(form.name.data, form.email.data, form.password.data)

        if result['success']:
            flash(result['message'], 'success')
            return redirect(url_for('auth.login'))

        if result.get('field') in ('name', 'email'):
            getattr(form, result['field']).errors.append(result['message'])
        else:
            flash(result['message'], 'danger')

    elif request.method == 'POST':
        current_app.logger.info(f"Registration form rejected: {list(form.errors)}")

    return render_template('auth/register.html', form=form, active_page='register')


@auth_bp.route('/login', methods=['GET', 'POST'])
def login():
    """
    登入頁面

    URL:
        GET /login  - 顯示表單
        POST /login - 驗證帳號密碼並建立工作階段

    已登入的使用者直接導向後台。登入成功導向安全的 'next' 網址或後台；
    失敗則以單一通用訊息導回此頁。
    """
    if current_user.is_authenticated:
        return redirect(url_for('dashboard.index'))

    form = LoginForm()

    if form.validate_on_submit():
        name = form.name.data
        current_app.logger.info(f"Login attempt for name: {name}")

        user = UserService.authenticate(name, form.password.data)
        if user is None:
            return _handle_login_error('Invalid name or password.', name)

        login_user(user)
        current_app.logger.info(f"User {user.name} logged in")

        user.update_last_login()

        flash('Welcome back!', 'success')
        return redirect(_get_safe_next_url())

    if request.method == 'POST':
        current_app.logger.warning(f"Login form validation failed: {form.errors}")
        return _handle_login_error('Invalid name or password.')

    return render_template('auth/login.html', form=form, active_page='login')


@auth_bp.route('/logout')
@login_required
def logout():
    """
    結束工作階段

    URL:
        GET /logout
    """
    user_name = current_user.name
    logout_user()
    current_app.logger.info(f"User {user_name} logged out")
    flash('You have been logged out.', 'info')
    return redirect(url_for('main.index'))


# ========================================
# 註冊藍圖
# ========================================

def register_public_blueprints(app: 'Flask') -> None:
    """
    在應用程式上註冊所有公開藍圖

    參數:
        app (Flask): Flask 應用程式實例
    """
    app.register_blueprint(main_bp)
    app.register_blueprint(auth_bp)

    app.logger.info("Public blueprints registered")
