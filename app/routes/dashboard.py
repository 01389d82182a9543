# -*- coding: utf-8 -*-
"""
後台藍圖

登入使用者專用的路由：後台首頁與文章發佈。
所有路由都需要登入；未登入的訪客在任何上傳被讀取或儲存之前
就會被導向登入頁。
"""
from flask import Blueprint, render_template, flash, current_app
from flask_login import login_required, current_user
from app import images
from app.forms import PostForm
from app.services.post_service import PostService
from app.services.statistics_service import StatisticsService


bp = Blueprint('dashboard', __name__)


def _render_post_form(form: PostForm, status_code: int = 200):
    """渲染文章表單頁"""
    return render_template('dashboard/new_post.html',
                           form=form,
                           max_files=images.settings.max_files,
                           active_page='newpost'), status_code


@bp.route('/dash')
@login_required
def index():
    """後台首頁與統計資料"""
    stats = StatisticsService.get_dashboard_stats()

    return render_template('dashboard/index.html',
                           **stats,
                           active_page='dashboard')


@bp.route('/newpost')
@login_required
def new_post():
    """文章建立表單"""
    return _render_post_form(PostForm())


@bp.route('/postsubmit', methods=['POST'])
@login_required
def post_submit():
    """發佈文章並顯示預覽

    文字欄位在寫入任何檔案之前驗證。所有圖片的縮圖產生完成後
    才會回應。
    """
    form = PostForm()

    if not form.validate_on_submit():
        current_app.logger.info(f"Post form rejected for user {current_user.id}: {form.errors}")
        return _render_post_form(form, 400)

    form_data = {
        'title': form.title.data,
        'description': form.description.data
    }
    author = current_app.config.get('POST_AUTHOR') or current_user.name

    result = PostService.submit_post(form_data, form.uploads(), author)

    if not result['success']:
        if result['error_type'] == 'upload':
            form.images.errors.append(result['message'])
        else:
            flash(result['message'], 'danger')
        status_code = result.get('status_code') or (409 if result['error_type'] == 'integrity' else 500)
        return _render_post_form(form, status_code)

    if result['derivation_failures']:
        flash(f"{len(result['derivation_failures'])} image(s) could not be resized; "
              f"the originals were kept.", 'warning')
    if not result['variants_recorded']:
        flash('The resized images were created but could not be saved to the post; '
              'the originals will be shown instead.', 'warning')
    flash(result['message'], 'success')

    return render_template('dashboard/post_preview.html',
                           post=result['post'],
                           result=result,
                           active_page='newpost')
