# -*- coding: utf-8 -*-
"""
文章服務

處理文章發佈的業務邏輯，包括儲存上傳檔案、建立文章紀錄與產生縮圖
"""
from typing import Dict, Any, Iterable, List, Optional
from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from app import db, images
from app.models import Post, PostImage, utcnow
from app.services.image_service import BatchResult
from app.services.storage_service import ImageDescriptor, UploadError
from app.services.statistics_service import StatisticsService


class PostService:
    """處理文章操作的服務類別"""

    @staticmethod
    def list_posts() -> List[Post]:
        """取得所有文章，最新的在前"""
        return Post.newest_first().all()

    @staticmethod
    def get_post(post_id: int) -> Optional[Post]:
        return db.session.get(Post, post_id)

    @staticmethod
    def create_post(form_data: Dict[str, Any], descriptors: Iterable[ImageDescriptor],
                    author: Optional[str] = None) -> Dict[str, Any]:
        """建立文章與其圖片紀錄

        參數:
            form_data: 包含已清理的 'title' 與 'description' 的字典
            descriptors: 已儲存的上傳檔案，依上傳順序
            author: 記錄為文章作者的名稱

        回傳:
            包含成功狀態、訊息，以及成功時的文章、文章編號與 slug 的字典
        """
        post = Post(
            post_date=utcnow(),
            title=form_data.get('title'),
            description=form_data.get('description') or None,
            author=author
        )
        for position, descriptor in enumerate(descriptors):
            post.images.append(PostImage.from_descriptor(descriptor, position))

        current_app.logger.info(
            f"Creating post: title={post.title!r}, slug={post.slug!r}, images={len(post.images)}"
        )

        db.session.add(post)

        try:
            db.session.commit()
            StatisticsService.clear_stats_cache()

            return {
                'success': True,
                'message': 'Post published!',
                'post': post,
                'post_id': post.id,
                'post_slug': post.slug
            }

        except IntegrityError as e:
            db.session.rollback()
            current_app.logger.error(f"Database integrity error while creating post: {e}")

            return {
                'success': False,
                'message': 'The post could not be saved because it conflicts with existing data.',
                'error_type': 'integrity'
            }

        except SQLAlchemyError as e:
            db.session.rollback()
            current_app.logger.error(f"Database error while creating post: {e}")

            return {
                'success': False,
                'message': 'A database error occurred. Please try again later.',
                'error_type': 'database'
            }

    @staticmethod
    def record_derivations(post: Post, batch: BatchResult) -> bool:
        """將產生的縮圖記錄到文章的圖片紀錄"""
        for image in post.images:
            result = batch.for_filename(image.filename)
            if result is not None:
                image.record_variants(result)

        try:
            db.session.commit()
            return True
        except SQLAlchemyError as e:
            db.session.rollback()
            current_app.logger.error(f"Failed to record derived images for post {post.id}: {e}")
            return False

    @staticmethod
    def submit_post(form_data: Dict[str, Any], files, author: Optional[str] = None) -> Dict[str, Any]:
        """儲存上傳檔案、建立文章，再產生縮圖

        文章在任何縮圖開始產生之前就已提交。回傳前會等待所有圖片處理
        完成；失敗會記錄在結果中，不會撤銷已儲存的文章。若文章無法儲存，
        已上傳的原圖會被移除。

        回傳:
            create_post 的結果；成功時另外包含 'derivation_failures'（檔名）、
            'variants_count' 與 'variants_recorded'
        """
        try:
            descriptors = images.receive(files)
        except UploadError as e:
            return {
                'success': False,
                'message': e.message,
                'error_type': 'upload',
                'status_code': e.status_code
            }

        result = PostService.create_post(form_data, descriptors, author)
        if not result['success']:
            images.discard(descriptors)
            return result

        post = result['post']
        batch = images.derive_all(descriptors)
        recorded = PostService.record_derivations(post, batch)

        failures = [item.filename for item in batch.failed]
        if failures:
            current_app.logger.warning(f"Post {post.id}: derivation failed for {', '.join(failures)}")

        result.update({
            'derivation_failures': failures,
            'variants_count': batch.produced_count,
            'variants_recorded': recorded
        })
        return result
