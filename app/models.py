# -*- coding: utf-8 -*-
"""
Database Models Module

This module contains all database models for the CMS.
All models are consolidated in this single file for better maintainability.
"""
from datetime import datetime, timezone
from typing import Dict, Optional

import pytz
from flask import current_app, Flask
from flask_login import UserMixin
from sqlalchemy.orm import validates
from werkzeug.security import generate_password_hash, check_password_hash

from app import db
from app.utils import slugify


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ========================================
# User Model
# ========================================

class User(UserMixin, db.Model):
    """
    User model for authentication and access control

    The name doubles as the login identifier. Name and email are unique and
    stored trimmed and lowercased. Passwords are only ever kept as salted
    Werkzeug hashes, which embed the method, salt and iteration count needed
    to verify a later attempt.
    """

    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), unique=True, nullable=False, index=True)
    email = db.Column(db.String(120), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(256), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    last_login = db.Column(db.DateTime(timezone=True), nullable=True)

    @staticmethod
    def normalize(value: Optional[str]) -> str:
        """去除空白並轉為小寫（名稱或電子郵件）"""
        return (value or '').strip().lower()

    @validates('name', 'email')
    def _normalize_identity(self, key, value):
        return self.normalize(value)

    @classmethod
    def find_by_name(cls, name: str) -> Optional['User']:
        return cls.query.filter_by(name=cls.normalize(name)).first()

    @classmethod
    def find_by_email(cls, email: str) -> Optional['User']:
        return cls.query.filter_by(email=cls.normalize(email)).first()

    def set_password(self, password: str) -> None:
        """
        Set the user's password by generating a salted hash

        Args:
            password (str): The plaintext password to hash and store
        """
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        """
        Verify a password against the stored hash

        Args:
            password (str): The plaintext password to verify

        Returns:
            bool: True if the password is correct, False otherwise
        """
        if not self.password_hash:
            return False
        return check_password_hash(self.password_hash, password)

    def update_last_login(self) -> None:
        """更新最後登入時間"""
        try:
            self.last_login = utcnow()
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            # 記錄錯誤但不影響登入流程
            current_app.logger.warning(f"Failed to update last login time: {e}")

    def to_dict(self) -> dict:
        """轉換為字典格式（不包含敏感資訊）"""
        return {
            'id': self.id,
            'name': self.name,
            'email': self.email,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'last_login': self.last_login.isoformat() if self.last_login else None
        }

    def __repr__(self):
        return f'<User {self.name}>'

    def __str__(self):
        return self.name


# ========================================
# Post Model
# ========================================

class Post(db.Model):
    """文章模型：標題、選填的描述與依序排列的圖片"""
    __tablename__ = 'posts'

    id = db.Column(db.Integer, primary_key=True)
    post_date = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    # 自由文字，不是使用者外鍵
    author = db.Column(db.String(64), nullable=True)
    slug = db.Column(db.String(220), nullable=False, index=True)

    images = db.relationship('PostImage', back_populates='post', order_by='PostImage.position',
                             cascade='all, delete-orphan', lazy='selectin')

    @validates('title')
    def _apply_title(self, key, value):
        """去除標題空白，只有在標題改變時才重新計算 slug"""
        title = (value or '').strip()
        if title != self.title or self.slug is None:
            self.slug = slugify(title)
        return title

    @validates('description')
    def _trim_description(self, key, value):
        return value.strip() if value else value

    def __repr__(self):
        return f'<Post {self.title}>'

    def __str__(self):
        return self.title

    def local_post_date(self, app: 'Flask' = None):
        """轉換 post_date 為配置時區"""
        if not self.post_date:
            return None

        try:
            # SQLite 回傳 naive datetime，儲存時即為 UTC
            if self.post_date.tzinfo is None:
                aware_dt = pytz.UTC.localize(self.post_date)
            else:
                aware_dt = self.post_date

            tz_name = app.config.get('TIMEZONE', 'UTC') if app else current_app.config.get('TIMEZONE', 'UTC')
            return aware_dt.astimezone(pytz.timezone(tz_name))
        except Exception as e:
            current_app.logger.warning(f"Time zone conversion failed (post_date): {e}")
            return self.post_date

    @property
    def cover_image(self) -> Optional['PostImage']:
        return self.images[0] if self.images else None

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'title': self.title,
            'slug': self.slug,
            'description': self.description,
            'author': self.author,
            'post_date': self.post_date.isoformat() if self.post_date else None,
            'images': [image.to_dict() for image in self.images]
        }

    @classmethod
    def newest_first(cls):
        return cls.query.order_by(cls.post_date.desc(), cls.id.desc())


# ========================================
# Post Image Model
# ========================================

class PostImage(db.Model):
    """
    One uploaded image of a post

    The small/medium/large path columns are set only for copies that were
    actually written, so a present path always points at an existing file.
    """
    __tablename__ = 'post_images'
    __table_args__ = (
        db.Index('idx_post_position', 'post_id', 'position'),
    )

    VARIANT_SIZES = ('small', 'medium', 'large')

    id = db.Column(db.Integer, primary_key=True)
    post_id = db.Column(db.Integer, db.ForeignKey('posts.id'), nullable=False)
    position = db.Column(db.Integer, nullable=False, default=0)
    path = db.Column(db.String(500), nullable=False)
    filename = db.Column(db.String(64), unique=True, nullable=False)
    original_name = db.Column(db.String(255), nullable=True)
    content_type = db.Column(db.String(100), nullable=True)
    size = db.Column(db.Integer, nullable=True)
    width = db.Column(db.Integer, nullable=True)
    height = db.Column(db.Integer, nullable=True)
    small_path = db.Column(db.String(200), nullable=True)
    medium_path = db.Column(db.String(200), nullable=True)
    large_path = db.Column(db.String(200), nullable=True)

    post = db.relationship('Post', back_populates='images')

    def __repr__(self):
        return f'<PostImage {self.filename}>'

    @classmethod
    def from_descriptor(cls, descriptor, position: int) -> 'PostImage':
        return cls(
            position=position,
            path=descriptor.path,
            filename=descriptor.filename,
            original_name=descriptor.original_name,
            content_type=descriptor.content_type,
            size=descriptor.size,
        )

    def record_variants(self, result) -> None:
        """記錄圖片尺寸與實際產生的縮圖路徑"""
        self.width = result.width
        self.height = result.height
        for size_name, relpath in result.variants.items():
            if size_name in self.VARIANT_SIZES:
                setattr(self, f'{size_name}_path', relpath)

    @property
    def original_relpath(self) -> str:
        return f'original/{self.filename}'

    @property
    def variants(self) -> Dict[str, str]:
        """已產生的縮圖，由小到大"""
        return {
            size_name: getattr(self, f'{size_name}_path')
            for size_name in self.VARIANT_SIZES
            if getattr(self, f'{size_name}_path')
        }

    def has_variant(self, size_name: str) -> bool:
        return size_name in self.variants

    def best_variant(self) -> str:
        """最大的縮圖；沒有任何縮圖時回傳原圖"""
        variants = self.variants
        if variants:
            return list(variants.values())[-1]
        return self.original_relpath

    def to_dict(self) -> dict:
        return {
            'filename': self.filename,
            'original_name': self.original_name,
            'size': self.size,
            'width': self.width,
            'height': self.height,
            'variants': self.variants
        }
