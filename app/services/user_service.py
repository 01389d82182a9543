# -*- coding: utf-8 -*-
"""
使用者服務

處理註冊與帳號密碼驗證
"""
from typing import Dict, Any, Optional
from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from app import db
from app.models import User
from app.services.statistics_service import StatisticsService


class UserService:
    """處理使用者帳號的服務類別"""

    @staticmethod
    def register(name: str, email: str, password: str) -> Dict[str, Any]:
        """建立使用者帳號

        回傳:
            包含成功狀態與訊息的字典；失敗時另含 'error_type'，
            已知時並包含衝突的欄位 'field'
        """
        user = User(name=name, email=email)
        user.set_password(password)
        db.session.add(user)

        try:
            db.session.commit()
            StatisticsService.clear_stats_cache()
            current_app.logger.info(f"Registered user {user.name}")

            return {
                'success': True,
                'message': 'Registration complete. Please log in.',
                'user_id': user.id
            }

        except IntegrityError as e:
            db.session.rollback()
            field = 'email' if 'email' in str(e.orig).lower() else 'name'
            current_app.logger.warning(f"Registration conflict on {field}: {e.orig}")

            return {
                'success': False,
                'message': f'That {field} is already registered.',
                'error_type': 'integrity',
                'field': field
            }

        except SQLAlchemyError as e:
            db.session.rollback()
            current_app.logger.error(f"Database error during registration: {e}")

            return {
                'success': False,
                'message': 'A database error occurred. Please try again later.',
                'error_type': 'database'
            }

    @staticmethod
    def authenticate(name: str, password: str) -> Optional[User]:
        """帳號密碼正確時回傳使用者，否則回傳 None

        名稱不存在與密碼錯誤的結果相同。
        """
        user = User.find_by_name(name)
        if user is None or not user.check_password(password):
            return None
        return user
