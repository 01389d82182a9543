# -*- coding: utf-8 -*-
"""
統計服務

處理後台統計資料與計數
"""
from app.models import Post, PostImage, User
from app import cache


class StatisticsService:
    """處理後台統計資料的服務類別"""

    @staticmethod
    @cache.memoize(make_name=lambda fname: f'cms_stats_{fname}')  # 快取時間為 CACHE_DEFAULT_TIMEOUT
    def get_dashboard_stats():
        """取得後台統計資料

        回傳:
            dict: 包含 posts_count、images_count、users_count 的字典
        """
        return {
            'posts_count': Post.query.count(),
            'images_count': PostImage.query.count(),
            'users_count': User.query.count()
        }

    @staticmethod
    def clear_stats_cache():
        """清除統計資料快取"""
        cache.delete_memoized(StatisticsService.get_dashboard_stats)
