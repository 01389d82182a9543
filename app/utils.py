import html
import logging
import re
import unicodedata

import bleach

_SLUG_STRIP = re.compile(r'[^\w\s-]')
_SLUG_HYPHENATE = re.compile(r'[-\s_]+')


def clean_text(value: str, context: str = None) -> str:
    """
    清理純文字表單值：去除前後空白並跳脫其中的標記。

    不允許任何標籤；標籤會被移除，其餘特殊字元以 HTML 跳脫後回傳，
    結果可直接渲染。
    """
    if value is None:
        return ''
    try:
        # 移除標籤而不是轉義
        return bleach.clean(value, tags=set(), attributes={}, strip=True).strip()
    except Exception as e:
        context_str = f" Context: {context}" if context else ""
        logging.error(f"Error cleaning text: {e}. Input snippet: {value[:100]}...{context_str}")
        return ''


def slugify(value: str) -> str:
    """
    將標題轉為網址安全、小寫、以連字號分隔的 slug。

    "Hello World!" -> "hello-world"
    """
    if not value:
        return ''
    value = html.unescape(value)
    value = unicodedata.normalize('NFKD', value).encode('ascii', 'ignore').decode('ascii')
    value = _SLUG_STRIP.sub('', value.lower())
    return _SLUG_HYPHENATE.sub('-', value).strip('-')
