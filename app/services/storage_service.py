# -*- coding: utf-8 -*-
"""
圖片儲存服務

負責圖片在磁碟上的目錄配置，以及將上傳檔案寫入其中的接收器。

設定的圖片根目錄下的配置:
    original/<id>          上傳的原圖，以產生的名稱儲存
    small/<id>.webp        縮圖，每個尺寸一個目錄
    medium/<id>.webp
    large/<id>.webp
"""
import logging
import os
import uuid
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

ORIGINAL_DIR = 'original'


class UploadError(Exception):
    """上傳批次無法儲存時拋出"""
    status_code = 500

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class TooManyFilesError(UploadError):
    """請求中的檔案數量超過上限時拋出"""

    def __init__(self, max_files: int):
        super().__init__(f'You can upload at most {max_files} images per post.', status_code=400)
        self.max_files = max_files


@dataclass(frozen=True)
class SizeClass:
    """縮圖尺寸：目錄名稱與像素寬度門檻"""
    name: str
    width: int


DEFAULT_SIZE_CLASSES = (
    SizeClass('small', 450),
    SizeClass('medium', 800),
    SizeClass('large', 1400),
)


@dataclass(frozen=True)
class PipelineSettings:
    """圖片處理設定，於啟動時從 Flask 設定讀取一次"""
    root: str
    size_classes: Tuple[SizeClass, ...] = DEFAULT_SIZE_CLASSES
    image_format: str = 'webp'
    quality: int = 80
    workers: int = 4
    max_files: int = 5
    field_name: str = 'images'

    @classmethod
    def from_config(cls, config, default_root: str) -> 'PipelineSettings':
        """從 Flask 設定建立設定物件"""
        size_classes = (
            SizeClass('small', int(config.get('SMALL_IMAGE_WIDTH', 450))),
            SizeClass('medium', int(config.get('MEDIUM_IMAGE_WIDTH', 800))),
            SizeClass('large', int(config.get('LARGE_IMAGE_WIDTH', 1400))),
        )
        return cls(
            root=os.path.abspath(config.get('IMAGE_ROOT') or default_root),
            size_classes=tuple(sorted(size_classes, key=lambda s: s.width)),
            image_format=config.get('IMAGE_FORMAT', 'webp').lower(),
            quality=int(config.get('IMAGE_QUALITY', 80)),
            workers=max(1, int(config.get('IMAGE_WORKERS', 4))),
            max_files=int(config.get('MAX_UPLOAD_FILES', 5)),
            field_name=config.get('UPLOAD_FIELD', 'images'),
        )


@dataclass
class ImageDescriptor:
    """
    一個已儲存的上傳檔案

    `targets` 將每個尺寸對應到縮圖寫入的（相對、絕對）路徑。目標只是位置，
    檔案是否存在由縮圖處理決定。
    """
    path: str
    filename: str
    size: int
    original_name: str = ''
    content_type: Optional[str] = None
    targets: Dict[str, Tuple[str, str]] = field(default_factory=dict)

    def target_relpath(self, size_name: str) -> str:
        return self.targets[size_name][0]

    def target_path(self, size_name: str) -> str:
        return self.targets[size_name][1]


class StorageLayout:
    """原圖與縮圖的目錄配置"""

    def __init__(self, root: str, size_classes=DEFAULT_SIZE_CLASSES, extension: str = 'webp'):
        self.root = os.path.abspath(root)
        self.size_classes = tuple(size_classes)
        self.extension = extension

    @property
    def directory_names(self) -> List[str]:
        return [ORIGINAL_DIR] + [size_class.name for size_class in self.size_classes]

    @property
    def directories(self) -> List[str]:
        return [os.path.join(self.root, name) for name in self.directory_names]

    def ensure(self, logger: logging.Logger = None) -> None:
        """
        建立所有缺少的圖片目錄

        可重複呼叫，既有目錄與其中的檔案不會被更動。無法建立的目錄會直接拋出例外。
        """
        logger = logger or logging.getLogger(__name__)
        for directory in self.directories:
            try:
                os.makedirs(directory, exist_ok=True)
            except OSError as e:
                logger.error(f"Cannot create image directory {directory}: {e}")
                raise
        logger.info(f"Image storage ready at {self.root}")

    def original_path(self, filename: str) -> str:
        return os.path.join(self.root, ORIGINAL_DIR, filename)

    def variant_relpath(self, size_name: str, filename: str) -> str:
        return f'{size_name}/{filename}.{self.extension}'

    def variant_path(self, size_name: str, filename: str) -> str:
        return os.path.join(self.root, size_name, f'{filename}.{self.extension}')

    def variant_targets(self, filename: str) -> Dict[str, Tuple[str, str]]:
        return {
            size_class.name: (
                self.variant_relpath(size_class.name, filename),
                self.variant_path(size_class.name, filename),
            )
            for size_class in self.size_classes
        }

    def resolve(self, directory: str, filename: str) -> Optional[str]:
        """回傳已儲存檔案的絕對路徑；不在目錄配置內時回傳 None"""
        if directory not in self.directory_names or not filename:
            return None
        base = os.path.realpath(os.path.join(self.root, directory))
        candidate = os.path.realpath(os.path.join(base, filename))
        if os.path.dirname(candidate) != base or not os.path.isfile(candidate):
            return None
        return candidate


class UploadReceiver:
    """
    將一個請求的檔案寫入原圖目錄

    批次為全有或全無：任一檔案無法寫入時，該批次已儲存的檔案會被移除，
    並拋出 UploadError。
    """

    def __init__(self, layout: StorageLayout, max_files: int = 5, logger: logging.Logger = None):
        self.layout = layout
        self.max_files = max_files
        self.logger = logger or logging.getLogger(__name__)

    @staticmethod
    def accepted(files: Iterable) -> List:
        """略過空的檔案欄位（瀏覽器會送出檔名為空的項目）"""
        return [upload for upload in files or [] if upload and upload.filename]

    def receive(self, files: Iterable) -> List[ImageDescriptor]:
        uploads = self.accepted(files)
        if len(uploads) > self.max_files:
            raise TooManyFilesError(self.max_files)

        descriptors = []
        for upload in uploads:
            try:
                descriptors.append(self._store(upload))
            except OSError as e:
                self.logger.error(f"Failed to store upload {upload.filename!r}: {e}")
                self.discard(descriptors)
                raise UploadError(f'Could not store image "{upload.filename}". Please try again.') from e

        self.logger.info(f"Stored {len(descriptors)} uploaded image(s)")
        return descriptors

    def _store(self, upload) -> ImageDescriptor:
        filename = uuid.uuid4().hex
        path = self.layout.original_path(filename)
        try:
            upload.save(path)
        except OSError:
            if os.path.exists(path):
                os.remove(path)
            raise

        return ImageDescriptor(
            path=path,
            filename=filename,
            size=os.path.getsize(path),
            original_name=upload.filename,
            content_type=upload.mimetype,
            targets=self.layout.variant_targets(filename),
        )

    def discard(self, descriptors: Iterable[ImageDescriptor]) -> None:
        """移除批次中已儲存的原圖及由其產生的縮圖"""
        for descriptor in descriptors:
            paths = [descriptor.path] + [target[1] for target in descriptor.targets.values()]
            for path in paths:
                try:
                    if os.path.exists(path):
                        os.remove(path)
                except OSError as e:
                    self.logger.warning(f"Could not remove {path}: {e}")
