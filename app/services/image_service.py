# -*- coding: utf-8 -*-
"""
縮圖服務

為上傳的原圖產生縮小的 WebP 縮圖。原圖寬度嚴格大於某尺寸的門檻時，
才會寫入該尺寸的縮圖；較窄的原圖不會產生該尺寸。
"""
import logging
import os
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from flask import current_app
from PIL import Image

from app.services.storage_service import (
    ImageDescriptor, PipelineSettings, SizeClass, StorageLayout, UploadReceiver
)

# WebP 編碼器可直接儲存的色彩模式
WEBP_MODES = {'RGB', 'RGBA'}


@dataclass
class DerivationResult:
    """單張原圖的縮圖處理結果"""
    filename: str
    width: Optional[int] = None
    height: Optional[int] = None
    variants: Dict[str, str] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


@dataclass
class BatchResult:
    """一個請求中所有圖片的處理結果，依上傳順序"""
    results: List[DerivationResult] = field(default_factory=list)

    @property
    def failed(self) -> List[DerivationResult]:
        return [result for result in self.results if not result.ok]

    @property
    def produced_count(self) -> int:
        return sum(len(result.variants) for result in self.results)

    def for_filename(self, filename: str) -> Optional[DerivationResult]:
        for result in self.results:
            if result.filename == filename:
                return result
        return None


class ImageDeriver:
    """縮放原圖並重新編碼到各尺寸目錄"""

    def __init__(self, settings: PipelineSettings, layout: StorageLayout, logger: logging.Logger = None):
        self.settings = settings
        self.layout = layout
        self.logger = logger or logging.getLogger(__name__)

    def derive(self, descriptor: ImageDescriptor) -> DerivationResult:
        """為單張原圖產生所有適用尺寸的縮圖"""
        result = DerivationResult(filename=descriptor.filename)

        try:
            # Image.open 只讀取檔頭，這裡不會解碼像素
            with Image.open(descriptor.path) as image:
                result.width, result.height = image.size
        except Exception as e:
            self.logger.error(f"Cannot read image {descriptor.filename}: {e}")
            result.errors.append(f'unreadable image: {e}')
            return result

        for size_class in self.settings.size_classes:
            if result.width <= size_class.width:
                continue
            target = self.layout.variant_path(size_class.name, descriptor.filename)
            try:
                self._write_variant(descriptor.path, size_class, target)
            except Exception as e:
                self.logger.error(f"Failed to derive {size_class.name} copy of {descriptor.filename}: {e}")
                result.errors.append(f'{size_class.name}: {e}')
                continue
            result.variants[size_class.name] = self.layout.variant_relpath(size_class.name, descriptor.filename)

        self.logger.debug(
            f"Derived {sorted(result.variants)} for {descriptor.filename} ({result.width}x{result.height})"
        )
        return result

    def _write_variant(self, source: str, size_class: SizeClass, target: str) -> None:
        with Image.open(source) as image:
            height = max(1, round(image.height * size_class.width / image.width))
            if image.mode not in WEBP_MODES:
                has_alpha = 'A' in image.getbands() or 'transparency' in image.info
                image = image.convert('RGBA' if has_alpha else 'RGB')
            resized = image.resize((size_class.width, height), Image.Resampling.LANCZOS)
            resized.save(target, format=self.settings.image_format.upper(), quality=self.settings.quality)

    def derive_all(self, descriptors: Iterable[ImageDescriptor]) -> BatchResult:
        """
        為一個請求的所有圖片產生縮圖

        所有圖片並行處理，全部完成或失敗後才回傳。失敗記錄在回傳的
        BatchResult 中，不會拋出例外。
        """
        descriptors = list(descriptors)
        if not descriptors:
            return BatchResult()

        workers = min(self.settings.workers, len(descriptors))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix='derive') as executor:
            futures = [executor.submit(self.derive, descriptor) for descriptor in descriptors]
            wait(futures)

        results = []
        for descriptor, future in zip(descriptors, futures):
            error = future.exception()
            if error is not None:
                self.logger.error(f"Derivation crashed for {descriptor.filename}: {error}")
                results.append(DerivationResult(filename=descriptor.filename, errors=[str(error)]))
            else:
                results.append(future.result())

        batch = BatchResult(results)
        self.logger.info(
            f"Derived {batch.produced_count} image copies for {len(descriptors)} upload(s), "
            f"{len(batch.failed)} with errors"
        )
        return batch


class ImagePipelineState:
    """每個應用程式的圖片處理元件"""

    def __init__(self, settings: PipelineSettings, logger: logging.Logger):
        self.settings = settings
        self.layout = StorageLayout(settings.root, settings.size_classes, settings.image_format)
        self.receiver = UploadReceiver(self.layout, settings.max_files, logger)
        self.deriver = ImageDeriver(settings, self.layout, logger)


class ImagePipeline:
    """
    串接圖片儲存與縮圖元件的 Flask 擴充套件

    擴充套件初始化時即建立儲存目錄，圖片根目錄無法使用時應用程式在啟動時就會失敗。
    """

    def __init__(self, app=None):
        if app is not None:
            self.init_app(app)

    def init_app(self, app) -> None:
        settings = PipelineSettings.from_config(app.config, os.path.join(app.static_folder, 'images'))
        state = ImagePipelineState(settings, app.logger)
        state.layout.ensure(app.logger)
        app.extensions['images'] = state

    @property
    def state(self) -> ImagePipelineState:
        return current_app.extensions['images']

    @property
    def settings(self) -> PipelineSettings:
        return self.state.settings

    @property
    def layout(self) -> StorageLayout:
        return self.state.layout

    def receive(self, files) -> List[ImageDescriptor]:
        return self.state.receiver.receive(files)

    def discard(self, descriptors) -> None:
        self.state.receiver.discard(descriptors)

    def derive_all(self, descriptors) -> BatchResult:
        return self.state.deriver.derive_all(descriptors)
