"""
Tests for the image storage layout and the upload receiver.
"""
import io
import os

import pytest
from werkzeug.datastructures import FileStorage

from app.services.storage_service import (
    PipelineSettings, SizeClass, StorageLayout, TooManyFilesError, UploadError, UploadReceiver
)
from conftest import list_dir, png_bytes


def upload(data=b'image-bytes', filename='photo.png', content_type='image/png'):
    return FileStorage(stream=io.BytesIO(data), filename=filename, content_type=content_type)


class BrokenUpload:
    """Upload whose save always fails, like a full disk."""
    filename = 'broken.png'
    mimetype = 'image/png'

    def save(self, dst):
        raise OSError('No space left on device')


@pytest.fixture
def layout(tmp_path):
    layout = StorageLayout(str(tmp_path / 'images'))
    layout.ensure()
    return layout


# =============================================================================
# StorageLayout
# =============================================================================

class TestStorageLayout:

    def test_ensure_creates_all_directories(self, tmp_path):
        root = tmp_path / 'deep' / 'images'
        StorageLayout(str(root)).ensure()

        assert sorted(os.listdir(root)) == ['large', 'medium', 'original', 'small']

    def test_ensure_is_idempotent_and_keeps_files(self, layout):
        existing = os.path.join(layout.root, 'small', 'keep.webp')
        with open(existing, 'wb') as fh:
            fh.write(b'keep me')

        layout.ensure()
        layout.ensure()

        with open(existing, 'rb') as fh:
            assert fh.read() == b'keep me'
        assert list_dir(layout.root, 'small') == ['keep.webp']

    def test_ensure_fails_when_root_is_a_file(self, tmp_path):
        blocker = tmp_path / 'images'
        blocker.write_text('not a directory')

        with pytest.raises(OSError):
            StorageLayout(str(blocker)).ensure()

    def test_variant_paths_follow_size_and_extension(self, layout):
        assert layout.variant_relpath('small', 'abc') == 'small/abc.webp'
        assert layout.variant_path('large', 'abc') == os.path.join(layout.root, 'large', 'abc.webp')
        assert layout.original_path('abc') == os.path.join(layout.root, 'original', 'abc')

    def test_variant_targets_cover_every_size_class(self, layout):
        targets = layout.variant_targets('abc')

        assert set(targets) == {'small', 'medium', 'large'}
        assert targets['medium'] == ('medium/abc.webp', os.path.join(layout.root, 'medium', 'abc.webp'))

    def test_resolve_only_returns_files_inside_layout(self, layout):
        stored = layout.original_path('abc')
        with open(stored, 'wb') as fh:
            fh.write(b'x')

        assert layout.resolve('original', 'abc') == os.path.realpath(stored)
        assert layout.resolve('original', 'missing') is None
        assert layout.resolve('thumbs', 'abc') is None
        secret = os.path.join(os.path.dirname(layout.root), 'secret.txt')
        with open(secret, 'w') as fh:
            fh.write('outside')
        assert layout.resolve('original', '../../secret.txt') is None
        assert layout.resolve('small', '../../etc/passwd') is None


class TestPipelineSettings:

    def test_from_config_reads_thresholds_in_ascending_order(self, tmp_path):
        config = {
            'IMAGE_ROOT': str(tmp_path),
            'SMALL_IMAGE_WIDTH': 450,
            'MEDIUM_IMAGE_WIDTH': 800,
            'LARGE_IMAGE_WIDTH': 1400,
            'MAX_UPLOAD_FILES': 5,
        }

        settings = PipelineSettings.from_config(config, default_root='/unused')

        assert settings.root == str(tmp_path)
        assert settings.size_classes == (
            SizeClass('small', 450), SizeClass('medium', 800), SizeClass('large', 1400)
        )
        assert settings.max_files == 5

    def test_from_config_falls_back_to_default_root(self, tmp_path):
        settings = PipelineSettings.from_config({}, default_root=str(tmp_path / 'static' / 'images'))

        assert settings.root == str(tmp_path / 'static' / 'images')


# =============================================================================
# UploadReceiver
# =============================================================================

class TestUploadReceiver:

    def test_stores_files_under_generated_names_in_order(self, layout):
        receiver = UploadReceiver(layout, max_files=5)

        descriptors = receiver.receive([
            upload(b'first', 'a.png'),
            upload(b'second-file', '../../etc/b.png'),
        ])

        assert [d.original_name for d in descriptors] == ['a.png', '../../etc/b.png']
        assert [d.size for d in descriptors] == [5, 11]
        for descriptor in descriptors:
            assert len(descriptor.filename) == 32
            assert descriptor.path == layout.original_path(descriptor.filename)
            assert os.path.isfile(descriptor.path)
            assert descriptor.target_relpath('small') == f'small/{descriptor.filename}.webp'
        assert sorted(list_dir(layout.root, 'original')) == sorted(d.filename for d in descriptors)

    def test_generated_names_are_unique(self, layout):
        receiver = UploadReceiver(layout)

        descriptors = receiver.receive([upload(), upload(), upload()])

        assert len({d.filename for d in descriptors}) == 3

    def test_ignores_empty_file_inputs(self, layout):
        receiver = UploadReceiver(layout)

        descriptors = receiver.receive([upload(b'', filename=''), upload()])

        assert len(descriptors) == 1

    def test_no_files_yields_empty_batch(self, layout):
        assert UploadReceiver(layout).receive([]) == []
        assert UploadReceiver(layout).receive(None) == []

    def test_rejects_more_files_than_allowed(self, layout):
        receiver = UploadReceiver(layout, max_files=5)

        with pytest.raises(TooManyFilesError) as exc_info:
            receiver.receive([upload() for _ in range(6)])

        assert exc_info.value.status_code == 400
        assert list_dir(layout.root, 'original') == []

    def test_failed_write_removes_the_whole_batch(self, layout):
        receiver = UploadReceiver(layout)

        with pytest.raises(UploadError) as exc_info:
            receiver.receive([upload(b'ok-1'), upload(b'ok-2'), BrokenUpload()])

        assert 'broken.png' in exc_info.value.message
        assert list_dir(layout.root, 'original') == []

    def test_discard_removes_originals_and_copies(self, layout):
        receiver = UploadReceiver(layout)
        descriptor = receiver.receive([upload(png_bytes(100))])[0]
        with open(descriptor.target_path('small'), 'wb') as fh:
            fh.write(b'derived')

        receiver.discard([descriptor])

        assert list_dir(layout.root, 'original') == []
        assert list_dir(layout.root, 'small') == []
