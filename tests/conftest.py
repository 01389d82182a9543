"""
Shared Test Fixtures for Nightlight CMS

Fixtures build the application through the real factory with an in-memory
database, CSRF disabled and an image root inside pytest's tmp_path.
Image fixtures generate real PNG data with Pillow.
"""
import io
import os
import sys
from urllib.parse import urlparse

import pytest
from PIL import Image

# Add project root to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app import create_app, db
from app.models import User
from config import DevelopmentConfig


class TestingConfig(DevelopmentConfig):
    TESTING = True
    DEBUG = False
    SECRET_KEY = 'test-secret-key'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    WTF_CSRF_ENABLED = False
    FORCE_HTTPS = False
    CACHE_TYPE = 'NullCache'
    IMAGE_WORKERS = 2


# =============================================================================
# Application Fixtures
# =============================================================================

@pytest.fixture
def image_root(tmp_path):
    return str(tmp_path / 'images')


def build_app(image_root, **overrides):
    """Build an application on TestingConfig with its own image root and overrides."""
    settings = dict(overrides, IMAGE_ROOT=image_root)
    return create_app(config_class=type('PerTestConfig', (TestingConfig,), settings))


@pytest.fixture
def app(image_root):
    """Application with a fresh schema and its own image root."""
    app = build_app(image_root)

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def create_user(name='alice', email='alice@example.com', password='longenough1'):
    """Add a user to the database of the current application context."""
    user = User(name=name, email=email)
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def user(app):
    """A registered user: alice / longenough1."""
    return create_user()


@pytest.fixture
def auth_client(client, user):
    """Test client holding a logged-in session for alice."""
    response = client.post('/login', data={'name': 'alice', 'password': 'longenough1'})
    assert response.status_code == 302
    return client


# =============================================================================
# Image Helpers
# =============================================================================

def png_bytes(width, height=None, mode='RGB'):
    """Encode a solid-colour PNG of the given size."""
    height = height or max(1, width // 2)
    color = (10, 120, 200, 255)[:len(mode)] if mode in ('RGB', 'RGBA') else 1
    buffer = io.BytesIO()
    Image.new(mode, (width, height), color).save(buffer, format='PNG')
    return buffer.getvalue()


@pytest.fixture
def make_png():
    return png_bytes


def list_dir(root, name):
    path = os.path.join(root, name)
    return sorted(os.listdir(path)) if os.path.isdir(path) else []


def location_path(response):
    return urlparse(response.headers['Location']).path
