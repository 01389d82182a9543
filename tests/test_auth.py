"""
Tests for registration, login/logout and the routes gated behind a session.
"""
import io

import pytest

from app import db
from app.models import Post, User
from app.services.user_service import UserService
from conftest import build_app, create_user, list_dir, location_path, png_bytes


VALID_REGISTRATION = {
    'name': 'alice',
    'email': 'alice@example.com',
    'password': 'longenough1',
    'passwordconfirm': 'longenough1',
}


def registration(**overrides):
    data = dict(VALID_REGISTRATION)
    data.update(overrides)
    return data


# =============================================================================
# Registration
# =============================================================================

class TestRegister:

    def test_form_renders(self, client):
        response = client.get('/register')

        assert response.status_code == 200
        assert b'name="passwordconfirm"' in response.data

    def test_register_then_login(self, client):
        response = client.post('/register', data=registration())

        assert response.status_code == 302
        assert location_path(response) == '/login'
        user = User.find_by_name('alice')
        assert user.email == 'alice@example.com'
        assert user.check_password('longenough1')

        response = client.post('/login', data={'name': 'alice', 'password': 'longenough1'})

        assert response.status_code == 302
        assert location_path(response) == '/dash'

    def test_stores_normalized_identity(self, client):
        client.post('/register', data=registration(name='  Alice ', email='Alice@Example.com'))

        user = User.query.one()
        assert (user.name, user.email) == ('alice', 'alice@example.com')

    @pytest.mark.parametrize('overrides, message', [
        ({'name': ''}, b'Please enter your name.'),
        ({'name': '   '}, b'Please enter your name.'),
        ({'email': 'not-an-email'}, b'Please enter a valid email address.'),
        ({'password': 'short12', 'passwordconfirm': 'short12'},
         b'Password must be between 8 and 100 characters long.'),
        ({'password': 'x' * 101, 'passwordconfirm': 'x' * 101},
         b'Password must be between 8 and 100 characters long.'),
        ({'passwordconfirm': 'different1'}, b'Oops! Your passwords do not match.'),
        ({'password': '', 'passwordconfirm': ''}, b'Password cannot be blank!'),
    ])
    def test_rejects_invalid_input(self, client, overrides, message):
        data = registration(**overrides)

        response = client.post('/register', data=data)

        assert response.status_code == 200
        assert message in response.data
        assert User.query.count() == 0
        # Non-sensitive values are echoed back, passwords never are
        if data['name'].strip():
            assert f'value="{data["name"]}"'.encode() in response.data
        if data['email'] == 'not-an-email':
            assert b'value="not-an-email"' in response.data
        assert b'longenough1' not in response.data

    @pytest.mark.parametrize('length', [8, 100])
    def test_password_length_bounds_are_inclusive(self, client, length):
        password = 'p' * length

        response = client.post('/register', data=registration(password=password, passwordconfirm=password))

        assert response.status_code == 302
        assert User.query.count() == 1

    @pytest.mark.parametrize('overrides, message', [
        ({'name': 'ALICE', 'email': 'new@example.com'}, b'That name is already taken.'),
        ({'name': 'someone', 'email': 'alice@example.com'}, b'That email address is already registered.'),
    ])
    def test_rejects_duplicates(self, client, user, overrides, message):
        response = client.post('/register', data=registration(**overrides))

        assert response.status_code == 200
        assert message in response.data
        assert User.query.count() == 1


class TestUserService:

    def test_register_reports_duplicate_field(self, app, user):
        result = UserService.register('bob', 'alice@example.com', 'longenough1')

        assert result['success'] is False
        assert result['error_type'] == 'integrity'
        assert result['field'] == 'email'

    def test_authenticate_hides_which_part_was_wrong(self, app, user):
        assert UserService.authenticate('alice', 'longenough1') == user
        assert UserService.authenticate('ALICE ', 'longenough1') == user
        assert UserService.authenticate('alice', 'wrong-password') is None
        assert UserService.authenticate('nobody', 'longenough1') is None


# =============================================================================
# Login / logout
# =============================================================================

class TestLogin:

    def test_form_renders(self, client):
        assert client.get('/login').status_code == 200

    @pytest.mark.parametrize('name, password', [
        ('alice', 'wrong-password'),
        ('nobody', 'longenough1'),
        ('', ''),
    ])
    def test_failed_login_redirects_back_with_generic_message(self, client, user, name, password):
        response = client.post('/login', data={'name': name, 'password': password})

        assert response.status_code == 302
        assert location_path(response) == '/login'

        page = client.get('/login')
        assert b'Invalid name or password.' in page.data

    def test_login_records_last_login(self, client, user):
        client.post('/login', data={'name': 'alice', 'password': 'longenough1'})

        assert User.find_by_name('alice').last_login is not None

    def test_login_page_redirects_when_already_logged_in(self, auth_client):
        response = auth_client.get('/login')

        assert location_path(response) == '/dash'

    def test_login_honours_safe_next(self, client, user):
        response = client.post('/login?next=/newpost', data={'name': 'alice', 'password': 'longenough1'})

        assert location_path(response) == '/newpost'

    def test_login_ignores_external_next(self, client, user):
        response = client.post('/login?next=https://evil.example/', data={'name': 'alice', 'password': 'longenough1'})

        assert response.headers['Location'].endswith('/dash')

    def test_logout_ends_session(self, auth_client):
        response = auth_client.get('/logout')

        assert response.status_code == 302
        assert location_path(response) == '/'
        assert location_path(auth_client.get('/dash')) == '/login'


# =============================================================================
# Auth gate
# =============================================================================

class TestAuthGate:

    @pytest.mark.parametrize('method, path', [
        ('get', '/dash'),
        ('get', '/newpost'),
        ('post', '/postsubmit'),
        ('get', '/logout'),
    ])
    def test_anonymous_requests_redirect_to_login(self, client, method, path):
        response = getattr(client, method)(path)

        assert response.status_code == 302
        assert location_path(response) == '/login'

    def test_anonymous_submission_writes_nothing(self, client, image_root):
        response = client.post('/postsubmit', data={
            'title': 'Hello',
            'images': [(io.BytesIO(png_bytes(2000)), 'big.png')],
        }, content_type='multipart/form-data')

        assert location_path(response) == '/login'
        assert Post.query.count() == 0
        for name in ('original', 'small', 'medium', 'large'):
            assert list_dir(image_root, name) == []

    def test_authenticated_pages_render(self, auth_client):
        dash = auth_client.get('/dash')
        new_post = auth_client.get('/newpost')

        assert dash.status_code == 200
        assert b'Signed in as alice' in dash.data
        assert new_post.status_code == 200
        assert b'enctype="multipart/form-data"' in new_post.data


class TestAuthGateWithCsrf:
    """Requests here run without a pushed app context, like a real server."""

    @pytest.fixture
    def csrf_app(self, image_root):
        app = build_app(image_root, WTF_CSRF_ENABLED=True)
        with app.app_context():
            db.create_all()
            create_user()
        yield app
        with app.app_context():
            db.drop_all()

    def test_expired_session_submission_redirects_to_login(self, csrf_app, image_root):
        client = csrf_app.test_client()

        response = client.post('/postsubmit', data={
            'title': 'Hello',
            'images': [(io.BytesIO(png_bytes(2000)), 'big.png')],
        }, content_type='multipart/form-data')

        assert response.status_code == 302
        assert location_path(response) == '/login'
        assert 'next=' in response.headers['Location']
        for name in ('original', 'small', 'medium', 'large'):
            assert list_dir(image_root, name) == []
        with csrf_app.app_context():
            assert Post.query.count() == 0

    def test_logged_in_submission_without_token_is_rejected(self, csrf_app):
        client = csrf_app.test_client()
        with csrf_app.app_context():
            user_id = User.find_by_name('alice').id
        with client.session_transaction() as session:
            session['_user_id'] = str(user_id)
            session['_fresh'] = True

        response = client.post('/postsubmit', data={'title': 'Hello'})

        assert response.status_code == 400
        assert b'Bad request' in response.data
        with csrf_app.app_context():
            assert Post.query.count() == 0

    def test_login_form_carries_a_token(self, csrf_app):
        response = csrf_app.test_client().get('/login')

        assert b'name="csrf_token"' in response.data
