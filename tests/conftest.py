import pytest
from flask_jwt_extended import create_access_token

from app import create_app
from config import TestingConfig
from extensions import bcrypt
from models import db, User


@pytest.fixture
def app():
    app = create_app(TestingConfig)
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    """直接寫入資料庫建立使用者"""
    def _make_user(name, email=None, password='password123'):
        user = User(
            name=name,
            email=email or f'{name.lower()}@example.com',
            password_hash=bcrypt.generate_password_hash(password).decode('utf-8')
        )
        db.session.add(user)
        db.session.commit()
        return user
    return _make_user


@pytest.fixture
def auth_headers(app):
    def _auth_headers(user):
        token = create_access_token(identity=str(user.id))
        return {'Authorization': f'Bearer {token}'}
    return _auth_headers


@pytest.fixture
def create_project(client, auth_headers):
    def _create_project(user, title='Website Redesign', description=None):
        response = client.post(
            '/projects',
            json={'title': title, 'description': description},
            headers=auth_headers(user)
        )
        assert response.status_code == 201
        return response.get_json()['project']['id']
    return _create_project


@pytest.fixture
def add_member(client, auth_headers):
    def _add_member(creator, project_id, user, role='member'):
        response = client.post(
            f'/projects/{project_id}/members',
            json={'email': user.email, 'role': role},
            headers=auth_headers(creator)
        )
        assert response.status_code == 201
        return response.get_json()['member']
    return _add_member


@pytest.fixture
def team(make_user, create_project, add_member):
    """
    建立者 alice, 成員 bob 和 carol, 外人 dave

    Returns:
        dict: 使用者和 project_id
    """
    alice = make_user('Alice')
    bob = make_user('Bob')
    carol = make_user('Carol')
    dave = make_user('Dave')

    project_id = create_project(alice)
    add_member(alice, project_id, bob)
    add_member(alice, project_id, carol)

    return {
        'creator': alice,
        'bob': bob,
        'carol': carol,
        'outsider': dave,
        'project_id': project_id
    }
