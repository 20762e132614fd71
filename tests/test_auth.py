def register(client, email='alice@example.com', password='password123', name='Alice'):
    return client.post('/auth/register', json={
        'email': email,
        'password': password,
        'name': name
    })


def test_register_and_login(client):
    response = register(client)
    assert response.status_code == 201
    assert response.get_json()['user']['email'] == 'alice@example.com'

    response = client.post('/auth/login', json={
        'email': 'alice@example.com',
        'password': 'password123'
    })
    assert response.status_code == 200
    body = response.get_json()
    assert body['access_token']
    assert body['refresh_token']

    response = client.get('/auth/me', headers={'Authorization': f"Bearer {body['access_token']}"})
    assert response.status_code == 200
    assert response.get_json()['name'] == 'Alice'
    assert response.get_json()['last_login'] is not None


def test_register_duplicate_email(client):
    register(client)

    response = register(client, name='Another Alice')

    assert response.status_code == 409


def test_register_validation(client):
    response = register(client, email='not-an-email', password='short')

    assert response.status_code == 400
    details = response.get_json()['details']
    assert 'email' in details
    assert 'password' in details


def test_login_invalid_credentials(client):
    register(client)

    response = client.post('/auth/login', json={
        'email': 'alice@example.com',
        'password': 'wrong-password'
    })

    assert response.status_code == 401
    assert response.get_json()['error'] == 'Invalid credentials'


def test_login_unknown_email(client):
    response = client.post('/auth/login', json={
        'email': 'nobody@example.com',
        'password': 'password123'
    })

    assert response.status_code == 401


def test_refresh(client):
    register(client)
    tokens = client.post('/auth/login', json={
        'email': 'alice@example.com',
        'password': 'password123'
    }).get_json()

    response = client.post('/auth/refresh', headers={
        'Authorization': f"Bearer {tokens['refresh_token']}"
    })

    assert response.status_code == 200
    assert response.get_json()['access_token']


def test_missing_token(client):
    response = client.get('/auth/me')

    assert response.status_code == 401
    assert response.get_json()['error'] == 'authorization_required'


def test_invalid_token(client):
    response = client.get('/auth/me', headers={'Authorization': 'Bearer not.a.token'})

    assert response.status_code == 401
    assert response.get_json()['error'] == 'invalid_token'


def test_update_profile(client, make_user, auth_headers):
    alice = make_user('Alice')

    response = client.patch('/auth/me', json={'name': 'Alice Liddell'}, headers=auth_headers(alice))

    assert response.status_code == 200
    assert alice.name == 'Alice Liddell'


def test_change_password(client, make_user, auth_headers):
    alice = make_user('Alice')
    headers = auth_headers(alice)

    response = client.post('/auth/change-password', json={
        'current_password': 'wrong-password',
        'new_password': 'new-password-123'
    }, headers=headers)
    assert response.status_code == 401

    response = client.post('/auth/change-password', json={
        'current_password': 'password123',
        'new_password': 'new-password-123'
    }, headers=headers)
    assert response.status_code == 200

    response = client.post('/auth/login', json={
        'email': alice.email,
        'password': 'new-password-123'
    })
    assert response.status_code == 200
