from models import Notification


def assignment_notifications(user):
    return Notification.query.filter_by(user_id=user.id, type='task_assigned').all()


def test_create_task_notifies_assignee(client, team, auth_headers):
    bob, carol = team['bob'], team['carol']

    response = client.post(f"/projects/{team['project_id']}/tasks", json={
        'title': 'Design mockups',
        'assigned_to_id': carol.id,
        'priority': 'high'
    }, headers=auth_headers(bob))

    assert response.status_code == 201
    task = response.get_json()['task']
    assert task['assigned_to'] == {'id': carol.id, 'name': 'Carol'}
    assert task['status'] == 'todo'
    assert task['created_by'] == bob.id

    notifications = assignment_notifications(carol)
    assert len(notifications) == 1
    assert notifications[0].content == 'You have been assigned a new task: Design mockups'
    assert notifications[0].related_task_id == task['id']
    assert notifications[0].related_project_id == team['project_id']


def test_create_unassigned_task_sends_nothing(client, team, auth_headers):
    response = client.post(f"/projects/{team['project_id']}/tasks", json={
        'title': 'Backlog item'
    }, headers=auth_headers(team['bob']))

    assert response.status_code == 201
    assert Notification.query.count() == 0


def test_self_assignment_is_notified(client, team, auth_headers):
    bob = team['bob']

    client.post(f"/projects/{team['project_id']}/tasks", json={
        'title': 'Mine',
        'assigned_to_id': bob.id
    }, headers=auth_headers(bob))

    assert len(assignment_notifications(bob)) == 1


def test_creator_can_be_assigned(client, team, auth_headers):
    response = client.post(f"/projects/{team['project_id']}/tasks", json={
        'title': 'Review budget',
        'assigned_to_id': team['creator'].id
    }, headers=auth_headers(team['bob']))

    assert response.status_code == 201


def test_assignee_must_be_member(client, team, auth_headers):
    response = client.post(f"/projects/{team['project_id']}/tasks", json={
        'title': 'Outsourced',
        'assigned_to_id': team['outsider'].id
    }, headers=auth_headers(team['bob']))

    assert response.status_code == 400
    assert 'assigned_to_id' in response.get_json()['details']
    assert Notification.query.count() == 0


def test_create_task_validation(client, team, auth_headers):
    response = client.post(f"/projects/{team['project_id']}/tasks", json={
        'title': 'Bad status',
        'status': 'blocked'
    }, headers=auth_headers(team['bob']))

    assert response.status_code == 400
    assert 'status' in response.get_json()['details']


def test_outsider_cannot_create_task(client, team, auth_headers):
    response = client.post(f"/projects/{team['project_id']}/tasks", json={
        'title': 'Sneaky'
    }, headers=auth_headers(team['outsider']))

    assert response.status_code == 403


def test_reassignment_notifications(client, team, auth_headers):
    bob, carol = team['bob'], team['carol']
    headers = auth_headers(team['creator'])
    url = f"/projects/{team['project_id']}/tasks"

    task_id = client.post(url, json={
        'title': 'Write docs',
        'assigned_to_id': bob.id
    }, headers=headers).get_json()['task']['id']
    assert len(assignment_notifications(bob)) == 1

    # 換人: 通知新負責人
    response = client.patch(f'{url}/{task_id}', json={'assigned_to_id': carol.id}, headers=headers)
    assert response.status_code == 200
    assert response.get_json()['changes']['assigned_to_id'] == {'old': bob.id, 'new': carol.id}
    carol_notifications = assignment_notifications(carol)
    assert len(carol_notifications) == 1
    assert carol_notifications[0].content == 'You have been assigned a task: Write docs'

    # 同一個人: 不通知
    client.patch(f'{url}/{task_id}', json={'assigned_to_id': carol.id, 'status': 'review'}, headers=headers)
    assert len(assignment_notifications(carol)) == 1

    # 清空: 不通知
    response = client.patch(f'{url}/{task_id}', json={'assigned_to_id': None}, headers=headers)
    assert response.get_json()['task']['assigned_to'] is None
    assert Notification.query.count() == 2

    # 重新指派回 bob
    client.patch(f'{url}/{task_id}', json={'assigned_to_id': bob.id}, headers=headers)
    assert len(assignment_notifications(bob)) == 2


def test_resave_with_former_member_as_assignee(client, team, auth_headers):
    bob = team['bob']
    creator_headers = auth_headers(team['creator'])
    url = f"/projects/{team['project_id']}/tasks"
    task_id = client.post(url, json={
        'title': 'Handover',
        'assigned_to_id': bob.id
    }, headers=creator_headers).get_json()['task']['id']
    client.delete(f"/projects/{team['project_id']}/members/{bob.id}", headers=creator_headers)

    # 負責人沒變,只改狀態
    response = client.patch(f'{url}/{task_id}', json={
        'assigned_to_id': bob.id,
        'status': 'done'
    }, headers=creator_headers)

    assert response.status_code == 200
    assert response.get_json()['task']['status'] == 'done'
    assert response.get_json()['task']['assigned_to']['id'] == bob.id
    assert len(assignment_notifications(bob)) == 1


def test_reassign_to_non_member_rejected(client, team, auth_headers):
    headers = auth_headers(team['bob'])
    url = f"/projects/{team['project_id']}/tasks"
    task_id = client.post(url, json={'title': 'Stay inside'}, headers=headers).get_json()['task']['id']

    response = client.patch(f'{url}/{task_id}', json={
        'assigned_to_id': team['outsider'].id
    }, headers=headers)

    assert response.status_code == 400
    assert 'assigned_to_id' in response.get_json()['details']
    assert Notification.query.count() == 0


def test_update_without_assignee_change(client, team, auth_headers):
    headers = auth_headers(team['bob'])
    url = f"/projects/{team['project_id']}/tasks"
    task_id = client.post(url, json={'title': 'Plain'}, headers=headers).get_json()['task']['id']

    response = client.patch(f'{url}/{task_id}', json={'status': 'in_progress'}, headers=headers)

    assert response.status_code == 200
    assert response.get_json()['task']['status'] == 'in_progress'
    assert Notification.query.count() == 0


def test_task_from_other_project_is_not_found(client, team, auth_headers, create_project):
    outsider = team['outsider']
    other_project_id = create_project(outsider, title='Elsewhere')
    task_id = client.post(f'/projects/{other_project_id}/tasks', json={
        'title': 'Private'
    }, headers=auth_headers(outsider)).get_json()['task']['id']

    url = f"/projects/{team['project_id']}/tasks/{task_id}"
    headers = auth_headers(team['bob'])

    assert client.get(url, headers=headers).status_code == 404
    assert client.patch(url, json={'title': 'Hijacked'}, headers=headers).status_code == 404
    assert client.delete(url, headers=headers).status_code == 404


def test_list_and_filter_tasks(client, team, auth_headers):
    headers = auth_headers(team['bob'])
    url = f"/projects/{team['project_id']}/tasks"
    client.post(url, json={'title': 'A', 'status': 'done'}, headers=headers)
    client.post(url, json={'title': 'B', 'assigned_to_id': team['carol'].id}, headers=headers)
    client.post(url, json={'title': 'C'}, headers=headers)

    body = client.get(url, headers=headers).get_json()
    assert body['total'] == 3
    assert [t['title'] for t in body['tasks']] == ['C', 'B', 'A']

    body = client.get(f'{url}?status=done', headers=headers).get_json()
    assert [t['title'] for t in body['tasks']] == ['A']

    body = client.get(f"{url}?assigned_to={team['carol'].id}", headers=headers).get_json()
    assert [t['title'] for t in body['tasks']] == ['B']


def test_delete_task(client, team, auth_headers):
    headers = auth_headers(team['carol'])
    url = f"/projects/{team['project_id']}/tasks"
    task_id = client.post(url, json={'title': 'Temp'}, headers=headers).get_json()['task']['id']

    response = client.delete(f'{url}/{task_id}', headers=headers)

    assert response.status_code == 200
    assert client.get(f'{url}/{task_id}', headers=headers).status_code == 404


def test_my_tasks(client, team, auth_headers):
    carol = team['carol']
    headers = auth_headers(team['bob'])
    url = f"/projects/{team['project_id']}/tasks"
    client.post(url, json={'title': 'No date', 'assigned_to_id': carol.id}, headers=headers)
    client.post(url, json={
        'title': 'Later',
        'assigned_to_id': carol.id,
        'due_date': '2030-06-01T00:00:00'
    }, headers=headers)
    client.post(url, json={
        'title': 'Sooner',
        'assigned_to_id': carol.id,
        'due_date': '2030-01-01T00:00:00'
    }, headers=headers)
    client.post(url, json={'title': 'Not mine'}, headers=headers)

    body = client.get('/tasks/my', headers=auth_headers(carol)).get_json()

    assert body['total'] == 3
    assert [t['title'] for t in body['tasks']] == ['Sooner', 'Later', 'No date']
    assert body['tasks'][0]['project']['id'] == team['project_id']
