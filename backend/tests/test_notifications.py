from datetime import datetime, timedelta, timezone

from sqlmodel import select

from studybuddy import models

BASE = '/api/v1/notifications'


def _notify(client, headers, user_id, **overrides):
    body = {'user_id': user_id, 'notification_type': 'message', 'title': 'Hello', 'message': 'Hi there'}
    body.update(overrides)
    r = client.post(BASE, json=body, headers=headers)
    assert r.status_code == 201, r.text
    return r.json()


def _iso(dt):
    return dt.isoformat()


def test_create_and_list_with_structured_metadata(client, make_user):
    user_id, headers = make_user()
    created = _notify(client, headers, user_id, metadata={'message_id': 123})
    assert created['is_read'] is False
    assert created['metadata'] == {'message_id': 123}
    assert created['scheduled_for'] is None
    assert created['sent_at'] is None
    listed = client.get(BASE, headers=headers).json()
    assert len(listed) == 1
    assert listed[0]['metadata'] == {'message_id': 123}


def test_create_validation(client, make_user):
    user_id, headers = make_user()
    missing = client.post(BASE, json={'user_id': user_id, 'title': 'x', 'message': 'y'}, headers=headers)
    assert missing.status_code == 400
    assert missing.json() == {'error': 'user_id, notification_type, title, and message are required'}
    bad_type = client.post(BASE, json={'user_id': user_id, 'notification_type': 'spam', 'title': 'x',
                                       'message': 'y'}, headers=headers)
    assert bad_type.status_code == 400
    assert bad_type.json() == {'error': 'Invalid notification type'}
    nobody = client.post(BASE, json={'user_id': 9999, 'notification_type': 'system', 'title': 'x',
                                     'message': 'y'}, headers=headers)
    assert nobody.status_code == 400
    assert nobody.json() == {'error': 'Recipient not found'}


def test_list_filters_and_order(client, make_user):
    user_id, headers = make_user()
    other_id, _ = make_user()
    first = _notify(client, headers, user_id, notification_type='message', title='first')
    second = _notify(client, headers, user_id, notification_type='group_invite', title='second')
    third = _notify(client, headers, user_id, notification_type='message', title='third')
    _notify(client, headers, other_id, title='not mine')
    client.put(f"{BASE}/{third['notification_id']}/read", headers=headers)

    everything = client.get(BASE, headers=headers).json()
    assert [n['title'] for n in everything] == ['third', 'second', 'first']

    unread = client.get(BASE, params={'unreadOnly': 'true'}, headers=headers).json()
    assert {n['notification_id'] for n in unread} == {first['notification_id'], second['notification_id']}

    messages = client.get(BASE, params={'type': 'message'}, headers=headers).json()
    assert [n['title'] for n in messages] == ['third', 'first']

    unread_messages = client.get(BASE, params={'type': 'message', 'unreadOnly': 'true'}, headers=headers).json()
    assert [n['title'] for n in unread_messages] == ['first']

    page = client.get(BASE, params={'limit': 1, 'offset': 1}, headers=headers).json()
    assert [n['title'] for n in page] == ['second']


def test_counts(client, make_user):
    user_id, headers = make_user()
    _notify(client, headers, user_id, notification_type='session_reminder')
    _notify(client, headers, user_id, notification_type='group_invite')
    _notify(client, headers, user_id, notification_type='partner_match')
    read = _notify(client, headers, user_id, notification_type='partner_match')
    client.put(f"{BASE}/{read['notification_id']}/read", headers=headers)
    r = client.get(f"{BASE}/counts", headers=headers)
    assert r.status_code == 200
    assert r.json() == {
        'total_notifications': 4,
        'unread_notifications': 3,
        'unread_reminders': 1,
        'unread_invites': 1,
        'unread_matches': 1,
    }


def test_counts_for_empty_inbox(client, make_user):
    _, headers = make_user()
    assert client.get(f"{BASE}/counts", headers=headers).json()['total_notifications'] == 0


def test_mark_read_is_idempotent_and_owner_scoped(client, make_user):
    user_id, headers = make_user()
    _, other_headers = make_user()
    n = _notify(client, headers, user_id, metadata={'k': 'v'})
    url = f"{BASE}/{n['notification_id']}/read"
    first = client.put(url, headers=headers)
    assert first.status_code == 200
    assert first.json()['is_read'] is True
    assert first.json()['metadata'] == {'k': 'v'}
    second = client.put(url, headers=headers)
    assert second.status_code == 200
    assert second.json()['is_read'] is True
    foreign = client.put(url, headers=other_headers)
    assert foreign.status_code == 404
    assert foreign.json() == {'error': 'Notification not found'}
    assert client.put(f"{BASE}/9999/read", headers=headers).status_code == 404


def test_mark_all_read(client, make_user):
    user_id, headers = make_user()
    for _ in range(3):
        _notify(client, headers, user_id)
    r = client.put(f"{BASE}/read-all", headers=headers)
    assert r.status_code == 200
    assert r.json() == {'message': 'Marked 3 notifications as read', 'updated': 3}
    again = client.put(f"{BASE}/read-all", headers=headers)
    assert again.status_code == 200
    assert again.json()['updated'] == 0
    assert client.get(BASE, params={'unreadOnly': 'true'}, headers=headers).json() == []


def test_delete_notification(client, make_user):
    user_id, headers = make_user()
    _, other_headers = make_user()
    n = _notify(client, headers, user_id)
    url = f"{BASE}/{n['notification_id']}"
    assert client.delete(url, headers=other_headers).status_code == 404
    r = client.delete(url, headers=headers)
    assert r.status_code == 200
    assert r.json() == {'message': 'Notification deleted successfully'}
    assert client.delete(url, headers=headers).status_code == 404
    assert client.get(BASE, headers=headers).json() == []


def test_pending_and_mark_sent(client, make_user, db):
    user_id, headers = make_user()
    now = datetime.now(timezone.utc)
    due = _notify(client, headers, user_id, title='due', scheduled_for=_iso(now - timedelta(minutes=5)))
    older = _notify(client, headers, user_id, title='older', scheduled_for=_iso(now - timedelta(hours=2)))
    _notify(client, headers, user_id, title='future', scheduled_for=_iso(now + timedelta(hours=1)))
    _notify(client, headers, user_id, title='immediate')

    pending = client.get(f"{BASE}/pending", headers=headers).json()
    assert [n['title'] for n in pending] == ['older', 'due']
    assert all(n['sent_at'] is None for n in pending)

    ids = [older['notification_id'], due['notification_id']]
    r = client.put(f"{BASE}/mark-sent", json={'notification_ids': ids}, headers=headers)
    assert r.status_code == 200
    assert r.json() == {'message': 'Marked 2 notifications as sent', 'updated': 2}
    assert client.get(f"{BASE}/pending", headers=headers).json() == []

    stamped = db.exec(select(models.Notification).where(models.Notification.notification_id.in_(ids))).all()
    assert all(n.sent_at is not None for n in stamped)


def test_scheduled_for_with_offset_is_stored_as_utc(client, make_user):
    user_id, headers = make_user()
    past_in_plus_two = (datetime.now(timezone.utc) - timedelta(minutes=30)).astimezone(timezone(timedelta(hours=2)))
    n = _notify(client, headers, user_id, scheduled_for=past_in_plus_two.isoformat())
    pending = client.get(f"{BASE}/pending", headers=headers).json()
    assert [p['notification_id'] for p in pending] == [n['notification_id']]


def test_sent_at_is_written_once_when_two_workers_race(client, make_user, db):
    user_id, headers = make_user()
    past = _iso(datetime.now(timezone.utc) - timedelta(minutes=1))
    n = _notify(client, headers, user_id, scheduled_for=past)

    # no claim step: both workers see the same due notification
    worker_a = client.get(f"{BASE}/pending", headers=headers).json()
    worker_b = client.get(f"{BASE}/pending", headers=headers).json()
    assert [x['notification_id'] for x in worker_a] == [x['notification_id'] for x in worker_b]

    first = client.put(f"{BASE}/mark-sent", json={'notification_ids': [n['notification_id']]}, headers=headers)
    assert first.json()['updated'] == 1
    stamped_at = db.get(models.Notification, n['notification_id']).sent_at
    db.expire_all()

    second = client.put(f"{BASE}/mark-sent", json={'notification_ids': [n['notification_id']]}, headers=headers)
    assert second.status_code == 200
    assert second.json()['updated'] == 0
    assert db.get(models.Notification, n['notification_id']).sent_at == stamped_at


def test_mark_sent_validation(client, make_user):
    _, headers = make_user()
    missing = client.put(f"{BASE}/mark-sent", json={}, headers=headers)
    assert missing.status_code == 400
    assert missing.json() == {'error': 'notification_ids array is required'}
    not_list = client.put(f"{BASE}/mark-sent", json={'notification_ids': 5}, headers=headers)
    assert not_list.status_code == 400
    bad_item = client.put(f"{BASE}/mark-sent", json={'notification_ids': ['abc']}, headers=headers)
    assert bad_item.status_code == 400
    assert bad_item.json() == {'error': 'notification_ids must contain integer ids'}
    empty = client.put(f"{BASE}/mark-sent", json={'notification_ids': []}, headers=headers)
    assert empty.status_code == 200
    assert empty.json()['updated'] == 0


def test_metadata_is_returned_as_given(client, make_user):
    user_id, headers = make_user()
    empty = _notify(client, headers, user_id, metadata={})
    assert empty['metadata'] == {}
    as_list = _notify(client, headers, user_id, metadata=[1, 2])
    assert as_list['metadata'] == [1, 2]
    plain = _notify(client, headers, user_id)
    assert plain['metadata'] is None
    listed = {n['notification_id']: n['metadata'] for n in client.get(BASE, headers=headers).json()}
    assert listed == {empty['notification_id']: {}, as_list['notification_id']: [1, 2],
                      plain['notification_id']: None}


def test_timestamps_are_stored_as_naive_utc(client, make_user, db):
    user_id, headers = make_user()
    scheduled = datetime(2030, 5, 1, 14, 30, tzinfo=timezone(timedelta(hours=2)))
    n = _notify(client, headers, user_id, scheduled_for=scheduled.isoformat())
    row = db.get(models.Notification, n['notification_id'])
    assert row.created_at.tzinfo is None
    assert row.scheduled_for == datetime(2030, 5, 1, 12, 30)
    assert abs(row.created_at - models.utcnow()) < timedelta(minutes=1)
    user = db.get(models.User, user_id)
    assert user.created_at.tzinfo is None


def test_out_of_range_numbers_are_rejected(client, make_user):
    user_id, headers = make_user()
    huge = 10 ** 20
    assert client.get(BASE, params={'limit': huge}, headers=headers).status_code == 400
    assert client.get(BASE, params={'limit': 1001}, headers=headers).status_code == 400
    assert client.get(BASE, params={'offset': huge}, headers=headers).status_code == 400
    assert client.put(f"{BASE}/{huge}/read", headers=headers).status_code == 400
    assert client.delete(f"{BASE}/{huge}", headers=headers).status_code == 400
    assert client.post(f"{BASE}/group/{huge}/notify", json={'notification_type': 'system', 'title': 't',
                                                           'message': 'm'}, headers=headers).status_code == 400
    too_big_recipient = client.post(BASE, json={'user_id': huge, 'notification_type': 'system', 'title': 't',
                                                'message': 'm'}, headers=headers)
    assert too_big_recipient.status_code == 400
    sent = client.put(f"{BASE}/mark-sent", json={'notification_ids': [huge]}, headers=headers)
    assert sent.status_code == 400
    assert sent.json() == {'error': 'notification_ids must contain integer ids'}
