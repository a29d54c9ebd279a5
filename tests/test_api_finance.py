def _category_id(client, name='Food'):
    return next(c['id'] for c in client.get('/api/user/categories').get_json() if c['name'] == name)


def test_default_categories_are_seeded_once(flask_app, client):
    import app as planos_app

    planos_app._seed_default_categories()
    names = [c['name'] for c in client.get('/api/user/categories').get_json()]
    assert names.count('Food') == 1


def test_default_categories_are_read_only(test_client):
    food = _category_id(test_client)
    assert test_client.put(f'/api/user/categories/{food}', json={'name': 'x', 'color': '#000', 'type': 'transaction'}).status_code == 403
    assert test_client.delete(f'/api/user/categories/{food}').status_code == 403


def test_transactions_validate_amount(test_client):
    food = _category_id(test_client)
    resp = test_client.post('/api/user/transactions', json={'type': 'expense', 'amount': 12.5, 'categoryId': food, 'date': '2024-10-05'})
    assert resp.status_code == 201
    assert resp.get_json()['category']['name'] == 'Food'
    assert test_client.post('/api/user/transactions', json={'type': 'expense', 'amount': -1}).status_code == 400
    assert test_client.post('/api/user/transactions', json={'type': 'gift', 'amount': 5}).status_code == 400


def test_budget_progress_and_duplicates(test_client):
    food = _category_id(test_client)
    resp = test_client.post('/api/user/budgets', json={'categoryId': food, 'amount': 100, 'period': 'monthly'})
    assert resp.status_code == 201
    test_client.post('/api/user/transactions', json={'type': 'expense', 'amount': 30, 'categoryId': food})

    budget = test_client.get('/api/user/budgets').get_json()[0]
    assert budget['spent'] == 30
    assert budget['remaining'] == 70
    assert budget['isExceeded'] is False

    dup = test_client.post('/api/user/budgets', json={'categoryId': food, 'amount': 50, 'period': 'monthly'})
    assert dup.status_code == 400


def test_recurring_apply_now_materialises_due_dates(test_client):
    resp = test_client.post('/api/user/recurring', json={
        'type': 'expense', 'amount': 9.99, 'frequency': 'monthly',
        'startDate': '2024-01-01', 'endDate': '2024-03-31',
    })
    assert resp.status_code == 201
    assert resp.get_json()['nextDate'] == '2024-02-01'

    created = test_client.post('/api/user/recurring/apply-now').get_json()['created']
    assert created == 2
    dates = sorted(t['date'] for t in test_client.get('/api/user/transactions').get_json())
    assert dates == ['2024-02-01', '2024-03-01']

    entry = test_client.get('/api/user/recurring').get_json()[0]
    assert entry['active'] is False
    assert test_client.post('/api/user/recurring/apply-now').get_json()['created'] == 0


def test_recurring_rejects_unknown_frequency(test_client):
    resp = test_client.post('/api/user/recurring', json={'type': 'income', 'amount': 10, 'frequency': 'hourly'})
    assert resp.status_code == 400
