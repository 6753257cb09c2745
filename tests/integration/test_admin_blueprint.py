"""
Integration tests for the front-end cache admin blueprint.
"""

import json

import pytest

pytestmark = pytest.mark.integration

PREFIX = '/admin/frontend-cache'


@pytest.fixture
def admin_client(client):
    """Test client with a logged-in administrator."""
    client.post('/login/admin')
    return client


class TestAuthentication:

    @pytest.mark.parametrize("method, path", [
        ('get', '/settings'),
        ('put', '/settings'),
        ('post', '/clear'),
        ('get', '/metrics'),
    ])
    def test_anonymous_requests_are_rejected(self, client, method, path):
        response = getattr(client, method)(PREFIX + path)

        assert response.status_code == 401


class TestSettingsEndpoints:

    def test_get_returns_current_settings(self, admin_client, cache_root):
        response = admin_client.get(f'{PREFIX}/settings')

        assert response.status_code == 200
        data = response.get_json()['data']
        assert data['cache_root'] == str(cache_root)
        assert data['counter_window_seconds'] == 30
        assert data['routing_mode'] == 'path_info'

    def test_put_persists_and_applies_settings(self, admin_client, cache_extension, cache_root):
        response = admin_client.put(f'{PREFIX}/settings', json={
            'time_to_live_seconds': 120,
            'use_compression': False,
        })

        assert response.status_code == 200
        assert response.get_json()['data']['time_to_live_seconds'] == 120
        assert cache_extension.settings.time_to_live_seconds == 120
        assert cache_extension.settings.use_compression is False

        saved = json.loads((cache_root / 'settings.json').read_text())
        assert saved['time_to_live_seconds'] == 120

    def test_put_cannot_move_the_cache_root(self, admin_client, cache_extension, cache_root, tmp_path):
        response = admin_client.put(f'{PREFIX}/settings', json={
            'cache_root': str(tmp_path / 'elsewhere'),
            'cache_css': False,
        })

        assert response.status_code == 200
        assert cache_extension.settings.cache_root == cache_root
        assert cache_extension.settings.cache_css is False

    def test_put_rejects_invalid_values(self, admin_client, cache_extension, cache_root):
        response = admin_client.put(f'{PREFIX}/settings', json={'time_to_live_seconds': 0})

        assert response.status_code == 400
        body = response.get_json()
        assert body['error'] == 'Invalid input data'
        assert 'time_to_live_seconds' in body['validation_errors']
        assert cache_extension.settings.time_to_live_seconds == 3600
        assert not (cache_root / 'settings.json').exists()

    def test_put_requires_a_json_object(self, admin_client):
        response = admin_client.put(f'{PREFIX}/settings', json=[1, 2])

        assert response.status_code == 400
        assert response.get_json()['error'] == 'Expected a JSON object'

    def test_new_settings_apply_to_following_requests(self, app, admin_client):
        admin_client.put(f'{PREFIX}/settings', json={'cacheable_pages': ['index']})
        anonymous = app.test_client()

        anonymous.get('/about')
        anonymous.get('/about')

        assert app.config['RENDERS'] == ['about', 'about']


class TestClearEndpoint:

    def test_clear_defaults_to_shared_scope(self, app, admin_client, cached_files):
        anonymous = app.test_client()
        anonymous.get('/about')
        assert len(cached_files()) == 1

        response = admin_client.post(f'{PREFIX}/clear', json={})

        assert response.status_code == 200
        assert response.get_json()['data'] == {'contexts': [None], 'removed': 1}
        assert cached_files() == []

        anonymous.get('/about')
        assert app.config['RENDERS'] == ['about', 'about']

    def test_clear_deduplicates_contexts(self, admin_client):
        response = admin_client.post(f'{PREFIX}/clear', json={'contexts': [2, '2', None, 2]})

        assert response.status_code == 200
        assert response.get_json()['data'] == {'contexts': [2, None], 'removed': 0}

    @pytest.mark.parametrize("contexts", [['journal'], [-1], [True], 'all'])
    def test_clear_rejects_invalid_contexts(self, admin_client, contexts):
        response = admin_client.post(f'{PREFIX}/clear', json={'contexts': contexts})

        assert response.status_code == 400
        assert 'contexts' in response.get_json()['validation_errors']


class TestMetricsEndpoint:

    def test_metrics_are_exposed_in_prometheus_format(self, app, admin_client):
        app.test_client().get('/about')

        response = admin_client.get(f'{PREFIX}/metrics')

        assert response.status_code == 200
        assert response.content_type.startswith('text/plain')
        assert b'frontend_cache_lookups_total{outcome="miss"} 1.0' in response.data
