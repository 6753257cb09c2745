"""
Integration tests for the front-end cache mounted on a Flask application.

Every test runs against the demo pages registered by ``tests/conftest.py``.
``app.config['RENDERS']`` lists the views that actually executed, which tells
apart responses served from cache from freshly rendered ones.
"""

import gzip

import pytest

from frontend_cache.cache.response_cache import SKIP_ENVIRON_KEY

pytestmark = pytest.mark.integration


def renders(app):
    return app.config['RENDERS']


class TestCacheLifecycle:
    """Miss, capture, hit and revalidation through the Flask hooks."""

    def test_second_request_is_served_from_cache(self, app, client):
        first = client.get('/about')
        second = client.get('/about')

        assert first.status_code == 200
        assert second.status_code == 200
        assert second.data == first.data
        assert renders(app) == ['about']

    def test_cached_html_gets_lazy_loading(self, client):
        body = client.get('/about').get_data(as_text=True)

        assert '<img loading="lazy" src="/cover.png" alt="cover">' in body
        assert '<img loading="eager" src="/logo.png">' in body

    def test_responses_carry_cache_headers(self, client):
        response = client.get('/about')

        assert response.headers['Cache-Control'] == 'public, max-age=3600, must-revalidate'
        assert response.headers['ETag'].startswith('"')
        assert response.headers['Content-Type'] == 'text/html; charset=utf-8'
        assert int(response.headers['Content-Length']) == len(response.data)

    def test_matching_etag_yields_304(self, app, client):
        etag = client.get('/about').headers['ETag']

        response = client.get('/about', headers={'If-None-Match': etag})

        assert response.status_code == 304
        assert response.data == b''
        assert response.headers['ETag'] == etag
        assert renders(app) == ['about']

    def test_stale_etag_yields_full_body(self, client):
        client.get('/about')

        response = client.get('/about', headers={'If-None-Match': '"1"'})

        assert response.status_code == 200
        assert b'About' in response.data

    def test_gzip_clients_receive_compressed_body(self, client):
        response = client.get('/about', headers={'Accept-Encoding': 'gzip, deflate'})

        assert response.headers['Content-Encoding'] == 'gzip'
        assert 'Accept-Encoding' in response.headers['Vary']
        assert b'About' in gzip.decompress(response.data)

    def test_non_gzip_clients_receive_plain_body(self, client):
        client.get('/about', headers={'Accept-Encoding': 'gzip'})

        response = client.get('/about')

        assert 'Content-Encoding' not in response.headers
        assert b'About' in response.data

    def test_expired_entry_is_rendered_again(self, app, client, clock):
        client.get('/about')
        clock.advance(3601)

        client.get('/about')

        assert renders(app) == ['about', 'about']

    def test_root_and_index_pages_are_cached(self, app, client):
        client.get('/')
        client.get('/')

        assert renders(app) == ['index']

    def test_redirects_are_cached(self, app, client):
        client.get('/help')
        response = client.get('/help')

        assert response.status_code == 302
        assert response.headers['Location'] == '/about'
        assert renders(app) == ['help']

    def test_entries_are_written_to_the_cache_root(self, client, cached_files):
        client.get('/about')
        client.get('/index')

        assert len(cached_files()) == 2


class TestStatistics:

    def test_counted_view_is_replayed_on_hit(self, client, recorder):
        client.get('/article/view/5')
        assert recorder.views == []

        client.get('/article/view/5')

        assert recorder.views == [{"context_id": None, "issue_id": 3, "article_id": 5, "series_id": None}]

    def test_counted_view_is_replayed_on_304(self, client, recorder):
        etag = client.get('/article/view/5').headers['ETag']

        client.get('/article/view/5', headers={'If-None-Match': etag})

        assert len(recorder.views) == 1

    def test_counted_view_max_age_is_capped(self, client):
        response = client.get('/article/view/5')

        assert response.headers['Cache-Control'] == 'public, max-age=30, must-revalidate'

    def test_uncounted_page_is_not_replayed(self, client, recorder):
        client.get('/about')
        client.get('/about')

        assert recorder.views == []


class TestBypass:
    """Requests and responses that must never be cached."""

    def test_excluded_operation_always_renders(self, app, client):
        client.get('/article/download/5')
        response = client.get('/article/download/5')

        assert response.data == b'%PDF-1.4 fake'
        assert 'ETag' not in response.headers
        assert renders(app) == ['download/5', 'download/5']

    def test_error_responses_are_not_cached(self, app, client):
        assert client.get('/issue/archive').status_code == 404
        assert client.get('/issue/archive').status_code == 404

        assert renders(app) == ['issue/archive', 'issue/archive']

    def test_streamed_responses_are_not_cached(self, app, client, cached_files):
        client.get('/sitemap')
        response = client.get('/sitemap')

        assert response.data == b'<urlset></urlset>'
        assert renders(app) == ['sitemap', 'sitemap']
        assert cached_files() == []

    def test_query_parameters_bypass_the_cache(self, app, client):
        client.get('/about?utm_source=newsletter')
        client.get('/about?utm_source=newsletter')

        assert renders(app) == ['about', 'about']

    def test_authenticated_users_bypass_the_cache(self, app, client):
        client.get('/about')
        client.post('/login/u1')

        response = client.get('/about')

        assert 'ETag' not in response.headers
        assert renders(app) == ['about', 'about']

    def test_environ_flag_bypasses_the_cache(self, app, client):
        client.get('/about', environ_base={SKIP_ENVIRON_KEY: True})
        client.get('/about', environ_base={SKIP_ENVIRON_KEY: True})

        assert renders(app) == ['about', 'about']

    def test_post_requests_bypass_the_cache(self, cache_extension, client):
        client.post('/login/u2')

        assert cache_extension.engine.metrics.sample(
            'frontend_cache_lookups_total', {'outcome': 'pass'}
        ) == 1

    def test_disabled_extension_registers_no_hooks(self, make_app):
        app = make_app(FRONTEND_CACHE_ENABLED=False)
        client = app.test_client()

        client.get('/about')
        client.get('/about')

        assert renders(app) == ['about', 'about']


class TestCookies:

    def test_cookies_reach_the_rendering_visitor_only(self, app, client):
        first = client.get('/issue/current')
        second = client.get('/issue/current')

        assert any('visitor=abc123' in cookie for cookie in first.headers.getlist('Set-Cookie'))
        assert not any('visitor=' in cookie for cookie in second.headers.getlist('Set-Cookie'))
        assert renders(app) == ['issue/current']


class TestFailureFallback:

    def test_engine_failure_renders_the_page(self, app, client, cache_extension, mocker):
        mocker.patch.object(cache_extension.engine.store, 'lookup', side_effect=RuntimeError('disk gone'))

        response = client.get('/about')

        assert response.status_code == 200
        assert b'About' in response.data
        assert cache_extension.engine.metrics.sample(
            'frontend_cache_engine_failures_total', {'stage': 'handle'}
        ) == 1

    def test_request_adapter_failure_renders_the_page(self, app, client, cache_extension, mocker):
        mocker.patch.object(cache_extension.request_adapter, 'build', side_effect=ValueError('bad request'))

        response = client.get('/about')

        assert response.status_code == 200
        assert renders(app) == ['about']
        assert cache_extension.engine.metrics.sample(
            'frontend_cache_engine_failures_total', {'stage': 'adapt'}
        ) == 1

    def test_unwritable_cache_root_still_serves_pages(self, app, client, cache_root):
        cache_root.parent.mkdir(parents=True, exist_ok=True)
        cache_root.write_text('not a directory')

        first = client.get('/about')
        second = client.get('/about')

        assert first.status_code == second.status_code == 200
        assert renders(app) == ['about', 'about']
