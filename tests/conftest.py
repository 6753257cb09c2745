"""
Global pytest Configuration and Fixtures

Shared fixtures for the front-end cache test suite:

- ``cache_root``: temporary cache directory per test
- ``clock``: frozen, manually advanced clock injected into every component
- ``make_settings`` / ``settings``: ``CacheSettings`` rooted in ``cache_root``
- ``metrics``: ``CacheMetrics`` on an isolated Prometheus registry
- ``store`` / ``engine``: cache components wired to the fixtures above
- ``app`` / ``client``: Flask application with a small set of demo pages
"""

from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest
from flask import Blueprint, Flask, Response, abort, current_app, render_template_string
from flask_login import UserMixin, login_user
from prometheus_client import CollectorRegistry

from frontend_cache.app import create_app
from frontend_cache.cache import (
    CacheMetrics,
    CacheStore,
    FrontEndCacheEngine,
    StatisticsRecorder,
    record_render_entities,
)
from frontend_cache.config.settings import CacheSettings

FROZEN_NOW = 1_700_000_000.0

PAGE_TEMPLATE = """<!DOCTYPE html>
<html>
<head><title>{{ title }}</title></head>
<body>
<h1>{{ title }}</h1>
<img src="/cover.png" alt="cover">
<img loading="eager" src="/logo.png">
</body>
</html>
"""


class FrozenClock:
    """Callable clock returning a fixed time until advanced."""

    def __init__(self, now: float = FROZEN_NOW):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingStatisticsRecorder(StatisticsRecorder):
    """Statistics collaborator remembering every replayed view."""

    def __init__(self):
        self.views: List[Dict[str, Any]] = []

    def record_view(self, context_id, issue_id=None, article_id=None, series_id=None) -> None:
        self.views.append({
            "context_id": context_id,
            "issue_id": issue_id,
            "article_id": article_id,
            "series_id": series_id,
        })


class DemoUser(UserMixin):
    def __init__(self, user_id: str):
        self.id = user_id


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def cache_root(tmp_path):
    return tmp_path / "frontEndCache"


@pytest.fixture
def make_settings(cache_root):
    def factory(**overrides) -> CacheSettings:
        overrides.setdefault("cache_root", cache_root)
        return CacheSettings(**overrides)
    return factory


@pytest.fixture
def settings(make_settings) -> CacheSettings:
    return make_settings()


@pytest.fixture
def metrics() -> CacheMetrics:
    return CacheMetrics(CollectorRegistry())


@pytest.fixture
def store(cache_root, clock, metrics) -> CacheStore:
    return CacheStore(cache_root, clock=clock, metrics=metrics)


@pytest.fixture
def recorder() -> RecordingStatisticsRecorder:
    return RecordingStatisticsRecorder()


@pytest.fixture
def engine(settings, store, recorder, metrics, clock) -> FrontEndCacheEngine:
    return FrontEndCacheEngine(settings, store=store, recorder=recorder, metrics=metrics, clock=clock)


def _demo_pages() -> Blueprint:
    """Pages standing in for the host application's views."""
    pages = Blueprint('demo_pages', __name__)

    def _rendered(name: str) -> None:
        current_app.config['RENDERS'].append(name)

    @pages.route('/')
    @pages.route('/index')
    def index():
        _rendered('index')
        return render_template_string(PAGE_TEMPLATE, title='Home')

    @pages.route('/about')
    def about():
        _rendered('about')
        return render_template_string(PAGE_TEMPLATE, title='About')

    @pages.route('/article/view/<int:article_id>')
    def view_article(article_id: int):
        _rendered(f'article/{article_id}')
        record_render_entities(
            {"article": {"id": article_id}, "issue": SimpleNamespace(id=3)},
            counted=True
        )
        return render_template_string(PAGE_TEMPLATE, title=f'Article {article_id}')

    @pages.route('/article/download/<int:article_id>')
    def download_article(article_id: int):
        _rendered(f'download/{article_id}')
        return Response(b'%PDF-1.4 fake', mimetype='application/pdf')

    @pages.route('/issue/current')
    def current_issue():
        _rendered('issue/current')
        response = Response(render_template_string(PAGE_TEMPLATE, title='Current issue'))
        response.set_cookie('visitor', 'abc123')
        return response

    @pages.route('/issue/archive')
    def issue_archive():
        _rendered('issue/archive')
        abort(404)

    @pages.route('/sitemap')
    def sitemap():
        _rendered('sitemap')

        def generate():
            yield '<urlset>'
            yield '</urlset>'

        return Response(generate(), mimetype='application/xml')

    @pages.route('/help')
    def help_page():
        _rendered('help')
        return Response('moved', status=302, headers={'Location': '/about'})

    @pages.route('/login/<user_id>', methods=['POST'])
    def login(user_id: str):
        login_user(DemoUser(user_id))
        return 'ok'

    return pages


@pytest.fixture
def make_app(cache_root, clock, recorder):
    """Factory for demo applications; keyword arguments override Flask config."""
    def factory(**config_overrides) -> Flask:
        config_overrides.setdefault('FRONTEND_CACHE_ROOT', str(cache_root))
        application = create_app(
            'testing',
            statistics_recorder=recorder,
            user_loader=DemoUser,
            metrics_registry=CollectorRegistry(),
            clock=clock,
            RENDERS=[],
            **config_overrides
        )
        application.register_blueprint(_demo_pages())
        return application
    return factory


@pytest.fixture
def app(make_app) -> Flask:
    return make_app()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def cache_extension(app):
    return app.extensions['frontend_cache']


@pytest.fixture
def cached_files(cache_root):
    """Cache files currently stored for one context scope."""
    def listing(context_id: Optional[int] = None) -> List:
        directory = cache_root if context_id is None else cache_root / str(context_id)
        if not directory.is_dir():
            return []
        return sorted(directory.glob("*.cache"))
    return listing
