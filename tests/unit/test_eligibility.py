"""
Unit tests for the request eligibility classifier.
"""

import pytest

from frontend_cache.cache.eligibility import explain, is_cacheable, is_css_request
from frontend_cache.cache.models import CacheRequest
from frontend_cache.config.settings import RoutingMode

pytestmark = pytest.mark.unit


CSS_PATH = "/index.php/demo/$$$call$$$/page/page/css"


class TestEligibilityRules:

    def test_anonymous_get_of_listed_page_is_cacheable(self, settings):
        assert is_cacheable(CacheRequest(path="/about", page="about"), settings)

    def test_missing_page_defaults_to_index(self, settings):
        assert is_cacheable(CacheRequest(path="/"), settings)

    def test_post_is_never_cacheable(self, settings):
        request = CacheRequest(method="POST", path="/about", page="about")
        assert explain(request, settings) == "has_body"

    def test_get_with_body_is_not_cacheable(self, settings):
        request = CacheRequest(path="/about", page="about", has_body=True)
        assert explain(request, settings) == "has_body"

    def test_authenticated_request_is_never_cacheable(self, settings):
        request = CacheRequest(path="/about", page="about", authenticated=True)
        assert explain(request, settings) == "authenticated"

    def test_suppressed_session_is_not_cacheable(self, settings):
        request = CacheRequest(path="/about", page="about", session_init_suppressed=True)
        assert explain(request, settings) == "session_init_suppressed"

    def test_uninstalled_application_is_not_cacheable(self, make_settings):
        request = CacheRequest(path="/about", page="about")
        assert explain(request, make_settings(installed=False)) == "not_installed"
        assert explain(CacheRequest(path="/about", page="about", installed=False), make_settings()) == "not_installed"

    def test_article_download_is_excluded_although_article_is_listed(self, settings):
        request = CacheRequest(path="/article/download/1/2", page="article", operation="download")
        assert "article" in settings.cacheable_pages
        assert explain(request, settings) == "operation_not_cacheable"

    def test_unlisted_page_is_not_cacheable(self, settings):
        request = CacheRequest(path="/user/profile", page="user", operation="profile")
        assert explain(request, settings) == "page_not_cacheable"

    def test_rules_are_evaluated_in_order(self, settings):
        request = CacheRequest(
            method="POST",
            path="/user",
            page="user",
            authenticated=True,
            query={"x": "1"},
        )
        assert explain(request, settings) == "has_body"


class TestQueryParameters:

    def test_any_query_parameter_blocks_path_info_requests(self, settings):
        request = CacheRequest(path="/about", page="about", query={"utm_source": "mail"})
        assert explain(request, settings) == "query_parameters"

    def test_allow_listed_parameters_pass_in_query_mode(self, make_settings):
        settings = make_settings(routing_mode=RoutingMode.QUERY)
        request = CacheRequest(
            routing_mode=RoutingMode.QUERY,
            path="/index.php",
            query={"journal": "demo", "page": "issue", "op": "archive"},
            page="issue",
            operation="archive",
        )
        assert is_cacheable(request, settings)

    def test_unknown_parameter_blocks_query_mode_requests(self, make_settings):
        settings = make_settings(routing_mode=RoutingMode.QUERY)
        request = CacheRequest(
            routing_mode=RoutingMode.QUERY,
            query={"page": "issue", "searchQuery": "x"},
            page="issue",
        )
        assert explain(request, settings) == "query_parameters"


class TestCssRequests:

    def test_path_info_css_is_recognized(self):
        assert is_css_request(CacheRequest(path=CSS_PATH))
        assert not is_css_request(CacheRequest(path="/about"))

    def test_query_mode_css_is_recognized(self):
        request = CacheRequest(
            routing_mode=RoutingMode.QUERY,
            query={"component": "page.page", "op": "css"},
        )
        assert is_css_request(request)

    def test_css_is_cacheable_despite_query_parameters(self, settings):
        request = CacheRequest(
            path=CSS_PATH,
            page="$$$call$$$",
            operation="page",
            query={"name": "stylesheet"},
        )
        assert is_cacheable(request, settings)

    def test_css_follows_normal_rules_when_disabled(self, make_settings):
        request = CacheRequest(path=CSS_PATH, page="$$$call$$$", query={"name": "stylesheet"})
        assert explain(request, make_settings(cache_css=False)) == "query_parameters"

    def test_css_still_requires_anonymous_get(self, settings):
        request = CacheRequest(path=CSS_PATH, authenticated=True)
        assert explain(request, settings) == "authenticated"
