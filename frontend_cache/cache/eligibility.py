"""
Request eligibility classifier.

Pure predicate deciding whether a request may be served from or written to
the cache. Rules are evaluated in order and the first failing rule wins:

1. the request carries a body (form submission or non-GET/HEAD method)
2. a principal is logged in
3. session initialization was suppressed by the host
4. the application is not installed
5. query parameters outside the routing mode's allow-list (CSS excepted)
6. the page is not in ``cacheable_pages`` (CSS requests pass when ``cache_css``)
7. ``page/operation`` is listed in ``non_cacheable_operations``
"""

from typing import Optional

from frontend_cache.config.settings import CacheSettings

from .keys import allowed_query_params, is_css_request
from .models import CacheRequest

DEFAULT_PAGE = "index"
DEFAULT_OPERATION = "index"


def explain(request: CacheRequest, settings: CacheSettings) -> Optional[str]:
    """
    Return the name of the first rule that makes ``request`` ineligible, or None.
    """
    if request.has_body or request.method.upper() not in ("GET", "HEAD"):
        return "has_body"

    if request.authenticated:
        return "authenticated"

    if request.session_init_suppressed:
        return "session_init_suppressed"

    if not (request.installed and settings.installed):
        return "not_installed"

    if settings.cache_css and is_css_request(request):
        return None

    allowed = allowed_query_params(request.routing_mode, settings.context_params)
    if request.query and not set(request.query).issubset(allowed):
        return "query_parameters"

    page = request.page or DEFAULT_PAGE
    if page not in settings.cacheable_pages:
        return "page_not_cacheable"

    operation = request.operation or DEFAULT_OPERATION
    if f"{page}/{operation}" in settings.non_cacheable_operations:
        return "operation_not_cacheable"

    return None


def is_cacheable(request: CacheRequest, settings: CacheSettings) -> bool:
    return explain(request, settings) is None
