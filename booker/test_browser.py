import pytest


def test_browser_controller_init():
    from browser import BrowserController
    controller = BrowserController(headless=True)
    assert controller is not None
    assert controller.headless is True
    assert controller.browser is None
    assert controller.page is None


def test_browser_controller_has_surface_methods():
    from browser import BrowserController
    controller = BrowserController()
    for name in ("start", "stop", "navigate", "query_all", "text_of", "attribute",
                 "is_rendered", "is_checked", "bounding_box", "click", "click_at",
                 "type_text", "screenshot", "__aenter__", "__aexit__"):
        assert hasattr(controller, name), name


def test_proxy_settings_from_env(monkeypatch):
    from browser import _proxy_settings
    for var in ("HTTPS_PROXY", "HTTP_PROXY", "https_proxy", "http_proxy"):
        monkeypatch.delenv(var, raising=False)
    assert _proxy_settings() is None

    monkeypatch.setenv("HTTPS_PROXY", "http://user:pw@proxy.local:3128")
    assert _proxy_settings() == {
        "server": "http://proxy.local:3128",
        "username": "user",
        "password": "pw",
    }
