"""
Testes para os módulos streamfinder.core.browser_profile e
streamfinder.core.config.
"""

import os
from unittest.mock import patch

import pytest
from filelock import Timeout

from streamfinder.core import config
from streamfinder.core.browser_profile import (
    DEFAULT_ARGS,
    BrowserProfile,
    acquire_profile,
    build_playwright_launch_kwargs,
    detect_available_browsers,
)


def test_get_os_returns_valid_value():
    assert config._get_os() in ("windows", "linux", "macos")


def test_config_dir_env_override(tmp_path, monkeypatch):
    monkeypatch.setenv(config.CONFIG_DIR_ENV, str(tmp_path / "cfg"))
    assert config.config_dir() == tmp_path / "cfg"
    assert config.session_path() == tmp_path / "cfg" / "youtube_session.json"
    assert config.debug_response_path().name == "youtube_debug_response.json"
    assert config.browser_data_dir() == tmp_path / "cfg" / "browser"


def test_config_dir_xdg(tmp_path, monkeypatch):
    monkeypatch.delenv(config.CONFIG_DIR_ENV, raising=False)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))
    with patch("streamfinder.core.config._get_os", return_value="linux"):
        assert config.config_dir() == tmp_path / "streamfinder"


def test_proxy_settings(monkeypatch):
    for name in ("HTTPS_PROXY", "https_proxy", "HTTP_PROXY", "http_proxy", "NO_PROXY", "no_proxy"):
        monkeypatch.delenv(name, raising=False)
    assert config.proxy_settings() is None

    monkeypatch.setenv("HTTP_PROXY", "http://proxy:3128")
    monkeypatch.setenv("HTTPS_PROXY", "http://secure-proxy:3128")
    monkeypatch.setenv("NO_PROXY", "localhost")
    assert config.proxy_settings() == {"server": "http://secure-proxy:3128", "bypass": "localhost"}


def test_detect_available_browsers_returns_dict():
    result = detect_available_browsers()
    assert set(result.keys()) == {"chromium", "chrome", "edge"}
    for path in result.values():
        assert path is None or isinstance(path, str)


def test_acquire_profile_locks_persistent_dir(tmp_path):
    data_dir = tmp_path / "browser"
    profile = acquire_profile("chromium", user_data_dir=str(data_dir))
    try:
        assert profile.user_data_dir == str(data_dir)
        assert not profile.ephemeral
        assert data_dir.is_dir()
    finally:
        profile.release()


def test_acquire_profile_falls_back_to_ephemeral_when_busy(tmp_path):
    data_dir = tmp_path / "browser"
    first = acquire_profile("chromium", user_data_dir=str(data_dir))
    with patch("streamfinder.core.browser_profile.FileLock.acquire",
               side_effect=Timeout(str(data_dir) + ".lock")):
        second = acquire_profile("chromium", user_data_dir=str(data_dir))
    try:
        assert second.ephemeral
        assert second.user_data_dir != str(data_dir)
    finally:
        second.release()
        first.release()

    assert not os.path.exists(second.user_data_dir)


def test_acquire_profile_rejects_unknown_browser(tmp_path):
    with pytest.raises(ValueError):
        acquire_profile("firefox", user_data_dir=str(tmp_path))


def test_build_playwright_launch_kwargs_chromium():
    profile = BrowserProfile(browser="chromium", user_data_dir="/fake/dir", headless=True)
    kwargs = build_playwright_launch_kwargs(profile)
    assert kwargs["user_data_dir"] == "/fake/dir"
    assert kwargs["headless"] is True
    assert kwargs["args"] == DEFAULT_ARGS
    assert kwargs["viewport"] == {"width": 1920, "height": 1080}
    assert "channel" not in kwargs
    assert "proxy" not in kwargs


def test_build_playwright_launch_kwargs_chrome_with_proxy():
    profile = BrowserProfile(browser="chrome", user_data_dir="/fake/dir", headless=False,
                             proxy={"server": "http://proxy:3128"})
    kwargs = build_playwright_launch_kwargs(profile)
    assert kwargs["channel"] == "chrome"
    assert kwargs["headless"] is False
    assert kwargs["proxy"] == {"server": "http://proxy:3128"}


def test_build_playwright_launch_kwargs_edge():
    profile = BrowserProfile(browser="edge", user_data_dir="/fake/dir")
    assert build_playwright_launch_kwargs(profile)["channel"] == "msedge"
