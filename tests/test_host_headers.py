# tests/test_host_headers.py
"""
Tests for the Pydantic-based ``services.web2md.host_headers`` loader and
the request header builders that use it.
"""

from pathlib import Path

import pytest
from pydantic import ValidationError

from conftest import make_settings
from core.config import PROJECT_ROOT
from services.web2md.host_headers import (
    HostHeaderRules,
    get_host_rules,
    headers_for_host,
)
from services.web2md.request_headers import (
    HTML_ACCEPT,
    build_page_headers,
    build_source_headers,
)

RULES = """
hosts:
  - host: Example.com
    headers:
      X-Api-Key: "${WEB2MD_TEST_KEY}"
      X-Static: "static"
  - host: other.org
    headers:
      Authorization: "Bearer ${WEB2MD_MISSING_TOKEN}"
"""


@pytest.fixture
def rules_file(tmp_path) -> Path:
    path = tmp_path / "host_headers.yaml"
    path.write_text(RULES, encoding="utf-8")
    return path


# ----------------------------------------------------------------------
# Loader
# ----------------------------------------------------------------------
def test_shipped_config_is_valid():
    rules = get_host_rules(PROJECT_ROOT / "configs" / "host_headers.yaml")
    assert isinstance(rules, HostHeaderRules)
    assert any(rule.host == "huggingface.co" for rule in rules.hosts)


def test_missing_file_means_no_overrides(tmp_path):
    rules = get_host_rules(tmp_path / "absent.yaml")
    assert rules.hosts == []


def test_rules_are_cached_per_path(rules_file):
    first = get_host_rules(rules_file)
    rules_file.write_text("hosts: []", encoding="utf-8")
    assert get_host_rules(rules_file) is first


def test_malformed_rules_raise(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("hosts:\n  - headers: {}\n", encoding="utf-8")
    with pytest.raises(ValidationError):
        get_host_rules(path)


# ----------------------------------------------------------------------
# Matching and expansion
# ----------------------------------------------------------------------
def test_host_and_subdomains_match(rules_file, monkeypatch):
    monkeypatch.setenv("WEB2MD_TEST_KEY", "secret")

    assert headers_for_host("example.com", rules_file) == {"X-Api-Key": "secret", "X-Static": "static"}
    assert headers_for_host("docs.example.com", rules_file)["X-Api-Key"] == "secret"
    assert headers_for_host("notexample.com", rules_file) == {}


def test_blank_env_reference_drops_the_header(rules_file, monkeypatch):
    monkeypatch.delenv("WEB2MD_MISSING_TOKEN", raising=False)
    monkeypatch.delenv("WEB2MD_TEST_KEY", raising=False)

    assert headers_for_host("other.org", rules_file) == {}
    assert headers_for_host("example.com", rules_file) == {"X-Static": "static"}


# ----------------------------------------------------------------------
# Header builders
# ----------------------------------------------------------------------
def test_source_headers_include_overrides(rules_file, monkeypatch):
    monkeypatch.setenv("WEB2MD_TEST_KEY", "k")
    settings = make_settings(HOST_HEADERS_PATH=rules_file, DEFAULT_USER_AGENT="UA/1.0")

    headers = build_source_headers("https://www.example.com/x", settings)

    assert headers["User-Agent"] == "UA/1.0"
    assert headers["Accept-Language"] == settings.DEFAULT_ACCEPT_LANGUAGE
    assert headers["X-Api-Key"] == "k"


def test_page_headers_are_browser_like(settings):
    headers = build_page_headers("https://example.com/", settings)

    assert headers["Accept"] == HTML_ACCEPT
    assert headers["Upgrade-Insecure-Requests"] == "1"
    assert "User-Agent" in headers
