# tests/test_route_target.py
import pytest

from models.snapshot import ResolveMode
from services.web2md.route_target import parse_web_target_segments, split_target_path


def test_collapsed_scheme_segments():
    parsed = parse_web_target_segments(["https:", "example.com", "blog", "post"])

    assert parsed.target_url == "https://example.com/blog/post"
    assert parsed.mode is ResolveMode.NORMAL
    assert parsed.suffix is None


def test_encoded_single_segment():
    parsed = parse_web_target_segments(["https%3A%2F%2Fexample.com%2Fdocs%3Fa%3D1"])
    assert parsed.target_url == "https://example.com/docs?a=1"


@pytest.mark.parametrize("suffix", ["revalidate", "redo", "REDO"])
def test_trailing_suffix_switches_to_revalidate(suffix):
    parsed = parse_web_target_segments(["https:", "example.com", "post", suffix])

    assert parsed.target_url == "https://example.com/post"
    assert parsed.mode is ResolveMode.REVALIDATE
    assert parsed.suffix == suffix.lower()


def test_bare_host():
    parsed = parse_web_target_segments(["http:", "example.com"])
    assert parsed.target_url == "http://example.com"


@pytest.mark.parametrize(
    "segments",
    [None, [], ["revalidate"], ["ftp:", "example.com"], ["example.com", "post"], ["https:", ""]],
)
def test_unparseable_targets(segments):
    assert parse_web_target_segments(segments) is None


def test_split_target_path_drops_empty_segments():
    assert split_target_path("https://example.com//a/") == ["https:", "example.com", "a"]
