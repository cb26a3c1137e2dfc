import pytest

from bookmind.services.urls import extract_root_domain, normalize_url, urls_equivalent


def test_normalize_url_applies_scheme_case_www_and_tracking_rules():
    assert (
        normalize_url("http://WWW.Example.com/Post/?utm_source=x", strip_tracking=True)
        == "https://example.com/post/"
    )
    assert normalize_url("example.com") == "https://example.com"
    assert normalize_url("https://example.com/") == "https://example.com"
    assert normalize_url("http://www.www.Example.com/a") == "https://example.com/a"


def test_normalize_url_keeps_non_tracking_params_in_order():
    url = "https://a.com/x?b=2&utm_medium=mail&a=1&fbclid=zz&gclid=1&c=3"
    assert normalize_url(url, strip_tracking=True) == "https://a.com/x?b=2&a=1&c=3"
    assert normalize_url(url) == url


def test_normalize_url_tracking_set_is_injectable():
    url = "https://a.com/x?ref=home&session=abc"
    custom = frozenset({"session"})
    assert normalize_url(url, strip_tracking=True, tracking_params=custom) == (
        "https://a.com/x?ref=home"
    )


def test_normalize_url_keeps_root_slash_when_query_follows():
    assert normalize_url("https://a.com/?q=1") == "https://a.com/?q=1"


@pytest.mark.parametrize(
    "raw",
    [
        "http://WWW.Example.com/Post/?utm_source=x",
        "Example.com/",
        "https://user@www.example.com:8080/a/b?x=1#Frag",
        "ftp://files.example.com/pub/",
        "http://[::1",
        "  spaced.example.com/path  ",
        "www.www.example.com/a",
        "mailto:someone@example.com",
    ],
)
def test_normalize_url_is_idempotent(raw):
    once = normalize_url(raw, strip_tracking=True)
    assert normalize_url(once, strip_tracking=True) == once


def test_normalize_url_never_raises_on_malformed_input():
    assert normalize_url("http://[::1") == "http://[::1"
    assert normalize_url("") == ""


def test_urls_equivalent_handles_trivial_variations():
    assert urls_equivalent("https://Example.com/", "example.com")
    assert urls_equivalent(
        "https://a.com/x?utm_source=y", "https://a.com/x", strip_tracking=True
    )
    assert not urls_equivalent("https://a.com/x?utm_source=y", "https://a.com/x")
    assert not urls_equivalent("", "")


def test_extract_root_domain():
    assert extract_root_domain("https://news.bbc.co.uk/article") == "bbc.co.uk"
    assert extract_root_domain("https://blog.example.com/x") == "example.com"
    assert extract_root_domain("www.example.org") == "example.org"
    assert extract_root_domain("localhost") == "localhost"
