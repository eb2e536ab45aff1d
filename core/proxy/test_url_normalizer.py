import pytest

from core.proxy.exceptions import InvalidTargetError
from core.proxy.url_normalizer import (
    classify_reference,
    normalize_target_url,
    origin_of,
    proxied,
    resolve_reference,
    validate_target_url,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("", ""),
        ("https://example.com", "https://example.com"),
        ("HTTP://example.com/a", "HTTP://example.com/a"),
        ("example.com/page", "https://example.com/page"),
        ("htt:/example.com", "https://example.com"),
        ("ht://example.com", "https://example.com"),
        (":/example.com", "https://example.com"),
        ("//example.com/x", "https://example.com/x"),
        ("ttps//example.com", "https://example.com"),
        ("localhost:8080/x", "https://localhost:8080/x"),
    ],
)
def test_normalize_target_url(raw, expected):
    assert normalize_target_url(raw) == expected


def test_normalized_absolute_reference_round_trips():
    proxy_base = "https://proxy.example"
    url = "https://site.test/a/b?x=1"
    rewritten = f"{proxy_base}/{url}"

    extracted = rewritten[len(proxy_base) + 1:]

    assert normalize_target_url(extracted) == url


@pytest.mark.parametrize(
    "url",
    [
        "https://example.com",
        "http://127.0.0.1:8080/path?q=1",
        "https://[::1]:8443/",
        "https://example.com/a%20b",
    ],
)
def test_validate_accepts_http_urls(url):
    assert validate_target_url(url) == url


@pytest.mark.parametrize(
    "url",
    [
        "",
        "https://",
        "https://not%20a%20url",
        "https://not a url",
        "https://exa<mple.com",
        "ftp://example.com",
        "https://example.com:99999",
    ],
)
def test_validate_rejects_invalid_urls(url):
    with pytest.raises(InvalidTargetError):
        validate_target_url(url)


@pytest.mark.parametrize(
    "url, expected",
    [
        ("https://example.com/a/b?c=d", "https://example.com"),
        ("https://Example.COM:443/", "https://example.com"),
        ("http://example.com:8080/x", "http://example.com:8080"),
        ("https://user:pw@example.com/x", "https://example.com"),
    ],
)
def test_origin_of(url, expected):
    assert origin_of(url) == expected


@pytest.mark.parametrize(
    "value, expected",
    [
        ("/a/b", "https://example.com/a/b"),
        ("img.png", "https://example.com/img.png"),
        ("  img.png ", "https://example.com/img.png"),
        ("//cdn.test/lib.js", "https://cdn.test/lib.js"),
        ("?page=2", "https://example.com/?page=2"),
        ("../img/x.png", "https://example.com/img/x.png"),
        ("./a/../b.png", "https://example.com/b.png"),
        ("/css/../img/x.png", "https://example.com/img/x.png"),
    ],
)
def test_resolve_reference(value, expected):
    assert resolve_reference(value, "https://example.com") == expected


def test_resolved_parent_reference_keeps_target_host():
    proxy_base = "https://proxy.example"
    rewritten = proxied(resolve_reference("../img/bg.png", "https://site.test"), proxy_base)

    extracted = normalize_target_url(rewritten[len(proxy_base) + 1:])

    assert extracted == "https://site.test/img/bg.png"
    assert origin_of(extracted) == "https://site.test"


def test_validate_decodes_percent_encoded_idn_host():
    assert validate_target_url("https://b%C3%BCcher.de/a?x=1") == "https://xn--bcher-kva.de/a?x=1"


def test_validate_rejects_host_decoding_to_forbidden_character():
    with pytest.raises(InvalidTargetError):
        validate_target_url("https://exa%3Cmple.com/")


@pytest.mark.parametrize(
    "value, kind",
    [
        ("https://x.test/a", "absolute"),
        ("HTTP://x.test", "absolute"),
        ("/a", "relative"),
        ("a.png", "relative"),
        ("//cdn.test/a", "relative"),
        ("data:image/png;base64,xx", "ignored"),
        ("#top", "ignored"),
        ("javascript:void(0)", "ignored"),
        ("mailto:a@b.c", "ignored"),
        ("tel:+100", "ignored"),
        ("about:blank", "ignored"),
        ("   ", "ignored"),
    ],
)
def test_classify_reference(value, kind):
    assert classify_reference(value) == kind
