import pytest

from genkit.errors import ConfigError
from genkit.html_utils import (
    PageMeta,
    escape_html,
    join_root_url,
    parse_html_meta,
    rebase_urls,
)

CRATES_HEAD = """
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<link rel="icon" href="/assets/cargo.png" type="image/png">
<meta name="google" content="notranslate">
<meta property="og:image" content="/assets/og-image.png">
<meta name="twitter:card" content="summary_large_image">
"""


def test_title_and_image_from_head():
    html = f"""<!DOCTYPE html><html lang="en"><head>{CRATES_HEAD}
<title>crates.io: Rust Package Registry</title>
</head><body></body></html>"""
    meta = parse_html_meta(html.encode("utf-8"))
    assert meta == PageMeta(
        title="crates.io: Rust Package Registry",
        description="",
        url=None,
        image="/assets/og-image.png",
    )


def test_unclosed_head_is_still_parsed():
    html = f"""<!DOCTYPE html><html><head>
<title>crates.io: Rust Package Registry</title>{CRATES_HEAD}
<body>
</body></html>"""
    meta = parse_html_meta(html)
    assert meta.title == "crates.io: Rust Package Registry"
    assert meta.image == "/assets/og-image.png"


def test_description_url_and_title_outside_head_ignored():
    html = f"""<!DOCTYPE html><html><head>{CRATES_HEAD}
<title>crates.io: Rust Package Registry</title>
<meta name="description" content="A shared registry of crates.">
<meta property="og:url" content="https://crates.io/">
<meta name="twitter:url" content="https://other.io/">
</head>
<body></body>
<footer><title>fake title</title></footer>
</html>"""
    meta = parse_html_meta(html)
    assert meta.title == "crates.io: Rust Package Registry"
    assert meta.description == "A shared registry of crates."
    assert meta.url == "https://crates.io/"
    assert meta.image == "/assets/og-image.png"


def test_title_tag_wins_over_og_title():
    html = """<head>
<meta property="og:title" content="OG title">
<title>Real title</title>
</head>"""
    assert parse_html_meta(html).title == "Real title"

    html = """<head>
<meta property="og:title" content="">
<meta name="twitter:title" content="Twitter title">
<meta property="og:description" content="">
<meta name="twitter:description" content="Twitter description">
</head>"""
    meta = parse_html_meta(html)
    assert meta.title == "Twitter title"
    assert meta.description == "Twitter description"


def test_meta_without_head_is_empty():
    assert parse_html_meta("<p>no head here</p>") == PageMeta()
    assert parse_html_meta(b"") == PageMeta()


def test_meta_text_is_truncated():
    html = f"<head><title>{'t' * 250}</title><meta name='description' content='{'d' * 250}'></head>"
    meta = parse_html_meta(html)
    assert len(meta.title) == 200
    assert len(meta.description) == 200


def test_escape_and_join():
    assert escape_html('<a href="x">&</a>') == "&lt;a href=&quot;x&quot;&gt;&amp;&lt;/a&gt;"
    assert join_root_url("https://example.com/", "/about") == "https://example.com/about"
    assert join_root_url("https://example.com", "about") == "https://example.com/about"
    assert join_root_url("", "/about") == "/about"


def test_rebase_urls():
    html = (
        '<a href="/posts/1/">Post</a><img src="/img/a.png">'
        '<a href="https://other.com/x">Other</a><script src="//cdn.com/x.js"></script>'
        '<a href="#top">Top</a>'
    )
    rebased = rebase_urls(html, "https://example.com/blog")
    assert 'href="https://example.com/blog/posts/1/"' in rebased
    assert 'src="https://example.com/blog/img/a.png"' in rebased
    assert 'href="https://other.com/x"' in rebased
    assert 'src="//cdn.com/x.js"' in rebased
    assert 'href="#top"' in rebased

    with pytest.raises(ConfigError):
        rebase_urls(html, "example.com")
