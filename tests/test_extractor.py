# tests/test_extractor.py
from services.web2md.extractor import build_excerpt, extract_main_content

PARAGRAPH = (
    "Event loops schedule coroutines cooperatively, so a single thread can keep "
    "many network requests in flight while it waits on sockets. "
)

PAGE = f"""
<!DOCTYPE html>
<html>
<head>
  <title>Fallback title</title>
  <meta property="og:title" content="  Understanding   Event Loops ">
  <script>window.tracking = true;</script>
</head>
<body>
  <header><a href="/">Home</a> <a href="/blog">Blog</a></header>
  <nav><ul><li><a href="/a">A</a></li><li><a href="/b">B</a></li></ul></nav>
  <div class="sidebar">Subscribe to our newsletter and follow us everywhere.</div>
  <article class="post-content">
    <h1>Understanding Event Loops</h1>
    <p>{PARAGRAPH * 2}</p>
    <p>{PARAGRAPH}See <a href="/docs/asyncio">the docs</a> or
       <a href="mailto:team@example.com">mail us</a>.</p>
    <ul><li>Tasks</li><li>Futures</li><li>Callbacks</li></ul>
    <pre><code class="language-python">await asyncio.sleep(1)</code></pre>
    <p>Use <code>asyncio.run</code> as the entry point.</p>
    <table><tr><th>API</th></tr><tr><td>gather</td></tr></table>
    <div style="display: none">hidden tracking text</div>
    <!-- an html comment -->
  </article>
  <footer>All rights reserved.</footer>
</body>
</html>
"""


def test_article_is_selected_and_chrome_removed():
    content = extract_main_content(PAGE, "https://example.com/blog/event-loops")

    assert "Event loops schedule coroutines" in content.text
    assert "Subscribe to our newsletter" not in content.text
    assert "All rights reserved" not in content.text
    assert "window.tracking" not in content.html
    assert "hidden tracking text" not in content.text
    assert "an html comment" not in content.html


def test_title_prefers_open_graph():
    content = extract_main_content(PAGE, "https://example.com/")
    assert content.title == "Understanding Event Loops"


def test_title_fallbacks():
    html = "<html><head><title>Plain Title</title></head><body><p>x</p></body></html>"
    assert extract_main_content(html, "https://example.com/").title == "Plain Title"
    assert extract_main_content("<p>nothing here</p>", "https://example.com/").title == "Untitled"


def test_structure_counts():
    stats = extract_main_content(PAGE, "https://example.com/").structure

    assert stats.list_item_count == 3
    assert stats.code_block_count == 2
    assert stats.table_count == 1
    assert stats.link_count == 2


def test_relative_urls_are_absolutized():
    content = extract_main_content(PAGE, "https://example.com/blog/event-loops")

    assert 'href="https://example.com/docs/asyncio"' in content.html
    assert 'href="mailto:team@example.com"' in content.html


def test_short_pages_fall_back_to_body():
    html = "<html><body><article>Tiny.</article><p>Other text</p></body></html>"
    content = extract_main_content(html, "https://example.com/")

    assert "Tiny." in content.text
    assert "Other text" in content.text


def test_excerpt_stops_at_a_sentence():
    text = PARAGRAPH * 3
    excerpt = build_excerpt(text)

    assert excerpt.endswith(".")
    assert len(excerpt) <= 320
    assert build_excerpt("") is None
