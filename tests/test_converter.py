# tests/test_converter.py
import html as html_lib

import pytest

from services.web2md.converter import html_to_markdown
from services.web2md.markdown_utils import normalize_markdown


def test_headings_and_inline_formatting():
    markdown = html_to_markdown("<h2>Intro</h2><p>Hello <strong>world</strong> and <em>you</em>.</p>")
    assert markdown == "## Intro\n\nHello **world** and *you*.\n"


def test_title_is_prepended_only_without_headings():
    assert html_to_markdown("<p>Body text</p>", title="Doc").startswith("# Doc\n\nBody text")
    assert not html_to_markdown("<h2>Sub</h2><p>Body</p>", title="Doc").startswith("# Doc")
    assert html_to_markdown("", title="Doc") == "# Doc\n"


def test_nested_lists_are_indented():
    markdown = html_to_markdown("<ul><li>One</li><li>Two <ul><li>Nested</li></ul></li></ul>")
    assert markdown == "- One\n- Two\n  - Nested\n"


def test_ordered_list_honours_start():
    assert html_to_markdown('<ol start="3"><li>a</li><li>b</li></ol>') == "3. a\n4. b\n"


def test_code_blocks_keep_language_and_content():
    html = '<pre><code class="language-python">def f():\n    return 1\n</code></pre>'
    assert html_to_markdown(html) == "```python\ndef f():\n    return 1\n```\n"


def test_code_fence_grows_past_backticks_in_body():
    markdown = html_to_markdown("<pre>use ``` fences</pre>")
    assert markdown.startswith("````\n")
    assert markdown.rstrip().endswith("````")


def test_inline_code():
    assert html_to_markdown("<p>Call <code>run()</code> now</p>") == "Call `run()` now\n"


def test_tables_render_as_pipe_tables():
    html = (
        "<table><thead><tr><th>A</th><th>B</th></tr></thead>"
        "<tbody><tr><td>1</td><td>x|y</td></tr><tr><td>2</td></tr></tbody></table>"
    )
    assert html_to_markdown(html) == "| A | B |\n| --- | --- |\n| 1 | x\\|y |\n| 2 |  |\n"


def test_blockquote():
    assert html_to_markdown("<blockquote><p>Quoted line</p></blockquote>") == "> Quoted line\n"


@pytest.mark.parametrize(
    "html, expected",
    [
        ('<p><a href="https://example.com/a b">Link</a></p>', "[Link](https://example.com/a%20b)\n"),
        ('<p><a href="javascript:void(0)">Click</a></p>', "Click\n"),
        ('<p><img src="https://example.com/i.png" alt="Pic"></p>', "![Pic](https://example.com/i.png)\n"),
        ('<p><img src="data:image/png;base64,AAAA" alt="Inline"></p>', "Inline\n"),
    ],
)
def test_links_and_images(html, expected):
    assert html_to_markdown(html) == expected


def test_scripts_and_forms_are_skipped():
    html = "<p>Keep</p><script>alert(1)</script><button>Press</button><style>p{}</style>"
    assert html_to_markdown(html) == "Keep\n"


def test_output_is_already_normalized():
    html = (
        "<div>\n  <h1>Title</h1>\n\n\n  <p>First   paragraph\n spans lines.</p>"
        "<ul><li><p>Item with paragraph</p></li></ul><hr><p>Last</p></div>"
    )
    markdown = html_to_markdown(html)

    assert normalize_markdown(markdown) == markdown
    assert "\n\n\n" not in markdown
    assert "First paragraph spans lines." in markdown
    assert "- Item with paragraph" in markdown


def test_details_become_bold_label_and_body():
    html = "<details><summary>More info</summary><p>Hidden body</p></details>"
    assert html_to_markdown(html) == "**More info**\n\nHidden body\n"


def test_longer_fence_is_not_closed_by_inner_backticks():
    html = "<pre>```python\n y = 1\n</pre><div> After the block</div>"
    assert html_to_markdown(html) == "````\n```python\n y = 1\n````\n\nAfter the block\n"


DOCUMENT = (
    "<h2>Setup</h2><p>Install the package.</p><ul><li>fast</li><li>safe</li></ul>"
    '<pre><code class="language-bash">pip install web2md\n</code></pre>'
    "<table><thead><tr><th>Flag</th><th>Default</th></tr></thead>"
    "<tbody><tr><td>retries</td><td>1</td></tr></tbody></table>"
)
EXPECTED = (
    "## Setup\n\nInstall the package.\n\n- fast\n- safe\n\n"
    "```bash\npip install web2md\n```\n\n"
    "| Flag | Default |\n| --- | --- |\n| retries | 1 |\n"
)


def _rebuild_html(markdown: str) -> str:
    """Render the block kinds the converter emits back into plain HTML."""
    parts = []
    for block in markdown.strip().split("\n\n"):
        lines = block.split("\n")
        if block.startswith("#"):
            level = len(block) - len(block.lstrip("#"))
            parts.append(f"<h{level}>{html_lib.escape(block[level:].strip())}</h{level}>")
        elif block.startswith("```"):
            language = lines[0].strip("`")
            body = html_lib.escape("\n".join(lines[1:-1]))
            parts.append(f'<pre><code class="language-{language}">{body}</code></pre>')
        elif block.startswith("- "):
            items = "".join(f"<li>{html_lib.escape(line[2:])}</li>" for line in lines)
            parts.append(f"<ul>{items}</ul>")
        elif block.startswith("|"):
            rows = [
                [cell.strip() for cell in line.strip("|").split("|")]
                for line in lines
                if not set(line) <= set("|- ")
            ]
            head = "".join(f"<th>{html_lib.escape(cell)}</th>" for cell in rows[0])
            body = "".join(
                "<tr>" + "".join(f"<td>{html_lib.escape(cell)}</td>" for cell in row) + "</tr>"
                for row in rows[1:]
            )
            parts.append(f"<table><thead><tr>{head}</tr></thead><tbody>{body}</tbody></table>")
        else:
            parts.append(f"<p>{html_lib.escape(block)}</p>")
    return "".join(parts)


def test_structure_survives_a_round_trip():
    markdown = html_to_markdown(DOCUMENT)
    assert markdown == EXPECTED

    again = html_to_markdown(_rebuild_html(markdown))

    assert again == markdown
    assert [block[:2] for block in again.strip().split("\n\n")] == ["##", "In", "- ", "``", "| "]


def test_layout_markup_does_not_change_the_output():
    noisy = (
        "<article>\n  <section>\n    <h2>\n      Setup\n    </h2>\n"
        "    <p>Install   the\n package.</p>\n  </section>\n"
        "  <ul>\n    <li>fast</li>\n    <li>safe</li>\n  </ul>\n"
        '  <pre class="lang-bash"><code>pip install web2md</code></pre>\n'
        "  <table>\n    <tr><th>Flag</th><th>Default</th></tr>\n"
        "    <tr><td> retries </td><td>1</td></tr>\n  </table>\n</article>"
    )
    assert html_to_markdown(noisy) == EXPECTED
