# tests/test_quality_gate.py
from models.content import StructureStats
from services.web2md.markdown_utils import strip_markdown_syntax
from services.web2md.quality_gate import (
    PASS_THRESHOLD,
    evaluate_markdown_quality,
    title_overlap,
)

SENTENCE = "Python coroutines let programs overlap waiting on network calls with useful work. "
TITLE = "Understanding Async Python"
ARTICLE = f"# {TITLE}\n\n" + SENTENCE * 6 + "\n\n" + SENTENCE * 4


def test_good_article_passes():
    report = evaluate_markdown_quality(
        ARTICLE,
        source_text=strip_markdown_syntax(ARTICLE),
        source_title=TITLE,
        structure=StructureStats(),
    )

    assert report.passed
    assert report.score == 1.0
    assert report.reasons == []
    assert 0.9 <= report.coverage <= 1.1


def test_without_source_signals_word_count_decides():
    report = evaluate_markdown_quality(ARTICLE)

    assert report.passed
    assert report.coverage == 1.0


def test_short_markdown_fails():
    report = evaluate_markdown_quality("# Hi\n\nToo short.", source_text="x" * 50)

    assert not report.passed
    assert "markdown_too_short" in report.reasons


def test_short_plain_text_without_source_signals_fails():
    report = evaluate_markdown_quality(" ".join(["word"] * 35))

    assert not report.passed
    assert "markdown_too_short" in report.reasons


def test_low_coverage_fails():
    report = evaluate_markdown_quality(ARTICLE, source_text="word " * 2000, source_title=TITLE)

    assert not report.passed
    assert "coverage_too_low" in report.reasons
    assert report.coverage < 0.28


def test_captcha_page_is_capped():
    markdown = "# Attention Required\n\nPlease complete the CAPTCHA to continue. " + SENTENCE * 6
    report = evaluate_markdown_quality(markdown, source_text=strip_markdown_syntax(markdown))

    assert not report.passed
    assert report.score <= 0.2
    assert "blocked_or_captcha_page" in report.reasons


def test_structure_loss_lowers_score_but_can_still_pass():
    structure = StructureStats(list_item_count=10, code_block_count=2, table_count=0)
    report = evaluate_markdown_quality(
        ARTICLE,
        source_text=strip_markdown_syntax(ARTICLE),
        source_title=TITLE,
        structure=structure,
    )

    assert "list_loss" in report.reasons
    assert "code_loss" in report.reasons
    assert report.score == 0.79
    assert report.score >= PASS_THRESHOLD
    assert report.passed


def test_title_mismatch_is_reported():
    report = evaluate_markdown_quality(ARTICLE, source_title="Completely Different Heading Words")
    assert "title_mismatch" in report.reasons


def test_title_overlap():
    assert title_overlap("Async Python Guide", "# Async Python\n\nbody") == 1.0
    assert title_overlap("Async Python Guide", "no heading here") == 0.0


def test_evaluation_is_pure():
    kwargs = dict(source_text="some source text " * 30, source_title=TITLE)
    assert evaluate_markdown_quality(ARTICLE, **kwargs) == evaluate_markdown_quality(ARTICLE, **kwargs)
