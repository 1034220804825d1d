"""Tests for shared retrieval utilities."""

import math

import pytest

from lovassist.retrieval_shared import (
    compute_total_pages,
    extract_query_tokens,
    generate_snippet,
    normalize_page,
    normalize_page_size,
    normalize_sigmoid_scores,
    reciprocal_rank_fusion,
    sigmoid,
)


def test_sigmoid_bounds():
    assert sigmoid(0) == 0.5
    assert sigmoid(-1000) == 0.0
    assert sigmoid(1000) == pytest.approx(1.0)


def test_normalize_sigmoid_scores_accepts_scalar_and_none():
    assert normalize_sigmoid_scores(None) == []
    assert normalize_sigmoid_scores(0) == [0.5]
    assert normalize_sigmoid_scores([0, 0]) == [0.5, 0.5]


def test_extract_query_tokens_lowercases_and_dedups():
    tokens = extract_query_tokens("Husleieloven og HUSLEIELOVEN: depositum i 2020")
    assert tokens == ["husleieloven", "depositum", "2020"]


def test_extract_query_tokens_keeps_norwegian_letters():
    assert extract_query_tokens("Særlige regler for øvrige år") == ["særlige", "regler", "for", "øvrige"]


def test_rrf_scores_sum_reciprocal_ranks():
    fused = dict(reciprocal_rank_fusion([["a", "b"], ["b", "c"]], k=60))
    assert fused["a"] == pytest.approx(1 / 61)
    assert fused["b"] == pytest.approx(1 / 62 + 1 / 61)
    assert fused["c"] == pytest.approx(1 / 62)


def test_rrf_orders_by_score_with_stable_ties():
    fused = reciprocal_rank_fusion([["a", "b"], ["b", "a"]], k=60)
    # a and b tie; a was seen first
    assert [key for key, _ in fused] == ["a", "b"]


def test_rrf_counts_duplicates_once_per_list():
    fused = dict(reciprocal_rank_fusion([["a", "a", "b"]], k=0))
    assert fused["a"] == pytest.approx(1.0)
    assert fused["b"] == pytest.approx(1 / 3)


def test_rrf_rejects_negative_k():
    with pytest.raises(ValueError):
        reciprocal_rank_fusion([["a"]], k=-1)


@pytest.mark.parametrize("total", [0, 1, 4, 5, 6, 12, 100, 101])
@pytest.mark.parametrize("page_size", [1, 5, 7, 50])
def test_total_pages_invariant(total, page_size):
    expected = 1 if total == 0 else math.ceil(total / page_size)
    assert compute_total_pages(total, page_size) == expected


def test_page_normalisation():
    assert normalize_page(None) == 1
    assert normalize_page(0) == 1
    assert normalize_page("3") == 3
    assert normalize_page_size(0) == 1
    assert normalize_page_size(500) == 50
    assert normalize_page_size("abc", default=7) == 7


def test_generate_snippet_centres_on_tokens():
    content = "x" * 400 + " depositum skal settes inn på særskilt konto " + "y" * 400
    snippet = generate_snippet(content, ["depositum"])
    assert "depositum" in snippet
    assert snippet.startswith("…")
    assert snippet.endswith("…")


def test_generate_snippet_short_content_untouched():
    assert generate_snippet("Kort tekst", ["tekst"]) == "Kort tekst"
    assert generate_snippet("", ["tekst"]) == ""
