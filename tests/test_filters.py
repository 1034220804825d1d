"""Tests for filter inference."""

from datetime import date

from lovassist.filters import (
    apply_default_year,
    infer_filters,
    infer_law_type,
    infer_ministry,
    infer_year,
    merge_filters,
    normalize_law_type,
)
from lovassist.types import SearchFilters


def test_infer_law_type_prefers_forskrift_over_lov():
    assert infer_law_type("Forskrift til lov om personvern") == "Forskrift"
    assert infer_law_type("Hva sier loven om oppsigelse?") == "Lov"
    assert infer_law_type("vedtaket fra kommunen") == "Vedtak"
    assert infer_law_type("oppsigelsesvern") is None


def test_infer_law_type_ignores_compound_words():
    # "lovlig" is not a reference to a law
    assert infer_law_type("er det lovlig å fremleie") is None


def test_infer_year():
    assert infer_year("endringer i år: 2019 og 2021") == 2019
    assert infer_year("forskrift fra 2021") == 2021
    assert infer_year("paragraf 1234") is None


def test_infer_ministry():
    assert infer_ministry("forskrift fra Finansdepartementet") == "Finansdepartementet"
    assert infer_ministry("arbeids- og sosialdepartementet sine regler") == "Arbeids- og sosialdepartementet"
    assert infer_ministry("noe helt annet") is None


def test_infer_filters_combines_fields():
    filters = infer_filters("Forskrift fra Finansdepartementet 2020")
    assert filters == SearchFilters(year=2020, law_type="Forskrift", ministry="Finansdepartementet")


def test_normalize_law_type():
    assert normalize_law_type("forskrift") == "Forskrift"
    assert normalize_law_type(" LOV ") == "Lov"
    assert normalize_law_type("Rundskriv") is None
    assert normalize_law_type(None) is None


def test_merge_filters_explicit_wins():
    merged = merge_filters(SearchFilters(year=2001), SearchFilters(year=1999, ministry="Finansdepartementet"))
    assert merged.year == 2001
    assert merged.ministry == "Finansdepartementet"


def test_apply_default_year_only_for_lov_forskrift_or_untyped():
    today = date(2026, 1, 15)
    assert apply_default_year(SearchFilters(), 5, today).min_year == 2021
    assert apply_default_year(SearchFilters(law_type="Forskrift"), 5, today).min_year == 2021
    assert apply_default_year(SearchFilters(law_type="Vedtak"), 5, today).min_year is None
    assert apply_default_year(SearchFilters(year=1990), 5, today).min_year is None
