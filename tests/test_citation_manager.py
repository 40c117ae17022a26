"""
Tests for citation parsing, renumbering and source lists
"""

from unittest.mock import patch

import pytest

from core.domain import RetrievalResult
from services.citation_manager import (
    CitationManager, extract_citation_order, find_markers, renumber_citations,
)


def _results(n):
    return [
        RetrievalResult(snippet=f"snippet number {i} " + "z" * 100,
                        source_label=f"source{i}.pdf", score=1.0 - i / 10)
        for i in range(1, n + 1)
    ]


class TestParsing:

    def test_finds_marker_groups(self):
        markers = find_markers("A $^{[1][2-4]}$ B")

        assert len(markers) == 1
        groups = markers[0].groups
        assert [(g.first, g.last) for g in groups] == [(1, None), (2, 4)]

    def test_ignores_malformed_markers(self):
        assert find_markers("cost is $^{x}$ and [1] and $^{[1]") == []

    @pytest.mark.parametrize("dash", ["-", "–", "—"])
    def test_dash_variants(self, dash):
        assert extract_citation_order(f"x $^{{[1{dash}3]}}$", 5) == [1, 2, 3]

    def test_whitespace_inside_groups(self):
        assert extract_citation_order("x $^{[ 2 ][ 3 - 4 ]}$", 5) == [2, 3, 4]


class TestExtractCitationOrder:

    def test_first_appearance_order_deduplicated(self):
        text = "a $^{[3]}$ b $^{[1][3]}$ c $^{[2]}$ d $^{[1]}$"
        assert extract_citation_order(text, 5) == [3, 1, 2]

    def test_descending_range(self):
        assert extract_citation_order("a $^{[4-2]}$", 5) == [4, 3, 2]

    def test_out_of_range_discarded(self):
        assert extract_citation_order("a $^{[0][7][2]}$", 5) == [2]

    def test_huge_range_is_bounded(self):
        assert extract_citation_order("a $^{[1-1000000000]}$", 3) == [1, 2, 3]

    def test_no_markers(self):
        assert extract_citation_order("plain [1] text", 5) == []


class TestRenumbering:

    def test_single_indices(self):
        text = "a $^{[4]}$ b $^{[2][4]}$"
        assert renumber_citations(text, {4: 1, 2: 2}, 5) == "a $^{[1]}$ b $^{[2][1]}$"

    def test_contiguous_range_stays_range(self):
        assert renumber_citations("a $^{[3-5]}$", {3: 1, 4: 2, 5: 3}, 5) == "a $^{[1-3]}$"

    def test_non_contiguous_range_expands(self):
        mapping = {2: 1, 3: 3, 4: 2}
        assert renumber_citations("a $^{[2-4]}$", mapping, 5) == "a $^{[1][3][2]}$"

    def test_descending_range_mapped_to_ascending_run_stays_range(self):
        mapping = {5: 1, 3: 2, 2: 3, 1: 4}
        assert renumber_citations("a $^{[5]}$ b $^{[3-1]}$", mapping, 5) == "a $^{[1]}$ b $^{[2-4]}$"

    def test_range_mapped_to_descending_run_stays_range(self):
        mapping = {4: 1, 3: 2, 2: 3}
        assert renumber_citations("a $^{[4]}$ b $^{[2-4]}$", mapping, 5) == "a $^{[1]}$ b $^{[3-1]}$"

    def test_unmapped_index_left_alone(self):
        assert renumber_citations("a $^{[9]}$", {}, 5) == "a $^{[9]}$"

    def test_range_crossing_upper_bound(self):
        assert renumber_citations("a $^{[4-7]}$", {4: 1, 5: 2}, 5) == "a $^{[1-2][6-7]}$"

    def test_other_text_untouched(self):
        text = "Heat $x^{2}$ then $^{[3]}$ done."
        assert renumber_citations(text, {3: 1}, 5) == "Heat $x^{2}$ then $^{[1]}$ done."


class TestCitationManager:
    """Tests for CitationManager.extract_and_renumber"""

    @pytest.fixture
    def manager(self):
        return CitationManager(preview_chars=80)

    def test_markovnikov_scenario(self, manager):
        answer = (
            "HBr adds to propene so that H goes to the less substituted carbon$^{[2]}$. "
            "The secondary carbocation is more stable$^{[5]}$, giving 2-bromopropane$^{[2][5]}$."
        )

        result = manager.extract_and_renumber(answer, _results(5))

        assert "$^{[1]}$" in result.final_text
        assert "$^{[2]}$" in result.final_text
        assert "$^{[1][2]}$" in result.final_text
        assert "[5]" not in result.final_text
        assert len(result.sources) == 2
        first, second = result.sources
        assert (first.number, first.original_index) == (1, 2)
        assert (second.number, second.original_index) == (2, 5)
        assert first.title == "source2"
        assert first.preview == _results(5)[1].snippet[:80]

    def test_renumbering_is_idempotent(self, manager):
        answer = "a $^{[4]}$ b $^{[2-3]}$ c $^{[5][1]}$ d $^{[3-1]}$ e $^{[4-7]}$"
        results = _results(5)

        once = manager.extract_and_renumber(answer, results).final_text
        twice = manager.extract_and_renumber(once, results).final_text

        assert twice == once

    @pytest.mark.parametrize("answer, n_results", [
        ("a $^{[4]}$ b $^{[2-3]}$ c $^{[5][1]}$ d $^{[3-1]}$ e $^{[4-7]}$", 5),
        ("a $^{[5]}$ b $^{[3-1]}$", 5),
        ("a $^{[6]}$ b $^{[2]}$ c $^{[5-9]}$", 7),
        ("a $^{[3]}$ b $^{[3][1]}$", 4),
    ])
    def test_renumbered_text_cites_one_to_n_in_order(self, manager, answer, n_results):
        result = manager.extract_and_renumber(answer, _results(n_results))
        n = len(result.sources)

        assert n > 0
        assert extract_citation_order(result.final_text, n) == list(range(1, n + 1))
        assert [s.number for s in result.sources] == list(range(1, n + 1))

    def test_descending_range_renumbered_as_range(self, manager):
        result = manager.extract_and_renumber("a $^{[5]}$ b $^{[3-1]}$", _results(5))

        assert result.final_text == "a $^{[1]}$ b $^{[2-4]}$"
        assert [s.original_index for s in result.sources] == [5, 3, 2, 1]

    def test_no_markers_returns_text_unchanged(self, manager):
        result = manager.extract_and_renumber("No citations here.", _results(3))

        assert result.final_text == "No citations here."
        assert result.sources == []

    def test_no_results(self, manager):
        result = manager.extract_and_renumber("a $^{[1]}$", [])

        assert result.final_text == "a $^{[1]}$"
        assert result.sources == []

    def test_failure_yields_no_sources(self, manager):
        with patch("services.citation_manager.renumber_citations", side_effect=RuntimeError("boom")):
            result = manager.extract_and_renumber("a $^{[1]}$", _results(2))

        assert result.final_text == "a $^{[1]}$"
        assert result.sources == []

    def test_title_strips_extension_and_falls_back(self, manager):
        results = [RetrievalResult(snippet="s", source_label="", score=0.5)]

        result = manager.extract_and_renumber("a $^{[1]}$", results)

        assert result.sources[0].title == "Source 1"

    def test_format_sources(self, manager):
        result = manager.extract_and_renumber("a $^{[2]}$", _results(2))

        lines = CitationManager.format_sources(result.sources)

        assert lines == [f"[1] source2: {_results(2)[1].snippet[:80]}…"]
