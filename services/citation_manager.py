# services/citation_manager.py
"""Citation marker parsing, renumbering and source-list construction.

Markers are KaTeX superscripts holding one or more bracket groups:

    marker := '$^{' group+ '}$'
    group  := '[' INT ']' | '[' INT DASH INT ']'
    DASH   := '-' | '–' | '—'

Whitespace is allowed around numbers and dashes. Anything else inside a
marker is kept verbatim. A '$^{...}$' span without a single valid group is
plain text.
"""
import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple, Union

from core.domain import CitationResult, RetrievalResult, SourceEntry
from config import settings
from utils.common import strip_extension

logger = logging.getLogger(settings.LOGGER_NAME)

MARKER_OPEN = "$^{"
MARKER_CLOSE = "}$"

_TOKEN_RE = re.compile(
    r"(?P<LBRACKET>\[)|(?P<RBRACKET>\])|(?P<NUMBER>\d+)|(?P<DASH>[-–—])|(?P<WS>\s+)|(?P<OTHER>.)",
    re.S,
)


# ============= Parse tree =============

@dataclass
class CitationGroup:
    """One bracket group; `last` is None for a single index."""
    first: int
    last: Optional[int]
    dash: str
    raw: str

    def indices(self) -> List[int]:
        if self.last is None:
            return [self.first]
        step = 1 if self.last >= self.first else -1
        return list(range(self.first, self.last + step, step))


Segment = Union[str, CitationGroup]


@dataclass
class CitationMarker:
    start: int  # span of the whole marker in the source text
    end: int
    segments: List[Segment]

    @property
    def groups(self) -> List[CitationGroup]:
        return [s for s in self.segments if isinstance(s, CitationGroup)]


# ============= Tokenizer / parser =============

def tokenize(body: str) -> List[Tuple[str, str]]:
    return [(m.lastgroup, m.group()) for m in _TOKEN_RE.finditer(body)]


def _parse_group(tokens: List[Tuple[str, str]], i: int) -> Tuple[Optional[CitationGroup], int]:
    """Try to read a group starting at tokens[i] == '['. Returns (group, next index)."""
    start = i
    n = len(tokens)

    def skip_ws(j: int) -> int:
        while j < n and tokens[j][0] == "WS":
            j += 1
        return j

    j = skip_ws(i + 1)
    if j >= n or tokens[j][0] != "NUMBER":
        return None, start
    first = int(tokens[j][1])
    j = skip_ws(j + 1)

    last: Optional[int] = None
    dash = "-"
    if j < n and tokens[j][0] == "DASH":
        dash = tokens[j][1]
        j = skip_ws(j + 1)
        if j >= n or tokens[j][0] != "NUMBER":
            return None, start
        last = int(tokens[j][1])
        j = skip_ws(j + 1)

    if j >= n or tokens[j][0] != "RBRACKET":
        return None, start
    raw = "".join(value for _, value in tokens[start:j + 1])
    return CitationGroup(first=first, last=last, dash=dash, raw=raw), j + 1


def parse_marker_body(body: str) -> List[Segment]:
    tokens = tokenize(body)
    segments: List[Segment] = []
    text_run: List[str] = []
    i = 0
    while i < len(tokens):
        kind, value = tokens[i]
        if kind == "LBRACKET":
            group, nxt = _parse_group(tokens, i)
            if group is not None:
                if text_run:
                    segments.append("".join(text_run))
                    text_run = []
                segments.append(group)
                i = nxt
                continue
        text_run.append(value)
        i += 1
    if text_run:
        segments.append("".join(text_run))
    return segments


def find_markers(text: str) -> List[CitationMarker]:
    """All well-formed markers, in order of appearance."""
    markers: List[CitationMarker] = []
    pos = 0
    while True:
        start = text.find(MARKER_OPEN, pos)
        if start < 0:
            break
        body_start = start + len(MARKER_OPEN)
        close = text.find("}", body_start)
        if close < 0:
            break
        if text.startswith(MARKER_CLOSE, close):
            segments = parse_marker_body(text[body_start:close])
            if any(isinstance(s, CitationGroup) for s in segments):
                end = close + len(MARKER_CLOSE)
                markers.append(CitationMarker(start=start, end=end, segments=segments))
                pos = end
                continue
        pos = body_start
    return markers


# ============= Extraction and renumbering =============

def _in_range_indices(group: CitationGroup, count: int) -> List[int]:
    """Indices of a group inside [1, count], in group order, without expanding huge ranges."""
    if group.last is None:
        return [group.first] if 1 <= group.first <= count else []
    lo, hi = max(1, min(group.first, group.last)), min(count, max(group.first, group.last))
    if lo > hi:
        return []
    ascending = list(range(lo, hi + 1))
    return ascending if group.last >= group.first else ascending[::-1]


def extract_citation_order(text: str, count: int) -> List[int]:
    """Cited indices in first-appearance order, deduplicated, limited to [1, count]."""
    order: List[int] = []
    seen = set()
    for marker in find_markers(text):
        for group in marker.groups:
            for idx in _in_range_indices(group, count):
                if idx not in seen:
                    seen.add(idx)
                    order.append(idx)
    return order


def _render_span(a: int, b: int, dash: str) -> str:
    return f"[{a}]" if a == b else f"[{a}{dash}{b}]"


def _rewrite_group(group: CitationGroup, mapping: Dict[int, int], count: int) -> str:
    if group.last is None:
        new = mapping.get(group.first)
        return group.raw if new is None else f"[{new}]"

    inside = _in_range_indices(group, count)
    if not inside:
        return group.raw

    ascending = group.last >= group.first
    step = 1 if ascending else -1
    # Out-of-range pieces keep their original numbers on either side
    before = (group.first, inside[0] - step) if inside[0] != group.first else None
    after = (inside[-1] + step, group.last) if inside[-1] != group.last else None

    mapped = [mapping[i] for i in inside]
    # A contiguous run in either direction stays a range, written in citation order
    diffs = {mapped[k + 1] - mapped[k] for k in range(len(mapped) - 1)}
    if diffs in (set(), {1}, {-1}):
        middle = _render_span(mapped[0], mapped[-1], group.dash)
    else:
        middle = "".join(f"[{m}]" for m in mapped)

    pieces = []
    if before:
        pieces.append(_render_span(before[0], before[1], group.dash))
    pieces.append(middle)
    if after:
        pieces.append(_render_span(after[0], after[1], group.dash))
    return "".join(pieces)


def renumber_citations(text: str, mapping: Dict[int, int], count: int) -> str:
    markers = find_markers(text)
    if not markers:
        return text
    out: List[str] = []
    pos = 0
    for marker in markers:
        out.append(text[pos:marker.start])
        out.append(MARKER_OPEN)
        for segment in marker.segments:
            if isinstance(segment, CitationGroup):
                out.append(_rewrite_group(segment, mapping, count))
            else:
                out.append(segment)
        out.append(MARKER_CLOSE)
        pos = marker.end
    out.append(text[pos:])
    return "".join(out)


class CitationManager:
    """Renumbers cited indices by first appearance and builds the source list."""

    def __init__(self, preview_chars: int = settings.SOURCE_PREVIEW_CHARS):
        self.preview_chars = preview_chars

    def _source_entry(self, number: int, original_index: int, result: RetrievalResult) -> SourceEntry:
        title = strip_extension(result.source_label) or f"Source {original_index}"
        return SourceEntry(
            number=number,
            original_index=original_index,
            title=title,
            preview=(result.snippet or "")[:self.preview_chars],
            score=result.score,
        )

    def extract_and_renumber(self, answer_text: str, results: Sequence[RetrievalResult]) -> CitationResult:
        """
        Returns the text with contiguous citation numbers and one SourceEntry
        per cited result. Any failure leaves the text untouched with no sources.
        """
        if not answer_text or not results:
            return CitationResult(final_text=answer_text or "", sources=[])
        try:
            count = len(results)
            order = extract_citation_order(answer_text, count)
            if not order:
                return CitationResult(final_text=answer_text, sources=[])
            mapping = {orig: new for new, orig in enumerate(order, start=1)}
            final_text = renumber_citations(answer_text, mapping, count)
            sources = [self._source_entry(mapping[idx], idx, results[idx - 1]) for idx in order]
            return CitationResult(final_text=final_text, sources=sources)
        except Exception as e:
            logger.error(f"Citation processing failed, returning answer without sources: {e}",
                         exc_info=True)
            return CitationResult(final_text=answer_text, sources=[])

    @staticmethod
    def format_sources(sources: Sequence[SourceEntry]) -> List[str]:
        return [f"[{s.number}] {s.title}: {s.preview}…" for s in sources]
