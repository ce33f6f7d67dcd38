"""Search-and-replace engine for the edit_file tool.

``find_matches()`` locates every occurrence of the search text, either
exactly or, in fuzzy mode, with runs of whitespace treated as equal.
``replace_unique()`` applies an edit only when the search text occurs
exactly once, and ``diff_snippet()`` renders the change for the model.
"""

from __future__ import annotations

import difflib
import re

CONTEXT_LINES = 2

Span = tuple[int, int]


# ---------------------------------------------------------------------------
# Matchers
# ---------------------------------------------------------------------------


def _exact_spans(content: str, search: str) -> list[Span]:
    spans = []
    start = content.find(search)
    while start != -1:
        spans.append((start, start + len(search)))
        start = content.find(search, start + len(search))
    return spans


def _whitespace_spans(content: str, search: str) -> list[Span]:
    """Match the search tokens separated by any run of whitespace."""
    tokens = search.split()
    if not tokens:
        return []
    regex = re.compile(r"\s+".join(re.escape(t) for t in tokens))
    return [m.span() for m in regex.finditer(content)]


def find_matches(content: str, search: str, fuzzy: bool = False) -> list[Span]:
    """Return the (start, end) spans of every non-overlapping match.

    With ``fuzzy``, every whitespace-insensitive occurrence counts, including
    ones that also match exactly, so uniqueness is judged over the whole set.
    """
    if not search:
        return []
    if fuzzy:
        return _whitespace_spans(content, search)
    return _exact_spans(content, search)


def replace_unique(
    content: str, search: str, replacement: str, fuzzy: bool = False
) -> str:
    """Replace the single occurrence of ``search`` in ``content``.

    Raises ValueError:
      - "not found" when there is no match
      - "multiple matches: N" when the search text is ambiguous
    """
    spans = find_matches(content, search, fuzzy=fuzzy)
    if not spans:
        raise ValueError("not found")
    if len(spans) > 1:
        raise ValueError(f"multiple matches: {len(spans)}")
    start, end = spans[0]
    return content[:start] + replacement + content[end:]


# ---------------------------------------------------------------------------
# Diff rendering
# ---------------------------------------------------------------------------


def diff_snippet(old: str, new: str, context: int = CONTEXT_LINES) -> str:
    """Render changed lines with ``context`` lines around them.

    Unchanged lines are prefixed with two spaces, removed lines with ``-``
    and added lines with ``+``, each followed by its 1-based line number.
    """
    old_lines = old.split("\n")
    new_lines = new.split("\n")
    matcher = difflib.SequenceMatcher(None, old_lines, new_lines, autojunk=False)

    out: list[str] = []
    for group in matcher.get_grouped_opcodes(context):
        if out:
            out.append("...")
        for tag, i1, i2, j1, j2 in group:
            if tag == "equal":
                for n in range(i1, i2):
                    out.append(f"  {n + 1}: {old_lines[n]}")
                continue
            for n in range(i1, i2):
                out.append(f"- {n + 1}: {old_lines[n]}")
            for n in range(j1, j2):
                out.append(f"+ {n + 1}: {new_lines[n]}")
    return "\n".join(out)
