"""Reasoning extraction for models that think inside XML-style tags.

Reasoning models emit their chain of thought inline, e.g.
``<think>...</think>The answer is 4.`` The tagged sections are split out so
the visible text stays clean and the reasoning can be stored separately.
"""

from __future__ import annotations

import re
from functools import lru_cache


@lru_cache(maxsize=8)
def _tag_pattern(tag: str) -> re.Pattern[str]:
    return re.compile(rf"<{tag}>(.*?)</{tag}>", re.DOTALL)


def extract_reasoning(text: str, tag: str = "think", separator: str = "\n") -> tuple[str | None, str]:
    """Split ``text`` into (reasoning, visible_text).

    All ``<tag>...</tag>`` sections are joined into the reasoning; the text
    around them is joined into the visible text. Returns ``(None, text)``
    when there is no tagged section.
    """
    pattern = _tag_pattern(tag)
    sections = [s.strip() for s in pattern.findall(text)]
    if not sections:
        return None, text

    # re.split keeps captured groups at odd indices
    outside = pattern.split(text)[::2]
    visible = separator.join(piece.strip() for piece in outside if piece.strip())
    reasoning = separator.join(s for s in sections if s)
    return reasoning or None, visible
