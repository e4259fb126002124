"""
Background template selection.

A user always gets the same card background: the template index is the sum
of the identifier's character codes modulo the number of templates. Character
codes are UTF-16 code units, which is what the browser front end sums, so an
emoji counts as its two surrogate halves on both sides.
"""

from typing import List, Optional, Sequence

DEFAULT_TEMPLATE_COUNT = 5
TEMPLATE_NAME_FORMAT = "template-{index:02d}.png"


def template_names_for(count: int = DEFAULT_TEMPLATE_COUNT) -> List[str]:
    """template-01.png ... template-NN.png"""
    if count < 1:
        raise ValueError(f"Template count must be >= 1, got {count}")
    return [TEMPLATE_NAME_FORMAT.format(index=i) for i in range(1, count + 1)]


def identifier_score(identifier: str) -> int:
    """Sum of the UTF-16 code units of identifier."""
    encoded = identifier.encode("utf-16-le")
    return sum(
        int.from_bytes(encoded[i:i + 2], "little")
        for i in range(0, len(encoded), 2)
    )


def select_template_index(identifier: Optional[str], template_count: int) -> int:
    if template_count < 1:
        raise ValueError(f"Template count must be >= 1, got {template_count}")
    if not identifier:
        return 0
    return identifier_score(identifier) % template_count


def select_template(identifier: Optional[str], template_names: Sequence[str]) -> str:
    """Pick the template name for an identifier (first template when absent)."""
    return template_names[select_template_index(identifier, len(template_names))]
