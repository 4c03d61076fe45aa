"""Parse operator selections such as ``all`` or ``1,3`` against a listing."""
from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

ALL_KEYWORD = "all"


@dataclass(slots=True)
class Selection:
    """Names chosen by the operator plus the tokens that could not be used."""

    names: list[str] = field(default_factory=list)
    invalid: list[str] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not self.names

    def warnings(self) -> list[str]:
        """Return one warning per rejected token."""
        return [f"Invalid selection: {token}" for token in self.invalid]


def parse_position(token: str) -> int | None:
    """Return *token* as a positive integer, or ``None`` when it is not one.

    Only ASCII digits count; ``"²".isdigit()`` is true but ``int`` rejects it.
    """
    text = token.strip()
    if not (text.isascii() and text.isdigit()):
        return None
    value = int(text)
    return value if value > 0 else None


def parse_selection(raw: str, instances: Sequence[str]) -> Selection:
    """Resolve *raw* against the 1-based positions of *instances*.

    ``all`` selects every instance. Otherwise the input is a comma separated
    list of positions; whitespace is ignored, repeated positions collapse and
    anything non-numeric or out of range is reported in ``invalid``.

    >>> parse_selection("2, 1,2,x", ["a", "b"]).names
    ['b', 'a']
    """
    selection = Selection()
    text = raw.strip()
    if not text:
        return selection
    if text.lower() == ALL_KEYWORD:
        selection.names.extend(instances)
        return selection

    for token in text.split(","):
        token = token.strip()
        if not token:
            continue
        position = parse_position(token)
        if position is None or position > len(instances):
            selection.invalid.append(token)
            continue
        name = instances[position - 1]
        if name not in selection.names:
            selection.names.append(name)
    return selection


__all__ = ["ALL_KEYWORD", "Selection", "parse_position", "parse_selection"]
