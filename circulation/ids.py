"""
Identifier generation.

Records are keyed by a one-letter prefix and a zero-padded sequence
(B001, U001, T001). Counters are seeded from the highest identifier already
present in the store, so a restarted engine never reissues an identifier.
"""

import re
from typing import Iterable

BOOK_PREFIX = "B"
MEMBER_PREFIX = "U"
TRANSACTION_PREFIX = "T"

_ID_PATTERN = re.compile(r"^([A-Za-z]*)(\d+)$")


def id_sort_key(record_id: str) -> tuple[str, int, str]:
    """Natural order: B2 sorts before B10. Unparseable ids sort last."""
    match = _ID_PATTERN.match(record_id)
    if match is None:
        return (record_id, 1 << 62, record_id)
    return (match.group(1), int(match.group(2)), record_id)


class IdGenerator:
    """Sequential identifiers for one record type."""

    def __init__(self, prefix: str, width: int = 3):
        self.prefix = prefix
        self.width = width
        self._last = 0

    def observe(self, record_id: str) -> None:
        """Advance the counter past an identifier seen in the store."""
        match = _ID_PATTERN.match(record_id)
        if match and match.group(1) == self.prefix:
            self._last = max(self._last, int(match.group(2)))

    def observe_all(self, record_ids: Iterable[str]) -> None:
        for record_id in record_ids:
            self.observe(record_id)

    def next(self) -> str:
        self._last += 1
        return f"{self.prefix}{self._last:0{self.width}d}"

    @property
    def last(self) -> int:
        return self._last
