"""Injectable time and identifier sources.

Issuance reads the current time and mints identifiers in several places.
Both are passed in as strategy objects so tests can pin them.
"""

import uuid
from datetime import datetime, timezone


class Clock:
    """Source of the current time (UTC)."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(Clock):
    """Clock that always returns the same instant.

    Example:
        >>> clock = FixedClock(datetime(2024, 1, 1, tzinfo=timezone.utc))
        >>> clock.now().year
        2024
    """

    def __init__(self, instant: datetime) -> None:
        self.instant = instant

    def now(self) -> datetime:
        return self.instant


class IDGenerator:
    """Generates SAML identifiers.

    IDs must be valid XML NCNames, so they start with a letter: ``id-<hex>``.
    """

    def new_id(self) -> str:
        return f"id-{uuid.uuid4().hex}"


class SequenceIDGenerator(IDGenerator):
    """Deterministic generator producing ``<prefix>-1``, ``<prefix>-2``, ..."""

    def __init__(self, prefix: str = "id") -> None:
        self.prefix = prefix
        self._counter = 0

    def new_id(self) -> str:
        self._counter += 1
        return f"{self.prefix}-{self._counter}"
