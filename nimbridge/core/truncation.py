"""Tiered, message-count based truncation of conversation histories."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Sequence, TypeVar

from .exceptions import ConfigurationError

logger = logging.getLogger("nimbridge")

T = TypeVar("T")


@dataclass(frozen=True)
class TruncationTier:
    """Bucket of history lengths and how much of such a history survives.

    ``keep_first`` leading messages (persona / setting) and
    ``keep - keep_first`` trailing messages are preserved; the middle goes.
    """

    threshold: float
    keep: int
    keep_first: int = 0

    def __post_init__(self) -> None:
        if self.keep < 0 or self.keep_first < 0:
            raise ConfigurationError("truncation tier counts must be non-negative")
        if self.keep_first > self.keep:
            raise ConfigurationError(
                f"truncation tier keep_first ({self.keep_first}) exceeds keep ({self.keep})"
            )


DEFAULT_TIERS: tuple[TruncationTier, ...] = (
    TruncationTier(threshold=100, keep=100, keep_first=0),
    TruncationTier(threshold=300, keep=120, keep_first=10),
    TruncationTier(threshold=1000, keep=150, keep_first=15),
    TruncationTier(threshold=math.inf, keep=200, keep_first=20),
)


def validate_tiers(tiers: Sequence[TruncationTier]) -> tuple[TruncationTier, ...]:
    """Check that a tier table is usable and return it as a tuple."""
    if not tiers:
        raise ConfigurationError("truncation tier table is empty")
    previous = -math.inf
    for tier in tiers:
        if tier.threshold <= previous:
            raise ConfigurationError("truncation tier thresholds must be ascending")
        previous = tier.threshold
    if not math.isinf(tiers[-1].threshold):
        raise ConfigurationError("last truncation tier must have an infinite threshold")
    return tuple(tiers)


def parse_tiers(entries: Iterable[Mapping[str, Any]]) -> tuple[TruncationTier, ...]:
    """Build a tier table from config entries.

    A missing or null ``threshold`` means "no upper bound".
    """
    tiers: list[TruncationTier] = []
    for entry in entries:
        if not isinstance(entry, Mapping):
            raise ConfigurationError(f"invalid truncation tier entry: {entry!r}")
        raw_threshold = entry.get("threshold")
        try:
            threshold = math.inf if raw_threshold in (None, "inf") else float(raw_threshold)
            keep = int(entry["keep"])
            keep_first = int(entry.get("keep_first", 0))
        except (KeyError, TypeError, ValueError) as exc:
            raise ConfigurationError(f"invalid truncation tier entry: {entry!r}") from exc
        tiers.append(TruncationTier(threshold=threshold, keep=keep, keep_first=keep_first))
    return validate_tiers(tiers)


def select_tier(
    length: int, tiers: Sequence[TruncationTier] = DEFAULT_TIERS
) -> TruncationTier:
    """Return the first tier whose threshold strictly exceeds ``length``."""
    for tier in tiers:
        if length < tier.threshold:
            return tier
    return tiers[-1]


def truncate_messages(
    history: Sequence[T], tiers: Sequence[TruncationTier] = DEFAULT_TIERS
) -> list[T]:
    """Drop a contiguous middle slice of ``history`` when it is too long.

    Histories no longer than the selected tier's ``keep`` come back unchanged.
    The input sequence is never mutated.
    """
    length = len(history)
    tier = select_tier(length, tiers)
    if length <= tier.keep:
        return list(history)

    tail_count = tier.keep - tier.keep_first
    head = list(history[: tier.keep_first])
    tail = list(history[length - tail_count:]) if tail_count else []
    logger.info(
        "Truncated history from %d to %d messages (first %d + last %d)",
        length,
        len(head) + len(tail),
        len(head),
        len(tail),
    )
    return head + tail
