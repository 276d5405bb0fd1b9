"""
Utility Functions
=================

Common utilities used across the PhotoVibe recommendation pipeline.
"""

from typing import Iterable, Iterator, List, Optional, Sequence, TypeVar, Union

T = TypeVar("T")

_BASE62 = set("0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz")


def chunked(items: Sequence[T], batch_size: int) -> Iterator[List[T]]:
    """
    Split items into consecutive batches.

    Args:
        items: Items to split
        batch_size: Maximum size of each batch

    Yields:
        Lists of at most batch_size items, in order
    """
    if batch_size <= 0:
        raise ValueError("batch_size must be positive")

    for i in range(0, len(items), batch_size):
        yield list(items[i:i + batch_size])


def unique_in_order(items: Iterable[str]) -> List[str]:
    """Drop repeated and empty values, keeping the first occurrence."""
    seen = set()
    result = []
    for item in items:
        if item and item not in seen:
            seen.add(item)
            result.append(item)
    return result


def validate_track_id(track_id: str) -> bool:
    """
    Validate Spotify track ID format.

    Args:
        track_id: Track ID to validate

    Returns:
        True if valid format
    """
    if not track_id:
        return False

    # Spotify IDs are 22 characters, base62
    if len(track_id) != 22:
        return False

    return all(c in _BASE62 for c in track_id)


def parse_decade(era: Union[str, int, None]) -> Optional[int]:
    """
    Parse a decade label such as "2010s" (or a bare year such as 2010) into 2010.

    Returns None when the label is empty or not numeric.
    """
    if isinstance(era, bool) or not era:
        return None
    if isinstance(era, int):
        return era - era % 10

    label = str(era).strip()
    if label.endswith("s"):
        label = label[:-1]

    try:
        return int(label)
    except ValueError:
        return None


def decade_of(year: Optional[int]) -> Optional[int]:
    """Decade bucket of a year (2015 -> 2010); None for unknown years."""
    if not year:
        return None
    return (int(year) // 10) * 10


def parse_release_year(release_date: Optional[str]) -> Optional[int]:
    """Year from a Spotify release date ("2015-03-01", "2015-03" or "2015")."""
    if not release_date:
        return None
    try:
        return int(str(release_date).split("-")[0])
    except ValueError:
        return None


def tag_match_ratio(target_tags: Sequence[str], track_tags: Iterable[str]) -> Optional[float]:
    """
    Fraction of target tags that fuzzy-match any track tag.

    Matching is case-insensitive substring containment in either direction,
    so "monsoon" matches "monsoon melody" and "indie folk" matches "folk".

    Returns:
        Ratio in [0, 1], or None when there are no target tags
    """
    targets = [t.lower() for t in target_tags if t]
    if not targets:
        return None

    candidates = [t.lower() for t in track_tags if t]
    matches = sum(
        1 for target in targets
        if any(target in tag or tag in target for tag in candidates)
    )
    return matches / len(targets)
