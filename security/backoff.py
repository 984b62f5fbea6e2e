from datetime import timedelta

DEFAULT_MULTIPLIER = 2.0
DEFAULT_MAX_BACKOFF = timedelta(hours=2)


def violation_count(attempts: int, max_attempts: int) -> int:
    """
    How many times the bucket has been exhausted: floor(attempts / max_attempts).
    """
    return attempts // max_attempts


def backoff_duration(count: int, base: timedelta,
                     multiplier: float = DEFAULT_MULTIPLIER,
                     cap: timedelta = DEFAULT_MAX_BACKOFF) -> timedelta:
    """
    Cooldown for the given violation count: base * multiplier^(count - 1),
    never longer than cap. count == 0 returns base unchanged.
    """
    if count <= 0:
        return base

    cap_seconds = cap.total_seconds()
    try:
        seconds = base.total_seconds() * multiplier ** (count - 1)
    except OverflowError:
        return cap

    return timedelta(seconds=min(seconds, cap_seconds))
