from datetime import datetime, timezone


def utcnow() -> datetime:
    """
    Naive UTC timestamp, matching how DateTime columns are stored.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def isoformat_z(value: datetime) -> str:
    return value.isoformat(timespec="milliseconds") + "Z"
