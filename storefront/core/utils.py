from datetime import datetime, timezone

def now_utc() -> datetime:
    # naive UTC, matching what DateTime() columns hand back
    return datetime.now(timezone.utc).replace(tzinfo=None)

def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
