from datetime import date, datetime, timedelta
from typing import Optional, Union
from dateutil import parser as dtparser, tz

from .config import settings
from .errors import ValidationFailed

PLANT_TZ = tz.gettz(settings.TZ)

def plant_today() -> date:
    return datetime.now(PLANT_TZ).date()

def to_day(value: Union[str, date, datetime, None], field: str = "date") -> date:
    """Normalize a date-ish value to a calendar day; time of day is dropped."""
    if value is None or value == "":
        return plant_today()
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(PLANT_TZ)
        return value.date()
    if isinstance(value, date):
        return value
    try:
        dt = dtparser.parse(str(value).strip(), yearfirst=True, dayfirst=False)
    except (ValueError, OverflowError):
        raise ValidationFailed(f"Invalid {field}", errors=[{"field": field, "message": f"cannot parse {value!r}"}])
    if dt.tzinfo is not None:
        dt = dt.astimezone(PLANT_TZ)
    return dt.date()

def date_range(start: Optional[str], end: Optional[str], days: int):
    """Inclusive (start, end) days; start defaults to `days` before end."""
    end_day = to_day(end, "endDate")
    start_day = to_day(start, "startDate") if start else end_day - timedelta(days=days)
    if start_day > end_day:
        raise ValidationFailed("startDate must not be after endDate",
                               errors=[{"field": "startDate", "message": "after endDate"}])
    return start_day, end_day
