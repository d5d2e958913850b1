"""
Cost and date arithmetic plus shaping of document-store rows.

Both backends compute rental days and costs with the same rules; the helpers
here are the in-process versions of what the relational backend does in SQL.
"""
import math
import threading
import time
from datetime import date, datetime
from typing import Optional, Union

DateLike = Union[date, datetime, str, None]

_booking_id_lock = threading.Lock()
_last_booking_millis = 0


def as_number(value, default: float = 0.0) -> float:
    """Parse a value to float, returning default if parsing fails or it is not finite."""
    if value is None or isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (ValueError, TypeError):
        return default
    if not math.isfinite(number):
        return default
    return number


def parse_calendar_date(value: DateLike) -> Optional[date]:
    """
    Parse a calendar date, ignoring any time of day.

    Accepts date/datetime objects and ISO strings ("2024-01-01" or
    "2024-01-01T10:00:00Z"). Returns None for anything else.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value:
        return None
    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError:
        return None


def rental_days(start: DateLike, end: DateLike) -> int:
    """
    Whole days between start and end, never less than 1.

    Same-day and reversed ranges count as one day, as do unparsable dates.
    """
    start_date = parse_calendar_date(start)
    end_date = parse_calendar_date(end)
    if start_date is None or end_date is None:
        return 1
    return max((end_date - start_date).days, 1)


def booking_costs(start: DateLike, end: DateLike, costs_per_day, services) -> dict:
    """Days, base cost, extras cost and total for a booking and its service snapshots."""
    days = rental_days(start, end)
    base_cost = days * as_number(costs_per_day)
    extras_cost = sum(as_number(service.get("costs")) for service in services or [])
    return {
        "days": days,
        "base_cost": base_cost,
        "extras_cost": extras_cost,
        "total_cost": base_cost + extras_cost,
    }


def new_booking_id() -> str:
    """Booking identifier "b_<epoch millis>", strictly increasing within the process."""
    global _last_booking_millis
    with _booking_id_lock:
        millis = max(int(time.time() * 1000), _last_booking_millis + 1)
        _last_booking_millis = millis
    return f"b_{millis}"


def to_date_string(value: DateLike) -> Optional[str]:
    """ISO "YYYY-MM-DD" string for a date value (strings pass through)."""
    if value is None:
        return None
    if isinstance(value, (date, datetime)):
        return value.strftime("%Y-%m-%d")
    return str(value)


def service_snapshot(service: dict) -> dict:
    """Embedded copy of a `services` document inside a booking."""
    return {
        "service_id": service.get("_id"),
        "description": service.get("description"),
        "costs": service.get("costs"),
    }


def filter_service(service: dict) -> dict:
    """Shape an embedded service snapshot like a relational AdditionalService row."""
    return {
        "additional_service_id": service.get("service_id"),
        "description": service.get("description"),
        "costs": service.get("costs"),
    }


def filter_customer(person: dict) -> dict:
    """Shape a `persons` document with a customer role like a relational customer row."""
    roles = person.get("roles") or {}
    customer = roles.get("customer") or {}
    bank_account = person.get("bankAccount") or {}

    return {
        "person_id": person.get("_id"),
        "name": person.get("name"),
        "eMail": person.get("eMail"),
        "phone_number": person.get("phone_number"),
        "address": person.get("address"),
        "customer_number": customer.get("customer_number"),
        "driver_license_number": customer.get("driver_license_number"),
        "account_id": bank_account.get("account_id"),
        "iban": bank_account.get("iban"),
        "bic": bank_account.get("bic"),
    }


def filter_vehicle(vehicle: dict) -> dict:
    return {
        "vehicle_id": vehicle.get("_id"),
        "model": vehicle.get("model"),
        "producer": vehicle.get("producer"),
        "costs_per_day": as_number(vehicle.get("costs_per_day")),
        "plate_number": vehicle.get("plate_number"),
        "number_of_seats": vehicle.get("number_of_seats"),
    }
