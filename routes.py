"""
API routes/endpoints for the application.

Each handler receives the store resolved for its request and converts
failures into HTTP errors: RentalError keeps its status and message,
anything else becomes a 500 with a fixed message naming the backend.
"""
import logging
from datetime import date
from typing import Optional

from fastapi import HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import async_sessionmaker

import seed
from data_processor import parse_calendar_date
from db_operations import TABLE_ALLOWLIST, fetch_table_rows
from errors import RentalError
from migration import migrate_to_document_store
from schemas import BookingIn, ServicesIn
from store import BackendMode, BackendSelector, RentalStore

logger = logging.getLogger(__name__)


def _to_http_error(error: Exception, store: Optional[RentalStore], message: str) -> HTTPException:
    if isinstance(error, RentalError):
        return HTTPException(status_code=error.status_code, detail=error.message)
    detail = store.error_message(message) if store else message
    logger.error(f"{detail}: {type(error).__name__}: {str(error)}")
    return HTTPException(status_code=500, detail=detail)


def _parse_date(value: Optional[str]) -> Optional[date]:
    """Optional "YYYY-MM-DD" query value; 400 when present but malformed."""
    if not value:
        return None
    parsed = parse_calendar_date(value)
    if parsed is None:
        raise HTTPException(status_code=400, detail="Invalid date")
    return parsed


# Use case 1: vehicle reservation

async def get_customers_route(store: RentalStore):
    try:
        customers = await store.list_customers(require_bank_account=False)
    except Exception as e:
        raise _to_http_error(e, store, "No chance to get customer data") from e
    return {"customers": customers}


async def get_vehicles_route(store: RentalStore, start: Optional[str], end: Optional[str]):
    if not start or not end:
        raise HTTPException(status_code=400, detail="Missing dates")
    start_date, end_date = _parse_date(start), _parse_date(end)

    logger.info(f"Vehicle availability request - start: {start}, end: {end}, backend: {store.mode.value}")
    try:
        vehicles = await store.find_available_vehicles(start_date, end_date)
    except Exception as e:
        raise _to_http_error(e, store, "Failed to load vehicles") from e
    return {"vehicles": vehicles}


async def create_booking_route(store: RentalStore, payload: BookingIn):
    if not payload.vehicleId or not payload.startDate or not payload.endDate or not payload.wayOfBilling:
        raise HTTPException(status_code=400, detail="Missing fields")
    start_date, end_date = _parse_date(payload.startDate), _parse_date(payload.endDate)

    try:
        result = await store.create_booking(
            vehicle_id=payload.vehicleId,
            start_date=start_date,
            end_date=end_date,
            way_of_billing=payload.wayOfBilling,
            customer_id=payload.customerId,
        )
    except Exception as e:
        raise _to_http_error(e, store, "Failed to create booking") from e
    return {"ok": True, **result}


async def vehicle_report_route(
    store: RentalStore,
    date_from: Optional[str],
    date_to: Optional[str],
    vehicle_id: Optional[int],
):
    parsed_from, parsed_to = _parse_date(date_from), _parse_date(date_to)
    try:
        report = await store.report_by_vehicle(parsed_from, parsed_to, vehicle_id)
    except Exception as e:
        raise _to_http_error(e, store, "database error") from e
    return {"report": report}


# Use case 2: additional services

async def get_bank_customers_route(store: RentalStore):
    try:
        customers = await store.list_customers(require_bank_account=True)
    except Exception as e:
        raise _to_http_error(e, store, "Failed to load customers") from e
    return {"customers": customers}


async def get_bookings_route(store: RentalStore, customer_id: Optional[int]):
    if customer_id is None:
        raise HTTPException(status_code=400, detail="Missing customerId")
    try:
        bookings = await store.list_upcoming_bookings(customer_id)
    except Exception as e:
        raise _to_http_error(e, store, "Failed to load bookings") from e
    return {"bookings": bookings}


async def get_booking_services_route(store: RentalStore, booking_id: str):
    try:
        return await store.get_services_for_booking(booking_id)
    except Exception as e:
        raise _to_http_error(e, store, "Failed to load services") from e


async def add_booking_services_route(store: RentalStore, booking_id: str, payload: ServicesIn):
    if payload.customerId is None:
        raise HTTPException(status_code=400, detail="Missing customerId")
    if not payload.serviceIds:
        raise HTTPException(status_code=400, detail="No additional services selected")
    if not payload.confirmPayment:
        raise HTTPException(status_code=400, detail="Payment not confirmed")

    try:
        totals = await store.add_services_to_booking(booking_id, payload.customerId, payload.serviceIds)
    except Exception as e:
        raise _to_http_error(e, store, "Failed to add additional services") from e
    return {"ok": True, **totals}


async def customer_retailer_report_route(
    store: RentalStore,
    date_from: Optional[str],
    date_to: Optional[str],
    customer_id: Optional[int],
    retailer_id: Optional[int],
):
    parsed_from, parsed_to = _parse_date(date_from), _parse_date(date_to)
    try:
        report = await store.report_by_customer_and_retailer(parsed_from, parsed_to, customer_id, retailer_id)
    except Exception as e:
        raise _to_http_error(e, store, "database error") from e
    return {"report": report}


# System: migration, seed data, table explorer

async def migrate_route(backends: BackendSelector):
    """
    Copy the relational data into the document mirror and switch to it.

    The switch only happens after a complete copy; a failed migration
    leaves the active backend untouched.
    """
    async with backends.lock:
        try:
            database = await backends.document.database()
            counts = await migrate_to_document_store(backends.relational.session_maker, database)
        except Exception as e:
            raise _to_http_error(e, None, "Migration failed") from e
        backends.switch(BackendMode.DOCUMENT)

    return {"ok": True, "mode": backends.mode.value, "migrated": counts}


async def seed_status_route(session_maker: async_sessionmaker):
    try:
        seeded = await seed.has_seed_data(session_maker)
    except Exception as e:
        raise _to_http_error(e, None, "Failed to check seed status") from e
    return {"seeded": seeded}


async def generate_route(session_maker: async_sessionmaker):
    try:
        await seed.generate(session_maker)
    except Exception as e:
        raise _to_http_error(e, None, "Failed to generate data") from e
    return JSONResponse(status_code=201, content={"ok": True})


def tables_route() -> dict:
    return {"tables": list(TABLE_ALLOWLIST)}


async def table_route(session_maker: async_sessionmaker, name: str, limit: Optional[int]):
    try:
        return await fetch_table_rows(session_maker, name, limit)
    except Exception as e:
        raise _to_http_error(e, None, "Failed to load table data") from e
