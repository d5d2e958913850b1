"""
Database operations for the relational backend.
"""
import logging
from datetime import date, datetime
from typing import Callable, Dict, Iterable, List, Optional

from sqlalchemy import Integer, exists, func, select
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.sql.expression import FunctionElement

from data_processor import as_number, new_booking_id, rental_days as rental_days_of
from errors import BusinessRuleViolation, NotFoundOrInactive, ValidationError
from models import (
    AdditionalService,
    Bankaccount,
    Base,
    Booking,
    BookingService,
    Customer,
    Person,
    Retailer,
    Vehicle,
)
from store import BackendMode, RentalStore

logger = logging.getLogger(__name__)

MONEY_FIELDS = (
    "costs_per_day", "cost_per_day", "costs", "total_costs",
    "base_cost", "extras_cost", "additional_cost", "additional_costs", "total_cost",
)

TABLE_ALLOWLIST = [
    "Person",
    "Rating",
    "Customer",
    "Retailer",
    "Bankaccount",
    "Vehicle",
    "Booking",
    "AdditionalService",
    "Bookings_Services",
]
DEFAULT_TABLE_LIMIT = 50
MAX_TABLE_LIMIT = 500


class rental_days(FunctionElement):
    """
    SQL expression for whole days between two DATE columns, floored at 1.
    """
    type = Integer()
    name = "rental_days"
    inherit_cache = True


@compiles(rental_days)
def _rental_days_default(element, compiler, **kw):
    start, end = list(element.clauses)
    return "GREATEST(DATEDIFF(%s, %s), 1)" % (compiler.process(end, **kw), compiler.process(start, **kw))


@compiles(rental_days, "sqlite")
def _rental_days_sqlite(element, compiler, **kw):
    start, end = list(element.clauses)
    return "MAX(CAST(julianday(%s) - julianday(%s) AS INTEGER), 1)" % (
        compiler.process(end, **kw),
        compiler.process(start, **kw),
    )


@compiles(rental_days, "postgresql")
def _rental_days_postgresql(element, compiler, **kw):
    start, end = list(element.clauses)
    return "GREATEST((%s - %s), 1)" % (compiler.process(end, **kw), compiler.process(start, **kw))


def _shape_row(row) -> Dict:
    """Plain dict of a result row with ISO dates and float money."""
    data = dict(row._mapping)
    for key, value in data.items():
        if isinstance(value, (date, datetime)):
            data[key] = value.strftime("%Y-%m-%d")
        elif key in MONEY_FIELDS:
            data[key] = as_number(value)
    return data


def _shape_rows(rows: Iterable) -> List[Dict]:
    return [_shape_row(row) for row in rows]


def _days():
    return rental_days(Booking.start_date, Booking.end_date)


class SqlRentalStore(RentalStore):
    """Rental operations as parameterized queries against the normalized schema."""

    mode = BackendMode.RELATIONAL
    error_prefix = ""

    def __init__(self, session_maker: async_sessionmaker, today: Callable[[], date] = date.today):
        self.session_maker = session_maker
        self._today = today

    async def list_customers(self, require_bank_account: bool = False) -> List[Dict]:
        stmt = (
            select(
                Person.id.label("person_id"),
                Person.name,
                Person.eMail,
                Person.phone_number,
                Person.address,
                Customer.customer_number,
                Customer.driver_license_number,
                Bankaccount.account_id,
                Bankaccount.iban,
                Bankaccount.bic,
            )
            .select_from(Customer)
            .join(Person, Person.id == Customer.person_id)
        )
        # Use case 2 only lists customers able to pay for additional services
        if require_bank_account:
            stmt = stmt.join(Bankaccount, Bankaccount.person_id == Customer.person_id)
        else:
            stmt = stmt.outerjoin(Bankaccount, Bankaccount.person_id == Customer.person_id)
        stmt = stmt.order_by(Person.name, Person.id)

        async with self.session_maker() as session:
            result = await session.execute(stmt)
            return _shape_rows(result)

    async def find_available_vehicles(self, start: date, end: date) -> List[Dict]:
        overlapping = (
            select(Booking.booking_id)
            .where(
                Booking.vehicle_id == Vehicle.vehicle_id,
                Booking.start_date <= end,
                Booking.end_date >= start,
            )
        )
        stmt = (
            select(
                Vehicle.vehicle_id,
                Vehicle.model,
                Vehicle.producer,
                Vehicle.costs_per_day,
                Vehicle.plate_number,
                Vehicle.number_of_seats,
            )
            .where(~overlapping.exists())
            .order_by(Vehicle.producer, Vehicle.model)
        )

        async with self.session_maker() as session:
            result = await session.execute(stmt)
            return _shape_rows(result)

    async def create_booking(
        self,
        vehicle_id: int,
        start_date: date,
        end_date: date,
        way_of_billing: str,
        customer_id: Optional[int] = None,
    ) -> Dict:
        async with self.session_maker() as session:
            async with session.begin():
                if customer_id is None:
                    result = await session.execute(
                        select(Customer.person_id)
                        .join(Person, Person.id == Customer.person_id)
                        .order_by(Person.name, Person.id)
                        .limit(1)
                    )
                    customer_id = result.scalar_one_or_none()
                    if customer_id is None:
                        raise BusinessRuleViolation("No customers available")
                elif await session.get(Customer, customer_id) is None:
                    raise BusinessRuleViolation("Invalid customer")

                vehicle = await session.get(Vehicle, vehicle_id)
                if vehicle is None:
                    raise BusinessRuleViolation("Invalid vehicle")

                days = rental_days_of(start_date, end_date)
                total = days * as_number(vehicle.costs_per_day)
                booking_id = new_booking_id()

                session.add(Booking(
                    booking_id=booking_id,
                    start_date=start_date,
                    end_date=end_date,
                    total_costs=total,
                    way_of_billing=way_of_billing,
                    customer_id=customer_id,
                    vehicle_id=vehicle_id,
                ))

        logger.info(
            f"[INSERT] Booking ID: {booking_id} | Customer: {customer_id} | Vehicle: {vehicle_id} | "
            f"{start_date} -> {end_date} | Total: {total:.2f}"
        )
        return {"booking_id": booking_id, "total_costs": total}

    async def list_upcoming_bookings(self, customer_id: int) -> List[Dict]:
        days = _days()
        extras = func.coalesce(func.sum(AdditionalService.costs), 0)
        stmt = (
            select(
                Booking.booking_id,
                Booking.start_date,
                Booking.end_date,
                Booking.way_of_billing,
                Booking.vehicle_id,
                Booking.total_costs,
                Vehicle.model,
                Vehicle.producer,
                Vehicle.costs_per_day,
                Vehicle.plate_number,
                Vehicle.number_of_seats,
                days.label("days"),
                (days * Vehicle.costs_per_day).label("base_cost"),
                extras.label("extras_cost"),
            )
            .select_from(Booking)
            .join(Vehicle, Vehicle.vehicle_id == Booking.vehicle_id)
            .outerjoin(BookingService, BookingService.booking_id == Booking.booking_id)
            .outerjoin(
                AdditionalService,
                AdditionalService.additional_service_id == BookingService.additional_service_id,
            )
            .where(Booking.customer_id == customer_id, Booking.start_date >= self._today())
            .group_by(
                Booking.booking_id,
                Booking.start_date,
                Booking.end_date,
                Booking.way_of_billing,
                Booking.vehicle_id,
                Booking.total_costs,
                Vehicle.model,
                Vehicle.producer,
                Vehicle.costs_per_day,
                Vehicle.plate_number,
                Vehicle.number_of_seats,
            )
            .order_by(Booking.start_date, Booking.booking_id)
        )

        async with self.session_maker() as session:
            result = await session.execute(stmt)
            bookings = _shape_rows(result)

        for booking in bookings:
            booking["total_cost"] = booking["base_cost"] + booking["extras_cost"]
        return bookings

    async def get_services_for_booking(self, booking_id: str) -> Dict[str, List[Dict]]:
        attached = (
            select(BookingService.booking_id)
            .where(
                BookingService.booking_id == booking_id,
                BookingService.additional_service_id == AdditionalService.additional_service_id,
            )
        )
        columns = (
            AdditionalService.additional_service_id,
            AdditionalService.description,
            AdditionalService.costs,
        )

        async with self.session_maker() as session:
            if await session.get(Booking, booking_id) is None:
                raise NotFoundOrInactive("Booking not found")

            available = await session.execute(
                select(*columns).where(~attached.exists()).order_by(AdditionalService.description)
            )
            current = await session.execute(
                select(*columns)
                .join(
                    BookingService,
                    BookingService.additional_service_id == AdditionalService.additional_service_id,
                )
                .where(BookingService.booking_id == booking_id)
                .order_by(AdditionalService.description)
            )
            return {"available": _shape_rows(available), "current": _shape_rows(current)}

    async def add_services_to_booking(
        self, booking_id: str, customer_id: int, service_ids: List[int]
    ) -> Dict:
        unique_service_ids = list(dict.fromkeys(service_ids or []))
        if not unique_service_ids:
            raise ValidationError("No additional services selected")

        async with self.session_maker() as session:
            async with session.begin():
                # Lock the booking so concurrent attachments recompute one after the other
                result = await session.execute(
                    select(Booking)
                    .where(
                        Booking.booking_id == booking_id,
                        Booking.customer_id == customer_id,
                        Booking.start_date >= self._today(),
                    )
                    .with_for_update()
                )
                booking = result.scalar_one_or_none()
                if booking is None:
                    raise NotFoundOrInactive("Booking not found or inactive")

                has_bank_account = await session.scalar(
                    select(exists().where(Bankaccount.person_id == customer_id))
                )
                if not has_bank_account:
                    raise BusinessRuleViolation("Customer has no bank account")

                found = await session.scalar(
                    select(func.count(AdditionalService.additional_service_id))
                    .where(AdditionalService.additional_service_id.in_(unique_service_ids))
                )
                if found != len(unique_service_ids):
                    raise BusinessRuleViolation("Invalid additional service selection")

                result = await session.execute(
                    select(BookingService.additional_service_id)
                    .where(BookingService.booking_id == booking_id)
                )
                existing_ids = set(result.scalars())
                new_ids = [sid for sid in unique_service_ids if sid not in existing_ids]
                session.add_all(
                    BookingService(booking_id=booking_id, additional_service_id=sid) for sid in new_ids
                )
                await session.flush()

                result = await session.execute(
                    select(
                        (_days() * Vehicle.costs_per_day).label("base_cost"),
                        func.coalesce(func.sum(AdditionalService.costs), 0).label("extras_cost"),
                    )
                    .select_from(Booking)
                    .join(Vehicle, Vehicle.vehicle_id == Booking.vehicle_id)
                    .outerjoin(BookingService, BookingService.booking_id == Booking.booking_id)
                    .outerjoin(
                        AdditionalService,
                        AdditionalService.additional_service_id == BookingService.additional_service_id,
                    )
                    .where(Booking.booking_id == booking_id)
                    .group_by(Booking.booking_id, Booking.start_date, Booking.end_date, Vehicle.costs_per_day)
                )
                totals = result.one_or_none()
                base_cost = as_number(totals.base_cost) if totals else 0.0
                extras_cost = as_number(totals.extras_cost) if totals else 0.0
                total_cost = base_cost + extras_cost

                booking.total_costs = total_cost

        logger.info(
            f"[UPDATE] Booking ID: {booking_id} | Services added: {len(new_ids)} | "
            f"Total: {total_cost:.2f}"
        )
        return {"base_cost": base_cost, "extras_cost": extras_cost, "total_cost": total_cost}

    async def report_by_vehicle(
        self,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        vehicle_id: Optional[int] = None,
    ) -> List[Dict]:
        conditions = []
        if date_from:
            conditions.append(Booking.start_date >= date_from)
        if date_to:
            conditions.append(Booking.end_date <= date_to)
        if vehicle_id is not None:
            conditions.append(Booking.vehicle_id == vehicle_id)

        days = _days()
        base_cost = Vehicle.costs_per_day * days
        additional_cost = func.coalesce(func.sum(AdditionalService.costs), 0)
        stmt = (
            select(
                Booking.booking_id,
                Person.name.label("customer_name"),
                Vehicle.producer,
                Vehicle.model,
                Booking.start_date,
                Booking.end_date,
                Vehicle.costs_per_day,
                days.label("days"),
                base_cost.label("base_cost"),
                additional_cost.label("additional_cost"),
                (base_cost + additional_cost).label("total_cost"),
            )
            .select_from(Booking)
            .join(Customer, Customer.person_id == Booking.customer_id)
            .join(Person, Person.id == Customer.person_id)
            .join(Vehicle, Vehicle.vehicle_id == Booking.vehicle_id)
            .outerjoin(BookingService, BookingService.booking_id == Booking.booking_id)
            .outerjoin(
                AdditionalService,
                AdditionalService.additional_service_id == BookingService.additional_service_id,
            )
            .where(*conditions)
            .group_by(
                Booking.booking_id,
                Person.name,
                Vehicle.producer,
                Vehicle.model,
                Booking.start_date,
                Booking.end_date,
                Vehicle.costs_per_day,
            )
            .order_by(Booking.start_date.desc(), Booking.booking_id.desc())
        )

        async with self.session_maker() as session:
            result = await session.execute(stmt)
            return _shape_rows(result)

    async def report_by_customer_and_retailer(
        self,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        customer_id: Optional[int] = None,
        retailer_id: Optional[int] = None,
    ) -> List[Dict]:
        conditions = []
        if date_from:
            conditions.append(Booking.start_date >= date_from)
        if date_to:
            conditions.append(Booking.start_date < date_to)
        if customer_id is not None:
            conditions.append(Booking.customer_id == customer_id)
        if retailer_id is not None:
            conditions.append(Vehicle.retailer_id == retailer_id)

        days = _days()
        base_cost = days * Vehicle.costs_per_day
        additional_costs = func.coalesce(func.sum(AdditionalService.costs), 0)
        stmt = (
            select(
                Booking.booking_id,
                Booking.start_date,
                Booking.end_date,
                Customer.person_id.label("customer_id"),
                Person.name.label("customer_name"),
                Bankaccount.iban.label("customer_iban"),
                Bankaccount.bic.label("customer_bic"),
                Vehicle.vehicle_id,
                Vehicle.model,
                Vehicle.producer,
                Vehicle.retailer_id,
                Retailer.company_name.label("retailer_name"),
                days.label("rental_days"),
                Vehicle.costs_per_day.label("cost_per_day"),
                base_cost.label("base_cost"),
                additional_costs.label("additional_costs"),
                func.count(BookingService.additional_service_id).label("additional_services_count"),
                (base_cost + additional_costs).label("total_cost"),
            )
            .select_from(Booking)
            .join(Customer, Customer.person_id == Booking.customer_id)
            .join(Person, Person.id == Customer.person_id)
            .outerjoin(Bankaccount, Bankaccount.person_id == Customer.person_id)
            .join(Vehicle, Vehicle.vehicle_id == Booking.vehicle_id)
            .outerjoin(Retailer, Retailer.person_id == Vehicle.retailer_id)
            # Inner joins: only bookings with at least one additional service
            .join(BookingService, BookingService.booking_id == Booking.booking_id)
            .join(
                AdditionalService,
                AdditionalService.additional_service_id == BookingService.additional_service_id,
            )
            .where(*conditions)
            .group_by(
                Booking.booking_id,
                Booking.start_date,
                Booking.end_date,
                Customer.person_id,
                Person.name,
                Bankaccount.iban,
                Bankaccount.bic,
                Vehicle.vehicle_id,
                Vehicle.model,
                Vehicle.producer,
                Vehicle.retailer_id,
                Retailer.company_name,
                Vehicle.costs_per_day,
            )
            .order_by(Booking.start_date.desc(), Booking.booking_id.desc())
        )

        async with self.session_maker() as session:
            result = await session.execute(stmt)
            report = _shape_rows(result)
            descriptions = await self._service_descriptions(
                session, [row["booking_id"] for row in report]
            )

        for row in report:
            row["additional_services_list"] = ", ".join(descriptions.get(row["booking_id"], [])) or None
        return report

    async def _service_descriptions(self, session, booking_ids: List[str]) -> Dict[str, List[str]]:
        """Attached service descriptions per booking, sorted."""
        if not booking_ids:
            return {}
        result = await session.execute(
            select(BookingService.booking_id, AdditionalService.description)
            .join(
                AdditionalService,
                AdditionalService.additional_service_id == BookingService.additional_service_id,
            )
            .where(BookingService.booking_id.in_(booking_ids))
            .order_by(BookingService.booking_id, AdditionalService.description)
        )
        descriptions: Dict[str, List[str]] = {}
        for booking_id, description in result:
            descriptions.setdefault(booking_id, []).append(description)
        return descriptions


async def fetch_table_rows(session_maker: async_sessionmaker, name: str, limit: Optional[int] = None) -> Dict:
    """
    Raw rows of one allow-listed table for the table explorer.

    limit defaults to 50 and is clamped to 1..500.
    """
    if name not in TABLE_ALLOWLIST:
        raise ValidationError("Unknown table")

    limit = DEFAULT_TABLE_LIMIT if limit is None else min(max(limit, 1), MAX_TABLE_LIMIT)
    table = Base.metadata.tables[name]

    async with session_maker() as session:
        result = await session.execute(select(table).limit(limit))
        rows = _shape_rows(result)

    return {"table": name, "columns": [column.name for column in table.columns], "rows": rows}
