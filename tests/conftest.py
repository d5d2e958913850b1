"""
Shared fixtures: an in-memory SQLite database with a small rental dataset and
a mongomock database holding its migrated mirror.

"Today" is pinned to 2023-12-01 so the January 2024 bookings are upcoming
and the November 2023 booking has already started.
"""
from datetime import date

import pytest_asyncio
from mongomock_motor import AsyncMongoMockClient

from database import create_engine_for, create_session_maker, init_db
from db_operations import SqlRentalStore
from migration import migrate_to_document_store
from models import (
    AdditionalService,
    Bankaccount,
    Booking,
    BookingService,
    Customer,
    Person,
    Retailer,
    Vehicle,
)
from mongo_operations import MongoRentalStore

TODAY = date(2023, 12, 1)


def fixed_today() -> date:
    return TODAY


async def populate(session_maker):
    """
    Customers: Alice (1, bank account), Bob (2, no bank account).
    Retailers: Carla / Cruz Cars (3), Dan / Diaz Drive (4).
    Vehicles: Golf 50/day (10), Octavia 40/day (11), A4 80/day (12).
    Services: Child seat 10 (1), Full insurance 15 (2), Snow chains 7.5 (3).
    """
    async with session_maker() as session:
        async with session.begin():
            session.add_all([
                Person(id=1, name="Alice Adams", eMail="alice@example.org"),
                Person(id=2, name="Bob Brown", eMail="bob@example.org"),
                Person(id=3, name="Carla Cruz"),
                Person(id=4, name="Dan Diaz"),
            ])
            await session.flush()
            session.add_all([
                Customer(person_id=1, customer_number="C-1", driver_license_number="L-1"),
                Customer(person_id=2, customer_number="C-2", driver_license_number="L-2"),
                Retailer(person_id=3, company_name="Cruz Cars", tax_number="T-3"),
                Retailer(person_id=4, company_name="Diaz Drive", tax_number="T-4"),
                Bankaccount(account_id=1, person_id=1, iban="AT000000000000000001", bic="BICAAA"),
                Bankaccount(account_id=3, person_id=3, iban="AT000000000000000003", bic="BICCCC"),
                Vehicle(vehicle_id=10, model="Golf", producer="Volkswagen", costs_per_day=50.0,
                        plate_number="W-10", number_of_seats=5, retailer_id=3),
                Vehicle(vehicle_id=11, model="Octavia", producer="Skoda", costs_per_day=40.0,
                        plate_number="W-11", number_of_seats=5, retailer_id=4),
                Vehicle(vehicle_id=12, model="A4", producer="Audi", costs_per_day=80.0,
                        plate_number="W-12", number_of_seats=5, retailer_id=3),
                AdditionalService(additional_service_id=1, description="Child seat", costs=10.0),
                AdditionalService(additional_service_id=2, description="Full insurance", costs=15.0),
                AdditionalService(additional_service_id=3, description="Snow chains", costs=7.5),
            ])
            await session.flush()
            session.add_all([
                Booking(booking_id="b_scenario", customer_id=1, vehicle_id=10,
                        start_date=date(2024, 1, 1), end_date=date(2024, 1, 4),
                        total_costs=150.0, way_of_billing="invoice"),
                Booking(booking_id="b_past", customer_id=1, vehicle_id=11,
                        start_date=date(2023, 11, 1), end_date=date(2023, 11, 5),
                        total_costs=167.5, way_of_billing="credit card"),
                Booking(booking_id="b_bob", customer_id=2, vehicle_id=12,
                        start_date=date(2024, 2, 10), end_date=date(2024, 2, 12),
                        total_costs=160.0, way_of_billing="cash"),
            ])
            await session.flush()
            session.add(BookingService(booking_id="b_past", additional_service_id=3))


@pytest_asyncio.fixture
async def engine():
    engine = create_engine_for("sqlite+aiosqlite://")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def empty_session_maker(engine):
    return create_session_maker(engine)


@pytest_asyncio.fixture
async def session_maker(engine):
    maker = create_session_maker(engine)
    await populate(maker)
    return maker


@pytest_asyncio.fixture
async def sql_store(session_maker):
    return SqlRentalStore(session_maker, today=fixed_today)


@pytest_asyncio.fixture
async def mongo_db():
    client = AsyncMongoMockClient()
    return client["rental_test"]


@pytest_asyncio.fixture
async def migrated_db(session_maker, mongo_db):
    await migrate_to_document_store(session_maker, mongo_db)
    return mongo_db


def provider_for(database):
    async def provider():
        return database
    return provider


@pytest_asyncio.fixture
async def mongo_store(migrated_db):
    return MongoRentalStore(provider_for(migrated_db), today=fixed_today)
