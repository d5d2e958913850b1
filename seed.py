"""
Demo data for the relational schema.
"""
import logging
from datetime import date, timedelta
from typing import Callable

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from data_processor import rental_days
from errors import SeedConflict
from models import (
    AdditionalService,
    Bankaccount,
    Booking,
    BookingService,
    Customer,
    Person,
    Rating,
    Retailer,
    Vehicle,
)

logger = logging.getLogger(__name__)

PERSONS = [
    # id, name, eMail, phone_number, address
    (1, "Anna Berger", "anna.berger@example.org", "+43 660 1000001", "Hauptstrasse 1, Vienna"),
    (2, "Bernd Huber", "bernd.huber@example.org", "+43 660 1000002", "Ringstrasse 12, Graz"),
    (3, "Clara Novak", "clara.novak@example.org", "+43 660 1000003", "Marktplatz 3, Linz"),
    (4, "David Klein", "david.klein@example.org", "+43 660 1000004", "Seeweg 7, Salzburg"),
    (5, "Eva Schmid", "eva.schmid@example.org", "+43 660 1000005", "Bahnhofstrasse 20, Innsbruck"),
    (6, "Franz Gruber", "office@cityrent.example.org", "+43 1 2000006", "Industriestrasse 4, Vienna"),
    (7, "Greta Wolf", "office@alpcars.example.org", "+43 512 2000007", "Gewerbepark 9, Innsbruck"),
]

CUSTOMERS = [
    # person_id, customer_number, driver_license_number
    (1, "C-1001", "W-123456"),
    (2, "C-1002", "G-234567"),
    (3, "C-1003", "L-345678"),
    (4, "C-1004", "S-456789"),
    (5, "C-1005", "I-567890"),
]

RETAILERS = [
    (6, "CityRent GmbH", "ATU11111111"),
    (7, "AlpCars KG", "ATU22222222"),
]

# Customer 4 has no bank account and cannot book additional services
BANK_ACCOUNTS = [
    # account_id, person_id, iban, bic
    (1, 1, "AT611904300234573201", "BKAUATWW"),
    (2, 2, "AT483200000012345864", "RLNWATWW"),
    (3, 3, "AT022050302101023600", "SPIHAT22"),
    (4, 5, "AT131490022010010999", "BAWAATWW"),
    (5, 6, "AT321200000703710402", "BKAUATWW"),
    (6, 7, "AT483500000000163378", "RVSAAT2S"),
]

VEHICLES = [
    # vehicle_id, model, producer, costs_per_day, plate_number, number_of_seats, retailer_id
    (1, "Golf", "Volkswagen", 49.0, "W-1234A", 5, 6),
    (2, "Passat Variant", "Volkswagen", 65.0, "W-2345B", 5, 6),
    (3, "3er Touring", "BMW", 89.0, "W-3456C", 5, 6),
    (4, "Octavia", "Skoda", 55.0, "I-4567D", 5, 7),
    (5, "Transporter", "Volkswagen", 95.0, "I-5678E", 9, 7),
    (6, "Model 3", "Tesla", 110.0, "I-6789F", 5, 7),
]

SERVICES = [
    # additional_service_id, description, costs
    (1, "Child seat", 8.0),
    (2, "Additional driver", 15.0),
    (3, "Full insurance", 25.0),
    (4, "Snow chains", 10.0),
    (5, "Navigation system", 6.5),
]

# booking_id, customer_id, vehicle_id, start offset, end offset, way_of_billing, service ids
BOOKINGS = [
    ("b_seed_001", 1, 1, -40, -35, "invoice", [1, 3]),
    ("b_seed_002", 2, 4, -20, -18, "credit card", []),
    ("b_seed_003", 3, 3, -10, -3, "invoice", [2]),
    ("b_seed_004", 1, 2, 5, 9, "credit card", [4]),
    ("b_seed_005", 2, 5, 12, 14, "invoice", []),
    ("b_seed_006", 4, 6, 20, 23, "cash", []),
    ("b_seed_007", 5, 1, 30, 30, "credit card", []),
]

RATINGS = [
    # rater_id, rated_id, stars
    (1, 6, 5),
    (2, 7, 4),
    (3, 6, 3),
    (6, 1, 5),
]


async def has_seed_data(session_maker: async_sessionmaker) -> bool:
    async with session_maker() as session:
        count = await session.scalar(select(func.count(Person.id)))
    return bool(count)


async def generate(session_maker: async_sessionmaker, today: Callable[[], date] = date.today):
    """
    Insert the demo dataset.

    Booking dates are relative to today so that some bookings are upcoming.
    Raises SeedConflict if the database already holds persons.
    """
    if await has_seed_data(session_maker):
        raise SeedConflict("Data already generated")

    base = today()
    vehicle_costs = {vehicle[0]: vehicle[3] for vehicle in VEHICLES}
    service_costs = {service[0]: service[2] for service in SERVICES}

    async with session_maker() as session:
        async with session.begin():
            session.add_all(
                Person(id=pid, name=name, eMail=email, phone_number=phone, address=address)
                for pid, name, email, phone, address in PERSONS
            )
            await session.flush()
            session.add_all(
                Customer(person_id=pid, customer_number=number, driver_license_number=license_number)
                for pid, number, license_number in CUSTOMERS
            )
            session.add_all(
                Retailer(person_id=pid, company_name=company, tax_number=tax)
                for pid, company, tax in RETAILERS
            )
            session.add_all(
                Bankaccount(account_id=aid, person_id=pid, iban=iban, bic=bic)
                for aid, pid, iban, bic in BANK_ACCOUNTS
            )
            session.add_all(
                Rating(rater_id=rater, rated_id=rated, stars=stars) for rater, rated, stars in RATINGS
            )
            session.add_all(
                Vehicle(
                    vehicle_id=vid, model=model, producer=producer, costs_per_day=costs,
                    plate_number=plate, number_of_seats=seats, retailer_id=retailer_id,
                )
                for vid, model, producer, costs, plate, seats, retailer_id in VEHICLES
            )
            session.add_all(
                AdditionalService(additional_service_id=sid, description=description, costs=costs)
                for sid, description, costs in SERVICES
            )
            await session.flush()

            for booking_id, customer_id, vehicle_id, start, end, billing, service_ids in BOOKINGS:
                start_date = base + timedelta(days=start)
                end_date = base + timedelta(days=end)
                total = rental_days(start_date, end_date) * vehicle_costs[vehicle_id]
                total += sum(service_costs[sid] for sid in service_ids)
                session.add(Booking(
                    booking_id=booking_id,
                    start_date=start_date,
                    end_date=end_date,
                    total_costs=total,
                    way_of_billing=billing,
                    customer_id=customer_id,
                    vehicle_id=vehicle_id,
                ))
            await session.flush()

            session.add_all(
                BookingService(booking_id=booking[0], additional_service_id=sid)
                for booking in BOOKINGS
                for sid in booking[6]
            )

    logger.info(
        f"✅ Seed data generated: {len(PERSONS)} persons, {len(VEHICLES)} vehicles, "
        f"{len(SERVICES)} services, {len(BOOKINGS)} bookings"
    )
