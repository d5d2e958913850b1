"""
One-shot copy of the relational data into the document mirror.
"""
import logging
from typing import Dict

from pymongo.errors import PyMongoError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from data_processor import to_date_string
from errors import DOCUMENT_ERROR_PREFIX, BackendUnavailable
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
from mongo_database import (
    ALL_COLLECTIONS,
    BOOKINGS_COLLECTION,
    PERSONS_COLLECTION,
    RATINGS_COLLECTION,
    SERVICES_COLLECTION,
    VEHICLES_COLLECTION,
)

logger = logging.getLogger(__name__)


def _person_document(row) -> dict:
    customer = None
    if row.customer_number:
        customer = {
            "customer_number": row.customer_number,
            "driver_license_number": row.driver_license_number,
        }
    retailer = None
    if row.company_name:
        retailer = {"company_name": row.company_name, "tax_number": row.tax_number}
    bank_account = None
    if row.account_id is not None:
        bank_account = {"account_id": row.account_id, "iban": row.iban, "bic": row.bic}

    return {
        "_id": row.id,
        "name": row.name,
        "phone_number": row.phone_number,
        "eMail": row.eMail,
        "address": row.address,
        "stars": row.stars,
        "roles": {"customer": customer, "retailer": retailer},
        "bankAccount": bank_account,
    }


def _vehicle_document(vehicle: Vehicle) -> dict:
    return {
        "_id": vehicle.vehicle_id,
        "model": vehicle.model,
        "producer": vehicle.producer,
        "costs_per_day": vehicle.costs_per_day,
        "plate_number": vehicle.plate_number,
        "number_of_seats": vehicle.number_of_seats,
        "retailer_id": vehicle.retailer_id,
    }


def group_booking_rows(rows) -> list:
    """
    Fold booking rows (one per attached service, or one with null service
    columns) into booking documents with embedded snapshots.
    """
    grouped: Dict[str, dict] = {}
    for row in rows:
        document = grouped.get(row.booking_id)
        if document is None:
            retailer = None
            if row.retailer_person_id is not None:
                retailer = {"person_id": row.retailer_person_id, "company_name": row.company_name}
            document = {
                "_id": row.booking_id,
                "start_date": to_date_string(row.start_date),
                "end_date": to_date_string(row.end_date),
                "way_of_billing": row.way_of_billing,
                "customer": {"person_id": row.customer_id, "name": row.customer_name},
                "vehicle": {
                    "vehicle_id": row.vehicle_id,
                    "model": row.model,
                    "producer": row.producer,
                    "costs_per_day": row.costs_per_day,
                    "plate_number": row.plate_number,
                    "number_of_seats": row.number_of_seats,
                    "retailer_id": row.retailer_id,
                },
                "retailer": retailer,
                "additionalServices": [],
                "pricing": {"total_costs": row.total_costs},
            }
            grouped[row.booking_id] = document
        if row.additional_service_id is not None:
            document["additionalServices"].append({
                "service_id": row.additional_service_id,
                "description": row.description,
                "costs": row.costs,
            })
    return list(grouped.values())


async def _read_relational(session_maker: async_sessionmaker) -> Dict[str, list]:
    async with session_maker() as session:
        persons = await session.execute(
            select(
                Person.id,
                Person.name,
                Person.eMail,
                Person.phone_number,
                Person.address,
                Person.stars,
                Customer.customer_number,
                Customer.driver_license_number,
                Retailer.company_name,
                Retailer.tax_number,
                Bankaccount.account_id,
                Bankaccount.iban,
                Bankaccount.bic,
            )
            .outerjoin(Customer, Customer.person_id == Person.id)
            .outerjoin(Retailer, Retailer.person_id == Person.id)
            .outerjoin(Bankaccount, Bankaccount.person_id == Person.id)
            .order_by(Person.id)
        )
        person_docs = [_person_document(row) for row in persons]

        vehicles = await session.scalars(select(Vehicle).order_by(Vehicle.vehicle_id))
        vehicle_docs = [_vehicle_document(vehicle) for vehicle in vehicles]

        services = await session.scalars(select(AdditionalService).order_by(AdditionalService.additional_service_id))
        service_docs = [
            {"_id": s.additional_service_id, "description": s.description, "costs": s.costs}
            for s in services
        ]

        ratings = await session.scalars(select(Rating))
        rating_docs = [
            {"_id": {"rater_id": r.rater_id, "rated_id": r.rated_id}, "stars": r.stars}
            for r in ratings
        ]

        bookings = await session.execute(
            select(
                Booking.booking_id,
                Booking.start_date,
                Booking.end_date,
                Booking.total_costs,
                Booking.way_of_billing,
                Customer.person_id.label("customer_id"),
                Person.name.label("customer_name"),
                Vehicle.vehicle_id,
                Vehicle.model,
                Vehicle.producer,
                Vehicle.costs_per_day,
                Vehicle.plate_number,
                Vehicle.number_of_seats,
                Vehicle.retailer_id,
                Retailer.person_id.label("retailer_person_id"),
                Retailer.company_name,
                AdditionalService.additional_service_id,
                AdditionalService.description,
                AdditionalService.costs,
            )
            .select_from(Booking)
            .join(Customer, Customer.person_id == Booking.customer_id)
            .join(Person, Person.id == Customer.person_id)
            .join(Vehicle, Vehicle.vehicle_id == Booking.vehicle_id)
            .outerjoin(Retailer, Retailer.person_id == Vehicle.retailer_id)
            .outerjoin(BookingService, BookingService.booking_id == Booking.booking_id)
            .outerjoin(
                AdditionalService,
                AdditionalService.additional_service_id == BookingService.additional_service_id,
            )
            .order_by(Booking.booking_id, AdditionalService.description)
        )
        booking_docs = group_booking_rows(bookings)

    return {
        PERSONS_COLLECTION: person_docs,
        VEHICLES_COLLECTION: vehicle_docs,
        SERVICES_COLLECTION: service_docs,
        RATINGS_COLLECTION: rating_docs,
        BOOKINGS_COLLECTION: booking_docs,
    }


async def migrate_to_document_store(session_maker: async_sessionmaker, database) -> Dict[str, int]:
    """
    Replace the document mirror with a fresh copy of the relational data.

    Every run clears the mirror collections and re-inserts everything.
    Returns the number of documents written per collection.
    """
    logger.info("Reading relational data for migration...")
    documents = await _read_relational(session_maker)

    try:
        for name in ALL_COLLECTIONS:
            await database[name].delete_many({})

        counts = {}
        for name, docs in documents.items():
            if docs:
                await database[name].insert_many(docs)
            counts[name] = len(docs)
    except PyMongoError as e:
        logger.error(f"Migration write failed: {str(e)}")
        raise BackendUnavailable(f"{DOCUMENT_ERROR_PREFIX}Document store not reachable") from e

    logger.info("=" * 60)
    logger.info("Migration completed successfully!")
    for name, count in counts.items():
        logger.info(f"  - {name}: {count}")
    logger.info("=" * 60)
    return counts
