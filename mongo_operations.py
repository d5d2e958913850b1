"""
Rental operations against the denormalized MongoDB mirror.
"""
import logging
from datetime import date
from typing import Awaitable, Callable, Dict, List, Optional

from data_processor import (
    as_number,
    booking_costs,
    filter_customer,
    filter_service,
    filter_vehicle,
    new_booking_id,
    rental_days,
    service_snapshot,
    to_date_string,
)
from errors import (
    DOCUMENT_ERROR_PREFIX,
    BackendUnavailable,
    BusinessRuleViolation,
    NotFoundOrInactive,
    ValidationError,
)
from mongo_database import (
    BOOKINGS_COLLECTION,
    PERSONS_COLLECTION,
    SERVICES_COLLECTION,
    VEHICLES_COLLECTION,
    get_database,
)
from store import BackendMode, RentalStore

logger = logging.getLogger(__name__)

# Compare-and-swap attempts before giving up on a contended booking
MAX_ATTACH_ATTEMPTS = 5

CUSTOMER_FILTER = {"roles.customer": {"$ne": None}}


def build_vehicle_report_pipeline(
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    vehicle_id: Optional[int] = None,
) -> List[dict]:
    """
    Aggregation pipeline selecting and ordering the bookings of the vehicle
    utilisation report.

    Only snapshot fields are projected; days and costs are computed from them
    with the shared arithmetic, so malformed dates count as one day and
    malformed costs as 0.
    """
    match: dict = {}
    if date_from:
        match["start_date"] = {"$gte": to_date_string(date_from)}
    if date_to:
        match["end_date"] = {"$lte": to_date_string(date_to)}
    if vehicle_id is not None:
        match["vehicle.vehicle_id"] = vehicle_id

    return [
        {"$match": match},
        {"$sort": {"start_date": -1, "_id": -1}},
        {
            "$project": {
                "_id": 0,
                "booking_id": "$_id",
                "customer": 1,
                "vehicle": 1,
                "start_date": 1,
                "end_date": 1,
                "additionalServices": 1,
            }
        },
    ]


class MongoRentalStore(RentalStore):
    """
    Rental operations on the document mirror.

    Bookings carry snapshots of customer, vehicle, retailer and services taken
    at write time; later edits to persons or vehicles do not reach them.
    """

    mode = BackendMode.DOCUMENT
    error_prefix = DOCUMENT_ERROR_PREFIX

    def __init__(
        self,
        database_provider: Callable[[], Awaitable] = get_database,
        today: Callable[[], date] = date.today,
    ):
        self.database = database_provider
        self._today = today

    def _today_string(self) -> str:
        return to_date_string(self._today())

    async def list_customers(self, require_bank_account: bool = False) -> List[Dict]:
        db = await self.database()
        query = dict(CUSTOMER_FILTER)
        if require_bank_account:
            query["bankAccount"] = {"$ne": None}

        cursor = db[PERSONS_COLLECTION].find(query).sort([("name", 1), ("_id", 1)])
        persons = await cursor.to_list(length=None)
        return [filter_customer(person) for person in persons]

    async def find_available_vehicles(self, start: date, end: date) -> List[Dict]:
        db = await self.database()
        booked_vehicle_ids = await db[BOOKINGS_COLLECTION].distinct(
            "vehicle.vehicle_id",
            {"start_date": {"$lte": to_date_string(end)}, "end_date": {"$gte": to_date_string(start)}},
        )
        cursor = (
            db[VEHICLES_COLLECTION]
            .find({"_id": {"$nin": booked_vehicle_ids}})
            .sort([("producer", 1), ("model", 1)])
        )
        vehicles = await cursor.to_list(length=None)
        return [filter_vehicle(vehicle) for vehicle in vehicles]

    async def create_booking(
        self,
        vehicle_id: int,
        start_date: date,
        end_date: date,
        way_of_billing: str,
        customer_id: Optional[int] = None,
    ) -> Dict:
        db = await self.database()
        persons = db[PERSONS_COLLECTION]

        if customer_id is None:
            first = await persons.find(CUSTOMER_FILTER).sort([("name", 1), ("_id", 1)]).to_list(length=1)
            if not first:
                raise BusinessRuleViolation("No customers available")
            customer = first[0]
        else:
            customer = await persons.find_one({"_id": customer_id, **CUSTOMER_FILTER})
            if customer is None:
                raise BusinessRuleViolation("Invalid customer")

        vehicle = await db[VEHICLES_COLLECTION].find_one({"_id": vehicle_id})
        if vehicle is None:
            raise BusinessRuleViolation("Invalid vehicle")

        retailer = None
        retailer_id = vehicle.get("retailer_id")
        if retailer_id is not None:
            retailer_doc = await persons.find_one({"_id": retailer_id}, {"roles.retailer": 1})
            retailer_role = ((retailer_doc or {}).get("roles") or {}).get("retailer") or {}
            retailer = {"person_id": retailer_id, "company_name": retailer_role.get("company_name")}

        days = rental_days(start_date, end_date)
        total = days * as_number(vehicle.get("costs_per_day"))
        booking_id = new_booking_id()

        await db[BOOKINGS_COLLECTION].insert_one({
            "_id": booking_id,
            "start_date": to_date_string(start_date),
            "end_date": to_date_string(end_date),
            "way_of_billing": way_of_billing,
            "customer": {"person_id": customer["_id"], "name": customer.get("name")},
            "vehicle": {
                "vehicle_id": vehicle["_id"],
                "model": vehicle.get("model"),
                "producer": vehicle.get("producer"),
                "costs_per_day": vehicle.get("costs_per_day"),
                "plate_number": vehicle.get("plate_number"),
                "number_of_seats": vehicle.get("number_of_seats"),
                "retailer_id": retailer_id,
            },
            "retailer": retailer,
            "additionalServices": [],
            "pricing": {"total_costs": total},
        })

        logger.info(
            f"[INSERT] Booking ID: {booking_id} | Customer: {customer['_id']} | Vehicle: {vehicle_id} | "
            f"{start_date} -> {end_date} | Total: {total:.2f} (NoSQL)"
        )
        return {"booking_id": booking_id, "total_costs": total}

    async def list_upcoming_bookings(self, customer_id: int) -> List[Dict]:
        db = await self.database()
        cursor = (
            db[BOOKINGS_COLLECTION]
            .find({"customer.person_id": customer_id, "start_date": {"$gte": self._today_string()}})
            .sort([("start_date", 1), ("_id", 1)])
        )
        bookings = await cursor.to_list(length=None)
        if not bookings:
            return []

        # Live vehicles only fill in fields the snapshot lacks
        vehicle_ids = [
            b["vehicle"]["vehicle_id"]
            for b in bookings
            if (b.get("vehicle") or {}).get("vehicle_id") is not None
        ]
        vehicles = await db[VEHICLES_COLLECTION].find({"_id": {"$in": vehicle_ids}}).to_list(length=None)
        vehicle_map = {vehicle["_id"]: vehicle for vehicle in vehicles}

        result = []
        for booking in bookings:
            snapshot = booking.get("vehicle") or {}
            live = vehicle_map.get(snapshot.get("vehicle_id"), {})

            def vehicle_field(name):
                value = snapshot.get(name)
                return value if value is not None else live.get(name)

            costs = booking_costs(
                booking.get("start_date"),
                booking.get("end_date"),
                vehicle_field("costs_per_day"),
                booking.get("additionalServices"),
            )
            result.append({
                "booking_id": booking["_id"],
                "start_date": booking.get("start_date"),
                "end_date": booking.get("end_date"),
                "way_of_billing": booking.get("way_of_billing"),
                "vehicle_id": snapshot.get("vehicle_id"),
                "total_costs": as_number((booking.get("pricing") or {}).get("total_costs")),
                "model": vehicle_field("model"),
                "producer": vehicle_field("producer"),
                "costs_per_day": as_number(vehicle_field("costs_per_day")),
                "plate_number": vehicle_field("plate_number"),
                "number_of_seats": vehicle_field("number_of_seats"),
                **costs,
            })
        return result

    async def get_services_for_booking(self, booking_id: str) -> Dict[str, List[Dict]]:
        db = await self.database()
        booking = await db[BOOKINGS_COLLECTION].find_one({"_id": booking_id})
        if booking is None:
            raise NotFoundOrInactive("Booking not found")

        current = [filter_service(service) for service in booking.get("additionalServices") or []]
        current.sort(key=lambda service: service["description"] or "")
        current_ids = {service["additional_service_id"] for service in current}

        services = await db[SERVICES_COLLECTION].find().sort("description", 1).to_list(length=None)
        available = [
            filter_service(service_snapshot(service))
            for service in services
            if service["_id"] not in current_ids
        ]
        return {"available": available, "current": current}

    async def add_services_to_booking(
        self, booking_id: str, customer_id: int, service_ids: List[int]
    ) -> Dict:
        unique_service_ids = list(dict.fromkeys(service_ids or []))
        if not unique_service_ids:
            raise ValidationError("No additional services selected")

        db = await self.database()
        bookings = db[BOOKINGS_COLLECTION]
        booking_filter = {
            "_id": booking_id,
            "customer.person_id": customer_id,
            "start_date": {"$gte": self._today_string()},
        }

        booking = await bookings.find_one(booking_filter)
        if booking is None:
            raise NotFoundOrInactive("Booking not found or inactive")

        person = await db[PERSONS_COLLECTION].find_one({"_id": customer_id}, {"bankAccount": 1})
        if not (person or {}).get("bankAccount"):
            raise BusinessRuleViolation("Customer has no bank account")

        services = await db[SERVICES_COLLECTION].find({"_id": {"$in": unique_service_ids}}).to_list(length=None)
        if len(services) != len(unique_service_ids):
            raise BusinessRuleViolation("Invalid additional service selection")
        services_by_id = {service["_id"]: service for service in services}

        for attempt in range(1, MAX_ATTACH_ATTEMPTS + 1):
            existing = booking.get("additionalServices")
            existing_services = existing or []
            existing_ids = {service.get("service_id") for service in existing_services}
            new_services = [
                service_snapshot(services_by_id[sid]) for sid in unique_service_ids if sid not in existing_ids
            ]
            updated_services = existing_services + new_services

            costs = booking_costs(
                booking.get("start_date"),
                booking.get("end_date"),
                (booking.get("vehicle") or {}).get("costs_per_day"),
                updated_services,
            )

            # Only write if nobody changed the service list since it was read
            swap_filter = dict(booking_filter)
            if existing is None:
                swap_filter["additionalServices"] = {"$exists": False}
            else:
                swap_filter["additionalServices"] = existing
            result = await bookings.update_one(
                swap_filter,
                {"$set": {"additionalServices": updated_services, "pricing.total_costs": costs["total_cost"]}},
            )
            if result.matched_count:
                logger.info(
                    f"[UPDATE] Booking ID: {booking_id} | Services added: {len(new_services)} | "
                    f"Total: {costs['total_cost']:.2f} (NoSQL)"
                )
                return {
                    "base_cost": costs["base_cost"],
                    "extras_cost": costs["extras_cost"],
                    "total_cost": costs["total_cost"],
                }

            logger.warning(f"Booking {booking_id} changed concurrently, retrying ({attempt}/{MAX_ATTACH_ATTEMPTS})")
            booking = await bookings.find_one(booking_filter)
            if booking is None:
                raise NotFoundOrInactive("Booking not found or inactive")

        raise BackendUnavailable(f"{DOCUMENT_ERROR_PREFIX}Booking kept changing, services not added")

    async def report_by_vehicle(
        self,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        vehicle_id: Optional[int] = None,
    ) -> List[Dict]:
        db = await self.database()
        pipeline = build_vehicle_report_pipeline(date_from, date_to, vehicle_id)
        bookings = await db[BOOKINGS_COLLECTION].aggregate(pipeline).to_list(length=None)

        report = []
        for booking in bookings:
            vehicle = booking.get("vehicle") or {}
            costs = booking_costs(
                booking.get("start_date"),
                booking.get("end_date"),
                vehicle.get("costs_per_day"),
                booking.get("additionalServices"),
            )
            report.append({
                "booking_id": booking.get("booking_id"),
                "customer_name": (booking.get("customer") or {}).get("name"),
                "producer": vehicle.get("producer"),
                "model": vehicle.get("model"),
                "start_date": booking.get("start_date"),
                "end_date": booking.get("end_date"),
                "costs_per_day": as_number(vehicle.get("costs_per_day")),
                "days": costs["days"],
                "base_cost": costs["base_cost"],
                "additional_cost": costs["extras_cost"],
                "total_cost": costs["total_cost"],
            })
        return report

    async def report_by_customer_and_retailer(
        self,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        customer_id: Optional[int] = None,
        retailer_id: Optional[int] = None,
    ) -> List[Dict]:
        db = await self.database()
        query: dict = {"additionalServices.0": {"$exists": True}}
        if date_from or date_to:
            query["start_date"] = {}
            if date_from:
                query["start_date"]["$gte"] = to_date_string(date_from)
            if date_to:
                query["start_date"]["$lt"] = to_date_string(date_to)
        if customer_id is not None:
            query["customer.person_id"] = customer_id
        if retailer_id is not None:
            query["$or"] = [{"retailer.person_id": retailer_id}, {"vehicle.retailer_id": retailer_id}]

        cursor = db[BOOKINGS_COLLECTION].find(query).sort([("start_date", -1), ("_id", -1)])
        bookings = await cursor.to_list(length=None)
        if not bookings:
            return []

        persons = db[PERSONS_COLLECTION]
        customer_ids = list({
            (b.get("customer") or {}).get("person_id")
            for b in bookings
            if (b.get("customer") or {}).get("person_id") is not None
        })
        customers = await persons.find({"_id": {"$in": customer_ids}}, {"bankAccount": 1}).to_list(length=None)
        customer_map = {person["_id"]: person for person in customers}

        def retailer_id_of(booking):
            retailer = booking.get("retailer") or {}
            if retailer.get("person_id") is not None:
                return retailer["person_id"]
            return (booking.get("vehicle") or {}).get("retailer_id")

        retailer_ids = list({retailer_id_of(b) for b in bookings if retailer_id_of(b) is not None})
        retailers = await persons.find({"_id": {"$in": retailer_ids}}, {"roles.retailer": 1}).to_list(length=None)
        retailer_map = {person["_id"]: person for person in retailers}

        report = []
        for booking in bookings:
            vehicle = booking.get("vehicle") or {}
            services = booking.get("additionalServices") or []
            costs = booking_costs(booking.get("start_date"), booking.get("end_date"), vehicle.get("costs_per_day"), services)

            booking_customer_id = (booking.get("customer") or {}).get("person_id")
            bank_account = (customer_map.get(booking_customer_id) or {}).get("bankAccount") or {}

            booking_retailer_id = retailer_id_of(booking)
            retailer_name = (booking.get("retailer") or {}).get("company_name")
            if retailer_name is None:
                retailer_doc = retailer_map.get(booking_retailer_id) or {}
                retailer_name = ((retailer_doc.get("roles") or {}).get("retailer") or {}).get("company_name")

            descriptions = sorted(service.get("description") or "" for service in services)

            report.append({
                "booking_id": booking["_id"],
                "start_date": booking.get("start_date"),
                "end_date": booking.get("end_date"),
                "customer_id": booking_customer_id,
                "customer_name": (booking.get("customer") or {}).get("name"),
                "customer_iban": bank_account.get("iban"),
                "customer_bic": bank_account.get("bic"),
                "vehicle_id": vehicle.get("vehicle_id"),
                "model": vehicle.get("model"),
                "producer": vehicle.get("producer"),
                "retailer_id": booking_retailer_id,
                "retailer_name": retailer_name,
                "rental_days": costs["days"],
                "cost_per_day": as_number(vehicle.get("costs_per_day")),
                "base_cost": costs["base_cost"],
                "additional_costs": costs["extras_cost"],
                "additional_services_count": len(services),
                "total_cost": costs["total_cost"],
                "additional_services_list": ", ".join(descriptions) or None,
            })
        return report
