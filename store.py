"""
Data-access interface shared by the relational and document backends, and
the selector deciding which of them serves requests.
"""
import abc
import asyncio
import logging
from datetime import date
from enum import Enum
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


class BackendMode(str, Enum):
    RELATIONAL = "relational"
    DOCUMENT = "document"

    @classmethod
    def parse(cls, value: Optional[str]) -> "BackendMode":
        """Parse a mode name; "nosql"/"document" select the document backend, anything else relational."""
        if value and value.strip().lower() in ("nosql", "document", "mongo", "mongodb"):
            return cls.DOCUMENT
        return cls.RELATIONAL


class RentalStore(abc.ABC):
    """
    Operations behind both guided workflows.

    Rows come back as plain dicts: dates as "YYYY-MM-DD" strings and money
    as floats, so both backends produce identical JSON.
    """

    mode: BackendMode
    error_prefix: str = ""

    def error_message(self, message: str) -> str:
        """Generic failure message, tagged with the backend that failed."""
        return f"{self.error_prefix}{message}"

    @abc.abstractmethod
    async def list_customers(self, require_bank_account: bool = False) -> List[Dict]:
        """Customers ordered by name; use case 2 passes require_bank_account=True."""

    @abc.abstractmethod
    async def find_available_vehicles(self, start: date, end: date) -> List[Dict]:
        """Vehicles without a booking overlapping [start, end], by producer and model."""

    @abc.abstractmethod
    async def create_booking(
        self,
        vehicle_id: int,
        start_date: date,
        end_date: date,
        way_of_billing: str,
        customer_id: Optional[int] = None,
    ) -> Dict:
        """Reserve a vehicle; returns booking_id and total_costs."""

    @abc.abstractmethod
    async def list_upcoming_bookings(self, customer_id: int) -> List[Dict]:
        """Bookings of a customer starting today or later, with cost breakdown."""

    @abc.abstractmethod
    async def get_services_for_booking(self, booking_id: str) -> Dict[str, List[Dict]]:
        """Available and current additional services of a booking."""

    @abc.abstractmethod
    async def add_services_to_booking(
        self, booking_id: str, customer_id: int, service_ids: List[int]
    ) -> Dict:
        """Attach services and recompute the booking total."""

    @abc.abstractmethod
    async def report_by_vehicle(
        self,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        vehicle_id: Optional[int] = None,
    ) -> List[Dict]:
        """Vehicle utilisation report, all bookings including those without services."""

    @abc.abstractmethod
    async def report_by_customer_and_retailer(
        self,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        customer_id: Optional[int] = None,
        retailer_id: Optional[int] = None,
    ) -> List[Dict]:
        """Bookings with at least one additional service, with customer and retailer details."""


class BackendSelector:
    """
    Holds both stores and the active mode.

    Handlers receive the store resolved at the start of their request, so a
    switch only affects requests arriving afterwards.
    """

    def __init__(self, relational: RentalStore, document: RentalStore, mode: BackendMode = BackendMode.RELATIONAL):
        self.relational = relational
        self.document = document
        self._mode = mode
        # Serializes migrations so two of them never interleave their copies
        self.lock = asyncio.Lock()

    @property
    def mode(self) -> BackendMode:
        return self._mode

    def store_for(self, mode: BackendMode) -> RentalStore:
        return self.document if mode == BackendMode.DOCUMENT else self.relational

    def current(self) -> RentalStore:
        return self.store_for(self._mode)

    def switch(self, mode: BackendMode):
        if mode != self._mode:
            logger.info(f"Switching data backend: {self._mode.value} -> {mode.value}")
        self._mode = mode
