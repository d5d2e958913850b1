"""
Request bodies of the workflow endpoints.

Every field is optional at the schema level so that missing values are
reported with the workflow's own messages instead of a generic validation
error.
"""
from typing import List, Optional

from pydantic import BaseModel


class BookingIn(BaseModel):
    customerId: Optional[int] = None
    vehicleId: Optional[int] = None
    startDate: Optional[str] = None
    endDate: Optional[str] = None
    wayOfBilling: Optional[str] = None


class ServicesIn(BaseModel):
    customerId: Optional[int] = None
    serviceIds: Optional[List[int]] = None
    confirmPayment: Optional[bool] = None
