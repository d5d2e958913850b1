"""
Database models for the application.
"""
from sqlalchemy import Column, Date, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import declarative_base

Base = declarative_base()

# Money columns come back as floats so they serialize to JSON and BSON as-is
Money = Numeric(10, 2, asdecimal=False)


class Person(Base):
    """A natural or legal person; customers and retailers are roles of a person."""
    __tablename__ = "Person"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False, index=True)
    eMail = Column(String(255), nullable=True)
    phone_number = Column(String(64), nullable=True)
    address = Column(String(255), nullable=True)
    stars = Column(Integer, nullable=True)


class Customer(Base):
    __tablename__ = "Customer"

    person_id = Column(Integer, ForeignKey("Person.id"), primary_key=True)
    customer_number = Column(String(64), nullable=False)
    driver_license_number = Column(String(64), nullable=True)


class Retailer(Base):
    __tablename__ = "Retailer"

    person_id = Column(Integer, ForeignKey("Person.id"), primary_key=True)
    company_name = Column(String(255), nullable=False)
    tax_number = Column(String(64), nullable=True)


class Bankaccount(Base):
    __tablename__ = "Bankaccount"

    account_id = Column(Integer, primary_key=True)
    person_id = Column(Integer, ForeignKey("Person.id"), nullable=False, unique=True)
    iban = Column(String(34), nullable=False)
    bic = Column(String(11), nullable=True)


class Rating(Base):
    """Star rating one person gives another."""
    __tablename__ = "Rating"

    rater_id = Column(Integer, ForeignKey("Person.id"), primary_key=True)
    rated_id = Column(Integer, ForeignKey("Person.id"), primary_key=True)
    stars = Column(Integer, nullable=False)


class Vehicle(Base):
    __tablename__ = "Vehicle"

    vehicle_id = Column(Integer, primary_key=True)
    model = Column(String(128), nullable=False)
    producer = Column(String(128), nullable=False)
    costs_per_day = Column(Money, nullable=False)
    plate_number = Column(String(32), nullable=True)
    number_of_seats = Column(Integer, nullable=True)
    retailer_id = Column(Integer, ForeignKey("Person.id"), nullable=True)


class Booking(Base):
    """
    Reservation of one vehicle by one customer.

    total_costs is kept equal to rental days * costs_per_day plus the costs of
    every attached additional service.
    """
    __tablename__ = "Booking"

    booking_id = Column(String(64), primary_key=True)
    start_date = Column(Date, nullable=False, index=True)
    end_date = Column(Date, nullable=False)
    total_costs = Column(Money, nullable=True)
    way_of_billing = Column(String(64), nullable=False)
    customer_id = Column(Integer, ForeignKey("Person.id"), nullable=False, index=True)
    vehicle_id = Column(Integer, ForeignKey("Vehicle.vehicle_id"), nullable=False, index=True)


class AdditionalService(Base):
    __tablename__ = "AdditionalService"

    additional_service_id = Column(Integer, primary_key=True)
    description = Column(String(255), nullable=False)
    costs = Column(Money, nullable=False)


class BookingService(Base):
    """Join table; the composite key keeps service attachment idempotent."""
    __tablename__ = "Bookings_Services"

    booking_id = Column(String(64), ForeignKey("Booking.booking_id"), primary_key=True)
    additional_service_id = Column(
        Integer, ForeignKey("AdditionalService.additional_service_id"), primary_key=True
    )
