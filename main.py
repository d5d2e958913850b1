"""
FastAPI application: endpoint wiring, backend selection and lifecycle.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Body, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

import routes
from config import DB_MODE, HOST, LOG_DATE_FORMAT, LOG_FORMAT, LOG_LEVEL, PORT
from database import async_session_maker, close_db, init_db, wait_for_database
from db_operations import SqlRentalStore
from mongo_database import close_client, get_database
from mongo_operations import MongoRentalStore
from schemas import BookingIn, ServicesIn
from store import BackendMode, BackendSelector, RentalStore

# Configure logging
logging.basicConfig(
    level=LOG_LEVEL,
    format=LOG_FORMAT,
    datefmt=LOG_DATE_FORMAT,
)
logger = logging.getLogger(__name__)


def build_backends() -> BackendSelector:
    """Stores for the configured databases, starting in the DB_MODE backend."""
    return BackendSelector(
        relational=SqlRentalStore(async_session_maker),
        document=MongoRentalStore(get_database),
        mode=BackendMode.parse(DB_MODE),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    if app.state.manage_connections:
        await wait_for_database()
        await init_db()
        logger.info(f"✅ Serving from the {app.state.backends.mode.value} backend")
    yield
    if app.state.manage_connections:
        await close_client()
        await close_db()


def get_backends(request: Request) -> BackendSelector:
    return request.app.state.backends


def get_store(request: Request) -> RentalStore:
    """Store of the active backend, resolved once when the request starts."""
    return request.app.state.backends.current()


def get_session_maker(request: Request):
    return request.app.state.backends.relational.session_maker


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    location = ".".join(str(part) for part in errors[0].get("loc", ())) if errors else ""
    logger.warning(f"Rejected request to {request.url.path}: {errors}")
    return JSONResponse(status_code=400, content={"error": f"Invalid request parameter: {location}"})


def create_app(backends: Optional[BackendSelector] = None) -> FastAPI:
    """
    Build the application.

    Without explicit backends the app connects to the configured databases
    on startup and closes them on shutdown.
    """
    app = FastAPI(
        title="Vehicle Rental Booking API",
        description="Vehicle reservation and additional-service booking over a relational or document backend",
        lifespan=lifespan,
    )
    app.state.manage_connections = backends is None
    app.state.backends = backends or build_backends()

    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    @app.get("/")
    async def root():
        return {"message": "Vehicle Rental Booking API"}

    @app.get("/mode")
    async def get_mode(backends: BackendSelector = Depends(get_backends)):
        return {"mode": backends.mode.value}

    @app.get("/usecase1/customers")
    async def usecase1_customers(store: RentalStore = Depends(get_store)):
        return await routes.get_customers_route(store)

    @app.get("/usecase1/vehicles")
    async def usecase1_vehicles(
        start: Optional[str] = Query(None, description="Start date (YYYY-MM-DD)"),
        end: Optional[str] = Query(None, description="End date (YYYY-MM-DD)"),
        store: RentalStore = Depends(get_store),
    ):
        return await routes.get_vehicles_route(store, start, end)

    @app.post("/usecase1/bookings")
    async def usecase1_create_booking(
        payload: Optional[BookingIn] = Body(None),
        store: RentalStore = Depends(get_store),
    ):
        return await routes.create_booking_route(store, payload or BookingIn())

    @app.get("/usecase1/report")
    async def usecase1_report(
        date_from: Optional[str] = Query(None, alias="from", description="Earliest start date (YYYY-MM-DD)"),
        date_to: Optional[str] = Query(None, alias="to", description="Latest end date (YYYY-MM-DD)"),
        vehicle_id: Optional[int] = Query(None, alias="vehicleId"),
        store: RentalStore = Depends(get_store),
    ):
        return await routes.vehicle_report_route(store, date_from, date_to, vehicle_id)

    @app.get("/usecase/customers")
    async def usecase2_customers(store: RentalStore = Depends(get_store)):
        return await routes.get_bank_customers_route(store)

    @app.get("/usecase/bookings")
    async def usecase2_bookings(
        customer_id: Optional[int] = Query(None, alias="customerId"),
        store: RentalStore = Depends(get_store),
    ):
        return await routes.get_bookings_route(store, customer_id)

    @app.get("/usecase/bookings/{booking_id}/services")
    async def usecase2_booking_services(booking_id: str, store: RentalStore = Depends(get_store)):
        return await routes.get_booking_services_route(store, booking_id)

    @app.post("/usecase/bookings/{booking_id}/services")
    async def usecase2_add_booking_services(
        booking_id: str,
        payload: Optional[ServicesIn] = Body(None),
        store: RentalStore = Depends(get_store),
    ):
        return await routes.add_booking_services_route(store, booking_id, payload or ServicesIn())

    @app.get("/usecase2/report")
    async def usecase2_report(
        date_from: Optional[str] = Query(None, alias="from", description="Earliest start date (YYYY-MM-DD)"),
        date_to: Optional[str] = Query(None, alias="to", description="Start dates before this date (YYYY-MM-DD)"),
        customer_id: Optional[int] = Query(None, alias="customerId"),
        retailer_id: Optional[int] = Query(None, alias="retailerId"),
        store: RentalStore = Depends(get_store),
    ):
        return await routes.customer_retailer_report_route(store, date_from, date_to, customer_id, retailer_id)

    @app.post("/migrate-nosql")
    async def migrate_nosql(backends: BackendSelector = Depends(get_backends)):
        return await routes.migrate_route(backends)

    @app.get("/seed-status")
    async def seed_status(session_maker=Depends(get_session_maker)):
        return await routes.seed_status_route(session_maker)

    @app.post("/generate")
    async def generate(session_maker=Depends(get_session_maker)):
        return await routes.generate_route(session_maker)

    @app.get("/tables")
    async def tables():
        return routes.tables_route()

    @app.get("/table/{name}")
    async def table(
        name: str,
        limit: Optional[int] = Query(None, description="Rows to return (1-500, default 50)"),
        session_maker=Depends(get_session_maker),
    ):
        return await routes.table_route(session_maker, name, limit)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=HOST, port=PORT)
