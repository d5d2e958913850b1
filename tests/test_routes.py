"""
End-to-end tests of the HTTP API against in-memory backends.
"""
import httpx
import pytest
import pytest_asyncio

from db_operations import SqlRentalStore
from main import create_app
from mongo_operations import MongoRentalStore
from store import BackendMode, BackendSelector
from conftest import fixed_today, provider_for


def make_client(session_maker, database_provider, mode=BackendMode.RELATIONAL) -> httpx.AsyncClient:
    backends = BackendSelector(
        relational=SqlRentalStore(session_maker, today=fixed_today),
        document=MongoRentalStore(database_provider, today=fixed_today),
        mode=mode,
    )
    app = create_app(backends)
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")


@pytest_asyncio.fixture
async def client(session_maker, mongo_db):
    async with make_client(session_maker, provider_for(mongo_db)) as client:
        yield client


@pytest_asyncio.fixture
async def empty_client(empty_session_maker, mongo_db):
    async with make_client(empty_session_maker, provider_for(mongo_db)) as client:
        yield client


class TestReservation:
    @pytest.mark.asyncio
    async def test_customers(self, client):
        response = await client.get("/usecase1/customers")

        assert response.status_code == 200
        assert [c["name"] for c in response.json()["customers"]] == ["Alice Adams", "Bob Brown"]

    @pytest.mark.asyncio
    async def test_vehicles_require_both_dates(self, client):
        response = await client.get("/usecase1/vehicles", params={"start": "2024-01-01"})

        assert response.status_code == 400
        assert response.json() == {"error": "Missing dates"}

    @pytest.mark.asyncio
    async def test_vehicles_reject_malformed_date(self, client):
        response = await client.get("/usecase1/vehicles", params={"start": "2024-13-01", "end": "2024-01-02"})

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid date"}

    @pytest.mark.asyncio
    async def test_vehicles(self, client):
        response = await client.get("/usecase1/vehicles", params={"start": "2024-01-02", "end": "2024-01-03"})

        assert response.status_code == 200
        assert [v["vehicle_id"] for v in response.json()["vehicles"]] == [12, 11]

    @pytest.mark.asyncio
    async def test_booking_missing_fields(self, client):
        response = await client.post("/usecase1/bookings", json={"vehicleId": 10, "startDate": "2024-03-01"})
        assert response.status_code == 400
        assert response.json() == {"error": "Missing fields"}

        response = await client.post("/usecase1/bookings")
        assert response.status_code == 400
        assert response.json() == {"error": "Missing fields"}

    @pytest.mark.asyncio
    async def test_create_booking(self, client):
        response = await client.post("/usecase1/bookings", json={
            "customerId": 2,
            "vehicleId": 10,
            "startDate": "2024-03-01",
            "endDate": "2024-03-04",
            "wayOfBilling": "invoice",
        })

        assert response.status_code == 200
        body = response.json()
        assert body["ok"] is True
        assert body["booking_id"].startswith("b_")
        assert body["total_costs"] == 150.0

    @pytest.mark.asyncio
    async def test_create_booking_with_unknown_vehicle(self, client):
        response = await client.post("/usecase1/bookings", json={
            "vehicleId": 999,
            "startDate": "2024-03-01",
            "endDate": "2024-03-04",
            "wayOfBilling": "invoice",
        })

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid vehicle"}

    @pytest.mark.asyncio
    async def test_report(self, client):
        response = await client.get("/usecase1/report", params={"from": "2024-01-01", "vehicleId": 10})

        assert response.status_code == 200
        report = response.json()["report"]
        assert [row["booking_id"] for row in report] == ["b_scenario"]
        assert report[0]["total_cost"] == 150.0


class TestAdditionalServices:
    @pytest.mark.asyncio
    async def test_customers_with_bank_account(self, client):
        response = await client.get("/usecase/customers")

        assert [c["person_id"] for c in response.json()["customers"]] == [1]

    @pytest.mark.asyncio
    async def test_bookings_require_customer(self, client):
        response = await client.get("/usecase/bookings")
        assert response.status_code == 400
        assert response.json() == {"error": "Missing customerId"}

        response = await client.get("/usecase/bookings", params={"customerId": "abc"})
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid request parameter: query.customerId"}

    @pytest.mark.asyncio
    async def test_bookings(self, client):
        response = await client.get("/usecase/bookings", params={"customerId": 1})

        bookings = response.json()["bookings"]
        assert [b["booking_id"] for b in bookings] == ["b_scenario"]
        assert bookings[0]["total_cost"] == 150.0

    @pytest.mark.asyncio
    async def test_booking_services(self, client):
        response = await client.get("/usecase/bookings/b_past/services")
        assert response.status_code == 200
        assert [s["description"] for s in response.json()["current"]] == ["Snow chains"]

        response = await client.get("/usecase/bookings/b_missing/services")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_add_services_input_checks(self, client):
        url = "/usecase/bookings/b_scenario/services"

        response = await client.post(url, json={"serviceIds": [1], "confirmPayment": True})
        assert response.json() == {"error": "Missing customerId"}

        response = await client.post(url, json={"customerId": 1, "serviceIds": [], "confirmPayment": True})
        assert response.json() == {"error": "No additional services selected"}

        response = await client.post(url, json={"customerId": 1, "serviceIds": [1], "confirmPayment": False})
        assert response.status_code == 400
        assert response.json() == {"error": "Payment not confirmed"}

    @pytest.mark.asyncio
    async def test_add_services_rule_violations(self, client):
        response = await client.post(
            "/usecase/bookings/b_bob/services",
            json={"customerId": 2, "serviceIds": [1], "confirmPayment": True},
        )
        assert response.status_code == 400
        assert response.json() == {"error": "Customer has no bank account"}

        response = await client.post(
            "/usecase/bookings/b_past/services",
            json={"customerId": 1, "serviceIds": [1], "confirmPayment": True},
        )
        assert response.status_code == 404
        assert response.json() == {"error": "Booking not found or inactive"}

    @pytest.mark.asyncio
    async def test_add_services(self, client):
        payload = {"customerId": 1, "serviceIds": [1, 2], "confirmPayment": True}

        response = await client.post("/usecase/bookings/b_scenario/services", json=payload)
        assert response.status_code == 200
        assert response.json() == {"ok": True, "base_cost": 150.0, "extras_cost": 25.0, "total_cost": 175.0}

        response = await client.post("/usecase/bookings/b_scenario/services", json=payload)
        assert response.json()["total_cost"] == 175.0

        response = await client.get("/usecase2/report", params={"retailerId": 3})
        report = response.json()["report"]
        assert [row["booking_id"] for row in report] == ["b_scenario"]
        assert report[0]["additional_services_list"] == "Child seat, Full insurance"


class TestMigration:
    @pytest.mark.asyncio
    async def test_migration_switches_backend(self, client):
        params = {"start": "2024-01-02", "end": "2024-01-03"}
        before = (await client.get("/usecase1/vehicles", params=params)).json()
        report_before = (await client.get("/usecase1/report")).json()
        assert (await client.get("/mode")).json() == {"mode": "relational"}

        response = await client.post("/migrate-nosql")

        assert response.status_code == 200
        body = response.json()
        assert body["ok"] is True
        assert body["mode"] == "document"
        assert body["migrated"]["bookings"] == 3
        assert (await client.get("/mode")).json() == {"mode": "document"}

        after = (await client.get("/usecase1/vehicles", params=params)).json()
        assert after == before
        assert (await client.get("/usecase1/report")).json() == report_before

    @pytest.mark.asyncio
    async def test_document_backend_failure_is_prefixed(self, session_maker):
        async def unreachable():
            raise RuntimeError("connection refused")

        async with make_client(session_maker, unreachable, mode=BackendMode.DOCUMENT) as client:
            response = await client.get("/usecase1/vehicles", params={"start": "2024-01-01", "end": "2024-01-02"})

        assert response.status_code == 500
        assert response.json() == {"error": "NoSQL: Failed to load vehicles"}

    @pytest.mark.asyncio
    async def test_failed_migration_keeps_backend(self, session_maker):
        async def unreachable():
            raise RuntimeError("connection refused")

        async with make_client(session_maker, unreachable) as client:
            response = await client.post("/migrate-nosql")
            mode = (await client.get("/mode")).json()

        assert response.status_code == 500
        assert mode == {"mode": "relational"}


class TestSystem:
    @pytest.mark.asyncio
    async def test_unknown_route_uses_error_body(self, client):
        response = await client.get("/usecase3/report")

        assert response.status_code == 404
        assert response.json() == {"error": "Not Found"}

    @pytest.mark.asyncio
    async def test_generate_once(self, empty_client):
        assert (await empty_client.get("/seed-status")).json() == {"seeded": False}

        response = await empty_client.post("/generate")
        assert response.status_code == 201
        assert (await empty_client.get("/seed-status")).json() == {"seeded": True}

        response = await empty_client.post("/generate")
        assert response.status_code == 409
        assert response.json() == {"error": "Data already generated"}

    @pytest.mark.asyncio
    async def test_tables(self, client):
        response = await client.get("/tables")

        assert "Bookings_Services" in response.json()["tables"]

    @pytest.mark.asyncio
    async def test_table_rows(self, client):
        response = await client.get("/table/AdditionalService", params={"limit": 2})

        body = response.json()
        assert body["table"] == "AdditionalService"
        assert len(body["rows"]) == 2

    @pytest.mark.asyncio
    async def test_unknown_table(self, client):
        response = await client.get("/table/sqlite_master")

        assert response.status_code == 400
        assert response.json() == {"error": "Unknown table"}
