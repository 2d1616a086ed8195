import asyncio

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import NullPool

from backoffice_service.app import database, main, models
from backoffice_service.app.contracts import ContractGenerator

PNG = ("signature.png", b"\x89PNG\r\n\x1a\n", "image/png")

VAN = {
    "name": "Ford Transit",
    "make": "Ford",
    "model": "Transit",
    "year": 2021,
    "license_plate": "1AB 9999",
    "rate4h": 500,
    "rate12h": 900,
    "daily_rate": 1200,
    "features": ["tow hitch"],
    "current_mileage": 10000,
}

CUSTOMER = {
    "first_name": "Jan",
    "last_name": "Novák",
    "email": "jan.novak@example.com",
    "phone": "+420 777 123 456",
    "driver_license_number": "EF123456",
    "address": "Vodičkova 1, Praha",
}


async def _create_schema(engine):
    async with engine.begin() as conn:
        await conn.run_sync(models.Base.metadata.create_all)
    await engine.dispose()


@pytest.fixture
def client(tmp_path, monkeypatch):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'api.db'}", poolclass=NullPool)
    asyncio.run(_create_schema(engine))
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    async def fake_upload(file, filename, folder):
        return f"https://files.example.com/{folder}/{filename}"

    monkeypatch.setattr(main, "upload_file", fake_upload)
    main.app.dependency_overrides[database.get_db] = override_get_db
    main.app.dependency_overrides[main.get_contract_generator] = lambda: ContractGenerator(url="")
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


@pytest.fixture
def staff(client):
    client.post("/register", json={
        "email": "admin@example.com", "full_name": "Admin", "password": "secret"
    })
    response = client.post("/login", json={"email": "admin@example.com", "password": "secret"})
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


@pytest.fixture
def van(client, staff):
    response = client.post("/vehicles/", json=VAN, headers=staff)
    assert response.status_code == 201
    return response.json()


@pytest.fixture
def customer(client, staff):
    response = client.post("/customers/", json=CUSTOMER, headers=staff)
    assert response.status_code == 201
    return response.json()


def book(client, staff, van, customer, start, end):
    return client.post("/reservations/", json={
        "customer_id": customer["id"],
        "vehicle_id": van["id"],
        "start_date": start,
        "end_date": end,
    }, headers=staff)


def test_health(client):
    assert client.get("/health").json()["status"] == "healthy"


def test_staff_endpoints_require_token(client):
    assert client.get("/vehicles/").status_code in (401, 403)
    response = client.get("/vehicles/", headers={"Authorization": "Bearer nonsense"})
    assert response.status_code == 401


def test_first_user_is_admin_and_registration_is_closed(client, staff):
    assert client.get("/users/me", headers=staff).json()["is_admin"] is True

    response = client.post("/register", json={
        "email": "intruder@example.com", "full_name": "Intruder", "password": "x"
    })
    assert response.status_code == 403

    response = client.post("/register", json={
        "email": "clerk@example.com", "full_name": "Clerk", "password": "x"
    }, headers=staff)
    assert response.status_code == 201
    assert response.json()["is_admin"] is False


def test_wrong_password(client, staff):
    response = client.post("/login", json={"email": "admin@example.com", "password": "nope"})
    assert response.status_code == 400


def test_quote(client, staff, van):
    response = client.get(f"/vehicles/{van['id']}/quote", params={
        "start_date": "2030-05-01T09:00:00", "end_date": "2030-05-02T10:00:00"
    }, headers=staff)
    assert response.status_code == 200
    assert response.json()["price"] == 2400


def test_quote_with_inverted_interval(client, van):
    response = client.get("/online/quote", params={
        "vehicle_id": van["id"], "start_date": "2030-05-01T09:00:00", "end_date": "2030-05-01T08:00:00"
    })
    assert response.status_code == 400
    assert response.json()["detail"]["reason"] == "invalid_interval"


def test_reservation_lifecycle(client, staff, van, customer):
    response = book(client, staff, van, customer, "2030-05-01T09:00:00", "2030-05-01T13:00:00")
    assert response.status_code == 201
    reservation = response.json()
    assert reservation["status"] == "scheduled"
    assert reservation["total_price"] == 500

    conflict = book(client, staff, van, customer, "2030-05-01T12:00:00", "2030-05-01T15:00:00")
    assert conflict.status_code == 409
    assert conflict.json()["detail"]["reason"] == "interval_conflict"

    free = client.get("/vehicles/available", params={
        "start_date": "2030-05-01T10:00:00", "end_date": "2030-05-01T11:00:00"
    }, headers=staff)
    assert free.json() == []

    no_signature = client.put(
        f"/reservations/{reservation['id']}/activate", data={"start_mileage": 10000}, headers=staff
    )
    assert no_signature.status_code == 400
    assert no_signature.json()["detail"]["reason"] == "signature_required"

    activated = client.put(
        f"/reservations/{reservation['id']}/activate",
        data={"start_mileage": 10000}, files={"signature": PNG}, headers=staff,
    )
    assert activated.status_code == 200
    assert activated.json()["status"] == "active"
    assert activated.json()["handover_signature_url"] == "https://files.example.com/signatures/signature.png"

    completed = client.put(
        f"/reservations/{reservation['id']}/complete",
        data={"end_mileage": 10150, "payment_method": "cash"}, files={"signature": PNG}, headers=staff,
    )
    assert completed.status_code == 200
    assert completed.json()["status"] == "completed"

    vehicle = client.get(f"/vehicles/{van['id']}", headers=staff).json()
    assert vehicle["current_mileage"] == 10150
    assert vehicle["status"] == "available"

    summary = client.get("/financials/summary", headers=staff).json()
    assert summary["total_income"] == 500

    invoice = client.post(f"/reservations/{reservation['id']}/invoice", headers=staff)
    assert invoice.status_code == 201
    assert invoice.json()["invoice_number"].startswith("FAKT-")


def test_cancelled_reservation_cannot_be_activated(client, staff, van, customer):
    reservation = book(client, staff, van, customer, "2030-05-01T09:00:00", "2030-05-01T13:00:00").json()
    assert client.put(f"/reservations/{reservation['id']}/cancel", headers=staff).json()["status"] == "cancelled"

    response = client.put(
        f"/reservations/{reservation['id']}/activate",
        data={"start_mileage": 10000}, files={"signature": PNG}, headers=staff,
    )
    assert response.status_code == 409
    assert response.json()["detail"]["error"] == "invalid_transition"


def test_unknown_reservation(client, staff):
    response = client.get("/reservations/404", headers=staff)
    assert response.status_code == 404
    assert response.json()["detail"]["error"] == "not_found"


def test_mileage_cannot_be_rolled_back(client, staff, van):
    response = client.put(f"/vehicles/{van['id']}", json={"current_mileage": 9000}, headers=staff)
    assert response.status_code == 400
    assert response.json()["detail"]["reason"] == "odometer_below_current"


def test_portal_flow(client, staff, van):
    pending = client.post("/reservations/pending", json={"vehicle_id": van["id"]}, headers=staff)
    assert pending.status_code == 201
    token = pending.json()["portal_token"]
    assert pending.json()["portal_url"].endswith(token)
    assert pending.json()["reservation"]["status"] == "pending-customer"

    view = client.get(f"/portal/{token}")
    assert view.status_code == 200
    assert view.json()["vehicle"]["name"] == "Ford Transit"

    form = dict(CUSTOMER, start_date="2030-06-01T08:00:00", end_date="2030-06-01T20:00:00")
    submitted = client.post(
        f"/portal/{token}", data=form, files={"driver_license": ("licence.jpg", b"jpg", "image/jpeg")}
    )
    assert submitted.status_code == 200
    assert submitted.json()["status"] == "scheduled"
    assert submitted.json()["total_price"] == 900

    assert client.get(f"/portal/{token}").status_code == 404
    replay = client.post(
        f"/portal/{token}", data=form, files={"driver_license": ("licence.jpg", b"jpg", "image/jpeg")}
    )
    assert replay.status_code == 404


def test_portal_requires_license_image(client, staff, van):
    token = client.post("/reservations/pending", json={"vehicle_id": van["id"]}, headers=staff).json()["portal_token"]
    form = dict(CUSTOMER, start_date="2030-06-01T08:00:00", end_date="2030-06-01T20:00:00")

    response = client.post(f"/portal/{token}", data=form)
    assert response.status_code == 400
    assert response.json()["detail"]["reason"] == "license_image_required"
    assert client.get(f"/portal/{token}").status_code == 200


def test_online_reservation(client, staff, van):
    assert [v["id"] for v in client.get("/online/vehicles").json()] == [van["id"]]

    form = dict(CUSTOMER, vehicle_id=van["id"], start_date="2030-07-01T08:00:00", end_date="2030-07-03T08:00:00")
    response = client.post(
        "/online/reservations", data=form, files={"driver_license": ("licence.png", b"png", "image/png")}
    )
    assert response.status_code == 201
    result = response.json()
    assert result["reservation"]["status"] == "scheduled"
    assert result["reservation"]["total_price"] == 2400
    assert result["customer"]["driver_license_image_url"] == "https://files.example.com/licenses/licence.png"
    assert "Jan Novák" in result["contract_text"]

    clash = client.post(
        "/online/reservations", data=form, files={"driver_license": ("licence.png", b"png", "image/png")}
    )
    assert clash.status_code == 409
    assert len(client.get("/customers/", headers=staff).json()) == 1


@pytest.fixture
def storage(client, monkeypatch):
    stored = {"uploaded": [], "deleted": []}

    async def fake_upload(file, filename, folder):
        url = f"https://files.example.com/{folder}/{len(stored['uploaded'])}-{filename}"
        stored["uploaded"].append(url)
        return url

    async def fake_delete(url):
        stored["deleted"].append(url)

    monkeypatch.setattr(main, "upload_file", fake_upload)
    monkeypatch.setattr(main, "delete_file", fake_delete)
    return stored


def test_rejected_handover_removes_signature(client, staff, van, customer, storage):
    reservation = book(client, staff, van, customer, "2030-05-01T09:00:00", "2030-05-01T13:00:00").json()

    response = client.put(
        f"/reservations/{reservation['id']}/activate",
        data={"start_mileage": 1}, files={"signature": PNG}, headers=staff,
    )
    assert response.status_code == 400
    assert response.json()["detail"]["reason"] == "odometer_below_current"
    assert storage["deleted"] == storage["uploaded"] == ["https://files.example.com/signatures/0-signature.png"]

    response = client.put(
        f"/reservations/{reservation['id']}/activate",
        data={"start_mileage": 10000}, files={"signature": PNG}, headers=staff,
    )
    assert response.status_code == 200
    assert response.json()["handover_signature_url"] not in storage["deleted"]


def test_rejected_online_booking_removes_licence(client, staff, van, storage):
    form = dict(CUSTOMER, vehicle_id=van["id"], start_date="2030-07-01T08:00:00", end_date="2030-07-01T18:00:00")
    licence = {"driver_license": ("licence.png", b"png", "image/png")}

    assert client.post("/online/reservations", data=form, files=licence).status_code == 201
    assert client.post("/online/reservations", data=form, files=licence).status_code == 409

    assert len(storage["uploaded"]) == 2
    assert storage["deleted"] == [storage["uploaded"][1]]


def test_rejected_portal_details_remove_licence(client, staff, van, customer, storage):
    book(client, staff, van, customer, "2030-06-01T09:00:00", "2030-06-01T13:00:00")
    token = client.post("/reservations/pending", json={"vehicle_id": van["id"]}, headers=staff).json()["portal_token"]

    form = dict(CUSTOMER, start_date="2030-06-01T08:00:00", end_date="2030-06-01T20:00:00")
    response = client.post(
        f"/portal/{token}", data=form, files={"driver_license": ("licence.jpg", b"jpg", "image/jpeg")}
    )
    assert response.status_code == 409
    assert storage["deleted"] == storage["uploaded"]
    assert client.get(f"/portal/{token}").status_code == 200
