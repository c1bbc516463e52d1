# tests/test_clinics_api.py
import pytest
from httpx import AsyncClient

from .conftest import PASSWORD


@pytest.fixture
def add_staff(client):
    async def _add(vet, staff_type="receptionist", **overrides):
        payload = {
            "staffType": staff_type,
            "firstName": "Rita",
            "lastName": "Desk",
            "email": "rita@example.com",
            "password": PASSWORD,
            "phoneNumber": "555-7000",
        }
        payload.update(overrides)
        return await client.post("/api/clinics/staff", json=payload, headers=vet["headers"])
    return _add


async def test_primary_creates_and_owns_clinic(client: AsyncClient, register_primary_vet, add_clinic_vet):
    primary = await register_primary_vet()
    normal = await add_clinic_vet(primary)
    payload = {
        "name": "Harbor Animal Hospital",
        "address": "1 Pier Road",
        "phoneNumber": "555-4000",
        "location": {"type": "Point", "coordinates": [-122.42, 37.77]},
    }

    assert (await client.post("/api/clinics", json=payload, headers=normal["headers"])).status_code == 403

    response = await client.post("/api/clinics", json=payload, headers=primary["headers"])
    assert response.status_code == 201
    clinic = response.json()["clinic"]
    assert clinic["primaryVetId"] == primary["id"]
    assert clinic["location"]["coordinates"] == [-122.42, 37.77]

    mine = await client.get("/api/clinics/my", headers=primary["headers"])
    assert {c["id"] for c in mine.json()["clinics"]} == {primary["clinic_id"], clinic["id"]}


async def test_public_listing_and_search(client: AsyncClient, register_primary_vet):
    primary = await register_primary_vet()
    await client.post(
        "/api/clinics",
        json={"name": "Maple Paws Clinic", "address": "8 Maple Ave", "phoneNumber": "555-4001"},
        headers=primary["headers"],
    )

    listing = await client.get("/api/clinics")
    assert listing.status_code == 200
    assert listing.json()["pagination"]["total"] >= 2

    found = await client.get("/api/clinics/search", params={"query": "maple"})
    assert [c["name"] for c in found.json()["clinics"]] == ["Maple Paws Clinic"]

    assert (await client.get("/api/clinics/search", params={"query": "m"})).status_code == 400


async def test_nearby_orders_by_distance(client: AsyncClient, register_primary_vet):
    primary = await register_primary_vet()
    for name, coordinates in (("Far Clinic", [-122.40, 37.80]), ("Near Clinic", [-122.4194, 37.7750])):
        await client.post(
            "/api/clinics",
            json={"name": name, "address": "x", "phoneNumber": "555-4002",
                  "location": {"type": "Point", "coordinates": coordinates}},
            headers=primary["headers"],
        )

    response = await client.get("/api/clinics/nearby", params={"lng": -122.4194, "lat": 37.7749, "maxDistance": 10000})
    clinics = response.json()["clinics"]
    assert [c["name"] for c in clinics] == ["Near Clinic", "Far Clinic"]
    assert clinics[0]["distanceMeters"] < clinics[1]["distanceMeters"]

    tight = await client.get("/api/clinics/nearby", params={"lng": -122.4194, "lat": 37.7749, "maxDistance": 500})
    assert [c["name"] for c in tight.json()["clinics"]] == ["Near Clinic"]


async def test_nearby_wraps_across_antimeridian(client: AsyncClient, register_primary_vet):
    primary = await register_primary_vet()
    await client.post(
        "/api/clinics",
        json={"name": "Dateline Clinic", "address": "x", "phoneNumber": "555-4003",
              "location": {"type": "Point", "coordinates": [179.95, 0.0]}},
        headers=primary["headers"],
    )

    response = await client.get("/api/clinics/nearby", params={"lng": -179.95, "lat": 0.0, "maxDistance": 20000})
    clinics = response.json()["clinics"]
    assert [c["name"] for c in clinics] == ["Dateline Clinic"]
    assert clinics[0]["distanceMeters"] < 12000


async def test_update_clinic(client: AsyncClient, register_primary_vet, add_clinic_vet):
    primary = await register_primary_vet()
    full = await add_clinic_vet(primary, access_level="Full Access")
    normal = await add_clinic_vet(primary)
    url = f"/api/clinics/{primary['clinic_id']}"

    assert (await client.put(url, json={"description": "x"}, headers=normal["headers"])).status_code == 403

    response = await client.put(url, json={"operatingHours": "Mon-Fri 8-18"}, headers=full["headers"])
    assert response.status_code == 200
    assert response.json()["clinic"]["operatingHours"] == "Mon-Fri 8-18"

    takeover = await client.put(url, json={"primaryVetId": full["id"]}, headers=primary["headers"])
    assert takeover.status_code == 403


async def test_update_clinic_rejects_null_for_required_fields(client: AsyncClient, register_primary_vet):
    primary = await register_primary_vet()
    url = f"/api/clinics/{primary['clinic_id']}"

    for field in ("address", "operatingHours", "description"):
        response = await client.put(url, json={field: None}, headers=primary["headers"])
        assert response.status_code == 400, field

    assert (await client.get(url)).status_code == 200


async def test_delete_clinic_is_soft_and_owner_only(client: AsyncClient, register_primary_vet):
    primary = await register_primary_vet()
    other = await register_primary_vet()
    url = f"/api/clinics/{primary['clinic_id']}"

    assert (await client.delete(url, headers=other["headers"])).status_code == 403
    assert (await client.delete(url, headers=primary["headers"])).status_code == 200
    assert (await client.get(url)).status_code == 404


async def test_staff_lifecycle(client: AsyncClient, register_primary_vet, add_staff):
    primary = await register_primary_vet()

    created = await add_staff(primary)
    assert created.status_code == 201
    staff = created.json()["staff"]
    assert staff["role"] == "Receptionist"
    assert staff["accessLevel"] == "Basic"
    assert staff["clinicId"] == primary["clinic_id"]
    url = f"/api/clinics/staff/{staff['id']}"

    promoted = await client.put(url, json={"role": "Manager"}, headers=primary["headers"])
    assert promoted.json()["staff"]["accessLevel"] == "Admin"
    assert (await client.put(url, json={"password": "new-password-1"}, headers=primary["headers"])).status_code == 403

    listing = await client.get("/api/clinics/staff", headers=primary["headers"])
    assert [s["id"] for s in listing.json()["staff"]] == [staff["id"]]
    assert any(v["id"] == primary["id"] for v in listing.json()["veterinarians"])

    deactivated = await client.patch(f"{url}/deactivate", headers=primary["headers"])
    assert deactivated.json()["staff"]["status"] == "Inactive"
    assert (await client.get("/api/clinics/staff", headers=primary["headers"])).json()["staff"] == []

    activated = await client.patch(f"{url}/activate", headers=primary["headers"])
    assert activated.json()["staff"]["status"] == "Active"

    assert (await client.delete(url, headers=primary["headers"])).status_code == 200
    assert (await client.get(url, headers=primary["headers"])).status_code == 404


async def test_staff_permissions(client: AsyncClient, register_primary_vet, add_clinic_vet, add_staff):
    primary = await register_primary_vet()
    full = await add_clinic_vet(primary, access_level="Full Access")
    normal = await add_clinic_vet(primary)
    outsider = await register_primary_vet()

    assert (await add_staff(normal)).status_code == 403
    created = await add_staff(full, staff_type="vet tech")
    assert created.status_code == 201
    staff = created.json()["staff"]
    assert staff["accessLevel"] == "Moderate"
    url = f"/api/clinics/staff/{staff['id']}"

    assert (await client.get(url, headers=normal["headers"])).status_code == 200
    assert (await client.get(url, headers=outsider["headers"])).status_code == 403
    assert (await client.delete(url, headers=full["headers"])).status_code == 403
    assert (await client.patch(f"{url}/deactivate", headers=outsider["headers"])).status_code == 403

    other_clinic = await add_staff(full, clinicId=outsider["clinic_id"], email="elsewhere@example.com")
    assert other_clinic.status_code == 403


async def test_duplicate_staff_email(client: AsyncClient, register_primary_vet, add_staff):
    primary = await register_primary_vet()
    assert (await add_staff(primary, email="dup@example.com")).status_code == 201
    assert (await add_staff(primary, email="DUP@example.com")).status_code == 409


async def test_staff_email_change_must_stay_unique(client: AsyncClient, register_primary_vet, add_staff):
    primary = await register_primary_vet()
    await add_staff(primary, email="taken@example.com")
    staff = (await add_staff(primary, email="free@example.com")).json()["staff"]
    url = f"/api/clinics/staff/{staff['id']}"

    clash = await client.put(url, json={"email": "TAKEN@example.com"}, headers=primary["headers"])
    assert clash.status_code == 409

    moved = await client.put(url, json={"email": "Renamed@Example.com"}, headers=primary["headers"])
    assert moved.status_code == 200
    assert moved.json()["staff"]["email"] == "renamed@example.com"


async def test_staff_endpoint_creates_vet_sub_account(client: AsyncClient, register_primary_vet, add_staff):
    primary = await register_primary_vet()
    response = await add_staff(
        primary, staff_type="veterinarian", email="newvet@example.com", veterinaryId="LIC-NEW-1",
    )
    assert response.status_code == 201
    vet = response.json()["vet"]
    assert vet["accessLevel"] == "Normal Access"

    refused = await add_staff(
        primary, staff_type="veterinarian", email="boss@example.com", veterinaryId="LIC-NEW-2",
        accessLevel="Primary",
    )
    assert refused.status_code == 403


async def test_staff_count(client: AsyncClient, register_primary_vet, add_clinic_vet, add_staff):
    primary = await register_primary_vet()
    await add_clinic_vet(primary)
    await add_staff(primary)

    response = await client.get(f"/api/clinics/{primary['clinic_id']}/staff-count", headers=primary["headers"])
    assert response.status_code == 200
    data = response.json()
    assert data["breakdown"]["nonVetStaff"] == 1
    assert data["totalStaff"] == data["breakdown"]["veterinarians"] + 1
