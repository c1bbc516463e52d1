# tests/test_vets_api.py
from httpx import AsyncClient

from .conftest import PASSWORD


async def test_primary_registration_creates_clinic(client: AsyncClient):
    response = await client.post("/api/vets/register", json={
        "firstName": "Grace", "lastName": "Hopper", "email": "grace@example.com", "password": PASSWORD,
        "phoneNumber": "555-2000", "veterinaryId": "LIC-G-1", "isPrimaryVet": True,
    })
    assert response.status_code == 201
    vet = response.json()["vet"]
    assert vet["accessLevel"] == "Primary"
    assert vet["currentActiveClinicId"]

    clinic = await client.get(f"/api/clinics/{vet['currentActiveClinicId']}")
    assert clinic.json()["clinic"]["name"] == "Grace Hopper's Clinic"
    assert clinic.json()["clinic"]["primaryVetId"] == vet["id"]


async def test_duplicate_license_conflicts(client: AsyncClient, register_primary_vet):
    await register_primary_vet(veterinaryId="LIC-DUP")
    response = await client.post("/api/vets/register", json={
        "firstName": "Other", "lastName": "Vet", "email": "other-vet@example.com", "password": PASSWORD,
        "phoneNumber": "555-2001", "veterinaryId": "LIC-DUP",
    })
    assert response.status_code == 409


async def test_cannot_claim_clinic_with_primary(client: AsyncClient, register_primary_vet):
    primary = await register_primary_vet()
    response = await client.post("/api/vets/register", json={
        "firstName": "Second", "lastName": "Boss", "email": "second@example.com", "password": PASSWORD,
        "phoneNumber": "555-2002", "veterinaryId": "LIC-S-1", "isPrimaryVet": True,
        "clinicId": primary["clinic_id"],
    })
    assert response.status_code == 403


async def test_sub_account_rules(client: AsyncClient, register_primary_vet, add_clinic_vet):
    primary = await register_primary_vet()
    normal = await add_clinic_vet(primary)
    payload = {
        "firstName": "Sam", "lastName": "Sub", "email": "sam@example.com", "password": PASSWORD,
        "phoneNumber": "555-2003", "veterinaryId": "LIC-SUB-1", "clinicId": primary["clinic_id"],
    }

    assert (await client.post("/api/vets/sub-account", json=payload, headers=normal["headers"])).status_code == 403

    escalated = await client.post(
        "/api/vets/sub-account", json={**payload, "accessLevel": "Primary"}, headers=primary["headers"]
    )
    assert escalated.status_code == 403

    created = await client.post("/api/vets/sub-account", json=payload, headers=primary["headers"])
    assert created.status_code == 201
    assert created.json()["vet"]["accessLevel"] == "Normal Access"
    assert created.json()["vet"]["currentActiveClinicId"] == primary["clinic_id"]


async def test_full_access_vet_manages_only_active_clinic(client: AsyncClient, register_primary_vet, add_clinic_vet):
    primary = await register_primary_vet()
    outsider = await register_primary_vet()
    full = await add_clinic_vet(primary, access_level="Full Access")
    response = await client.post("/api/vets/sub-account", json={
        "firstName": "Nope", "lastName": "Vet", "email": "nope@example.com", "password": PASSWORD,
        "phoneNumber": "555-2004", "veterinaryId": "LIC-N-1", "clinicId": outsider["clinic_id"],
    }, headers=full["headers"])
    assert response.status_code == 403


async def test_update_own_profile_only(client: AsyncClient, register_primary_vet, add_clinic_vet):
    primary = await register_primary_vet()
    normal = await add_clinic_vet(primary)

    ok = await client.put(f"/api/vets/{normal['id']}", json={"specialization": "Dentistry"}, headers=normal["headers"])
    assert ok.status_code == 200
    assert ok.json()["vet"]["specialization"] == "Dentistry"

    assert (await client.put(f"/api/vets/{normal['id']}", json={"accessLevel": "Full Access"}, headers=normal["headers"])).status_code == 403
    assert (await client.put(f"/api/vets/{normal['id']}", json={"firstName": "X"}, headers=primary["headers"])).status_code == 403


async def test_clinic_listing_and_stats(client: AsyncClient, register_primary_vet, add_clinic_vet):
    primary = await register_primary_vet()
    await add_clinic_vet(primary, access_level="Full Access")
    normal = await add_clinic_vet(primary)

    listing = await client.get(f"/api/vets/clinic/{primary['clinic_id']}", headers=normal["headers"])
    assert listing.json()["totalVets"] == 3

    assert (await client.get(f"/api/vets/clinic/{primary['clinic_id']}/stats", headers=normal["headers"])).status_code == 403
    stats = await client.get(f"/api/vets/clinic/{primary['clinic_id']}/stats", headers=primary["headers"])
    data = stats.json()
    assert data["totalActiveVets"] == 3
    assert data["breakdown"] == {"Primary": 1, "Full Access": 1, "Normal Access": 1}


async def test_switch_active_clinic(client: AsyncClient, register_primary_vet):
    primary = await register_primary_vet()
    other = await register_primary_vet()
    second = (await client.post(
        "/api/clinics", json={"name": "Second Site", "address": "2 Side St", "phoneNumber": "555-2005"},
        headers=primary["headers"],
    )).json()["clinic"]

    switched = await client.patch("/api/vets/me/active-clinic", json={"clinicId": second["id"]}, headers=primary["headers"])
    assert switched.status_code == 200
    assert switched.json()["vet"]["currentActiveClinicId"] == second["id"]

    foreign = await client.patch("/api/vets/me/active-clinic", json={"clinicId": other["clinic_id"]}, headers=primary["headers"])
    assert foreign.status_code == 403


async def test_deactivate_vet(client: AsyncClient, register_primary_vet, add_clinic_vet):
    primary = await register_primary_vet()
    other = await register_primary_vet()
    normal = await add_clinic_vet(primary)

    assert (await client.patch(f"/api/vets/{primary['id']}/deactivate", headers=primary["headers"])).status_code == 400
    assert (await client.patch(f"/api/vets/{normal['id']}/deactivate", headers=other["headers"])).status_code == 403

    response = await client.patch(f"/api/vets/{normal['id']}/deactivate", headers=primary["headers"])
    assert response.status_code == 200
    assert response.json()["vet"]["status"] == "Deactivated"

    # The old token stops working and logging in is refused.
    assert (await client.get("/api/auth/me", headers=normal["headers"])).status_code == 401
    login = await client.post("/api/auth/login", json={"email": normal["email"], "password": PASSWORD, "role": "vet"})
    assert login.status_code == 401
