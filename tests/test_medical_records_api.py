# tests/test_medical_records_api.py
import os

import pytest
from httpx import AsyncClient

from petcare.config import get_settings


@pytest.fixture
def create_record(client):
    async def _create(vet, pet, **overrides):
        payload = {"petId": pet["id"], "diagnosis": "Ear infection", "treatmentNotes": "Drops twice daily"}
        payload.update(overrides)
        response = await client.post("/api/medical-records", json=payload, headers=vet["headers"])
        assert response.status_code == 201, response.text
        return response.json()["record"]
    return _create


async def test_records_hidden_from_owner_by_default(client: AsyncClient, register_owner, register_primary_vet, approved_pet, create_record):
    owner = await register_owner()
    vet = await register_primary_vet()
    pet = await approved_pet(owner, vet)
    hidden = await create_record(vet, pet)
    shared = await create_record(vet, pet, diagnosis="Healthy", visibleToOwner=True)
    assert hidden["visibleToOwner"] is False

    owner_list = await client.get(f"/api/medical-records/pet/{pet['id']}", headers=owner["headers"])
    assert [r["id"] for r in owner_list.json()["records"]] == [shared["id"]]

    vet_list = await client.get(f"/api/medical-records/pet/{pet['id']}", headers=vet["headers"])
    assert vet_list.json()["pagination"]["total"] == 2

    assert (await client.get(f"/api/medical-records/{hidden['id']}", headers=owner["headers"])).status_code == 403
    shared_detail = await client.get(f"/api/medical-records/{shared['id']}", headers=owner["headers"])
    assert shared_detail.status_code == 200
    assert shared_detail.json()["record"]["vet"]["id"] == vet["id"]


async def test_toggle_visibility(client: AsyncClient, register_owner, register_primary_vet, approved_pet, create_record):
    owner = await register_owner()
    vet = await register_primary_vet()
    pet = await approved_pet(owner, vet)
    record = await create_record(vet, pet)

    bad = await client.patch(f"/api/medical-records/{record['id']}/visibility", json={}, headers=vet["headers"])
    assert bad.status_code == 400

    response = await client.patch(
        f"/api/medical-records/{record['id']}/visibility", json={"visibleToOwner": True}, headers=vet["headers"]
    )
    assert response.status_code == 200
    assert response.json()["record"]["visibleToOwner"] is True
    assert (await client.get(f"/api/medical-records/{record['id']}", headers=owner["headers"])).status_code == 200


async def test_owner_cannot_write_records(client: AsyncClient, register_owner, register_primary_vet, approved_pet):
    owner = await register_owner()
    vet = await register_primary_vet()
    pet = await approved_pet(owner, vet)
    response = await client.post("/api/medical-records", json={"petId": pet["id"], "diagnosis": "Self"}, headers=owner["headers"])
    assert response.status_code == 403


async def test_vet_outside_clinic_cannot_write(client: AsyncClient, register_owner, register_primary_vet, approved_pet):
    owner = await register_owner()
    vet = await register_primary_vet()
    outsider = await register_primary_vet()
    pet = await approved_pet(owner, vet)
    response = await client.post("/api/medical-records", json={"petId": pet["id"], "diagnosis": "x"}, headers=outsider["headers"])
    assert response.status_code == 403


async def test_update_cannot_move_record(client: AsyncClient, register_owner, register_primary_vet, approved_pet, create_record):
    owner = await register_owner()
    vet = await register_primary_vet()
    pet = await approved_pet(owner, vet)
    record = await create_record(vet, pet)

    moved = await client.put(f"/api/medical-records/{record['id']}", json={"petId": "another-pet"}, headers=vet["headers"])
    assert moved.status_code == 400

    updated = await client.put(f"/api/medical-records/{record['id']}", json={"diagnosis": "Otitis externa"}, headers=vet["headers"])
    assert updated.status_code == 200
    assert updated.json()["record"]["diagnosis"] == "Otitis externa"


async def test_update_rejects_null_visibility(client: AsyncClient, register_owner, register_primary_vet, approved_pet, create_record):
    owner = await register_owner()
    vet = await register_primary_vet()
    pet = await approved_pet(owner, vet)
    record = await create_record(vet, pet, visibleToOwner=True)
    url = f"/api/medical-records/{record['id']}"

    response = await client.put(url, json={"visibleToOwner": None}, headers=vet["headers"])
    assert response.status_code == 400
    assert response.json()["message"] == "visible_to_owner cannot be null"

    stored = await client.get(url, headers=vet["headers"])
    assert stored.json()["record"]["visibleToOwner"] is True


async def test_summary(client: AsyncClient, register_owner, register_primary_vet, approved_pet, create_record):
    owner = await register_owner()
    vet = await register_primary_vet()
    pet = await approved_pet(owner, vet)
    await create_record(vet, pet, date="2024-01-01T10:00:00")
    latest = await create_record(vet, pet, date="2024-03-01T10:00:00", visibleToOwner=True)

    response = await client.get(f"/api/medical-records/summary/pet/{pet['id']}", headers=vet["headers"])
    data = response.json()
    assert data["totalRecords"] == 2
    assert data["visibleRecords"] == 1
    assert data["latestRecord"]["id"] == latest["id"]

    owner_view = await client.get(f"/api/medical-records/summary/pet/{pet['id']}", headers=owner["headers"])
    assert owner_view.json()["totalRecords"] == 1


async def test_soft_delete_keeps_record_fetchable(client: AsyncClient, register_owner, register_primary_vet, approved_pet, create_record):
    owner = await register_owner()
    vet = await register_primary_vet()
    pet = await approved_pet(owner, vet)
    record = await create_record(vet, pet)

    assert (await client.delete(f"/api/medical-records/{record['id']}", headers=vet["headers"])).status_code == 200
    listing = await client.get(f"/api/medical-records/pet/{pet['id']}", headers=vet["headers"])
    assert listing.json()["records"] == []
    fetched = await client.get(f"/api/medical-records/{record['id']}", headers=vet["headers"])
    assert fetched.json()["record"]["isDeleted"] is True


async def test_hard_delete_removes_attachments(client: AsyncClient, register_owner, register_primary_vet, approved_pet, create_record):
    owner = await register_owner()
    vet = await register_primary_vet()
    pet = await approved_pet(owner, vet)

    upload = await client.post(
        "/api/uploads/attachments",
        files=[("files", ("xray.png", b"\x89PNG fake image", "image/png"))],
        headers=vet["headers"],
    )
    assert upload.status_code == 201
    url = upload.json()["urls"][0]
    stored = os.path.join(get_settings().upload_dir, url[len("/uploads/"):])
    assert os.path.exists(stored)

    record = await create_record(vet, pet, attachments=[url])
    response = await client.delete(f"/api/medical-records/{record['id']}", params={"hard": "true"}, headers=vet["headers"])
    assert response.status_code == 200
    assert not os.path.exists(stored)
    assert (await client.get(f"/api/medical-records/{record['id']}", headers=vet["headers"])).status_code == 404
