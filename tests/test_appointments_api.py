# tests/test_appointments_api.py
import pytest
from httpx import AsyncClient
from sqlalchemy.exc import IntegrityError

from petcare import models
from petcare.models import AppointmentStatus
from petcare.timeutils import to_naive_utc, utcnow

from .conftest import future_slot


@pytest.fixture
def book(client):
    async def _book(owner, pet, vet, date_time=None, **extra):
        payload = {
            "petId": pet["id"],
            "clinicId": vet["clinic_id"],
            "vetId": vet["id"],
            "dateTime": date_time or future_slot(),
            "reason": "Annual checkup",
        }
        payload.update(extra)
        return await client.post("/api/appointments/book", json=payload, headers=owner["headers"])
    return _book


async def test_book_and_view(client: AsyncClient, register_owner, register_primary_vet, approved_pet, book):
    owner = await register_owner()
    vet = await register_primary_vet()
    pet = await approved_pet(owner, vet)

    response = await book(owner, pet, vet)
    assert response.status_code == 201
    appointment = response.json()["appointment"]
    assert appointment["status"] == "Booked"
    assert appointment["ownerId"] == owner["id"]

    detail = await client.get(f"/api/appointments/{appointment['id']}", headers=owner["headers"])
    assert detail.status_code == 200
    body = detail.json()["appointment"]
    assert body["pet"]["name"] == pet["name"]
    assert body["vet"]["id"] == vet["id"]
    assert body["timeUntil"] is not None


async def test_double_booking_conflicts(client: AsyncClient, register_owner, register_primary_vet, approved_pet, book):
    owner = await register_owner()
    other = await register_owner()
    vet = await register_primary_vet()
    pet = await approved_pet(owner, vet)
    other_pet = await approved_pet(other, vet, name="Luna")
    slot = future_slot(days=5, hour=9)

    assert (await book(owner, pet, vet, date_time=slot)).status_code == 201
    second = await book(other, other_pet, vet, date_time=slot)
    assert second.status_code == 409


async def test_canceled_slot_can_be_rebooked(client: AsyncClient, register_owner, register_primary_vet, approved_pet, book):
    owner = await register_owner()
    vet = await register_primary_vet()
    pet = await approved_pet(owner, vet)
    slot = future_slot(days=6, hour=11)

    first = (await book(owner, pet, vet, date_time=slot)).json()["appointment"]
    cancel = await client.patch(f"/api/appointments/{first['id']}/cancel", json={"reason": "Sick"}, headers=owner["headers"])
    assert cancel.status_code == 200
    assert cancel.json()["appointment"]["status"] == "Canceled"

    assert (await book(owner, pet, vet, date_time=slot)).status_code == 201


def test_unique_index_blocks_duplicate_live_slot(db_session):
    """The index rejects a second live appointment even when the pre-check is bypassed."""
    owner = models.PetOwner(first_name="A", last_name="B", address="x", phone_number="1", email="a@example.com", password_hash="h")
    vet = models.Veterinarian(
        first_name="V", last_name="W", phone_number="1", email="v@example.com", password_hash="h",
        veterinary_id="LIC-1", access_level=models.AccessLevel.normal,
    )
    clinic = models.Clinic(name="C", address="x", phone_number="1")
    db_session.add_all([owner, vet, clinic])
    db_session.commit()
    pet = models.PetProfile(owner_id=owner.id, name="Rex", species="Dog")
    db_session.add(pet)
    db_session.commit()

    slot = to_naive_utc(utcnow()).replace(microsecond=0)
    common = dict(pet_id=pet.id, owner_id=owner.id, clinic_id=clinic.id, vet_id=vet.id, date_time=slot)
    db_session.add(models.Appointment(status=AppointmentStatus.completed, **common))
    db_session.add(models.Appointment(status=AppointmentStatus.booked, **common))
    db_session.commit()

    db_session.add(models.Appointment(status=AppointmentStatus.confirmed, **common))
    with pytest.raises(IntegrityError):
        db_session.commit()
    db_session.rollback()


async def test_owner_cannot_book_for_foreign_pet(client: AsyncClient, register_owner, register_primary_vet, approved_pet, book):
    owner = await register_owner()
    intruder = await register_owner()
    vet = await register_primary_vet()
    pet = await approved_pet(owner, vet)
    assert (await book(intruder, pet, vet)).status_code == 403


async def test_pet_registered_elsewhere_is_forbidden(client: AsyncClient, register_owner, register_primary_vet, approved_pet, book):
    owner = await register_owner()
    vet = await register_primary_vet()
    other_vet = await register_primary_vet()
    pet = await approved_pet(owner, vet)
    assert (await book(owner, pet, other_vet)).status_code == 403


async def test_lifecycle_confirm_complete(client: AsyncClient, register_owner, register_primary_vet, approved_pet, book):
    owner = await register_owner()
    vet = await register_primary_vet()
    pet = await approved_pet(owner, vet)
    appointment = (await book(owner, pet, vet)).json()["appointment"]
    url = f"/api/appointments/{appointment['id']}"

    assert (await client.patch(f"{url}/confirm", headers=owner["headers"])).status_code == 403
    confirm = await client.patch(f"{url}/confirm", headers=vet["headers"])
    assert confirm.json()["appointment"]["status"] == "Confirmed"

    complete = await client.patch(f"{url}/complete", json={"notes": "Healthy"}, headers=vet["headers"])
    assert complete.status_code == 200
    assert complete.json()["appointment"]["status"] == "Completed"
    assert "Healthy" in complete.json()["appointment"]["notes"]

    assert (await client.patch(f"{url}/cancel", headers=owner["headers"])).status_code == 409
    assert (await client.patch(f"{url}/reschedule", json={"dateTime": future_slot(days=9)}, headers=owner["headers"])).status_code == 409


async def test_reschedule(client: AsyncClient, register_owner, register_primary_vet, approved_pet, book):
    owner = await register_owner()
    vet = await register_primary_vet()
    pet = await approved_pet(owner, vet)
    first = (await book(owner, pet, vet, date_time=future_slot(days=4, hour=9))).json()["appointment"]
    second = (await book(owner, pet, vet, date_time=future_slot(days=4, hour=10))).json()["appointment"]

    clash = await client.patch(
        f"/api/appointments/{second['id']}/reschedule",
        json={"dateTime": future_slot(days=4, hour=9)},
        headers=owner["headers"],
    )
    assert clash.status_code == 409

    moved = await client.patch(
        f"/api/appointments/{first['id']}/reschedule",
        json={"dateTime": future_slot(days=7, hour=15), "reason": "Travel"},
        headers=vet["headers"],
    )
    assert moved.status_code == 200
    assert moved.json()["appointment"]["status"] == "Rescheduled"


async def test_my_appointments_with_stats(client: AsyncClient, register_owner, register_primary_vet, approved_pet, book):
    owner = await register_owner()
    vet = await register_primary_vet()
    pet = await approved_pet(owner, vet)
    await book(owner, pet, vet, date_time=future_slot(days=2))
    canceled = (await book(owner, pet, vet, date_time=future_slot(days=3))).json()["appointment"]
    await client.patch(f"/api/appointments/{canceled['id']}/cancel", headers=owner["headers"])

    response = await client.get("/api/appointments/my", headers=owner["headers"])
    assert response.status_code == 200
    stats = response.json()["stats"]
    assert stats["total"] == 2
    assert stats["canceled"] == 1
    assert stats["pending"] == 1
    assert stats["upcoming"] == 1

    filtered = await client.get("/api/appointments/my", params={"status": "Canceled"}, headers=owner["headers"])
    assert [a["id"] for a in filtered.json()["appointments"]] == [canceled["id"]]


async def test_vet_schedule_is_own_only(client: AsyncClient, register_owner, register_primary_vet, add_clinic_vet, approved_pet, book):
    owner = await register_owner()
    vet = await register_primary_vet()
    colleague = await add_clinic_vet(vet)
    pet = await approved_pet(owner, vet)
    await book(owner, pet, vet)

    mine = await client.get(f"/api/appointments/vet/{vet['id']}", headers=vet["headers"])
    assert mine.status_code == 200
    assert len(mine.json()["appointments"]) == 1
    assert (await client.get(f"/api/appointments/vet/{vet['id']}", headers=colleague["headers"])).status_code == 403

    today = await client.get(f"/api/appointments/vet/{vet['id']}/today-count", headers=vet["headers"])
    assert today.json()["count"] == 0


async def test_pet_appointments_visible_to_clinic_vet(client: AsyncClient, register_owner, register_primary_vet, approved_pet, book):
    owner = await register_owner()
    vet = await register_primary_vet()
    outsider = await register_primary_vet()
    pet = await approved_pet(owner, vet)
    await book(owner, pet, vet)

    assert len((await client.get(f"/api/appointments/pet/{pet['id']}", headers=vet["headers"])).json()["appointments"]) == 1
    assert (await client.get(f"/api/appointments/pet/{pet['id']}", headers=outsider["headers"])).status_code == 403
