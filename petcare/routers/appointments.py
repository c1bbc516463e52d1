# petcare/routers/appointments.py
from datetime import date
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from .. import crud, models, schemas, security
from ..database import get_db
from ..exceptions import Forbidden
from ..models import AppointmentStatus
from ..permissions import (
    Action, Principal, can_access_pet, can_view_appointment, is_assigned_vet, is_self,
)
from ..timeutils import time_ago, time_until, utcnow

router = APIRouter(
    prefix="/appointments",
    tags=["Appointments"],
    responses={404: {"description": "Not found"}},
)


def _detail(appointment: models.Appointment) -> schemas.AppointmentDetailOut:
    """Appointment with related pet, vet, clinic and owner plus a relative-time label."""
    now = utcnow()
    out = schemas.AppointmentDetailOut.model_validate(appointment)
    if appointment.date_time < now:
        return out.model_copy(update={"time_ago": time_ago(appointment.date_time, now)})
    return out.model_copy(update={"time_until": time_until(appointment.date_time, now)})


def _assigned_appointment(db: Session, principal: Principal, appointment_id: str) -> models.Appointment:
    appointment = crud.get_appointment_or_404(db, appointment_id)
    if not is_assigned_vet(principal, appointment):
        raise Forbidden("Only the assigned veterinarian can perform this action")
    return appointment


def _participant_appointment(db: Session, principal: Principal, appointment_id: str) -> models.Appointment:
    appointment = crud.get_appointment_or_404(db, appointment_id)
    if not can_view_appointment(principal, appointment):
        raise Forbidden("Not authorized to modify this appointment")
    return appointment


@router.post("/book", status_code=status.HTTP_201_CREATED)
def book_appointment(
    payload: schemas.AppointmentCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_capability(Action.book_appointment)),
):
    """
    Book a visit for one of the caller's pets.
    A vet can hold only one active appointment per time slot.
    """
    pet = crud.get_live_pet_or_404(db, payload.pet_id)
    if not is_self(principal, pet.owner_id):
        raise Forbidden("You can only book appointments for your own pets")
    appointment = crud.book_appointment(db, pet, payload)
    return {"message": "Appointment booked successfully", "appointment": schemas.AppointmentOut.model_validate(appointment)}


@router.get("/my")
def get_my_appointments(
    status: Optional[AppointmentStatus] = None,
    upcoming: bool = False,
    past: bool = False,
    clinic_id: Optional[str] = Query(None, alias="clinicId"),
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    sort_by: Literal["dateTime", "createdAt", "status"] = Query("dateTime", alias="sortBy"),
    sort_order: Literal["asc", "desc"] = Query("desc", alias="sortOrder"),
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_owner),
):
    appointments = crud.list_owner_appointments(
        db,
        principal.id,
        status=status,
        upcoming=upcoming,
        past=past,
        clinic_id=clinic_id,
        start_date=start_date,
        end_date=end_date,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return {
        "message": "Appointments retrieved successfully",
        "stats": crud.appointment_stats(appointments),
        "appointments": [_detail(a) for a in appointments],
    }


@router.get("/pet/{pet_id}")
def get_pet_appointments(
    pet_id: str,
    status: Optional[AppointmentStatus] = None,
    upcoming: bool = False,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.get_current_principal),
):
    pet = crud.get_pet_or_404(db, pet_id)
    if not can_access_pet(principal, pet):
        raise Forbidden("Access denied to this pet")
    appointments = crud.list_pet_appointments(db, pet_id, status=status, upcoming=upcoming)
    return {
        "message": "Appointments retrieved successfully",
        "count": len(appointments),
        "appointments": [_detail(a) for a in appointments],
    }


@router.get("/vet/{vet_id}")
def get_vet_appointments(
    vet_id: str,
    day: Optional[date] = Query(None, alias="date"),
    clinic_id: Optional[str] = Query(None, alias="clinicId"),
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_capability(Action.view_vet_schedule)),
):
    """A veterinarian's own schedule, optionally for one day and one clinic."""
    if principal.id != vet_id:
        raise Forbidden("You can only view your own schedule")
    appointments = crud.list_vet_appointments(db, vet_id, day=day, clinic_id=clinic_id)
    return {
        "message": "Appointments retrieved successfully",
        "count": len(appointments),
        "appointments": [_detail(a) for a in appointments],
    }


@router.get("/vet/{vet_id}/today-count")
def get_vet_today_count(
    vet_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_capability(Action.view_vet_schedule)),
):
    if principal.id != vet_id:
        raise Forbidden("You can only view your own schedule")
    return {"message": "Today's appointment count retrieved", "count": crud.count_vet_appointments_today(db, vet_id)}


@router.get("/{appointment_id}")
def get_appointment(
    appointment_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.get_current_principal),
):
    appointment = crud.get_appointment_or_404(db, appointment_id)
    if not can_view_appointment(principal, appointment):
        raise Forbidden("Not authorized to view this appointment")
    return {"message": "Appointment retrieved successfully", "appointment": _detail(appointment)}


@router.patch("/{appointment_id}/confirm")
def confirm_appointment(
    appointment_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_capability(Action.confirm_appointment)),
):
    appointment = crud.confirm_appointment(db, _assigned_appointment(db, principal, appointment_id))
    return {"message": "Appointment confirmed", "appointment": schemas.AppointmentOut.model_validate(appointment)}


@router.patch("/{appointment_id}/cancel")
def cancel_appointment(
    appointment_id: str,
    payload: Optional[schemas.CancelRequest] = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_capability(Action.cancel_appointment)),
):
    appointment = _participant_appointment(db, principal, appointment_id)
    appointment = crud.cancel_appointment(db, appointment, payload.reason if payload else None)
    return {"message": "Appointment canceled", "appointment": schemas.AppointmentOut.model_validate(appointment)}


@router.patch("/{appointment_id}/complete")
def complete_appointment(
    appointment_id: str,
    payload: Optional[schemas.CompleteRequest] = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_capability(Action.complete_appointment)),
):
    appointment = _assigned_appointment(db, principal, appointment_id)
    appointment = crud.complete_appointment(db, appointment, payload.notes if payload else None)
    return {"message": "Appointment completed", "appointment": schemas.AppointmentOut.model_validate(appointment)}


@router.patch("/{appointment_id}/reschedule")
def reschedule_appointment(
    appointment_id: str,
    payload: schemas.RescheduleRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_capability(Action.reschedule_appointment)),
):
    appointment = _participant_appointment(db, principal, appointment_id)
    appointment = crud.reschedule_appointment(db, appointment, payload.date_time, payload.reason)
    return {"message": "Appointment rescheduled", "appointment": schemas.AppointmentOut.model_validate(appointment)}
