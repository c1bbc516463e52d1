# petcare/routers/pets.py
from typing import Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from .. import crud, models, schemas, security
from ..database import get_db
from ..exceptions import Forbidden
from ..models import RegistrationStatus
from ..permissions import Action, Principal, can_access_pet, is_self, serves_clinic, served_clinic_ids

router = APIRouter(
    prefix="/pets",
    tags=["Pets"],
    responses={404: {"description": "Not found"}},
)


def _own_live_pet(db: Session, principal: Principal, pet_id: str) -> models.PetProfile:
    pet = crud.get_live_pet_or_404(db, pet_id)
    if not is_self(principal, pet.owner_id):
        raise Forbidden("You do not own this pet")
    return pet


def _reviewable_pet(db: Session, principal: Principal, pet_id: str) -> models.PetProfile:
    pet = crud.get_live_pet_or_404(db, pet_id)
    if not serves_clinic(principal, pet.registered_clinic_id):
        raise Forbidden("Pet is not registered with your clinic")
    return pet


def _ensure_serves(principal: Principal, clinic_id: str):
    if not serves_clinic(principal, clinic_id):
        raise Forbidden("You do not work in this clinic")


@router.post("", status_code=status.HTTP_201_CREATED)
def create_pet(
    payload: schemas.PetCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_capability(Action.manage_own_pets)),
):
    pet = crud.create_pet(db, principal.id, payload)
    return {"message": "Pet profile created successfully", "pet": schemas.PetOut.model_validate(pet)}


@router.get("/my")
def get_my_pets(
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_owner),
):
    pets = crud.list_owner_pets(db, principal.id)
    return {
        "message": "Pets retrieved successfully",
        "count": len(pets),
        "pets": [schemas.PetOut.model_validate(p) for p in pets],
    }


@router.get("/owner/{owner_id}")
def get_pets_by_owner(
    owner_id: str,
    status: Optional[RegistrationStatus] = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.get_current_principal),
):
    """Owners see their own pets; vets see the owner's pets registered with their clinics."""
    pets = crud.list_owner_pets(db, owner_id, status=status)
    if not is_self(principal, owner_id):
        if principal.is_owner:
            raise Forbidden("You can only view your own pets")
        pets = [p for p in pets if can_access_pet(principal, p)]
    return {
        "message": "Pets retrieved successfully",
        "count": len(pets),
        "pets": [schemas.PetOut.model_validate(p) for p in pets],
    }


# Clinic review queues are declared before /{pet_id} so the literal segments win.
@router.get("/clinic/pending")
def get_pending_for_my_clinics(
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_capability(Action.view_clinic_pets)),
):
    pets = crud.list_clinic_pets(db, served_clinic_ids(principal), RegistrationStatus.pending)
    return {
        "message": "Pending registrations retrieved successfully",
        "count": len(pets),
        "pets": [schemas.PetWithOwnerOut.model_validate(p) for p in pets],
    }


@router.get("/clinic/registered")
def get_registered_for_my_clinics(
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_capability(Action.view_clinic_pets)),
):
    pets = crud.list_clinic_pets(db, served_clinic_ids(principal), RegistrationStatus.approved)
    return {
        "message": "Registered pets retrieved successfully",
        "count": len(pets),
        "pets": [schemas.PetWithOwnerOut.model_validate(p) for p in pets],
    }


@router.get("/clinic/{clinic_id}/pending")
def get_clinic_pending(
    clinic_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_capability(Action.view_clinic_pets)),
):
    _ensure_serves(principal, clinic_id)
    pets = crud.list_clinic_pets(db, [clinic_id], RegistrationStatus.pending)
    return {
        "message": "Pending registrations retrieved successfully",
        "count": len(pets),
        "pets": [schemas.PetWithOwnerOut.model_validate(p) for p in pets],
    }


@router.get("/clinic/{clinic_id}/approved")
def get_clinic_approved(
    clinic_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_capability(Action.view_clinic_pets)),
):
    _ensure_serves(principal, clinic_id)
    pets = crud.list_clinic_pets(db, [clinic_id], RegistrationStatus.approved)
    return {
        "message": "Approved pets retrieved successfully",
        "count": len(pets),
        "pets": [schemas.PetWithOwnerOut.model_validate(p) for p in pets],
    }


@router.get("/clinic/{clinic_id}/pending-count")
def get_clinic_pending_count(
    clinic_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_capability(Action.view_clinic_pets)),
):
    _ensure_serves(principal, clinic_id)
    return {
        "message": "Pending count retrieved successfully",
        "count": crud.count_clinic_pets(db, clinic_id, RegistrationStatus.pending),
    }


@router.get("/clinic/{clinic_id}/registered-count")
def get_clinic_registered_count(
    clinic_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_capability(Action.view_clinic_pets)),
):
    _ensure_serves(principal, clinic_id)
    return {
        "message": "Registered count retrieved successfully",
        "count": crud.count_clinic_pets(db, clinic_id, RegistrationStatus.approved),
    }


@router.get("/{pet_id}")
def get_pet(
    pet_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.get_current_principal),
):
    """Soft-deleted pets remain fetchable by id for their owner and clinic."""
    pet = crud.get_pet_or_404(db, pet_id)
    if not can_access_pet(principal, pet):
        raise Forbidden("Access denied to this pet")
    return {"message": "Pet retrieved successfully", "pet": schemas.PetWithOwnerOut.model_validate(pet)}


@router.put("/{pet_id}")
def update_pet(
    pet_id: str,
    payload: schemas.PetUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_capability(Action.manage_own_pets)),
):
    pet = crud.update_pet(db, _own_live_pet(db, principal, pet_id), payload)
    return {"message": "Pet profile updated successfully", "pet": schemas.PetOut.model_validate(pet)}


@router.delete("/{pet_id}")
def delete_pet(
    pet_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_capability(Action.manage_own_pets)),
):
    pet = crud.soft_delete_pet(db, _own_live_pet(db, principal, pet_id))
    crud.create_audit_log(
        db, models.AuditAction.DELETE, category="PET", actor=principal,
        resource_type="pet", resource_id=pet.id,
    )
    return {"message": "Pet profile deleted successfully"}


@router.post("/{pet_id}/request-registration")
def request_registration(
    pet_id: str,
    payload: schemas.RegistrationRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_capability(Action.request_registration)),
):
    """Ask a clinic to register the pet; only possible while registration is Pending."""
    pet = crud.request_registration(db, _own_live_pet(db, principal, pet_id), payload.clinic_id)
    return {"message": "Registration request sent to clinic", "pet": schemas.PetOut.model_validate(pet)}


@router.patch("/{pet_id}/approve")
def approve_pet(
    pet_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_capability(Action.review_registration)),
):
    pet = crud.approve_pet(db, _reviewable_pet(db, principal, pet_id))
    crud.create_audit_log(
        db, models.AuditAction.UPDATE, category="PET", actor=principal,
        resource_type="pet", resource_id=pet.id, details="registration approved",
    )
    return {"message": "Pet registration approved", "pet": schemas.PetOut.model_validate(pet)}


@router.patch("/{pet_id}/reject")
def reject_pet(
    pet_id: str,
    payload: Optional[schemas.RejectRequest] = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_capability(Action.review_registration)),
):
    reason = payload.reason if payload else None
    pet = crud.reject_pet(db, _reviewable_pet(db, principal, pet_id), reason)
    crud.create_audit_log(
        db, models.AuditAction.UPDATE, category="PET", actor=principal,
        resource_type="pet", resource_id=pet.id, details=f"registration rejected: {reason or '-'}",
    )
    return {"message": "Pet registration rejected", "pet": schemas.PetOut.model_validate(pet)}
