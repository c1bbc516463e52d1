# petcare/routers/prescriptions.py
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from .. import crud, models, schemas, security
from ..database import get_db
from ..exceptions import Forbidden
from ..models import PrescriptionType
from ..permissions import Action, Principal, can_access_pet, is_self
from ..services import pdf_service

router = APIRouter(
    prefix="/prescriptions",
    tags=["Prescriptions"],
    responses={404: {"description": "Not found"}},
)


def _accessible_pet(db: Session, principal: Principal, pet_id: str) -> models.PetProfile:
    pet = crud.get_pet_or_404(db, pet_id)
    if not can_access_pet(principal, pet):
        raise Forbidden("Access denied to this pet's prescriptions")
    return pet


def _accessible_prescription(db: Session, principal: Principal, prescription_id: str) -> models.Prescription:
    prescription = crud.get_prescription_or_404(db, prescription_id)
    _accessible_pet(db, principal, prescription.pet_id)
    return prescription


@router.post("", status_code=status.HTTP_201_CREATED)
def create_prescription(
    payload: schemas.PrescriptionCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_capability(Action.write_prescription)),
):
    """Vaccinations require a due date."""
    pet = crud.get_live_pet_or_404(db, payload.pet_id)
    if not can_access_pet(principal, pet):
        raise Forbidden("Pet is not registered with your clinic")
    prescription = crud.create_prescription(db, principal.id, payload)
    crud.create_audit_log(
        db, models.AuditAction.CREATE, category="MEDICAL", actor=principal,
        resource_type="prescription", resource_id=prescription.id,
    )
    return {"message": "Prescription created successfully", "prescription": schemas.PrescriptionOut.model_validate(prescription)}


@router.get("/pet/{pet_id}")
def get_pet_prescriptions(
    pet_id: str,
    type: Optional[PrescriptionType] = None,
    active_only: bool = Query(False, alias="activeOnly"),
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_capability(Action.read_pet_records)),
):
    _accessible_pet(db, principal, pet_id)
    prescriptions = crud.list_pet_prescriptions(db, pet_id, type_=type, active_only=active_only)
    return {
        "message": "Prescriptions retrieved successfully",
        "count": len(prescriptions),
        "prescriptions": [schemas.PrescriptionOut.model_validate(p) for p in prescriptions],
    }


@router.get("/pet/{pet_id}/upcoming")
def get_pet_upcoming(
    pet_id: str,
    days_ahead: int = Query(30, ge=1, le=365, alias="daysAhead"),
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_capability(Action.read_pet_records)),
):
    _accessible_pet(db, principal, pet_id)
    prescriptions = crud.upcoming_for_pet(db, pet_id, days_ahead=days_ahead)
    return {
        "message": "Upcoming prescriptions retrieved successfully",
        "daysAhead": days_ahead,
        "prescriptions": [schemas.PrescriptionOut.model_validate(p) for p in prescriptions],
    }


@router.get("/pet/{pet_id}/vaccinations")
def get_pet_vaccinations(
    pet_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_capability(Action.read_pet_records)),
):
    pet = _accessible_pet(db, principal, pet_id)
    summary = crud.vaccination_summary(db, pet_id)
    next_due = summary["next_due"]
    return {
        "message": "Vaccination summary retrieved successfully",
        "petName": pet.name,
        "totalVaccinations": summary["total"],
        "nextDue": schemas.PrescriptionOut.model_validate(next_due) if next_due else None,
        "history": [schemas.PrescriptionOut.model_validate(v) for v in summary["history"]],
    }


@router.get("/owner/{owner_id}/upcoming")
def get_owner_upcoming(
    owner_id: str,
    days_ahead: int = Query(30, ge=1, le=365, alias="daysAhead"),
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_owner),
):
    """Reminders across all of an owner's pets."""
    if not is_self(principal, owner_id):
        raise Forbidden("You can only view your own reminders")
    prescriptions = crud.upcoming_for_owner(db, owner_id, days_ahead=days_ahead)
    return {
        "message": "Upcoming prescriptions retrieved successfully",
        "count": len(prescriptions),
        "prescriptions": [
            {"petName": p.pet.name, **schemas.PrescriptionOut.model_validate(p).model_dump(by_alias=True)}
            for p in prescriptions
        ],
    }


@router.get("/{prescription_id}")
def get_prescription(
    prescription_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_capability(Action.read_pet_records)),
):
    prescription = _accessible_prescription(db, principal, prescription_id)
    return {"message": "Prescription retrieved successfully", "prescription": schemas.PrescriptionOut.model_validate(prescription)}


@router.get("/{prescription_id}/pdf")
def download_prescription_pdf(
    prescription_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_capability(Action.read_pet_records)),
):
    prescription = _accessible_prescription(db, principal, prescription_id)
    pdf = pdf_service.render_prescription_pdf(prescription)
    filename = pdf_service.prescription_filename(prescription)
    crud.create_audit_log(
        db, models.AuditAction.EXPORT, category="MEDICAL", actor=principal,
        resource_type="prescription", resource_id=prescription.id,
    )
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.put("/{prescription_id}")
def update_prescription(
    prescription_id: str,
    payload: schemas.PrescriptionUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_capability(Action.write_prescription)),
):
    prescription = _accessible_prescription(db, principal, prescription_id)
    prescription = crud.update_prescription(db, prescription, payload)
    return {"message": "Prescription updated successfully", "prescription": schemas.PrescriptionOut.model_validate(prescription)}


@router.delete("/{prescription_id}")
def delete_prescription(
    prescription_id: str,
    hard: bool = False,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_capability(Action.write_prescription)),
):
    prescription = _accessible_prescription(db, principal, prescription_id)
    if hard:
        crud.hard_delete_prescription(db, prescription)
        message = "Prescription permanently deleted"
    else:
        crud.soft_delete_prescription(db, prescription)
        message = "Prescription deleted successfully"
    crud.create_audit_log(
        db, models.AuditAction.DELETE, category="MEDICAL", actor=principal,
        resource_type="prescription", resource_id=prescription_id, details="hard" if hard else "soft",
    )
    return {"message": message}
