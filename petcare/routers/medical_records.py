# petcare/routers/medical_records.py
import logging

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from .. import crud, models, schemas, security
from ..database import get_db
from ..exceptions import Forbidden, ValidationError
from ..permissions import Action, Principal, can_access_pet
from ..services import storage

router = APIRouter(
    prefix="/medical-records",
    tags=["Medical Records"],
    responses={404: {"description": "Not found"}},
)

logger = logging.getLogger(__name__)


def _readable_pet(db: Session, principal: Principal, pet_id: str) -> models.PetProfile:
    pet = crud.get_pet_or_404(db, pet_id)
    if not can_access_pet(principal, pet):
        raise Forbidden("Access denied to this pet's records")
    return pet


def _writable_record(db: Session, principal: Principal, record_id: str) -> models.MedicalRecord:
    record = crud.get_medical_record_or_404(db, record_id)
    if not can_access_pet(principal, crud.get_pet_or_404(db, record.pet_id)):
        raise Forbidden("Access denied to this record")
    return record


@router.post("", status_code=status.HTTP_201_CREATED)
def create_medical_record(
    payload: schemas.MedicalRecordCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_capability(Action.write_medical_record)),
):
    pet = crud.get_live_pet_or_404(db, payload.pet_id)
    if not can_access_pet(principal, pet):
        raise Forbidden("Pet is not registered with your clinic")
    record = crud.create_medical_record(db, principal.id, payload)
    crud.create_audit_log(
        db, models.AuditAction.CREATE, category="MEDICAL", actor=principal,
        resource_type="medical_record", resource_id=record.id,
    )
    return {"message": "Medical record created successfully", "record": schemas.MedicalRecordOut.model_validate(record)}


@router.get("/pet/{pet_id}")
def get_pet_records(
    pet_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_capability(Action.read_pet_records)),
):
    """Owners only see records their vet has made visible."""
    _readable_pet(db, principal, pet_id)
    records, total = crud.list_pet_records(db, pet_id, owner_view=principal.is_owner, page=page, limit=limit)
    return {
        "message": "Medical records retrieved successfully",
        "records": [schemas.MedicalRecordDetailOut.model_validate(r) for r in records],
        "pagination": crud.pagination_meta(page, limit, total),
    }


@router.get("/summary/pet/{pet_id}")
def get_pet_medical_summary(
    pet_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_capability(Action.read_pet_records)),
):
    pet = _readable_pet(db, principal, pet_id)
    summary = crud.medical_summary(db, pet_id, owner_view=principal.is_owner)
    latest = summary["latest"]
    return {
        "message": "Medical summary retrieved successfully",
        "petName": pet.name,
        "totalRecords": summary["total"],
        "visibleRecords": summary["visible"],
        "latestRecord": schemas.MedicalRecordDetailOut.model_validate(latest) if latest else None,
    }


@router.get("/{record_id}")
def get_medical_record(
    record_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_capability(Action.read_pet_records)),
):
    record = crud.get_medical_record_or_404(db, record_id)
    _readable_pet(db, principal, record.pet_id)
    if principal.is_owner and not record.visible_to_owner:
        raise Forbidden("This record is not available")
    return {"message": "Medical record retrieved successfully", "record": schemas.MedicalRecordDetailOut.model_validate(record)}


@router.put("/{record_id}")
def update_medical_record(
    record_id: str,
    payload: schemas.MedicalRecordUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_capability(Action.write_medical_record)),
):
    record = crud.update_medical_record(db, _writable_record(db, principal, record_id), payload)
    return {"message": "Medical record updated successfully", "record": schemas.MedicalRecordOut.model_validate(record)}


@router.patch("/{record_id}/visibility")
def set_visibility(
    record_id: str,
    payload: schemas.VisibilityUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_capability(Action.write_medical_record)),
):
    if payload.visible_to_owner is None:
        raise ValidationError("visibleToOwner must be a boolean")
    record = crud.set_record_visibility(db, _writable_record(db, principal, record_id), payload.visible_to_owner)
    state = "visible to" if record.visible_to_owner else "hidden from"
    return {"message": f"Record is now {state} the owner", "record": schemas.MedicalRecordOut.model_validate(record)}


@router.delete("/{record_id}")
def delete_medical_record(
    record_id: str,
    hard: bool = False,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_capability(Action.write_medical_record)),
):
    """Soft delete by default; ``hard=true`` removes the row and its stored attachments."""
    record = _writable_record(db, principal, record_id)
    if hard:
        urls = crud.hard_delete_medical_record(db, record)
        removed = storage.delete_attachments(urls)
        logger.info(f"Hard deleted medical record {record_id}, removed {removed} attachment(s)")
        message = "Medical record permanently deleted"
    else:
        crud.soft_delete_medical_record(db, record)
        message = "Medical record deleted successfully"
    crud.create_audit_log(
        db, models.AuditAction.DELETE, category="MEDICAL", actor=principal,
        resource_type="medical_record", resource_id=record_id, details="hard" if hard else "soft",
    )
    return {"message": message}
