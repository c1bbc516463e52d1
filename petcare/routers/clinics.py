# petcare/routers/clinics.py
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from .. import crud, models, schemas, security
from ..database import get_db
from ..exceptions import Forbidden, ValidationError
from ..models import StaffStatus
from ..permissions import Action, Principal, manages_clinic, owns_clinic, serves_clinic

router = APIRouter(
    prefix="/clinics",
    tags=["Clinics"],
    responses={404: {"description": "Not found"}},
)


def _target_clinic(principal: Principal, clinic_id: Optional[str]) -> str:
    """Explicit clinicId, or the caller's active clinic."""
    clinic_id = clinic_id or principal.clinic_id
    if not clinic_id:
        raise ValidationError("clinicId is required")
    return clinic_id


def _managed_staff(db: Session, principal: Principal, staff_id: str) -> models.ClinicStaff:
    staff = crud.get_staff_or_404(db, staff_id)
    if not manages_clinic(principal, staff.clinic_id):
        raise Forbidden("You can only manage staff of your own clinic")
    return staff


@router.get("")
def list_clinics(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    """Public clinic directory."""
    clinics, total = crud.list_clinics(db, page=page, limit=limit)
    return {
        "message": "Clinics retrieved successfully",
        "clinics": [schemas.ClinicOut.model_validate(c) for c in clinics],
        "pagination": crud.pagination_meta(page, limit, total),
    }


@router.get("/nearby")
def nearby_clinics(
    lng: float = Query(..., ge=-180, le=180),
    lat: float = Query(..., ge=-90, le=90),
    max_distance: float = Query(10000, gt=0, alias="maxDistance"),
    db: Session = Depends(get_db),
):
    """Clinics within ``maxDistance`` meters of a point, closest first."""
    results = crud.nearby_clinics(db, lng, lat, max_distance=max_distance)
    return {
        "message": "Nearby clinics retrieved successfully",
        "count": len(results),
        "clinics": [
            schemas.NearbyClinicOut.model_validate(clinic).model_copy(update={"distance_meters": round(distance, 1)})
            for clinic, distance in results
        ],
    }


@router.get("/search")
def search_clinics(
    query: str = Query(..., min_length=2),
    db: Session = Depends(get_db),
):
    clinics = crud.search_clinics(db, query)
    return {
        "message": "Clinics retrieved successfully",
        "count": len(clinics),
        "clinics": [schemas.ClinicOut.model_validate(c) for c in clinics],
    }


@router.get("/my")
def my_clinics(
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_vet),
):
    """Clinics the caller owns, or the clinic they currently work in."""
    clinics = crud.list_owned_clinics(db, principal.id)
    if not clinics and principal.clinic_id:
        clinic = crud.get_clinic(db, principal.clinic_id)
        clinics = [clinic] if clinic else []
    return {
        "message": "Clinics retrieved successfully",
        "activeClinicId": principal.clinic_id,
        "clinics": [schemas.ClinicOut.model_validate(c) for c in clinics],
    }


@router.post("", status_code=status.HTTP_201_CREATED)
def create_clinic(
    payload: schemas.ClinicCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_capability(Action.create_clinic)),
):
    clinic = crud.create_clinic(db, crud.get_vet_or_404(db, principal.id), payload)
    crud.create_audit_log(
        db, models.AuditAction.CREATE, category="CLINIC", actor=principal,
        resource_type="clinic", resource_id=clinic.id,
    )
    return {"message": "Clinic created successfully", "clinic": schemas.ClinicOut.model_validate(clinic)}


# Staff routes are declared before /{clinic_id} so "staff" is not taken as a clinic id.
@router.get("/staff")
def list_staff(
    clinic_id: Optional[str] = Query(None, alias="clinicId"),
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_capability(Action.view_clinic_staff)),
):
    clinic_id = _target_clinic(principal, clinic_id)
    if not serves_clinic(principal, clinic_id):
        raise Forbidden("You do not work in this clinic")
    crud.get_clinic_or_404(db, clinic_id)
    vets = crud.list_clinic_vets(db, clinic_id)
    staff = crud.list_clinic_staff(db, clinic_id)
    return {
        "message": "Clinic staff retrieved successfully",
        "clinicId": clinic_id,
        "veterinarians": [schemas.VetOut.model_validate(v) for v in vets],
        "staff": [schemas.StaffOut.model_validate(s) for s in staff],
    }


@router.post("/staff", status_code=status.HTTP_201_CREATED)
def create_staff(
    payload: schemas.StaffCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_capability(Action.manage_staff)),
):
    """
    Add a team member to a clinic the caller manages.
    ``staffType=veterinarian`` creates a vet sub-account; other types create a ClinicStaff account.
    """
    clinic_id = _target_clinic(principal, payload.clinic_id)
    if not manages_clinic(principal, clinic_id):
        raise Forbidden("You can only add staff to a clinic you manage")

    if payload.staff_type == "veterinarian":
        vet = crud.create_vet_sub_account(
            db,
            principal,
            clinic_id=clinic_id,
            first_name=payload.first_name,
            last_name=payload.last_name,
            email=payload.email,
            password=payload.password,
            phone_number=payload.phone_number,
            veterinary_id=payload.veterinary_id,
            specialization=payload.specialization,
            access_level=payload.access_level,
        )
        crud.create_audit_log(
            db, models.AuditAction.CREATE, category="STAFF", actor=principal,
            resource_type="vet", resource_id=vet.id, details=f"accessLevel={vet.access_level.value}",
        )
        return {"message": "Veterinarian added successfully", "staffType": "veterinarian", "vet": schemas.VetOut.model_validate(vet)}

    staff = crud.create_clinic_staff(db, principal, clinic_id, payload)
    crud.create_audit_log(
        db, models.AuditAction.CREATE, category="STAFF", actor=principal,
        resource_type="staff", resource_id=staff.id, details=f"role={staff.role.value}",
    )
    return {"message": "Staff member added successfully", "staffType": payload.staff_type, "staff": schemas.StaffOut.model_validate(staff)}


@router.get("/staff/{staff_id}")
def get_staff(
    staff_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_capability(Action.view_clinic_staff)),
):
    staff = crud.get_staff_or_404(db, staff_id)
    if not serves_clinic(principal, staff.clinic_id):
        raise Forbidden("You do not work in this clinic")
    return {"message": "Staff member retrieved successfully", "staff": schemas.StaffOut.model_validate(staff)}


@router.put("/staff/{staff_id}")
def update_staff(
    staff_id: str,
    payload: schemas.StaffUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_capability(Action.manage_staff)),
):
    staff = _managed_staff(db, principal, staff_id)
    if payload.clinic_id and payload.clinic_id != staff.clinic_id:
        crud.get_clinic_or_404(db, payload.clinic_id)
        if not manages_clinic(principal, payload.clinic_id):
            raise Forbidden("You can only move staff to a clinic you manage")
    staff = crud.update_staff(db, staff, payload)
    return {"message": "Staff member updated successfully", "staff": schemas.StaffOut.model_validate(staff)}


@router.delete("/staff/{staff_id}")
def delete_staff(
    staff_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_capability(Action.delete_staff)),
):
    staff = crud.get_staff_or_404(db, staff_id)
    if not owns_clinic(principal, staff.clinic_id):
        raise Forbidden("You can only remove staff from clinics you own")
    crud.set_staff_status(db, staff, StaffStatus.deleted)
    crud.create_audit_log(
        db, models.AuditAction.DELETE, category="STAFF", actor=principal,
        resource_type="staff", resource_id=staff_id,
    )
    return {"message": "Staff member removed successfully"}


@router.patch("/staff/{staff_id}/activate")
def activate_staff(
    staff_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_capability(Action.manage_staff)),
):
    staff = crud.set_staff_status(db, _managed_staff(db, principal, staff_id), StaffStatus.active)
    return {"message": "Staff member activated", "staff": schemas.StaffOut.model_validate(staff)}


@router.patch("/staff/{staff_id}/deactivate")
def deactivate_staff(
    staff_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_capability(Action.manage_staff)),
):
    staff = crud.set_staff_status(db, _managed_staff(db, principal, staff_id), StaffStatus.inactive)
    crud.create_audit_log(
        db, models.AuditAction.UPDATE, category="STAFF", actor=principal,
        resource_type="staff", resource_id=staff_id, details="deactivated",
    )
    return {"message": "Staff member deactivated", "staff": schemas.StaffOut.model_validate(staff)}


@router.get("/{clinic_id}")
def get_clinic(clinic_id: str, db: Session = Depends(get_db)):
    clinic = crud.get_clinic_or_404(db, clinic_id)
    return {"message": "Clinic retrieved successfully", "clinic": schemas.ClinicOut.model_validate(clinic)}


@router.get("/{clinic_id}/staff-count")
def get_staff_count(
    clinic_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_capability(Action.view_clinic_staff)),
):
    if not serves_clinic(principal, clinic_id):
        raise Forbidden("You do not work in this clinic")
    crud.get_clinic_or_404(db, clinic_id)
    return {"message": "Staff count retrieved successfully", **crud.clinic_staff_count(db, clinic_id)}


@router.put("/{clinic_id}")
def update_clinic(
    clinic_id: str,
    payload: schemas.ClinicUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_capability(Action.update_clinic)),
):
    if not manages_clinic(principal, clinic_id):
        raise Forbidden("You can only update a clinic you manage")
    clinic = crud.update_clinic(db, crud.get_clinic_or_404(db, clinic_id), payload)
    return {"message": "Clinic updated successfully", "clinic": schemas.ClinicOut.model_validate(clinic)}


@router.delete("/{clinic_id}")
def delete_clinic(
    clinic_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_capability(Action.delete_clinic)),
):
    clinic = crud.get_clinic_or_404(db, clinic_id)
    if not owns_clinic(principal, clinic.id):
        raise Forbidden("You can only delete clinics you own")
    crud.delete_clinic(db, clinic)
    crud.create_audit_log(
        db, models.AuditAction.DELETE, category="CLINIC", actor=principal,
        resource_type="clinic", resource_id=clinic_id,
    )
    return {"message": "Clinic deleted successfully"}
