# petcare/routers/vets.py
from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from .. import crud, models, schemas, security
from ..database import get_db
from ..exceptions import Forbidden, NotFound, ValidationError
from ..limiter import limiter, login_rate_limit
from ..permissions import Action, Principal, manages_clinic, owns_clinic, serves_clinic

router = APIRouter(
    prefix="/vets",
    tags=["Veterinarians"],
    responses={404: {"description": "Not found"}},
)


@router.post("/register", status_code=status.HTTP_201_CREATED)
@limiter.limit(login_rate_limit)
def register_vet(request: Request, payload: schemas.VetRegister, db: Session = Depends(get_db)):
    """
    Public registration for veterinarians.
    Primary vets either claim an existing clinic without a primary vet or get a new one.
    """
    vet = crud.register_vet(db, payload)
    crud.create_audit_log(
        db, models.AuditAction.CREATE, category="REGISTRATION",
        actor_id=vet.id, actor_role="vet", resource_type="vet", resource_id=vet.id,
    )
    return {"message": "Veterinarian registered successfully", "vet": schemas.VetOut.model_validate(vet)}


@router.patch("/me/active-clinic")
def switch_active_clinic(
    payload: schemas.ActiveClinicSwitch,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_capability(Action.switch_active_clinic)),
):
    """Switch the clinic a Primary vet is currently operating in."""
    clinic = crud.get_clinic_or_404(db, payload.clinic_id)
    if not owns_clinic(principal, clinic.id):
        raise Forbidden("You can only switch to a clinic you own")
    vet = crud.set_active_clinic(db, crud.get_vet_or_404(db, principal.id), clinic.id)
    return {
        "message": "Active clinic switched successfully",
        "vet": schemas.VetOut.model_validate(vet),
        "clinic": schemas.ClinicOut.model_validate(clinic),
    }


@router.post("/sub-account", status_code=status.HTTP_201_CREATED)
def create_sub_account(
    payload: schemas.VetSubAccountCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_capability(Action.create_sub_account)),
):
    """Create a veterinarian account in a clinic the caller manages."""
    if not manages_clinic(principal, payload.clinic_id):
        raise Forbidden("You can only add veterinarians to a clinic you manage")
    vet = crud.create_vet_sub_account(
        db,
        principal,
        clinic_id=payload.clinic_id,
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
    return {"message": "Sub-account created successfully", "vet": schemas.VetOut.model_validate(vet)}


@router.get("/clinic/{clinic_id}")
def get_vets_by_clinic(
    clinic_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.get_current_principal),
):
    """Active veterinarians of a clinic."""
    clinic = crud.get_clinic_or_404(db, clinic_id)
    vets = crud.list_clinic_vets(db, clinic_id)
    return {
        "message": "Veterinarians retrieved successfully",
        "clinicName": clinic.name,
        "totalVets": len(vets),
        "vets": [schemas.VetOut.model_validate(v) for v in vets],
    }


@router.get("/clinic/{clinic_id}/stats")
def get_clinic_vet_stats(
    clinic_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_capability(Action.view_clinic_stats)),
):
    if not manages_clinic(principal, clinic_id):
        raise Forbidden("Access denied")
    crud.get_clinic_or_404(db, clinic_id)
    return {"message": "Clinic staff stats retrieved successfully", **crud.clinic_vet_stats(db, clinic_id)}


@router.get("/{vet_id}")
def get_vet(
    vet_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.get_current_principal),
):
    vet = crud.get_vet(db, vet_id)
    if not vet or vet.status == models.VetStatus.deleted:
        raise NotFound("Veterinarian not found")
    clinic = vet.current_active_clinic
    return {
        "message": "Veterinarian retrieved successfully",
        "vet": schemas.VetOut.model_validate(vet),
        "clinic": schemas.ClinicBrief.model_validate(clinic) if clinic else None,
    }


@router.put("/{vet_id}")
def update_vet(
    vet_id: str,
    payload: schemas.VetUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_vet),
):
    """Update your own profile; clinic, access level and identity fields are not editable here."""
    if principal.id != vet_id:
        raise Forbidden("You can only update your own profile")
    vet = crud.update_vet(db, crud.get_vet_or_404(db, vet_id), payload)
    return {"message": "Profile updated successfully", "vet": schemas.VetOut.model_validate(vet)}


@router.patch("/{vet_id}/deactivate")
def deactivate_vet(
    vet_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_capability(Action.deactivate_vet)),
):
    """Deactivate a veterinarian working in one of the caller's clinics."""
    if principal.id == vet_id:
        raise ValidationError("Cannot deactivate your own account")
    vet = crud.get_vet_or_404(db, vet_id)
    if not serves_clinic(principal, vet.current_active_clinic_id) or vet.access_level == models.AccessLevel.primary:
        raise Forbidden("You can only deactivate veterinarians in your own clinics")
    vet = crud.deactivate_vet(db, vet)
    crud.create_audit_log(
        db, models.AuditAction.UPDATE, category="STAFF", actor=principal,
        resource_type="vet", resource_id=vet.id, details="deactivated",
    )
    return {
        "message": "Veterinarian account deactivated",
        "vet": {"id": vet.id, "firstName": vet.first_name, "lastName": vet.last_name, "status": vet.status.value},
    }
