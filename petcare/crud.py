# petcare/crud.py
import logging
import math
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import and_, func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from . import models, schemas
from .exceptions import Conflict, Forbidden, Internal, NotFound, SlotConflict, ValidationError
from .models import (
    AccessLevel, AppointmentStatus, PrescriptionType, RegistrationStatus, StaffAccessLevel,
    StaffRole, StaffStatus, VetStatus,
)
from .permissions import Principal, served_clinic_ids
from .security import get_password_hash, validate_password, verify_password
from .timeutils import day_bounds, end_of_day, start_of_day, to_naive_utc, utcnow

logger = logging.getLogger(__name__)


class CRUDError(Internal):
    """Persistence failure that could not be completed."""


# Canonical mapping used everywhere a ClinicStaff account is created or its role changes.
STAFF_ROLE_ACCESS = {
    StaffRole.manager: StaffAccessLevel.admin,
    StaffRole.vet_tech: StaffAccessLevel.moderate,
    StaffRole.receptionist: StaffAccessLevel.basic,
    StaffRole.assistant: StaffAccessLevel.basic,
    StaffRole.kennel_staff: StaffAccessLevel.basic,
}

STAFF_TYPE_ROLES = {
    "receptionist": StaffRole.receptionist,
    "vettech": StaffRole.vet_tech,
    "manager": StaffRole.manager,
    "assistant": StaffRole.assistant,
    "kennelstaff": StaffRole.kennel_staff,
}

EARTH_RADIUS_METERS = 6371000.0


# --- Helpers ---
def _commit(db: Session, *objs, what: str = "record"):
    """Commit the session, refreshing ``objs``; persistence failures become CRUDError."""
    try:
        db.commit()
        for obj in objs:
            db.refresh(obj)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error saving {what}: {e}")
        raise CRUDError(f"Error saving {what}", error=str(e))


def _normalize_email(email: str) -> str:
    return email.strip().lower()


def _apply_updates(obj, values: dict):
    columns = obj.__table__.columns
    for key, value in values.items():
        column = columns.get(key)
        if value is None and column is not None and not column.nullable:
            raise ValidationError(f"{key} cannot be null")
    for key, value in values.items():
        setattr(obj, key, value)


def _paginate(query, page: int, limit: int):
    total = query.order_by(None).count()
    items = query.offset((page - 1) * limit).limit(limit).all()
    return items, total


def pagination_meta(page: int, limit: int, total: int) -> dict:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": math.ceil(total / limit) if limit else 0,
    }


def haversine_meters(lng1: float, lat1: float, lng2: float, lat2: float) -> float:
    """Great-circle distance between two points in meters."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlmb = math.radians(lng2 - lng1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
    return 2 * EARTH_RADIUS_METERS * math.asin(math.sqrt(a))


# --- Audit ---
def create_audit_log(
    db: Session,
    action: models.AuditAction,
    category: str = "GENERAL",
    actor: Optional[Principal] = None,
    actor_id: Optional[str] = None,
    actor_role: Optional[str] = None,
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
    details: Optional[str] = None,
    ip_address: Optional[str] = None,
):
    """Record an audit entry. Audit failures are logged and never fail the request."""
    if actor is not None:
        actor_id = actor.id
        actor_role = actor.role.value
    entry = models.AuditLog(
        actor_id=actor_id,
        actor_role=actor_role,
        action=action.value if hasattr(action, "value") else str(action),
        category=category,
        resource_type=resource_type,
        resource_id=resource_id,
        details=details,
        ip_address=ip_address,
    )
    try:
        db.add(entry)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to write audit log ({action}): {e}")
        return None
    return entry


# --- Owners ---
def get_owner(db: Session, owner_id: str, include_deleted: bool = False) -> Optional[models.PetOwner]:
    query = db.query(models.PetOwner).filter(models.PetOwner.id == owner_id)
    if not include_deleted:
        query = query.filter(models.PetOwner.is_deleted.is_(False))
    return query.first()


def get_owner_or_404(db: Session, owner_id: str) -> models.PetOwner:
    owner = get_owner(db, owner_id)
    if not owner:
        raise NotFound("Pet owner not found")
    return owner


def get_owner_by_email(db: Session, email: str) -> Optional[models.PetOwner]:
    return db.query(models.PetOwner).filter(models.PetOwner.email == _normalize_email(email)).first()


def create_owner(db: Session, data: schemas.OwnerRegister) -> models.PetOwner:
    validate_password(data.password)
    email = _normalize_email(data.email)
    if get_owner_by_email(db, email):
        raise Conflict("Email already registered")

    owner = models.PetOwner(
        first_name=data.first_name,
        last_name=data.last_name,
        address=data.address,
        phone_number=data.phone_number,
        email=email,
        password_hash=get_password_hash(data.password),
        profile_photo=data.profile_photo,
    )
    if data.location:
        owner.longitude, owner.latitude = data.location.longitude, data.location.latitude
    db.add(owner)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise Conflict("Email already registered")
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error creating owner: {e}")
        raise CRUDError("Error registering pet owner", error=str(e))
    db.refresh(owner)
    return owner


def update_owner(db: Session, owner: models.PetOwner, data: schemas.OwnerUpdate) -> models.PetOwner:
    values = data.model_dump(exclude_unset=True)
    if "password" in values:
        raise ValidationError("Password cannot be updated here. Use the change password endpoint")

    if values.get("email"):
        email = _normalize_email(values["email"])
        if email != owner.email:
            existing = get_owner_by_email(db, email)
            if existing and existing.id != owner.id:
                raise Conflict("Email already in use")
        values["email"] = email

    values.pop("location", None)
    if "location" in data.model_fields_set:
        owner.longitude = data.location.longitude if data.location else None
        owner.latitude = data.location.latitude if data.location else None

    for required in ("first_name", "last_name", "address", "phone_number", "email"):
        if required in values and not values[required]:
            raise ValidationError(f"{required} cannot be empty")

    _apply_updates(owner, values)
    _commit(db, owner, what="pet owner")
    return owner


def soft_delete_owner(db: Session, owner: models.PetOwner) -> models.PetOwner:
    owner.is_deleted = True
    owner.deleted_at = utcnow()
    _commit(db, owner, what="pet owner")
    return owner


def list_owners(db: Session, page: int = 1, limit: int = 10, search: Optional[str] = None):
    query = db.query(models.PetOwner).filter(models.PetOwner.is_deleted.is_(False))
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(
            models.PetOwner.first_name.ilike(pattern),
            models.PetOwner.last_name.ilike(pattern),
            models.PetOwner.email.ilike(pattern),
            models.PetOwner.phone_number.ilike(pattern),
        ))
    query = query.order_by(models.PetOwner.created_at.desc())
    return _paginate(query, page, limit)


def owner_summary(db: Session, owner_id: str) -> dict:
    pets = db.query(models.PetProfile).filter(
        models.PetProfile.owner_id == owner_id,
        models.PetProfile.is_deleted.is_(False),
    )
    total = pets.count()
    registered = pets.filter(models.PetProfile.registration_status == RegistrationStatus.approved).count()
    pending = pets.filter(models.PetProfile.registration_status == RegistrationStatus.pending).count()
    upcoming = db.query(models.Appointment).filter(
        models.Appointment.owner_id == owner_id,
        models.Appointment.date_time >= utcnow(),
        models.Appointment.status.notin_(models.TERMINAL_APPOINTMENT_STATUSES),
    ).count()
    return {
        "totalPets": total,
        "registeredPets": registered,
        "pendingRegistration": pending,
        "upcomingAppointments": upcoming,
    }


def change_password(db: Session, account, current_password: str, new_password: str):
    if not verify_password(current_password, account.password_hash):
        raise ValidationError("Current password is incorrect")
    validate_password(new_password)
    account.password_hash = get_password_hash(new_password)
    _commit(db, account, what="password")
    return account


# --- Veterinarians ---
def get_vet(db: Session, vet_id: str) -> Optional[models.Veterinarian]:
    return db.query(models.Veterinarian).filter(models.Veterinarian.id == vet_id).first()


def get_vet_or_404(db: Session, vet_id: str) -> models.Veterinarian:
    vet = get_vet(db, vet_id)
    if not vet:
        raise NotFound("Veterinarian not found")
    return vet


def get_vet_by_email(db: Session, email: str) -> Optional[models.Veterinarian]:
    return db.query(models.Veterinarian).filter(models.Veterinarian.email == _normalize_email(email)).first()


def vet_identity_taken(db: Session, email: str, veterinary_id: str) -> bool:
    return db.query(models.Veterinarian).filter(or_(
        models.Veterinarian.email == _normalize_email(email),
        models.Veterinarian.veterinary_id == veterinary_id.strip(),
    )).first() is not None


def _save_new_vet(db: Session, vet: models.Veterinarian, *extra, what: str = "veterinarian"):
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise Conflict("A veterinarian with this email or license already exists")
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error creating {what}: {e}")
        raise CRUDError(f"Error creating {what}", error=str(e))
    db.refresh(vet)
    for obj in extra:
        db.refresh(obj)
    return vet


def register_vet(db: Session, data: schemas.VetRegister) -> models.Veterinarian:
    """
    Register a veterinarian.

    A Primary vet either claims an existing clinic that has no primary vet yet,
    or gets a new clinic named after them. Other vets register unattached and
    are added to clinics later.
    """
    validate_password(data.password)
    if vet_identity_taken(db, data.email, data.veterinary_id):
        raise Conflict("A veterinarian with this email or license already exists")

    clinic = None
    if data.is_primary_vet and data.clinic_id:
        clinic = get_clinic(db, data.clinic_id)
        if not clinic:
            raise NotFound("Clinic not found")
        if clinic.primary_vet_id:
            raise Forbidden("This clinic already has a Primary Vet")

    vet = models.Veterinarian(
        id=models.new_id(),
        first_name=data.first_name,
        last_name=data.last_name,
        email=_normalize_email(data.email),
        password_hash=get_password_hash(data.password),
        phone_number=data.phone_number,
        veterinary_id=data.veterinary_id,
        specialization=data.specialization or "",
        access_level=AccessLevel.primary if data.is_primary_vet else AccessLevel.normal,
        is_primary_vet=data.is_primary_vet,
        status=VetStatus.active,
    )
    db.add(vet)

    if data.is_primary_vet:
        if clinic is None:
            clinic = models.Clinic(
                id=models.new_id(),
                name=f"{data.first_name} {data.last_name}'s Clinic",
                address="",
                phone_number=data.phone_number,
            )
            db.add(clinic)
        clinic.primary_vet_id = vet.id
        vet.current_active_clinic_id = clinic.id

    return _save_new_vet(db, vet, *([clinic] if clinic else []))


def create_vet_sub_account(
    db: Session,
    creator: Principal,
    clinic_id: Optional[str],
    first_name: str,
    last_name: str,
    email: str,
    password: str,
    phone_number: Optional[str],
    veterinary_id: Optional[str],
    specialization: Optional[str] = "",
    access_level=None,
) -> models.Veterinarian:
    """
    Create a veterinarian account inside a clinic the creator manages.

    Sub-accounts default to Normal Access. Full Access is granted only when
    asked for, and Primary can never be assigned this way.
    """
    if not clinic_id:
        raise ValidationError("clinicId is required")
    if not veterinary_id or not veterinary_id.strip():
        raise ValidationError("veterinaryId is required for veterinarian accounts")
    if not phone_number:
        raise ValidationError("phoneNumber is required for veterinarian accounts")

    if access_level in (None, ""):
        level = AccessLevel.normal
    else:
        try:
            level = AccessLevel(access_level)
        except ValueError:
            raise ValidationError("accessLevel must be 'Full Access' or 'Normal Access'")
    if level == AccessLevel.primary:
        raise Forbidden("Cannot assign Primary access via sub-account")

    if not get_clinic(db, clinic_id):
        raise NotFound("Clinic not found")
    validate_password(password)
    if vet_identity_taken(db, email, veterinary_id):
        raise Conflict("Email or license already in use")

    vet = models.Veterinarian(
        first_name=first_name.strip(),
        last_name=last_name.strip(),
        email=_normalize_email(email),
        password_hash=get_password_hash(password),
        phone_number=phone_number.strip(),
        veterinary_id=veterinary_id.strip(),
        specialization=(specialization or "").strip(),
        access_level=level,
        is_primary_vet=False,
        current_active_clinic_id=clinic_id,
        created_by_vet_id=creator.id,
        status=VetStatus.active,
    )
    db.add(vet)
    return _save_new_vet(db, vet, what="sub-account")


def update_vet(db: Session, vet: models.Veterinarian, data: schemas.VetUpdate) -> models.Veterinarian:
    values = data.model_dump(exclude_unset=True)
    restricted = [f for f in schemas.RESTRICTED_VET_FIELDS if f in values]
    if restricted:
        raise Forbidden(f"{restricted[0]} cannot be modified")
    for required in ("first_name", "last_name", "phone_number"):
        if required in values and not values[required]:
            raise ValidationError(f"{required} cannot be empty")
    _apply_updates(vet, values)
    _commit(db, vet, what="veterinarian")
    return vet


def _clinic_vets_query(db: Session, clinic_id: str):
    """Active vets working in the clinic, plus its owner."""
    return db.query(models.Veterinarian).outerjoin(
        models.Clinic,
        and_(models.Clinic.primary_vet_id == models.Veterinarian.id, models.Clinic.id == clinic_id),
    ).filter(
        models.Veterinarian.status == VetStatus.active,
        or_(models.Veterinarian.current_active_clinic_id == clinic_id, models.Clinic.id.isnot(None)),
    )


def list_clinic_vets(db: Session, clinic_id: str) -> List[models.Veterinarian]:
    return _clinic_vets_query(db, clinic_id).order_by(
        models.Veterinarian.is_primary_vet.desc(),
        models.Veterinarian.first_name.asc(),
    ).all()


def clinic_vet_stats(db: Session, clinic_id: str) -> dict:
    vets = _clinic_vets_query(db, clinic_id).all()
    breakdown = {level.value: 0 for level in AccessLevel}
    for vet in vets:
        breakdown[vet.access_level.value] += 1
    return {"totalActiveVets": len(vets), "breakdown": breakdown}


def deactivate_vet(db: Session, vet: models.Veterinarian) -> models.Veterinarian:
    vet.status = VetStatus.deactivated
    _commit(db, vet, what="veterinarian")
    return vet


def set_active_clinic(db: Session, vet: models.Veterinarian, clinic_id: Optional[str]) -> models.Veterinarian:
    vet.current_active_clinic_id = clinic_id
    _commit(db, vet, what="veterinarian")
    return vet


# --- Clinics ---
def get_clinic(db: Session, clinic_id: str, include_deleted: bool = False) -> Optional[models.Clinic]:
    query = db.query(models.Clinic).filter(models.Clinic.id == clinic_id)
    if not include_deleted:
        query = query.filter(models.Clinic.is_deleted.is_(False))
    return query.first()


def get_clinic_or_404(db: Session, clinic_id: str) -> models.Clinic:
    clinic = get_clinic(db, clinic_id)
    if not clinic:
        raise NotFound("Clinic not found")
    return clinic


def create_clinic(db: Session, owner_vet: models.Veterinarian, data: schemas.ClinicCreate) -> models.Clinic:
    clinic = models.Clinic(
        id=models.new_id(),
        name=data.name.strip(),
        address=data.address.strip(),
        phone_number=data.phone_number.strip(),
        operating_hours=data.operating_hours or "",
        description=data.description or "",
        primary_vet_id=owner_vet.id,
    )
    if data.location:
        clinic.longitude, clinic.latitude = data.location.longitude, data.location.latitude
    db.add(clinic)
    if not owner_vet.current_active_clinic_id:
        owner_vet.current_active_clinic_id = clinic.id
    _commit(db, clinic, owner_vet, what="clinic")
    return clinic


def list_owned_clinics(db: Session, vet_id: str) -> List[models.Clinic]:
    return db.query(models.Clinic).filter(
        models.Clinic.primary_vet_id == vet_id,
        models.Clinic.is_deleted.is_(False),
    ).order_by(models.Clinic.created_at.asc()).all()


def list_clinics(db: Session, page: int = 1, limit: int = 20):
    query = db.query(models.Clinic).filter(models.Clinic.is_deleted.is_(False)).order_by(models.Clinic.name.asc())
    return _paginate(query, page, limit)


def search_clinics(db: Session, text: str, limit: int = 20) -> List[models.Clinic]:
    pattern = f"%{text.strip()}%"
    return db.query(models.Clinic).filter(
        models.Clinic.is_deleted.is_(False),
        or_(
            models.Clinic.name.ilike(pattern),
            models.Clinic.address.ilike(pattern),
            models.Clinic.description.ilike(pattern),
        ),
    ).order_by(models.Clinic.name.asc()).limit(limit).all()


def nearby_clinics(db: Session, lng: float, lat: float, max_distance: float = 10000) -> List[Tuple[models.Clinic, float]]:
    """Clinics within ``max_distance`` meters, closest first."""
    # Bounding box prefilter in degrees; the exact cut uses the haversine distance.
    lat_delta = math.degrees(max_distance / EARTH_RADIUS_METERS)
    cos_lat = max(math.cos(math.radians(lat)), 1e-6)
    lng_delta = min(180.0, lat_delta / cos_lat)
    candidates = db.query(models.Clinic).filter(
        models.Clinic.is_deleted.is_(False),
        models.Clinic.latitude.isnot(None),
        models.Clinic.longitude.isnot(None),
        models.Clinic.latitude.between(lat - lat_delta, lat + lat_delta),
    ).all()

    results = []
    for clinic in candidates:
        lng_gap = abs(clinic.longitude - lng)
        if lng_delta < 180.0 and min(lng_gap, 360.0 - lng_gap) > lng_delta:
            continue
        distance = haversine_meters(lng, lat, clinic.longitude, clinic.latitude)
        if distance <= max_distance:
            results.append((clinic, distance))
    results.sort(key=lambda pair: pair[1])
    return results


def update_clinic(db: Session, clinic: models.Clinic, data: schemas.ClinicUpdate) -> models.Clinic:
    values = data.model_dump(exclude_unset=True)
    if "primary_vet_id" in values and values["primary_vet_id"] != clinic.primary_vet_id:
        raise Forbidden("primaryVetId cannot be changed")
    values.pop("primary_vet_id", None)
    values.pop("location", None)
    if "location" in data.model_fields_set:
        clinic.longitude = data.location.longitude if data.location else None
        clinic.latitude = data.location.latitude if data.location else None
    for required in ("name", "phone_number"):
        if required in values and not values[required]:
            raise ValidationError(f"{required} cannot be empty")
    _apply_updates(clinic, values)
    _commit(db, clinic, what="clinic")
    return clinic


def delete_clinic(db: Session, clinic: models.Clinic) -> models.Clinic:
    """Soft-delete a clinic and move vets that were working in it off of it."""
    clinic.is_deleted = True
    clinic.deleted_at = utcnow()

    replacement = db.query(models.Clinic).filter(
        models.Clinic.primary_vet_id == clinic.primary_vet_id,
        models.Clinic.id != clinic.id,
        models.Clinic.is_deleted.is_(False),
    ).order_by(models.Clinic.created_at.asc()).first()

    affected = db.query(models.Veterinarian).filter(
        models.Veterinarian.current_active_clinic_id == clinic.id
    ).all()
    for vet in affected:
        if vet.id == clinic.primary_vet_id and replacement:
            vet.current_active_clinic_id = replacement.id
        else:
            vet.current_active_clinic_id = None
    _commit(db, clinic, what="clinic")
    return clinic


# --- Clinic staff ---
def get_staff(db: Session, staff_id: str) -> Optional[models.ClinicStaff]:
    return db.query(models.ClinicStaff).filter(
        models.ClinicStaff.id == staff_id,
        models.ClinicStaff.status != StaffStatus.deleted,
    ).first()


def get_staff_or_404(db: Session, staff_id: str) -> models.ClinicStaff:
    staff = get_staff(db, staff_id)
    if not staff:
        raise NotFound("Staff member not found")
    return staff


def create_clinic_staff(db: Session, creator: Principal, clinic_id: str, data: schemas.StaffCreate) -> models.ClinicStaff:
    role = data.role or STAFF_TYPE_ROLES.get(data.staff_type)
    if role is None:
        raise ValidationError("role is required for non-veterinarian staff")
    if not get_clinic(db, clinic_id):
        raise NotFound("Clinic not found")
    validate_password(data.password)

    email = _normalize_email(data.email)
    if db.query(models.ClinicStaff).filter(models.ClinicStaff.email == email).first():
        raise Conflict("A staff member with this email already exists")

    staff = models.ClinicStaff(
        clinic_id=clinic_id,
        first_name=data.first_name.strip(),
        last_name=data.last_name.strip(),
        email=email,
        phone_number=(data.phone_number or "").strip() or None,
        password_hash=get_password_hash(data.password),
        role=role,
        access_level=STAFF_ROLE_ACCESS[role],
        created_by_vet_id=creator.id,
        status=StaffStatus.active,
    )
    db.add(staff)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise Conflict("A staff member with this email already exists")
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error creating clinic staff: {e}")
        raise CRUDError("Error creating staff member", error=str(e))
    db.refresh(staff)
    return staff


def list_clinic_staff(db: Session, clinic_id: str) -> List[models.ClinicStaff]:
    return db.query(models.ClinicStaff).filter(
        models.ClinicStaff.clinic_id == clinic_id,
        models.ClinicStaff.status == StaffStatus.active,
    ).order_by(models.ClinicStaff.role.asc(), models.ClinicStaff.first_name.asc()).all()


def clinic_staff_count(db: Session, clinic_id: str) -> dict:
    vets = _clinic_vets_query(db, clinic_id).count()
    staff = db.query(models.ClinicStaff).filter(
        models.ClinicStaff.clinic_id == clinic_id,
        models.ClinicStaff.status == StaffStatus.active,
    ).count()
    return {"totalStaff": vets + staff, "breakdown": {"veterinarians": vets, "nonVetStaff": staff}}


def update_staff(db: Session, staff: models.ClinicStaff, data: schemas.StaffUpdate) -> models.ClinicStaff:
    values = data.model_dump(exclude_unset=True)
    if "password" in values:
        raise Forbidden("password cannot be modified")
    if values.get("email"):
        email = _normalize_email(values["email"])
        existing = db.query(models.ClinicStaff).filter(
            models.ClinicStaff.email == email,
            models.ClinicStaff.id != staff.id,
        ).first()
        if existing:
            raise Conflict("Email already in use by another staff member")
        values["email"] = email
    if values.get("role"):
        values["access_level"] = STAFF_ROLE_ACCESS[values["role"]]
    for required in ("first_name", "last_name", "email", "role", "clinic_id"):
        if required in values and not values[required]:
            raise ValidationError(f"{required} cannot be empty")
    _apply_updates(staff, values)
    _commit(db, staff, what="staff member")
    return staff


def set_staff_status(db: Session, staff: models.ClinicStaff, status: StaffStatus) -> models.ClinicStaff:
    staff.status = status
    _commit(db, staff, what="staff member")
    return staff


# --- Pets ---
def get_pet(db: Session, pet_id: str) -> Optional[models.PetProfile]:
    """Fetch a pet by id, including soft-deleted ones."""
    return db.query(models.PetProfile).filter(models.PetProfile.id == pet_id).first()


def get_pet_or_404(db: Session, pet_id: str) -> models.PetProfile:
    pet = get_pet(db, pet_id)
    if not pet:
        raise NotFound("Pet not found")
    return pet


def get_live_pet_or_404(db: Session, pet_id: str) -> models.PetProfile:
    pet = get_pet(db, pet_id)
    if not pet or pet.is_deleted:
        raise NotFound("Pet not found")
    return pet


def create_pet(db: Session, owner_id: str, data: schemas.PetCreate) -> models.PetProfile:
    values = data.model_dump(exclude_unset=True)
    if values.get("registered_clinic_id") and not get_clinic(db, values["registered_clinic_id"]):
        raise NotFound("Clinic not found")
    pet = models.PetProfile(owner_id=owner_id, registration_status=RegistrationStatus.pending, **values)
    db.add(pet)
    _commit(db, pet, what="pet profile")
    return pet


def list_owner_pets(db: Session, owner_id: str, status: Optional[RegistrationStatus] = None) -> List[models.PetProfile]:
    query = db.query(models.PetProfile).filter(
        models.PetProfile.owner_id == owner_id,
        models.PetProfile.is_deleted.is_(False),
    )
    if status:
        query = query.filter(models.PetProfile.registration_status == status)
    return query.order_by(models.PetProfile.created_at.desc()).all()


def update_pet(db: Session, pet: models.PetProfile, data: schemas.PetUpdate) -> models.PetProfile:
    values = data.model_dump(exclude_unset=True)
    restricted = [f for f in schemas.RESTRICTED_PET_FIELDS if f in values]
    if restricted:
        raise Forbidden(f"{restricted[0]} cannot be modified here")
    for required in ("name", "species"):
        if required in values and not values[required]:
            raise ValidationError(f"{required} cannot be empty")
    _apply_updates(pet, values)
    _commit(db, pet, what="pet profile")
    return pet


def soft_delete_pet(db: Session, pet: models.PetProfile) -> models.PetProfile:
    pet.is_deleted = True
    pet.deleted_at = utcnow()
    _commit(db, pet, what="pet profile")
    return pet


def request_registration(db: Session, pet: models.PetProfile, clinic_id: str) -> models.PetProfile:
    if pet.registration_status != RegistrationStatus.pending:
        raise Conflict(f"Pet registration is already {pet.registration_status.value}")
    get_clinic_or_404(db, clinic_id)
    pet.registered_clinic_id = clinic_id
    pet.rejection_reason = None
    _commit(db, pet, what="pet profile")
    return pet


def _clinic_pets_query(db: Session, clinic_ids: Iterable[str], status: Optional[RegistrationStatus]):
    query = db.query(models.PetProfile).options(joinedload(models.PetProfile.owner)).filter(
        models.PetProfile.registered_clinic_id.in_(list(clinic_ids)),
        models.PetProfile.is_deleted.is_(False),
    )
    if status:
        query = query.filter(models.PetProfile.registration_status == status)
    return query


def list_clinic_pets(db: Session, clinic_ids: Iterable[str], status: Optional[RegistrationStatus] = None):
    return _clinic_pets_query(db, clinic_ids, status).order_by(models.PetProfile.created_at.desc()).all()


def count_clinic_pets(db: Session, clinic_id: str, status: RegistrationStatus) -> int:
    return _clinic_pets_query(db, [clinic_id], status).count()


def _review_registration(db: Session, pet: models.PetProfile, new_status: RegistrationStatus, reason: Optional[str] = None):
    if pet.registration_status != RegistrationStatus.pending:
        raise Conflict(f"Only pending registrations can be reviewed; this pet is {pet.registration_status.value}")
    if not pet.registered_clinic_id:
        raise ValidationError("Pet has not requested registration with a clinic")
    pet.registration_status = new_status
    pet.rejection_reason = reason if new_status == RegistrationStatus.rejected else None
    _commit(db, pet, what="pet profile")
    return pet


def approve_pet(db: Session, pet: models.PetProfile) -> models.PetProfile:
    return _review_registration(db, pet, RegistrationStatus.approved)


def reject_pet(db: Session, pet: models.PetProfile, reason: Optional[str] = None) -> models.PetProfile:
    return _review_registration(db, pet, RegistrationStatus.rejected, reason)


# --- Appointments ---
def get_appointment(db: Session, appointment_id: str) -> Optional[models.Appointment]:
    return db.query(models.Appointment).filter(models.Appointment.id == appointment_id).first()


def get_appointment_or_404(db: Session, appointment_id: str) -> models.Appointment:
    appointment = get_appointment(db, appointment_id)
    if not appointment:
        raise NotFound("Appointment not found")
    return appointment


def slot_taken(db: Session, vet_id: str, date_time: datetime, exclude_id: Optional[str] = None) -> bool:
    query = db.query(models.Appointment).filter(
        models.Appointment.vet_id == vet_id,
        models.Appointment.date_time == date_time,
        models.Appointment.status.notin_(models.TERMINAL_APPOINTMENT_STATUSES),
    )
    if exclude_id:
        query = query.filter(models.Appointment.id != exclude_id)
    return query.first() is not None


def _commit_slot(db: Session, appointment: models.Appointment):
    """Commit a change that occupies a vet slot; the partial unique index backs the pre-check."""
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise SlotConflict()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error saving appointment: {e}")
        raise CRUDError("Error saving appointment", error=str(e))
    db.refresh(appointment)
    return appointment


def book_appointment(db: Session, pet: models.PetProfile, data: schemas.AppointmentCreate) -> models.Appointment:
    clinic = get_clinic_or_404(db, data.clinic_id)
    vet = get_vet(db, data.vet_id)
    if not vet or vet.status != VetStatus.active:
        raise NotFound("Veterinarian not found")
    if pet.registered_clinic_id and pet.registered_clinic_id != clinic.id:
        raise Forbidden("Pet is registered with a different clinic")

    date_time = to_naive_utc(data.date_time)
    if slot_taken(db, vet.id, date_time):
        raise SlotConflict()

    appointment = models.Appointment(
        pet_id=pet.id,
        owner_id=pet.owner_id,
        clinic_id=clinic.id,
        vet_id=vet.id,
        date_time=date_time,
        status=AppointmentStatus.booked,
        reason=data.reason,
        notes=data.notes,
    )
    db.add(appointment)
    return _commit_slot(db, appointment)


def _appointment_details_query(db: Session):
    return db.query(models.Appointment).options(
        joinedload(models.Appointment.pet),
        joinedload(models.Appointment.vet),
        joinedload(models.Appointment.clinic),
        joinedload(models.Appointment.owner),
    )


def list_pet_appointments(db: Session, pet_id: str, status: Optional[AppointmentStatus] = None, upcoming: bool = False):
    query = _appointment_details_query(db).filter(models.Appointment.pet_id == pet_id)
    if status:
        query = query.filter(models.Appointment.status == status)
    if upcoming:
        query = query.filter(models.Appointment.date_time >= utcnow())
        return query.order_by(models.Appointment.date_time.asc()).all()
    return query.order_by(models.Appointment.date_time.desc()).all()


def list_vet_appointments(db: Session, vet_id: str, day=None, clinic_id: Optional[str] = None):
    query = _appointment_details_query(db).filter(models.Appointment.vet_id == vet_id)
    if day:
        start, end = day_bounds(day)
        query = query.filter(models.Appointment.date_time.between(start, end))
    if clinic_id:
        query = query.filter(models.Appointment.clinic_id == clinic_id)
    return query.order_by(models.Appointment.date_time.asc()).all()


def count_vet_appointments_today(db: Session, vet_id: str) -> int:
    start, end = day_bounds()
    return db.query(models.Appointment).filter(
        models.Appointment.vet_id == vet_id,
        models.Appointment.date_time.between(start, end),
        models.Appointment.status != AppointmentStatus.canceled,
    ).count()


APPOINTMENT_SORT_FIELDS = {
    "dateTime": models.Appointment.date_time,
    "createdAt": models.Appointment.created_at,
    "status": models.Appointment.status,
}


def list_owner_appointments(
    db: Session,
    owner_id: str,
    status: Optional[AppointmentStatus] = None,
    upcoming: bool = False,
    past: bool = False,
    clinic_id: Optional[str] = None,
    start_date=None,
    end_date=None,
    sort_by: str = "dateTime",
    sort_order: str = "desc",
):
    query = _appointment_details_query(db).filter(models.Appointment.owner_id == owner_id)
    if status:
        query = query.filter(models.Appointment.status == status)
    if start_date or end_date:
        if start_date:
            query = query.filter(models.Appointment.date_time >= start_of_day(start_date))
        if end_date:
            query = query.filter(models.Appointment.date_time <= end_of_day(end_date))
    elif upcoming:
        query = query.filter(models.Appointment.date_time >= utcnow())
    elif past:
        query = query.filter(models.Appointment.date_time < utcnow())
    if clinic_id:
        query = query.filter(models.Appointment.clinic_id == clinic_id)

    column = APPOINTMENT_SORT_FIELDS.get(sort_by, models.Appointment.date_time)
    query = query.order_by(column.asc() if sort_order == "asc" else column.desc())
    return query.all()


def appointment_stats(appointments: Sequence[models.Appointment]) -> dict:
    now = utcnow()
    return {
        "total": len(appointments),
        "upcoming": sum(1 for a in appointments if a.date_time >= now and not a.status.is_terminal),
        "pending": sum(1 for a in appointments if a.status == AppointmentStatus.booked),
        "confirmed": sum(1 for a in appointments if a.status == AppointmentStatus.confirmed),
        "canceled": sum(1 for a in appointments if a.status == AppointmentStatus.canceled),
        "completed": sum(1 for a in appointments if a.status == AppointmentStatus.completed),
    }


def _ensure_open(appointment: models.Appointment, action: str):
    if appointment.status.is_terminal:
        raise Conflict(f"Cannot {action} an appointment that is {appointment.status.value}")


def _append_note(appointment: models.Appointment, note: str):
    appointment.notes = f"{appointment.notes}\n{note}" if appointment.notes else note


def confirm_appointment(db: Session, appointment: models.Appointment) -> models.Appointment:
    _ensure_open(appointment, "confirm")
    if appointment.status == AppointmentStatus.confirmed:
        raise Conflict("Appointment is already confirmed")
    appointment.status = AppointmentStatus.confirmed
    _commit(db, appointment, what="appointment")
    return appointment


def cancel_appointment(db: Session, appointment: models.Appointment, reason: Optional[str] = None) -> models.Appointment:
    _ensure_open(appointment, "cancel")
    appointment.status = AppointmentStatus.canceled
    if reason:
        _append_note(appointment, f"Cancellation reason: {reason}")
    _commit(db, appointment, what="appointment")
    return appointment


def complete_appointment(db: Session, appointment: models.Appointment, notes: Optional[str] = None) -> models.Appointment:
    _ensure_open(appointment, "complete")
    appointment.status = AppointmentStatus.completed
    if notes:
        _append_note(appointment, notes)
    _commit(db, appointment, what="appointment")
    return appointment


def reschedule_appointment(db: Session, appointment: models.Appointment, date_time: datetime, reason: Optional[str] = None):
    _ensure_open(appointment, "reschedule")
    date_time = to_naive_utc(date_time)
    if slot_taken(db, appointment.vet_id, date_time, exclude_id=appointment.id):
        raise SlotConflict()
    appointment.date_time = date_time
    appointment.status = AppointmentStatus.rescheduled
    if reason:
        _append_note(appointment, f"Reschedule reason: {reason}")
    return _commit_slot(db, appointment)


# --- Medical records ---
def get_medical_record(db: Session, record_id: str) -> Optional[models.MedicalRecord]:
    return db.query(models.MedicalRecord).options(joinedload(models.MedicalRecord.vet)).filter(
        models.MedicalRecord.id == record_id
    ).first()


def get_medical_record_or_404(db: Session, record_id: str) -> models.MedicalRecord:
    record = get_medical_record(db, record_id)
    if not record:
        raise NotFound("Medical record not found")
    return record


def create_medical_record(db: Session, vet_id: str, data: schemas.MedicalRecordCreate) -> models.MedicalRecord:
    record = models.MedicalRecord(
        pet_id=data.pet_id,
        vet_id=vet_id,
        date=to_naive_utc(data.date) or utcnow(),
        diagnosis=data.diagnosis.strip(),
        treatment_notes=data.treatment_notes,
        visible_to_owner=data.visible_to_owner,
        attachments=list(data.attachments),
    )
    db.add(record)
    _commit(db, record, what="medical record")
    return record


def _pet_records_query(db: Session, pet_id: str, owner_view: bool):
    query = db.query(models.MedicalRecord).filter(
        models.MedicalRecord.pet_id == pet_id,
        models.MedicalRecord.is_deleted.is_(False),
    )
    if owner_view:
        query = query.filter(models.MedicalRecord.visible_to_owner.is_(True))
    return query


def list_pet_records(db: Session, pet_id: str, owner_view: bool, page: int = 1, limit: int = 20):
    query = _pet_records_query(db, pet_id, owner_view).options(
        joinedload(models.MedicalRecord.vet)
    ).order_by(models.MedicalRecord.date.desc())
    return _paginate(query, page, limit)


def medical_summary(db: Session, pet_id: str, owner_view: bool) -> dict:
    query = _pet_records_query(db, pet_id, owner_view)
    total = query.count()
    visible = query.filter(models.MedicalRecord.visible_to_owner.is_(True)).count()
    latest = query.options(joinedload(models.MedicalRecord.vet)).order_by(models.MedicalRecord.date.desc()).first()
    return {"total": total, "visible": visible, "latest": latest}


def update_medical_record(db: Session, record: models.MedicalRecord, data: schemas.MedicalRecordUpdate):
    values = data.model_dump(exclude_unset=True)
    if "pet_id" in values and values["pet_id"] != record.pet_id:
        raise ValidationError("Cannot change pet association")
    values.pop("pet_id", None)
    if "diagnosis" in values and not values["diagnosis"]:
        raise ValidationError("diagnosis cannot be empty")
    if "date" in values:
        values["date"] = to_naive_utc(values["date"]) or record.date
    if values.get("attachments") is None:
        values.pop("attachments", None)
    _apply_updates(record, values)
    _commit(db, record, what="medical record")
    return record


def set_record_visibility(db: Session, record: models.MedicalRecord, visible: bool) -> models.MedicalRecord:
    record.visible_to_owner = visible
    _commit(db, record, what="medical record")
    return record


def soft_delete_medical_record(db: Session, record: models.MedicalRecord) -> models.MedicalRecord:
    record.is_deleted = True
    record.deleted_at = utcnow()
    _commit(db, record, what="medical record")
    return record


def hard_delete_medical_record(db: Session, record: models.MedicalRecord) -> List[str]:
    """Remove the record for good and return its attachment URLs for cleanup."""
    attachments = list(record.attachments or [])
    db.query(models.Prescription).filter(
        models.Prescription.medical_record_id == record.id
    ).update({models.Prescription.medical_record_id: None}, synchronize_session=False)
    db.delete(record)
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error deleting medical record: {e}")
        raise CRUDError("Error deleting medical record", error=str(e))
    return attachments


# --- Prescriptions ---
def get_prescription(db: Session, prescription_id: str) -> Optional[models.Prescription]:
    return db.query(models.Prescription).filter(models.Prescription.id == prescription_id).first()


def get_prescription_or_404(db: Session, prescription_id: str) -> models.Prescription:
    prescription = get_prescription(db, prescription_id)
    if not prescription:
        raise NotFound("Prescription not found")
    return prescription


def _check_prescription_fields(db: Session, pet_id: str, type_, due_date, medical_record_id):
    if type_ == PrescriptionType.vaccination and not due_date:
        raise ValidationError("dueDate is required for vaccinations")
    if medical_record_id:
        record = db.query(models.MedicalRecord).filter(
            models.MedicalRecord.id == medical_record_id,
            models.MedicalRecord.pet_id == pet_id,
        ).first()
        if not record:
            raise NotFound("Medical record not found or does not belong to this pet")


def create_prescription(db: Session, vet_id: str, data: schemas.PrescriptionCreate) -> models.Prescription:
    _check_prescription_fields(db, data.pet_id, data.type, data.due_date, data.medical_record_id)
    prescription = models.Prescription(
        pet_id=data.pet_id,
        medical_record_id=data.medical_record_id,
        created_by_vet_id=vet_id,
        medication_name=data.medication_name.strip(),
        dosage=data.dosage.strip(),
        duration=data.duration.strip(),
        instructions=data.instructions,
        type=data.type,
        due_date=to_naive_utc(data.due_date),
    )
    db.add(prescription)
    _commit(db, prescription, what="prescription")
    return prescription


def list_pet_prescriptions(db: Session, pet_id: str, type_: Optional[PrescriptionType] = None, active_only: bool = False):
    query = db.query(models.Prescription).filter(
        models.Prescription.pet_id == pet_id,
        models.Prescription.is_deleted.is_(False),
    )
    if type_:
        query = query.filter(models.Prescription.type == type_)
    if active_only:
        query = query.filter(models.Prescription.due_date >= start_of_day(utcnow()))
    return query.order_by(models.Prescription.created_at.desc()).all()


def _upcoming_query(db: Session, days_ahead: int):
    now = utcnow()
    return db.query(models.Prescription).filter(
        models.Prescription.is_deleted.is_(False),
        models.Prescription.due_date.isnot(None),
        models.Prescription.due_date.between(now, now + timedelta(days=days_ahead)),
    )


def upcoming_for_pet(db: Session, pet_id: str, days_ahead: int = 30) -> List[models.Prescription]:
    return _upcoming_query(db, days_ahead).filter(
        models.Prescription.pet_id == pet_id
    ).order_by(models.Prescription.due_date.asc()).all()


def upcoming_for_owner(db: Session, owner_id: str, days_ahead: int = 30):
    return _upcoming_query(db, days_ahead).join(models.PetProfile).filter(
        models.PetProfile.owner_id == owner_id,
        models.PetProfile.is_deleted.is_(False),
    ).options(joinedload(models.Prescription.pet)).order_by(models.Prescription.due_date.asc()).all()


def vaccination_summary(db: Session, pet_id: str) -> dict:
    vaccinations = db.query(models.Prescription).filter(
        models.Prescription.pet_id == pet_id,
        models.Prescription.type == PrescriptionType.vaccination,
        models.Prescription.is_deleted.is_(False),
    ).order_by(models.Prescription.due_date.desc()).all()
    now = utcnow()
    upcoming = [v for v in vaccinations if v.due_date and v.due_date > now]
    next_due = min(upcoming, key=lambda v: v.due_date) if upcoming else None
    return {"total": len(vaccinations), "next_due": next_due, "history": vaccinations}


def update_prescription(db: Session, prescription: models.Prescription, data: schemas.PrescriptionUpdate):
    values = data.model_dump(exclude_unset=True)
    if "pet_id" in values and values["pet_id"] != prescription.pet_id:
        raise ValidationError("Cannot change associated pet")
    values.pop("pet_id", None)
    if "due_date" in values:
        values["due_date"] = to_naive_utc(values["due_date"])
    for required in ("medication_name", "dosage", "duration", "type"):
        if required in values and not values[required]:
            raise ValidationError(f"{required} cannot be empty")
    _check_prescription_fields(
        db,
        prescription.pet_id,
        values.get("type", prescription.type),
        values.get("due_date", prescription.due_date),
        values.get("medical_record_id"),
    )
    _apply_updates(prescription, values)
    _commit(db, prescription, what="prescription")
    return prescription


def soft_delete_prescription(db: Session, prescription: models.Prescription) -> models.Prescription:
    prescription.is_deleted = True
    prescription.deleted_at = utcnow()
    _commit(db, prescription, what="prescription")
    return prescription


def hard_delete_prescription(db: Session, prescription: models.Prescription):
    db.delete(prescription)
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error deleting prescription: {e}")
        raise CRUDError("Error deleting prescription", error=str(e))


# --- Chat ---
def create_chat_message(db: Session, principal: Principal, data: schemas.ChatMessageCreate) -> models.ChatMessage:
    message = models.ChatMessage(
        pet_id=data.pet_id,
        sender_id=principal.id,
        sender_type=models.SenderType.owner if principal.is_owner else models.SenderType.vet,
        content=data.content.strip(),
        attachments=list(data.attachments),
    )
    db.add(message)
    _commit(db, message, what="chat message")
    return message


def chat_history(db: Session, pet_id: str, limit: int = 50, page: int = 1, before: Optional[datetime] = None):
    """One page of messages, newest page first, returned oldest to newest."""
    query = db.query(models.ChatMessage).filter(models.ChatMessage.pet_id == pet_id)
    if before:
        query = query.filter(models.ChatMessage.timestamp < to_naive_utc(before))
    total = query.count()
    messages = query.order_by(models.ChatMessage.timestamp.desc()).offset((page - 1) * limit).limit(limit).all()
    messages.reverse()
    return messages, total


def latest_chat_message(db: Session, pet_id: str) -> Optional[models.ChatMessage]:
    return db.query(models.ChatMessage).filter(
        models.ChatMessage.pet_id == pet_id
    ).order_by(models.ChatMessage.timestamp.desc()).first()


def chat_list(db: Session, principal: Principal) -> List[dict]:
    """Latest message per pet conversation visible to the principal."""
    if principal.is_owner:
        pet_filter = models.PetProfile.owner_id == principal.id
    else:
        pet_filter = models.PetProfile.registered_clinic_id.in_(list(served_clinic_ids(principal)))

    latest = db.query(
        models.ChatMessage.pet_id.label("pet_id"),
        func.max(models.ChatMessage.timestamp).label("latest_at"),
    ).group_by(models.ChatMessage.pet_id).subquery()

    rows = db.query(models.ChatMessage, models.PetProfile, models.PetOwner).join(
        latest,
        and_(models.ChatMessage.pet_id == latest.c.pet_id, models.ChatMessage.timestamp == latest.c.latest_at),
    ).join(
        models.PetProfile, models.PetProfile.id == models.ChatMessage.pet_id
    ).join(
        models.PetOwner, models.PetOwner.id == models.PetProfile.owner_id
    ).filter(pet_filter).order_by(models.ChatMessage.timestamp.desc()).all()

    chats, seen = [], set()
    for message, pet, owner in rows:
        if pet.id in seen:
            continue
        seen.add(pet.id)
        chats.append({
            "petId": pet.id,
            "petName": pet.name,
            "petPhoto": pet.photo,
            "ownerName": owner.full_name,
            "latestMessage": {
                "content": message.content,
                "timestamp": message.timestamp,
                "senderType": message.sender_type.value,
            },
        })
    return chats
