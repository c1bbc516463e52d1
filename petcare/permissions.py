"""
Authorization model.

A request acts as a single ``Principal``. What a principal may do is decided
in two steps: the capability table answers "may this kind of account perform
this action at all", and the resource predicates answer "may it do so on this
particular pet, clinic or appointment". Route handlers combine the two.
"""

import enum
from dataclasses import dataclass, field
from typing import FrozenSet, Optional

from .models import AccessLevel


class Role(str, enum.Enum):
    owner = "owner"
    vet = "vet"


class Action(str, enum.Enum):
    # Owner self-service
    manage_own_pets = "manage_own_pets"
    request_registration = "request_registration"
    book_appointment = "book_appointment"
    manage_own_account = "manage_own_account"

    # Clinical work
    review_registration = "review_registration"
    view_clinic_pets = "view_clinic_pets"
    confirm_appointment = "confirm_appointment"
    complete_appointment = "complete_appointment"
    view_vet_schedule = "view_vet_schedule"
    write_medical_record = "write_medical_record"
    write_prescription = "write_prescription"
    upload_attachment = "upload_attachment"
    view_clinic_staff = "view_clinic_staff"

    # Shared
    cancel_appointment = "cancel_appointment"
    reschedule_appointment = "reschedule_appointment"
    read_pet_records = "read_pet_records"
    chat = "chat"

    # Clinic administration
    create_clinic = "create_clinic"
    update_clinic = "update_clinic"
    delete_clinic = "delete_clinic"
    manage_staff = "manage_staff"
    delete_staff = "delete_staff"
    create_sub_account = "create_sub_account"
    view_clinic_stats = "view_clinic_stats"
    deactivate_vet = "deactivate_vet"
    switch_active_clinic = "switch_active_clinic"

    # Platform administration
    list_owners = "list_owners"
    admin_manage_owner = "admin_manage_owner"
    reload_knowledge_base = "reload_knowledge_base"


OWNER = (Role.owner, None)
PRIMARY = (Role.vet, AccessLevel.primary)
FULL = (Role.vet, AccessLevel.full)
NORMAL = (Role.vet, AccessLevel.normal)

ANY_VET = frozenset({PRIMARY, FULL, NORMAL})
EVERYONE = ANY_VET | {OWNER}
CLINIC_ADMINS = frozenset({PRIMARY, FULL})
PRIMARY_ONLY = frozenset({PRIMARY})
OWNER_ONLY = frozenset({OWNER})

CAPABILITIES: dict[Action, FrozenSet[tuple]] = {
    Action.manage_own_pets: OWNER_ONLY,
    Action.request_registration: OWNER_ONLY,
    Action.book_appointment: OWNER_ONLY,
    Action.manage_own_account: OWNER_ONLY,

    Action.review_registration: ANY_VET,
    Action.view_clinic_pets: ANY_VET,
    Action.confirm_appointment: ANY_VET,
    Action.complete_appointment: ANY_VET,
    Action.view_vet_schedule: ANY_VET,
    Action.write_medical_record: ANY_VET,
    Action.write_prescription: ANY_VET,
    Action.upload_attachment: ANY_VET,
    Action.view_clinic_staff: ANY_VET,

    Action.cancel_appointment: EVERYONE,
    Action.reschedule_appointment: EVERYONE,
    Action.read_pet_records: EVERYONE,
    Action.chat: EVERYONE,

    Action.create_clinic: PRIMARY_ONLY,
    Action.update_clinic: CLINIC_ADMINS,
    Action.delete_clinic: PRIMARY_ONLY,
    Action.manage_staff: CLINIC_ADMINS,
    Action.delete_staff: PRIMARY_ONLY,
    Action.create_sub_account: CLINIC_ADMINS,
    Action.view_clinic_stats: CLINIC_ADMINS,
    Action.deactivate_vet: PRIMARY_ONLY,
    Action.switch_active_clinic: PRIMARY_ONLY,

    Action.list_owners: PRIMARY_ONLY,
    Action.admin_manage_owner: PRIMARY_ONLY,
    Action.reload_knowledge_base: PRIMARY_ONLY,
}


@dataclass(frozen=True)
class Principal:
    """The authenticated account a request acts as."""

    id: str
    role: Role
    email: str
    access_level: Optional[AccessLevel] = None
    clinic_id: Optional[str] = None
    owned_clinic_ids: FrozenSet[str] = field(default_factory=frozenset)
    first_name: str = ""
    last_name: str = ""

    @property
    def is_owner(self) -> bool:
        return self.role == Role.owner

    @property
    def is_vet(self) -> bool:
        return self.role == Role.vet

    @property
    def is_primary(self) -> bool:
        return self.is_vet and self.access_level == AccessLevel.primary

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


def is_allowed(role: Role, access_level: Optional[AccessLevel], action: Action) -> bool:
    """Look up (role, access level, action) in the capability table."""
    key = (role, access_level if role == Role.vet else None)
    return key in CAPABILITIES.get(action, frozenset())


def can(principal: Principal, action: Action) -> bool:
    return is_allowed(principal.role, principal.access_level, action)


# --- Resource predicates ---
def is_self(principal: Principal, owner_id: Optional[str]) -> bool:
    """Owner acting on their own account or on something they own."""
    return principal.is_owner and owner_id is not None and principal.id == owner_id


def is_clinic_member(principal: Principal, clinic_id: Optional[str]) -> bool:
    """Vet working in clinic_id as their active clinic."""
    return principal.is_vet and clinic_id is not None and principal.clinic_id == clinic_id


def owns_clinic(principal: Principal, clinic_id: Optional[str]) -> bool:
    return principal.is_vet and clinic_id is not None and clinic_id in principal.owned_clinic_ids


def serves_clinic(principal: Principal, clinic_id: Optional[str]) -> bool:
    """Vet that works in or owns the clinic."""
    return is_clinic_member(principal, clinic_id) or owns_clinic(principal, clinic_id)


def served_clinic_ids(principal: Principal) -> FrozenSet[str]:
    """Active clinic plus owned clinics; empty for owners."""
    if not principal.is_vet:
        return frozenset()
    ids = set(principal.owned_clinic_ids)
    if principal.clinic_id:
        ids.add(principal.clinic_id)
    return frozenset(ids)


def manages_clinic(principal: Principal, clinic_id: Optional[str]) -> bool:
    """Primary vets manage the clinics they own; Full Access vets manage their active clinic."""
    if not principal.is_vet:
        return False
    if principal.access_level == AccessLevel.primary:
        return owns_clinic(principal, clinic_id)
    if principal.access_level == AccessLevel.full:
        return is_clinic_member(principal, clinic_id)
    return False


def can_access_pet(principal: Principal, pet) -> bool:
    """Pet owner, or a vet serving the clinic the pet is registered with."""
    if principal.is_owner:
        return is_self(principal, pet.owner_id)
    return serves_clinic(principal, pet.registered_clinic_id)


def is_assigned_vet(principal: Principal, appointment) -> bool:
    return principal.is_vet and principal.id == appointment.vet_id


def can_view_appointment(principal: Principal, appointment) -> bool:
    return is_self(principal, appointment.owner_id) or is_assigned_vet(principal, appointment)
