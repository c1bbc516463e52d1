# petcare/routers/chat.py
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from .. import crud, models, schemas, security
from ..database import get_db
from ..exceptions import Forbidden, Internal
from ..permissions import Action, Principal, can_access_pet
from ..services.knowledge_base import KnowledgeBase

router = APIRouter(
    prefix="/chat",
    tags=["Chat"],
    responses={404: {"description": "Not found"}},
)

logger = logging.getLogger(__name__)


def get_knowledge_base(request: Request) -> KnowledgeBase:
    """The snapshot loaded at startup (or by the latest reload)."""
    kb = getattr(request.app.state, "knowledge_base", None)
    if kb is None:
        raise Internal("Knowledge base is not loaded")
    return kb


def _chat_pet(db: Session, principal: Principal, pet_id: str) -> models.PetProfile:
    pet = crud.get_pet_or_404(db, pet_id)
    if not can_access_pet(principal, pet):
        raise Forbidden("You cannot access this conversation")
    return pet


@router.post("/send", status_code=status.HTTP_201_CREATED)
def send_message(
    payload: schemas.ChatMessageCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_capability(Action.chat)),
):
    """The sender is always the authenticated account."""
    pet = _chat_pet(db, principal, payload.pet_id)
    if pet.is_deleted:
        raise Forbidden("This pet profile has been deleted")
    message = crud.create_chat_message(db, principal, payload)
    return {"message": "Message sent", "chat": schemas.ChatMessageOut.model_validate(message)}


@router.get("/history/{pet_id}")
def get_history(
    pet_id: str,
    limit: int = Query(50, ge=1, le=200),
    page: int = Query(1, ge=1),
    before: Optional[datetime] = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_capability(Action.chat)),
):
    _chat_pet(db, principal, pet_id)
    messages, total = crud.chat_history(db, pet_id, limit=limit, page=page, before=before)
    return {
        "message": "Chat history retrieved successfully",
        "messages": [schemas.ChatMessageOut.model_validate(m) for m in messages],
        "pagination": crud.pagination_meta(page, limit, total),
    }


@router.get("/latest/{pet_id}")
def get_latest(
    pet_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_capability(Action.chat)),
):
    _chat_pet(db, principal, pet_id)
    latest = crud.latest_chat_message(db, pet_id)
    return {
        "message": "Latest message retrieved successfully",
        "chat": schemas.ChatMessageOut.model_validate(latest) if latest else None,
    }


@router.get("/user-chats")
def get_user_chats(
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_capability(Action.chat)),
):
    chats = crud.chat_list(db, principal)
    return {"message": "Chats retrieved successfully", "count": len(chats), "chats": chats}


@router.post("/assistant")
def ask_assistant(
    payload: schemas.AssistantQuestion,
    db: Session = Depends(get_db),
    principal: Principal = Depends(security.require_capability(Action.chat)),
    kb: KnowledgeBase = Depends(get_knowledge_base),
):
    """Answer a pet-care question from the local knowledge base."""
    species = payload.species
    if payload.pet_id:
        species = _chat_pet(db, principal, payload.pet_id).species
    result = kb.answer(payload.question, species=species)
    return {
        "message": "Assistant answer",
        "answer": schemas.AssistantAnswer(
            answer=result.answer,
            matched_topic=result.matched_topic,
            score=result.score,
            sources=list(result.sources),
        ),
    }


@router.post("/assistant/reload")
def reload_assistant(
    request: Request,
    principal: Principal = Depends(security.require_capability(Action.reload_knowledge_base)),
    kb: KnowledgeBase = Depends(get_knowledge_base),
):
    fresh = kb.reload()
    request.app.state.knowledge_base = fresh
    logger.info(f"Knowledge base reloaded by {principal.id}: {len(fresh)} entries (version {fresh.version or '-'})")
    return {"message": "Knowledge base reloaded", "entries": len(fresh), "version": fresh.version}
