import secrets
import uuid
from datetime import datetime, timezone
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlmodel import Session, select

from khojpayo.db.db import get_session
from khojpayo.models.claim import Claim
from khojpayo.models.handover import Handover, generate_handover_code
from khojpayo.models.item import Item
from khojpayo.models.user import Profile
from khojpayo.utils.activity import notify
from khojpayo.utils.auth_helper import require_user
from khojpayo.utils.org_rbac import can_user_perform_action


router = APIRouter()

OPEN_HANDOVER_STATUSES = ("pending", "scheduled")
MAX_CODE_ATTEMPTS = 5


class HandoverUpdateRequest(BaseModel):
    method: Literal["meetup", "pickup", "delivery"]
    meetup_location: Optional[str] = None
    meetup_time: Optional[datetime] = None
    delivery_address: Optional[str] = None
    delivery_courier: Optional[str] = None
    delivery_tracking: Optional[str] = None
    delivery_cost: Optional[float] = Field(default=None, ge=0)
    payer: Optional[Literal["finder", "owner", "split"]] = None
    notes: Optional[str] = Field(default=None, max_length=1000)


class HandoverConfirmRequest(BaseModel):
    handover_code: Optional[str] = None


class HandoverCancelRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=280)


class HandoverContext:
    """A handover together with the claim, item and which side the caller is on."""

    def __init__(self, claim: Claim, item: Item, handover: Handover, side: str):
        self.claim = claim
        self.item = item
        self.handover = handover
        self.side = side  # finder or owner

    def other_party(self) -> uuid.UUID:
        return self.claim.claimant_id if self.side == "finder" else self.item.user_id


def load_handover(session: Session, claim_id: uuid.UUID, user: Profile) -> HandoverContext:
    claim = session.get(Claim, claim_id)
    if not claim:
        raise HTTPException(status_code=404, detail="Claim not found")

    item = session.get(Item, claim.item_id)

    if claim.claimant_id == user.id:
        side = "owner"
    elif item.user_id == user.id:
        side = "finder"
    elif item.organization_id and can_user_perform_action(
        session, user.id, item.organization_id, "manage_claim"
    ).allowed:
        side = "finder"
    else:
        raise HTTPException(status_code=403, detail="Not authorized to access this handover")

    handover = session.exec(select(Handover).where(Handover.claim_id == claim.id)).first()
    if not handover:
        raise HTTPException(status_code=404, detail="No handover for this claim")

    return HandoverContext(claim, item, handover, side)


def serialize_handover(ctx: HandoverContext) -> dict:
    data = ctx.handover.model_dump()

    # The owner proves receipt with the code, so only the finder may see it
    if ctx.side != "finder":
        data.pop("handover_code")

    return data


@router.get("/{claim_id}/handover")
def get_handover(
    claim_id: uuid.UUID,
    session: Session = Depends(get_session),
    user: Profile = Depends(require_user),
):
    ctx = load_handover(session, claim_id, user)

    return {"handover": serialize_handover(ctx), "side": ctx.side}


@router.put("/{claim_id}/handover")
def schedule_handover(
    claim_id: uuid.UUID,
    payload: HandoverUpdateRequest,
    session: Session = Depends(get_session),
    user: Profile = Depends(require_user),
):
    ctx = load_handover(session, claim_id, user)
    handover = ctx.handover

    if handover.status == "completed":
        raise HTTPException(status_code=400, detail="Handover is already completed")

    if payload.method == "delivery" and not payload.delivery_address:
        raise HTTPException(status_code=400, detail="Delivery address is required for delivery")

    if payload.method in ("meetup", "pickup") and not payload.meetup_location:
        raise HTTPException(status_code=400, detail="Location is required for meetup or pickup")

    for field, value in payload.model_dump().items():
        setattr(handover, field, value)

    # a re-scheduled handover needs both confirmations again
    handover.finder_confirmed = False
    handover.owner_confirmed = False
    if handover.code_attempts:
        # fresh code after failed attempts
        handover.handover_code = generate_handover_code()
        handover.code_attempts = 0
    handover.status = "scheduled"
    handover.updated_at = datetime.now(timezone.utc)
    session.add(handover)

    notify(
        session,
        ctx.other_party(),
        "handover_scheduled",
        "Handover scheduled",
        f"The handover for '{ctx.item.title}' has been scheduled ({payload.method}).",
        {"claim_id": ctx.claim.id, "handover_id": handover.id},
    )

    session.commit()
    session.refresh(handover)

    return {"handover": serialize_handover(ctx)}


@router.post("/{claim_id}/handover/confirm")
def confirm_handover(
    claim_id: uuid.UUID,
    payload: HandoverConfirmRequest,
    session: Session = Depends(get_session),
    user: Profile = Depends(require_user),
):
    ctx = load_handover(session, claim_id, user)
    handover = ctx.handover

    if handover.status not in OPEN_HANDOVER_STATUSES:
        raise HTTPException(status_code=400, detail=f"Handover is {handover.status}")

    if ctx.side == "finder":
        handover.finder_confirmed = True
    else:
        if not payload.handover_code:
            raise HTTPException(status_code=400, detail="Handover code is required")

        if handover.code_attempts >= MAX_CODE_ATTEMPTS:
            raise HTTPException(
                status_code=429,
                detail="Too many invalid codes. Reschedule the handover to try again",
            )

        if not secrets.compare_digest(
            payload.handover_code.strip().encode("utf-8"),
            handover.handover_code.encode("utf-8"),
        ):
            handover.code_attempts += 1
            session.add(handover)
            session.commit()
            raise HTTPException(status_code=400, detail="Invalid handover code")

        handover.owner_confirmed = True

    now = datetime.now(timezone.utc)
    handover.updated_at = now
    completed = handover.finder_confirmed and handover.owner_confirmed

    if completed:
        handover.status = "completed"
        handover.completed_at = now

        ctx.claim.status = "completed"
        ctx.claim.updated_at = now
        session.add(ctx.claim)

        for recipient in (ctx.claim.claimant_id, ctx.item.user_id):
            notify(
                session,
                recipient,
                "handover_completed",
                "Handover completed",
                f"The handover for '{ctx.item.title}' is complete.",
                {"claim_id": ctx.claim.id, "handover_id": handover.id},
            )
    else:
        notify(
            session,
            ctx.other_party(),
            "handover_confirmed",
            "Handover confirmed",
            f"The other party confirmed the handover for '{ctx.item.title}'.",
            {"claim_id": ctx.claim.id, "handover_id": handover.id},
        )

    session.add(handover)
    session.commit()
    session.refresh(handover)

    return {"handover": serialize_handover(ctx), "completed": completed}


@router.post("/{claim_id}/handover/cancel")
def cancel_handover(
    claim_id: uuid.UUID,
    payload: HandoverCancelRequest,
    session: Session = Depends(get_session),
    user: Profile = Depends(require_user),
):
    ctx = load_handover(session, claim_id, user)
    handover = ctx.handover

    if handover.status not in OPEN_HANDOVER_STATUSES:
        raise HTTPException(status_code=400, detail=f"Cannot cancel a {handover.status} handover")

    handover.status = "cancelled"
    handover.finder_confirmed = False
    handover.owner_confirmed = False
    handover.updated_at = datetime.now(timezone.utc)
    if payload.reason:
        handover.notes = payload.reason

    session.add(handover)

    reason = f" Reason: {payload.reason}" if payload.reason else ""
    notify(
        session,
        ctx.other_party(),
        "handover_cancelled",
        "Handover cancelled",
        f"The handover for '{ctx.item.title}' was cancelled.{reason}",
        {"claim_id": ctx.claim.id, "handover_id": handover.id},
    )

    session.commit()
    session.refresh(handover)

    return {"handover": serialize_handover(ctx)}
