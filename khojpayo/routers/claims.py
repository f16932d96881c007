import logging
import uuid
from datetime import datetime, timezone
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlmodel import Session, or_, select

from khojpayo.db.db import get_session
from khojpayo.models.claim import Claim, ClaimEvidence
from khojpayo.models.handover import Handover
from khojpayo.models.item import Item
from khojpayo.models.user import Profile
from khojpayo.routers.items import serialize_claim
from khojpayo.utils.activity import notify
from khojpayo.utils.auth_helper import require_user
from khojpayo.utils.org_rbac import can_user_perform_action, get_membership

logger = logging.getLogger(__name__)

router = APIRouter()

# Items that can still receive claims
OPEN_ITEM_STATUSES = ("active", "claimed")


class EvidenceIn(BaseModel):
    type: Literal["image", "document"]
    url: str
    description: Optional[str] = None


class ClaimCreateRequest(BaseModel):
    item_id: uuid.UUID
    secret_info: str = Field(min_length=10, max_length=2000)
    proof_description: Optional[str] = Field(default=None, max_length=2000)
    evidence: list[EvidenceIn] = []


class ClaimUpdateRequest(BaseModel):
    status: Optional[Literal["verified", "rejected", "withdrawn"]] = None
    rejection_reason: Optional[str] = Field(default=None, max_length=280)
    secret_info: Optional[str] = Field(default=None, min_length=10, max_length=2000)
    proof_description: Optional[str] = Field(default=None, max_length=2000)


def is_org_reviewer(session: Session, user: Profile, item: Item) -> bool:
    if not item.organization_id:
        return False
    return can_user_perform_action(session, user.id, item.organization_id, "manage_claim").allowed


def item_summary(item: Item) -> dict:
    return {
        "id": item.id,
        "title": item.title,
        "type": item.type,
        "status": item.status,
        "user_id": item.user_id,
        "organization_id": item.organization_id,
    }


def reopen_item_if_unclaimed(session: Session, item: Item, claim: Claim):
    pending = session.exec(
        select(Claim)
        .where(Claim.item_id == item.id)
        .where(Claim.id != claim.id)
        .where(Claim.status == "pending")
    ).first()

    if not pending and item.status == "claimed":
        item.status = "active"
        item.updated_at = datetime.now(timezone.utc)
        session.add(item)


@router.get("")
def list_claims(
    item_id: Optional[uuid.UUID] = None,
    status: Optional[str] = None,
    session: Session = Depends(get_session),
    user: Profile = Depends(require_user),
):
    query = (
        select(Claim, Item)
        .join(Item, Claim.item_id == Item.id)
        .where(or_(Claim.claimant_id == user.id, Item.user_id == user.id))
        .order_by(Claim.created_at.desc())
    )

    if item_id:
        query = query.where(Claim.item_id == item_id)

    if status:
        query = query.where(Claim.status == status)

    claims_response = []

    for claim, item in session.exec(query).all():
        data = serialize_claim(session, claim)
        data["item"] = item_summary(item)
        claims_response.append(data)

    return {"claims": claims_response}


@router.post("", status_code=201)
def create_claim(
    payload: ClaimCreateRequest,
    session: Session = Depends(get_session),
    user: Profile = Depends(require_user),
):
    # Fetch item
    item = session.get(Item, payload.item_id)
    if not item or item.status == "deleted":
        raise HTTPException(status_code=404, detail="Item not found")

    if item.type != "found":
        raise HTTPException(status_code=400, detail="Item is not a found item")

    if item.status not in OPEN_ITEM_STATUSES:
        raise HTTPException(status_code=400, detail="Item is not available for claims")

    # Prevent self-claim
    if item.user_id == user.id:
        raise HTTPException(status_code=400, detail="You cannot claim your own item")

    # Prevent duplicate claim by same user
    existing = session.exec(
        select(Claim)
        .where(Claim.item_id == item.id)
        .where(Claim.claimant_id == user.id)
        .where(Claim.status == "pending")
    ).first()

    if existing:
        raise HTTPException(
            status_code=409,
            detail="Already a pending claim for this item exists",
        )

    claim = Claim(
        item_id=item.id,
        claimant_id=user.id,
        secret_info=payload.secret_info.strip(),
        proof_description=payload.proof_description,
    )
    session.add(claim)

    for evidence in payload.evidence:
        session.add(ClaimEvidence(claim_id=claim.id, **evidence.model_dump()))

    item.status = "claimed"
    item.updated_at = datetime.now(timezone.utc)
    session.add(item)

    # Notify finder
    notify(
        session,
        item.user_id,
        "new_claim",
        "New claim received",
        f"Someone has submitted a claim for your item '{item.title}'.",
        {"item_id": item.id, "claim_id": claim.id},
    )

    session.commit()
    session.refresh(claim)

    logger.info("claim %s created on item %s", claim.id, item.id)

    return {"claim": serialize_claim(session, claim)}


@router.get("/{claim_id}")
def get_claim(
    claim_id: uuid.UUID,
    session: Session = Depends(get_session),
    user: Profile = Depends(require_user),
):
    claim = session.get(Claim, claim_id)
    if not claim:
        raise HTTPException(status_code=404, detail="Claim not found")

    item = session.get(Item, claim.item_id)

    is_claimant = claim.claimant_id == user.id
    is_owner = item.user_id == user.id
    is_staff = bool(item.organization_id and get_membership(session, user.id, item.organization_id))

    if not (is_claimant or is_owner or is_staff):
        raise HTTPException(status_code=403, detail="Not authorized to view this claim")

    data = serialize_claim(session, claim)
    data["item"] = item_summary(item)

    if is_claimant and claim.status in ("verified", "completed"):
        finder = session.get(Profile, item.user_id)

        data["finder_contact"] = {
            "name": finder.name,
            "email": finder.email,
            "phone": item.contact_phone or finder.phone,
        }

    return {"claim": data}


@router.patch("/{claim_id}")
def update_claim(
    claim_id: uuid.UUID,
    payload: ClaimUpdateRequest,
    session: Session = Depends(get_session),
    user: Profile = Depends(require_user),
):
    claim = session.get(Claim, claim_id)
    if not claim:
        raise HTTPException(status_code=404, detail="Claim not found")

    item = session.get(Item, claim.item_id)

    is_claimant = claim.claimant_id == user.id
    is_reviewer = item.user_id == user.id or is_org_reviewer(session, user, item)

    if not (is_claimant or is_reviewer):
        raise HTTPException(status_code=403, detail="Not authorized to update this claim")

    now = datetime.now(timezone.utc)

    if payload.status is None:
        if payload.secret_info is None and payload.proof_description is None:
            raise HTTPException(status_code=400, detail="Nothing to update")

        if not is_claimant:
            raise HTTPException(status_code=403, detail="Only the claimant can edit the claim")

        if claim.status != "pending":
            raise HTTPException(status_code=400, detail="Only pending claims can be edited")

        if payload.secret_info is not None:
            claim.secret_info = payload.secret_info.strip()
        if payload.proof_description is not None:
            claim.proof_description = payload.proof_description

        claim.updated_at = now
        session.add(claim)
        session.commit()
        session.refresh(claim)

        return {"claim": serialize_claim(session, claim)}

    if payload.status == "withdrawn":
        if not is_claimant:
            raise HTTPException(status_code=403, detail="Only the claimant can withdraw the claim")
    elif not is_reviewer:
        raise HTTPException(status_code=403, detail="Not authorized to review this claim")

    if claim.status != "pending":
        raise HTTPException(
            status_code=400,
            detail=f"Cannot change a {claim.status} claim to {payload.status}",
        )

    claim.status = payload.status
    claim.updated_at = now

    if payload.status in ("verified", "rejected"):
        claim.reviewer_id = user.id
        claim.reviewed_at = now

    if payload.status == "verified":
        item.status = "resolved"
        item.updated_at = now
        session.add(item)

        session.add(Handover(claim_id=claim.id))

        notify(
            session,
            claim.claimant_id,
            "claim_verified",
            "Your claim has been verified",
            f"Your claim for the item '{item.title}' has been verified. Arrange the handover with the finder.",
            {"item_id": item.id, "claim_id": claim.id},
        )

        # Competing claims lose
        competing = session.exec(
            select(Claim)
            .where(Claim.item_id == item.id)
            .where(Claim.id != claim.id)
            .where(Claim.status == "pending")
        ).all()

        for other in competing:
            other.status = "rejected"
            other.rejection_reason = "Another claim was verified"
            other.reviewer_id = user.id
            other.reviewed_at = now
            other.updated_at = now
            session.add(other)

            notify(
                session,
                other.claimant_id,
                "claim_rejected",
                "Your claim has been rejected",
                f"Another claim for the item '{item.title}' was verified.",
                {"item_id": item.id, "claim_id": other.id},
            )

    elif payload.status == "rejected":
        claim.rejection_reason = payload.rejection_reason

        reason = f" Reason: {payload.rejection_reason}" if payload.rejection_reason else ""
        notify(
            session,
            claim.claimant_id,
            "claim_rejected",
            "Your claim has been rejected",
            f"Your claim for the item '{item.title}' has been rejected.{reason}",
            {"item_id": item.id, "claim_id": claim.id},
        )

        reopen_item_if_unclaimed(session, item, claim)

    else:
        notify(
            session,
            item.user_id,
            "claim_withdrawn",
            "A claim was withdrawn",
            f"A claim for your item '{item.title}' has been withdrawn.",
            {"item_id": item.id, "claim_id": claim.id},
        )

        reopen_item_if_unclaimed(session, item, claim)

    session.add(claim)
    session.commit()
    session.refresh(claim)

    logger.info("claim %s %s by %s", claim.id, claim.status, user.id)

    return {"claim": serialize_claim(session, claim)}
