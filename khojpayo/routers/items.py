import logging
import uuid
from datetime import datetime, timezone
from typing import Literal, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from sqlmodel import Session, func, or_, select

from khojpayo import config
from khojpayo.db.db import get_session
from khojpayo.models.claim import Claim, ClaimEvidence
from khojpayo.models.item import Item, ItemMedia
from khojpayo.models.organization import Organization
from khojpayo.models.user import Profile
from khojpayo.utils.activity import log_activity
from khojpayo.utils.auth_helper import require_user
from khojpayo.utils.form_validator import ValidatedCreateItem, validate_update_item
from khojpayo.utils.org_rbac import get_membership, require_org_action
from khojpayo.utils.s3_service import compress_image, delete_s3_object, media_with_urls, upload_to_s3

logger = logging.getLogger(__name__)

router = APIRouter()

MAX_UPLOAD_BYTES = config.MAX_UPLOAD_SIZE_MB * 1024 * 1024

CONTACT_FIELDS = ("contact_phone", "contact_email")


def mask_contact(data: dict) -> dict:
    if not data.get("show_contact"):
        for field in CONTACT_FIELDS:
            data[field] = None
        if data.get("user"):
            data["user"].pop("phone", None)
    return data


def serialize_items(session: Session, items: list) -> list:
    if not items:
        return []

    item_ids = [item.id for item in items]
    user_ids = {item.user_id for item in items}

    reporters = {
        p.id: p for p in session.exec(select(Profile).where(Profile.id.in_(user_ids))).all()
    }

    media_by_item = {}
    for m in session.exec(select(ItemMedia).where(ItemMedia.item_id.in_(item_ids))).all():
        media_by_item.setdefault(m.item_id, []).append(m)

    items_response = []

    for item in items:
        data = item.model_dump()
        reporter = reporters.get(item.user_id)
        data["user"] = reporter.summary() if reporter else None
        data["media"] = media_with_urls(media_by_item.get(item.id, []))
        items_response.append(mask_contact(data))

    return items_response


def get_item_or_404(session: Session, item_id: uuid.UUID) -> Item:
    item = session.get(Item, item_id)
    if not item or item.status == "deleted":
        raise HTTPException(status_code=404, detail="Item not found")
    return item


def has_settled_claim(session: Session, item_id: uuid.UUID) -> bool:
    return session.exec(
        select(Claim.id)
        .where(Claim.item_id == item_id)
        .where(Claim.status.in_(("verified", "completed")))
    ).first() is not None


def get_owned_item(session: Session, item_id: uuid.UUID, user: Profile, action: str) -> Item:
    item = get_item_or_404(session, item_id)

    # ownership check
    if item.user_id != user.id:
        raise HTTPException(
            status_code=403,
            detail=f"Unauthorized to {action} this item",
        )

    return item


@router.get("")
async def list_items(
    type: Optional[Literal["lost", "found"]] = None,
    category: Optional[str] = None,
    province: Optional[str] = None,
    district: Optional[str] = None,
    status: Literal["active", "claimed", "resolved", "expired"] = "active",
    verified: Optional[bool] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort_by: Literal["created_at", "date_lost_found", "view_count", "reward_amount"] = "created_at",
    sort_order: Literal["asc", "desc"] = "desc",
    session: Session = Depends(get_session),
):
    filters = [Item.status == status]

    if type:
        filters.append(Item.type == type)

    if category:
        filters.append(Item.category == category)

    if province:
        filters.append(Item.province == province)

    if district:
        filters.append(Item.district == district)

    if verified:
        filters.append(Item.is_verified_listing == True)  # noqa: E712

    if search and search.strip():
        pattern = f"%{search.strip()}%"
        filters.append(or_(Item.title.ilike(pattern), Item.description.ilike(pattern)))

    total = session.exec(select(func.count(Item.id)).where(*filters)).one()

    sort_column = getattr(Item, sort_by)
    order = sort_column.asc() if sort_order == "asc" else sort_column.desc()

    items = session.exec(
        select(Item)
        .where(*filters)
        .order_by(order)
        .offset((page - 1) * limit)
        .limit(limit)
    ).all()

    return {
        "items": serialize_items(session, items),
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": -(-total // limit),
        },
    }


@router.post("", status_code=201)
async def create_item(
    payload: ValidatedCreateItem,
    session: Session = Depends(get_session),
    user: Profile = Depends(require_user),
):
    organization_id = None

    if payload.organization_id:
        try:
            organization_id = uuid.UUID(payload.organization_id)
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid organization id")

        # posting on behalf of an approved organization
        require_org_action(session, user.id, organization_id, "post_item")

    db_item = Item(
        user_id=user.id,
        organization_id=organization_id,
        type=payload.type,
        title=payload.title,
        description=payload.description,
        category=payload.category,
        date_lost_found=payload.date_lost_found,
        time_lost_found=payload.time_lost_found,
        reward_amount=payload.reward_amount,
        contact_phone=payload.contact_phone,
        contact_email=payload.contact_email,
        show_contact=payload.show_contact,
        storage_location=payload.storage_location,
        retention_date=payload.retention_date,
        is_verified_listing=user.is_verified or organization_id is not None,
    )
    db_item.set_location(payload.location.model_dump(exclude_none=True))

    session.add(db_item)

    for index, m in enumerate(payload.media):
        session.add(ItemMedia(
            item_id=db_item.id,
            url=m.url,
            thumbnail_url=m.thumbnail_url,
            is_primary=index == 0,
            order=index,
        ))

    log_activity(session, user.id, "create", "item", db_item.id, {"type": payload.type, "title": payload.title})

    session.commit()
    session.refresh(db_item)

    return {"item": serialize_items(session, [db_item])[0]}


@router.get("/{item_id}")
async def get_item(
    item_id: uuid.UUID,
    session: Session = Depends(get_session),
):
    item = get_item_or_404(session, item_id)

    item.view_count += 1
    session.add(item)
    session.commit()
    session.refresh(item)

    reporter = session.get(Profile, item.user_id)
    media = session.exec(select(ItemMedia).where(ItemMedia.item_id == item.id)).all()

    item_dict = item.model_dump()
    item_dict["user"] = reporter.summary() | {"phone": reporter.phone} if reporter else None
    item_dict["media"] = media_with_urls(media)
    item_dict["organization"] = None

    if item.organization_id:
        org = session.get(Organization, item.organization_id)
        if org:
            item_dict["organization"] = {
                "id": org.id,
                "name": org.name,
                "logo_url": org.logo_url,
                "is_verified": org.is_verified,
            }

    return {"item": mask_contact(item_dict)}


@router.patch("/{item_id}")
async def update_item(
    item_id: uuid.UUID,
    updates: dict,
    session: Session = Depends(get_session),
    user: Profile = Depends(require_user),
):
    item = get_owned_item(session, item_id, user, "edit")

    validated = validate_update_item(updates)

    if "status" in updates and has_settled_claim(session, item.id):
        raise HTTPException(status_code=400, detail="Item status cannot change after a claim was verified")

    for field, value in validated.model_dump(exclude_unset=True).items():
        if field == "location":
            if value is None:
                raise HTTPException(status_code=400, detail="Location cannot be empty")
            item.set_location({k: v for k, v in value.items() if v is not None})
        elif isinstance(value, str):
            setattr(item, field, value.strip())
        else:
            setattr(item, field, value)

    item.updated_at = datetime.now(timezone.utc)

    session.add(item)
    session.commit()
    session.refresh(item)

    return {"item": serialize_items(session, [item])[0]}


@router.delete("/{item_id}")
async def delete_item(
    item_id: uuid.UUID,
    session: Session = Depends(get_session),
    user: Profile = Depends(require_user),
):
    item = get_owned_item(session, item_id, user, "delete")

    # Soft delete
    item.status = "deleted"
    item.updated_at = datetime.now(timezone.utc)

    log_activity(session, user.id, "delete", "item", item.id)

    session.add(item)
    session.commit()

    return {"success": True}


@router.post("/{item_id}/media", status_code=201)
async def upload_item_media(
    item_id: uuid.UUID,
    image: UploadFile = File(...),
    session: Session = Depends(get_session),
    user: Profile = Depends(require_user),
):
    item = get_owned_item(session, item_id, user, "edit")

    # read image into memory and upload
    raw_bytes = await image.read()

    if not raw_bytes:
        raise HTTPException(status_code=400, detail="Image is empty")

    if len(raw_bytes) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=400, detail=f"Image exceeds {config.MAX_UPLOAD_SIZE_MB}MB limit")

    try:
        buffer, ext = compress_image(raw_bytes)
    except OSError as e:
        logger.warning("Rejected upload for item %s: %s", item.id, e)
        raise HTTPException(status_code=400, detail="File is not a valid image")

    s3_key = upload_to_s3(buffer, ext, image.filename)

    existing = session.exec(
        select(func.count(ItemMedia.id)).where(ItemMedia.item_id == item.id)
    ).one()

    media = ItemMedia(
        item_id=item.id,
        url=s3_key,
        is_primary=existing == 0,
        order=existing,
    )

    session.add(media)
    session.commit()
    session.refresh(media)

    return {"media": media_with_urls([media])[0]}


@router.delete("/{item_id}/media/{media_id}")
async def delete_item_media(
    item_id: uuid.UUID,
    media_id: uuid.UUID,
    session: Session = Depends(get_session),
    user: Profile = Depends(require_user),
):
    item = get_owned_item(session, item_id, user, "edit")

    media = session.get(ItemMedia, media_id)
    if not media or media.item_id != item.id:
        raise HTTPException(status_code=404, detail="Media not found")

    delete_s3_object(media.url)

    session.delete(media)
    session.flush()

    # promote the next image when the primary goes away
    if media.is_primary:
        next_media = session.exec(
            select(ItemMedia)
            .where(ItemMedia.item_id == item.id)
            .order_by(ItemMedia.order)
        ).first()
        if next_media:
            next_media.is_primary = True
            session.add(next_media)

    session.commit()

    return {"success": True}


@router.get("/{item_id}/claims")
async def get_item_claims(
    item_id: uuid.UUID,
    session: Session = Depends(get_session),
    user: Profile = Depends(require_user),
):
    item = get_item_or_404(session, item_id)

    # Item owner, or staff of the holding organization
    if item.user_id != user.id:
        if not item.organization_id or not get_membership(session, user.id, item.organization_id):
            raise HTTPException(status_code=403, detail="Forbidden")

    claims = session.exec(
        select(Claim)
        .where(Claim.item_id == item.id)
        .order_by(Claim.created_at.desc())
    ).all()

    return {"claims": [serialize_claim(session, claim) for claim in claims]}


def serialize_claim(session: Session, claim: Claim) -> dict:
    data = claim.model_dump()

    claimant = session.get(Profile, claim.claimant_id)
    data["claimant"] = claimant.summary() if claimant else None

    data["evidence"] = session.exec(
        select(ClaimEvidence).where(ClaimEvidence.claim_id == claim.id)
    ).all()

    return data
