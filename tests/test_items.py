import io

from PIL import Image

from khojpayo.models.activity_log import ActivityLog
from khojpayo.models.item import Item, ItemMedia
from sqlmodel import select


def item_payload(**overrides):
    payload = {
        "type": "lost",
        "title": "  Blue backpack  ",
        "description": "Blue Jansport backpack with a laptop inside",
        "category": "bags",
        "location": {"province": "Gandaki", "district": "Kaski", "landmark": "Lakeside"},
        "date_lost_found": "2024-04-12",
        "reward_amount": 2000,
        "contact_phone": "9811111111",
    }
    payload.update(overrides)
    return payload


def png_bytes(size=(2000, 1000)):
    buffer = io.BytesIO()
    Image.new("RGB", size, color=(200, 30, 30)).save(buffer, format="PNG")
    return buffer.getvalue()


def test_create_item(client, session, make_user, auth):
    user = make_user(is_verified=True)

    response = client.post("/items", headers=auth(user), json=item_payload(
        media=[{"url": "https://cdn.example.com/a.jpg"}, {"url": "https://cdn.example.com/b.jpg"}],
    ))

    assert response.status_code == 201
    item = response.json()["item"]
    assert item["title"] == "Blue backpack"
    assert item["province"] == "Gandaki"
    assert item["district"] == "Kaski"
    assert item["is_verified_listing"] is True
    assert item["status"] == "active"
    assert [m["is_primary"] for m in item["media"]] == [True, False]
    assert item["user"]["id"] == str(user.id)

    logs = session.exec(select(ActivityLog).where(ActivityLog.entity_type == "item")).all()
    assert len(logs) == 1


def test_create_item_requires_auth(client):
    assert client.post("/items", json=item_payload()).status_code == 401


def test_create_item_validation(client, make_user, auth):
    user = make_user()

    response = client.post("/items", headers=auth(user), json=item_payload(title="ab", category="spaceships"))

    assert response.status_code == 400
    assert "title" in response.json()["error"]


def test_create_item_for_organization_requires_permission(client, make_user, make_org, add_member, auth):
    owner = make_user()
    viewer = make_user()
    org = make_org(owner)
    add_member(org, viewer, "org_viewer")

    denied = client.post("/items", headers=auth(viewer), json=item_payload(organization_id=str(org.id)))
    assert denied.status_code == 403

    allowed = client.post("/items", headers=auth(owner), json=item_payload(organization_id=str(org.id)))
    assert allowed.status_code == 201
    assert allowed.json()["item"]["organization_id"] == str(org.id)
    assert allowed.json()["item"]["is_verified_listing"] is True


def test_create_item_for_unapproved_organization(client, make_user, make_org, auth):
    owner = make_user()
    org = make_org(owner, status="submitted")

    response = client.post("/items", headers=auth(owner), json=item_payload(organization_id=str(org.id)))

    assert response.status_code == 403
    assert "approved" in response.json()["error"]


def test_list_items_filters_and_pagination(client, make_user, make_item):
    user = make_user()
    make_item(user, type="lost", title="Red umbrella")
    make_item(user, type="found", title="Nokia phone", category="electronics")
    make_item(user, type="found", title="Silver ring", category="jewelry")
    make_item(user, type="found", title="Deleted thing", status="deleted")

    response = client.get("/items", params={"type": "found", "limit": 1})
    data = response.json()
    assert data["pagination"] == {"page": 1, "limit": 1, "total": 2, "totalPages": 2}
    assert len(data["items"]) == 1

    search = client.get("/items", params={"search": "NOKIA"}).json()
    assert [i["title"] for i in search["items"]] == ["Nokia phone"]

    category = client.get("/items", params={"category": "jewelry"}).json()
    assert category["pagination"]["total"] == 1

    by_district = client.get("/items", params={"district": "Kathmandu"}).json()
    assert by_district["pagination"]["total"] == 3


def test_list_items_sorting(client, make_user, make_item):
    user = make_user()
    make_item(user, title="Small reward", reward_amount=100)
    make_item(user, title="Big reward", reward_amount=5000)

    response = client.get("/items", params={"sort_by": "reward_amount", "sort_order": "desc"})

    assert [i["title"] for i in response.json()["items"]] == ["Big reward", "Small reward"]


def test_list_items_limit_capped(client):
    assert client.get("/items", params={"limit": 500}).status_code == 400


def test_get_item_increments_views_and_masks_contact(client, make_user, make_item):
    user = make_user(phone="9822222222")
    item = make_item(user, show_contact=False)

    first = client.get(f"/items/{item.id}").json()["item"]
    second = client.get(f"/items/{item.id}").json()["item"]

    assert first["view_count"] == 1
    assert second["view_count"] == 2
    assert second["contact_phone"] is None
    assert second["contact_email"] is None
    assert "phone" not in second["user"]


def test_get_item_shows_contact(client, make_user, make_item):
    user = make_user(phone="9822222222")
    item = make_item(user)

    data = client.get(f"/items/{item.id}").json()["item"]

    assert data["contact_phone"] == "9800000000"
    assert data["user"]["phone"] == "9822222222"


def test_get_deleted_item_is_404(client, make_user, make_item):
    item = make_item(make_user(), status="deleted")

    assert client.get(f"/items/{item.id}").status_code == 404


def test_update_item(client, make_user, make_item, auth):
    user = make_user()
    item = make_item(user)

    response = client.patch(f"/items/{item.id}", headers=auth(user), json={
        "title": "Brown leather wallet",
        "location": {"province": "Lumbini", "district": "Rupandehi"},
    })

    assert response.status_code == 200
    data = response.json()["item"]
    assert data["title"] == "Brown leather wallet"
    assert data["district"] == "Rupandehi"


def test_update_item_unknown_field(client, make_user, make_item, auth):
    user = make_user()
    item = make_item(user)

    response = client.patch(f"/items/{item.id}", headers=auth(user), json={"view_count": 1000})

    assert response.status_code == 400
    assert response.json()["error"] == "Field 'view_count' cannot be updated"


def test_update_item_rejects_null_for_required_fields(client, session, make_user, make_item, auth):
    user = make_user()
    item = make_item(user)

    for field in ("title", "status", "show_contact"):
        response = client.patch(f"/items/{item.id}", headers=auth(user), json={field: None})
        assert response.status_code == 400

    session.refresh(item)
    assert item.title == "Black leather wallet"


def test_update_item_not_owner(client, make_user, make_item, auth):
    item = make_item(make_user())

    response = client.patch(f"/items/{item.id}", headers=auth(make_user()), json={"title": "Mine now"})

    assert response.status_code == 403


def test_delete_item_is_soft(client, session, make_user, make_item, auth):
    user = make_user()
    item = make_item(user)

    assert client.delete(f"/items/{item.id}", headers=auth(make_user())).status_code == 403

    response = client.delete(f"/items/{item.id}", headers=auth(user))
    assert response.status_code == 200

    session.refresh(item)
    assert item.status == "deleted"
    assert client.get(f"/items/{item.id}").status_code == 404


def test_upload_media(client, session, fake_s3, make_user, make_item, auth):
    user = make_user()
    item = make_item(user)

    first = client.post(
        f"/items/{item.id}/media",
        headers=auth(user),
        files={"image": ("wallet.png", png_bytes(), "image/png")},
    )
    second = client.post(
        f"/items/{item.id}/media",
        headers=auth(user),
        files={"image": ("wallet-2.png", png_bytes((400, 300)), "image/png")},
    )

    assert first.status_code == 201
    assert first.json()["media"]["is_primary"] is True
    assert first.json()["media"]["url"].startswith("https://signed.example.com/items/wallet-")
    assert second.json()["media"]["is_primary"] is False

    stored = Image.open(io.BytesIO(next(iter(fake_s3.uploaded.values()))))
    assert stored.size[0] <= 1400

    media = session.exec(select(ItemMedia).where(ItemMedia.item_id == item.id)).all()
    assert len(media) == 2


def test_upload_media_rejects_non_image(client, fake_s3, make_user, make_item, auth):
    user = make_user()
    item = make_item(user)

    response = client.post(
        f"/items/{item.id}/media",
        headers=auth(user),
        files={"image": ("notes.txt", b"plain text", "text/plain")},
    )

    assert response.status_code == 400
    assert fake_s3.uploaded == {}


def test_upload_media_not_owner(client, fake_s3, make_user, make_item, auth):
    item = make_item(make_user())

    response = client.post(
        f"/items/{item.id}/media",
        headers=auth(make_user()),
        files={"image": ("wallet.png", png_bytes(), "image/png")},
    )

    assert response.status_code == 403


def test_delete_primary_media_promotes_next(client, session, fake_s3, make_user, make_item, auth):
    user = make_user()
    item = make_item(user)
    primary = ItemMedia(item_id=item.id, url="items/a.webp", is_primary=True, order=0)
    other = ItemMedia(item_id=item.id, url="items/b.webp", order=1)
    session.add(primary)
    session.add(other)
    session.commit()

    response = client.delete(f"/items/{item.id}/media/{primary.id}", headers=auth(user))

    assert response.status_code == 200
    assert fake_s3.deleted == ["items/a.webp"]
    session.refresh(other)
    assert other.is_primary is True


def test_item_claims_visible_to_owner_and_org_staff(client, make_user, make_item, make_org, add_member, auth):
    owner = make_user()
    staff = make_user()
    stranger = make_user()
    org = make_org(owner)
    add_member(org, staff)
    item = make_item(owner, organization_id=org.id)

    client.post("/claims", headers=auth(stranger), json={
        "item_id": str(item.id),
        "secret_info": "There is a photo of my cat inside",
    })

    owner_view = client.get(f"/items/{item.id}/claims", headers=auth(owner))
    staff_view = client.get(f"/items/{item.id}/claims", headers=auth(staff))
    stranger_view = client.get(f"/items/{item.id}/claims", headers=auth(stranger))

    assert owner_view.status_code == 200
    assert len(owner_view.json()["claims"]) == 1
    assert owner_view.json()["claims"][0]["claimant"]["id"] == str(stranger.id)
    assert staff_view.status_code == 200
    assert stranger_view.status_code == 403


def test_item_is_stored_with_location_json(session, make_user, make_item):
    item = make_item(make_user())

    stored = session.get(Item, item.id)

    assert stored.location == {"province": "Bagmati", "district": "Kathmandu"}
