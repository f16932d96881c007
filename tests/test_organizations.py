from sqlmodel import select

from khojpayo.models.activity_log import ActivityLog
from khojpayo.models.organization import OrganizationMember


def org_payload(**overrides):
    payload = {
        "name": "Tribhuvan International Airport",
        "type": "airport",
        "contact_email": "lostfound@tiairport.com.np",
        "contact_phone": "014113033",
        "location": {"province": "Bagmati", "district": "Kathmandu"},
        "address": "Sinamangal",
    }
    payload.update(overrides)
    return payload


def test_create_organization(client, session, make_user, auth):
    user = make_user()

    response = client.post("/organizations", headers=auth(user), json=org_payload())

    assert response.status_code == 201
    org = response.json()["organization"]
    assert org["verification_status"] == "draft"
    assert org["can_post_items"] is False

    membership = session.exec(select(OrganizationMember)).one()
    assert membership.member_role == "org_owner"
    assert membership.user_id == user.id

    session.refresh(user)
    assert user.role == "organization"

    log = session.exec(select(ActivityLog).where(ActivityLog.entity_type == "organization")).one()
    assert log.details["type"] == "airport"


def test_one_organization_per_admin(client, make_user, auth):
    user = make_user()
    client.post("/organizations", headers=auth(user), json=org_payload())

    response = client.post("/organizations", headers=auth(user), json=org_payload(name="Second"))

    assert response.status_code == 400


def test_create_organization_validation(client, make_user, auth):
    response = client.post("/organizations", headers=auth(make_user()), json=org_payload(type="spaceport"))

    assert response.status_code == 400


def test_list_and_get_organizations(client, make_user, make_org):
    make_org(make_user(), name="Pokhara Police", type="police")
    make_org(make_user(), status="draft", name="Hotel Annapurna", type="hotel")
    make_org(make_user(), name="Closed Mall", type="mall", is_active=False)

    everything = client.get("/organizations").json()["organizations"]
    assert {o["name"] for o in everything} == {"Pokhara Police", "Hotel Annapurna"}

    verified = client.get("/organizations", params={"verified": True}).json()["organizations"]
    assert [o["name"] for o in verified] == ["Pokhara Police"]

    hotels = client.get("/organizations", params={"type": "hotel"}).json()["organizations"]
    assert [o["name"] for o in hotels] == ["Hotel Annapurna"]

    search = client.get("/organizations", params={"search": "pokhara"}).json()["organizations"]
    assert len(search) == 1

    org_id = search[0]["id"]
    assert client.get(f"/organizations/{org_id}").json()["organization"]["name"] == "Pokhara Police"


def test_get_missing_organization(client):
    assert client.get("/organizations/00000000-0000-0000-0000-000000000000").status_code == 404
