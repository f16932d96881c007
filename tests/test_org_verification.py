from datetime import datetime, timedelta, timezone

import pytest
from sqlmodel import select

from khojpayo.models.organization import OrganizationMember
from khojpayo.models.verification import (
    BlockedEmailDomain,
    OrganizationContact,
    OrganizationVerification,
    VerificationAudit,
)


def details(**overrides):
    payload = {
        "registered_name": "Hotel Annapurna Pvt. Ltd.",
        "registration_type": "company_registrar",
        "registration_number": "12345/067/068",
        "province": "Bagmati",
        "district": "Kathmandu",
        "municipality": "Kathmandu Metropolitan City",
        "ward_number": 1,
        "official_email": "info@hotelannapurna.com",
        "official_phone": "014221711",
        "registration_certificate_url": "https://cdn.example.com/cert.pdf",
    }
    payload.update(overrides)
    return payload


def contact(user, **overrides):
    payload = {
        "user_id": str(user.id),
        "full_name": user.name,
        "position_title": "General Manager",
        "role": "manager",
        "email": user.email,
        "phone": "9800000000",
        "is_primary_contact": True,
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def draft_org(make_user, make_org):
    owner = make_user(name="Owner")
    org = make_org(owner, status="draft", type="hotel")
    return owner, org


def audit_actions(session, org):
    return [
        a.action for a in session.exec(
            select(VerificationAudit)
            .where(VerificationAudit.organization_id == org.id)
            .order_by(VerificationAudit.created_at)
        ).all()
    ]


def test_save_details_creates_then_updates(client, session, auth, draft_org):
    owner, org = draft_org

    created = client.post(f"/organizations/{org.id}/verification", headers=auth(owner), json=details())
    assert created.status_code == 200
    verification = created.json()["verification"]
    assert verification["email_domain"] == "hotelannapurna.com"
    assert verification["verification_status"] == "draft"
    assert "email_verification_token" not in verification
    assert created.json()["email_validation"]["valid"] is True

    updated = client.post(
        f"/organizations/{org.id}/verification",
        headers=auth(owner),
        json=details(registered_name="Hotel Annapurna Limited"),
    )
    assert updated.json()["verification"]["registered_name"] == "Hotel Annapurna Limited"

    assert audit_actions(session, org) == ["created", "updated"]


def test_save_details_rejects_generic_email(client, session, auth, draft_org):
    owner, org = draft_org
    session.add(BlockedEmailDomain(domain="gmail.com"))
    session.commit()

    response = client.post(
        f"/organizations/{org.id}/verification",
        headers=auth(owner),
        json=details(official_email="hotelannapurna@gmail.com"),
    )

    assert response.status_code == 400
    assert response.json()["email_validation"]["is_blocked"] is True


def test_save_details_missing_fields(client, auth, draft_org):
    owner, org = draft_org

    response = client.post(f"/organizations/{org.id}/verification", headers=auth(owner), json={"registered_name": "X"})

    assert response.status_code == 400


def test_save_details_permissions(client, make_user, add_member, auth, draft_org):
    owner, org = draft_org
    staff = make_user()
    add_member(org, staff)

    assert client.post(f"/organizations/{org.id}/verification", headers=auth(staff), json=details()).status_code == 403
    assert client.post(f"/organizations/{org.id}/verification", headers=auth(make_user()), json=details()).status_code == 403
    assert client.get(f"/organizations/{org.id}/verification", headers=auth(staff)).status_code == 200


def test_approved_verification_is_locked(client, session, auth, draft_org):
    owner, org = draft_org
    client.post(f"/organizations/{org.id}/verification", headers=auth(owner), json=details())

    verification = session.exec(select(OrganizationVerification)).one()
    verification.verification_status = "approved"
    session.add(verification)
    session.commit()

    response = client.post(f"/organizations/{org.id}/verification", headers=auth(owner), json=details())

    assert response.status_code == 400


def test_submit_verification(client, session, auth, draft_org):
    owner, org = draft_org

    nothing = client.put(f"/organizations/{org.id}/verification", headers=auth(owner))
    assert nothing.status_code == 400

    client.post(f"/organizations/{org.id}/verification", headers=auth(owner), json=details())

    no_contact = client.put(f"/organizations/{org.id}/verification", headers=auth(owner))
    assert no_contact.status_code == 400
    assert no_contact.json()["error"] == "Please add a primary contact person"

    client.post(f"/organizations/{org.id}/contacts", headers=auth(owner), json=contact(owner))

    submitted = client.put(f"/organizations/{org.id}/verification", headers=auth(owner))
    assert submitted.status_code == 200
    assert submitted.json()["verification"]["verification_status"] == "submitted"

    session.refresh(org)
    assert org.verification_status == "submitted"
    assert org.verification_submitted_at is not None

    again = client.put(f"/organizations/{org.id}/verification", headers=auth(owner))
    assert again.status_code == 400
    assert again.json()["error"] == "Verification is already submitted"


def test_submit_requires_certificate(client, auth, draft_org):
    owner, org = draft_org
    client.post(
        f"/organizations/{org.id}/verification",
        headers=auth(owner),
        json=details(registration_certificate_url=None),
    )
    client.post(f"/organizations/{org.id}/contacts", headers=auth(owner), json=contact(owner))

    response = client.put(f"/organizations/{org.id}/verification", headers=auth(owner))

    assert response.status_code == 400
    assert response.json()["error"] == "Registration certificate is required"


def test_get_verification_details(client, auth, draft_org):
    owner, org = draft_org
    client.post(f"/organizations/{org.id}/verification", headers=auth(owner), json=details())
    client.post(f"/organizations/{org.id}/contacts", headers=auth(owner), json=contact(owner))

    data = client.get(f"/organizations/{org.id}/verification", headers=auth(owner)).json()

    assert data["verification"]["registered_name"] == "Hotel Annapurna Pvt. Ltd."
    assert data["contacts"][0]["user"]["id"] == str(owner.id)
    assert len(data["audit_trail"]) == 2
    assert data["contract"] is None


def test_verification_of_missing_organization(client, make_user, auth):
    response = client.get(
        "/organizations/00000000-0000-0000-0000-000000000000/verification",
        headers=auth(make_user()),
    )

    assert response.status_code == 404


# Email verification

def test_email_domain_check(client, draft_org):
    _, org = draft_org

    response = client.get(f"/organizations/{org.id}/email-verify", params={"email": "Info@HotelAnnapurna.com"})

    assert response.status_code == 200
    assert response.json()["domain"] == "hotelannapurna.com"
    assert response.json()["valid"] is True

    assert client.get(f"/organizations/{org.id}/email-verify").status_code == 400


def test_email_otp_flow(client, session, auth, draft_org):
    owner, org = draft_org
    client.post(f"/organizations/{org.id}/verification", headers=auth(owner), json=details())

    not_requested = client.put(f"/organizations/{org.id}/email-verify", headers=auth(owner), json={"otp": "123456"})
    assert not_requested.status_code == 400

    sent = client.post(f"/organizations/{org.id}/email-verify", headers=auth(owner))
    assert sent.status_code == 200
    otp = sent.json()["dev_otp"]
    assert len(otp) == 6

    verification = session.exec(select(OrganizationVerification)).one()
    assert verification.email_verification_status == "code_sent"
    assert verification.email_verification_token != otp

    malformed = client.put(f"/organizations/{org.id}/email-verify", headers=auth(owner), json={"otp": "12ab"})
    assert malformed.status_code == 400

    wrong_code = "111111" if otp != "111111" else "222222"
    wrong = client.put(f"/organizations/{org.id}/email-verify", headers=auth(owner), json={"otp": wrong_code})
    assert wrong.status_code == 400
    assert wrong.json()["error"] == "Invalid verification code"

    confirmed = client.put(f"/organizations/{org.id}/email-verify", headers=auth(owner), json={"otp": otp})
    assert confirmed.status_code == 200
    assert confirmed.json()["verified"] is True

    session.refresh(verification)
    assert verification.email_verification_status == "verified"
    assert verification.email_verified_at is not None

    already = client.post(f"/organizations/{org.id}/email-verify", headers=auth(owner))
    assert already.json()["already_verified"] is True


def test_email_otp_expired(client, session, auth, draft_org):
    owner, org = draft_org
    client.post(f"/organizations/{org.id}/verification", headers=auth(owner), json=details())
    otp = client.post(f"/organizations/{org.id}/email-verify", headers=auth(owner)).json()["dev_otp"]

    verification = session.exec(select(OrganizationVerification)).one()
    verification.email_verification_token_expires = datetime.now(timezone.utc) - timedelta(minutes=1)
    session.add(verification)
    session.commit()

    response = client.put(f"/organizations/{org.id}/email-verify", headers=auth(owner), json={"otp": otp})

    assert response.status_code == 400
    assert "expired" in response.json()["error"]


def test_email_otp_without_details(client, auth, draft_org):
    owner, org = draft_org

    response = client.post(f"/organizations/{org.id}/email-verify", headers=auth(owner))

    assert response.status_code == 400


def test_email_otp_generic_email_needs_override(client, session, auth, draft_org):
    owner, org = draft_org
    client.post(f"/organizations/{org.id}/verification", headers=auth(owner), json=details())

    verification = session.exec(select(OrganizationVerification)).one()
    verification.is_generic_email = True
    session.add(verification)
    session.commit()

    response = client.post(f"/organizations/{org.id}/email-verify", headers=auth(owner))

    assert response.status_code == 400
    assert response.json()["requires_manual_override"] is True


def test_email_otp_requires_manager(client, make_user, add_member, auth, draft_org):
    _, org = draft_org
    staff = make_user()
    add_member(org, staff)

    assert client.post(f"/organizations/{org.id}/email-verify", headers=auth(staff)).status_code == 403


# Contacts

def test_add_contact_creates_membership(client, session, make_user, auth, draft_org):
    owner, org = draft_org
    manager = make_user(name="Manager")

    response = client.post(f"/organizations/{org.id}/contacts", headers=auth(owner), json=contact(manager))

    assert response.status_code == 201
    assert response.json()["contact"]["user"]["name"] == "Manager"

    membership = session.exec(
        select(OrganizationMember).where(OrganizationMember.user_id == manager.id)
    ).one()
    assert membership.member_role == "org_staff"

    duplicate = client.post(f"/organizations/{org.id}/contacts", headers=auth(owner), json=contact(manager))
    assert duplicate.status_code == 400

    assert "contact_added" in audit_actions(session, org)


def test_single_primary_contact(client, session, make_user, auth, draft_org):
    owner, org = draft_org
    first = make_user()
    second = make_user()

    client.post(f"/organizations/{org.id}/contacts", headers=auth(owner), json=contact(first))
    client.post(f"/organizations/{org.id}/contacts", headers=auth(owner), json=contact(second))

    primaries = session.exec(
        select(OrganizationContact).where(OrganizationContact.is_primary_contact == True)  # noqa: E712
    ).all()
    assert [c.user_id for c in primaries] == [second.id]


def test_add_contact_unknown_user(client, auth, draft_org):
    owner, org = draft_org

    response = client.post(f"/organizations/{org.id}/contacts", headers=auth(owner), json={
        "user_id": "00000000-0000-0000-0000-000000000000",
        "full_name": "Nobody",
        "position_title": "Ghost",
        "role": "other",
        "email": "nobody@example.com",
        "phone": "9800000000",
    })

    assert response.status_code == 400


def test_update_contact(client, make_user, auth, draft_org):
    owner, org = draft_org
    person = make_user()
    contact_id = client.post(
        f"/organizations/{org.id}/contacts", headers=auth(owner), json=contact(person)
    ).json()["contact"]["id"]

    response = client.patch(f"/organizations/{org.id}/contacts", headers=auth(owner), json={
        "contact_id": contact_id,
        "position_title": "Director",
        "role": "director",
    })

    assert response.status_code == 200
    assert response.json()["contact"]["position_title"] == "Director"

    missing_id = client.patch(f"/organizations/{org.id}/contacts", headers=auth(owner), json={"role": "hr"})
    assert missing_id.status_code == 400

    nulled = client.patch(f"/organizations/{org.id}/contacts", headers=auth(owner), json={
        "contact_id": contact_id,
        "full_name": None,
    })
    assert nulled.status_code == 400


def test_remove_and_reactivate_contact(client, session, make_user, add_member, auth, draft_org):
    owner, org = draft_org
    person = make_user()
    contact_id = client.post(
        f"/organizations/{org.id}/contacts", headers=auth(owner), json=contact(person)
    ).json()["contact"]["id"]

    staff = make_user()
    add_member(org, staff)
    forbidden = client.delete(
        f"/organizations/{org.id}/contacts", headers=auth(staff), params={"contact_id": contact_id}
    )
    assert forbidden.status_code == 403

    removed = client.delete(
        f"/organizations/{org.id}/contacts",
        headers=auth(owner),
        params={"contact_id": contact_id, "reason": "Left the company"},
    )
    assert removed.status_code == 200

    listed = client.get(f"/organizations/{org.id}/contacts", headers=auth(owner)).json()["contacts"]
    assert listed == []

    stored = session.exec(select(OrganizationContact)).one()
    assert stored.deactivation_reason == "Left the company"

    reactivated = client.post(f"/organizations/{org.id}/contacts", headers=auth(owner), json=contact(person))
    assert reactivated.status_code == 200
    assert reactivated.json()["contact"]["is_active"] is True

    assert audit_actions(session, org) == ["contact_added", "contact_removed", "contact_added"]
