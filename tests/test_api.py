from datetime import datetime, timedelta

from techconnect.db.models import Bid, Notification

from conftest import auth_headers, bid_payload, make_company, make_project, make_user


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------

def test_register_and_me(client):
    resp = client.post("/auth/register", json={
        "email": "Owner@Example.com", "password": "secret123", "name": "Ayesha", "role": "company",
    })
    assert resp.status_code == 201
    token = resp.json()["access_token"]

    me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["email"] == "owner@example.com"
    assert me.json()["role"] == "company"


def test_register_rejects_admin_role_and_duplicates(client, db):
    make_user(db, email="taken@example.com")
    dup = client.post("/auth/register", json={"email": "taken@example.com", "password": "secret123", "name": "X"})
    assert dup.status_code == 400

    admin = client.post("/auth/register", json={
        "email": "new@example.com", "password": "secret123", "name": "X", "role": "admin",
    })
    assert admin.status_code == 422


def test_login_lockout(client, db, monkeypatch):
    from techconnect.core.config import settings
    monkeypatch.setattr(settings, "MAX_FAILED_LOGINS", 3)
    user = make_user(db, email="lock@example.com")

    for _ in range(3):
        resp = client.post("/auth/login", json={"email": "lock@example.com", "password": "wrong-pass"})
        assert resp.status_code == 401

    locked = client.post("/auth/login", json={"email": "lock@example.com", "password": "secret123"})
    assert locked.status_code == 423

    db.refresh(user)
    user.lock_until = datetime.utcnow() - timedelta(seconds=1)
    db.commit()
    ok = client.post("/auth/login", json={"email": "lock@example.com", "password": "secret123"})
    assert ok.status_code == 200
    db.refresh(user)
    assert user.failed_login_attempts == 0
    assert user.last_login is not None


def test_missing_token_is_rejected(client):
    assert client.get("/auth/me").status_code in (401, 403)


# ---------------------------------------------------------------------------
# Companies
# ---------------------------------------------------------------------------

def test_company_profile_and_cached_listing(client, db, fake_redis):
    owner = make_user(db, role="company")
    headers = auth_headers(owner)
    created = client.post("/companies/", headers=headers, json={"name": "Lahore Labs", "category": "mobile"})
    assert created.status_code == 201
    assert client.post("/companies/", headers=headers, json={"name": "Again"}).status_code == 400

    listing = client.get("/companies/", params={"category": "mobile"}).json()
    assert [c["name"] for c in listing["items"]] == ["Lahore Labs"]
    assert any(k.startswith("companies:") for k in fake_redis.store)

    other = make_user(db, role="company")
    client.post("/companies/", headers=auth_headers(other), json={"name": "Karachi Apps", "category": "mobile"})
    assert not any(k.startswith("companies:") for k in fake_redis.store)
    assert client.get("/companies/", params={"category": "mobile"}).json()["total"] == 2


def test_verification_over_http(client, db):
    company = make_company(db, verification_status="pending")
    admin = make_user(db, role="admin")
    documents = {
        name: {"url": f"https://files.example.com/{name}.pdf"}
        for name in ("secp_certificate", "ntn_certificate", "owner_cnic_front", "owner_cnic_back")
    }

    submitted = client.post("/companies/verification/submit", headers=auth_headers(company.owner),
                            json={"documents": documents})
    assert submitted.status_code == 200
    assert submitted.json()["verification_status"] == "under_review"

    assert client.get("/companies/verification/pending", headers=auth_headers(company.owner)).status_code == 403
    pending = client.get("/companies/verification/pending", headers=auth_headers(admin)).json()
    assert [c["id"] for c in pending] == [str(company.id)]

    approved = client.post(f"/companies/verification/{company.id}/approve", headers=auth_headers(admin), json={})
    assert approved.json()["verified"] is True


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------

def test_client_creates_and_lists_project(client, db):
    owner = make_user(db)
    resp = client.post("/projects/", headers=auth_headers(owner), json={
        "title": "Inventory app",
        "description": "Android app for stock tracking",
        "category": "mobile",
        "budget_min": "50000",
        "budget_max": "150000",
    })
    assert resp.status_code == 201
    body = resp.json()
    assert body["status"] == "posted"
    assert body["client_info"]["email"] == owner.email

    listing = client.get("/projects/", params={"category": "mobile"}).json()
    assert listing["total"] == 1
    assert listing["items"][0]["title"] == "Inventory app"


def test_company_cannot_post_project(client, db):
    company = make_company(db)
    resp = client.post("/projects/", headers=auth_headers(company.owner), json={
        "title": "Nope", "description": "Nope", "category": "web",
    })
    assert resp.status_code == 403


def test_invite_only_project_hidden_and_invitation_notifies(client, db):
    owner = make_user(db)
    invited = make_company(db)
    resp = client.post("/projects/", headers=auth_headers(owner), json={
        "title": "Private build",
        "description": "Invite only",
        "category": "web",
        "is_invite_only": True,
        "invited_company_ids": [str(invited.id)],
    })
    assert resp.status_code == 201

    assert client.get("/projects/").json()["total"] == 0
    note = db.query(Notification).filter_by(user_id=invited.user_id).one()
    assert note.type == "project_invitation"


# ---------------------------------------------------------------------------
# Bids
# ---------------------------------------------------------------------------

def test_unverified_company_cannot_bid(client, db):
    project = make_project(db)
    company = make_company(db, verification_status="under_review")
    resp = client.post("/bids/", headers=auth_headers(company.owner), json=bid_payload(project.id))
    assert resp.status_code == 403


def test_short_proposal_is_rejected(client, db):
    project = make_project(db)
    company = make_company(db)
    resp = client.post("/bids/", headers=auth_headers(company.owner),
                       json=bid_payload(project.id, proposal="Too short"))
    assert resp.status_code == 422


def test_duplicate_bid_returns_conflict(client, db):
    project = make_project(db)
    company = make_company(db)
    headers = auth_headers(company.owner)
    assert client.post("/bids/", headers=headers, json=bid_payload(project.id)).status_code == 201

    dup = client.post("/bids/", headers=headers, json=bid_payload(project.id))
    assert dup.status_code == 409
    assert dup.json()["code"] == "already_exists"


def test_full_bid_flow(client, db):
    project = make_project(db)
    winner = make_company(db, rating=4.0)
    other = make_company(db)
    client_headers = auth_headers(project.client)

    created = client.post("/bids/", headers=auth_headers(winner.owner),
                          json=bid_payload(project.id, amount="150000", tax_percentage="10"))
    assert created.status_code == 201
    bid = created.json()
    assert bid["total_amount"] == "165000.00"
    assert bid["status"] == "submitted"
    client.post("/bids/", headers=auth_headers(other.owner), json=bid_payload(project.id))

    ranked = client.get(f"/bids/project/{project.id}", params={"sort": "score"}, headers=client_headers).json()
    assert ranked[0]["id"] == bid["id"]

    viewed = client.get(f"/bids/{bid['id']}", headers=client_headers).json()
    assert viewed["viewed_by_client"] is True
    assert viewed["version"] == bid["version"]

    stale = client.post(f"/bids/{bid['id']}/review", headers=client_headers,
                        json={"expected_version": bid["version"] - 1})
    assert stale.status_code == 409
    assert stale.json()["code"] == "stale_write"

    accepted = client.post(f"/bids/{bid['id']}/accept", headers=client_headers, json={"notes": "Great team"})
    assert accepted.status_code == 200
    assert accepted.json()["status"] == "accepted"

    statuses = {b.company_id: b.status for b in db.query(Bid).all()}
    assert statuses[other.id] == "rejected"

    again = client.post(f"/bids/{bid['id']}/reject", headers=client_headers, json={})
    assert again.status_code == 400
    assert again.json()["code"] == "invalid_transition"

    winner_notes = db.query(Notification).filter_by(user_id=winner.user_id, type="bid_accepted").count()
    assert winner_notes == 1


def test_company_cannot_accept_its_own_bid(client, db):
    project = make_project(db)
    company = make_company(db)
    bid = client.post("/bids/", headers=auth_headers(company.owner), json=bid_payload(project.id)).json()

    resp = client.post(f"/bids/{bid['id']}/accept", headers=auth_headers(company.owner), json={})
    assert resp.status_code == 403


def test_outsider_cannot_view_bid(client, db):
    project = make_project(db)
    company = make_company(db)
    bid = client.post("/bids/", headers=auth_headers(company.owner), json=bid_payload(project.id)).json()

    resp = client.get(f"/bids/{bid['id']}", headers=auth_headers(make_user(db)))
    assert resp.status_code == 403


def test_update_clears_total_amount(client, db):
    project = make_project(db)
    company = make_company(db)
    headers = auth_headers(company.owner)
    bid = client.post("/bids/", headers=headers, json=bid_payload(project.id, tax_percentage="10")).json()

    kept = client.put(f"/bids/{bid['id']}", headers=headers, json={"amount": "200000"}).json()
    assert kept["total_amount"] == "165000.00"
    assert kept["revision_count"] == 1

    cleared = client.put(f"/bids/{bid['id']}", headers=headers,
                         json={"total_amount": None, "expected_version": kept["version"]}).json()
    assert cleared["total_amount"] == "220000.00"


def test_negotiation_over_http(client, db):
    project = make_project(db)
    company = make_company(db)
    company_headers = auth_headers(company.owner)
    client_headers = auth_headers(project.client)
    bid = client.post("/bids/", headers=company_headers, json=bid_payload(project.id)).json()

    proposed = client.post(f"/bids/{bid['id']}/negotiations", headers=client_headers, json={
        "proposal": {"field": "amount", "new_value": "140000"}, "notes": "Budget is tight",
    })
    assert proposed.status_code == 201
    index = proposed.json()["position"]

    own = client.post(f"/bids/{bid['id']}/negotiations/{index}/accept", headers=client_headers, json={})
    assert own.status_code == 403

    accepted = client.post(f"/bids/{bid['id']}/negotiations/{index}/accept", headers=company_headers, json={})
    assert accepted.status_code == 200
    assert accepted.json()["final_accepted"] is True
    assert client.get(f"/bids/{bid['id']}", headers=company_headers).json()["amount"] == "140000.00"

    bad = client.post(f"/bids/{bid['id']}/negotiations", headers=client_headers, json={
        "proposal": {"field": "status", "new_value": "accepted"},
    })
    assert bad.status_code == 422


def test_company_cannot_mark_milestone_paid(client, db):
    project = make_project(db)
    company = make_company(db)
    company_headers = auth_headers(company.owner)
    bid = client.post("/bids/", headers=company_headers, json=bid_payload(
        project.id, milestones=[{"title": "Design", "amount": "150000"}],
    )).json()
    client.post(f"/bids/{bid['id']}/accept", headers=auth_headers(project.client), json={})
    milestone_id = bid["milestones"][0]["id"]

    resp = client.post(f"/bids/{bid['id']}/milestones/{milestone_id}/advance",
                       headers=company_headers, json={"status": "paid"})
    assert resp.status_code == 403

    started = client.post(f"/bids/{bid['id']}/milestones/{milestone_id}/advance",
                          headers=company_headers, json={"status": "in_progress"})
    assert started.json()["status"] == "in_progress"


# ---------------------------------------------------------------------------
# Notifications, translation, health
# ---------------------------------------------------------------------------

def test_notification_inbox(client, db):
    project = make_project(db)
    company = make_company(db)
    client.post("/bids/", headers=auth_headers(company.owner), json=bid_payload(project.id))
    headers = auth_headers(project.client)

    assert client.get("/notifications/unread/count", headers=headers).json() == {"unread_count": 1}
    inbox = client.get("/notifications/", headers=headers).json()
    assert inbox["items"][0]["type"] == "new_bid"

    client.post("/notifications/mark-all-read", headers=headers)
    assert client.get("/notifications/unread/count", headers=headers).json() == {"unread_count": 0}

    deleted = client.delete("/notifications/read", headers=headers).json()
    assert deleted["count"] == 1


def test_expired_notifications_are_hidden(client, db):
    user = make_user(db)
    db.add(Notification(user_id=user.id, type="system", title="Old", message="Gone",
                        expires_at=datetime.utcnow() - timedelta(days=1)))
    db.commit()
    assert client.get("/notifications/", headers=auth_headers(user)).json()["total"] == 0


def test_translate_endpoints(client):
    assert client.get("/translate/keys/home", params={"lang": "ur"}).json()["value"] == "ہوم"
    assert client.get("/translate/keys/home", params={"lang": "fr"}).status_code == 400

    resp = client.post("/translate/", json={"text": "Home", "target_lang": "ur"}).json()
    assert resp["source"] == "dictionary"

    health = client.get("/translate/health").json()
    assert health["dictionary_keys"] > 0
    assert health["cache_available"] is True


def test_admin_jobs_require_admin(client, db):
    assert client.post("/api/admin/jobs/bid-expiry/run", headers=auth_headers(make_user(db))).status_code == 403

    admin = make_user(db, role="admin")
    resp = client.post("/api/admin/jobs/bid-expiry/run", headers=auth_headers(admin))
    assert resp.status_code == 200
    assert resp.json()["checked"] == 0


def test_user_role_change_by_admin(client, db):
    admin = make_user(db, role="admin")
    target = make_user(db)
    resp = client.put(f"/users/{target.id}/role", headers=auth_headers(admin), json={"role": "company"})
    assert resp.status_code == 200
    db.refresh(target)
    assert target.role == "company"


def test_health(client):
    body = client.get("/health").json()
    assert body["database"] == "ok"
    assert body["scheduler"]["running"] is False
