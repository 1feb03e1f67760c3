"""
API tests against main.app with a mongomock database.

Covers the sign-up handshake, login, role checks and the main resource routes.
"""
import asyncio
import logging
from contextlib import contextmanager

import pytest

import database
import mailer
import main
from conftest import auth_headers, make_program, make_user


def latest_code(db, email, purpose="verify"):
    return db["otps"].find_one({"email": email, "purpose": purpose})["otp"]


class TestRoot:
    def test_root(self, client):
        assert client.get("/").json()["status"] == "ok"

    def test_database_probe(self, client):
        body = client.get("/test").json()
        assert body["backend"] == "✅ Running"
        assert body["database_name"] == "charity_test"


class TestRegistration:
    def test_full_flow(self, client, db, sent_emails):
        r = client.post("/api/auth/check-email", json={"email": "new@example.com"})
        assert r.json() == {"success": True, "message": "Email is available for registration"}

        r = client.post("/api/auth/send-otp", json={"email": "New@Example.com"})
        assert r.status_code == 200
        assert sent_emails[0]["to"] == "new@example.com"

        code = latest_code(db, "new@example.com")
        r = client.post("/api/auth/verify-otp", json={"email": "new@example.com", "otp": code})
        assert r.json()["success"] is True

        r = client.post("/api/auth/register", json={
            "name": "New Donor", "email": "new@example.com", "password": "secret123", "role": "donor",
        })
        assert r.status_code == 200
        uid = r.json()["uid"]

        r = client.post("/auth/login", data={"username": "new@example.com", "password": "secret123"})
        assert r.status_code == 200
        token = r.json()["access_token"]
        me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"}).json()
        assert me["id"] == uid
        assert me["role"] == "donor"
        assert "password" not in me

    def test_missing_email(self, client):
        r = client.post("/api/auth/check-email", json={})
        assert r.status_code == 400
        assert r.json() == {"success": False, "message": "Email is required", "errorCode": None}

    def test_invalid_email(self, client):
        r = client.post("/api/auth/send-otp", json={"email": "not-an-email"})
        assert r.status_code == 400
        assert r.json()["message"] == "Invalid email format"

    @pytest.mark.parametrize("email", ["john..doe@example.com", "a@b", "jane@example..com", "jane doe@example.com"])
    def test_malformed_emails_rejected(self, client, db, sent_emails, email):
        r = client.post("/api/auth/send-otp", json={"email": email})
        assert r.status_code == 400
        assert r.json() == {"success": False, "message": "Invalid email format", "errorCode": None}
        assert sent_emails == []

    def test_existing_email(self, client, donor):
        r = client.post("/api/auth/check-email", json={"email": "JOHN@example.com"})
        assert r.status_code == 400
        assert r.json()["errorCode"] == "email-already-exists"

    def test_wrong_otp(self, client, db, sent_emails):
        client.post("/api/auth/send-otp", json={"email": "new@example.com"})
        r = client.post("/api/auth/verify-otp", json={"email": "new@example.com", "otp": "000000"})
        assert r.status_code == 400
        assert r.json()["errorCode"] == "invalid-otp"

    def test_register_requires_verification(self, client, db):
        r = client.post("/api/auth/register", json={
            "name": "Sneaky", "email": "sneaky@example.com", "password": "secret123", "role": "donor",
        })
        assert r.status_code == 400
        assert r.json()["errorCode"] == "email-not-verified"
        assert db["users"].count_documents({}) == 0

    def test_cannot_self_register_as_admin(self, client, db):
        r = client.post("/api/auth/register", json={
            "name": "Sneaky", "email": "sneaky@example.com", "password": "secret123", "role": "admin",
        })
        assert r.status_code == 422

    def test_register_missing_fields(self, client):
        r = client.post("/api/auth/register", json={"email": "a@example.com"})
        assert r.json()["message"] == "All fields are required"

    def test_delivery_failure(self, client, db, monkeypatch):
        monkeypatch.setattr(mailer, "send_email", lambda to, subject, html: False)
        r = client.post("/api/auth/send-otp", json={"email": "new@example.com"})
        assert r.status_code == 500
        assert r.json()["errorCode"] == "email-delivery-failed"


class TestLogin:
    def test_unknown_user(self, client, db):
        r = client.post("/auth/login", data={"username": "ghost@example.com", "password": "x"})
        assert r.status_code == 401
        assert r.json()["errorCode"] == "user-not-found"

    def test_wrong_password(self, client, donor):
        r = client.post("/auth/login", data={"username": "john@example.com", "password": "nope"})
        assert r.status_code == 401
        assert r.json()["errorCode"] == "wrong-password"

    def test_disabled_user(self, client, donor):
        database.update_document("users", donor["id"], {"is_active": False})
        r = client.post("/auth/login", data={"username": "john@example.com", "password": "secret123"})
        assert r.status_code == 403
        assert r.json()["errorCode"] == "user-disabled"

    def test_bad_token(self, client, db):
        r = client.get("/auth/me", headers={"Authorization": "Bearer garbage"})
        assert r.status_code == 401


class TestPasswordReset:
    def test_reset_flow(self, client, db, donor, sent_emails):
        r = client.post("/api/auth/forgot-password", json={"email": "john@example.com"})
        assert r.status_code == 200
        code = latest_code(db, "john@example.com", purpose="reset")

        r = client.post("/api/auth/verify-reset-code", json={"email": "john@example.com", "code": code})
        assert r.json() == {"success": True, "email": "john@example.com"}

        r = client.post("/api/auth/reset-password", json={
            "email": "john@example.com", "code": code, "new_password": "brandnew1",
        })
        assert r.status_code == 200
        r = client.post("/auth/login", data={"username": "john@example.com", "password": "brandnew1"})
        assert r.status_code == 200

        # Code is spent
        r = client.post("/api/auth/reset-password", json={
            "email": "john@example.com", "code": code, "new_password": "again123",
        })
        assert r.json()["errorCode"] == "invalid-reset-code"

    def test_unknown_email(self, client, db, sent_emails):
        r = client.post("/api/auth/forgot-password", json={"email": "ghost@example.com"})
        assert r.status_code == 404
        assert r.json()["errorCode"] == "user-not-found"
        assert sent_emails == []


class TestUsers:
    def test_profile_update(self, client, donor_headers):
        r = client.patch("/users/me", json={"name": "Johnny"}, headers=donor_headers)
        assert r.json()["name"] == "Johnny"

    def test_onboarding(self, client, donor_headers):
        r = client.post("/users/me/onboarding", json={
            "interests": ["education"], "preferred_communication": "sms",
        }, headers=donor_headers)
        body = r.json()
        assert body["onboarding_completed"] is True
        assert body["interests"] == ["education"]

    def test_onboarding_needs_interest(self, client, donor_headers):
        r = client.post("/users/me/onboarding", json={"interests": []}, headers=donor_headers)
        assert r.status_code == 422

    def test_admin_only_listing(self, client, donor_headers, admin_headers):
        assert client.get("/users", headers=donor_headers).status_code == 403
        r = client.get("/users", params={"role": "donor"}, headers=admin_headers)
        assert [u["email"] for u in r.json()] == ["john@example.com"]

    def test_role_change(self, client, donor, admin_headers):
        r = client.patch(f"/users/{donor['id']}/role", json={"role": "volunteer"}, headers=admin_headers)
        assert r.json()["role"] == "volunteer"


PROGRAM = {
    "title": "Clean Water Project",
    "description": "Wells and filtration",
    "category": "Infrastructure",
    "location": "Southern Region",
    "manager": "Robert Miller",
    "start_date": "2024-01-01",
    "end_date": "2024-06-30",
    "target": 15000,
    "status": "active",
}


class TestPrograms:
    def test_create_requires_admin(self, client, donor_headers):
        assert client.post("/programs", json=PROGRAM, headers=donor_headers).status_code == 403

    def test_create_ignores_client_aggregates(self, client, admin_headers):
        r = client.post("/programs", json={**PROGRAM, "raised": 999, "volunteers": 9}, headers=admin_headers)
        assert r.status_code == 201
        body = r.json()
        assert body["raised"] == 0
        assert body["volunteers"] == 0

    def test_end_before_start(self, client, admin_headers):
        r = client.post("/programs", json={**PROGRAM, "end_date": "2023-12-31"}, headers=admin_headers)
        assert r.status_code == 422

    def test_patch_cannot_set_raised(self, client, admin_headers):
        pid = make_program(raised=500)
        r = client.patch(f"/programs/{pid}", json={"title": "Renamed", "raised": 1}, headers=admin_headers)
        assert r.json()["title"] == "Renamed"
        assert r.json()["raised"] == 500

    def test_patch_date_order_against_stored(self, client, admin_headers):
        pid = make_program()
        r = client.patch(f"/programs/{pid}", json={"end_date": "2023-01-01"}, headers=admin_headers)
        assert r.status_code == 400
        assert r.json()["errorCode"] == "invalid-request"

    def test_search_and_featured(self, client, db):
        make_program("Winter Relief", tags=["winter"], is_featured=True)
        make_program("Education Fund")
        assert [p["title"] for p in client.get("/programs", params={"search": "WINTER"}).json()] == ["Winter Relief"]
        assert [p["title"] for p in client.get("/programs/featured").json()] == ["Winter Relief"]

    def test_missing_program(self, client, db):
        r = client.get("/programs/64b000000000000000000000")
        assert r.status_code == 404
        assert r.json()["errorCode"] == "not-found"

    @pytest.mark.parametrize("field", ["title", "start_date", "end_date", "target", "status"])
    def test_patch_rejects_null(self, client, admin_headers, field):
        pid = make_program()
        r = client.patch(f"/programs/{pid}", json={field: None}, headers=admin_headers)
        assert r.status_code == 422
        stored = database.get_document("programs", pid)
        assert stored["title"] == "Winter Relief"
        assert stored["start_date"] == "2024-01-01"


class TestDonations:
    def test_donor_gives_as_self(self, client, donor, donor_headers):
        pid = make_program()
        r = client.post("/donations", json={
            "program_id": pid, "amount": 250, "date": "2024-05-01", "payment_method": "PayPal",
            "donor_id": "someone-else", "donor_name": "Someone Else",
        }, headers=donor_headers)
        assert r.status_code == 201
        assert r.json()["donor_id"] == donor["id"]
        assert client.get(f"/programs/{pid}").json()["raised"] == 250

        mine = client.get("/donations/mine", headers=donor_headers).json()
        assert len(mine) == 1
        summary = client.get("/donations/mine/summary", headers=donor_headers).json()
        assert summary["total_donated"] == 250
        assert summary["programs_supported"] == 1

    def test_requires_login(self, client, db):
        pid = make_program()
        r = client.post("/donations", json={
            "program_id": pid, "amount": 10, "date": "2024-05-01", "payment_method": "PayPal",
        })
        assert r.status_code == 401

    def test_non_positive_amount(self, client, donor_headers):
        pid = make_program()
        r = client.post("/donations", json={
            "program_id": pid, "amount": 0, "date": "2024-05-01", "payment_method": "PayPal",
        }, headers=donor_headers)
        assert r.status_code == 422

    def test_other_donors_donation_hidden(self, client, admin_headers, donor_headers):
        pid = make_program()
        created = client.post("/donations", json={
            "program_id": pid, "amount": 10, "date": "2024-05-01", "payment_method": "PayPal",
        }, headers=admin_headers).json()
        assert client.get(f"/donations/{created['id']}", headers=donor_headers).status_code == 404
        assert client.get(f"/donations/{created['id']}", headers=admin_headers).status_code == 200

    def test_admin_edit_and_delete(self, client, admin_headers):
        pid = make_program()
        created = client.post("/donations", json={
            "program_id": pid, "amount": 100, "date": "2024-05-01", "payment_method": "PayPal",
        }, headers=admin_headers).json()
        client.patch(f"/donations/{created['id']}", json={"amount": 40}, headers=admin_headers)
        assert client.get(f"/programs/{pid}").json()["raised"] == 40
        r = client.delete(f"/donations/{created['id']}", headers=admin_headers)
        assert r.status_code == 204
        assert client.get(f"/programs/{pid}").json()["raised"] == 0

    def test_recent_feed(self, client, admin_headers, monkeypatch):
        pid = make_program()
        client.post("/donations", json={
            "program_id": pid, "amount": 75, "date": "2024-05-01", "payment_method": "PayPal",
        }, headers=admin_headers)

        @contextmanager
        def no_changes(collection_name, pipeline=None):
            yield iter([])

        monkeypatch.setattr(database, "watch", no_changes)
        with client.websocket_connect(f"/ws/programs/{pid}/donations") as ws:
            donations = ws.receive_json()
        assert [d["amount"] for d in donations] == [75]

    def test_null_amount_rejected(self, client, admin_headers):
        pid = make_program()
        created = client.post("/donations", json={
            "program_id": pid, "amount": 500, "date": "2024-05-01", "payment_method": "PayPal",
        }, headers=admin_headers).json()
        r = client.patch(f"/donations/{created['id']}", json={"amount": None}, headers=admin_headers)
        assert r.status_code == 422
        assert database.get_document("donations", created["id"])["amount"] == 500

        client.delete(f"/donations/{created['id']}", headers=admin_headers)
        assert client.get(f"/programs/{pid}").json()["raised"] == 0

    def test_feed_send_failure_is_logged(self, caplog):
        async def broken_send():
            raise RuntimeError("socket closed")

        async def run():
            task = asyncio.create_task(broken_send(), name="Donation feed for p1")
            task.add_done_callback(main.log_feed_failure)
            await asyncio.wait([task])
            await asyncio.sleep(0)

        with caplog.at_level(logging.ERROR, logger="main"):
            asyncio.run(run())
        assert "Donation feed for p1 stopped: socket closed" in caplog.text

    def test_cancelled_feed_is_quiet(self, caplog):
        async def idle():
            await asyncio.sleep(10)

        async def run():
            task = asyncio.create_task(idle())
            task.add_done_callback(main.log_feed_failure)
            await asyncio.sleep(0)
            task.cancel()
            await asyncio.wait([task])
            await asyncio.sleep(0)

        with caplog.at_level(logging.ERROR, logger="main"):
            asyncio.run(run())
        assert caplog.records == []


class TestVolunteers:
    def test_crud_keeps_count(self, client, admin_headers):
        pid = make_program()
        r = client.post("/volunteers", json={
            "program_id": pid, "name": "Alice Cooper", "email": "alice@example.com",
            "role": "Helper", "joined_date": "2024-02-01",
        }, headers=admin_headers)
        assert r.status_code == 201
        vid = r.json()["id"]
        assert client.get(f"/programs/{pid}").json()["volunteers"] == 1

        client.patch(f"/volunteers/{vid}", json={"status": "inactive"}, headers=admin_headers)
        assert client.get(f"/programs/{pid}").json()["volunteers"] == 0
        active = client.get(f"/programs/{pid}/volunteers", params={"active": True}, headers=admin_headers)
        assert active.json() == []

        assert client.delete(f"/volunteers/{vid}", headers=admin_headers).status_code == 204
        assert client.get(f"/volunteers/{vid}", headers=admin_headers).status_code == 404

    @pytest.mark.parametrize("field", ["status", "program_id", "name", "email"])
    def test_null_patch_rejected(self, client, admin_headers, field):
        pid = make_program()
        vid = client.post("/volunteers", json={
            "program_id": pid, "name": "Alice Cooper", "email": "alice@example.com",
            "role": "Helper", "joined_date": "2024-02-01",
        }, headers=admin_headers).json()["id"]
        r = client.patch(f"/volunteers/{vid}", json={field: None}, headers=admin_headers)
        assert r.status_code == 422
        stored = database.get_document("volunteers", vid)
        assert stored["status"] == "active"
        assert stored["program_id"] == pid
        assert client.get(f"/programs/{pid}").json()["volunteers"] == 1

    def test_phone_can_be_cleared(self, client, admin_headers):
        pid = make_program()
        vid = client.post("/volunteers", json={
            "program_id": pid, "name": "Alice Cooper", "email": "alice@example.com",
            "phone": "555-1234", "role": "Helper", "joined_date": "2024-02-01",
        }, headers=admin_headers).json()["id"]
        r = client.patch(f"/volunteers/{vid}", json={"phone": None}, headers=admin_headers)
        assert r.status_code == 200
        assert r.json()["phone"] is None
        assert client.get(f"/programs/{pid}").json()["volunteers"] == 1


class TestReportsAndAnalytics:
    def test_report_download(self, client, admin_headers):
        make_program()
        r = client.get("/reports/program-expenses", headers=admin_headers)
        assert r.status_code == 200
        assert r.headers["content-type"].startswith("application/vnd.openxmlformats")
        assert "program-expenses-" in r.headers["content-disposition"]

    def test_unknown_report(self, client, admin_headers):
        assert client.get("/reports/payroll", headers=admin_headers).status_code == 400

    def test_report_requires_admin(self, client, donor_headers):
        assert client.get("/reports/annual-report", headers=donor_headers).status_code == 403

    def test_summary(self, client, admin_headers):
        make_program()
        body = client.get("/analytics/summary", headers=admin_headers).json()
        assert body["active_programs"] == 1
        assert len(body["monthly_totals"]) == 12


class TestNavigation:
    def test_anonymous(self, client, db):
        assert client.get("/navigation").json() == []

    def test_donor_items(self, client, donor_headers):
        titles = [i["title"] for i in client.get("/navigation", headers=donor_headers).json()]
        assert "My Donations" in titles
        assert "User Management" not in titles


class TestDevRoutes:
    def test_disabled_by_default(self, client, admin_headers, monkeypatch):
        monkeypatch.setattr(main, "DEV_ROUTES_ENABLED", False)
        assert client.post("/dev/seed/programs", headers=admin_headers).status_code == 404

    def test_seed_and_recompute(self, client, admin_headers, monkeypatch):
        monkeypatch.setattr(main, "DEV_ROUTES_ENABLED", True)
        assert client.post("/dev/seed/programs", headers=admin_headers).json()["success"] is True
        assert client.post("/dev/seed/programs", headers=admin_headers).json()["success"] is False
        client.post("/dev/seed/donations", headers=admin_headers)
        client.post("/dev/seed/volunteers", headers=admin_headers)
        programs = client.post("/dev/recompute", headers=admin_headers).json()["programs"]
        assert len(programs) == 6
        assert all(p["raised"] > 0 and p["volunteers"] >= 2 for p in programs.values())
        assert client.delete("/dev/data", headers=admin_headers).json()["success"] is True

    def test_needs_admin(self, client, db, monkeypatch):
        monkeypatch.setattr(main, "DEV_ROUTES_ENABLED", True)
        donor = make_user("Dev", "dev@example.com")
        assert client.post("/dev/seed/programs", headers=auth_headers(donor)).status_code == 403
