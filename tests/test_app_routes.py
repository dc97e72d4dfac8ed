import app as app_module
import errors
import realtime

from conftest import login_as


def _submit_complaint(client):
    resp = client.post("/complaints", json={
        "title": "Water Supply Issue",
        "description": "No water on 3rd street since Monday",
        "category": "Water Supply",
    })
    assert resp.status_code == 201
    return resp.get_json()["complaint"]


def _submit_document(client, attachments=("uploads/hospital-letter.pdf",)):
    return client.post("/documents", json={
        "document_type": "birth",
        "purpose": "School admission",
        "attachments": list(attachments),
        "form_details": {
            "child_name": "Asha Rao",
            "father_name": "Ravi Rao",
            "mother_name": "Meena Rao",
            "date_of_birth": "2024-05-01",
            "place_of_birth": "City Hospital",
            "address": "12 Lake Road",
        },
    })


def test_healthz_and_anonymous_session(client):
    assert client.get("/healthz").get_json() == {"status": "ok"}
    assert client.get("/auth/session").get_json() == {"authenticated": False, "profile": None}


def test_gated_routes_require_authentication(client):
    for path in ("/complaints", "/documents", "/profile", "/api/stats", "/admin/staff"):
        resp = client.get(path)
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "authentication_required"


def test_signup_sets_session_and_defaults_to_citizen(client):
    resp = client.post("/auth/signup", json={
        "email": "new@example.com",
        "password": "secret1",
        "confirm_password": "secret1",
        "name": "New Citizen",
        "role": "admin",
    })
    assert resp.status_code == 201
    profile = resp.get_json()["profile"]
    assert profile["role"] == "citizen"

    session_info = client.get("/auth/session").get_json()
    assert session_info["authenticated"] is True
    assert session_info["role"] == "citizen"


def test_signup_validation_errors(client):
    resp = client.post("/auth/signup", json={"email": "x@y.com", "password": "secret1", "confirm_password": "other1", "name": "X"})
    assert resp.status_code == 400
    body = resp.get_json()
    assert body["error"] == "validation_failed"
    assert body["fields"] == {"confirm_password": "Passwords do not match"}


def test_login_and_logout(client):
    stub = client.models_stub
    stub.identities["cit@example.com"] = {"id": "u-9", "password": "secret1"}

    resp = client.post("/auth/login", json={"email": "cit@example.com", "password": "wrong"})
    assert resp.status_code == 401

    resp = client.post("/auth/login", data={"email": "Cit@Example.com", "password": "secret1"})
    assert resp.status_code == 200
    assert resp.get_json()["profile"]["id"] == "u-9"
    assert client.get("/auth/session").get_json()["authenticated"] is True

    assert client.post("/auth/logout").get_json() == {"status": "signed_out"}
    assert client.get("/auth/session").get_json()["authenticated"] is False


def test_profile_fetch_failure_signs_out(client):
    login_as(client, "u-1")
    client.models_stub.profile_fetch_fails = True
    resp = client.get("/complaints")
    assert resp.status_code == 503
    assert resp.get_json()["error"] == "profile_fetch_failed"
    with client.session_transaction() as sess:
        assert "user_id" not in sess

    client.models_stub.profile_fetch_fails = False
    assert client.get("/complaints").status_code == 401


def test_stale_session_is_cleared(client):
    with client.session_transaction() as sess:
        sess["user_id"] = "u-deleted"
    assert client.get("/auth/session").get_json()["authenticated"] is False
    with client.session_transaction() as sess:
        assert "user_id" not in sess


def test_profile_update(client):
    login_as(client, "u-1")
    resp = client.post("/profile", json={"name": "Renamed", "phone": "555-123-4567", "role": "admin"})
    assert resp.status_code == 200
    profile = resp.get_json()["profile"]
    assert profile["name"] == "Renamed"
    assert profile["role"] == "citizen"

    assert client.post("/profile", json={"name": ""}).status_code == 400


def test_complaint_lifecycle_scenario(client):
    login_as(client, "u-citizen", "citizen")
    complaint = _submit_complaint(client)
    assert complaint["status"] == "pending"
    assert complaint["assigned_to"] is None
    assert complaint["available_actions"] == []

    resp = client.post(f"/complaints/{complaint['id']}/action", json={"action": "markResolved"})
    assert resp.status_code == 403
    assert client.models_stub.complaints[complaint["id"]]["status"] == "pending"

    login_as(client, "u-staff", "staff")
    listing = client.get("/complaints").get_json()["complaints"]
    assert listing[0]["available_actions"] == ["markInProgress", "markRejected"]

    resp = client.post(f"/complaints/{complaint['id']}/action", json={"action": "markInProgress"})
    assert resp.status_code == 200
    body = resp.get_json()["complaint"]
    assert body["status"] == "in-progress"
    assert body["assigned_to"] == "u-staff"
    assert body["available_actions"] == ["markResolved", "markRejected"]

    resp = client.post(f"/complaints/{complaint['id']}/action", json={"action": "markResolved", "expected_version": 2})
    assert resp.status_code == 200
    assert resp.get_json()["complaint"]["status"] == "resolved"

    stats = client.get("/api/stats").get_json()
    assert stats["resolved_this_week"] == 1
    assert stats["open_complaints"] == 0


def test_complaint_transition_errors(client):
    login_as(client, "u-citizen", "citizen")
    complaint = _submit_complaint(client)
    login_as(client, "u-staff", "staff")

    resp = client.post(f"/complaints/{complaint['id']}/action", json={"action": "markResolved"})
    assert resp.status_code == 409
    assert resp.get_json()["error"] == "invalid_transition"

    resp = client.post(f"/complaints/{complaint['id']}/action", json={"action": "markInProgress", "expected_version": 5})
    assert resp.status_code == 409
    assert resp.get_json()["error"] == "concurrent_update"

    resp = client.post(f"/complaints/{complaint['id']}/action", json={"action": "markInProgress", "expected_version": "x"})
    assert resp.status_code == 400

    resp = client.post(f"/complaints/{complaint['id']}/action", json={"action": "archive"})
    assert resp.status_code == 400

    assert client.post("/complaints/missing/action", json={"action": "markInProgress"}).status_code == 404


def test_non_string_actions_are_rejected_as_validation_errors(client):
    login_as(client, "u-citizen", "citizen")
    complaint = _submit_complaint(client)
    document_request = _submit_document(client).get_json()["document_request"]
    login_as(client, "u-staff", "staff")

    resp = client.post(f"/complaints/{complaint['id']}/action", json={"action": ["markResolved"]})
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "validation_failed"
    assert resp.get_json()["fields"] == {"action": "Unsupported action."}

    resp = client.post(f"/documents/{document_request['id']}/action", json={"action": 5})
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "validation_failed"
    assert client.models_stub.complaints[complaint["id"]]["status"] == "pending"


def test_citizens_only_see_their_own_complaints(client):
    login_as(client, "u-owner", "citizen")
    complaint = _submit_complaint(client)

    login_as(client, "u-other", "citizen")
    assert client.get("/complaints").get_json()["complaints"] == []
    assert client.get(f"/complaints/{complaint['id']}").status_code == 403
    assert client.post(f"/complaints/{complaint['id']}/comments", json={"text": "hi"}).status_code == 403

    login_as(client, "u-owner", "citizen")
    detail = client.get(f"/complaints/{complaint['id']}").get_json()
    assert detail["complaint"]["id"] == complaint["id"]
    assert detail["comments"] == []

    assert client.get("/complaints?status=bogus").status_code == 400


def test_comments_mark_staff_authors(client):
    login_as(client, "u-owner", "citizen")
    complaint = _submit_complaint(client)
    resp = client.post(f"/complaints/{complaint['id']}/comments", json={"text": "Any update?"})
    assert resp.status_code == 201
    assert resp.get_json()["comment"]["is_staff"] is False

    login_as(client, "u-staff", "staff")
    resp = client.post(f"/complaints/{complaint['id']}/comments", data={"text": "Crew dispatched"})
    assert resp.get_json()["comment"]["is_staff"] is True

    comments = client.get(f"/complaints/{complaint['id']}/comments").get_json()["comments"]
    assert [c["text"] for c in comments] == ["Any update?", "Crew dispatched"]

    assert client.post(f"/complaints/{complaint['id']}/comments", json={"text": " "}).status_code == 400


def test_document_request_requires_attachments(client):
    login_as(client, "u-citizen", "citizen")
    resp = _submit_document(client, attachments=())
    assert resp.status_code == 400
    assert resp.get_json()["fields"] == {"attachments": "Please upload required documents"}
    assert not any(name == "create_document_request" for name, _ in client.models_stub.calls)


def test_document_request_rejects_non_list_attachments(client):
    login_as(client, "u-citizen", "citizen")
    resp = client.post("/documents", json={"document_type": "income", "purpose": "Loan application", "attachments": 5})
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "validation_failed"
    assert "attachments" in resp.get_json()["fields"]
    assert not any(name == "create_document_request" for name, _ in client.models_stub.calls)


def test_document_request_lifecycle(client):
    login_as(client, "u-citizen", "citizen")
    resp = _submit_document(client)
    assert resp.status_code == 201
    document_request = resp.get_json()["document_request"]
    assert document_request["status"] == "pending"
    assert document_request["form_details"]["child_name"] == "Asha Rao"

    fetched = client.get(f"/documents/{document_request['id']}").get_json()["document_request"]
    for key in ("document_type", "purpose", "attachments", "form_details", "status"):
        assert fetched[key] == document_request[key]

    resp = client.post(f"/documents/{document_request['id']}/action", json={"action": "approve"})
    assert resp.status_code == 403

    login_as(client, "u-staff", "staff")
    resp = client.post(f"/documents/{document_request['id']}/action", json={"action": "approve"})
    assert resp.status_code == 200
    body = resp.get_json()["document_request"]
    assert body["status"] == "approved"
    assert body["approved_by"] == "u-staff"
    assert body["available_actions"] == []

    resp = client.post(f"/documents/{document_request['id']}/action", json={"action": "reject"})
    assert resp.status_code == 409


def test_document_form_post_with_json_details(client):
    login_as(client, "u-citizen", "citizen")
    resp = client.post("/documents", data={
        "document_type": "income",
        "purpose": "Scholarship application",
        "attachments": ["uploads/salary.pdf", "uploads/id.pdf"],
        "form_details": '{"employer": "Mill"}',
    })
    assert resp.status_code == 201
    assert resp.get_json()["document_request"]["attachments"] == ["uploads/salary.pdf", "uploads/id.pdf"]

    resp = client.post("/documents", data={
        "document_type": "income", "purpose": "Scholarship", "attachments": "a.pdf", "form_details": "{oops",
    })
    assert resp.status_code == 400


def test_document_reject_with_reason(client):
    login_as(client, "u-citizen", "citizen")
    document_request = _submit_document(client).get_json()["document_request"]
    login_as(client, "u-admin", "admin")
    client.post(f"/documents/{document_request['id']}/action", json={"action": "verify"})
    resp = client.post(f"/documents/{document_request['id']}/action", json={"action": "reject", "rejection_reason": "Illegible"})
    body = resp.get_json()["document_request"]
    assert body["status"] == "rejected"
    assert body["verified_by"] == "u-admin"
    assert body["rejection_reason"] == "Illegible"


def test_public_tracking(client):
    login_as(client, "u-citizen", "citizen")
    complaint = _submit_complaint(client)
    client.post("/auth/logout")

    resp = client.get(f"/track/complaint/{complaint['id']}")
    assert resp.status_code == 200
    assert resp.get_json()["record"]["status"] == "pending"
    assert client.get("/track/document/nope").status_code == 404


def test_announcements(client):
    assert client.get("/announcements").get_json() == {"announcements": []}

    login_as(client, "u-citizen", "citizen")
    payload = {"title": "Water cut", "content": "Tuesday 9-5", "category": "infrastructure", "important": True}
    assert client.post("/announcements", json=payload).status_code == 403

    login_as(client, "u-staff", "staff")
    resp = client.post("/announcements", json=payload)
    assert resp.status_code == 201
    announcement_id = resp.get_json()["announcement"]["id"]

    resp = client.post(f"/announcements/{announcement_id}", json=dict(payload, title="Water cut moved"))
    assert resp.get_json()["announcement"]["title"] == "Water cut moved"
    assert client.post(f"/announcements/{announcement_id}/delete").status_code == 200
    assert client.post(f"/announcements/{announcement_id}/delete").status_code == 404


def test_staff_management_is_admin_only(client):
    login_as(client, "u-staff", "staff")
    assert client.get("/admin/staff").status_code == 403

    login_as(client, "u-admin", "admin")
    resp = client.post("/admin/staff", json={"email": "clerk@city.gov", "position": "Clerk", "department": "Water"})
    assert resp.status_code == 201
    staff_id = resp.get_json()["staff"]["id"]
    assert client.models_stub.calls[-1] == ("add_staff_member", {
        "admin_id": "u-admin", "email": "clerk@city.gov", "position": "Clerk", "department": "Water",
    })

    assert client.post(f"/admin/staff/{staff_id}/toggle").get_json()["staff"]["is_active"] is False
    assert len(client.get("/admin/staff").get_json()["staff"]) == 1
    assert client.post(f"/admin/staff/{staff_id}/remove").get_json()["removed"] == staff_id

    resp = client.post("/admin/staff", json={"email": "", "position": "", "department": ""})
    assert resp.get_json()["message"] == "Please fill in all required fields"


def test_unknown_route_returns_json(client):
    resp = client.get("/nowhere")
    assert resp.status_code == 404
    assert resp.get_json()["error"] == "not_found"


def test_unexpected_errors_return_500(client, monkeypatch):
    login_as(client, "u-staff", "staff")

    def explode():
        raise RuntimeError("aggregation bug")

    monkeypatch.setattr(client.models_stub, "get_dashboard_stats", explode)
    resp = client.get("/api/stats")
    assert resp.status_code == 500
    assert resp.get_json()["error"] == "internal_error"


def test_change_stream_is_staff_only(client):
    login_as(client, "u-citizen", "citizen")
    assert client.get("/api/changes").status_code == 403
    login_as(client, "u-staff", "staff")
    assert client.get("/api/changes?tables=invoices").status_code == 400


def test_change_stream_emits_change_then_stats(client):
    login_as(client, "u-staff", "staff")
    resp = client.get("/api/changes")
    assert resp.status_code == 200
    assert resp.mimetype == "text/event-stream"

    chunks = iter(resp.response)
    ready = next(chunks)
    ready = ready.decode() if isinstance(ready, bytes) else ready
    assert ready.startswith("event: ready")

    realtime.notifier.publish(realtime.ChangeEvent.create("complaints", "INSERT", "c-42", "u-1"))
    change = next(chunks)
    change = change.decode() if isinstance(change, bytes) else change
    assert change.startswith("event: change")
    assert '"row_id": "c-42"' in change
    stats = next(chunks)
    stats = stats.decode() if isinstance(stats, bytes) else stats
    assert stats.startswith("event: stats")
    resp.close()


def test_json_provider_serializes_dates():
    from datetime import date, datetime, timezone

    provider = app_module.app.json
    assert provider.dumps({"d": date(2026, 1, 2)}) == '{"d": "2026-01-02"}'
    assert "2026-01-02T03:04:05+00:00" in provider.dumps({"t": datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)})


def test_change_stream_reports_initial_stats_failure(client, monkeypatch):
    login_as(client, "u-staff", "staff")

    def unavailable(now=None):
        raise errors.StoreUnavailable("Database is unreachable.")

    monkeypatch.setattr(client.models_stub, "get_dashboard_stats", unavailable)
    resp = client.get("/api/changes")
    assert resp.status_code == 200

    first = next(iter(resp.response))
    first = first.decode() if isinstance(first, bytes) else first
    assert first.startswith("event: error")
    assert '"store_unavailable"' in first
    resp.close()
