import importlib
import os
import tempfile

import pytest


os.environ["SKIP_SCHEMA_UPDATES"] = "1"
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="portal-logs-"))
app_module = importlib.import_module("app")
workflow = importlib.import_module("workflow")
errors = importlib.import_module("errors")


class ModelsStub:
    """In-memory stand-in for the data layer; transitions still go through the workflow guards."""

    def __init__(self):
        self.calls = []
        self.profiles = {}
        self.complaints = {}
        self.comments = []
        self.document_requests = {}
        self.announcements = {}
        self.staff = {}
        self.identities = {}
        self.profile_fetch_fails = False
        self._seq = 0

    def _record(self, name, **data):
        self.calls.append((name, data))

    def _next_id(self, prefix):
        self._seq += 1
        return f"{prefix}-{self._seq}"

    # sessions & profiles
    def load_session_profile(self, user_id):
        if self.profile_fetch_fails:
            raise errors.ProfileFetchError("Unable to load your profile. Please sign in again.")
        return self.profiles.get(user_id)

    def authenticate_identity(self, email, password):
        identity = self.identities.get(email)
        if identity and identity["password"] == password:
            return {"id": identity["id"], "email": email, "user_metadata": identity.get("metadata", {})}
        return None

    def ensure_profile(self, identity):
        if identity["id"] not in self.profiles:
            self.profiles[identity["id"]] = {
                "id": identity["id"], "email": identity["email"], "name": "Restored", "role": "citizen",
            }
        return self.profiles[identity["id"]]

    def register_account(self, email, password, metadata):
        self._record("register_account", email=email, metadata=metadata)
        user_id = self._next_id("u")
        self.identities[email] = {"id": user_id, "password": password, "metadata": metadata}
        self.profiles[user_id] = {
            "id": user_id, "email": email, "name": metadata.get("name"),
            "role": metadata.get("role", "citizen"), "phone": metadata.get("phone"),
        }
        return self.profiles[user_id]

    def update_profile_info(self, profile_id, name, phone=None, address=None):
        self.profiles[profile_id].update({"name": name, "phone": phone, "address": address})
        return self.profiles[profile_id]

    # complaints
    def create_complaint(self, owner_id, title, description, category, location=None):
        complaint_id = self._next_id("c")
        self.complaints[complaint_id] = {
            "id": complaint_id, "user_id": owner_id, "title": title, "description": description,
            "category": category, "location": location, "status": "pending", "assigned_to": None, "version": 1,
        }
        return dict(self.complaints[complaint_id])

    def get_complaint_by_id(self, complaint_id):
        complaint = self.complaints.get(complaint_id)
        return dict(complaint) if complaint else None

    def get_complaints_for_user(self, actor, status_filter=None):
        self._record("get_complaints_for_user", actor=actor, status_filter=status_filter)
        rows = [dict(c) for c in self.complaints.values() if actor.is_staff or c["user_id"] == actor.id]
        return [r for r in rows if not status_filter or r["status"] == status_filter]

    def transition_complaint(self, complaint_id, actor, action, expected_version=None):
        workflow.require_staff(actor, action)
        complaint = self.complaints.get(complaint_id)
        if not complaint:
            raise errors.NotFound("Complaint not found.")
        if expected_version is not None and complaint["version"] != expected_version:
            raise errors.ConcurrentUpdate("Complaint was changed by someone else.")
        complaint.update(workflow.plan_complaint_transition(complaint, actor, action))
        complaint["version"] += 1
        return dict(complaint)

    def get_complaint_comments(self, complaint_id):
        return [c for c in self.comments if c["complaint_id"] == complaint_id]

    def add_complaint_comment(self, complaint_id, actor, text):
        comment = {"id": self._next_id("cm"), "complaint_id": complaint_id, "user_id": actor.id,
                   "text": text, "is_staff": actor.is_staff}
        self.comments.append(comment)
        return comment

    # document requests
    def create_document_request(self, owner_id, document_type, purpose, attachments, form_details=None, additional_notes=None):
        self._record("create_document_request", owner_id=owner_id, attachments=attachments, form_details=form_details)
        request_id = self._next_id("d")
        self.document_requests[request_id] = {
            "id": request_id, "user_id": owner_id, "document_type": document_type, "purpose": purpose,
            "attachments": list(attachments), "form_details": form_details or {},
            "additional_notes": additional_notes, "status": "pending", "version": 1,
            "verified_by": None, "approved_by": None, "rejection_reason": None,
        }
        return dict(self.document_requests[request_id])

    def get_document_request_by_id(self, request_id):
        document_request = self.document_requests.get(request_id)
        return dict(document_request) if document_request else None

    def get_document_requests_for_user(self, actor, status_filter=None):
        rows = [dict(d) for d in self.document_requests.values() if actor.is_staff or d["user_id"] == actor.id]
        return [r for r in rows if not status_filter or r["status"] == status_filter]

    def transition_document_request(self, request_id, actor, action, rejection_reason=None, expected_version=None):
        workflow.require_staff(actor, action)
        document_request = self.document_requests.get(request_id)
        if not document_request:
            raise errors.NotFound("Document request not found.")
        document_request.update(workflow.plan_document_transition(document_request, actor, action, rejection_reason))
        document_request["version"] += 1
        return dict(document_request)

    # tracking, announcements, staff, stats
    def track_entity(self, kind, tracking_id):
        source = self.complaints if kind == "complaint" else self.document_requests if kind == "document" else {}
        row = source.get(tracking_id)
        if not row:
            raise errors.NotFound("No record matches this tracking ID.")
        return {"id": row["id"], "kind": kind, "status": row["status"]}

    def get_announcements(self, limit=None):
        rows = list(self.announcements.values())
        return rows[:limit] if limit else rows

    def create_announcement(self, created_by, title, content, category, important=False):
        announcement_id = self._next_id("a")
        self.announcements[announcement_id] = {
            "id": announcement_id, "title": title, "content": content, "category": category,
            "important": important, "created_by": created_by,
        }
        return self.announcements[announcement_id]

    def update_announcement(self, announcement_id, title, content, category, important=False):
        if announcement_id not in self.announcements:
            raise errors.NotFound("Announcement not found.")
        self.announcements[announcement_id].update(
            {"title": title, "content": content, "category": category, "important": important}
        )
        return self.announcements[announcement_id]

    def delete_announcement(self, announcement_id):
        if self.announcements.pop(announcement_id, None) is None:
            raise errors.NotFound("Announcement not found.")

    def get_staff_members(self):
        return list(self.staff.values())

    def add_staff_member(self, admin_id, email, position, department):
        self._record("add_staff_member", admin_id=admin_id, email=email, position=position, department=department)
        staff_id = self._next_id("s")
        self.staff[staff_id] = {"id": staff_id, "email": email, "position": position,
                                "department": department, "supervisor_id": admin_id, "is_active": True}
        return self.staff[staff_id]

    def toggle_staff_status(self, staff_id):
        member = self.staff[staff_id]
        member["is_active"] = not member["is_active"]
        return member

    def remove_staff_member(self, staff_id):
        self.staff.pop(staff_id)
        return "u-removed"

    def get_dashboard_stats(self, now=None):
        return {
            "open_complaints": sum(1 for c in self.complaints.values() if c["status"] != "resolved"),
            "pending_documents": sum(1 for d in self.document_requests.values() if d["status"] == "pending"),
            "resolved_this_week": sum(1 for c in self.complaints.values() if c["status"] == "resolved"),
            "registered_citizens": len(self.profiles),
        }


@pytest.fixture
def client(monkeypatch):
    stub = ModelsStub()
    monkeypatch.setattr(app_module, "models", stub)
    app_module.app.config["TESTING"] = True
    with app_module.app.test_client() as c:
        c.models_stub = stub
        yield c


def login_as(client, user_id="u-citizen", role="citizen", name="Test User"):
    client.models_stub.profiles[user_id] = {
        "id": user_id, "name": name, "email": f"{user_id}@example.com", "role": role,
    }
    with client.session_transaction() as sess:
        sess["user_id"] = user_id
