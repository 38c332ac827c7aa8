"""
Request lifecycle service tests.

Covers:
  - create / edit / resubmit / transition / delete through the service layer
  - system log lines, notifications and the compliance-review gate
  - conditional status updates (stale views and lost races)
  - best-effort side effects
"""

from unittest import mock

import pytest
from sqlalchemy.orm.attributes import set_committed_value

from auditpack.core.exceptions import (
    ConflictError,
    InvalidTransition,
    NotFoundError,
    Unauthorized,
    ValidationError,
)
from auditpack.models import db
from auditpack.models.auth import ROLE_ADMIN, ROLE_EMPLOYEE, ROLE_MANAGER, ROLES
from auditpack.models.notification import Notification
from auditpack.models.request import (
    REQUEST_STATUSES,
    STATUS_APPROVED,
    STATUS_CHANGES_REQUESTED,
    STATUS_PENDING,
    STATUS_REJECTED,
    AuditRequest,
    Comment,
)
from auditpack.services import request_lifecycle as lc
from auditpack.services.access_control import REQUEST_TRANSITIONS, WHO_ADMIN, WHO_OWNER, WHO_REVIEWER
from auditpack.services.notification import NotificationService


def _log_lines(req):
    return [c.content for c in Comment.query.filter_by(request_id=req.id, is_system=True).order_by(Comment.id)]


def _notifications(profile):
    return Notification.query.filter_by(user_id=profile.id).order_by(Notification.id).all()


def _send_back(req, reviewer):
    lc.transition_request(req.id, STATUS_CHANGES_REQUESTED, reviewer, note="Attach the receipt")
    return req


# ═══════════════════════════════════════════════════════════════
# Create
# ═══════════════════════════════════════════════════════════════

class TestCreate:
    def test_creates_pending_request_with_review(self, employee, request_fields, reviewed):
        req = lc.create_request(employee, reviewed(request_fields))
        assert req.status == STATUS_PENDING
        assert req.employee_id == employee.id
        assert str(req.total_amount) == "184.50"
        assert req.ai_completeness_score is not None
        assert req.ai_summary
        assert _log_lines(req) == ["Request submitted by Erin Employee."]

    def test_fan_out_to_admins_and_department_managers(self, admin, manager, employee, outsider,
                                                       make_profile, request_fields, reviewed):
        eng_manager = make_profile("manager", "Engineering")
        req = lc.create_request(employee, reviewed(request_fields))

        for reviewer in (admin, manager):
            notes = _notifications(reviewer)
            assert len(notes) == 1
            assert notes[0].title == "New request: Client dinner"
            assert notes[0].content == "Erin Employee has created a request in Finance & Accounting."
            assert notes[0].request_id == req.id
        assert _notifications(eng_manager) == []
        assert _notifications(employee) == []
        assert _notifications(outsider) == []

    def test_missing_review_rejected(self, employee, request_fields):
        with pytest.raises(ValidationError) as exc:
            lc.create_request(employee, request_fields)
        assert "ai_review" in exc.value.details
        assert AuditRequest.query.count() == 0

    def test_review_for_other_content_rejected(self, employee, request_fields, reviewed):
        payload = reviewed(request_fields)
        payload["title"] = "Client dinner and drinks"
        with pytest.raises(ValidationError) as exc:
            lc.create_request(employee, payload)
        assert "ai_review" in exc.value.details

    def test_tampered_score_rejected(self, employee, request_fields, reviewed):
        payload = reviewed(request_fields)
        payload["ai_review"]["completeness_score"] = 100
        with pytest.raises(ValidationError):
            lc.create_request(employee, payload)

    def test_foreign_attachment_reference_rejected(self, employee, outsider, request_fields, reviewed):
        fields = {**request_fields, "attachments": [f"{outsider.id}/20260101T000000000000Z_receipt.pdf"]}
        with pytest.raises(ValidationError) as exc:
            lc.create_request(employee, reviewed(fields))
        assert "attachments" in exc.value.details

    def test_own_attachment_reference_accepted(self, employee, request_fields, reviewed):
        ref = f"{employee.id}/20260101T000000000000Z_receipt.pdf"
        req = lc.create_request(employee, reviewed({**request_fields, "attachments": [ref]}))
        assert req.attachments == [ref]

    def test_notification_failure_does_not_undo_create(self, employee, manager, request_fields, reviewed):
        with mock.patch.object(NotificationService, "fan_out_request_event",
                               side_effect=RuntimeError("mail relay down")):
            req = lc.create_request(employee, reviewed(request_fields))
        assert db.session.get(AuditRequest, req.id).status == STATUS_PENDING
        assert _notifications(manager) == []


# ═══════════════════════════════════════════════════════════════
# Transition
# ═══════════════════════════════════════════════════════════════

class TestTransition:
    def test_manager_approves(self, manager, new_request):
        result = lc.transition_request(new_request.id, STATUS_APPROVED, manager, note="Receipts OK")
        assert result["previous_status"] == STATUS_PENDING
        assert result["new_status"] == STATUS_APPROVED
        assert _log_lines(new_request)[-1] == (
            "Status changed from pending to approved by Milo Manager. Note: Receipts OK"
        )

    @pytest.mark.parametrize("target,title,words", [
        (STATUS_APPROVED, "Request Approved", "approved"),
        (STATUS_REJECTED, "Request Rejected", "rejected"),
        (STATUS_CHANGES_REQUESTED, "Request Update Required", "changes requested"),
    ])
    def test_owner_notified_once(self, manager, employee, new_request, target, title, words):
        lc.transition_request(new_request.id, target, manager)
        notes = _notifications(employee)
        assert len(notes) == 1
        assert notes[0].title == title
        assert notes[0].content == f'Your request "Client dinner" has been {words}.'

    def test_owner_cannot_approve_own_request(self, employee, new_request):
        with pytest.raises(InvalidTransition):
            lc.transition_request(new_request.id, STATUS_APPROVED, employee)
        assert new_request.status == STATUS_PENDING

    def test_invisible_request_is_restricted(self, outsider, new_request):
        with pytest.raises(Unauthorized):
            lc.transition_request(new_request.id, STATUS_APPROVED, outsider)

    def test_unknown_request(self, manager):
        with pytest.raises(NotFoundError):
            lc.transition_request("does-not-exist", STATUS_APPROVED, manager)

    def test_edge_outside_table(self, admin, manager, new_request):
        lc.transition_request(new_request.id, STATUS_APPROVED, manager)
        with pytest.raises(InvalidTransition):
            lc.transition_request(new_request.id, STATUS_REJECTED, admin)

    def test_unknown_status(self, admin, new_request):
        with pytest.raises(InvalidTransition):
            lc.transition_request(new_request.id, "archived", admin)

    def test_admin_reopens_approved(self, admin, manager, employee, new_request):
        lc.transition_request(new_request.id, STATUS_APPROVED, manager)
        lc.transition_request(new_request.id, STATUS_CHANGES_REQUESTED, admin)
        assert new_request.status == STATUS_CHANGES_REQUESTED
        assert [n.title for n in _notifications(employee)] == ["Request Approved", "Request Update Required"]

    def test_manager_cannot_reopen(self, manager, new_request):
        lc.transition_request(new_request.id, STATUS_REJECTED, manager)
        with pytest.raises(InvalidTransition):
            lc.transition_request(new_request.id, STATUS_CHANGES_REQUESTED, manager)

    def test_note_too_long(self, manager, new_request):
        with pytest.raises(ValidationError):
            lc.transition_request(new_request.id, STATUS_APPROVED, manager, note="x" * (lc.MAX_NOTE_LENGTH + 1))
        assert new_request.status == STATUS_PENDING

    def test_stale_expected_status_changes_nothing(self, admin, manager, new_request):
        lc.transition_request(new_request.id, STATUS_APPROVED, manager)
        lines = _log_lines(new_request)
        with pytest.raises(ConflictError) as exc:
            lc.transition_request(new_request.id, STATUS_CHANGES_REQUESTED, admin,
                                  expected_status=STATUS_PENDING)
        assert exc.value.stale
        assert exc.value.value == STATUS_APPROVED
        assert new_request.status == STATUS_APPROVED
        assert _log_lines(new_request) == lines

    def test_lost_race_changes_nothing(self, admin, new_request):
        # Another reviewer approved after this session loaded the request
        db.session.execute(
            db.update(AuditRequest).where(AuditRequest.id == new_request.id).values(status=STATUS_APPROVED)
        )
        db.session.commit()
        assert new_request.status == STATUS_APPROVED
        set_committed_value(new_request, "status", STATUS_PENDING)
        lines = _log_lines(new_request)

        with pytest.raises(ConflictError) as exc:
            lc.transition_request(new_request.id, STATUS_REJECTED, admin)

        assert exc.value.value == STATUS_APPROVED
        assert lc._fresh_status(new_request.id) == STATUS_APPROVED
        assert _log_lines(new_request) == lines

    def test_owner_resubmit_via_transition_needs_fresh_review(self, manager, employee, new_request,
                                                              request_fields, reviewed):
        _send_back(new_request, manager)
        with pytest.raises(ValidationError):
            lc.transition_request(new_request.id, STATUS_PENDING, employee)
        review = reviewed(request_fields)["ai_review"]
        lc.transition_request(new_request.id, STATUS_PENDING, employee, ai_review=review)
        assert new_request.status == STATUS_PENDING

    def test_department_read_at_transition_time(self, manager, make_profile, new_request):
        eng_manager = make_profile("manager", "Engineering")
        new_request.department = "Engineering"
        db.session.commit()
        with pytest.raises(Unauthorized):
            lc.transition_request(new_request.id, STATUS_APPROVED, manager)
        lc.transition_request(new_request.id, STATUS_APPROVED, eng_manager)
        assert new_request.status == STATUS_APPROVED


# ═══════════════════════════════════════════════════════════════
# Edit & resubmit
# ═══════════════════════════════════════════════════════════════

class TestEditAndResubmit:
    def test_edit_only_while_changes_requested(self, employee, new_request):
        with pytest.raises(InvalidTransition):
            lc.edit_request(new_request.id, employee, {"title": "New title"})

    def test_only_owner_edits(self, manager, new_request):
        _send_back(new_request, manager)
        with pytest.raises(Unauthorized):
            lc.edit_request(new_request.id, manager, {"title": "Manager edit"})

    def test_edit_keeps_unsent_fields(self, manager, employee, request_fields, reviewed):
        req = lc.create_request(employee, reviewed({**request_fields, "category": "travel"}))
        _send_back(req, manager)
        lc.edit_request(req.id, employee, {"title": "Taxi to client"})
        assert req.title == "Taxi to client"
        assert req.category == "travel"
        assert req.status == STATUS_CHANGES_REQUESTED

    def test_edit_validates_merged_fields(self, manager, employee, new_request):
        _send_back(new_request, manager)
        with pytest.raises(ValidationError) as exc:
            lc.edit_request(new_request.id, employee, {"total_amount": "-5"})
        assert "total_amount" in exc.value.details

    def test_resubmit_moves_to_pending_and_fans_out(self, admin, manager, employee, new_request,
                                                    request_fields, reviewed):
        _send_back(new_request, manager)
        edited = {**request_fields, "description": request_fields["description"] + " Receipt attached."}
        lc.resubmit_request(new_request.id, employee, reviewed(edited))

        assert new_request.status == STATUS_PENDING
        assert new_request.description.endswith("Receipt attached.")
        assert _log_lines(new_request)[-1] == "Status changed from changes_requested to pending by Erin Employee."
        for reviewer in (admin, manager):
            assert _notifications(reviewer)[-1].title == "Request resubmitted: Client dinner"
        assert [n.title for n in _notifications(employee)] == ["Request Update Required"]

    def test_resubmit_with_stale_review(self, manager, employee, new_request, request_fields, reviewed):
        _send_back(new_request, manager)
        payload = reviewed(request_fields)
        payload["title"] = "Edited after scoring"
        with pytest.raises(ValidationError):
            lc.resubmit_request(new_request.id, employee, payload)
        db.session.expire_all()
        req = db.session.get(AuditRequest, new_request.id)
        assert req.status == STATUS_CHANGES_REQUESTED
        assert req.title == "Client dinner"

    def test_resubmit_to_other_department_moves_reviewers(self, manager, employee, make_profile,
                                                          new_request, request_fields, reviewed):
        eng_manager = make_profile("manager", "Engineering")
        _send_back(new_request, manager)
        lc.resubmit_request(new_request.id, employee, reviewed({**request_fields, "department": "Engineering"}))
        assert _notifications(eng_manager)[-1].title == "Request resubmitted: Client dinner"
        with pytest.raises(Unauthorized):
            lc.get_request_for_viewer(new_request.id, manager)


# ═══════════════════════════════════════════════════════════════
# Delete & listing
# ═══════════════════════════════════════════════════════════════

class TestDeleteAndList:
    def test_admin_deletes_with_comments_notifications_kept(self, admin, manager, new_request):
        request_id = new_request.id
        assert Notification.query.filter_by(request_id=request_id).count() == 2

        lc.delete_request(request_id, admin)

        assert db.session.get(AuditRequest, request_id) is None
        assert Comment.query.filter_by(request_id=request_id).count() == 0
        kept = _notifications(manager)
        assert len(kept) == 1 and kept[0].request_id is None

    def test_non_admin_cannot_delete(self, manager, employee, new_request):
        for actor in (manager, employee):
            with pytest.raises(Unauthorized):
                lc.delete_request(new_request.id, actor)

    def test_list_filters(self, manager, employee, new_request, request_fields, reviewed):
        second = lc.create_request(employee, reviewed({**request_fields, "title": "Hotel Berlin",
                                                      "category": "travel"}))
        lc.transition_request(second.id, STATUS_APPROVED, manager)

        assert [r.id for r in lc.list_requests(manager, scope="active")] == [new_request.id]
        assert [r.id for r in lc.list_requests(manager, scope="archive")] == [second.id]
        assert [r.id for r in lc.list_requests(manager, category="travel")] == [second.id]
        assert [r.id for r in lc.list_requests(manager, q="berlin")] == [second.id]

    def test_list_rejects_unknown_scope(self, employee):
        with pytest.raises(ValidationError):
            lc.list_requests(employee, scope="everything")


# ═══════════════════════════════════════════════════════════════
# Transition table sweep & owner immutability
# ═══════════════════════════════════════════════════════════════

def _edge_open_to(role, source, target):
    who = REQUEST_TRANSITIONS.get((source, target))
    if who == WHO_OWNER:
        return role == ROLE_EMPLOYEE
    if who == WHO_REVIEWER:
        return role in (ROLE_ADMIN, ROLE_MANAGER)
    if who == WHO_ADMIN:
        return role == ROLE_ADMIN
    return False


# (role, from, to) triples outside the table; the employee acts on their own
# request, the manager is the request department's manager
CLOSED_EDGES = [
    (role, source, target)
    for role in ROLES
    for source in sorted(REQUEST_STATUSES)
    for target in sorted(REQUEST_STATUSES)
    if not _edge_open_to(role, source, target)
]


class TestTransitionTable:
    @pytest.mark.parametrize("role,source,target", CLOSED_EDGES)
    def test_closed_edge_changes_nothing(self, admin, manager, employee, new_request, role, source, target):
        actor = {ROLE_ADMIN: admin, ROLE_MANAGER: manager, ROLE_EMPLOYEE: employee}[role]
        new_request.status = source
        db.session.commit()
        comments_before = Comment.query.filter_by(request_id=new_request.id).count()

        with pytest.raises(InvalidTransition):
            lc.transition_request(new_request.id, target, actor, note="x")

        db.session.expire_all()
        req = db.session.get(AuditRequest, new_request.id)
        assert req.status == source
        assert Comment.query.filter_by(request_id=new_request.id).count() == comments_before

    def test_every_open_edge_is_in_the_table(self):
        open_pairs = {(s, t) for r in ROLES for s in REQUEST_STATUSES for t in REQUEST_STATUSES
                      if _edge_open_to(r, s, t)}
        assert open_pairs == set(REQUEST_TRANSITIONS)

    def test_non_string_target_is_invalid(self, manager, new_request):
        with pytest.raises(InvalidTransition):
            lc.transition_request(new_request.id, ["approved"], manager)
        assert db.session.get(AuditRequest, new_request.id).status == STATUS_PENDING

    def test_non_string_note_rejected(self, manager, new_request):
        with pytest.raises(ValidationError) as exc:
            lc.transition_request(new_request.id, STATUS_APPROVED, manager, note={"text": "ok"})
        assert "note" in exc.value.details
        assert db.session.get(AuditRequest, new_request.id).status == STATUS_PENDING


class TestOwnerImmutable:
    def test_edit_ignores_employee_id(self, manager, employee, outsider, new_request):
        _send_back(new_request, manager)
        lc.edit_request(new_request.id, employee,
                        {"title": "Client dinner (edited)", "employee_id": outsider.id})
        db.session.expire_all()
        assert db.session.get(AuditRequest, new_request.id).employee_id == employee.id

    def test_resubmit_ignores_employee_id(self, manager, employee, outsider, new_request,
                                          request_fields, reviewed):
        _send_back(new_request, manager)
        lc.resubmit_request(new_request.id, employee, {**reviewed(request_fields), "employee_id": outsider.id})
        db.session.expire_all()
        req = db.session.get(AuditRequest, new_request.id)
        assert req.status == STATUS_PENDING
        assert req.employee_id == employee.id

    def test_owner_survives_every_transition(self, admin, manager, employee, new_request,
                                             request_fields, reviewed):
        _send_back(new_request, manager)
        review = reviewed(request_fields)["ai_review"]
        lc.transition_request(new_request.id, STATUS_PENDING, employee, ai_review=review)
        lc.transition_request(new_request.id, STATUS_REJECTED, manager)
        lc.transition_request(new_request.id, STATUS_CHANGES_REQUESTED, admin)
        db.session.expire_all()
        assert db.session.get(AuditRequest, new_request.id).employee_id == employee.id

    def test_api_edit_and_resubmit_ignore_employee_id(self, client, auth_headers, manager, employee,
                                                      outsider, new_request, request_fields, reviewed):
        _send_back(new_request, manager)
        headers = auth_headers(employee)
        res = client.put(f"/api/v1/requests/{new_request.id}",
                         json={"title": "Client dinner", "employee_id": outsider.id}, headers=headers)
        assert res.status_code == 200
        assert res.get_json()["employee_id"] == employee.id

        res = client.post(f"/api/v1/requests/{new_request.id}/resubmit",
                          json={**reviewed(request_fields), "employee_id": outsider.id}, headers=headers)
        assert res.status_code == 200
        assert res.get_json()["employee_id"] == employee.id


class TestEditClearsReview:
    def test_changed_fields_drop_stored_score(self, manager, employee, new_request):
        assert new_request.ai_completeness_score is not None
        _send_back(new_request, manager)
        lc.edit_request(new_request.id, employee,
                        {"description": new_request.description + " Receipt to follow."})
        req = db.session.get(AuditRequest, new_request.id)
        assert req.ai_completeness_score is None
        assert req.ai_summary is None
        assert req.ai_feedback == []

    def test_unchanged_fields_keep_score(self, manager, employee, new_request):
        score = new_request.ai_completeness_score
        _send_back(new_request, manager)
        lc.edit_request(new_request.id, employee, {"title": new_request.title})
        assert db.session.get(AuditRequest, new_request.id).ai_completeness_score == score

    def test_resubmit_stores_fresh_score(self, manager, employee, new_request, request_fields, reviewed):
        _send_back(new_request, manager)
        lc.edit_request(new_request.id, employee, {"description": request_fields["description"] + " More."})
        assert new_request.ai_completeness_score is None
        lc.resubmit_request(new_request.id, employee, reviewed(request_fields))
        assert db.session.get(AuditRequest, new_request.id).ai_completeness_score == 75
