"""
Request access control tests.

Covers:
  - visibility by role / department / ownership
  - the transition table, including who may take each edge
  - permission summaries and visible-request queries
"""

from datetime import date

import pytest

from auditpack.models import db
from auditpack.models.auth import ROLE_EMPLOYEE, ROLE_MANAGER
from auditpack.models.request import (
    STATUS_APPROVED,
    STATUS_CHANGES_REQUESTED,
    STATUS_DRAFT,
    STATUS_IN_REVIEW,
    STATUS_PENDING,
    STATUS_REJECTED,
    AuditRequest,
)
from auditpack.services import access_control as ac

FINANCE = "Finance & Accounting"
ENGINEERING = "Engineering"


def _request(owner, status=STATUS_PENDING, department=FINANCE):
    return AuditRequest(
        employee_id=owner.id, department=department, status=status,
        title="Taxi", category="expense", description="Airport taxi",
        total_amount=42, audit_date=date(2026, 9, 30),
    )


# ═══════════════════════════════════════════════════════════════
# Visibility
# ═══════════════════════════════════════════════════════════════

class TestCanView:
    def test_owner_sees_own_request(self, employee):
        assert ac.can_view(employee, _request(employee))

    def test_other_employee_same_department_cannot_see(self, employee, make_profile):
        colleague = make_profile(ROLE_EMPLOYEE, FINANCE)
        assert not ac.can_view(colleague, _request(employee))

    def test_manager_of_department_sees(self, employee, manager):
        assert ac.can_view(manager, _request(employee))

    def test_manager_of_other_department_cannot_see(self, employee, make_profile):
        eng_manager = make_profile(ROLE_MANAGER, ENGINEERING)
        assert not ac.can_view(eng_manager, _request(employee))

    def test_manager_without_department_sees_only_own(self, employee, make_profile):
        floating = make_profile(ROLE_MANAGER, None)
        assert not ac.can_view(floating, _request(employee))
        assert ac.can_view(floating, _request(floating, department=FINANCE))

    def test_admin_sees_everything(self, employee, admin):
        assert ac.can_view(admin, _request(employee, department=ENGINEERING))

    def test_department_checked_against_current_value(self, employee, manager):
        req = _request(employee)
        assert ac.can_view(manager, req)
        req.department = ENGINEERING
        assert not ac.can_view(manager, req)


# ═══════════════════════════════════════════════════════════════
# Transition table
# ═══════════════════════════════════════════════════════════════

class TestCanTransition:
    @pytest.mark.parametrize("target", [STATUS_APPROVED, STATUS_REJECTED, STATUS_CHANGES_REQUESTED])
    def test_reviewer_decides_pending(self, employee, manager, admin, target):
        req = _request(employee)
        assert ac.can_transition(manager, req, target)
        assert ac.can_transition(admin, req, target)

    def test_owner_cannot_decide_own_pending_request(self, employee):
        req = _request(employee)
        for target in (STATUS_APPROVED, STATUS_REJECTED, STATUS_CHANGES_REQUESTED):
            assert not ac.can_transition(employee, req, target)

    def test_manager_cannot_approve_own_request_in_other_department(self, make_profile):
        eng_manager = make_profile(ROLE_MANAGER, ENGINEERING)
        req = _request(eng_manager, department=FINANCE)
        assert ac.can_view(eng_manager, req)
        assert not ac.can_transition(eng_manager, req, STATUS_APPROVED)

    def test_owner_resubmits(self, employee, manager):
        req = _request(employee, status=STATUS_CHANGES_REQUESTED)
        assert ac.can_transition(employee, req, STATUS_PENDING)
        assert not ac.can_transition(manager, req, STATUS_PENDING)

    def test_manager_owner_may_resubmit(self, manager):
        req = _request(manager, status=STATUS_CHANGES_REQUESTED)
        assert ac.can_transition(manager, req, STATUS_PENDING)

    @pytest.mark.parametrize("closed", [STATUS_APPROVED, STATUS_REJECTED])
    def test_only_admin_reopens(self, employee, manager, admin, closed):
        req = _request(employee, status=closed)
        assert ac.can_transition(admin, req, STATUS_CHANGES_REQUESTED)
        assert not ac.can_transition(manager, req, STATUS_CHANGES_REQUESTED)
        assert not ac.can_transition(employee, req, STATUS_CHANGES_REQUESTED)

    @pytest.mark.parametrize("source,target", [
        (STATUS_APPROVED, STATUS_REJECTED),
        (STATUS_REJECTED, STATUS_APPROVED),
        (STATUS_APPROVED, STATUS_PENDING),
        (STATUS_PENDING, STATUS_DRAFT),
        (STATUS_PENDING, STATUS_IN_REVIEW),
        (STATUS_CHANGES_REQUESTED, STATUS_APPROVED),
    ])
    def test_edges_outside_table_denied_even_for_admin(self, employee, admin, source, target):
        assert not ac.can_transition(admin, _request(employee, status=source), target)

    def test_invisible_request_cannot_transition(self, employee, make_profile):
        eng_manager = make_profile(ROLE_MANAGER, ENGINEERING)
        assert not ac.can_transition(eng_manager, _request(employee), STATUS_APPROVED)

    def test_denial_reasons(self, employee, manager):
        assert "No transition" in ac.transition_denial_reason(
            manager, _request(employee, status=STATUS_APPROVED), STATUS_REJECTED)
        assert "admin" in ac.transition_denial_reason(
            manager, _request(employee, status=STATUS_APPROVED), STATUS_CHANGES_REQUESTED)
        assert "owner" in ac.transition_denial_reason(
            manager, _request(employee, status=STATUS_CHANGES_REQUESTED), STATUS_PENDING)


# ═══════════════════════════════════════════════════════════════
# Permission summary
# ═══════════════════════════════════════════════════════════════

class TestPermissions:
    def test_allowed_targets_for_reviewer(self, employee, manager):
        assert ac.allowed_targets(manager, _request(employee)) == [
            STATUS_APPROVED, STATUS_REJECTED, STATUS_CHANGES_REQUESTED,
        ]

    def test_owner_edit_only_while_changes_requested(self, employee):
        assert not ac.can_edit(employee, _request(employee))
        assert ac.can_edit(employee, _request(employee, status=STATUS_CHANGES_REQUESTED))

    def test_only_admin_deletes(self, employee, manager, admin):
        req = _request(employee)
        assert ac.can_delete(admin, req)
        assert not ac.can_delete(manager, req)
        assert not ac.can_delete(employee, req)

    def test_permissions_for_owner(self, employee):
        perms = ac.permissions_for(employee, _request(employee, status=STATUS_CHANGES_REQUESTED))
        assert perms == {
            "can_edit": True,
            "can_delete": False,
            "can_comment": True,
            "allowed_transitions": [STATUS_PENDING],
        }


# ═══════════════════════════════════════════════════════════════
# Visible-request queries
# ═══════════════════════════════════════════════════════════════

class TestVisibleRequestsQuery:
    @pytest.fixture()
    def requests(self, employee, outsider, manager):
        rows = [
            _request(employee),
            _request(employee, status=STATUS_APPROVED),
            _request(outsider, department=ENGINEERING),
            _request(manager, status=STATUS_REJECTED),
        ]
        db.session.add_all(rows)
        db.session.commit()
        return rows

    def test_employee_sees_only_own(self, employee, requests):
        assert {r.employee_id for r in ac.visible_requests_query(employee).all()} == {employee.id}

    def test_manager_sees_department(self, manager, requests):
        assert len(ac.visible_requests_query(manager).all()) == 3

    def test_admin_sees_all(self, admin, requests):
        assert len(ac.visible_requests_query(admin).all()) == 4

    def test_scopes(self, admin, requests):
        active = ac.visible_requests_query(admin, ac.SCOPE_ACTIVE).all()
        archive = ac.visible_requests_query(admin, ac.SCOPE_ARCHIVE).all()
        assert {r.status for r in active} == {STATUS_PENDING}
        assert {r.status for r in archive} == {STATUS_APPROVED, STATUS_REJECTED}
