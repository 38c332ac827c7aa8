"""
Demo data seeding — backs ``flask seed-demo``.

Creates one organization with an admin, a Finance manager and two employees,
plus a handful of requests spread over every status with their transition
log lines. Reviews come from the local stub scorer so no API key is needed.

Idempotent: if the admin e-mail already exists nothing is written.
"""

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from auditpack.ai.compliance_scorer import apply_review, score_request
from auditpack.ai.gateway import LLMGateway, LocalStubProvider
from auditpack.models import db
from auditpack.models.auth import ROLE_ADMIN, ROLE_EMPLOYEE, ROLE_MANAGER, Profile, slugify
from auditpack.models.request import (
    STATUS_APPROVED,
    STATUS_CHANGES_REQUESTED,
    STATUS_PENDING,
    STATUS_REJECTED,
    AuditRequest,
    Comment,
)
from auditpack.services.profile_service import find_or_create_organization
from auditpack.utils.crypto import hash_password

logger = logging.getLogger(__name__)

# (key, full name, role, department)
_PROFILES = [
    ("admin", "Ada Admin", ROLE_ADMIN, "General"),
    ("manager", "Milo Manager", ROLE_MANAGER, "Finance & Accounting"),
    ("employee", "Erin Employee", ROLE_EMPLOYEE, "Finance & Accounting"),
    ("engineer", "Eli Engineer", ROLE_EMPLOYEE, "Engineering"),
]

# (owner key, title, category, amount, days ago, status path, reviewer key)
_REQUESTS = [
    ("employee", "Client dinner, Q3 review", "expense", "184.50", 1, [], None),
    ("employee", "Flight to Berlin audit workshop", "travel", "612.00", 6,
     [STATUS_APPROVED], "manager"),
    ("employee", "Replacement laptop charger", "purchase", "79.99", 12,
     [STATUS_CHANGES_REQUESTED], "manager"),
    ("engineer", "Conference ticket: PyCon", "travel", "450.00", 20,
     [STATUS_REJECTED], "admin"),
    ("engineer", "Team offsite catering", "expense", "1320.00", 35,
     [STATUS_CHANGES_REQUESTED, STATUS_PENDING, STATUS_APPROVED], "admin"),
]


def _email(key: str, company: str) -> str:
    return f"{key}@{slugify(company)}.example.com"


def seed_demo(company: str = "Demo Corp", password: str = "demo-pass-123") -> dict:
    """Seed the demo organization. Returns counts of what was created."""
    summary = {"organization": company, "profiles": 0, "requests": 0}
    if Profile.query.filter_by(email=_email("admin", company)).first():
        logger.info("Demo data already present for %s", company)
        return summary

    org = find_or_create_organization(company)
    profiles = {}
    for key, full_name, role, department in _PROFILES:
        profile = Profile(
            organization_id=org.id,
            email=_email(key, company),
            password_hash=hash_password(password),
            full_name=full_name,
            role=role,
            department=department,
        )
        db.session.add(profile)
        profiles[key] = profile
    db.session.flush()
    summary["profiles"] = len(profiles)

    gateway = LLMGateway(LocalStubProvider())
    now = datetime.now(timezone.utc)
    for owner_key, title, category, amount, days_ago, path, reviewer_key in _REQUESTS:
        owner = profiles[owner_key]
        created = now - timedelta(days=days_ago)
        fields = {
            "title": title,
            "category": category,
            "department": owner.department,
            "description": f"{title}. Business purpose documented for the {owner.department} budget.",
            "total_amount": Decimal(amount),
            "audit_date": (created - timedelta(days=1)).date(),
            "attachments": [],
        }
        req = AuditRequest(employee_id=owner.id, status=STATUS_PENDING,
                           created_at=created, updated_at=created, **fields)
        apply_review(req, score_request(fields, gateway=gateway))
        db.session.add(req)
        db.session.flush()
        db.session.add(Comment(request_id=req.id, content=f"Request submitted by {owner.full_name}.",
                               is_system=True, created_at=created))

        previous = STATUS_PENDING
        for step, target in enumerate(path, start=1):
            actor = owner if target == STATUS_PENDING else profiles[reviewer_key]
            db.session.add(Comment(
                request_id=req.id, is_system=True,
                content=f"Status changed from {previous} to {target} by {actor.full_name}.",
                created_at=created + timedelta(hours=step),
            ))
            previous = target
        req.status = previous
        summary["requests"] += 1

    db.session.commit()
    logger.info("Demo data seeded: %d profiles, %d requests", summary["profiles"], summary["requests"],
                extra={"event_type": "demo.seeded"})
    return summary
