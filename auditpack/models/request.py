"""
Audit Pack
Request domain models.

Models:
    - AuditRequest: the expense / travel / purchase submission under review
    - Comment: append-only discussion + system transition log lines
"""

import uuid
from datetime import datetime, timezone

from auditpack.models import db


# ── Constants ────────────────────────────────────────────────────────────────

STATUS_DRAFT = "draft"
STATUS_PENDING = "pending"
STATUS_IN_REVIEW = "in_review"
STATUS_CHANGES_REQUESTED = "changes_requested"
STATUS_APPROVED = "approved"
STATUS_REJECTED = "rejected"

# draft / in_review are reserved; no transition reaches them
REQUEST_STATUSES = {
    STATUS_DRAFT, STATUS_PENDING, STATUS_IN_REVIEW,
    STATUS_CHANGES_REQUESTED, STATUS_APPROVED, STATUS_REJECTED,
}
ACTIVE_STATUSES = (STATUS_PENDING, STATUS_CHANGES_REQUESTED)
ARCHIVE_STATUSES = (STATUS_APPROVED, STATUS_REJECTED)

REQUEST_CATEGORIES = {
    "expense": "Expense Claim",
    "travel": "Travel Reimbursement",
    "purchase": "Purchase Requisition",
    "other": "Other",
}

# Joins the scorer's summary lines into ai_summary
SUMMARY_SEPARATOR = " • "


def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


class AuditRequest(db.Model):
    """
    Expense / audit submission moving through the review lifecycle.

    ``employee_id`` is fixed at creation. ``department`` selects the
    reviewing managers and is read fresh on every transition.
    """

    __tablename__ = "requests"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    employee_id = db.Column(
        db.String(36), db.ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    department = db.Column(db.String(120), nullable=False, index=True)

    title = db.Column(db.String(200), nullable=False)
    category = db.Column(db.String(30), nullable=False, default="expense")
    custom_category = db.Column(db.String(120), nullable=True)
    description = db.Column(db.Text, nullable=False, default="")
    total_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    audit_date = db.Column(db.Date, nullable=False)

    status = db.Column(db.String(30), nullable=False, default=STATUS_PENDING, index=True)

    # Compliance scorer output captured at submission time
    ai_completeness_score = db.Column(db.Integer, nullable=True)
    ai_summary = db.Column(db.Text, nullable=True)
    ai_feedback = db.Column(db.JSON, default=list)

    attachments = db.Column(db.JSON, default=list)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, index=True)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    owner = db.relationship("Profile", foreign_keys=[employee_id])
    comments = db.relationship(
        "Comment", back_populates="request", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
        order_by="Comment.created_at",
    )

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def to_dict(self, include_owner=True):
        d = {
            "id": self.id,
            "employee_id": self.employee_id,
            "department": self.department,
            "title": self.title,
            "category": self.category,
            "custom_category": self.custom_category,
            "description": self.description,
            "total_amount": float(self.total_amount) if self.total_amount is not None else 0.0,
            "audit_date": self.audit_date.isoformat() if self.audit_date else None,
            "status": self.status,
            "ai_completeness_score": self.ai_completeness_score,
            "ai_summary": self.ai_summary,
            "ai_feedback": list(self.ai_feedback or []),
            "attachments": list(self.attachments or []),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_owner:
            d["owner_name"] = self.owner.full_name if self.owner else None
        return d

    def __repr__(self):
        return f"<AuditRequest {self.id}: {self.status}>"


class Comment(db.Model):
    """
    Timestamped note on a request. Never edited.

    ``user_id`` NULL marks a system-generated transition log line.
    """

    __tablename__ = "comments"

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(
        db.String(36), db.ForeignKey("requests.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    user_id = db.Column(
        db.String(36), db.ForeignKey("profiles.id", ondelete="SET NULL"),
        nullable=True,
    )
    content = db.Column(db.Text, nullable=False)
    is_system = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    request = db.relationship("AuditRequest", back_populates="comments")
    author = db.relationship("Profile", foreign_keys=[user_id])

    def to_dict(self):
        return {
            "id": self.id,
            "request_id": self.request_id,
            "user_id": self.user_id,
            "author_name": self.author.full_name if self.author else "System",
            "author_role": self.author.role if self.author else "system",
            "content": self.content,
            "is_system": bool(self.is_system),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
