"""
Comment Service — discussion thread of a request.

Anyone who can view a request may read and append to its thread.
Comments are never edited or deleted individually.
"""

import logging

from auditpack.core.exceptions import ValidationError
from auditpack.models import db
from auditpack.models.auth import Profile
from auditpack.models.request import Comment
from auditpack.services.realtime import publish_comment_added
from auditpack.services.request_lifecycle import get_request_for_viewer
from auditpack.services.side_effects import SideEffectQueue

logger = logging.getLogger(__name__)

MAX_COMMENT_LENGTH = 5000


def list_comments(request_id: str, actor: Profile) -> list[Comment]:
    req = get_request_for_viewer(request_id, actor)
    return req.comments.order_by(Comment.created_at, Comment.id).all()


def add_comment(request_id: str, actor: Profile, content: str) -> Comment:
    req = get_request_for_viewer(request_id, actor)

    content = content.strip() if isinstance(content, str) else ""
    if not content:
        raise ValidationError("Invalid comment", details={"content": "Comment cannot be empty"})
    if len(content) > MAX_COMMENT_LENGTH:
        raise ValidationError("Invalid comment",
                              details={"content": f"Comment must be at most {MAX_COMMENT_LENGTH} characters"})

    comment = Comment(request_id=req.id, user_id=actor.id, content=content)
    db.session.add(comment)
    db.session.commit()
    logger.info("Comment added", extra={"profile_id": actor.id, "audit_request_id": req.id,
                                        "event_type": "comment.added"})

    effects = SideEffectQueue(request_id=req.id)
    effects.add("realtime", publish_comment_added, req, comment)
    effects.run()
    return comment
