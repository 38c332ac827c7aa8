"""
Demo seeding and CLI command tests.
"""

from datetime import datetime, timedelta, timezone

from auditpack.models import db
from auditpack.models.auth import Profile, RevokedToken
from auditpack.models.request import AuditRequest, Comment
from auditpack.services.demo_data import seed_demo


class TestSeedDemo:
    def test_seeds_profiles_and_requests(self):
        summary = seed_demo(company="Demo Corp")
        assert summary == {"organization": "Demo Corp", "profiles": 4, "requests": 5}

        admin = Profile.query.filter_by(email="admin@demo-corp.example.com").one()
        assert admin.role == "admin"
        assert {r.status for r in AuditRequest.query} == {"pending", "approved", "changes_requested",
                                                           "rejected"}
        assert Comment.query.filter_by(is_system=True).count() == 5 + 1 + 1 + 1 + 3

    def test_reviews_are_scored(self):
        seed_demo()
        for req in AuditRequest.query:
            assert req.ai_completeness_score is not None
            assert req.ai_summary

    def test_idempotent(self):
        seed_demo(company="Demo Corp")
        again = seed_demo(company="Demo Corp")
        assert again["profiles"] == 0
        assert again["requests"] == 0
        assert Profile.query.count() == 4


class TestCLI:
    def test_seed_demo_command(self, app):
        runner = app.test_cli_runner()
        result = runner.invoke(args=["seed-demo", "--company", "Cli Corp", "--password", "cli-pass-123"])
        assert result.exit_code == 0, result.output
        assert "Seeded 4 profiles and 5 requests for 'Cli Corp'" in result.output

    def test_purge_revoked_tokens_command(self, app, employee):
        past = datetime.now(timezone.utc) - timedelta(days=1)
        db.session.add(RevokedToken(jti="old-jti", profile_id=employee.id, expires_at=past))
        db.session.commit()

        result = app.test_cli_runner().invoke(args=["purge-revoked-tokens"])
        assert result.exit_code == 0, result.output
        assert "Removed 1 expired revocation(s)." in result.output
