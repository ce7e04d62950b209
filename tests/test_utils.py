"""
Tests for the webhook secret check.
"""

from requinte_bot.utils import verify_webhook_secret


class TestVerifyWebhookSecret:
    """Test shared-secret comparison."""

    def test_empty_secret_disables_check(self):
        assert verify_webhook_secret(None, "") is True
        assert verify_webhook_secret("anything", "") is True

    def test_matching_secret(self):
        assert verify_webhook_secret("s3cret", "s3cret") is True

    def test_surrounding_whitespace_is_ignored(self):
        assert verify_webhook_secret("  s3cret\n", "s3cret") is True

    def test_missing_header(self):
        assert verify_webhook_secret(None, "s3cret") is False
        assert verify_webhook_secret("", "s3cret") is False

    def test_wrong_secret(self):
        assert verify_webhook_secret("s3cre", "s3cret") is False
