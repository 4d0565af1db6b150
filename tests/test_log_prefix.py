"""Tests for log_prefix helper and ROLLWRIGHT_EMOJI_LOGS configuration."""
import os
import unittest
from unittest.mock import patch

from rollwright.core.logging import log_prefix, redact, use_emoji_logs


class TestLogPrefix(unittest.TestCase):
    """Test cases for the log_prefix helper function."""

    def test_emoji_enabled_by_default(self):
        """Emoji logs should be enabled when ROLLWRIGHT_EMOJI_LOGS is not set."""
        with patch.dict(os.environ, {}, clear=True):
            self.assertTrue(use_emoji_logs())
            self.assertEqual(log_prefix("🔄"), "🔄")

    def test_emoji_disabled(self):
        """Emoji prefixes become ASCII tags when disabled."""
        for value in ("0", "false", "no", "OFF"):
            with patch.dict(os.environ, {"ROLLWRIGHT_EMOJI_LOGS": value}):
                self.assertFalse(use_emoji_logs())
                self.assertEqual(log_prefix("🔄"), "[RETRY]")
                self.assertEqual(log_prefix("🔴"), "[OPEN]")
                self.assertEqual(log_prefix("⏪"), "[ROLLBACK]")
                self.assertEqual(log_prefix("🚀"), "[DEPLOY]")

    def test_unknown_emoji_disabled(self):
        """Unknown emoji map to an empty prefix when disabled."""
        with patch.dict(os.environ, {"ROLLWRIGHT_EMOJI_LOGS": "0"}):
            self.assertEqual(log_prefix("🦄"), "")


class TestRedact(unittest.TestCase):
    """Test cases for secret redaction."""

    def test_bearer_token(self):
        """Bearer tokens are masked."""
        self.assertEqual(
            redact("Authorization: Bearer abc.def-123"), "Authorization: Bearer [REDACTED]"
        )

    def test_key_value_secrets(self):
        """key=value secrets are masked, other text is kept."""
        text = redact("wrangler deploy --var api_token=s3cr3t --env production")

        self.assertNotIn("s3cr3t", text)
        self.assertIn("--env production", text)

    def test_plain_text_untouched(self):
        """Text without secrets is unchanged."""
        self.assertEqual(redact("Deploying api.example.com"), "Deploying api.example.com")


if __name__ == "__main__":
    unittest.main()
