"""
Unit tests for the LLM provider layer.

Tests cover:
- Model resolution from aliases and environment
- Client factory per provider
- Retry of transient provider errors in generate()
"""

import os
import sys
import unittest
from unittest.mock import MagicMock, Mock, patch

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from common.retry import RetryPolicy
from llm import GenerationConfig, LLMProvider, clear_cache, get_client, get_default_model
from llm.claude import ClaudeClient
from llm.gemini import GeminiClient


class TestModelSelection(unittest.TestCase):

    def setUp(self):
        clear_cache()

    @patch.dict(os.environ, {}, clear=True)
    def test_default_model(self):
        self.assertEqual(get_default_model(), "gemini-2.5-flash")

    @patch.dict(os.environ, {'LLM_MODEL': 'haiku'}, clear=True)
    def test_model_from_env_alias(self):
        self.assertEqual(get_default_model(), "claude-haiku-4-5")

    @patch.dict(os.environ, {'LLM_MODEL': 'nonexistent'}, clear=True)
    def test_unknown_env_model_falls_back(self):
        self.assertEqual(get_default_model(), "gemini-2.5-flash")

    @patch.dict(os.environ, {'LLM_PROVIDER': 'claude'}, clear=True)
    def test_provider_preference(self):
        self.assertEqual(get_default_model(), "claude-haiku-4-5")

    def test_get_client_gemini(self):
        client = get_client("gemini", project_id="test-project", region="europe-west4")

        self.assertIsInstance(client, GeminiClient)
        self.assertEqual(client.provider, LLMProvider.GEMINI)

    def test_get_client_claude(self):
        client = get_client("claude-haiku", project_id="test-project")

        self.assertIsInstance(client, ClaudeClient)
        self.assertEqual(client.model_id, "claude-haiku-4-5@20251001")

    def test_get_client_cached(self):
        first = get_client("gemini", project_id="test-project")
        second = get_client("gemini", project_id="test-project")

        self.assertIs(first, second)

    def test_unknown_model_raises(self):
        with self.assertRaises(ValueError):
            get_client("gpt-4o-mini")


class TestGenerate(unittest.TestCase):

    def test_gemini_retries_transient_error(self):
        client = GeminiClient(
            project_id="test-project",
            region="europe-west4",
            retry_policy=RetryPolicy(max_attempts=3, sleep=Mock()),
        )
        client._client = MagicMock()
        client._client.models.generate_content.side_effect = [
            Exception("503 Service Unavailable"),
            Mock(text="Battery life", candidates=[], usage_metadata=None),
        ]

        response = client.generate("Name this topic", config=GenerationConfig(temperature=0.2, max_output_tokens=15))

        self.assertEqual(response.text, "Battery life")
        self.assertEqual(client._client.models.generate_content.call_count, 2)

    def test_gemini_empty_response_raises(self):
        client = GeminiClient(project_id="test-project", retry_policy=RetryPolicy(max_attempts=1))
        client._client = MagicMock()
        client._client.models.generate_content.return_value = Mock(text="", candidates=[], usage_metadata=None)

        with self.assertRaises(ValueError):
            client.generate("Name this topic")

    def test_claude_concatenates_text_blocks(self):
        client = ClaudeClient(project_id="test-project", retry_policy=RetryPolicy(max_attempts=1))
        client._client = MagicMock()
        client._client.messages.create.return_value = Mock(
            content=[Mock(text="Sleep "), Mock(text="tracking")],
            usage=Mock(input_tokens=10, output_tokens=2),
            stop_reason="end_turn",
        )

        response = client.generate("Name this topic", system_prompt="You label clusters.")

        self.assertEqual(response.text, "Sleep tracking")
        self.assertEqual(response.output_tokens, 2)
        kwargs = client._client.messages.create.call_args.kwargs
        self.assertEqual(kwargs['system'], "You label clusters.")
        self.assertEqual(kwargs['messages'], [{"role": "user", "content": "Name this topic"}])


if __name__ == '__main__':
    unittest.main()
