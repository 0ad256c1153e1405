"""
Tests for the Relevance Analyzer.
"""
import json
from unittest.mock import MagicMock

import pytest

from agents.matching.analyzer import MAX_TAG_LENGTH, MAX_TAGS, RelevanceAnalyzer
from agents.matching.models import ChatOptions, EligibilityStatus, HealthStatus
from backend.core.exceptions import ConfigurationError, ParseError, ProviderError, ValidationError
from tests.fixtures.fakes import analysis_payload


PROFILE = "Organization: Acme Robotics\nDescription: Warehouse robots"
GRANT = "Title: Tech Innovation Grant\nDescription: Funding for technology startups"


class TestChatCompletion:
    """Tests for the raw chat call."""

    def test_returns_content_and_usage(self, analyzer):
        result = analyzer.chat_completion([{"role": "user", "content": "hello"}])

        assert result.model == "gpt-4o-mini"
        assert result.usage.total_tokens == 150
        assert result.usage.estimated_cost > 0

    def test_empty_messages_rejected(self, analyzer, fake_openai):
        with pytest.raises(ValidationError, match="Messages cannot be empty"):
            analyzer.chat_completion([])
        assert fake_openai.chat.completions.calls == []

    def test_json_mode_sent_as_response_format(self, analyzer, fake_openai):
        analyzer.chat_completion(
            [{"role": "user", "content": "hello"}],
            ChatOptions(response_format="json_object", max_tokens=20),
        )

        call = fake_openai.chat.completions.calls[0]
        assert call["response_format"] == {"type": "json_object"}
        assert call["max_tokens"] == 20

    def test_default_temperature_from_settings(self, analyzer, fake_openai):
        analyzer.chat_completion([{"role": "user", "content": "hello"}])

        assert fake_openai.chat.completions.calls[0]["temperature"] == 0.7

    def test_provider_failure(self, analyzer, fake_openai):
        fake_openai.chat.completions.fail_next = 1

        with pytest.raises(ProviderError, match="Failed to generate chat completion"):
            analyzer.chat_completion([{"role": "user", "content": "hello"}])

    def test_missing_content_is_provider_error(self, test_settings):
        client = MagicMock()
        client.chat.completions.create.return_value.choices[0].message.content = None

        analyzer = RelevanceAnalyzer(test_settings, client=client)

        with pytest.raises(ProviderError, match="No content"):
            analyzer.chat_completion([{"role": "user", "content": "hello"}])

    def test_recorded_with_cost(self, test_settings, fake_openai):
        recorder = MagicMock()
        analyzer = RelevanceAnalyzer(test_settings, client=fake_openai, recorder=recorder)

        analyzer.chat_completion([{"role": "user", "content": "hello"}], organization_id="org-1")

        interaction = recorder.call_args.args[0]
        assert interaction.interaction_type == "chat"
        assert interaction.input_tokens == 100
        assert interaction.output_tokens == 50
        assert interaction.estimated_cost_cents > 0
        assert interaction.organization_id == "org-1"

    def test_missing_api_key(self, test_settings):
        settings = test_settings.model_copy(update={"openai_api_key": None})

        with pytest.raises(ConfigurationError):
            RelevanceAnalyzer(settings)


class TestAnalyze:
    """Tests for compatibility analysis."""

    def test_parses_camel_case_answer(self, analyzer, fake_openai):
        fake_openai.chat.completions.handler = lambda prompt: analysis_payload(82)

        analysis = analyzer.analyze(PROFILE, GRANT)

        assert analysis.overall_compatibility == 82
        assert analysis.eligibility_status == EligibilityStatus.ELIGIBLE
        assert analysis.matching_criteria[0].criterion == "Sector alignment"
        assert analysis.recommendations == ["Highlight previous grant outcomes"]
        assert analysis.confidence == 80

    def test_parses_snake_case_answer(self, analyzer, fake_openai):
        fake_openai.chat.completions.handler = lambda prompt: json.dumps(
            {
                "overall_compatibility": 40,
                "eligibility_status": "UNCLEAR",
                "reasoning": "Thin profile",
            }
        )

        analysis = analyzer.analyze(PROFILE, GRANT)

        assert analysis.overall_compatibility == 40
        assert analysis.eligibility_status == EligibilityStatus.UNCLEAR

    def test_partial_status_accepted(self, analyzer, fake_openai):
        fake_openai.chat.completions.handler = lambda prompt: analysis_payload(60, "PARTIAL")

        analysis = analyzer.analyze(PROFILE, GRANT)

        assert analysis.eligibility_status == EligibilityStatus.PARTIALLY_ELIGIBLE

    def test_prompt_carries_texts_and_query(self, analyzer, fake_openai):
        analyzer.analyze(PROFILE, GRANT, specific_query="robotics pilots")

        call = fake_openai.chat.completions.calls[0]
        assert "Acme Robotics" in call["prompt"]
        assert "Tech Innovation Grant" in call["prompt"]
        assert "robotics pilots" in call["prompt"]
        assert call["temperature"] == 0.3
        assert call["response_format"] == {"type": "json_object"}

    def test_invalid_json(self, analyzer, fake_openai):
        fake_openai.chat.completions.handler = lambda prompt: "not json at all"

        with pytest.raises(ParseError, match="invalid JSON"):
            analyzer.analyze(PROFILE, GRANT)

    def test_non_object_json(self, analyzer, fake_openai):
        fake_openai.chat.completions.handler = lambda prompt: "[1, 2, 3]"

        with pytest.raises(ParseError):
            analyzer.analyze(PROFILE, GRANT)

    def test_missing_eligibility_is_format_error(self, analyzer, fake_openai):
        fake_openai.chat.completions.handler = lambda prompt: json.dumps({"overallCompatibility": 70})

        with pytest.raises(ParseError, match="invalid analysis result format"):
            analyzer.analyze(PROFILE, GRANT)

    def test_score_out_of_range_is_format_error(self, analyzer, fake_openai):
        fake_openai.chat.completions.handler = lambda prompt: analysis_payload(140)

        with pytest.raises(ParseError):
            analyzer.analyze(PROFILE, GRANT)

    def test_empty_texts_rejected(self, analyzer):
        with pytest.raises(ValidationError):
            analyzer.analyze("", GRANT)

    def test_provider_failure_propagates(self, analyzer, fake_openai):
        fake_openai.chat.completions.fail_next = 1

        with pytest.raises(ProviderError):
            analyzer.analyze(PROFILE, GRANT)


class TestExtractTags:
    """Tests for semantic tag extraction."""

    def test_object_with_tags(self, analyzer, fake_openai):
        fake_openai.chat.completions.tags = ["Clean Energy", " solar ", "clean energy", ""]

        tags = analyzer.extract_tags(GRANT)

        assert tags == ["clean energy", "solar"]

    def test_bare_array(self, analyzer, fake_openai):
        fake_openai.chat.completions.handler = lambda prompt: '["AI", "health"]'

        assert analyzer.extract_tags(GRANT) == ["ai", "health"]

    def test_capped(self, analyzer, fake_openai):
        fake_openai.chat.completions.tags = [f"tag-{i}" for i in range(30)]

        assert len(analyzer.extract_tags(GRANT)) == MAX_TAGS

    def test_overlong_tags_dropped(self, analyzer, fake_openai):
        fake_openai.chat.completions.tags = ["x" * (MAX_TAG_LENGTH + 50), "y" * MAX_TAG_LENGTH, "energy"]

        assert analyzer.extract_tags(GRANT) == ["y" * MAX_TAG_LENGTH, "energy"]

    def test_no_tag_list(self, analyzer, fake_openai):
        fake_openai.chat.completions.handler = lambda prompt: '{"keywords": "ai"}'

        with pytest.raises(ParseError, match="Failed to extract semantic tags"):
            analyzer.extract_tags(GRANT)

    def test_invalid_json(self, analyzer, fake_openai):
        fake_openai.chat.completions.handler = lambda prompt: "tags: ai, health"

        with pytest.raises(ParseError):
            analyzer.extract_tags(GRANT)


class TestHealthCheck:
    def test_healthy(self, analyzer):
        health = analyzer.health_check()

        assert health.status == HealthStatus.HEALTHY
        assert health.details["model"] == "gpt-4o-mini"

    def test_unhealthy_never_raises(self, analyzer, fake_openai):
        fake_openai.chat.completions.fail_next = 1

        health = analyzer.health_check()

        assert health.status == HealthStatus.UNHEALTHY
        assert "chat service unavailable" in health.error
