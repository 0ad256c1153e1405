"""
Relevance Analyzer
LLM-based compatibility analysis and semantic tag extraction through OpenAI chat.
"""

import json
import time
from typing import Any, Optional

import openai
import structlog
from pydantic import ValidationError as PydanticValidationError

from backend.core.config import Settings, settings as default_settings
from backend.core.exceptions import ConfigurationError, ParseError, ProviderError, ValidationError

from .models import (
    AIInteractionData,
    ChatCompletionResult,
    ChatOptions,
    ComponentHealth,
    HealthStatus,
    InteractionRecorder,
    MatchAnalysis,
    TokenUsage,
)
from .pricing import chat_cost_cents
from .prompts import ANALYSIS_SYSTEM_PROMPT, build_analysis_prompt, build_tag_prompt

logger = structlog.get_logger().bind(agent="analyzer")

PROVIDER_EXCEPTIONS = (openai.OpenAIError, AttributeError, IndexError, KeyError, TypeError)

MAX_TAGS = 15
# Width of grant_semantic_tags.tag_name
MAX_TAG_LENGTH = 100

# Response keys accepted for each MatchAnalysis field, camelCase first
_ANALYSIS_KEYS = {
    "overall_compatibility": ("overallCompatibility", "overall_compatibility"),
    "eligibility_status": ("eligibilityStatus", "eligibility_status"),
    "matching_criteria": ("matchingCriteria", "matching_criteria"),
    "recommendations": ("recommendations",),
    "reasoning": ("reasoning",),
    "confidence": ("confidence",),
}


def _normalize_analysis(data: dict[str, Any]) -> dict[str, Any]:
    normalized: dict[str, Any] = {}
    for field, keys in _ANALYSIS_KEYS.items():
        for key in keys:
            if data.get(key) is not None:
                normalized[field] = data[key]
                break
    return normalized


class RelevanceAnalyzer:
    """
    Scores how well an organization profile fits a grant using a chat model.

    Like the embedding client, the analyzer does not retry and reports every
    provider call to the optional interaction recorder.
    """

    def __init__(
        self,
        settings: Settings = default_settings,
        client: Optional[openai.OpenAI] = None,
        recorder: Optional[InteractionRecorder] = None,
    ):
        self.settings = settings
        if client is None:
            if not settings.openai_api_key:
                raise ConfigurationError("OPENAI_API_KEY environment variable is required")
            client = openai.OpenAI(
                api_key=settings.openai_api_key,
                timeout=settings.openai_timeout_seconds,
                max_retries=0,
            )
        self.client = client
        self.recorder = recorder
        self.model = settings.chat_model

    def chat_completion(
        self,
        messages: list[dict[str, str]],
        options: Optional[ChatOptions] = None,
        user_id: Optional[str] = None,
        organization_id: Optional[str] = None,
    ) -> ChatCompletionResult:
        """
        Run a chat completion.

        Raises:
            ValidationError: If no messages are given.
            ProviderError: If the API call fails or returns no content.
        """
        if not messages:
            raise ValidationError("Messages cannot be empty")

        options = options or ChatOptions()
        model = options.model or self.model
        temperature = (
            options.temperature if options.temperature is not None else self.settings.chat_temperature
        )

        params: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
        }
        if options.max_tokens:
            params["max_tokens"] = options.max_tokens
        if options.response_format == "json_object":
            params["response_format"] = {"type": "json_object"}

        input_text = "\n".join(m.get("content", "") for m in messages)[:1000]
        start_time = time.time()
        try:
            response = self.client.chat.completions.create(**params)
            content = response.choices[0].message.content
            if content is None:
                raise ProviderError("No content received from chat model")
            input_tokens = response.usage.prompt_tokens or 0
            output_tokens = response.usage.completion_tokens or 0
            total_tokens = response.usage.total_tokens or (input_tokens + output_tokens)
        except (ProviderError, *PROVIDER_EXCEPTIONS) as e:
            self._record(
                AIInteractionData(
                    interaction_type="chat",
                    model_used=model,
                    input_text=input_text,
                    response_time_ms=int((time.time() - start_time) * 1000),
                    success=False,
                    error_message=str(e),
                    user_id=user_id,
                    organization_id=organization_id,
                )
            )
            logger.error("chat_completion_failed", model=model, error=str(e))
            raise ProviderError(f"Failed to generate chat completion: {e}") from e

        usage = TokenUsage(
            prompt_tokens=input_tokens,
            completion_tokens=output_tokens,
            total_tokens=total_tokens,
            estimated_cost=chat_cost_cents(input_tokens, output_tokens, model),
        )

        self._record(
            AIInteractionData(
                interaction_type="chat",
                model_used=model,
                input_text=input_text,
                output_text=content[:1000],
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                total_tokens=total_tokens,
                estimated_cost_cents=usage.estimated_cost,
                response_time_ms=int((time.time() - start_time) * 1000),
                metadata={"temperature": temperature, "response_format": options.response_format},
                user_id=user_id,
                organization_id=organization_id,
            )
        )

        logger.info("chat_completion_generated", model=model, tokens=total_tokens)
        return ChatCompletionResult(content=content, model=model, usage=usage)

    def analyze(
        self,
        entity_profile_text: str,
        candidate_text: str,
        specific_query: Optional[str] = None,
        user_id: Optional[str] = None,
        organization_id: Optional[str] = None,
    ) -> MatchAnalysis:
        """
        Analyze the compatibility of an organization profile with a grant.

        Args:
            entity_profile_text: Organization profile text.
            candidate_text: Grant text.
            specific_query: Optional interest that focuses the analysis.

        Returns:
            Validated MatchAnalysis.

        Raises:
            ProviderError: If the chat call fails.
            ParseError: If the answer is not JSON or does not fit the schema.
        """
        if not entity_profile_text or not candidate_text:
            raise ValidationError("Profile and grant text are required for analysis")

        result = self.chat_completion(
            [
                {"role": "system", "content": ANALYSIS_SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": build_analysis_prompt(entity_profile_text, candidate_text, specific_query),
                },
            ],
            ChatOptions(temperature=self.settings.analysis_temperature, response_format="json_object"),
            user_id=user_id,
            organization_id=organization_id,
        )

        try:
            data = json.loads(result.content)
        except json.JSONDecodeError as e:
            logger.error("analysis_parse_error", error=str(e))
            raise ParseError(f"Failed to analyze grant relevance: invalid JSON: {e}") from e

        if not isinstance(data, dict):
            raise ParseError("Failed to analyze grant relevance: expected a JSON object")

        try:
            analysis = MatchAnalysis.model_validate(_normalize_analysis(data))
        except PydanticValidationError as e:
            logger.error("analysis_validation_error", error=str(e))
            raise ParseError(f"Failed to analyze grant relevance: invalid analysis result format: {e}") from e

        logger.info(
            "grant_relevance_analyzed",
            eligibility=analysis.eligibility_status.value,
            compatibility=analysis.overall_compatibility,
        )
        return analysis

    def extract_tags(self, grant_text: str) -> list[str]:
        """
        Extract 5-15 semantic tags for a grant.

        Accepts a JSON array or an object with a "tags" array. Tags are
        stripped, lowercased and de-duplicated in order; tags longer than
        MAX_TAG_LENGTH are dropped.

        Raises:
            ProviderError: If the chat call fails.
            ParseError: If the answer holds no tag list.
        """
        result = self.chat_completion(
            [{"role": "user", "content": build_tag_prompt(grant_text)}],
            ChatOptions(temperature=self.settings.analysis_temperature, response_format="json_object"),
        )

        try:
            data = json.loads(result.content)
        except json.JSONDecodeError as e:
            raise ParseError(f"Failed to extract semantic tags: invalid JSON: {e}") from e

        raw_tags = data.get("tags") if isinstance(data, dict) else data
        if not isinstance(raw_tags, list):
            raise ParseError("Failed to extract semantic tags: no tag list in response")

        tags: list[str] = []
        for tag in raw_tags:
            if not isinstance(tag, str):
                continue
            cleaned = tag.strip().lower()
            if cleaned and len(cleaned) <= MAX_TAG_LENGTH and cleaned not in tags:
                tags.append(cleaned)

        return tags[:MAX_TAGS]

    def health_check(self) -> ComponentHealth:
        """Run a one-token completion; never raises."""
        try:
            result = self.chat_completion(
                [{"role": "user", "content": "Reply with OK."}],
                ChatOptions(max_tokens=5, temperature=0.0),
            )
            return ComponentHealth(status=HealthStatus.HEALTHY, details={"model": result.model})
        except Exception as e:
            logger.warning("analyzer_health_check_failed", error=str(e))
            return ComponentHealth(status=HealthStatus.UNHEALTHY, error=str(e))

    def _record(self, interaction: AIInteractionData) -> None:
        if self.recorder is None:
            return
        try:
            self.recorder(interaction)
        except Exception as e:
            logger.warning("interaction_record_failed", error=str(e))
