"""
Prompt templates for the relevance analyzer.
"""

from typing import Optional

ANALYSIS_SYSTEM_PROMPT = (
    "You are a grant funding analyst. You assess how well an organization fits "
    "a grant opportunity and answer with a single JSON object."
)

ANALYSIS_PROMPT = """Analyze the relevance between this organization and grant opportunity.

ORGANIZATION PROFILE:
{profile}

GRANT OPPORTUNITY:
{grant}
{query_section}
Provide a detailed analysis including:
1. Overall compatibility score (0-100)
2. Eligibility status (ELIGIBLE, PARTIALLY_ELIGIBLE, UNCLEAR or NOT_ELIGIBLE)
3. Specific matching criteria analysis
4. Recommendations for the organization
5. Reasoning for the assessment
6. Confidence level in the analysis (0-100)

Scoring Guidelines:
- 90-100: Exceptional fit - the organization directly matches the grant focus and eligibility
- 70-89: Strong fit - significant overlap with few gaps
- 50-69: Moderate fit - relevant but with gaps the organization must address
- 30-49: Weak fit - limited alignment
- 0-29: Poor fit - minimal relevance or clearly ineligible

Return ONLY a JSON object with this structure:
{{
  "overallCompatibility": <0-100>,
  "eligibilityStatus": "ELIGIBLE" | "PARTIALLY_ELIGIBLE" | "UNCLEAR" | "NOT_ELIGIBLE",
  "matchingCriteria": [
    {{
      "criterion": "<criterion>",
      "matches": <true|false>,
      "score": <0-100>,
      "explanation": "<explanation>"
    }}
  ],
  "recommendations": ["<recommendation>", ...],
  "reasoning": "<reasoning>",
  "confidence": <0-100>
}}"""

TAG_EXTRACTION_PROMPT = """Analyze this grant opportunity and extract semantic tags that would help with categorization and search.
Focus on: sector, technology, stage, geography, themes, and specific domains.

GRANT:
{grant}

Return a JSON object {{"tags": [...]}} with 5-15 relevant tags. Each tag should be a single lowercase word or short phrase.
Example: {{"tags": ["technology", "ai", "healthcare", "startup", "ireland", "innovation"]}}"""


def build_analysis_prompt(profile: str, grant: str, specific_query: Optional[str] = None) -> str:
    """Compatibility analysis prompt for one profile / grant pair."""
    query_section = f"\nSPECIFIC INTEREST:\n{specific_query}\n" if specific_query else ""
    return ANALYSIS_PROMPT.format(profile=profile, grant=grant, query_section=query_section)


def build_tag_prompt(grant: str) -> str:
    return TAG_EXTRACTION_PROMPT.format(grant=grant)
