"""
Tests for matching pipeline models.
"""
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from agents.matching.models import (
    EligibilityStatus,
    Errored,
    GenericVectorMetadata,
    GrantData,
    GrantVectorMetadata,
    MatchAnalysis,
    OrganizationProfile,
    Processed,
    Processing,
    Unprocessed,
    needs_processing,
    parse_metadata,
    state_from_columns,
    state_to_columns,
)


class TestEligibilityStatus:
    """Tests for the eligibility enum."""

    def test_partial_is_alias_of_partially_eligible(self):
        assert EligibilityStatus("PARTIAL") is EligibilityStatus.PARTIALLY_ELIGIBLE

    def test_values_are_normalized(self):
        assert EligibilityStatus("not eligible") is EligibilityStatus.NOT_ELIGIBLE
        assert EligibilityStatus("eligible") is EligibilityStatus.ELIGIBLE

    def test_unknown_value_rejected(self):
        with pytest.raises(ValueError):
            EligibilityStatus("MAYBE")

    def test_rank_orders_best_first(self):
        ranks = [s.rank for s in EligibilityStatus]
        assert ranks == sorted(ranks, reverse=True)
        assert EligibilityStatus.ELIGIBLE.rank > EligibilityStatus.NOT_ELIGIBLE.rank


class TestMatchAnalysis:
    """Tests for MatchAnalysis validation."""

    def test_fractional_confidence_scaled_to_percent(self):
        analysis = MatchAnalysis(
            overall_compatibility=70,
            eligibility_status="ELIGIBLE",
            confidence=0.85,
        )
        assert analysis.confidence == 85.0

    def test_compatibility_out_of_range_rejected(self):
        with pytest.raises(ValidationError):
            MatchAnalysis(overall_compatibility=120, eligibility_status="ELIGIBLE")

    def test_eligibility_required(self):
        with pytest.raises(ValidationError):
            MatchAnalysis(overall_compatibility=50)


class TestParseMetadata:
    """Tests for metadata parsing on read."""

    def test_grant_metadata_typed(self):
        metadata = parse_metadata({"type": "grant", "grant_id": "g-1", "title": "Test"})
        assert isinstance(metadata, GrantVectorMetadata)
        assert metadata.grant_id == "g-1"

    def test_invalid_known_type_falls_back_to_generic(self):
        # grant metadata without grant_id
        metadata = parse_metadata({"type": "grant", "title": "Orphan"})
        assert isinstance(metadata, GenericVectorMetadata)
        assert metadata.title == "Orphan"

    def test_extra_keys_preserved(self):
        metadata = parse_metadata({"type": "note", "color": "blue"})
        assert metadata.to_store()["color"] == "blue"

    def test_numbers_and_datetimes_become_strings(self):
        metadata = parse_metadata(
            {
                "type": "grant",
                "grant_id": "g-1",
                "title": 2024,
                "created_at": datetime(2026, 3, 1, 12, 0),
            }
        )
        assert metadata.title == "2024"
        assert metadata.created_at == "2026-03-01T12:00:00+00:00"

    def test_invalid_value_dropped_on_read(self):
        metadata = parse_metadata({"type": "grant", "grant_id": "g-1", "created_ts": "yesterday"})
        assert isinstance(metadata, GrantVectorMetadata)
        assert metadata.grant_id == "g-1"
        assert metadata.created_ts is None

    def test_invalid_value_raises_when_strict(self):
        with pytest.raises(ValidationError):
            parse_metadata({"type": "note", "created_ts": "yesterday"}, strict=True)

    def test_missing_metadata(self):
        metadata = parse_metadata(None)
        assert metadata.type == "unknown"


class TestGrantState:
    """Tests for the grant processing state machine."""

    @pytest.mark.parametrize(
        "state,expected",
        [
            (Unprocessed(), True),
            (Processing(), True),
            (Errored(message="boom"), True),
            (Processed(vector_id="v1"), False),
        ],
    )
    def test_needs_processing(self, state, expected):
        assert needs_processing(state) is expected

    def test_processed_columns(self):
        columns = state_to_columns(Processed(vector_id="v1", tags=["ai"]))
        assert columns["processing_status"] == "processed"
        assert columns["ai_processed"] is True
        assert columns["vector_id"] == "v1"
        assert columns["processing_error"] is None

    def test_errored_columns(self):
        columns = state_to_columns(Errored(message="Failed to generate embedding: timeout"))
        assert columns["ai_processed"] is False
        assert columns["processing_error"] == "Failed to generate embedding: timeout"

    def test_columns_round_trip(self):
        state = state_from_columns("processed", True, None, "v1", ["ai"])
        assert state == Processed(vector_id="v1", tags=["ai"])

    def test_legacy_row_without_status(self):
        assert isinstance(state_from_columns(None, None), Unprocessed)
        assert isinstance(state_from_columns(None, True, None, "v9"), Processed)


class TestTextComposition:
    """Tests for grant and profile text."""

    def test_grant_text_contains_fields(self):
        grant = GrantData(
            id="g-1",
            title="Clean Energy Fund",
            description="Supports renewable energy pilots.",
            funder="SEAI",
            categories=["energy", "climate"],
            amount_max=100000,
            deadline=datetime(2027, 1, 31, tzinfo=timezone.utc),
            eligibility_criteria={"regions": ["Ireland", "EU"]},
        )
        text = grant.to_embedding_text()

        assert "Clean Energy Fund" in text
        assert "SEAI" in text
        assert "energy, climate" in text
        assert "100,000" in text
        assert "2027-01-31" in text
        assert "Ireland, EU" in text

    def test_none_categories_become_empty(self):
        grant = GrantData(id="g-2", title="Minimal", categories=None)
        assert grant.categories == []
        assert grant.to_embedding_text() == "Title: Minimal"

    def test_profile_text(self):
        profile = OrganizationProfile(
            id="o-1",
            name="Acme",
            description="Robots",
            capabilities=["software", "hardware"],
        )
        text = profile.to_profile_text()

        assert "Organization: Acme" in text
        assert "Capabilities: software, hardware" in text
        assert "Sector" not in text
