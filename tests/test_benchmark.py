"""Tests for the benchmark validator."""

import pytest
from pydantic import ValidationError

from core.contracts import Allocation, Channel, Goal, Severity
from validation import BenchmarkValidator, CompanySize, IndustryType, ValidationContext


def alloc(google, meta, tiktok, linkedin):
    return Allocation(google=google, meta=meta, tiktok=tiktok, linkedin=linkedin)


def types(analysis):
    return [w.type for w in analysis.warnings]


class TestContext:
    """Test context tags."""

    def test_unknown_tags_resolve_to_none(self):
        """Test unrecognised tags are ignored."""
        ctx = ValidationContext.build(industry="retail", company_size="huge")
        assert ctx.industry is None
        assert ctx.company_size is None

    def test_case_insensitive(self):
        """Test tags are matched case-insensitively."""
        ctx = ValidationContext.build(industry="B2B", company_size="Small", goal="cac")
        assert ctx.industry is IndustryType.B2B
        assert ctx.company_size is CompanySize.SMALL
        assert ctx.goal is Goal.CAC

    @pytest.mark.parametrize("budget, size", [(5_000, "small"), (50_000, "medium"), (500_000, "large")])
    def test_size_from_budget(self, budget, size):
        """Test budget tiers."""
        assert CompanySize.from_budget(budget).value == size


class TestExpectedAllocation:
    """Test the benchmark expectation."""

    def test_performance_ratio_without_context(self, flat_priors):
        """Test identical channels expect an equal split."""
        expected = BenchmarkValidator().expected_allocation(flat_priors)
        assert expected.tolist() == pytest.approx([0.25] * 4)

    def test_industry_adjustment(self, flat_priors):
        """Test b2b shifts budget towards linkedin."""
        ctx = ValidationContext.build(industry="b2b")
        expected = BenchmarkValidator().expected_allocation(flat_priors, ctx)
        assert expected.tolist() == pytest.approx([0.30, 0.20, 0.15, 0.35])

    def test_industry_and_size(self, flat_priors):
        """Test industry and size adjustments are additive."""
        ctx = ValidationContext.build(industry="b2b", company_size="small")
        expected = BenchmarkValidator().expected_allocation(flat_priors, ctx)
        assert expected.tolist() == pytest.approx([0.40, 0.25, 0.05, 0.30])

    def test_industry_recommendations(self):
        """Test reference split per industry."""
        rec = BenchmarkValidator().industry_recommendations("b2b")
        assert rec.as_array().tolist() == pytest.approx([0.40, 0.25, 0.05, 0.30])
        assert BenchmarkValidator().industry_recommendations("unknown") is None


class TestValidate:
    """Test warnings and deviation scores."""

    def test_plausible_allocation_is_clean(self, flat_priors):
        """Test an equal split against identical channels raises nothing."""
        analysis = BenchmarkValidator().validate(Allocation.uniform(), flat_priors)
        assert analysis.warnings == []
        assert analysis.deviation_score == pytest.approx(0.0)

    def test_concentrated_portfolio(self, flat_priors):
        """Test 95% in one channel."""
        analysis = BenchmarkValidator().validate(alloc(0.95, 0.05, 0.0, 0.0), flat_priors)
        found = types(analysis)
        assert "portfolio_concentration" in found
        assert "insufficient_diversification" in found
        concentration = next(w for w in analysis.warnings if w.type == "portfolio_concentration")
        assert concentration.severity is Severity.HIGH
        assert concentration.channel is Channel.GOOGLE

    def test_far_outside_typical_range_is_high(self, flat_priors):
        """Test tiktok at 60% is far outside its 5-25% range."""
        analysis = BenchmarkValidator().validate(alloc(0.2, 0.1, 0.6, 0.1), flat_priors)
        tiktok = [w for w in analysis.warnings if w.channel is Channel.TIKTOK and w.type == "unrealistic_allocation"]
        assert any("typical industry range" in w.message and w.severity is Severity.HIGH for w in tiktok)

    def test_slightly_outside_range_is_medium(self, flat_priors):
        """Test a share just past the range edge."""
        analysis = BenchmarkValidator().validate(alloc(0.3, 0.32, 0.28, 0.1), flat_priors)
        tiktok = [w for w in analysis.warnings if w.channel is Channel.TIKTOK and "typical" in w.message]
        assert [w.severity for w in tiktok] == [Severity.MEDIUM]

    def test_zero_share_skips_range_checks(self, flat_priors):
        """Test an unused channel is not flagged as unrealistic."""
        analysis = BenchmarkValidator().validate(alloc(0.4, 0.3, 0.0, 0.3), flat_priors)
        assert not [w for w in analysis.warnings if w.channel is Channel.TIKTOK and w.type == "unrealistic_allocation"]

    def test_deviation_levels(self, flat_priors):
        """Test benchmark and extreme deviation warnings."""
        analysis = BenchmarkValidator().validate(alloc(0.45, 0.45, 0.05, 0.05), flat_priors)
        by_channel = {w.channel: w.type for w in analysis.warnings if "deviation" in w.type}
        assert by_channel[Channel.GOOGLE] == "benchmark_deviation"
        analysis = BenchmarkValidator().validate(alloc(0.7, 0.1, 0.1, 0.1), flat_priors)
        by_channel = {w.channel: w.type for w in analysis.warnings if "deviation" in w.type}
        assert by_channel[Channel.GOOGLE] == "extreme_benchmark_deviation"

    def test_deviation_score(self, flat_priors):
        """Test the score is half the total absolute deviation."""
        analysis = BenchmarkValidator().validate(alloc(0.45, 0.25, 0.25, 0.05), flat_priors)
        assert analysis.deviation_score == pytest.approx(0.2)
        assert analysis.channel_deviations[Channel.LINKEDIN] == pytest.approx(0.2)

    def test_b2b_cac_wants_linkedin(self, flat_priors):
        """Test the goal/channel mismatch hint."""
        ctx = ValidationContext.build(industry="b2b", goal="cac")
        analysis = BenchmarkValidator().validate(alloc(0.4, 0.3, 0.25, 0.05), flat_priors, ctx)
        mismatch = [w for w in analysis.warnings if w.type == "goal_channel_mismatch"]
        assert len(mismatch) == 1
        assert mismatch[0].severity is Severity.LOW
        assert mismatch[0].channel is Channel.LINKEDIN

    def test_revenue_wants_google(self, flat_priors):
        """Test revenue goals with little google spend."""
        ctx = ValidationContext.build(goal="revenue")
        analysis = BenchmarkValidator().validate(alloc(0.1, 0.4, 0.2, 0.3), flat_priors, ctx)
        assert "goal_channel_mismatch" in types(analysis)

    def test_portfolio_warnings_come_last(self, flat_priors):
        """Test channel warnings precede portfolio warnings."""
        analysis = BenchmarkValidator().validate(alloc(0.95, 0.05, 0.0, 0.0), flat_priors)
        found = types(analysis)
        assert found[-2:] == ["portfolio_concentration", "insufficient_diversification"]


class TestThresholds:
    """Test threshold updates."""

    def test_update(self, flat_priors):
        """Test loosening the concentration limit removes the warning."""
        validator = BenchmarkValidator()
        validator.update_thresholds(concentration_limit=0.99)
        assert validator.thresholds.concentration_limit == 0.99
        analysis = validator.validate(alloc(0.95, 0.05, 0.0, 0.0), flat_priors)
        assert "portfolio_concentration" not in types(analysis)

    def test_invalid_update_rejected(self):
        """Test updates are validated."""
        with pytest.raises(ValidationError):
            BenchmarkValidator().update_thresholds(min_allocation=1.5)
