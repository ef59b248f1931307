import pytest

from fly8.models.settings import CommissionSettings, CommissionTier
from fly8.services.rate_resolver import resolve_commission_rate
from fly8.utils.errors import ValidationError


def _settings(default=10, tiers=()):
    return CommissionSettings(
        defaultAgentCommission=default,
        commissionTiers=[CommissionTier(**t) for t in tiers],
    )


def test_platform_default_applies_without_override():
    rate, tier = resolve_commission_rate({"commissionPercentage": None}, _settings(default=15), 0)
    assert rate == 15
    assert tier is None


def test_agent_override_beats_default():
    rate, _ = resolve_commission_rate({"commissionPercentage": 7.5}, _settings(default=15), 0)
    assert rate == 7.5


def test_zero_override_is_respected():
    rate, _ = resolve_commission_rate({"commissionPercentage": 0}, _settings(default=15), 0)
    assert rate == 0


def test_hard_fallback_when_nothing_configured():
    rate, tier = resolve_commission_rate({}, None, 3)
    assert rate == 10
    assert tier is None

    rate, _ = resolve_commission_rate({}, _settings(default=None), 3)
    assert rate == 10


def test_tier_raises_rate_once_threshold_reached():
    settings = _settings(default=10, tiers=[{"minStudents": 5, "commissionRate": 12}])

    rate, tier = resolve_commission_rate({}, settings, 4)
    assert rate == 10
    assert tier is None

    rate, tier = resolve_commission_rate({}, settings, 5)
    assert rate == 12
    assert tier["minStudents"] == 5
    assert tier["commissionRate"] == 12


def test_lower_tier_never_reduces_rate():
    settings = _settings(default=10, tiers=[{"minStudents": 4, "commissionRate": 9}])
    rate, tier = resolve_commission_rate({}, settings, 5)
    assert rate == 10
    assert tier is None


def test_highest_reached_tier_wins():
    settings = _settings(default=10, tiers=[
        {"minStudents": 1, "commissionRate": 11},
        {"minStudents": 10, "commissionRate": 14},
        {"minStudents": 20, "commissionRate": 18},
    ])
    rate, tier = resolve_commission_rate({}, settings, 12)
    assert rate == 14
    assert tier["minStudents"] == 10


def test_equal_min_students_prefers_higher_rate():
    settings = _settings(default=10, tiers=[
        {"minStudents": 3, "commissionRate": 11},
        {"minStudents": 3, "commissionRate": 13},
    ])
    rate, _ = resolve_commission_rate({}, settings, 3)
    assert rate == 13


def test_tier_can_exceed_agent_override():
    settings = _settings(default=10, tiers=[{"minStudents": 2, "commissionRate": 12}])
    rate, tier = resolve_commission_rate({"commissionPercentage": 8}, settings, 2)
    assert rate == 12
    assert tier is not None


@pytest.mark.parametrize("bad", [-1, 100.5, 250])
def test_out_of_range_override_is_rejected(bad):
    with pytest.raises(ValidationError):
        resolve_commission_rate({"commissionPercentage": bad}, _settings(), 0)
