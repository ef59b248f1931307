"""
Rate Resolver – pure function picking the commission percentage for a new commission.
"""
from typing import Dict, Optional, Tuple

from fly8.config.settings import settings as app_settings
from fly8.models.settings import CommissionSettings
from fly8.utils.errors import ValidationError


def _check_percentage(value, label: str) -> float:
    if value is None or value == "":
        raise ValidationError(f"{label} must be set")
    rate = float(value)
    if rate < 0 or rate > 100:
        raise ValidationError(f"{label} must be between 0 and 100", value=rate)
    return rate


def resolve_commission_rate(
    agent: Dict,
    commission_settings: Optional[CommissionSettings],
    completed_count: int,
) -> Tuple[float, Optional[Dict]]:
    """
    Returns ``(rate, tier_applied)``.

    Base rate: agent override, else platform default, else 10. A tier
    (greatest ``minStudents <= completed_count``, ties to the higher rate)
    replaces it only when the tier pays more.
    """
    override = agent.get("commissionPercentage")
    if override is not None:
        rate = _check_percentage(override, "Agent commission percentage")
    elif commission_settings is not None and commission_settings.defaultAgentCommission is not None:
        rate = _check_percentage(commission_settings.defaultAgentCommission, "Default agent commission")
    else:
        rate = app_settings.DEFAULT_COMMISSION_RATE

    tiers = commission_settings.commissionTiers if commission_settings else []
    eligible = [t for t in tiers if (t.minStudents or 0) <= completed_count]
    if not eligible:
        return rate, None

    tier = max(eligible, key=lambda t: (t.minStudents or 0, t.commissionRate))
    tier_rate = _check_percentage(tier.commissionRate, "Tier commission rate")
    if tier_rate > rate:
        return tier_rate, tier.model_dump(exclude_none=True)
    return rate, None
