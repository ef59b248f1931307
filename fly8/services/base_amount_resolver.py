"""
Base-Amount Resolver – the amount a commission percentage is applied to.

APPLICATION: first tuition entry of the university, digits only.
VAS: the configured fee for the service type.
Both fall back to a fixed default that is reported back as the amount's source
so callers can surface it.
"""
import logging
import re
from typing import Dict, Optional, Tuple

from fly8.config.database import Collections
from fly8.config.settings import settings as app_settings
from fly8.database.db_operations import db_ops
from fly8.models.settings import ServiceFees

logger = logging.getLogger(__name__)

SOURCE_TUITION = "tuition"
SOURCE_SERVICE_FEE = "service_fee"
SOURCE_DEFAULT = "default"
SOURCE_MANUAL = "manual"

SERVICE_FEE_KEYS = {
    "PROFILE_ASSESSMENT": "profileAssessment",
    "UNIVERSITY_SHORTLISTING": "universityShortlisting",
    "APPLICATION_ASSISTANCE": "applicationAssistance",
    "VISA_GUIDANCE": "visaGuidance",
    "SCHOLARSHIP_SEARCH": "scholarshipSearch",
    "LOAN_ASSISTANCE": "loanAssistance",
    "ACCOMMODATION_HELP": "accommodationHelp",
    "PRE_DEPARTURE_ORIENTATION": "preDepartureOrientation",
}

_NON_NUMERIC = re.compile(r"[^0-9.]")


def service_type_to_fee_key(service_type: str) -> str:
    return SERVICE_FEE_KEYS.get(service_type, "applicationAssistance")


def parse_tuition_amount(raw) -> Optional[float]:
    """'USD 24,500 / year' -> 24500.0; None when nothing numeric survives."""
    if raw is None:
        return None
    if isinstance(raw, (int, float)):
        return float(raw)
    cleaned = _NON_NUMERIC.sub("", str(raw))
    # "1.2.3" style leftovers: keep the leading number
    match = re.match(r"\d+(\.\d+)?", cleaned)
    if not match:
        return None
    return float(match.group(0))


def resolve_application_base_amount(university: Optional[Dict]) -> Tuple[float, str]:
    if university:
        tuition = university.get("tuitionData") or []
        if tuition:
            parsed = parse_tuition_amount(tuition[0].get("amount"))
            if parsed and parsed > 0:
                return parsed, SOURCE_TUITION
    return app_settings.DEFAULT_TUITION_BASE_AMOUNT, SOURCE_DEFAULT


def resolve_vas_base_amount(service_type: str, service_fees: Optional[ServiceFees]) -> Tuple[float, str]:
    key = service_type_to_fee_key(service_type)
    fee = getattr(service_fees, key, 0) if service_fees else 0
    if fee and fee > 0:
        return float(fee), SOURCE_SERVICE_FEE
    return app_settings.DEFAULT_VAS_FEE, SOURCE_DEFAULT


async def load_university(university_code: Optional[str]) -> Optional[Dict]:
    if not university_code:
        return None
    try:
        return await db_ops.get_one(Collections.UNIVERSITIES, {"universitycode": university_code})
    except Exception as exc:
        # A missing tuition table only means the default base applies
        logger.warning("University lookup failed for %s: %s", university_code, exc)
        return None
