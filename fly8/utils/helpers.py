"""
Helper utility functions
"""
import random
import string
import time
from bson import ObjectId
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List
from datetime import datetime
import pytz

from fly8.config.settings import settings

DISPLAY_TZ = pytz.timezone(settings.TIMEZONE)

def serialize_doc(doc: Dict) -> Dict:
    """Convert MongoDB document to JSON-serializable format"""
    if doc is None:
        return None

    if "_id" in doc and isinstance(doc["_id"], ObjectId):
        doc["_id"] = str(doc["_id"])

    # Convert any nested ObjectIds or datetimes
    for key, value in doc.items():
        if isinstance(value, ObjectId):
            doc[key] = str(value)
        elif isinstance(value, datetime):
            if value.tzinfo is None:
                utc_dt = pytz.utc.localize(value)
                doc[key] = utc_dt.astimezone(DISPLAY_TZ).isoformat()
            else:
                doc[key] = value.astimezone(DISPLAY_TZ).isoformat()
        elif isinstance(value, list):
            doc[key] = [serialize_doc(item) if isinstance(item, dict) else item for item in value]
        elif isinstance(value, dict):
            doc[key] = serialize_doc(value)

    return doc

def serialize_docs(docs: List[Dict]) -> List[Dict]:
    """Convert list of MongoDB documents to JSON-serializable format"""
    return [serialize_doc(doc) for doc in docs]

def round2(value: Any) -> float:
    """Round to cents, half away from zero (2.675 -> 2.68, -2.675 -> -2.68)."""
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))

def compute_commission_amount(base_amount: float, percentage: float) -> float:
    return round2(Decimal(str(base_amount)) * Decimal(str(percentage)) / Decimal(100))

def base36(number: int) -> str:
    digits = string.digits + string.ascii_uppercase
    if number == 0:
        return "0"
    out = []
    while number:
        number, rem = divmod(number, 36)
        out.append(digits[rem])
    return "".join(reversed(out))

def generate_reference_id(commission_type: str) -> str:
    """COM-APP-<base36 ms timestamp>-<4 random chars>"""
    prefix = "COM-APP" if commission_type == "APPLICATION" else "COM-VAS"
    stamp = base36(int(time.time() * 1000))
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=4))
    return f"{prefix}-{stamp}-{suffix}"

def paginate(page: int, limit: int) -> Dict[str, int]:
    page = max(1, int(page or 1))
    limit = max(1, min(int(limit or settings.DEFAULT_PAGE_SIZE), settings.MAX_PAGE_SIZE))
    return {"page": page, "limit": limit, "skip": (page - 1) * limit}

def pagination_meta(total: int, page: int, limit: int) -> Dict[str, int]:
    return {
        "total": total,
        "page": page,
        "limit": limit,
        "totalPages": (total + limit - 1) // limit,
    }
