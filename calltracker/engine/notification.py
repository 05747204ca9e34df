"""
Call Tracker - Verification Notifications

Builds the in-app message a user receives when one of their calls is
verified. Pure: the pipeline decides whether and where to persist it.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, NamedTuple

from calltracker.config import TokenCallStatus
from calltracker.models.token_call import TokenCall

RELATED_ENTITY_TYPE = "token_call"


class VerificationNotice(NamedTuple):
    message: str
    metadata: dict[str, Any]


def format_price(price: Decimal) -> str:
    """Thousands separators, at most 8 decimals, no trailing zeros."""
    return f"{price:,.8f}".rstrip("0").rstrip(".")


def _decimal_str(value: Decimal | None) -> str | None:
    return str(value) if value is not None else None


def build_verification_notice(call: TokenCall) -> VerificationNotice | None:
    """Message and metadata for a verified call. None for any other status."""
    if call.status == TokenCallStatus.VERIFIED_SUCCESS:
        outcome = "success"
        message = (
            f"Your call for ${call.token_id} reached its target price of "
            f"${format_price(call.target_price)}!"
        )
    elif call.status == TokenCallStatus.VERIFIED_FAIL:
        outcome = "fail"
        message = (
            f"Your call for ${call.token_id} did not reach its target price of "
            f"${format_price(call.target_price)}."
        )
    else:
        return None

    metadata = {
        "callId": str(call.id),
        "tokenId": call.token_id,
        "status": outcome,
        "targetPrice": _decimal_str(call.target_price),
        "finalPrice": _decimal_str(call.final_price_at_target_date),
        "peakPriceDuringPeriod": _decimal_str(call.peak_price_during_period),
        "targetHitTimestamp": (
            call.target_hit_timestamp.isoformat() if call.target_hit_timestamp else None
        ),
        "timeToHitRatio": call.time_to_hit_ratio,
    }
    return VerificationNotice(message=message, metadata=metadata)
