"""
Policyholder message templates.

Only these three messages are ever sent to a holder. Fields missing
from the payload render as an empty string.
"""

import string
from typing import Any, Dict, Mapping


TEMPLATES: Dict[str, str] = {
    "PAYOUT_CONFIRMED": (
        "Your insurance payout {payout_id} of {currency} {amount} has been sent. "
        "{compensation_line}"
    ),
    "PAYOUT_DELAYED": (
        "Your insurance payout {payout_id} is delayed. We are working on it and "
        "you will receive delay compensation with the payment."
    ),
    "MANUAL_FOLLOW_UP": (
        "Your insurance payout {payout_id} needs manual processing. "
        "An agent will contact you shortly."
    ),
}


class _Defaulting(dict):
    def __missing__(self, key: str) -> str:
        return ""


def render(event_kind: str, payload: Mapping[str, Any]) -> str:
    """Render the holder message for an event kind."""
    template = TEMPLATES.get(event_kind)
    if template is None:
        raise KeyError(f"No message template for {event_kind}")

    values = _Defaulting(payload)
    compensation = payload.get("compensation")
    if compensation and str(compensation) not in ("0", "0.00"):
        values["compensation_line"] = (
            f"It includes {payload.get('currency', '')} {compensation} delay compensation."
        )
    return string.Formatter().vformat(template, (), values).strip()
