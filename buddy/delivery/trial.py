"""Trial-to-paid policy keyed on days since signup.

| days  | throttle | warn  | prompt_subscribe |
|-------|----------|-------|------------------|
| 0-2   | no       | no    | no               |
| 3-6   | no       | yes   | no               |
| 7     | no       | no    | no               |
| >= 8  | yes      | no    | yes              |

Premium subscribers are never warned, throttled or prompted.
"""

from dataclasses import dataclass
from datetime import datetime

from buddy.core.datetime_utils import parse_instant, whole_days_between

WARN_FROM_DAY = 3
TRIAL_DAYS = 7


@dataclass(frozen=True)
class TrialDecision:
    throttle: bool = False
    warn: bool = False
    prompt_subscribe: bool = False


PREMIUM = TrialDecision()


def evaluate(days_since_signup: int, is_premium: bool) -> TrialDecision:
    """Map days since signup to the trial flags. Never raises."""
    if is_premium:
        return PREMIUM

    days = max(0, days_since_signup)
    past_trial = days > TRIAL_DAYS
    return TrialDecision(
        throttle=past_trial,
        warn=WARN_FROM_DAY <= days < TRIAL_DAYS,
        prompt_subscribe=past_trial,
    )


def resolve_signup(raw_signed_up_at: object, now: datetime) -> tuple[datetime, bool]:
    """Parse a stored signup instant.

    A missing or unparsable value is replaced by ``now`` (day 0).

    Returns:
        (signup instant, whether it was repaired and should be persisted)
    """
    signed_up_at = parse_instant(raw_signed_up_at)
    if signed_up_at is None:
        return now, True
    return signed_up_at, False


def days_since_signup(signed_up_at: datetime, now: datetime) -> int:
    """Full days elapsed since signup, floor((now - signed_up_at) / 1 day), never negative."""
    return whole_days_between(signed_up_at, now)
