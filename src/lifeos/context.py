"""Summary: Context window selection for conversational AI calls.

Importance: Bounds which prior user turns each prompt can see, by date and depth.
Alternatives: Send the entire conversation on every call.
"""

from __future__ import annotations

from datetime import datetime, time, timedelta
from typing import Iterable

from lifeos.models import ChatMessage, ContextMode, ContextPolicy, MessageRole


def start_of_day(moment: datetime) -> datetime:
    return datetime.combine(moment.date(), time.min)


def is_same_day(first: datetime, second: datetime) -> bool:
    return first.date() == second.date()


def rolling_week_range(moment: datetime) -> tuple[datetime, datetime]:
    """Summary: Return the seven-day window starting at local midnight of a moment.

    Importance: The week mode looks forward from today, not back to a calendar week start.
    Alternatives: Align weeks to Monday.
    """

    start = start_of_day(moment)
    end = start + timedelta(days=6, hours=23, minutes=59, seconds=59, microseconds=999999)
    return start, end


def _in_window(message: ChatMessage, policy: ContextPolicy, now: datetime) -> bool:
    if policy.mode == ContextMode.TODAY:
        return is_same_day(message.timestamp, now)
    if policy.mode == ContextMode.WEEK:
        start, end = rolling_week_range(now)
        return start <= message.timestamp <= end
    if policy.mode == ContextMode.CUSTOM:
        if policy.custom_start is None or policy.custom_end is None:
            return True
        start = datetime.combine(policy.custom_start, time.min)
        end = datetime.combine(policy.custom_end, time.min) + timedelta(days=1)
        return start <= message.timestamp < end
    return True


def select_context(
    messages: Iterable[ChatMessage], policy: ContextPolicy, now: datetime
) -> list[ChatMessage]:
    """Summary: Select the user turns visible to the next AI call.

    Importance: Model and system turns are never fed back; only the user's own words are.
    Alternatives: Include model replies and let the prompt grow unbounded.
    """

    selected = [
        message
        for message in messages
        if message.role == MessageRole.USER and _in_window(message, policy, now)
    ]
    if not policy.unbounded:
        selected = selected[-policy.rounds :] if policy.rounds > 0 else []
    return selected
