"""
Send-Eligibility Decider - decides whether a routed slot goes out to a user.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from nycping.core.entities import (
    ContentItem,
    DeliveredItem,
    User,
    UrgencyClass,
    UserSendState,
)
from nycping.processing.router import SlotPlan
from nycping.services.config import CurationConfig
from nycping.services.scheduler import in_quiet_hours

logger = logging.getLogger(__name__)


@dataclass
class SendDecision:
    send: bool
    reason: str
    items: List[ContentItem] = field(default_factory=list)
    escalations: List[str] = field(default_factory=list)


def is_escalation(item: ContentItem, prior: DeliveredItem) -> bool:
    """A newer version with a status change or a higher severity."""
    if item.version <= prior.version:
        return False
    if item.status_changed:
        return True
    return (
        item.severity is not None
        and prior.severity is not None
        and item.severity.rank > prior.severity.rank
    )


def filter_repeats(items: List[ContentItem], state: UserSendState):
    """
    Don't-repeat rule: drop what the user already has, keeping escalated re-sends.
    Returns (kept, escalation_ids).
    """
    kept, escalations = [], []
    for item in items:
        prior = state.delivered.get(item.id)
        if prior is None:
            kept.append(item)
        elif is_escalation(item, prior):
            kept.append(item)
            escalations.append(item.id)
        else:
            logger.debug(f"Already delivered: {item.id} v{prior.version}")
    return kept, escalations


class SendEligibilityDecider:
    def __init__(self, config: CurationConfig):
        self.config = config

    def _skip(self, user: User, plan: SlotPlan, reason: str) -> SendDecision:
        logger.info(f"[{plan.slot.value}] skip user={user.id}: {reason}")
        return SendDecision(send=False, reason=reason)

    def decide(
        self,
        plan: SlotPlan,
        user: User,
        state: UserSendState,
        now: datetime,
        force: bool = False,
    ) -> SendDecision:
        """
        `force` overrides the scarcity rule only; repeat suppression,
        frequency cap and quiet hours still apply.
        """
        slot = plan.slot
        if slot.value in state.slots_sent:
            return self._skip(user, plan, "already_sent_for_slot")

        items, escalations = filter_repeats(plan.included, state)
        if not items:
            return self._skip(user, plan, "nothing_new")

        urgent = any(item.urgency is UrgencyClass.URGENT for item in items)
        counted = [item for item in items if not item.is_batchable]
        required = any(item.id in plan.required_ids for item in counted)
        escalated = any(item.id in escalations for item in counted)
        minimum = self.config.slot_capacity[slot].min_items

        if not counted:
            return self._skip(user, plan, "batchable_only")

        if not force and len(counted) < minimum and not (required or escalated):
            return self._skip(user, plan, f"below_minimum ({len(counted)}/{minimum})")

        if slot not in user.slots and not urgent:
            return self._skip(user, plan, "slot_not_subscribed")

        cap: Optional[int] = self.config.frequency_caps.get(user.tier)
        if cap is not None and state.sends_today >= cap and not urgent:
            return self._skip(user, plan, f"frequency_cap ({state.sends_today}/{cap})")

        if not urgent and in_quiet_hours(
            now,
            self.config.quiet_hours_start,
            self.config.quiet_hours_end,
            self.config.timezone,
        ):
            return self._skip(user, plan, "quiet_hours")

        return SendDecision(send=True, reason="eligible", items=items, escalations=escalations)
