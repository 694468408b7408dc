from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Literal, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from clinic_schedule.calendar_utils import blocks_overlap, day_of_week
from clinic_schedule.models import AvailabilityRule

Decision = Literal["allow", "warn", "hard_block"]

ALLOW_LIST_REASON = "Provider is only available on specific days/times"
BLOCK_REASON = "Provider is blocked for this time slot"


@dataclass
class AvailabilityDecision:
    decision: Decision
    matched_rules: list[AvailabilityRule] = field(default_factory=list)
    reason: str | None = None

    @property
    def matched_rule_ids(self) -> list[int]:
        return [rule.id for rule in self.matched_rules]


def _decision_for(enforcement: str) -> Decision:
    return "hard_block" if enforcement == "hard" else "warn"


def evaluate_rules(rules: Sequence[AvailabilityRule], on: date, time_block: str) -> AvailabilityDecision:
    """Decide a single slot against the rules of one provider/service pair.

    ``allow`` rules turn the pair into an allow-list: a slot outside every
    allow rule is blocked with the strongest enforcement among them. A
    matching hard ``block`` rule wins outright; soft ones downgrade to warn.
    """
    dow = day_of_week(on)
    matching = [r for r in rules if r.day_of_week == dow and blocks_overlap(r.time_block, time_block)]
    outcome = AvailabilityDecision("allow")

    allow_rules = [r for r in rules if r.rule_type == "allow"]
    if allow_rules and not any(r.rule_type == "allow" for r in matching):
        enforcement = "hard" if any(r.enforcement == "hard" for r in allow_rules) else "soft"
        outcome = AvailabilityDecision(_decision_for(enforcement), list(allow_rules), ALLOW_LIST_REASON)

    blocking = [r for r in matching if r.rule_type == "block"]
    hard = [r for r in blocking if r.enforcement == "hard"]
    if hard:
        return AvailabilityDecision("hard_block", hard, hard[0].reason or BLOCK_REASON)
    soft = [r for r in blocking if r.enforcement == "soft"]
    if not soft or outcome.decision == "hard_block":
        return outcome
    if outcome.decision == "warn":
        outcome.matched_rules.extend(soft)
        return outcome
    return AvailabilityDecision("warn", soft, soft[0].reason or BLOCK_REASON)


class AvailabilityEvaluator:
    def __init__(self, db: Session) -> None:
        self.db = db

    def rules_for(self, provider_id: int, service_id: int) -> list[AvailabilityRule]:
        return list(
            self.db.scalars(
                select(AvailabilityRule).where(
                    AvailabilityRule.provider_id == provider_id,
                    AvailabilityRule.service_id == service_id,
                )
            ).all()
        )

    def evaluate(self, provider_id: int, service_id: int, on: date, time_block: str) -> AvailabilityDecision:
        return evaluate_rules(self.rules_for(provider_id, service_id), on, time_block)

    def evaluate_many(self, slots: Iterable[tuple[int, int, date, str]]) -> list[AvailabilityDecision]:
        """Evaluate ``(provider_id, service_id, date, time_block)`` slots with one rules query."""
        slot_list = list(slots)
        if not slot_list:
            return []
        provider_ids = {slot[0] for slot in slot_list}
        service_ids = {slot[1] for slot in slot_list}
        rules = self.db.scalars(
            select(AvailabilityRule).where(
                AvailabilityRule.provider_id.in_(provider_ids),
                AvailabilityRule.service_id.in_(service_ids),
            )
        ).all()
        by_pair: dict[tuple[int, int], list[AvailabilityRule]] = defaultdict(list)
        for rule in rules:
            by_pair[(rule.provider_id, rule.service_id)].append(rule)
        return [
            evaluate_rules(by_pair.get((provider_id, service_id), []), on, time_block)
            for provider_id, service_id, on, time_block in slot_list
        ]
