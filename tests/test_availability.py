from __future__ import annotations

from datetime import date

from clinic_schedule.availability import AvailabilityEvaluator, evaluate_rules
from clinic_schedule.models import AvailabilityRule

MONDAY = date(2026, 1, 5)
TUESDAY = date(2026, 1, 6)


def rule(rule_id, day, block, rule_type="block", enforcement="hard", reason=None):
    return AvailabilityRule(
        id=rule_id,
        provider_id=1,
        service_id=1,
        day_of_week=day,
        time_block=block,
        rule_type=rule_type,
        enforcement=enforcement,
        reason=reason,
    )


def test_no_rules_allows():
    assert evaluate_rules([], MONDAY, "AM").decision == "allow"


def test_hard_block_wins_over_soft():
    rules = [rule(1, 1, "AM", enforcement="soft"), rule(2, 1, "BOTH", reason="Admin day")]
    decision = evaluate_rules(rules, MONDAY, "AM")
    assert decision.decision == "hard_block"
    assert decision.matched_rule_ids == [2]
    assert decision.reason == "Admin day"


def test_soft_block_warns():
    decision = evaluate_rules([rule(1, 1, "PM", enforcement="soft")], MONDAY, "BOTH")
    assert decision.decision == "warn"
    assert decision.matched_rule_ids == [1]


def test_block_on_other_day_or_block_does_not_match():
    rules = [rule(1, 2, "AM"), rule(2, 1, "PM")]
    assert evaluate_rules(rules, MONDAY, "AM").decision == "allow"


def test_allow_rules_restrict_to_listed_slots():
    rules = [rule(1, 1, "AM", rule_type="allow")]
    assert evaluate_rules(rules, MONDAY, "AM").decision == "allow"
    outside = evaluate_rules(rules, TUESDAY, "AM")
    assert outside.decision == "hard_block"
    assert outside.matched_rule_ids == [1]


def test_soft_allow_list_only_warns():
    rules = [rule(1, 1, "AM", rule_type="allow", enforcement="soft")]
    assert evaluate_rules(rules, TUESDAY, "PM").decision == "warn"


def test_evaluator_reads_rules_per_provider_and_service(db, seeded):
    db.add(
        AvailabilityRule(
            provider_id=seeded["P1"],
            service_id=seeded["Clinic"],
            day_of_week=1,
            time_block="AM",
            rule_type="block",
            enforcement="hard",
            reason="Teaching",
        )
    )
    db.commit()

    evaluator = AvailabilityEvaluator(db)
    assert evaluator.evaluate(seeded["P1"], seeded["Clinic"], MONDAY, "AM").decision == "hard_block"
    assert evaluator.evaluate(seeded["P1"], seeded["Procedures"], MONDAY, "AM").decision == "allow"
    assert evaluator.evaluate(seeded["P2"], seeded["Clinic"], MONDAY, "AM").decision == "allow"

    decisions = evaluator.evaluate_many(
        [
            (seeded["P1"], seeded["Clinic"], MONDAY, "BOTH"),
            (seeded["P1"], seeded["Clinic"], MONDAY, "PM"),
        ]
    )
    assert [d.decision for d in decisions] == ["hard_block", "allow"]
