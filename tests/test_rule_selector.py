"""Tests for first-match-wins rule selection."""

import logging

from mailrules.services.rule_selector import (
    compile_rule,
    compile_rules,
    match_single_rule,
    order_rules,
    select_rule,
)

ALWAYS = {"operator": "AND", "conditions": []}
NEVER = {"operator": "OR", "conditions": []}


def _from_github(condition):
    return {"operator": "AND", "conditions": [condition("sender_email", "@github.com", "ends_with")]}


class TestSelectRule:
    def test_lowest_position_wins(self, rule_factory, github_context):
        late = compile_rule(rule_factory(name="late", conditions=ALWAYS, position=5))
        early = compile_rule(rule_factory(name="early", conditions=ALWAYS, position=2))
        match = select_rule([late, early], github_context)
        assert match.rule_name == "early"

    def test_gapped_positions(self, rule_factory, github_context):
        rules = compile_rules(
            [
                rule_factory(name="ten", conditions=ALWAYS, position=10),
                rule_factory(name="one-hundred", conditions=ALWAYS, position=100),
                rule_factory(name="three", conditions=ALWAYS, position=3),
            ]
        )
        assert select_rule(rules, github_context).rule_name == "three"

    def test_duplicate_positions_keep_declaration_order(self, rule_factory, github_context):
        first = compile_rule(rule_factory(name="first", conditions=ALWAYS, position=1))
        second = compile_rule(rule_factory(name="second", conditions=ALWAYS, position=1))
        assert select_rule([first, second], github_context).rule_name == "first"
        assert select_rule([second, first], github_context).rule_name == "second"

    def test_skips_non_matching_rules(self, rule_factory, condition, github_context):
        rules = compile_rules(
            [
                rule_factory(name="never", conditions=NEVER, position=1),
                rule_factory(name="github", conditions=_from_github(condition), position=2),
            ]
        )
        match = select_rule(rules, github_context)
        assert match.rule_name == "github"

    def test_no_match(self, rule_factory, github_context):
        rules = compile_rules([rule_factory(conditions=NEVER)])
        assert select_rule(rules, github_context) is None

    def test_disabled_rules_are_skipped(self, rule_factory, github_context):
        rules = compile_rules(
            [
                rule_factory(name="off", conditions=ALWAYS, position=1, enabled=False),
                rule_factory(name="on", conditions=ALWAYS, position=2),
            ]
        )
        assert select_rule(rules, github_context).rule_name == "on"

    def test_folder_scoping(self, rule_factory, github_context):
        rules = compile_rules(
            [
                rule_factory(name="archive-only", conditions=ALWAYS, position=1, folder_ids=[7]),
                rule_factory(name="inbox", conditions=ALWAYS, position=2, folder_ids=[1]),
            ]
        )
        assert select_rule(rules, github_context, folder_id=1).rule_name == "inbox"
        assert select_rule(rules, github_context, folder_id=7).rule_name == "archive-only"
        assert select_rule(rules, github_context, folder_id=99) is None

    def test_no_folder_disables_scoping(self, rule_factory, github_context):
        rules = compile_rules([rule_factory(name="archive-only", conditions=ALWAYS, folder_ids=[7])])
        assert select_rule(rules, github_context).rule_name == "archive-only"

    def test_match_carries_action(self, rule_factory, github_context):
        rule = rule_factory(
            conditions=ALWAYS, action_type="move_to_folder", action_config={"folder_id": 4}
        )
        match = select_rule([compile_rule(rule)], github_context)
        assert match.rule_id == rule.id
        assert match.action_type == "move_to_folder"
        assert match.action_config == {"folder_id": 4}


class TestMatchSingleRule:
    def test_ignores_higher_priority_and_enabled_flag(self, rule_factory, github_context):
        rule = compile_rule(rule_factory(name="disabled", conditions=ALWAYS, position=50, enabled=False))
        match = match_single_rule(rule, github_context)
        assert match is not None
        assert match.rule_name == "disabled"

    def test_non_match(self, rule_factory, github_context):
        assert match_single_rule(compile_rule(rule_factory(conditions=NEVER)), github_context) is None


class TestCompileRules:
    def test_invalid_rules_are_skipped(self, rule_factory, caplog):
        good = rule_factory(name="good")
        bad = rule_factory(name="bad", conditions={"operator": "NAND", "conditions": []})
        with caplog.at_level(logging.WARNING):
            compiled = compile_rules([bad, good])
        assert [r.name for r in compiled] == ["good"]
        assert "invalid conditions" in caplog.text

    def test_order_rules_is_stable(self, rule_factory):
        rules = compile_rules(
            [
                rule_factory(name="b", position=2),
                rule_factory(name="a1", position=1),
                rule_factory(name="a2", position=1),
            ]
        )
        assert [r.name for r in order_rules(rules)] == ["a1", "a2", "b"]
