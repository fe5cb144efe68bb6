"""Unit tests for condition decoding and evaluation."""

import json

import pytest

from mailrules.services.rules_engine import (
    ConditionGroup,
    InvalidConditionError,
    MembershipCondition,
    RuleEvaluationContext,
    SenderListError,
    TextCondition,
    add_sender_to_conditions,
    compile_condition,
    compile_conditions,
    evaluate_condition,
    evaluate_conditions,
    parse_membership_list,
)


def _cond(field, value="", match_type="contains", negate=False):
    return compile_condition({"field": field, "match_type": match_type, "value": value, "negate": negate})


def _tree(operator, *children):
    return compile_conditions({"operator": operator, "conditions": list(children)})


def _leaf(field, value="", match_type="contains", negate=False):
    return {"field": field, "match_type": match_type, "value": value, "negate": negate}


class TestTextMatching:
    def test_contains_is_case_insensitive(self, github_context):
        assert evaluate_condition(_cond("email_subject", "NEW ISSUE"), github_context) is True

    def test_equals(self, github_context):
        assert evaluate_condition(_cond("sender_name", "github", "equals"), github_context) is True
        assert evaluate_condition(_cond("sender_name", "git", "equals"), github_context) is False

    def test_legacy_exact_is_equals(self, github_context):
        condition = _cond("sender_name", "GitHub", "exact")
        assert condition.match_type == "equals"
        assert evaluate_condition(condition, github_context) is True

    def test_starts_with(self, github_context):
        assert evaluate_condition(_cond("email_subject", "[org/", "starts_with"), github_context) is True
        assert evaluate_condition(_cond("email_subject", "issue", "starts_with"), github_context) is False

    def test_ends_with(self, github_context):
        assert evaluate_condition(_cond("sender_email", "@GitHub.com", "ends_with"), github_context) is True

    def test_regex_search(self, github_context):
        assert evaluate_condition(_cond("email_subject", r"\[\w+/\w+\]", "regex"), github_context) is True

    def test_regex_is_case_insensitive(self, github_context):
        assert evaluate_condition(_cond("email_subject", "^\\[ORG", "regex"), github_context) is True

    def test_invalid_regex_never_matches(self, github_context):
        condition = _cond("email_subject", "([unclosed", "regex")
        assert condition.regex is None
        assert evaluate_condition(condition, github_context) is False

    def test_unknown_match_type_never_matches(self, github_context):
        assert evaluate_condition(_cond("email_subject", "issue", "fuzzy"), github_context) is False

    def test_empty_value_only_equals_empty_pattern(self):
        ctx = RuleEvaluationContext(sender_name="")
        assert evaluate_condition(_cond("sender_name", "", "equals"), ctx) is True
        assert evaluate_condition(_cond("sender_name", "", "contains"), ctx) is False
        assert evaluate_condition(_cond("sender_name", "", "starts_with"), ctx) is False

    def test_unknown_field_has_no_values(self, github_context):
        assert evaluate_condition(_cond("priority", "high"), github_context) is False


class TestMultiValuedFields:
    def test_any_recipient_matches(self):
        ctx = RuleEvaluationContext(to_emails=("a@x.com", "team@corp.example"))
        assert evaluate_condition(_cond("to_email", "@corp.example", "ends_with"), ctx) is True

    def test_no_recipients_is_false(self):
        ctx = RuleEvaluationContext()
        assert evaluate_condition(_cond("cc_email", "x"), ctx) is False

    def test_bcc_names(self):
        ctx = RuleEvaluationContext(bcc_names=("Audit Bot",))
        assert evaluate_condition(_cond("bcc_name", "audit"), ctx) is True

    def test_attachment_filenames(self):
        ctx = RuleEvaluationContext(attachment_filenames=("notes.txt", "invoice-2024.pdf"))
        assert evaluate_condition(_cond("attachment_filename", r"invoice-\d+\.pdf", "regex"), ctx) is True


class TestHeaders:
    def test_header_name_is_case_insensitive(self, github_context):
        assert evaluate_condition(_cond("header:list-id", "github.com"), github_context) is True

    def test_absent_header_is_false(self, github_context):
        assert evaluate_condition(_cond("header:X-Spam-Flag", "yes"), github_context) is False

    def test_absent_header_negated_is_true(self, github_context):
        assert evaluate_condition(_cond("header:X-Spam-Flag", "yes", negate=True), github_context) is True

    def test_repeated_header_any_value(self):
        ctx = RuleEvaluationContext(headers=(("Received", "from a"), ("Received", "from relay.example")))
        assert evaluate_condition(_cond("header:Received", "relay"), ctx) is True


class TestMembership:
    def test_sender_in_list(self, github_context):
        condition = _cond("sender_in_contacts", json.dumps(["Notifications@GitHub.com"]), "in_list")
        assert isinstance(condition, MembershipCondition)
        assert evaluate_condition(condition, github_context) is True

    def test_sender_in_contacts_is_always_membership(self, github_context):
        # Whatever match type was stored, the field is a list lookup
        condition = _cond("sender_in_contacts", json.dumps(["notifications@github.com"]), "contains")
        assert isinstance(condition, MembershipCondition)
        assert evaluate_condition(condition, github_context) is True

    def test_sender_not_in_list(self, github_context):
        condition = _cond("sender_in_contacts", json.dumps(["boss@company.com"]), "in_list")
        assert evaluate_condition(condition, github_context) is False

    def test_malformed_list_is_empty(self, github_context):
        condition = _cond("sender_in_contacts", "not json", "in_list")
        assert condition.allowed_values == frozenset()
        assert evaluate_condition(condition, github_context) is False

    def test_malformed_list_negated_is_true(self, github_context):
        condition = _cond("sender_in_contacts", "{broken", "in_list", negate=True)
        assert evaluate_condition(condition, github_context) is True

    def test_stored_in_list_on_text_field_still_evaluates(self, github_context):
        condition = _cond("sender_name", json.dumps(["GitHub", "GitLab"]), "in_list")
        assert evaluate_condition(condition, github_context) is True

    def test_parse_membership_list(self):
        assert parse_membership_list('["A@x.com", " b@y.com "]') == frozenset({"a@x.com", "b@y.com"})
        assert parse_membership_list('{"a": 1}') == frozenset()
        assert parse_membership_list("[1, 2]") == frozenset()
        assert parse_membership_list(["c@z.com"]) == frozenset({"c@z.com"})


class TestNegate:
    def test_negate_inverts_match(self, github_context):
        assert evaluate_condition(_cond("sender_email", "github", negate=True), github_context) is False

    def test_negate_inverts_non_match(self, github_context):
        assert evaluate_condition(_cond("sender_email", "gitlab", negate=True), github_context) is True

    def test_negate_applies_after_any_value(self):
        # "no recipient matches", not "some recipient doesn't match"
        ctx = RuleEvaluationContext(to_emails=("a@x.com", "b@y.com"))
        assert evaluate_condition(_cond("to_email", "a@x.com", "equals", negate=True), ctx) is False


class TestConditionTree:
    def test_empty_and_is_true(self, github_context):
        assert evaluate_conditions(_tree("AND"), github_context) is True

    def test_empty_or_is_false(self, github_context):
        assert evaluate_conditions(_tree("OR"), github_context) is False

    def test_and_requires_all(self, github_context):
        tree = _tree("AND", _leaf("sender_email", "github"), _leaf("email_subject", "pull request"))
        assert evaluate_conditions(tree, github_context) is False

    def test_or_requires_any(self, github_context):
        tree = _tree("OR", _leaf("sender_email", "gitlab"), _leaf("email_subject", "issue"))
        assert evaluate_conditions(tree, github_context) is True

    def test_nested_groups(self, github_context):
        tree = _tree(
            "AND",
            _leaf("sender_email", "@github.com", "ends_with"),
            {"operator": "OR", "conditions": [_leaf("email_subject", "release"), _leaf("header:List-Id", "repo")]},
        )
        assert evaluate_conditions(tree, github_context) is True

    def test_github_not_pull_request(self, github_context):
        tree = _tree(
            "AND",
            _leaf("sender_email", "@github.com", "ends_with"),
            _leaf("email_subject", "pull request", negate=True),
        )
        assert evaluate_conditions(tree, github_context) is True

    def test_operator_is_case_insensitive(self, github_context):
        tree = compile_conditions({"operator": "or", "conditions": [_leaf("email_subject", "issue")]})
        assert tree.operator == "OR"

    def test_evaluation_is_deterministic(self, github_context):
        tree = _tree("OR", _leaf("content", "opened"), _leaf("sender_name", "x", "regex"))
        results = {evaluate_conditions(tree, github_context) for _ in range(5)}
        assert results == {True}


class TestDecoding:
    def test_compile_nested(self):
        tree = compile_conditions(
            {"operator": "AND", "conditions": [_leaf("content", "x"), {"operator": "OR", "conditions": []}]}
        )
        assert isinstance(tree, ConditionGroup)
        assert isinstance(tree.children[0], TextCondition)
        assert isinstance(tree.children[1], ConditionGroup)

    def test_camel_case_match_type_accepted(self):
        condition = compile_condition({"field": "content", "matchType": "starts_with", "value": "x"})
        assert condition.match_type == "starts_with"

    def test_missing_field_raises(self):
        with pytest.raises(InvalidConditionError):
            compile_conditions({"operator": "AND", "conditions": [{"value": "x"}]})

    def test_unknown_operator_raises(self):
        with pytest.raises(InvalidConditionError):
            compile_conditions({"operator": "XOR", "conditions": []})

    def test_non_object_tree_raises(self):
        with pytest.raises(InvalidConditionError):
            compile_conditions(["not", "a", "group"])


class TestAddSender:
    def test_appends_to_top_level_list(self):
        raw = {"operator": "OR", "conditions": [_leaf("sender_in_contacts", '["a@x.com"]', "in_list")]}
        updated, count = add_sender_to_conditions(raw, " B@Y.com ")
        assert count == 2
        assert json.loads(updated["conditions"][0]["value"]) == ["a@x.com", "b@y.com"]
        # Input left untouched
        assert raw["conditions"][0]["value"] == '["a@x.com"]'

    def test_keeps_other_conditions_and_flags(self):
        raw = {
            "operator": "AND",
            "conditions": [
                _leaf("email_subject", "invoice"),
                _leaf("sender_in_contacts", "[]", "in_list", negate=True),
            ],
        }
        updated, count = add_sender_to_conditions(raw, "c@z.com")
        assert count == 1
        assert updated["conditions"][0] == raw["conditions"][0]
        assert updated["conditions"][1]["negate"] is True

    def test_duplicate_sender_rejected(self):
        raw = {"operator": "OR", "conditions": [_leaf("sender_in_contacts", '["A@x.com"]', "in_list")]}
        with pytest.raises(SenderListError, match="already"):
            add_sender_to_conditions(raw, "a@x.com")

    def test_nested_list_is_not_used(self):
        raw = {
            "operator": "AND",
            "conditions": [{"operator": "OR", "conditions": [_leaf("sender_in_contacts", "[]", "in_list")]}],
        }
        with pytest.raises(SenderListError):
            add_sender_to_conditions(raw, "a@x.com")

    def test_malformed_list_starts_fresh(self):
        raw = {"operator": "OR", "conditions": [_leaf("sender_in_contacts", "oops", "in_list")]}
        updated, count = add_sender_to_conditions(raw, "a@x.com")
        assert count == 1
        assert json.loads(updated["conditions"][0]["value"]) == ["a@x.com"]

    def test_stored_raw_list_is_extended(self):
        raw = {"operator": "OR", "conditions": [_leaf("sender_in_contacts", ["a@x.com"], "in_list")]}
        updated, count = add_sender_to_conditions(raw, "b@y.com")
        assert count == 2
        assert json.loads(updated["conditions"][0]["value"]) == ["a@x.com", "b@y.com"]
        assert raw["conditions"][0]["value"] == ["a@x.com"]

    @pytest.mark.parametrize("value", [42, {"a@x.com": True}])
    def test_non_string_value_starts_fresh(self, value):
        raw = {"operator": "OR", "conditions": [_leaf("sender_in_contacts", value, "in_list")]}
        updated, count = add_sender_to_conditions(raw, "a@x.com")
        assert count == 1
        assert json.loads(updated["conditions"][0]["value"]) == ["a@x.com"]
