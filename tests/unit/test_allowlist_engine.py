"""Tests for the pure allowlist engine (xray.allowlist.engine).

Tests:
  - normalize_domain / base_domain / normalized_equals
  - is_domain_allowed (exact, www., subdomains, empty rules)
  - add_allowed_domain (normalization, base anchoring, in-place update, uniqueness)
  - remove_allowed_domain (www./case/whitespace symmetry, no collateral removal)
  - update_domain_subdomain_setting (exact match only)
  - auto_allow_domain (all four actions + documented scenarios)
  - Properties over a fixed corpus of awkward inputs
"""

from __future__ import annotations

import pytest

from xray.allowlist.engine import (
    add_allowed_domain,
    auto_allow_domain,
    base_domain,
    is_domain_allowed,
    normalize_domain,
    normalized_equals,
    remove_allowed_domain,
    update_domain_subdomain_setting,
)
from xray.allowlist.models import AutoAllowAction, DomainRule

# Inputs used by the property-style tests below.
AWKWARD_DOMAINS = [
    "example.com",
    "Example.COM",
    "www.example.com",
    "WWW.Example.com",
    "  www.example.com  ",
    "app.example.com",
    "a.b.c.example.com",
    "www.app.example.com",
    "shop.example.co.uk",
    "localhost",
    "www",
    "www.",
    "",
    "   ",
    "no-dots-at-all",
    "example.com.",
    ".example.com",
    "exa mple.com",
    "192.168.0.1",
    "xn--bcher-kva.example",
]


# ─── Normalization ────────────────────────────────────────────────────────────


class TestNormalizeDomain:
    def test_lowercases(self):
        assert normalize_domain("EXAMPLE.Com") == "example.com"

    def test_trims_whitespace(self):
        assert normalize_domain("  example.com\t") == "example.com"

    def test_strips_www_prefix(self):
        assert normalize_domain("www.example.com") == "example.com"

    def test_strips_www_case_insensitively(self):
        assert normalize_domain("WWW.Example.com") == "example.com"

    def test_strips_www_only_once(self):
        assert normalize_domain("www.www.example.com") == "www.example.com"

    def test_keeps_other_subdomains(self):
        assert normalize_domain("www.app.example.com") == "app.example.com"

    def test_www_inside_label_untouched(self):
        assert normalize_domain("wwwexample.com") == "wwwexample.com"

    def test_malformed_passes_through(self):
        assert normalize_domain("Not A Domain") == "not a domain"

    def test_empty_string(self):
        assert normalize_domain("") == ""

    @pytest.mark.parametrize("value", AWKWARD_DOMAINS)
    def test_idempotent(self, value):
        once = normalize_domain(value)
        assert normalize_domain(once) == once


class TestBaseDomain:
    def test_subdomain_reduced(self):
        assert base_domain("app.example.com") == "example.com"

    def test_deep_subdomain_reduced(self):
        assert base_domain("a.b.example.com") == "example.com"

    def test_two_labels_unchanged(self):
        assert base_domain("example.com") == "example.com"

    def test_www_removed_first(self):
        assert base_domain("www.example.com") == "example.com"

    def test_single_label_unchanged(self):
        assert base_domain("localhost") == "localhost"

    def test_empty_string(self):
        assert base_domain("") == ""

    def test_two_label_heuristic_not_public_suffix_aware(self):
        # Documented approximation: multi-label public suffixes collapse to the suffix.
        assert base_domain("shop.example.co.uk") == "co.uk"


class TestNormalizedEquals:
    def test_www_variant_equal(self):
        assert normalized_equals("www.example.com", "example.com")

    def test_case_variant_equal(self):
        assert normalized_equals("EXAMPLE.com", " example.com ")

    def test_subdomain_not_equal(self):
        assert not normalized_equals("app.example.com", "example.com")


# ─── Membership ───────────────────────────────────────────────────────────────


class TestIsDomainAllowed:
    def test_empty_rules_nothing_allowed(self):
        assert is_domain_allowed("example.com", []) is False

    def test_empty_candidate_with_rules(self):
        assert is_domain_allowed("", [DomainRule("example.com")]) is False

    def test_exact_match(self):
        assert is_domain_allowed("example.com", [DomainRule("example.com")]) is True

    def test_www_candidate_matches(self):
        assert is_domain_allowed("www.example.com", [DomainRule("example.com")]) is True

    def test_www_rule_matches(self):
        assert is_domain_allowed("example.com", [DomainRule("www.example.com")]) is True

    def test_case_insensitive(self):
        assert is_domain_allowed("EXAMPLE.COM", [DomainRule("example.com")]) is True

    def test_subdomain_rejected_without_flag(self):
        assert is_domain_allowed("app.example.com", [DomainRule("example.com")]) is False

    def test_subdomain_allowed_with_flag(self):
        rule = DomainRule("example.com", allow_subdomains=True)
        assert is_domain_allowed("a.example.com", [rule]) is True

    def test_deep_subdomain_allowed_with_flag(self):
        rule = DomainRule("example.com", allow_subdomains=True)
        assert is_domain_allowed("x.y.example.com", [rule]) is True

    def test_other_domain_rejected(self):
        rule = DomainRule("example.com", allow_subdomains=True)
        assert is_domain_allowed("example.org", [rule]) is False

    def test_suffix_without_dot_rejected(self):
        rule = DomainRule("example.com", allow_subdomains=True)
        assert is_domain_allowed("badexample.com", [rule]) is False

    def test_subdomain_rule_covers_deeper_names(self):
        rule = DomainRule("foo.example.com", allow_subdomains=True)
        assert is_domain_allowed("x.foo.example.com", [rule]) is True
        assert is_domain_allowed("bar.example.com", [rule]) is False

    def test_any_rule_may_match(self):
        rules = [DomainRule("other.com"), DomainRule("example.com")]
        assert is_domain_allowed("example.com", rules) is True

    def test_does_not_mutate_rules(self):
        rules = [DomainRule("example.com")]
        is_domain_allowed("example.com", rules)
        assert rules == [DomainRule("example.com")]


# ─── add_allowed_domain ───────────────────────────────────────────────────────


class TestAddAllowedDomain:
    def test_adds_new_domain(self):
        assert add_allowed_domain([], "example.com", False) == [DomainRule("example.com", False)]

    def test_normalizes_case(self):
        assert add_allowed_domain([], "EXAMPLE.COM", False)[0].domain == "example.com"

    def test_strips_www(self):
        assert add_allowed_domain([], "www.example.com", False)[0].domain == "example.com"

    def test_trims_whitespace(self):
        assert add_allowed_domain([], "  example.com  ", False)[0].domain == "example.com"

    def test_collapses_to_base_when_allowing_subdomains(self):
        rules = add_allowed_domain([], "app.example.com", True)
        assert rules == [DomainRule("example.com", True)]

    def test_preserves_subdomain_without_flag(self):
        rules = add_allowed_domain([], "app.example.com", False)
        assert rules == [DomainRule("app.example.com", False)]

    def test_duplicate_updates_in_place(self):
        rules = [DomainRule("a.com"), DomainRule("example.com"), DomainRule("b.com")]
        updated = add_allowed_domain(rules, "example.com", True)
        assert updated == [DomainRule("a.com"), DomainRule("example.com", True), DomainRule("b.com")]

    def test_www_variant_updates_existing(self):
        rules = [DomainRule("www.example.com")]
        updated = add_allowed_domain(rules, "example.com", False)
        assert updated == [DomainRule("example.com", False)]

    def test_overwrites_flag(self):
        rules = [DomainRule("example.com", True)]
        assert add_allowed_domain(rules, "example.com", False) == [DomainRule("example.com", False)]

    def test_multiple_domains_keep_insertion_order(self):
        rules: list[DomainRule] = []
        for name in ("c.com", "a.com", "b.com"):
            rules = add_allowed_domain(rules, name, False)
        assert [r.domain for r in rules] == ["c.com", "a.com", "b.com"]

    def test_input_not_mutated(self):
        rules = [DomainRule("example.com")]
        add_allowed_domain(rules, "other.com", False)
        assert rules == [DomainRule("example.com")]

    def test_repairs_stored_duplicates(self):
        rules = [DomainRule("example.com"), DomainRule("x.com"), DomainRule("WWW.example.com")]
        updated = add_allowed_domain(rules, "example.com", True)
        assert updated == [DomainRule("example.com", True), DomainRule("x.com")]

    def test_uniqueness_after_many_adds(self):
        rules: list[DomainRule] = []
        for i, name in enumerate(AWKWARD_DOMAINS * 2):
            rules = add_allowed_domain(rules, name, i % 3 == 0)
        normalized = [normalize_domain(r.domain) for r in rules]
        assert len(normalized) == len(set(normalized))

    def test_length_grows_by_at_most_one(self):
        rules: list[DomainRule] = []
        for name in AWKWARD_DOMAINS:
            updated = add_allowed_domain(rules, name, False)
            assert len(updated) <= len(rules) + 1
            rules = updated

    @pytest.mark.parametrize("value", [d for d in AWKWARD_DOMAINS if d])
    def test_add_then_check(self, value):
        assert is_domain_allowed(value, add_allowed_domain([], value, False)) is True


# ─── remove_allowed_domain ────────────────────────────────────────────────────


class TestRemoveAllowedDomain:
    def test_removes_existing(self):
        rules = [DomainRule("example.com"), DomainRule("other.com")]
        assert remove_allowed_domain(rules, "example.com") == [DomainRule("other.com")]

    def test_www_input_removes_bare_entry(self):
        rules = [DomainRule("example.com", False)]
        assert remove_allowed_domain(rules, "www.example.com") == []

    def test_bare_input_removes_www_entry(self):
        rules = [DomainRule("www.example.com", False)]
        assert remove_allowed_domain(rules, "example.com") == []

    def test_normalizes_case_and_whitespace(self):
        rules = [DomainRule("example.com")]
        assert remove_allowed_domain(rules, "  EXAMPLE.com ") == []

    def test_exact_raw_match(self):
        rules = [DomainRule("Weird Entry")]
        assert remove_allowed_domain(rules, "Weird Entry") == []

    def test_unknown_domain_leaves_content(self):
        rules = [DomainRule("example.com")]
        assert remove_allowed_domain(rules, "missing.com") == rules

    def test_substring_entries_survive(self):
        rules = [DomainRule("example.com"), DomainRule("myexample.com"), DomainRule("app.example.com")]
        assert remove_allowed_domain(rules, "example.com") == [
            DomainRule("myexample.com"),
            DomainRule("app.example.com"),
        ]

    def test_removing_all(self):
        rules = [DomainRule("a.com"), DomainRule("b.com")]
        rules = remove_allowed_domain(rules, "a.com")
        rules = remove_allowed_domain(rules, "b.com")
        assert rules == []

    @pytest.mark.parametrize("value", AWKWARD_DOMAINS)
    def test_remove_then_check(self, value):
        rules = remove_allowed_domain(add_allowed_domain([], value, False), value)
        assert is_domain_allowed(value, rules) is False


# ─── update_domain_subdomain_setting ──────────────────────────────────────────


class TestUpdateDomainSubdomainSetting:
    def test_enables_subdomains(self):
        rules = [DomainRule("example.com", False)]
        assert update_domain_subdomain_setting(rules, "example.com", True) == [
            DomainRule("example.com", True)
        ]

    def test_disables_subdomains(self):
        rules = [DomainRule("example.com", True)]
        assert update_domain_subdomain_setting(rules, "example.com", False) == [
            DomainRule("example.com", False)
        ]

    def test_other_domains_untouched(self):
        rules = [DomainRule("a.com"), DomainRule("example.com"), DomainRule("b.com")]
        updated = update_domain_subdomain_setting(rules, "example.com", True)
        assert updated[0] == DomainRule("a.com")
        assert updated[1] == DomainRule("example.com", True)
        assert updated[2] == DomainRule("b.com")

    def test_missing_domain_is_noop(self):
        rules = [DomainRule("example.com")]
        assert update_domain_subdomain_setting(rules, "other.com", True) == rules

    def test_no_normalization(self):
        rules = [DomainRule("example.com")]
        assert update_domain_subdomain_setting(rules, "www.example.com", True) == rules

    def test_keeps_domain_value(self):
        rules = [DomainRule("app.example.com", False)]
        updated = update_domain_subdomain_setting(rules, "app.example.com", True)
        assert updated == [DomainRule("app.example.com", True)]


# ─── auto_allow_domain ────────────────────────────────────────────────────────


class TestAutoAllowDomain:
    def test_scenario_a_www_mixed_case_added_exact(self):
        rules, result = auto_allow_domain([], "www.Example.com")
        assert result.action is AutoAllowAction.ADDED
        assert rules == [DomainRule("example.com", False)]
        assert result.domain == "example.com"
        assert result.allow_subdomains is False
        assert result.was_allowed is False
        assert result.is_allowed is True

    def test_scenario_b_subdomain_added_at_base(self):
        rules, result = auto_allow_domain([], "track.example.com")
        assert result.action is AutoAllowAction.ADDED
        assert rules == [DomainRule("example.com", True)]
        assert result.domain == "example.com"
        assert result.allow_subdomains is True
        assert result.is_allowed is True

    def test_scenario_c_base_updated_to_allow_subdomains(self):
        start = [DomainRule("example.com", False)]
        rules, result = auto_allow_domain(start, "track.example.com")
        assert result.action is AutoAllowAction.UPDATED
        assert rules == [DomainRule("example.com", True)]
        assert result.was_allowed is False
        assert result.is_allowed is True

    def test_scenario_d_already_allowed(self):
        start = [DomainRule("example.com", True)]
        rules, result = auto_allow_domain(start, "track.example.com")
        assert result.action is AutoAllowAction.ALREADY_ALLOWED
        assert rules == start
        assert result.was_allowed is True
        assert result.is_allowed is True
        assert result.allow_subdomains is False

    def test_already_allowed_for_www_variant(self):
        start = [DomainRule("example.com")]
        _, result = auto_allow_domain(start, "www.example.com")
        assert result.action is AutoAllowAction.ALREADY_ALLOWED

    def test_updated_keeps_position(self):
        start = [DomainRule("a.com"), DomainRule("example.com"), DomainRule("b.com")]
        rules, _ = auto_allow_domain(start, "api.example.com")
        assert rules == [DomainRule("a.com"), DomainRule("example.com", True), DomainRule("b.com")]

    def test_multiple_subdomains_same_base(self):
        rules, first = auto_allow_domain([], "a.example.com")
        rules, second = auto_allow_domain(rules, "b.example.com")
        assert first.action is AutoAllowAction.ADDED
        assert second.action is AutoAllowAction.ALREADY_ALLOWED
        assert rules == [DomainRule("example.com", True)]

    def test_complex_subdomain(self):
        rules, result = auto_allow_domain([], "api.v1.example.com")
        assert result.domain == "example.com"
        assert result.allow_subdomains is True
        assert rules == [DomainRule("example.com", True)]

    def test_multi_part_suffix_uses_two_label_heuristic(self):
        _, result = auto_allow_domain([], "subdomain.example.co.uk")
        assert result.action is AutoAllowAction.ADDED
        assert result.domain == "co.uk"
        assert result.allow_subdomains is True

    def test_no_action_when_deeper_subdomain_rule_exists(self):
        start = [DomainRule("foo.example.com", True)]
        rules, result = auto_allow_domain(start, "bar.example.com")
        assert result.action is AutoAllowAction.NO_ACTION
        assert rules == start
        assert result.allow_subdomains is True
        # Membership is reported as it really is.
        assert result.is_allowed is is_domain_allowed("bar.example.com", rules)
        assert result.was_allowed is False

    def test_input_not_mutated(self):
        start = [DomainRule("example.com", False)]
        auto_allow_domain(start, "track.example.com")
        assert start == [DomainRule("example.com", False)]

    @pytest.mark.parametrize("value", ["", "   ", "localhost", "www.", "no dots", ".", ".."])
    def test_never_raises(self, value):
        rules, result = auto_allow_domain([], value)
        assert isinstance(result.action, AutoAllowAction)
        assert isinstance(rules, list)

    @pytest.mark.parametrize("value", AWKWARD_DOMAINS)
    @pytest.mark.parametrize(
        "start",
        [
            [],
            [DomainRule("example.com", False)],
            [DomainRule("example.com", True)],
            [DomainRule("app.example.com", False), DomainRule("other.org", True)],
        ],
    )
    def test_convergence(self, value, start):
        rules, result = auto_allow_domain(start, value)
        if result.action is not AutoAllowAction.NO_ACTION:
            assert is_domain_allowed(value, rules) is True
            assert result.is_allowed is True

    def test_result_to_dict(self):
        _, result = auto_allow_domain([], "track.example.com")
        assert result.to_dict() == {
            "action": "added",
            "domain": "example.com",
            "allowSubdomains": True,
            "wasAllowed": False,
            "isAllowed": True,
        }
