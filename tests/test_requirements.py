import asyncio

import pytest

from giveaway_engine.i18n import Translator
from giveaway_engine.models import CheckResult, Entrant, RequirementSet
from giveaway_engine.requirements import describe_requirements, evaluate

DAY_MS = 24 * 60 * 60 * 1000
NOW = 1_700_000_000_000


def make_entrant(**overrides):
    values = dict(
        id="42",
        created_at=NOW - 365 * DAY_MS,
        joined_at=NOW - 100 * DAY_MS,
        role_ids=frozenset({"1", "2"}),
    )
    values.update(overrides)
    return Entrant(**values)


async def test_no_requirements_always_pass():
    result = await evaluate(make_entrant(), None)
    assert result.passed
    assert result.reason is None


async def test_all_requirements_met():
    async def always(user_id):
        return CheckResult(True)

    requirements = RequirementSet(
        required_roles=frozenset({"1", "2"}),
        account_age_min=NOW - 7 * DAY_MS,
        joined_server_before=NOW - 30 * DAY_MS,
        custom=always,
    )
    assert (await evaluate(make_entrant(), requirements)).passed


async def test_roles_are_conjunctive():
    requirements = RequirementSet(required_roles=frozenset({"1", "3"}))
    result = await evaluate(make_entrant(), requirements)
    assert not result.passed
    assert "<@&1>" in result.reason and "<@&3>" in result.reason


async def test_account_created_yesterday_fails_seven_day_threshold():
    threshold = NOW - 7 * DAY_MS
    requirements = RequirementSet(account_age_min=threshold)

    young = await evaluate(make_entrant(created_at=NOW - DAY_MS), requirements)
    assert not young.passed
    assert f"<t:{threshold // 1000}:R>" in young.reason

    old = await evaluate(make_entrant(created_at=NOW - 30 * DAY_MS), requirements)
    assert old.passed


async def test_account_created_exactly_at_threshold_passes():
    threshold = NOW - 7 * DAY_MS
    requirements = RequirementSet(account_age_min=threshold)
    assert (await evaluate(make_entrant(created_at=threshold), requirements)).passed


async def test_membership_must_predate_threshold():
    threshold = NOW - 30 * DAY_MS
    requirements = RequirementSet(joined_server_before=threshold)

    assert not (await evaluate(make_entrant(joined_at=threshold), requirements)).passed
    assert not (await evaluate(make_entrant(joined_at=None), requirements)).passed
    assert (await evaluate(make_entrant(joined_at=threshold - 1), requirements)).passed


async def test_first_failing_check_reason_wins():
    requirements = RequirementSet(
        required_roles=frozenset({"9"}),
        account_age_min=NOW - 7 * DAY_MS,
        joined_server_before=NOW - 30 * DAY_MS,
    )
    entrant = make_entrant(created_at=NOW, joined_at=None)
    result = await evaluate(entrant, requirements)
    assert result.reason.startswith("You must have all of the required roles")

    requirements.required_roles = frozenset()
    result = await evaluate(entrant, requirements)
    assert result.reason.startswith("Your account must be created")


async def test_custom_check_skipped_when_earlier_check_fails():
    calls = []

    async def tracking(user_id):
        calls.append(user_id)
        return CheckResult(True)

    requirements = RequirementSet(required_roles=frozenset({"9"}), custom=tracking)
    assert not (await evaluate(make_entrant(), requirements)).passed
    assert calls == []


async def test_custom_failure_reason_is_forwarded():
    async def reject(user_id):
        return CheckResult(False, "Level 10 required")

    result = await evaluate(make_entrant(), RequirementSet(custom=reject))
    assert result == CheckResult(False, "Level 10 required")


async def test_custom_failure_without_reason_gets_generic_text():
    async def reject(user_id):
        return CheckResult(False)

    result = await evaluate(make_entrant(), RequirementSet(custom=reject))
    assert result.reason == "You do not meet the requirements of this giveaway."


async def test_custom_check_timeout_counts_as_failure():
    async def slow(user_id):
        await asyncio.sleep(5)
        return CheckResult(True)

    result = await evaluate(make_entrant(), RequirementSet(custom=slow), timeout=0.01)
    assert not result.passed
    assert "could not be verified in time" in result.reason


async def test_named_custom_check_is_looked_up():
    async def only_42(user_id):
        return CheckResult(user_id == "42")

    requirements = RequirementSet(custom="only-42")
    checks = {"only-42": only_42}
    assert (await evaluate(make_entrant(), requirements, custom_checks=checks)).passed
    assert not (
        await evaluate(make_entrant(id="7"), requirements, custom_checks=checks)
    ).passed


async def test_unknown_named_custom_check_raises():
    with pytest.raises(KeyError):
        await evaluate(make_entrant(), RequirementSet(custom="missing"), custom_checks={})


async def test_reasons_follow_translator_language():
    requirements = RequirementSet(required_roles=frozenset({"9"}))
    english = await evaluate(make_entrant(), requirements)
    czech = await evaluate(make_entrant(), requirements, translator=Translator("cs"))
    assert english.reason != czech.reason
    assert "<@&9>" in czech.reason


def test_describe_requirements_lists_each_rule():
    requirements = RequirementSet(
        required_roles=frozenset({"5"}),
        account_age_min=NOW,
        custom="vip",
    )
    lines = describe_requirements(requirements, Translator())
    assert lines == [
        "Roles: <@&5>",
        f"Account created before <t:{NOW // 1000}:D>",
        "Additional requirements apply",
    ]


def test_describe_empty_requirements():
    assert describe_requirements(RequirementSet(), Translator()) == []
    assert describe_requirements(None, Translator()) == []
