"""Eligibility checks run for every entrant of a giveaway."""

from __future__ import annotations

import asyncio
import logging
from typing import Mapping, Optional

from .i18n import Translator
from .models import CheckResult, CustomCheck, Entrant, RequirementSet

log = logging.getLogger(__name__)

PASSED = CheckResult(passed=True)


def _seconds(timestamp_ms: int) -> int:
    return timestamp_ms // 1000


def describe_requirements(
    requirements: Optional[RequirementSet], translator: Translator
) -> list[str]:
    """Render a requirement set as announcement lines."""
    if requirements is None or requirements.is_empty():
        return []
    lines: list[str] = []
    if requirements.required_roles:
        roles = ", ".join(f"<@&{role_id}>" for role_id in sorted(requirements.required_roles))
        lines.append(translator("requirements.roles_line", roles=roles))
    if requirements.account_age_min is not None:
        lines.append(
            translator(
                "requirements.account_age_line",
                timestamp=_seconds(requirements.account_age_min),
            )
        )
    if requirements.joined_server_before is not None:
        lines.append(
            translator(
                "requirements.joined_before_line",
                timestamp=_seconds(requirements.joined_server_before),
            )
        )
    if requirements.custom is not None:
        lines.append(translator("requirements.custom_line"))
    return lines


async def evaluate(
    entrant: Entrant,
    requirements: Optional[RequirementSet],
    *,
    custom_checks: Optional[Mapping[str, CustomCheck]] = None,
    timeout: Optional[float] = None,
    translator: Optional[Translator] = None,
) -> CheckResult:
    """Evaluate ``requirements`` for ``entrant``.

    Checks run in a fixed order (roles, account age, membership age, custom
    predicate) and stop at the first failure, whose reason is returned.
    Role requirements are conjunctive: every listed role must be held.
    """
    if requirements is None:
        return PASSED
    t = translator or Translator()

    if requirements.required_roles:
        missing = requirements.required_roles - entrant.role_ids
        if missing:
            roles = ", ".join(f"<@&{role_id}>" for role_id in sorted(requirements.required_roles))
            return CheckResult(False, t("requirements.roles", roles=roles))

    if requirements.account_age_min is not None:
        if entrant.created_at > requirements.account_age_min:
            return CheckResult(
                False,
                t(
                    "requirements.account_age",
                    timestamp=_seconds(requirements.account_age_min),
                ),
            )

    if requirements.joined_server_before is not None:
        if (
            entrant.joined_at is None
            or entrant.joined_at >= requirements.joined_server_before
        ):
            return CheckResult(
                False,
                t(
                    "requirements.joined_before",
                    timestamp=_seconds(requirements.joined_server_before),
                ),
            )

    if requirements.custom is not None:
        predicate = requirements.custom
        if isinstance(predicate, str):
            predicate = (custom_checks or {})[predicate]
        try:
            result = await asyncio.wait_for(predicate(entrant.id), timeout=timeout)
        except asyncio.TimeoutError:
            log.warning(
                "Custom requirement check timed out after %ss for user %s.",
                timeout,
                entrant.id,
            )
            return CheckResult(False, t("requirements.custom_timeout"))
        if not result.passed:
            return CheckResult(False, result.reason or t("requirements.custom_failed"))

    return PASSED
