"""Verification of captured output against a config's expectations."""

import re
from collections.abc import Sequence
from functools import lru_cache

from easytest.models.fixture import TestConfig
from easytest.models.result import ExecutionResult, Verdict

WILDCARD = ".*"


@lru_cache(maxsize=256)
def compile_predicate(pattern: str) -> re.Pattern[str]:
    """Compile a PASS/FAIL predicate.

    A predicate without ``.*`` must equal a whole output line. Otherwise the
    literal fragments between the wildcards must appear in order, with any
    text (newlines included) between them. No other regex syntax applies.
    """
    if WILDCARD not in pattern:
        return re.compile(rf"^{re.escape(pattern)}$", re.MULTILINE)

    fragments = (re.escape(fragment) for fragment in pattern.split(WILDCARD))
    return re.compile(".*".join(fragments), re.DOTALL)


def predicate_matches(pattern: str, output: str) -> bool:
    """Check whether ``pattern`` matches the captured output."""
    return compile_predicate(pattern).search(output) is not None


def first_match(patterns: Sequence[str], output: str) -> str | None:
    """Return the first pattern matching ``output``, if any."""
    return next((p for p in patterns if predicate_matches(p, output)), None)


def verify(result: ExecutionResult, config: TestConfig) -> Verdict:
    """Decide whether an execution satisfies the config.

    FAIL predicates are checked first and override everything else, then the
    exit code, then the PASS predicates (at least one must match).
    """
    output = result.output

    if (matched := first_match(config.fail_patterns, output)) is not None:
        reason = f"FAIL predicate '{matched}' matched output"
        return Verdict(passed=False, reason=reason)

    if result.exit_code != config.expected_exit_code:
        return Verdict(
            passed=False,
            reason=(
                f"Exit code {result.exit_code} does not match expected "
                f"{config.expected_exit_code}"
            ),
        )

    if config.pass_patterns and first_match(config.pass_patterns, output) is None:
        patterns = ", ".join(f"'{p}'" for p in config.pass_patterns)
        reason = f"No PASS predicate matched output: {patterns}"
        return Verdict(passed=False, reason=reason)

    return Verdict(passed=True)
