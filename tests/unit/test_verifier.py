"""Tests for output verification."""

from itertools import permutations

import pytest

from easytest.testing.factories import ExecutionResultFactory, TestConfigFactory
from easytest.verifier import predicate_matches, verify

THREAD_LINES = ("1 of 4", "2 of 4", "3 of 4", "4 of 4")


@pytest.mark.parametrize(
    ("pattern", "output", "expected"),
    [
        ("1 of 1", "1 of 1\n", True),
        ("1 of 1", "warming up\n1 of 1\ndone\n", True),
        ("1 of", "1 of 1\n", False),
        ("of 1", "1 of 1\n", False),
        ("1 OF 1", "1 of 1\n", False),
        ("a+b", "a+b\n", True),
        ("a+b", "aab\n", False),
        ("1.*2", "1 of 2\n2 of 2\n", True),
        ("2.*1", "1 of 2\n", False),
        ("(x).*[y]", "(x) and [y]", True),
        ("(x).*[y]", "x and y", False),
        (".*", "", True),
    ],
)
def test_predicate_matches(pattern: str, output: str, expected: bool) -> None:
    """Literal predicates match whole lines, wildcards match in order."""
    assert predicate_matches(pattern, output) is expected


@pytest.mark.parametrize("lines", list(permutations(THREAD_LINES)))
def test_sorted_thread_output_passes(lines: tuple[str, ...]) -> None:
    """Any thread ordering passes once the sort stage has ordered it."""
    config = TestConfigFactory.build(pass_patterns=("1.*2.*3.*4",))
    result = ExecutionResultFactory.build(stdout="\n".join(sorted(lines)) + "\n")

    assert verify(result, config).passed


def test_reversed_thread_output_fails() -> None:
    """Unsorted output does not satisfy the ordered wildcard predicate."""
    config = TestConfigFactory.build(pass_patterns=("1.*2.*3.*4",))
    result = ExecutionResultFactory.build(stdout="4 of 4\n3 of 4\n2 of 4\n1 of 4\n")

    verdict = verify(result, config)

    assert not verdict.passed
    assert verdict.reason == "No PASS predicate matched output: '1.*2.*3.*4'"


def test_expected_exit_code_is_success() -> None:
    """A config expecting exit code 2 passes when the run exits with 2."""
    config = TestConfigFactory.build(expected_exit_code=2)
    result = ExecutionResultFactory.build(stdout="1 of 1\n", exit_code=2)

    assert verify(result, config).passed


def test_unexpected_exit_code_fails() -> None:
    """A zero exit code violates an expected non-zero exit code."""
    config = TestConfigFactory.build(expected_exit_code=2)
    result = ExecutionResultFactory.build(stdout="1 of 1\n", exit_code=0)

    verdict = verify(result, config)

    assert not verdict.passed
    assert verdict.reason == "Exit code 0 does not match expected 2"


def test_fail_predicate_overrides_success() -> None:
    """A matching FAIL predicate fails the run even with a good exit code."""
    config = TestConfigFactory.build(
        pass_patterns=("done",), fail_patterns=("Segmentation fault",)
    )
    result = ExecutionResultFactory.build(
        stdout="done\n", stderr="Segmentation fault\n", exit_code=0
    )

    verdict = verify(result, config)

    assert not verdict.passed
    assert verdict.reason == "FAIL predicate 'Segmentation fault' matched output"


def test_fail_predicate_checked_before_exit_code() -> None:
    """The FAIL predicate is reported even when the exit code is also wrong."""
    config = TestConfigFactory.build(fail_patterns=("error.*",))
    result = ExecutionResultFactory.build(stdout="error: boom\n", exit_code=1)

    verdict = verify(result, config)

    assert verdict.reason is not None
    assert verdict.reason.startswith("FAIL predicate")


def test_any_pass_predicate_suffices() -> None:
    """One matching PASS predicate out of several is enough."""
    config = TestConfigFactory.build(pass_patterns=("never", "ok"))
    result = ExecutionResultFactory.build(stdout="ok\n")

    assert verify(result, config).passed


def test_pass_predicate_sees_stderr() -> None:
    """Predicates are checked against stdout followed by stderr."""
    config = TestConfigFactory.build(pass_patterns=("out.*err",))
    result = ExecutionResultFactory.build(stdout="out", stderr="err\n")

    assert verify(result, config).passed


def test_no_predicates_only_checks_exit_code() -> None:
    """Without predicates a clean exit passes."""
    config = TestConfigFactory.build()
    result = ExecutionResultFactory.build(stdout="anything\n")

    assert verify(result, config).passed
