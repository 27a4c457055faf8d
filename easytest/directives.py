"""Parsing of the test configuration embedded in a fixture's source.

The configuration lives in the last block comment whose first line is the
``easytest configuration`` marker::

    /* CMake-easytest configuration.
     *
     * CONFIGS: sort env
     *
     * ENVIRONMENT-sort: OMP_NUM_THREADS=4
     * RUN-sort: @BINARY@ | @sort@
     * PASS-sort: 1.*2.*3.*4
     */

Every directive is a tagged line ``KEY[-config]: value``. A line indented
deeper than the directives continues the previous one. Unsuffixed keys are
defaults shared by all configs.
"""

import logging
import re
import shlex
from collections import defaultdict
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from easytest.errors import MalformedConfigError
from easytest.models.fixture import EnvironmentVariable, SourceFixture, TestConfig
from easytest.symbols import BINARY_SYMBOL, SymbolTable

log = logging.getLogger(__name__)

BLOCK_COMMENT_PATTERN = re.compile(r"/\*(.*?)\*/", re.DOTALL)
GUTTER_PATTERN = re.compile(r"^\s*\*?")
MARKER_PATTERN = re.compile(
    r"^(?:[\w.+]+-)?easytest configuration\.?$", re.IGNORECASE
)
DIRECTIVE_PATTERN = re.compile(
    r"^(?P<key>[A-Z][A-Z_]*)(?:-(?P<config>[\w.+-]+))?:(?P<value>.*)$"
)
CONFIG_NAME_PATTERN = re.compile(r"^[\w.+-]+$")
EXIT_CODE_PATTERN = re.compile(r"^-?\d+$")

FIXTURE_KEYS = frozenset({"CONFIGS", "COMPILE_FLAGS", "LINK"})
SINGLE_KEYS = frozenset({"RUN", "EXIT", "TIMEOUT"})
MULTI_KEYS = frozenset({"ENVIRONMENT", "PASS", "FAIL"})

DEFAULT_CONFIG_NAME = "default"
DEFAULT_RUN = f"@{BINARY_SYMBOL}@"

Grouped = Mapping[tuple[str, str | None], Sequence["Directive"]]


@dataclass(frozen=True, kw_only=True)
class Directive:
    """One tagged line of the configuration block, continuations joined."""

    key: str
    config: str | None
    value: str
    line: int


def find_directive_block(text: str) -> tuple[Sequence[str], int] | None:
    """Locate the last marked block comment.

    Returns:
        The block's lines with the comment gutter removed, starting after
        the marker line, and the source line number of the first of them.
        None if the text has no marked block.

    """
    found: tuple[Sequence[str], int] | None = None

    for match in BLOCK_COMMENT_PATTERN.finditer(text):
        first_line = text.count("\n", 0, match.start(1)) + 1
        lines = [
            GUTTER_PATTERN.sub("", line, count=1)
            for line in match.group(1).split("\n")
        ]

        for offset, line in enumerate(lines):
            if not line.strip():
                continue
            if MARKER_PATTERN.match(line.strip()):
                found = (lines[offset + 1 :], first_line + offset + 1)
            break

    return found


def parse_directives(text: str) -> Sequence[Directive]:
    """Split the marked block of ``text`` into directives.

    Raises:
        MalformedConfigError: If a line is neither a directive nor a
            continuation of one.

    """
    block = find_directive_block(text)
    if block is None:
        return ()

    lines, first_line = block
    numbered = [
        (first_line + offset, line.rstrip())
        for offset, line in enumerate(lines)
        if line.strip()
    ]
    if not numbered:
        return ()

    base_indent = min(_indent(line) for _, line in numbered)
    directives: list[Directive] = []

    for lineno, line in numbered:
        if _indent(line) > base_indent:
            if not directives:
                raise MalformedConfigError(
                    "Continuation without a directive", line=lineno
                )
            previous = directives[-1]
            value = f"{previous.value} {line.strip()}".strip()
            directives[-1] = Directive(
                key=previous.key,
                config=previous.config,
                value=value,
                line=previous.line,
            )
            continue

        match = DIRECTIVE_PATTERN.match(line.strip())
        if match is None:
            raise MalformedConfigError(
                f"Unrecognized line '{line.strip()}'", line=lineno
            )

        directives.append(
            Directive(
                key=match["key"],
                config=match["config"],
                value=match["value"].strip(),
                line=lineno,
            )
        )

    return directives


def parse_fixture(
    text: str,
    *,
    path: Path,
    binary: str,
    symbols: Mapping[str, str] | None = None,
) -> SourceFixture:
    """Parse the embedded configuration of a fixture.

    Args:
        text: Source text of the fixture
        path: Path of the fixture, used for reporting
        binary: Path of the built binary, bound shell-quoted to ``@BINARY@``
        symbols: Replacements for the other placeholders

    Returns:
        The parsed fixture with one TestConfig per name in CONFIGS

    Raises:
        MalformedConfigError: If the directive block is invalid
        UnresolvedPlaceholderError: If a directive references a symbol
            missing from ``symbols``

    """
    # The binary path is a single argument; other symbols may carry several.
    table = SymbolTable(dict(symbols or {})).with_symbols(
        **{BINARY_SYMBOL: shlex.quote(binary)}
    )
    directives = parse_directives(text)

    fixture_values: dict[str, Directive] = {}
    grouped: defaultdict[tuple[str, str | None], list[Directive]] = defaultdict(list)

    for directive in directives:
        if directive.key in FIXTURE_KEYS:
            if directive.config is not None:
                raise MalformedConfigError(
                    f"{directive.key} cannot be specific to a config",
                    line=directive.line,
                )
            if directive.key in fixture_values:
                raise MalformedConfigError(
                    f"Duplicate {directive.key} directive", line=directive.line
                )
            fixture_values[directive.key] = directive
        elif directive.key in SINGLE_KEYS or directive.key in MULTI_KEYS:
            group = grouped[(directive.key, directive.config)]
            if group and directive.key in SINGLE_KEYS:
                raise MalformedConfigError(
                    f"Duplicate {_label(directive.key, directive.config)} directive",
                    line=directive.line,
                )
            group.append(directive)
        else:
            raise MalformedConfigError(
                f"Unknown directive '{directive.key}'", line=directive.line
            )

    names = _config_names(fixture_values.get("CONFIGS"))
    for key, config in grouped:
        if config is not None and config not in names:
            raise MalformedConfigError(
                f"{_label(key, config)} refers to config '{config}' "
                "missing from CONFIGS",
                line=grouped[(key, config)][0].line,
            )

    configs = {name: _build_config(name, grouped, table) for name in names}
    log.debug("Parsed %d config(s) from %s", len(configs), path)

    return SourceFixture(
        path=path,
        binary=binary,
        compile_flags=_resolve(fixture_values.get("COMPILE_FLAGS"), table),
        link_flags=_resolve(fixture_values.get("LINK"), table),
        configs=configs,
    )


async def load_fixture(
    path: Path,
    *,
    binary: str,
    symbols: Mapping[str, str] | None = None,
) -> SourceFixture:
    """Read a fixture from disk and parse its configuration.

    Raises:
        FileNotFoundError: If the fixture does not exist
        MalformedConfigError: If the fixture cannot be decoded or parsed
        UnresolvedPlaceholderError: If a placeholder cannot be resolved

    """
    if not path.is_file():
        raise FileNotFoundError(f"Fixture not found: {path}")

    try:
        text = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise MalformedConfigError(f"Fixture is not valid UTF-8: {e}") from e

    return parse_fixture(text, path=path, binary=binary, symbols=symbols)


def _indent(line: str) -> int:
    return len(line) - len(line.lstrip())


def _label(key: str, config: str | None) -> str:
    return key if config is None else f"{key}-{config}"


def _config_names(directive: Directive | None) -> Sequence[str]:
    if directive is None:
        return (DEFAULT_CONFIG_NAME,)

    names = directive.value.split()
    if not names:
        raise MalformedConfigError(
            "CONFIGS lists no config names", line=directive.line
        )

    seen: set[str] = set()
    for name in names:
        if not CONFIG_NAME_PATTERN.match(name):
            raise MalformedConfigError(
                f"Invalid config name '{name}'", line=directive.line
            )
        if name in seen:
            raise MalformedConfigError(
                f"Duplicate config name '{name}'", line=directive.line
            )
        seen.add(name)

    return tuple(names)


def _resolve(directive: Directive | None, table: SymbolTable) -> str:
    if directive is None:
        return ""
    return table.resolve(directive.value, directive=directive.key)


def _lookup(grouped: Grouped, key: str, name: str) -> Sequence[Directive]:
    """Return config-specific directives, falling back to the defaults."""
    return grouped.get((key, name)) or grouped.get((key, None)) or ()


def _build_config(
    name: str,
    grouped: Grouped,
    table: SymbolTable,
) -> TestConfig:
    environment: list[EnvironmentVariable] = []
    layers = (("ENVIRONMENT", None), ("ENVIRONMENT", name))
    for directive in (d for layer in layers for d in grouped.get(layer, ())):
        environment.extend(_parse_environment(directive, table))

    candidates = (*grouped.get(("RUN", name), ()), *grouped.get(("RUN", None), ()))
    if not candidates:
        run = table.resolve(DEFAULT_RUN, directive="RUN")
    else:
        run_directive = next((d for d in candidates if d.value), None)
        if run_directive is None:
            raise MalformedConfigError(
                f"Config '{name}' has no RUN command", line=candidates[0].line
            )
        label = _label(run_directive.key, run_directive.config)
        run = table.resolve(run_directive.value, directive=label)
        if not run.strip():
            raise MalformedConfigError(
                f"Config '{name}' has an empty RUN command", line=run_directive.line
            )

    fail_patterns: list[str] = []
    expected_codes: set[int] = set()
    for directive in _lookup(grouped, "FAIL", name):
        if EXIT_CODE_PATTERN.match(directive.value):
            expected_codes.add(int(directive.value))
        elif directive.value:
            fail_patterns.append(directive.value)

    for directive in _lookup(grouped, "EXIT", name):
        if not EXIT_CODE_PATTERN.match(directive.value):
            raise MalformedConfigError(
                f"Exit code must be an integer, got '{directive.value}'",
                line=directive.line,
            )
        expected_codes.add(int(directive.value))

    if len(expected_codes) > 1:
        raise MalformedConfigError(
            f"Config '{name}' expects conflicting exit codes {sorted(expected_codes)}"
        )

    return TestConfig(
        name=name,
        environment=tuple(environment),
        run=run,
        pass_patterns=tuple(
            d.value for d in _lookup(grouped, "PASS", name) if d.value
        ),
        fail_patterns=tuple(fail_patterns),
        expected_exit_code=expected_codes.pop() if expected_codes else 0,
        timeout=_parse_timeout(_lookup(grouped, "TIMEOUT", name)),
    )


def _parse_environment(
    directive: Directive, table: SymbolTable
) -> Sequence[EnvironmentVariable]:
    label = _label(directive.key, directive.config)
    try:
        tokens = shlex.split(directive.value)
    except ValueError as e:
        raise MalformedConfigError(f"{label}: {e}", line=directive.line) from e

    variables: list[EnvironmentVariable] = []
    for token in tokens:
        variable, sep, value = token.partition("=")
        if not sep or not variable:
            raise MalformedConfigError(
                f"{label}: expected KEY=VALUE, got '{token}'", line=directive.line
            )
        resolved = table.resolve(value, directive=label)
        variables.append(EnvironmentVariable(name=variable, value=resolved))
    return variables


def _parse_timeout(directives: Sequence[Directive]) -> float | None:
    if not directives:
        return None

    directive = directives[0]
    try:
        timeout = float(directive.value)
    except ValueError:
        timeout = 0.0
    if not timeout > 0:
        raise MalformedConfigError(
            f"Timeout must be a positive number of seconds, got '{directive.value}'",
            line=directive.line,
        )
    return timeout
