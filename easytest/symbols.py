"""Placeholder substitution for directive values.

Directive values may reference ``@name@`` placeholders, for example
``@BINARY@`` or ``@OpenMP_C_FLAGS@``. They are replaced from an explicit
symbol table handed to the parser; nothing is looked up from the process
environment.
"""

import re
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field

from easytest.errors import UnresolvedPlaceholderError

PLACEHOLDER_PATTERN = re.compile(r"@([A-Za-z_][A-Za-z0-9_.+-]*)?@")

BINARY_SYMBOL = "BINARY"


@dataclass(frozen=True)
class SymbolTable(Mapping[str, str]):
    """Immutable mapping from placeholder name to replacement text."""

    symbols: Mapping[str, str] = field(default_factory=dict)

    def __getitem__(self, name: str) -> str:
        return self.symbols[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self.symbols)

    def __len__(self) -> int:
        return len(self.symbols)

    def with_symbols(self, **symbols: str) -> "SymbolTable":
        """Return a copy with additional symbols, overriding existing ones."""
        return SymbolTable({**self.symbols, **symbols})

    def resolve(self, value: str, *, directive: str) -> str:
        """Replace every placeholder in ``value``.

        ``@@`` stands for a literal ``@``.

        Raises:
            UnresolvedPlaceholderError: If any referenced symbol is missing.
                All missing names are reported at once.

        """
        missing: list[str] = []

        def substitute(match: re.Match[str]) -> str:
            name = match.group(1)
            if name is None:
                return "@"
            if name not in self.symbols:
                if name not in missing:
                    missing.append(name)
                return match.group(0)
            return self.symbols[name]

        resolved = PLACEHOLDER_PATTERN.sub(substitute, value)
        if missing:
            raise UnresolvedPlaceholderError(missing, directive=directive)
        return resolved


def parse_symbol_assignments(assignments: Sequence[str]) -> dict[str, str]:
    """Parse ``NAME=VALUE`` strings given on the command line."""
    symbols: dict[str, str] = {}
    for assignment in assignments:
        name, sep, value = assignment.partition("=")
        if not sep or not name.strip():
            raise ValueError(
                f"Invalid symbol assignment '{assignment}', expected NAME=VALUE"
            )
        symbols[name.strip()] = value
    return symbols
