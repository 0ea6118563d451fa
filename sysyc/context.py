"""Scoped symbol tables and emission state used while generating Koopa IR."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ResultKind(Enum):
    """Where the value of an emitted expression lives."""

    IMM = "imm"
    REG = "reg"


@dataclass
class Result:
    """Outcome of emitting a node: an immediate or a numbered register.

    ``returned`` marks that control flow has left the function, and
    ``loop_interrupted`` that a ``break`` or ``continue`` has left the
    current loop body.
    """

    kind: ResultKind = ResultKind.IMM
    value: int = 0
    returned: bool = False
    loop_interrupted: bool = False

    def __str__(self) -> str:
        if self.kind is ResultKind.REG:
            return f"%{self.value}"
        return str(self.value)


class SymbolKind(Enum):
    """A variable kept in memory, or a constant folded at compile time."""

    VAR = "var"
    VAL = "val"


@dataclass(frozen=True)
class Symbol:
    """A symbol-table entry.

    For a constant ``value`` is the constant itself; for a variable, once
    looked up, it is the depth of the scope that declared it.
    """

    kind: SymbolKind = SymbolKind.VAL
    value: int = 0


class KoopaContext:
    """Everything shared while one program is turned into Koopa IR."""

    def __init__(self) -> None:
        self._scopes: list[dict[str, Symbol]] = []
        self._allocated: set[tuple[str, int]] = set()
        self._lines: list[str] = []
        self._last_register = -1
        self.if_else_count = 0
        self.while_count = 0
        self.while_stack: list[int] = []
        self.and_count = 0
        self.or_count = 0

    def new_register(self) -> Result:
        """Return a fresh numbered register, starting at ``%0``."""
        self._last_register += 1
        return Result(ResultKind.REG, self._last_register)

    def emit(self, line: str) -> None:
        """Append one line of output."""
        self._lines.append(line)

    def text(self) -> str:
        """All emitted lines, each ended by a newline."""
        return "".join(f"{line}\n" for line in self._lines)

    def push_scope(self) -> None:
        """Open a new innermost scope."""
        self._scopes.append({})

    def pop_scope(self) -> None:
        """Close the innermost scope."""
        if not self._scopes:
            raise RuntimeError("no open scope to close")
        self._scopes.pop()

    def insert_symbol(self, name: str, symbol: Symbol) -> None:
        """Bind ``name`` in the innermost scope, replacing any binding there."""
        if not self._scopes:
            raise RuntimeError(f"cannot declare {name!r}: no open scope")
        self._scopes[-1][name] = symbol

    def lookup(self, name: str) -> Symbol:
        """Find ``name`` from the innermost scope outwards.

        Constants come back as stored; variables come back carrying the
        depth (counted from 1) of the scope that declared them.
        """
        for depth in range(len(self._scopes), 0, -1):
            symbol = self._scopes[depth - 1].get(name)
            if symbol is None:
                continue
            if symbol.kind is SymbolKind.VAL:
                return symbol
            return Symbol(SymbolKind.VAR, depth)
        raise LookupError(f"identifier {name!r} does not exist")

    def mark_allocated(self, name: str) -> None:
        """Record that storage for ``name`` exists at the current depth."""
        self._allocated.add((name, len(self._scopes)))

    def is_allocated(self, name: str) -> bool:
        """Whether storage for ``name`` already exists at the current depth."""
        return (name, len(self._scopes)) in self._allocated