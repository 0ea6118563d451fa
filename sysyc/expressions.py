"""Expression nodes of the syntax tree and their Koopa IR emission."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional

from .context import KoopaContext, Result, ResultKind, SymbolKind

_I32_SPAN = 2**32
_I32_MIN = -(2**31)


def _wrap(number: int) -> int:
    """Reduce ``number`` to a signed 32-bit integer."""
    return (number - _I32_MIN) % _I32_SPAN + _I32_MIN


def _c_div(a: int, b: int) -> int:
    """Integer division truncating toward zero."""
    if b == 0:
        raise ZeroDivisionError("division by zero in constant expression")
    quotient = abs(a) // abs(b)
    return quotient if (a < 0) == (b < 0) else -quotient


def _c_mod(a: int, b: int) -> int:
    """Remainder whose sign follows the dividend."""
    if b == 0:
        raise ZeroDivisionError("modulo by zero in constant expression")
    return a - b * _c_div(a, b)


def _imm(value: int) -> Result:
    return Result(ResultKind.IMM, _wrap(value))


_Table = dict[str, tuple[Callable[[int, int], int], str]]

_MUL_OPS: _Table = {
    "*": (lambda a, b: a * b, "mul"),
    "/": (_c_div, "div"),
    "%": (_c_mod, "mod"),
}
_ADD_OPS: _Table = {
    "+": (lambda a, b: a + b, "add"),
    "-": (lambda a, b: a - b, "sub"),
}
_REL_OPS: _Table = {
    "<": (lambda a, b: int(a < b), "lt"),
    ">": (lambda a, b: int(a > b), "gt"),
    "<=": (lambda a, b: int(a <= b), "le"),
    ">=": (lambda a, b: int(a >= b), "ge"),
}
_EQ_OPS: _Table = {
    "==": (lambda a, b: int(a == b), "eq"),
    "!=": (lambda a, b: int(a != b), "ne"),
}
_UNARY_OPS: dict[str, tuple[Callable[[int], int], str]] = {
    "+": (lambda a: a, "add"),
    "-": (lambda a: -a, "sub"),
    "!": (lambda a: int(not a), "eq"),
}


class Node(ABC):
    """A syntax-tree node that can emit Koopa IR into a context."""

    @abstractmethod
    def emit(self, ctx: KoopaContext) -> Result:
        """Emit IR for this node and return where its value lives."""


def _emit_binary(
    ctx: KoopaContext,
    kind: str,
    left: Optional[Node],
    op: Optional[str],
    right: Optional[Node],
    table: _Table,
) -> Result:
    if left is None and op is None and right is not None:
        return right.emit(ctx)
    if left is None or op is None or right is None:
        raise ValueError(f"invalid {kind} expression")
    lhs = left.emit(ctx)
    rhs = right.emit(ctx)
    entry = table.get(op)
    if entry is None:
        raise ValueError(f"invalid {kind} operator {op!r}")
    fold, mnemonic = entry
    if lhs.kind is ResultKind.IMM and rhs.kind is ResultKind.IMM:
        return _imm(fold(lhs.value, rhs.value))
    result = ctx.new_register()
    ctx.emit(f"\t{result} = {mnemonic} {lhs}, {rhs}")
    return result


@dataclass
class Exp(Node):
    """A full expression."""

    left_or_exp: Node

    def emit(self, ctx: KoopaContext) -> Result:
        return self.left_or_exp.emit(ctx)


@dataclass
class ConstExp(Node):
    """An expression required to be a compile-time constant."""

    exp: Node

    def emit(self, ctx: KoopaContext) -> Result:
        return self.exp.emit(ctx)


@dataclass
class LVal(Node):
    """A reference to a named constant or variable."""

    name: str

    def emit(self, ctx: KoopaContext) -> Result:
        symbol = ctx.lookup(self.name)
        if symbol.kind is SymbolKind.VAL:
            return Result(ResultKind.IMM, symbol.value)
        result = ctx.new_register()
        ctx.emit(f"\t{result} = load @{self.name}_{symbol.value}")
        return result


@dataclass
class PrimaryExp(Node):
    """A parenthesised expression, a number or an lvalue; exactly one is set."""

    exp: Optional[Node] = None
    lval: Optional[Node] = None
    number: Optional[int] = None

    def emit(self, ctx: KoopaContext) -> Result:
        present = [self.exp is not None, self.number is not None, self.lval is not None]
        if sum(present) != 1:
            raise ValueError("invalid primary expression")
        if self.exp is not None:
            return self.exp.emit(ctx)
        if self.number is not None:
            return Result(ResultKind.IMM, self.number)
        return self.lval.emit(ctx)


@dataclass
class UnaryExp(Node):
    """Either a primary expression or an operator applied to a unary expression."""

    primary_exp: Optional[Node] = None
    op: Optional[str] = None
    unary_exp: Optional[Node] = None

    def emit(self, ctx: KoopaContext) -> Result:
        if self.primary_exp is not None and self.op is None and self.unary_exp is None:
            return self.primary_exp.emit(ctx)
        if self.primary_exp is not None or self.op is None or self.unary_exp is None:
            raise ValueError("invalid unary expression")
        operand = self.unary_exp.emit(ctx)
        entry = _UNARY_OPS.get(self.op)
        if entry is None:
            raise ValueError(f"invalid unary operator {self.op!r}")
        fold, mnemonic = entry
        if operand.kind is ResultKind.IMM:
            return _imm(fold(operand.value))
        result = ctx.new_register()
        ctx.emit(f"\t{result} = {mnemonic} 0, {operand}")
        return result


@dataclass
class MulExp(Node):
    """Multiplication, division or remainder."""

    mul_exp: Optional[Node] = None
    op: Optional[str] = None
    unary_exp: Optional[Node] = None

    def emit(self, ctx: KoopaContext) -> Result:
        return _emit_binary(ctx, "mul", self.mul_exp, self.op, self.unary_exp, _MUL_OPS)


@dataclass
class AddExp(Node):
    """Addition or subtraction."""

    add_exp: Optional[Node] = None
    op: Optional[str] = None
    mul_exp: Optional[Node] = None

    def emit(self, ctx: KoopaContext) -> Result:
        return _emit_binary(ctx, "add", self.add_exp, self.op, self.mul_exp, _ADD_OPS)


@dataclass
class RelExp(Node):
    """An ordering comparison."""

    rel_exp: Optional[Node] = None
    op: Optional[str] = None
    add_exp: Optional[Node] = None

    def emit(self, ctx: KoopaContext) -> Result:
        return _emit_binary(ctx, "relational", self.rel_exp, self.op, self.add_exp, _REL_OPS)


@dataclass
class EqExp(Node):
    """An equality comparison."""

    eq_exp: Optional[Node] = None
    op: Optional[str] = None
    rel_exp: Optional[Node] = None

    def emit(self, ctx: KoopaContext) -> Result:
        return _emit_binary(ctx, "equality", self.eq_exp, self.op, self.rel_exp, _EQ_OPS)


def _short_circuit(
    ctx: KoopaContext, kind: str, left: Result, right: Node, index: int
) -> Result:
    """Emit the branching form of ``&&`` or ``||`` for a register operand."""
    second_label = f"%{kind}_second_operator_{index}"
    end_label = f"%{kind}_end_{index}"
    memory = f"@{kind}_result_in_memory_{index}"

    first = ctx.new_register()
    ctx.emit(f"\t{first} = ne {left}, 0")
    ctx.emit(f"\t{memory} = alloc i32")
    ctx.emit(f"\tstore {first}, {memory}")
    if kind == "and":
        ctx.emit(f"\tbr {first}, {second_label}, {end_label}")
    else:
        ctx.emit(f"\tbr {first}, {end_label}, {second_label}")
    ctx.emit(f"{second_label}:")

    right_result = right.emit(ctx)
    second = ctx.new_register()
    combined = ctx.new_register()
    ctx.emit(f"\t{second} = ne {right_result}, 0")
    ctx.emit(f"\t{combined} = {kind} {first}, {second}")
    ctx.emit(f"\tstore {combined}, {memory}")
    ctx.emit(f"\tjump {end_label}")
    ctx.emit(f"{end_label}:")

    result = ctx.new_register()
    ctx.emit(f"\t{result} = load {memory}")
    return result


def _normalise(ctx: KoopaContext, right: Result) -> Result:
    if right.kind is ResultKind.IMM:
        return Result(ResultKind.IMM, int(bool(right.value)))
    result = ctx.new_register()
    ctx.emit(f"\t{result} = ne {right}, 0")
    return result


@dataclass
class LAndExp(Node):
    """Logical AND with short-circuit evaluation."""

    left_and_exp: Optional[Node] = None
    op: Optional[str] = None
    eq_exp: Optional[Node] = None

    def emit(self, ctx: KoopaContext) -> Result:
        if self.left_and_exp is None and self.op is None and self.eq_exp is not None:
            return self.eq_exp.emit(ctx)
        if self.left_and_exp is None or self.op is None or self.eq_exp is None:
            raise ValueError("invalid logical AND expression")
        left = self.left_and_exp.emit(ctx)
        if left.kind is ResultKind.IMM:
            if left.value == 0:
                return Result(ResultKind.IMM, 0)
            return _normalise(ctx, self.eq_exp.emit(ctx))
        ctx.and_count += 1
        return _short_circuit(ctx, "and", left, self.eq_exp, ctx.and_count)


@dataclass
class LOrExp(Node):
    """Logical OR with short-circuit evaluation."""

    left_or_exp: Optional[Node] = None
    op: Optional[str] = None
    left_and_exp: Optional[Node] = None

    def emit(self, ctx: KoopaContext) -> Result:
        if self.left_or_exp is None and self.op is None and self.left_and_exp is not None:
            return self.left_and_exp.emit(ctx)
        if self.left_or_exp is None or self.op is None or self.left_and_exp is None:
            raise ValueError("invalid logical OR expression")
        left = self.left_or_exp.emit(ctx)
        if left.kind is ResultKind.IMM:
            if left.value != 0:
                return Result(ResultKind.IMM, 1)
            return _normalise(ctx, self.left_and_exp.emit(ctx))
        ctx.or_count += 1
        return _short_circuit(ctx, "or", left, self.left_and_exp, ctx.or_count)