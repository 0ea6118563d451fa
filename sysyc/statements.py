"""Program, statement and declaration nodes and their Koopa IR emission."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Optional

from .context import KoopaContext, Result, Symbol, SymbolKind
from .expressions import LVal, Node


def _stops_flow(result: Result) -> bool:
    return result.returned or result.loop_interrupted


@dataclass
class CompUnit(Node):
    """A whole translation unit: one function definition."""

    func_def: Node

    def emit(self, ctx: KoopaContext) -> Result:
        return self.func_def.emit(ctx)


@dataclass
class FuncType(Node):
    """The declared return type of a function."""

    type: str

    @property
    def ir_type(self) -> str:
        """The Koopa spelling of this type."""
        if self.type != "int":
            raise ValueError(f"invalid function type {self.type!r}")
        return "i32"

    def emit(self, ctx: KoopaContext) -> Result:
        self.ir_type  # validates the type
        return Result()


@dataclass
class FuncDef(Node):
    """A function definition with a body."""

    func_type: FuncType
    ident: str
    block: Node

    def emit(self, ctx: KoopaContext) -> Result:
        self.func_type.emit(ctx)
        ctx.emit(f"fun @{self.ident}(): {self.func_type.ir_type} {{")
        ctx.emit("%entry:")
        result = self.block.emit(ctx)
        if not result.returned:
            ctx.emit("\tret 0")
        ctx.emit("}")
        return result


@dataclass
class Block(Node):
    """A braced sequence of block items with its own scope."""

    items: list[Node] = field(default_factory=list)

    def emit(self, ctx: KoopaContext) -> Result:
        ctx.push_scope()
        try:
            for item in self.items:
                result = item.emit(ctx)
                if _stops_flow(result):
                    return result
        finally:
            ctx.pop_scope()
        return Result()


@dataclass
class BlockItem(Node):
    """A statement or a declaration inside a block; exactly one is set."""

    stmt: Optional[Node] = None
    decl: Optional[Node] = None

    def emit(self, ctx: KoopaContext) -> Result:
        if self.stmt is not None and self.decl is None:
            return self.stmt.emit(ctx)
        if self.stmt is None and self.decl is not None:
            return self.decl.emit(ctx)
        raise ValueError("invalid block item")


class StmtKind(Enum):
    ASSIGN = auto()
    EXPRESSION = auto()
    BLOCK = auto()
    RETURN = auto()
    IF = auto()
    WHILE = auto()
    BREAK = auto()
    CONTINUE = auto()


@dataclass
class Stmt(Node):
    """A statement; which fields are used depends on ``kind``."""

    kind: StmtKind
    lval: Optional[Node] = None
    exp: Optional[Node] = None
    block: Optional[Node] = None
    if_stmt: Optional[Node] = None
    else_stmt: Optional[Node] = None
    while_stmt: Optional[Node] = None

    def emit(self, ctx: KoopaContext) -> Result:
        handlers = {
            StmtKind.ASSIGN: self._assign,
            StmtKind.RETURN: self._return,
            StmtKind.EXPRESSION: self._expression,
            StmtKind.BLOCK: self._block,
            StmtKind.IF: self._if,
            StmtKind.WHILE: self._while,
            StmtKind.BREAK: self._break,
            StmtKind.CONTINUE: self._continue,
        }
        return handlers[self.kind](ctx)

    def _assign(self, ctx: KoopaContext) -> Result:
        if self.lval is None or self.exp is None or self.block is not None:
            raise ValueError("invalid assign statement")
        if not isinstance(self.lval, LVal):
            raise ValueError("assignment target is not an lvalue")
        name = self.lval.name
        value = self.exp.emit(ctx)
        symbol = ctx.lookup(name)
        if symbol.kind is SymbolKind.VAL:
            raise ValueError(f"assignment to constant {name!r}")
        ctx.emit(f"\tstore {value}, @{name}_{symbol.value}")
        return Result()

    def _return(self, ctx: KoopaContext) -> Result:
        if self.lval is not None or self.block is not None:
            raise ValueError("invalid return statement")
        if self.exp is None:
            ctx.emit("\tret 0")
            return Result(returned=True)
        value = self.exp.emit(ctx)
        ctx.emit(f"\tret {value}")
        return dataclasses.replace(value, returned=True)

    def _expression(self, ctx: KoopaContext) -> Result:
        if self.lval is not None or self.block is not None:
            raise ValueError("invalid expression statement")
        if self.exp is not None:
            self.exp.emit(ctx)
        return Result()

    def _block(self, ctx: KoopaContext) -> Result:
        if self.lval is not None or self.exp is not None or self.block is None:
            raise ValueError("invalid block statement")
        return self.block.emit(ctx)

    def _if(self, ctx: KoopaContext) -> Result:
        ctx.if_else_count += 1
        index = ctx.if_else_count
        then_label = f"%then_{index}"
        else_label = f"%else_{index}"
        end_label = f"%end_{index}"

        if self.exp is None:
            raise ValueError("invalid if statement, there's no condition")
        cond = self.exp.emit(ctx)
        if self.if_stmt is None:
            raise ValueError("invalid if statement, there's no if")

        has_else = self.else_stmt is not None
        ctx.emit(f"\tbr {cond}, {then_label}, {else_label if has_else else end_label}")
        ctx.emit(f"{then_label}:")
        then_result = self.if_stmt.emit(ctx)
        if not _stops_flow(then_result):
            ctx.emit(f"\tjump {end_label}")

        else_result = Result()
        if has_else:
            ctx.emit(f"{else_label}:")
            else_result = self.else_stmt.emit(ctx)
            if not _stops_flow(else_result):
                ctx.emit(f"\tjump {end_label}")

        if not (_stops_flow(then_result) and _stops_flow(else_result)):
            ctx.emit(f"{end_label}:")

        return Result(
            returned=then_result.returned and else_result.returned,
            loop_interrupted=then_result.loop_interrupted and else_result.loop_interrupted,
        )

    def _while(self, ctx: KoopaContext) -> Result:
        if self.exp is None or self.while_stmt is None:
            raise ValueError("invalid while statement")
        ctx.while_count += 1
        index = ctx.while_count
        ctx.while_stack.append(index)
        entry_label = f"%while_entry_{index}"
        body_label = f"%while_body_{index}"
        end_label = f"%while_end_{index}"

        ctx.emit(f"\tjump {entry_label}")
        ctx.emit(f"{entry_label}:")
        cond = self.exp.emit(ctx)
        ctx.emit(f"\tbr {cond}, {body_label}, {end_label}")

        ctx.emit(f"{body_label}:")
        body = self.while_stmt.emit(ctx)
        if not _stops_flow(body):
            ctx.emit(f"\tjump {entry_label}")

        ctx.emit(f"{end_label}:")
        ctx.while_stack.pop()
        # A return inside the body does not end the function: the loop may never run.
        return dataclasses.replace(body, returned=False, loop_interrupted=False)

    def _break(self, ctx: KoopaContext) -> Result:
        if not ctx.while_stack:
            raise ValueError("invalid break statement, not in a while statement")
        ctx.emit(f"\tjump %while_end_{ctx.while_stack[-1]}")
        return Result(loop_interrupted=True)

    def _continue(self, ctx: KoopaContext) -> Result:
        if not ctx.while_stack:
            raise ValueError("invalid continue statement, not in a while statement")
        ctx.emit(f"\tjump %while_entry_{ctx.while_stack[-1]}")
        return Result(loop_interrupted=True)


@dataclass
class Decl(Node):
    """A constant or variable declaration."""

    const_decl: Optional[Node] = None
    var_decl: Optional[Node] = None

    def emit(self, ctx: KoopaContext) -> Result:
        if self.const_decl is not None:
            self.const_decl.emit(ctx)
        elif self.var_decl is not None:
            self.var_decl.emit(ctx)
        else:
            raise ValueError("invalid declaration")
        return Result()


@dataclass
class BType(Node):
    """The base type of a declaration; only ``int`` exists."""

    type: str = "int"

    @property
    def ir_type(self) -> str:
        """The Koopa spelling of this type."""
        return "i32"

    def emit(self, ctx: KoopaContext) -> Result:
        return Result()


@dataclass
class ConstInitVal(Node):
    """The initializer of a constant."""

    const_exp: Node

    def emit(self, ctx: KoopaContext) -> Result:
        return self.const_exp.emit(ctx)


@dataclass
class ConstDef(Node):
    """One constant definition; its value is folded into the symbol table."""

    name: str
    init_val: Node

    def emit(self, ctx: KoopaContext) -> Result:
        value = self.init_val.emit(ctx)
        if value.kind.name != "IMM":
            raise ValueError(f"initializer of constant {self.name!r} is not a compile-time constant")
        ctx.insert_symbol(self.name, Symbol(SymbolKind.VAL, value.value))
        return Result()


@dataclass
class ConstDecl(Node):
    """A ``const`` declaration of one or more constants."""

    btype: BType
    const_defs: list[Node] = field(default_factory=list)

    def emit(self, ctx: KoopaContext) -> Result:
        for definition in self.const_defs:
            definition.emit(ctx)
        return Result()


@dataclass
class InitVal(Node):
    """The initializer of a variable."""

    exp: Node

    def emit(self, ctx: KoopaContext) -> Result:
        return self.exp.emit(ctx)


@dataclass
class VarDef(Node):
    """One variable definition, optionally initialised."""

    name: str
    init_val: Optional[Node] = None

    def emit(self, ctx: KoopaContext) -> Result:
        value = self.init_val.emit(ctx) if self.init_val is not None else None
        ctx.insert_symbol(self.name, Symbol(SymbolKind.VAR, 0 if value is None else value.value))
        storage = f"@{self.name}_{ctx.lookup(self.name).value}"
        if not ctx.is_allocated(self.name):
            ctx.emit(f"\t{storage} = alloc i32")
        ctx.mark_allocated(self.name)
        if value is not None:
            ctx.emit(f"\tstore {value}, {storage}")
        return Result()


@dataclass
class VarDecl(Node):
    """A variable declaration of one or more variables."""

    btype: BType
    var_defs: list[Node] = field(default_factory=list)

    def emit(self, ctx: KoopaContext) -> Result:
        for definition in self.var_defs:
            definition.emit(ctx)
        return Result()


def generate_koopa(comp_unit: Node) -> str:
    """Return the Koopa IR text for a whole program."""
    ctx = KoopaContext()
    comp_unit.emit(ctx)
    return ctx.text()