# sysyc

`sysyc` is a compact compiler pipeline for the SysY teaching language, with
no runtime dependencies. It has two stages:

1. **Syntax tree to Koopa IR** – a SysY syntax tree (one `int` function,
   blocks, `const` and `int` declarations, assignments, `if`/`else`, `while`,
   `break`, `continue`, `return`, and the expression grammar including
   short-circuit `&&` and `||`) is lowered to textual Koopa IR. Constant
   sub-expressions are folded at compile time with 32-bit wrap-around, and
   nested scopes give each variable a depth-suffixed name such as `@a_2`.
2. **Koopa IR to RISC-V** – Koopa IR text is parsed into an in-memory
   program and translated to RISC-V assembly, with every value-producing
   instruction given a slot in a 16-byte-aligned stack frame.

## Lowering a syntax tree to Koopa IR

The node classes live in `sysyc.statements` (`CompUnit`, `FuncDef`,
`FuncType`, `Block`, `BlockItem`, `Stmt` with `StmtKind`, `Decl`, `BType`,
`ConstDecl`, `ConstDef`, `ConstInitVal`, `VarDecl`, `VarDef`, `InitVal`) and
`sysyc.expressions` (`Exp`, `ConstExp`, `LVal`, `PrimaryExp`, `UnaryExp`,
`MulExp`, `AddExp`, `RelExp`, `EqExp`, `LAndExp`, `LOrExp`). Build a
`CompUnit` and pass it to `generate_koopa`:

```python
from sysyc.expressions import Exp, PrimaryExp, UnaryExp, LOrExp
from sysyc.statements import (
    Block, BlockItem, CompUnit, FuncDef, FuncType, Stmt, StmtKind, generate_koopa,
)

ret = Stmt(StmtKind.RETURN, exp=Exp(LOrExp(left_and_exp=UnaryExp(primary_exp=PrimaryExp(number=42)))))
unit = CompUnit(FuncDef(FuncType("int"), "main", Block([BlockItem(stmt=ret)])))
print(generate_koopa(unit))
```

A function body that does not end in a `return` gets a trailing `ret 0`.
Errors raise exceptions: assigning to a constant, a malformed node, or
`break`/`continue` outside a loop raise `ValueError`; an undeclared name
raises `LookupError`; dividing by zero in a constant expression raises
`ZeroDivisionError`.

Each `emit(ctx)` method writes into a `sysyc.context.KoopaContext` and returns
a `Result` (an immediate or a numbered register, plus flags telling whether
control flow returned or left the loop body).

## Translating Koopa IR to RISC-V

```python
from sysyc.codegen import koopa_to_riscv

koopa_text = """\
fun @main(): i32 {
%entry:
\t%0 = add 1, 2
\tret %0
}
"""

print(koopa_to_riscv(koopa_text))
```

The output has a `.text` section, a `.globl main` entry, a prologue that
reserves the stack frame, a load/compute/store sequence per instruction, and
an epilogue that restores `sp` before `ret`.

To drive the stages separately:

```python
from sysyc.ir import parse_program
from sysyc.codegen import RISCVGenerator

program = parse_program(koopa_text)
assembly = RISCVGenerator().generate(program)
```

`parse_program` reads the full textual Koopa IR (globals, declarations,
arrays, pointers, calls, block arguments) and raises `KoopaParseError` on
malformed or ill-typed input. `RISCVGenerator` translates only `alloc`,
`load`, `store`, binary operations, `br`, `jump` and `ret`; any other
instruction, including global allocations and calls, raises `ValueError`.

## Building blocks

- `sysyc.context` – `Result`, `ResultKind`, `Symbol`, `SymbolKind` and
  `KoopaContext`: the scoped symbol table, register numbering and label
  counters used while lowering.
- `sysyc.ir` – the Koopa IR model (`Program`, `Function`, `BasicBlock`,
  `Value`, `Type`, `TypeTag`, `ValueTag`, `BinaryOp`) and `parse_program`.
- `sysyc.riscv_util` – `StackManager`, `RegisterAllocator` (temporaries
  `t0`–`t6`, then `a0`–`a7`, or `x0` on request) and `RISCVPrinter`, which
  writes one instruction per line to a stream (standard output by default)
  and routes immediates and offsets outside the 12-bit range through a
  scratch register.

## What it does not do

There is no lexer or parser for SysY source text and no command-line
program: the pipeline starts from a syntax tree built in Python, and the
results are returned as strings. A compilation unit holds a single function
taking no parameters.