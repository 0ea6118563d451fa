"""Translation of Koopa IR programs into RISC-V assembly."""

from __future__ import annotations

import io
from typing import Callable

from .ir import BinaryOp, BasicBlock, Function, Program, TypeTag, Value, ValueTag, parse_program
from .riscv_util import RegisterAllocator, RISCVPrinter

_STACK_ALIGNMENT = 16
_WORD = 4


def _label(name: str) -> str:
    """Strip the leading ``@`` or ``%`` of a Koopa name."""
    return name[1:]


def _frame_size(func: Function) -> int:
    """Bytes needed to keep every value-producing instruction on the stack, 16-aligned."""
    slots = sum(
        1 for bb in func.bbs for inst in bb.insts if inst.ty.tag is not TypeTag.UNIT
    )
    size = slots * _WORD
    return (size + _STACK_ALIGNMENT - 1) // _STACK_ALIGNMENT * _STACK_ALIGNMENT


_BinaryEmitter = Callable[[RISCVPrinter, str, str, str], None]


def _compare_then(first: str, second: str) -> _BinaryEmitter:
    def emit(printer: RISCVPrinter, cur: str, lhs: str, rhs: str) -> None:
        getattr(printer, first)(cur, lhs, rhs)
        getattr(printer, second)(cur, cur)

    return emit


def _single(mnemonic: str) -> _BinaryEmitter:
    def emit(printer: RISCVPrinter, cur: str, lhs: str, rhs: str) -> None:
        getattr(printer, mnemonic)(cur, lhs, rhs)

    return emit


_BINARY_EMITTERS: dict[BinaryOp, _BinaryEmitter] = {
    BinaryOp.EQ: _compare_then("xor_", "seqz"),
    BinaryOp.NOT_EQ: _compare_then("xor_", "snez"),
    BinaryOp.GT: _single("sgt"),
    BinaryOp.LT: _single("slt"),
    BinaryOp.GE: _compare_then("slt", "seqz"),
    BinaryOp.LE: _compare_then("sgt", "seqz"),
    BinaryOp.ADD: _single("add"),
    BinaryOp.SUB: _single("sub"),
    BinaryOp.MUL: _single("mul"),
    BinaryOp.DIV: _single("div"),
    BinaryOp.MOD: _single("rem"),
    BinaryOp.AND: _single("and_"),
    BinaryOp.OR: _single("or_"),
}


class RISCVGenerator:
    """Turns a parsed Koopa program into RISC-V assembly text.

    Every value an instruction produces lives in its own stack slot; each
    instruction loads its operands into registers and releases them again.
    """

    def __init__(self) -> None:
        self._out = io.StringIO()
        self._printer = RISCVPrinter(self._out)
        self._registers = RegisterAllocator()

    def generate(self, program: Program) -> str:
        """Return the assembly for ``program``."""
        self._out = io.StringIO()
        self._printer = RISCVPrinter(self._out)
        self._registers = RegisterAllocator()
        for value in program.values:
            self._instruction(value)
        self._out.write("\t.text\n")
        for func in program.funcs:
            self._function(func)
        return self._out.getvalue()

    def _function(self, func: Function) -> None:
        name = _label(func.name)
        self._out.write(f"\t.globl {name}\n")
        self._out.write(f"{name}:\n")
        frame = _frame_size(func)
        self._registers.start_function(name, frame)
        self._printer.addi("sp", "sp", -frame, self._registers)
        for bb in func.bbs:
            self._block(bb)

    def _block(self, bb: BasicBlock) -> None:
        self._out.write(f"{_label(bb.name)}:\n")
        for inst in bb.insts:
            self._instruction(inst)

    def _instruction(self, value: Value) -> None:
        handlers = {
            ValueTag.RETURN: self._return,
            ValueTag.BINARY: self._binary,
            ValueTag.ALLOC: self._alloc,
            ValueTag.LOAD: self._load,
            ValueTag.STORE: self._store,
            ValueTag.BRANCH: self._branch,
            ValueTag.JUMP: self._jump,
        }
        handler = handlers.get(value.tag)
        if handler is None:
            raise ValueError(f"invalid instruction: {value.tag.value}")
        handler(value)

    def _load_operand(self, register: str, operand: Value) -> None:
        if operand.tag is ValueTag.INTEGER:
            self._printer.li(register, operand.integer)
        else:
            offset = self._registers.current_stack().offset(operand)
            self._printer.lw(register, "sp", offset, self._registers)

    def _spill(self, register: str, value: Value) -> None:
        stack = self._registers.current_stack()
        stack.save(value)
        self._printer.sw(register, "sp", stack.offset(value), self._registers)

    def _alloc(self, value: Value) -> None:
        # Storage is given a slot on first store; nothing to emit here.
        return None

    def _branch(self, value: Value) -> None:
        register = self._registers.allocate(value)
        self._load_operand(register, value.cond)
        self._printer.bnez(register, _label(value.true_bb.name))
        self._printer.jump(_label(value.false_bb.name))
        self._registers.free(value)

    def _jump(self, value: Value) -> None:
        self._printer.jump(_label(value.target.name))

    def _load(self, value: Value) -> None:
        register = self._registers.allocate(value)
        offset = self._registers.current_stack().offset(value.src)
        self._printer.lw(register, "sp", offset, self._registers)
        self._spill(register, value)
        self._registers.free(value)

    def _store(self, value: Value) -> None:
        register = self._registers.allocate(value)
        self._load_operand(register, value.value)
        self._spill(register, value.dest)
        self._registers.free(value)

    def _return(self, value: Value) -> None:
        if value.value is None:
            self._printer.li("a0", 0)
        else:
            self._load_operand("a0", value.value)
        frame = self._registers.current_stack().frame_size()
        self._printer.addi("sp", "sp", frame, self._registers)
        self._printer.ret()

    def _binary(self, value: Value) -> None:
        lhs = self._registers.allocate(value.lhs)
        self._load_operand(lhs, value.lhs)
        rhs = self._registers.allocate(value.rhs)
        self._load_operand(rhs, value.rhs)
        self._registers.free(value.lhs)
        self._registers.free(value.rhs)
        cur = self._registers.allocate(value)
        emitter = _BINARY_EMITTERS.get(value.op)
        if emitter is None:
            raise ValueError(f"invalid binary operator: {value.op.value}")
        emitter(self._printer, cur, lhs, rhs)
        self._spill(cur, value)
        self._registers.free(value)


def koopa_to_riscv(koopa_text: str) -> str:
    """Parse Koopa IR text and return the corresponding RISC-V assembly."""
    return RISCVGenerator().generate(parse_program(koopa_text))