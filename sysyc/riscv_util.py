"""Stack frames, register allocation and RISC-V assembly printing."""

from __future__ import annotations

import sys
from typing import Hashable, Optional, TextIO

_TEMP_REGISTERS = tuple(f"t{i}" for i in range(7)) + tuple(f"a{i}" for i in range(8))
_ZERO_REGISTER = "x0"
_IMM12_MIN = -2048
_IMM12_MAX = 2047


def _fits_imm12(number: int) -> bool:
    return _IMM12_MIN <= number <= _IMM12_MAX


class StackManager:
    """Maps the values of one function to offsets from ``sp`` in its frame."""

    def __init__(self, stack_size: int = 0) -> None:
        self._stack_size = stack_size
        self._used = 0
        self._offsets: dict[Hashable, int] = {}

    def save(self, value: Hashable) -> None:
        """Give ``value`` a 4-byte slot unless it already has one."""
        if value in self._offsets:
            return
        self._offsets[value] = self._used
        self._used += 4
        if self._used > self._stack_size:
            raise RuntimeError("stack overflow")

    def used_bytes(self) -> int:
        """Bytes of the frame handed out so far."""
        return self._used

    def frame_size(self) -> int:
        """Size of the whole frame in bytes."""
        return self._stack_size

    def offset(self, value: Hashable) -> int:
        """Offset from ``sp`` of the slot holding ``value``."""
        try:
            return self._offsets[value]
        except KeyError:
            raise LookupError("value not found in this stack frame") from None


class RegisterAllocator:
    """Assigns registers to values and keeps a stack frame per function."""

    def __init__(self) -> None:
        self._registers: dict[Hashable, str] = {}
        self._in_use: set[str] = set()
        self._stacks: dict[str, StackManager] = {}
        self._current_function: Optional[str] = None

    def free(self, value: Hashable) -> None:
        """Release the register held by ``value``."""
        register = self._registers.pop(value, None)
        if register is None:
            raise LookupError("value holds no register")
        self._in_use.discard(register)

    def holds(self, value: Hashable) -> bool:
        """Whether ``value`` currently has a register."""
        return value in self._registers

    def allocate(self, value: Hashable, is_zero: bool = False) -> str:
        """Give ``value`` a free register, or ``x0`` when ``is_zero``; return its name."""
        if value in self._registers:
            raise RuntimeError("value already has a register")
        if is_zero:
            self._registers[value] = _ZERO_REGISTER
            return _ZERO_REGISTER
        register = self._first_free()
        self._registers[value] = register
        self._in_use.add(register)
        return register

    def temp_register(self) -> str:
        """Name a free register for momentary use without reserving it."""
        return self._first_free()

    def register_of(self, value: Hashable) -> str:
        """The register held by ``value``."""
        try:
            return self._registers[value]
        except KeyError:
            raise LookupError("value holds no register") from None

    def current_stack(self) -> StackManager:
        """The stack frame of the function being generated."""
        if self._current_function is None:
            raise LookupError("no function has been started")
        return self._stacks[self._current_function]

    def start_function(self, name: str, stack_size: int) -> StackManager:
        """Create the frame for function ``name`` and make it current."""
        if name in self._stacks:
            raise RuntimeError(f"function {name!r} already exists")
        stack = StackManager(stack_size)
        self._stacks[name] = stack
        self._current_function = name
        return stack

    def _first_free(self) -> str:
        for register in _TEMP_REGISTERS:
            if register not in self._in_use:
                return register
        raise RuntimeError("no free register found")


class RISCVPrinter:
    """Writes RISC-V assembly instructions, one per line, to a text stream."""

    def __init__(self, stream: Optional[TextIO] = None) -> None:
        self._stream = stream

    def _line(self, text: str) -> None:
        stream = self._stream if self._stream is not None else sys.stdout
        stream.write(f"\t{text}\n")

    def _three(self, mnemonic: str, rd: str, rs1: str, rs2: str) -> None:
        self._line(f"{mnemonic} {rd}, {rs1}, {rs2}")

    def ret(self) -> None:
        self._line("ret")

    def seqz(self, rd: str, rs1: str) -> None:
        self._line(f"seqz {rd}, {rs1}")

    def snez(self, rd: str, rs1: str) -> None:
        self._line(f"snez {rd}, {rs1}")

    def or_(self, rd: str, rs1: str, rs2: str) -> None:
        self._three("or", rd, rs1, rs2)

    def and_(self, rd: str, rs1: str, rs2: str) -> None:
        self._three("and", rd, rs1, rs2)

    def xor_(self, rd: str, rs1: str, rs2: str) -> None:
        self._three("xor", rd, rs1, rs2)

    def add(self, rd: str, rs1: str, rs2: str) -> None:
        self._three("add", rd, rs1, rs2)

    def addi(self, rd: str, rs1: str, imm: int, registers: RegisterAllocator) -> None:
        """Add an immediate, going through a scratch register when it exceeds 12 bits."""
        if _fits_imm12(imm):
            self._line(f"addi {rd}, {rs1}, {imm}")
            return
        scratch = registers.temp_register()
        self.li(scratch, imm)
        self.add(rd, rs1, scratch)

    def sub(self, rd: str, rs1: str, rs2: str) -> None:
        self._three("sub", rd, rs1, rs2)

    def mul(self, rd: str, rs1: str, rs2: str) -> None:
        self._three("mul", rd, rs1, rs2)

    def div(self, rd: str, rs1: str, rs2: str) -> None:
        self._three("div", rd, rs1, rs2)

    def rem(self, rd: str, rs1: str, rs2: str) -> None:
        self._three("rem", rd, rs1, rs2)

    def sgt(self, rd: str, rs1: str, rs2: str) -> None:
        self._three("sgt", rd, rs1, rs2)

    def slt(self, rd: str, rs1: str, rs2: str) -> None:
        self._three("slt", rd, rs1, rs2)

    def li(self, rd: str, imm: int) -> None:
        self._line(f"li {rd}, {imm}")

    def mv(self, rd: str, rs1: str) -> None:
        self._line(f"mv {rd}, {rs1}")

    def _memory(self, mnemonic: str, reg: str, base: str, bias: int, registers: RegisterAllocator) -> None:
        if _fits_imm12(bias):
            self._line(f"{mnemonic} {reg}, {bias}({base})")
            return
        scratch = registers.temp_register()
        self.li(scratch, bias)
        self.add(scratch, scratch, base)
        self._line(f"{mnemonic} {reg}, ({scratch})")

    def lw(self, rd: str, base: str, bias: int, registers: RegisterAllocator) -> None:
        """Load a word from ``base + bias``."""
        self._memory("lw", rd, base, bias, registers)

    def sw(self, rs1: str, base: str, bias: int, registers: RegisterAllocator) -> None:
        """Store a word to ``base + bias``."""
        self._memory("sw", rs1, base, bias, registers)

    def bnez(self, cond: str, label: str) -> None:
        self._line(f"bnez {cond}, {label}")

    def beqz(self, cond: str, label: str) -> None:
        self._line(f"beqz {cond}, {label}")

    def jump(self, label: str) -> None:
        self._line(f"j {label}")