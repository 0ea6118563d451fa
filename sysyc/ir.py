"""In-memory Koopa IR programs and a parser for their text form."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, NamedTuple, Optional, Union


class KoopaParseError(ValueError):
    """Raised when Koopa IR text is malformed or ill-typed."""

    def __init__(self, message: str, line: Optional[int] = None) -> None:
        self.line = line
        super().__init__(f"line {line}: {message}" if line is not None else message)


class TypeTag(Enum):
    INT32 = "i32"
    UNIT = "unit"
    ARRAY = "array"
    POINTER = "pointer"
    FUNCTION = "function"


@dataclass(frozen=True)
class Type:
    """A Koopa type; compares by structure."""

    tag: TypeTag
    base: Optional[Type] = None
    length: int = 0
    params: tuple[Type, ...] = ()
    ret: Optional[Type] = None

    def __str__(self) -> str:
        if self.tag is TypeTag.INT32:
            return "i32"
        if self.tag is TypeTag.UNIT:
            return "unit"
        if self.tag is TypeTag.ARRAY:
            return f"[{self.base}, {self.length}]"
        if self.tag is TypeTag.POINTER:
            return f"*{self.base}"
        params = ", ".join(str(p) for p in self.params)
        if self.ret is None or self.ret.tag is TypeTag.UNIT:
            return f"({params})"
        return f"({params}): {self.ret}"


INT32 = Type(TypeTag.INT32)
UNIT = Type(TypeTag.UNIT)


def _pointer(base: Type) -> Type:
    return Type(TypeTag.POINTER, base=base)


class ValueTag(Enum):
    INTEGER = "integer"
    ZERO_INIT = "zeroinit"
    UNDEF = "undef"
    AGGREGATE = "aggregate"
    FUNC_ARG_REF = "func_arg_ref"
    BLOCK_ARG_REF = "block_arg_ref"
    ALLOC = "alloc"
    GLOBAL_ALLOC = "global_alloc"
    LOAD = "load"
    STORE = "store"
    GET_PTR = "getptr"
    GET_ELEM_PTR = "getelemptr"
    BINARY = "binary"
    BRANCH = "br"
    JUMP = "jump"
    CALL = "call"
    RETURN = "ret"


class BinaryOp(Enum):
    NOT_EQ = "ne"
    EQ = "eq"
    GT = "gt"
    LT = "lt"
    GE = "ge"
    LE = "le"
    ADD = "add"
    SUB = "sub"
    MUL = "mul"
    DIV = "div"
    MOD = "mod"
    AND = "and"
    OR = "or"
    XOR = "xor"
    SHL = "shl"
    SHR = "shr"
    SAR = "sar"


_BINARY_MNEMONICS = {op.value: op for op in BinaryOp}
_TERMINATORS = {ValueTag.BRANCH, ValueTag.JUMP, ValueTag.RETURN}


@dataclass(eq=False)
class Value:
    """A constant, argument or instruction. Identity is what distinguishes values.

    Only the fields that belong to ``tag`` are meaningful: ``integer`` for
    integers, ``arg_index`` for argument references, ``init`` for global
    allocations, ``src``/``index`` for loads and pointer arithmetic,
    ``value``/``dest`` for stores, ``value`` for returns, ``op``/``lhs``/``rhs``
    for binary operations, ``cond``/``true_bb``/``false_bb`` and their
    arguments for branches, ``target``/``args`` for jumps, ``callee``/``args``
    for calls and ``elems`` for aggregates.
    """

    tag: ValueTag
    ty: Type
    name: Optional[str] = None
    used_by: list[Value] = field(default_factory=list, repr=False)
    integer: int = 0
    arg_index: int = 0
    init: Optional[Value] = None
    elems: list[Value] = field(default_factory=list)
    src: Optional[Value] = None
    index: Optional[Value] = None
    value: Optional[Value] = None
    dest: Optional[Value] = None
    op: Optional[BinaryOp] = None
    lhs: Optional[Value] = None
    rhs: Optional[Value] = None
    cond: Optional[Value] = None
    true_bb: Optional[BasicBlock] = field(default=None, repr=False)
    false_bb: Optional[BasicBlock] = field(default=None, repr=False)
    true_args: list[Value] = field(default_factory=list)
    false_args: list[Value] = field(default_factory=list)
    target: Optional[BasicBlock] = field(default=None, repr=False)
    args: list[Value] = field(default_factory=list)
    callee: Optional[Function] = field(default=None, repr=False)


@dataclass(eq=False)
class BasicBlock:
    name: Optional[str]
    params: list[Value] = field(default_factory=list)
    used_by: list[Value] = field(default_factory=list, repr=False)
    insts: list[Value] = field(default_factory=list)


@dataclass(eq=False)
class Function:
    """A function definition, or a declaration when ``bbs`` is empty."""

    ty: Type
    name: str
    params: list[Value] = field(default_factory=list)
    bbs: list[BasicBlock] = field(default_factory=list)


@dataclass
class Program:
    values: list[Value] = field(default_factory=list)
    funcs: list[Function] = field(default_factory=list)


class _Token(NamedTuple):
    kind: str
    text: str
    line: int


_TOKEN_RE = re.compile(
    r"""
      (?P<space>[ \t\r\n]+)
    | (?P<comment>//[^\n]*|/\*.*?\*/)
    | (?P<symbol>[@%][A-Za-z0-9_]+)
    | (?P<int>-?[0-9]+)
    | (?P<word>[A-Za-z_][A-Za-z0-9_]*)
    | (?P<punct>[=,:(){}\[\]*])
    """,
    re.VERBOSE | re.DOTALL,
)

_INT_MIN = -(2**31)
_INT_MAX = 2**31 - 1


def _tokenize(text: str) -> Iterator[_Token]:
    line = 1
    pos = 0
    while pos < len(text):
        match = _TOKEN_RE.match(text, pos)
        if match is None:
            raise KoopaParseError(f"unexpected character {text[pos]!r}", line)
        kind = match.lastgroup
        if kind not in ("space", "comment"):
            yield _Token(kind, match.group(), line)
        line += match.group().count("\n")
        pos = match.end()
    yield _Token("eof", "", line)


_InitSyntax = tuple  # (kind, payload, token)


class _Parser:
    def __init__(self, text: str) -> None:
        self._tokens = list(_tokenize(text))
        self._pos = 0
        self._globals: dict[str, Union[Value, Function]] = {}
        self._locals: dict[str, Value] = {}
        self._blocks: dict[str, BasicBlock] = {}
        self._defined_blocks: set[str] = set()
        self._pending_targets: list[tuple[BasicBlock, list[Value], int]] = []
        self._function: Optional[Function] = None

    # --- token helpers -------------------------------------------------

    def _peek(self, ahead: int = 0) -> _Token:
        return self._tokens[min(self._pos + ahead, len(self._tokens) - 1)]

    def _next(self) -> _Token:
        token = self._peek()
        if token.kind != "eof":
            self._pos += 1
        return token

    def _error(self, message: str, token: Optional[_Token] = None) -> KoopaParseError:
        return KoopaParseError(message, (token or self._peek()).line)

    @staticmethod
    def _is(token: _Token, text: str) -> bool:
        return token.kind in ("word", "punct") and token.text == text

    def _accept(self, text: str) -> bool:
        if self._is(self._peek(), text):
            self._pos += 1
            return True
        return False

    def _expect(self, text: str) -> None:
        if not self._accept(text):
            found = self._peek().text or "end of input"
            raise self._error(f"expected {text!r}, found {found!r}")

    def _symbol(self, prefix: Optional[str] = None) -> _Token:
        token = self._next()
        if token.kind != "symbol" or (prefix is not None and not token.text.startswith(prefix)):
            wanted = f"a symbol starting with {prefix!r}" if prefix else "a symbol"
            raise self._error(f"expected {wanted}, found {token.text or 'end of input'!r}", token)
        return token

    def _integer(self) -> int:
        token = self._next()
        if token.kind != "int":
            raise self._error(f"expected an integer, found {token.text or 'end of input'!r}", token)
        return self._int_value(token)

    def _int_value(self, token: _Token) -> int:
        number = int(token.text)
        if not _INT_MIN <= number <= _INT_MAX:
            raise self._error(f"integer {token.text} does not fit in i32", token)
        return number

    # --- program level -------------------------------------------------

    def parse(self) -> Program:
        program = Program()
        bodies: list[tuple[Function, int]] = []
        while self._peek().kind != "eof":
            token = self._peek()
            if self._accept("global"):
                program.values.append(self._global_alloc())
            elif self._accept("fun"):
                func = self._function_header(named_params=True)
                self._expect("{")
                bodies.append((func, self._pos))
                self._skip_body()
                program.funcs.append(func)
            elif self._accept("decl"):
                program.funcs.append(self._function_header(named_params=False))
            else:
                raise self._error(f"unexpected {token.text!r} at top level", token)
        for func, start in bodies:
            self._pos = start
            self._function_body(func)
        return program

    def _define_global(self, token: _Token, item: Union[Value, Function]) -> None:
        if token.text in self._globals:
            raise self._error(f"redefinition of {token.text}", token)
        self._globals[token.text] = item

    def _skip_body(self) -> None:
        depth = 1
        while depth:
            token = self._next()
            if token.kind == "eof":
                raise self._error("unterminated function body", token)
            if self._is(token, "{"):
                depth += 1
            elif self._is(token, "}"):
                depth -= 1

    def _global_alloc(self) -> Value:
        name = self._symbol("@")
        self._expect("=")
        self._expect("alloc")
        ty = self._type()
        if ty.tag is TypeTag.UNIT:
            raise self._error("cannot allocate a unit value", name)
        self._expect(",")
        init = self._build_init(self._init_syntax(), ty)
        value = Value(ValueTag.GLOBAL_ALLOC, _pointer(ty), name=name.text, init=init)
        init.used_by.append(value)
        self._define_global(name, value)
        return value

    def _function_header(self, named_params: bool) -> Function:
        name = self._symbol("@")
        self._expect("(")
        params: list[Value] = []
        seen: set[str] = set()
        if not self._accept(")"):
            while True:
                param_name = None
                if named_params:
                    token = self._symbol()
                    if token.text in seen:
                        raise self._error(f"duplicate parameter {token.text}", token)
                    seen.add(token.text)
                    param_name = token.text
                    self._expect(":")
                ty = self._type()
                params.append(
                    Value(ValueTag.FUNC_ARG_REF, ty, name=param_name, arg_index=len(params))
                )
                if self._accept(")"):
                    break
                self._expect(",")
        ret = self._type() if self._accept(":") else UNIT
        func_ty = Type(TypeTag.FUNCTION, params=tuple(p.ty for p in params), ret=ret)
        func = Function(func_ty, name.text, params if named_params else [], [])
        self._define_global(name, func)
        return func

    # --- types and initializers ----------------------------------------

    def _type(self) -> Type:
        token = self._next()
        if self._is(token, "i32"):
            return INT32
        if self._is(token, "["):
            base = self._type()
            self._expect(",")
            length = self._integer()
            if length <= 0:
                raise self._error("array length must be positive", token)
            self._expect("]")
            return Type(TypeTag.ARRAY, base=base, length=length)
        if self._is(token, "*"):
            return _pointer(self._type())
        if self._is(token, "("):
            params: list[Type] = []
            if not self._accept(")"):
                while True:
                    params.append(self._type())
                    if self._accept(")"):
                        break
                    self._expect(",")
            ret = self._type() if self._accept(":") else UNIT
            return Type(TypeTag.FUNCTION, params=tuple(params), ret=ret)
        raise self._error(f"expected a type, found {token.text or 'end of input'!r}", token)

    def _init_syntax(self) -> _InitSyntax:
        token = self._next()
        if token.kind == "int":
            return ("int", self._int_value(token), token)
        if self._is(token, "undef") or self._is(token, "zeroinit"):
            return (token.text, None, token)
        if self._is(token, "{"):
            elems = [self._init_syntax()]
            while self._accept(","):
                elems.append(self._init_syntax())
            self._expect("}")
            return ("aggregate", elems, token)
        raise self._error(f"expected an initializer, found {token.text or 'end of input'!r}", token)

    def _build_init(self, syntax: _InitSyntax, ty: Type) -> Value:
        kind, payload, token = syntax
        if kind == "int":
            if ty != INT32:
                raise self._error(f"integer initializer for type {ty}", token)
            return Value(ValueTag.INTEGER, INT32, integer=payload)
        if kind == "undef":
            return Value(ValueTag.UNDEF, ty)
        if kind == "zeroinit":
            return Value(ValueTag.ZERO_INIT, ty)
        if ty.tag is not TypeTag.ARRAY or len(payload) != ty.length:
            raise self._error(f"aggregate does not match type {ty}", token)
        elems = [self._build_init(item, ty.base) for item in payload]
        aggregate = Value(ValueTag.AGGREGATE, ty, elems=elems)
        for elem in elems:
            elem.used_by.append(aggregate)
        return aggregate

    # --- function bodies -----------------------------------------------

    def _function_body(self, func: Function) -> None:
        self._function = func
        self._locals = {}
        self._blocks = {}
        self._defined_blocks = set()
        self._pending_targets = []
        line = self._peek().line
        for param in func.params:
            self._define_local(param.name, param, line)
        while not self._accept("}"):
            func.bbs.append(self._block())
        if not func.bbs:
            raise KoopaParseError(f"function {func.name} has no basic blocks", line)
        for name in self._blocks:
            if name not in self._defined_blocks:
                raise KoopaParseError(f"undefined basic block {name} in {func.name}", line)
        for block, args, arg_line in self._pending_targets:
            if [a.ty for a in args] != [p.ty for p in block.params]:
                raise KoopaParseError(f"arguments do not match parameters of {block.name}", arg_line)

    def _define_local(self, name: str, value: Value, line: int) -> None:
        if name in self._locals or name in self._globals:
            raise KoopaParseError(f"redefinition of {name}", line)
        self._locals[name] = value

    def _block_ref(self, name: str) -> BasicBlock:
        block = self._blocks.get(name)
        if block is None:
            block = self._blocks[name] = BasicBlock(name)
        return block

    def _at_block_end(self) -> bool:
        token = self._peek()
        if token.kind == "eof" or self._is(token, "}"):
            return True
        following = self._peek(1)
        return token.kind == "symbol" and (self._is(following, ":") or self._is(following, "("))

    def _block(self) -> BasicBlock:
        label = self._symbol()
        if label.text in self._defined_blocks:
            raise self._error(f"redefinition of basic block {label.text}", label)
        self._defined_blocks.add(label.text)
        block = self._block_ref(label.text)
        if self._accept("("):
            while True:
                name = self._symbol()
                self._expect(":")
                param = Value(
                    ValueTag.BLOCK_ARG_REF, self._type(), name=name.text, arg_index=len(block.params)
                )
                self._define_local(name.text, param, name.line)
                block.params.append(param)
                if self._accept(")"):
                    break
                self._expect(",")
        self._expect(":")
        while True:
            if self._at_block_end():
                raise self._error(f"basic block {label.text} does not end with a terminator")
            inst = self._statement()
            block.insts.append(inst)
            if inst.tag in _TERMINATORS:
                return block

    @staticmethod
    def _uses(value: Value, *operands: Value) -> Value:
        for operand in operands:
            operand.used_by.append(value)
        return value

    def _operand(self) -> Value:
        token = self._next()
        if token.kind == "int":
            return Value(ValueTag.INTEGER, INT32, integer=self._int_value(token))
        if self._is(token, "undef"):
            return Value(ValueTag.UNDEF, INT32)
        if token.kind == "symbol":
            value = self._locals.get(token.text)
            if value is None:
                item = self._globals.get(token.text)
                if not isinstance(item, Value):
                    raise self._error(f"undefined value {token.text}", token)
                value = item
            return value
        raise self._error(f"expected a value, found {token.text or 'end of input'!r}", token)

    def _require(self, condition: bool, message: str, token: _Token) -> None:
        if not condition:
            raise self._error(message, token)

    def _statement(self) -> Value:
        token = self._peek()
        if token.kind == "symbol":
            self._next()
            self._expect("=")
            value = self._definition()
            value.name = token.text
            self._define_local(token.text, value, token.line)
            return value
        self._next()
        handlers = {
            "store": self._store,
            "call": self._call,
            "br": self._branch,
            "jump": self._jump,
            "ret": self._return,
        }
        handler = handlers.get(token.text) if token.kind == "word" else None
        if handler is None:
            raise self._error(f"unexpected {token.text or 'end of input'!r}", token)
        return handler()

    def _definition(self) -> Value:
        token = self._next()
        word = token.text if token.kind == "word" else ""
        if word == "alloc":
            ty = self._type()
            self._require(ty.tag is not TypeTag.UNIT, "cannot allocate a unit value", token)
            return Value(ValueTag.ALLOC, _pointer(ty))
        if word == "load":
            src = self._operand()
            self._require(src.ty.tag is TypeTag.POINTER, "load from a non-pointer", token)
            return self._uses(Value(ValueTag.LOAD, src.ty.base, src=src), src)
        if word in ("getptr", "getelemptr"):
            src = self._operand()
            self._expect(",")
            index = self._operand()
            self._require(src.ty.tag is TypeTag.POINTER, f"{word} on a non-pointer", token)
            self._require(index.ty == INT32, f"{word} index must be i32", token)
            if word == "getptr":
                return self._uses(Value(ValueTag.GET_PTR, src.ty, src=src, index=index), src, index)
            self._require(src.ty.base.tag is TypeTag.ARRAY, "getelemptr on a non-array pointer", token)
            ty = _pointer(src.ty.base.base)
            return self._uses(Value(ValueTag.GET_ELEM_PTR, ty, src=src, index=index), src, index)
        if word == "call":
            return self._call()
        op = _BINARY_MNEMONICS.get(word)
        if op is not None:
            lhs = self._operand()
            self._expect(",")
            rhs = self._operand()
            self._require(lhs.ty == INT32 and rhs.ty == INT32, f"{word} operands must be i32", token)
            return self._uses(Value(ValueTag.BINARY, INT32, op=op, lhs=lhs, rhs=rhs), lhs, rhs)
        raise self._error(f"unexpected {token.text or 'end of input'!r} after '='", token)

    def _store(self) -> Value:
        token = self._peek()
        if self._is(token, "{") or self._is(token, "zeroinit"):
            syntax = self._init_syntax()
            self._expect(",")
            dest = self._operand()
            self._require(dest.ty.tag is TypeTag.POINTER, "store to a non-pointer", token)
            value = self._build_init(syntax, dest.ty.base)
        else:
            value = self._operand()
            self._expect(",")
            dest = self._operand()
            self._require(dest.ty.tag is TypeTag.POINTER, "store to a non-pointer", token)
            if value.tag is ValueTag.UNDEF:
                value.ty = dest.ty.base
            self._require(dest.ty.base == value.ty, f"cannot store {value.ty} into {dest.ty}", token)
        return self._uses(Value(ValueTag.STORE, UNIT, value=value, dest=dest), value, dest)

    def _arguments(self) -> list[Value]:
        args: list[Value] = []
        if self._accept(")"):
            return args
        while True:
            args.append(self._operand())
            if self._accept(")"):
                return args
            self._expect(",")

    def _call(self) -> Value:
        name = self._symbol("@")
        callee = self._globals.get(name.text)
        self._require(isinstance(callee, Function), f"undefined function {name.text}", name)
        self._expect("(")
        args = self._arguments()
        self._require(
            [a.ty for a in args] == list(callee.ty.params),
            f"arguments do not match parameters of {name.text}",
            name,
        )
        return self._uses(Value(ValueTag.CALL, callee.ty.ret, callee=callee, args=args), *args)

    def _target(self) -> tuple[BasicBlock, list[Value]]:
        label = self._symbol()
        block = self._block_ref(label.text)
        args = self._arguments() if self._accept("(") else []
        self._pending_targets.append((block, args, label.line))
        return block, args

    def _branch(self) -> Value:
        token = self._peek()
        cond = self._operand()
        self._require(cond.ty == INT32, "branch condition must be i32", token)
        self._expect(",")
        true_bb, true_args = self._target()
        self._expect(",")
        false_bb, false_args = self._target()
        inst = Value(
            ValueTag.BRANCH,
            UNIT,
            cond=cond,
            true_bb=true_bb,
            false_bb=false_bb,
            true_args=true_args,
            false_args=false_args,
        )
        true_bb.used_by.append(inst)
        false_bb.used_by.append(inst)
        return self._uses(inst, cond, *true_args, *false_args)

    def _jump(self) -> Value:
        target, args = self._target()
        inst = Value(ValueTag.JUMP, UNIT, target=target, args=args)
        target.used_by.append(inst)
        return self._uses(inst, *args)

    def _starts_value(self) -> bool:
        token = self._peek()
        if token.kind == "int" or self._is(token, "undef"):
            return True
        if token.kind == "symbol":
            following = self._peek(1)
            return not (self._is(following, ":") or self._is(following, "("))
        return False

    def _return(self) -> Value:
        token = self._peek()
        expected = self._function.ty.ret
        if self._starts_value():
            value = self._operand()
            self._require(value.ty == expected, f"return of {value.ty} from function returning {expected}", token)
            return self._uses(Value(ValueTag.RETURN, UNIT, value=value), value)
        self._require(expected == UNIT, f"missing return value of type {expected}", token)
        return Value(ValueTag.RETURN, UNIT)


def parse_program(text: str) -> Program:
    """Parse Koopa IR text into a :class:`Program`."""
    return _Parser(text).parse()