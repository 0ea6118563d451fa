import pytest

from sysyc.ir import (
    BinaryOp,
    KoopaParseError,
    Type,
    TypeTag,
    ValueTag,
    parse_program,
)

SAMPLE = """
fun @main(): i32 {
%entry:
  @x_1 = alloc i32
  store 5, @x_1
  %0 = load @x_1
  %1 = add %0, 1
  br %1, %then_1, %end_1
%then_1:
  ret %1
%end_1:
  ret 0
}
"""


@pytest.fixture
def main():
    program = parse_program(SAMPLE)
    assert len(program.funcs) == 1
    return program.funcs[0]


def test_function_and_block_names(main):
    assert main.name == "@main"
    assert [bb.name for bb in main.bbs] == ["%entry", "%then_1", "%end_1"]
    assert main.ty.ret.tag is TypeTag.INT32
    assert main.ty.params == ()


def test_instruction_tags(main):
    assert [inst.tag for inst in main.bbs[0].insts] == [
        ValueTag.ALLOC,
        ValueTag.STORE,
        ValueTag.LOAD,
        ValueTag.BINARY,
        ValueTag.BRANCH,
    ]


def test_instruction_types(main):
    alloc, store, load, binary, branch = main.bbs[0].insts
    assert str(alloc.ty) == "*i32"
    assert store.ty.tag is TypeTag.UNIT
    assert branch.ty.tag is TypeTag.UNIT
    assert load.ty.tag is TypeTag.INT32
    assert binary.ty.tag is TypeTag.INT32


def test_operands_link_to_definitions(main):
    alloc, store, load, binary, branch = main.bbs[0].insts
    assert store.dest is alloc
    assert store.value.tag is ValueTag.INTEGER
    assert store.value.integer == 5
    assert load.src is alloc
    assert binary.op is BinaryOp.ADD
    assert binary.lhs is load
    assert binary.rhs.integer == 1
    assert branch.cond is binary
    assert branch.true_bb is main.bbs[1]
    assert branch.false_bb is main.bbs[2]


def test_used_by_is_recorded(main):
    alloc, store, load, binary, branch = main.bbs[0].insts
    ret = main.bbs[1].insts[0]
    assert alloc.used_by == [store, load]
    assert binary.used_by == [branch, ret]
    assert main.bbs[1].used_by == [branch]


def test_return_values(main):
    ret_then = main.bbs[1].insts[0]
    ret_end = main.bbs[2].insts[0]
    assert ret_then.value is main.bbs[0].insts[3]
    assert ret_end.value.tag is ValueTag.INTEGER
    assert ret_end.value.integer == 0


def test_value_names_are_kept(main):
    assert [inst.name for inst in main.bbs[0].insts[:4]] == ["@x_1", None, "%0", "%1"]


def test_negative_literals_and_comments():
    program = parse_program(
        "// leading comment\nfun @f(): i32 {\n%entry: /* block */\n  ret -7\n}\n"
    )
    assert program.funcs[0].bbs[0].insts[0].value.integer == -7


def test_global_aggregate():
    program = parse_program("global @g = alloc [i32, 2], {1, 2}\n")
    value = program.values[0]
    assert value.tag is ValueTag.GLOBAL_ALLOC
    assert value.name == "@g"
    assert str(value.ty) == "*[i32, 2]"
    assert value.init.tag is ValueTag.AGGREGATE
    assert [e.integer for e in value.init.elems] == [1, 2]


def test_global_zeroinit_used_in_function():
    program = parse_program(
        "global @g = alloc i32, zeroinit\n"
        "fun @main(): i32 {\n%entry:\n  %0 = load @g\n  ret %0\n}\n"
    )
    global_value = program.values[0]
    load = program.funcs[0].bbs[0].insts[0]
    assert global_value.init.tag is ValueTag.ZERO_INIT
    assert load.src is global_value


def test_calls_to_declared_and_later_functions():
    program = parse_program(
        "decl @getint(): i32\n"
        "fun @main(): i32 {\n%entry:\n  %0 = call @getint()\n  %1 = call @id(%0)\n  ret %1\n}\n"
        "fun @id(%x: i32): i32 {\n%entry:\n  ret %x\n}\n"
    )
    decl, main, ident = program.funcs
    assert decl.bbs == []
    first, second, _ = main.bbs[0].insts
    assert first.callee is decl
    assert second.callee is ident
    assert second.args == [first]
    assert ident.params[0].tag is ValueTag.FUNC_ARG_REF
    assert ident.bbs[0].insts[0].value is ident.params[0]


def test_block_parameters_and_jump_arguments():
    program = parse_program(
        "fun @f(): i32 {\n%entry:\n  jump %next(3)\n%next(%a: i32):\n  ret %a\n}\n"
    )
    entry, nxt = program.funcs[0].bbs
    jump = entry.insts[0]
    assert jump.tag is ValueTag.JUMP
    assert jump.target is nxt
    assert [a.integer for a in jump.args] == [3]
    assert nxt.params[0].tag is ValueTag.BLOCK_ARG_REF
    assert nxt.insts[0].value is nxt.params[0]


def test_unit_function_with_bare_return():
    program = parse_program("fun @f() {\n%entry:\n  ret\n}\n")
    func = program.funcs[0]
    assert func.ty.ret.tag is TypeTag.UNIT
    assert func.bbs[0].insts[0].value is None


def test_function_type_string():
    int32 = Type(TypeTag.INT32)
    assert str(Type(TypeTag.FUNCTION, params=(int32,), ret=int32)) == "(i32): i32"


@pytest.mark.parametrize(
    "text",
    [
        "fun @f(): i32 {\n%entry:\n  ret %9\n}\n",
        "fun @f(): i32 {\n%entry:\n  %0 = add 1, 2\n  %0 = add 1, 2\n  ret %0\n}\n",
        "fun @f(): i32 {\n%entry:\n  %0 = add 1, 2\n%next:\n  ret 0\n}\n",
        "fun @f(): i32 {\n%entry:\n  jump %nowhere\n}\n",
        "fun @f(): i32 {\n%entry:\n  %0 = load 1\n  ret %0\n}\n",
        "fun @f(): i32 {\n%entry:\n  ret\n}\n",
        "fun @f(): i32 {\n%entry:\n  ret 4294967296\n}\n",
        "fun @f(): i32 {\n%entry:\n  ret 0\n",
        "fun @f(): i32 {\n%entry:\n  ret 0 $\n}\n",
        "global @g = alloc [i32, 3], {1, 2}\n",
        "fun @f(): i32 {\n%entry:\n  jump %next\n%next(%a: i32):\n  ret %a\n}\n",
        "fun @f(): i32 {\n%entry:\n  %0 = call @missing()\n  ret %0\n}\n",
        "fun @f(): i32 {\n}\n",
    ],
)
def test_malformed_programs_are_rejected(text):
    with pytest.raises(KoopaParseError):
        parse_program(text)


def test_error_reports_line():
    with pytest.raises(KoopaParseError) as info:
        parse_program("fun @f(): i32 {\n%entry:\n  ret %9\n}\n")
    assert info.value.line == 3