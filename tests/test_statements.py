import pytest

from sysyc.context import KoopaContext, Result
from sysyc.expressions import AddExp, LVal, PrimaryExp
from sysyc.statements import (
    Block,
    BlockItem,
    BType,
    CompUnit,
    ConstDecl,
    ConstDef,
    ConstInitVal,
    Decl,
    FuncDef,
    FuncType,
    InitVal,
    Stmt,
    StmtKind,
    VarDecl,
    VarDef,
    generate_koopa,
)


def num(n):
    return PrimaryExp(number=n)


def var(name):
    return PrimaryExp(lval=LVal(name))


def program(*items):
    return CompUnit(FuncDef(FuncType("int"), "main", Block(list(items))))


def stmt(s):
    return BlockItem(stmt=s)


def ret(node=None):
    return stmt(Stmt(StmtKind.RETURN, exp=node))


def block(*items):
    return stmt(Stmt(StmtKind.BLOCK, block=Block(list(items))))


def var_decl(name, init=None):
    init_val = InitVal(init) if init is not None else None
    return BlockItem(decl=Decl(var_decl=VarDecl(BType("int"), [VarDef(name, init_val)])))


def const_decl(name, init):
    return BlockItem(
        decl=Decl(const_decl=ConstDecl(BType("int"), [ConstDef(name, ConstInitVal(init))]))
    )


def assign(name, node):
    return stmt(Stmt(StmtKind.ASSIGN, lval=LVal(name), exp=node))


def lines(unit):
    return generate_koopa(unit).splitlines()


def test_simple_return():
    assert generate_koopa(program(ret(num(1)))) == "fun @main(): i32 {\n%entry:\n\tret 1\n}\n"


def test_missing_return_adds_ret_zero():
    out = lines(program())
    assert out[-2:] == ["\tret 0", "}"]


def test_return_without_value():
    out = lines(program(ret()))
    assert out.count("\tret 0") == 1


def test_variable_alloc_store_load():
    text = generate_koopa(program(var_decl("a", num(5)), ret(var("a"))))
    assert text == (
        "fun @main(): i32 {\n%entry:\n\t@a_1 = alloc i32\n\tstore 5, @a_1\n"
        "\t%0 = load @a_1\n\tret %0\n}\n"
    )


def test_constant_is_folded():
    out = lines(program(const_decl("c", num(3)), ret(AddExp(add_exp=var("c"), op="+", mul_exp=num(4)))))
    assert "\tret 7" in out
    assert not any("alloc" in line for line in out)


def test_uninitialised_variable_then_assign():
    out = lines(program(var_decl("a"), assign("a", num(4)), ret(var("a"))))
    assert "\t@a_1 = alloc i32" in out
    assert "\tstore 4, @a_1" in out
    assert out.index("\t@a_1 = alloc i32") < out.index("\tstore 4, @a_1")


def test_assign_to_constant_raises():
    with pytest.raises(ValueError):
        generate_koopa(program(const_decl("c", num(1)), assign("c", num(2))))


def test_undefined_identifier_raises():
    with pytest.raises(LookupError):
        generate_koopa(program(ret(var("missing"))))


def test_scope_closes_after_block():
    with pytest.raises(LookupError):
        generate_koopa(program(block(var_decl("b", num(1))), ret(var("b"))))


def test_sibling_blocks_allocate_once():
    out = lines(
        program(
            var_decl("a", num(1)),
            block(var_decl("a", num(2))),
            block(var_decl("a", num(3))),
            ret(var("a")),
        )
    )
    assert out.count("\t@a_2 = alloc i32") == 1
    assert "\tstore 2, @a_2" in out
    assert "\tstore 3, @a_2" in out


def test_inner_scope_shadows_outer():
    out = lines(program(var_decl("a", num(1)), block(var_decl("a", num(2)), ret(var("a")))))
    assert "\t%0 = load @a_2" in out


def test_if_else_both_return():
    unit = program(
        stmt(Stmt(StmtKind.IF, exp=num(0), if_stmt=Stmt(StmtKind.RETURN, exp=num(1)),
                  else_stmt=Stmt(StmtKind.RETURN, exp=num(2))))
    )
    out = lines(unit)
    assert "\tbr 0, %then_1, %else_1" in out
    assert "%end_1:" not in out
    assert out[-2:] == ["\tret 2", "}"]
    assert "\tret 0" not in out


def test_if_without_else_branches_to_end():
    unit = program(
        stmt(Stmt(StmtKind.IF, exp=num(1), if_stmt=Stmt(StmtKind.EXPRESSION))),
        ret(num(0)),
    )
    out = lines(unit)
    assert "\tbr 1, %then_1, %end_1" in out
    assert out.index("%then_1:") < out.index("\tjump %end_1") < out.index("%end_1:")


def test_if_without_statement_raises():
    with pytest.raises(ValueError):
        generate_koopa(program(stmt(Stmt(StmtKind.IF, exp=num(1)))))


def test_while_with_break():
    unit = program(
        stmt(Stmt(StmtKind.WHILE, exp=num(1), while_stmt=Stmt(StmtKind.BLOCK, block=Block([
            stmt(Stmt(StmtKind.BREAK))
        ]))))
    )
    out = lines(unit)
    assert out[2:8] == [
        "\tjump %while_entry_1",
        "%while_entry_1:",
        "\tbr 1, %while_body_1, %while_end_1",
        "%while_body_1:",
        "\tjump %while_end_1",
        "%while_end_1:",
    ]
    assert out[-2:] == ["\tret 0", "}"]


def test_continue_jumps_to_entry():
    unit = program(stmt(Stmt(StmtKind.WHILE, exp=num(1), while_stmt=Stmt(StmtKind.CONTINUE))))
    out = lines(unit)
    assert out.count("\tjump %while_entry_1") == 2


def test_nested_break_targets_innermost_loop():
    inner = Stmt(StmtKind.WHILE, exp=num(1), while_stmt=Stmt(StmtKind.BREAK))
    outer = Stmt(StmtKind.WHILE, exp=num(1), while_stmt=Stmt(StmtKind.BLOCK, block=Block([
        stmt(inner), stmt(Stmt(StmtKind.BREAK))
    ])))
    out = lines(program(stmt(outer)))
    body2 = out.index("%while_body_2:")
    assert out[body2 + 1] == "\tjump %while_end_2"
    end2 = out.index("%while_end_2:")
    assert out[end2 + 1] == "\tjump %while_end_1"


def test_return_in_loop_does_not_end_function():
    unit = program(stmt(Stmt(StmtKind.WHILE, exp=num(1), while_stmt=Stmt(StmtKind.RETURN, exp=num(1)))))
    out = lines(unit)
    assert out[-2:] == ["\tret 0", "}"]


@pytest.mark.parametrize("kind", [StmtKind.BREAK, StmtKind.CONTINUE])
def test_break_continue_outside_loop_raise(kind):
    with pytest.raises(ValueError):
        generate_koopa(program(stmt(Stmt(kind))))


def test_invalid_block_item_raises():
    with pytest.raises(ValueError):
        BlockItem().emit(KoopaContext())


def test_invalid_decl_raises():
    with pytest.raises(ValueError):
        Decl().emit(KoopaContext())


def test_invalid_function_type_raises():
    with pytest.raises(ValueError):
        generate_koopa(CompUnit(FuncDef(FuncType("void"), "main", Block([]))))


def test_non_constant_const_initializer_raises():
    with pytest.raises(ValueError):
        generate_koopa(program(var_decl("a", num(1)), const_decl("c", var("a"))))


def test_return_result_is_marked_returned():
    ctx = KoopaContext()
    ctx.push_scope()
    result = Stmt(StmtKind.RETURN, exp=num(9)).emit(ctx)
    assert result.returned
    assert ctx.text() == "\tret 9\n"


def test_declaration_result_is_empty():
    ctx = KoopaContext()
    ctx.push_scope()
    assert var_decl("x", num(2)).emit(ctx) == Result()


def test_generation_is_repeatable():
    unit = program(var_decl("a", num(1)), ret(var("a")))
    expected = (
        "fun @main(): i32 {\n%entry:\n\t@a_1 = alloc i32\n\tstore 1, @a_1\n"
        "\t%0 = load @a_1\n\tret %0\n}\n"
    )
    assert generate_koopa(unit) == expected
    assert generate_koopa(unit) == expected