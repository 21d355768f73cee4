import pytest

from viml.viml_runtime import ScriptRunner, BufferHost
from vim_trees import (
    i, s, lst, dct, var, op, idx, call, fcall, lam, let, echo, call_stmt, ret, function,
)


async def run_vim(statements, **kwargs):
    runner = ScriptRunner(**kwargs)
    res = await runner.handle_script(statements)
    return runner, res


def assert_ok(res, messages=None):
    assert res.status == 'success', res.error_message
    if messages is not None:
        assert res.messages == messages


def assert_error(res, code: str):
    assert res.status == 'error', f"expected error, got success: {res.messages!r}"
    assert res.error_message.startswith(code), res.error_message


ADD = function('Add', ['x', 'y'], [ret(op('+', var('a:x'), var('a:y')))])


# --- Declaration and calls ---

@pytest.mark.asyncio
async def test_define_and_call():
    _, res = await run_vim([ADD, echo(call('Add', i(2), i(3)))])
    assert_ok(res, ["5"])


@pytest.mark.asyncio
async def test_function_without_return_gives_zero():
    _, res = await run_vim([function('Nothing', [], []), echo(call('Nothing'))])
    assert_ok(res, ["0"])


@pytest.mark.asyncio
async def test_arity_errors():
    _, res = await run_vim([ADD, echo(call('Add', i(1)))])
    assert_error(res, "E119")
    _, res = await run_vim([ADD, echo(call('Add', i(1), i(2), i(3)))])
    assert_error(res, "E118")


@pytest.mark.asyncio
async def test_arity_is_checked_before_binding():
    runner, res = await run_vim([
        let('calls', i(0)),
        function('Count', ['x'], [let('g:calls', i(1), '+=')]),
        call_stmt(call('Count')),
    ])
    assert_error(res, "E119")
    assert runner.get_variable('calls') == 0


@pytest.mark.asyncio
async def test_unknown_function():
    _, res = await run_vim([call_stmt(call('Nope'))])
    assert_error(res, "E117")
    assert res.error_message == "E117: Unknown function: Nope"


@pytest.mark.asyncio
async def test_builtins_are_found_first():
    _, res = await run_vim([echo(call('len', lst(i(1), i(2))))])
    assert_ok(res, ["2"])


@pytest.mark.asyncio
async def test_redefinition_needs_bang():
    _, res = await run_vim([ADD, ADD])
    assert_error(res, "E122")
    _, res = await run_vim([
        ADD,
        function('Add', ['x', 'y'], [ret(i(0))], bang=True),
        echo(call('Add', i(1), i(1))),
    ])
    assert_ok(res, ["0"])


@pytest.mark.asyncio
async def test_global_function_name_must_be_capitalised():
    _, res = await run_vim([function('lower', [], [])])
    assert_error(res, "E128")


@pytest.mark.asyncio
async def test_script_local_functions():
    runner, res = await run_vim([
        function('s:helper', [], [ret(s('local'))]),
        echo(call('s:helper')),
    ])
    assert_ok(res, ["local"])
    res = await runner.handle_script([echo(call('s:helper'))])
    assert_error(res, "E117")


@pytest.mark.asyncio
async def test_functions_persist_between_scripts():
    runner, res = await run_vim([ADD])
    assert_ok(res)
    res = await runner.handle_script([echo(call('Add', i(1), i(2)))])
    assert_ok(res, ["3"])


@pytest.mark.asyncio
async def test_delfunction():
    _, res = await run_vim([ADD, {'tag': 'delfunction', 'name': 'Add'}, echo(call('Add', i(1), i(2)))])
    assert_error(res, "E117")
    _, res = await run_vim([{'tag': 'delfunction', 'name': 'Missing'}])
    assert_error(res, "E130")
    _, res = await run_vim([{'tag': 'delfunction', 'name': 'Missing', 'bang': True}])
    assert_ok(res)


# --- Arguments and scopes ---

@pytest.mark.asyncio
async def test_defaults_and_varargs():
    f = function('F', ['a'], [ret(op('+', op('+', var('a:a'), var('a:b')), var('a:0')))],
                 varargs=True, defaults=[('b', i(10))])
    rest = function('Rest', [], [ret(var('a:000'))], varargs=True)
    _, res = await run_vim([
        f, rest,
        echo(call('F', i(1))),
        echo(call('F', i(1), i(2), i(3), i(4))),
        echo(call('Rest', i(1), s('x'))),
    ])
    assert_ok(res, ["11", "5", "[1, 'x']"])


@pytest.mark.asyncio
async def test_arguments_are_read_only():
    _, res = await run_vim([
        function('F', ['x'], [let('a:x', i(2))]),
        call_stmt(call('F', i(1))),
    ])
    assert_error(res, "E46")


@pytest.mark.asyncio
async def test_unscoped_names_are_local_inside_functions():
    runner, res = await run_vim([
        let('x', s('global')),
        function('F', [], [let('x', s('local')), ret(var('x'))]),
        echo(call('F')),
    ])
    assert_ok(res, ["local"])
    assert runner.get_variable('x') == 'global'


@pytest.mark.asyncio
async def test_function_cannot_see_unscoped_globals():
    _, res = await run_vim([
        let('x', i(1)),
        function('F', [], [ret(var('x'))]),
        echo(call('F')),
    ])
    assert_error(res, "E121")


# --- abort ---

def _tracing(flags):
    return function('Trace', [], [
        call_stmt(call('add', var('g:trace'), i(1))),
        call_stmt(call('add', var('g:trace'), i(2))),
        echo(var('g:nope')),
        call_stmt(call('add', var('g:trace'), i(4))),
    ], flags=flags)


@pytest.mark.asyncio
async def test_function_without_abort_continues_after_error():
    runner, res = await run_vim([let('trace', lst()), _tracing(()), call_stmt(call('Trace'))])
    assert_error(res, "E121")
    assert runner.get_variable('trace') == [1, 2, 4]


@pytest.mark.asyncio
async def test_abort_function_stops_at_error():
    runner, res = await run_vim([let('trace', lst()), _tracing(('abort',)), call_stmt(call('Trace'))])
    assert_error(res, "E121")
    assert len(res.errors) == 1
    assert runner.get_variable('trace') == [1, 2]


@pytest.mark.asyncio
async def test_finish_inside_function_ends_the_script():
    runner, res = await run_vim([
        let('trace', lst()),
        function('Stop', [], [
            call_stmt(call('add', var('g:trace'), i(1))),
            {'tag': 'finish'},
            call_stmt(call('add', var('g:trace'), i(2))),
        ]),
        function('Outer', [], [
            call_stmt(call('Stop')),
            call_stmt(call('add', var('g:trace'), i(3))),
        ]),
        call_stmt(call('Outer')),
        call_stmt(call('add', var('trace'), i(4))),
    ])
    assert_ok(res)
    assert res.errors == []
    assert runner.get_variable('trace') == [1]


@pytest.mark.asyncio
async def test_call_depth_limit():
    _, res = await run_vim([
        function('Down', [], [ret(call('Down'))]),
        call_stmt(call('Down')),
    ], max_func_depth=20)
    assert_error(res, "E132")
    assert len(res.errors) == 1


# --- Funcrefs ---

@pytest.mark.asyncio
async def test_function_reference_follows_redefinition():
    _, res = await run_vim([
        function('Foo', [], [ret(i(1))]),
        let('F', call('function', s('Foo'))),
        let('R', call('funcref', s('Foo'))),
        echo(call('F'), call('R')),
        function('Foo', [], [ret(i(2))], bang=True),
        echo(call('F'), call('R')),
    ])
    assert_ok(res, ["1 1", "2 1"])


@pytest.mark.asyncio
async def test_deleted_function_through_funcref():
    _, res = await run_vim([
        function('Foo', [], [ret(i(1))]),
        let('F', call('funcref', s('Foo'))),
        {'tag': 'delfunction', 'name': 'Foo'},
        call_stmt(call('F')),
    ])
    assert_error(res, "E933")


@pytest.mark.asyncio
async def test_function_reference_to_script_local_keeps_its_script():
    runner, res = await run_vim([
        function('s:Foo', [], [ret(i(42))]),
        let('F', call('function', s('s:Foo'))),
        echo(call('F')),
    ])
    assert_ok(res, ["42"])
    res = await runner.handle_script([echo(call('F'))])
    assert_ok(res, ["42"])
    res = await runner.handle_script([
        function('s:Foo', [], [ret(i(7))]),
        echo(call('F'), call('s:Foo')),
    ])
    assert_ok(res, ["42 7"])


@pytest.mark.asyncio
async def test_partial_arguments():
    _, res = await run_vim([
        ADD,
        let('Inc', call('function', s('Add'), lst(i(1)))),
        echo(fcall(var('Inc'), i(41))),
        echo(call('string', var('Inc'))),
    ])
    assert_ok(res, ["42", "function('Add', [1])"])


@pytest.mark.asyncio
async def test_function_of_unknown_name():
    _, res = await run_vim([let('F', call('function', s('Missing')))])
    assert_error(res, "E700")


@pytest.mark.asyncio
async def test_calling_a_non_funcref():
    _, res = await run_vim([let('x', i(1)), echo(fcall(var('x')))])
    assert_error(res, "E718")


@pytest.mark.asyncio
async def test_call_builtin():
    _, res = await run_vim([
        ADD,
        echo(call('call', s('Add'), lst(i(1), i(2)))),
        echo(call('call', call('function', s('Add')), lst(i(3), i(4)))),
    ])
    assert_ok(res, ["3", "7"])


# --- Dictionary functions ---

@pytest.mark.asyncio
async def test_dict_function_sees_self():
    _, res = await run_vim([
        let('d', dct(v=i(5))),
        {'tag': 'dict_function', 'target': var('d'), 'key': 'get', 'params': [],
         'flags': ['dict'], 'body': [ret(idx(var('self'), s('v')))]},
        echo(fcall(idx(var('d'), s('get')))),
    ])
    assert_ok(res, ["5"])


@pytest.mark.asyncio
async def test_dict_function_assigned_into_another_dictionary():
    _, res = await run_vim([
        function('GetV', [], [ret(idx(var('self'), s('v')))], flags=['dict']),
        let('d', dct(v=i(7))),
        let(idx(var('d'), s('get')), call('function', s('GetV'))),
        echo(fcall(idx(var('d'), s('get')))),
    ])
    assert_ok(res, ["7"])


@pytest.mark.asyncio
async def test_dict_function_without_dictionary():
    _, res = await run_vim([
        function('Method', [], [ret(i(1))], flags=['dict']),
        call_stmt(call('Method')),
    ])
    assert_error(res, "E725")


@pytest.mark.asyncio
async def test_dict_function_through_call_with_dictionary():
    _, res = await run_vim([
        function('Method', [], [ret(idx(var('self'), s('name')))], flags=['dict']),
        echo(call('call', s('Method'), lst(), dct(name=s('obj')))),
    ])
    assert_ok(res, ["obj"])


@pytest.mark.asyncio
async def test_dict_function_key_exists():
    _, res = await run_vim([
        let('d', dct(get=i(1))),
        {'tag': 'dict_function', 'target': var('d'), 'key': 'get', 'params': [], 'body': []},
    ])
    assert_error(res, "E718")


# --- Lambdas and closures ---

@pytest.mark.asyncio
async def test_lambda():
    _, res = await run_vim([
        let('Double', lam(['x'], op('*', var('x'), i(2)))),
        echo(call('Double', i(21))),
        echo({'tag': 'lambda_call', 'lambda': lam(['a', 'b'], op('-', var('a'), var('b'))), 'args': [i(5), i(2)]}),
    ])
    assert_ok(res, ["42", "3"])


@pytest.mark.asyncio
async def test_lambda_ignores_extra_arguments():
    _, res = await run_vim([
        let('Const', lam([], i(1))),
        echo(call('Const', i(5), i(6))),
        echo(call('call', lam(['x'], var('x')), lst(i(7), i(8)))),
        call_stmt(call('call', lam(['x', 'y'], var('x')), lst(i(1)))),
    ])
    assert res.messages == ["1", "7"]
    assert_error(res, "E119")


@pytest.mark.asyncio
async def test_lambda_at_script_level_sees_globals():
    _, res = await run_vim([
        let('offset', i(100)),
        let('F', lam(['x'], op('+', var('x'), var('offset')))),
        echo(call('F', i(1))),
    ])
    assert_ok(res, ["101"])


@pytest.mark.asyncio
async def test_lambda_closes_over_function_locals():
    _, res = await run_vim([
        function('MakeAdder', ['n'], [
            let('base', var('a:n')),
            ret(lam(['x'], op('+', var('x'), var('base')))),
        ]),
        echo(fcall(call('MakeAdder', i(10)), i(5))),
    ])
    assert_ok(res, ["15"])


@pytest.mark.asyncio
async def test_closure_function_shares_outer_locals():
    _, res = await run_vim([
        function('Outer', [], [
            let('count', i(1)),
            function('Bump', [], [let('count', i(1), '+=')], flags=['closure'], bang=True),
            call_stmt(call('Bump')),
            call_stmt(call('Bump')),
            ret(var('count')),
        ]),
        echo(call('Outer')),
    ])
    assert_ok(res, ["3"])


@pytest.mark.asyncio
async def test_lambda_in_map():
    runner, res = await run_vim([
        let('l', lst(i(1), i(2), i(3))),
        call_stmt(call('map', var('l'), lam(['k', 'v'], op('*', var('v'), var('v'))))),
    ])
    assert_ok(res)
    assert runner.get_variable('l') == [1, 4, 9]


# --- Ranges ---

@pytest.mark.asyncio
async def test_call_with_range_runs_once_per_line():
    host = BufferHost(['a', 'b', 'c', 'd', 'e'])
    runner, res = await run_vim([
        let('seen', lst()),
        function('Visit', [], [call_stmt(call('add', var('g:seen'), call('line', s('.'))))]),
        call_stmt(call('Visit'), (i(2), i(4))),
    ], host=host)
    assert_ok(res)
    assert runner.get_variable('seen') == [2, 3, 4]
    assert host.cursor_line == 4


@pytest.mark.asyncio
async def test_range_function_runs_once():
    host = BufferHost(['a', 'b', 'c', 'd', 'e'])
    runner, res = await run_vim([
        function('Span', [], [
            let('g:first', var('a:firstline')),
            let('g:last', var('a:lastline')),
            let('g:runs', i(1), '+='),
        ], flags=['range']),
        let('runs', i(0)),
        call_stmt(call('Span'), (i(2), i(4))),
    ], host=host)
    assert_ok(res)
    assert runner.get_variable('first') == 2
    assert runner.get_variable('last') == 4
    assert runner.get_variable('runs') == 1
