import pytest

from viml.viml_runtime import ScriptRunner, BufferHost
from vim_trees import i, s, var, op, let, echo, call, call_stmt, try_, throw, ret, function, FINISH


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


V_EXCEPTION = var('v:exception')


@pytest.mark.asyncio
async def test_catch_by_error_code():
    runner, res = await run_vim([
        try_([call_stmt(call('Nope'))], [('/E117/', [let('caught', V_EXCEPTION)])]),
    ])
    assert_ok(res)
    assert runner.get_variable('caught') == "E117: Unknown function: Nope"


@pytest.mark.asyncio
async def test_exception_is_cleared_after_catch():
    runner, res = await run_vim([
        try_([throw(s('oops'))], [(None, [echo(V_EXCEPTION)])]),
        echo(V_EXCEPTION),
    ])
    assert_ok(res, ["oops", ""])


@pytest.mark.asyncio
async def test_first_matching_catch_wins():
    _, res = await run_vim([
        try_([throw(s('disk full'))], [
            ('^net', [echo(s('network'))]),
            ('full$', [echo(s('disk'))]),
            (None, [echo(s('anything'))]),
        ]),
    ])
    assert_ok(res, ["disk"])


@pytest.mark.asyncio
async def test_unmatched_error_runs_finally_then_propagates():
    runner, res = await run_vim([
        try_([echo(var('g:missing')), let('after', i(1))],
             [('E999', [echo(s('wrong'))])],
             [let('cleaned', i(1))]),
        let('next', i(1)),
    ])
    assert_error(res, "E121")
    assert runner.get_variable('after') is None
    assert runner.get_variable('cleaned') == 1
    assert runner.get_variable('next') == 1


@pytest.mark.asyncio
async def test_uncaught_user_exception_is_reported():
    _, res = await run_vim([throw(s('custom failure'))])
    assert res.status == 'error'
    assert res.error_message == "custom failure"


@pytest.mark.asyncio
async def test_throw_with_vim_prefix():
    _, res = await run_vim([throw(s('Vim:fake'))])
    assert_error(res, "E608")


@pytest.mark.asyncio
async def test_error_inside_function_is_caught_by_caller():
    runner, res = await run_vim([
        function('Fail', [], [throw(s('from function'))], flags=['abort']),
        try_([call_stmt(call('Fail'))], [(None, [let('caught', V_EXCEPTION)])]),
    ])
    assert_ok(res)
    assert runner.get_variable('caught') == "from function"


@pytest.mark.asyncio
async def test_throwpoint_names_the_function():
    runner, res = await run_vim([
        function('Fail', [], [throw(s('x'))], flags=['abort']),
        try_([call_stmt(call('Fail'))], [(None, [let('where', var('v:throwpoint'))])]),
    ])
    assert_ok(res)
    assert runner.get_variable('where').startswith("Fail")


@pytest.mark.asyncio
async def test_error_in_catch_propagates_after_finally():
    runner, res = await run_vim([
        try_([throw(s('first'))],
             [(None, [throw(s('second'))])],
             [let('cleaned', i(1))]),
    ])
    assert res.error_message == "second"
    assert runner.get_variable('cleaned') == 1


@pytest.mark.asyncio
async def test_finish_runs_finally_and_skips_catch():
    runner, res = await run_vim([
        try_([FINISH], [(None, [let('caught', i(1))])], [let('cleaned', i(1))]),
        let('after', i(1)),
    ])
    assert_ok(res)
    assert runner.get_variable('caught') is None
    assert runner.get_variable('cleaned') == 1
    assert runner.get_variable('after') is None


@pytest.mark.asyncio
async def test_return_in_finally_overrides():
    _, res = await run_vim([
        function('F', [], [try_([ret(i(1))], finally_body=[ret(i(2))])]),
        echo(call('F')),
    ])
    assert_ok(res, ["2"])


@pytest.mark.asyncio
async def test_return_in_finally_discards_pending_error():
    _, res = await run_vim([
        function('F', [], [try_([throw(s('lost'))], finally_body=[ret(i(3))])]),
        echo(call('F')),
    ])
    assert_ok(res, ["3"])


@pytest.mark.asyncio
async def test_refused_command_is_catchable():
    runner, res = await run_vim([
        try_([{'tag': 'command', 'name': 'bogus'}], [('E492', [let('caught', V_EXCEPTION)])]),
    ], host=BufferHost())
    assert_ok(res)
    assert runner.get_variable('caught') == "E492: Not an editor command: bogus"


@pytest.mark.asyncio
async def test_echoerr_is_catchable():
    runner, res = await run_vim([
        try_([{'tag': 'echoerr', 'args': [s('bad input')]}], [(None, [let('caught', V_EXCEPTION)])]),
    ])
    assert_ok(res)
    assert runner.get_variable('caught') == "bad input"


@pytest.mark.asyncio
async def test_nested_try_rethrow():
    _, res = await run_vim([
        try_([
            try_([throw(s('inner'))], [(None, [throw(op('.', s('outer:'), V_EXCEPTION))])]),
        ], [(None, [echo(V_EXCEPTION)])]),
    ])
    assert_ok(res, ["outer:inner"])
