import pytest

from viml.viml_datatypes import VimInt, VimString, VimList
from viml.viml_errors import VimError
from viml.viml_runtime import BufferHost
from viml.viml_scopes import Context, Frame, Script, VariableStore, split_scope, display_name


def assert_vim_error(code, func, *args):
    with pytest.raises(VimError) as exc:
        func(*args)
    assert exc.value.code == code, str(exc.value)


@pytest.fixture
def store():
    return VariableStore()


@pytest.fixture
def top():
    return Context(BufferHost(), Script("test.vim"), None)


def test_split_scope():
    assert split_scope("g:foo") == ("g", "foo")
    assert split_scope("foo") == (None, "foo")
    assert split_scope("x:foo") == (None, "x:foo")
    assert display_name("s", "bar") == "s:bar"
    assert display_name(None, "bar") == "bar"


def test_unscoped_means_global_at_top_level(store, top):
    store.set(None, "x", VimInt(1), top)
    assert store.get("g", "x", top) == VimInt(1)
    assert store.globals["x"] == VimInt(1)


def test_unscoped_means_local_in_function(store, top):
    ctx = top.with_frame(Frame("F"))
    store.set(None, "x", VimInt(2), ctx)
    assert store.get("l", "x", ctx) == VimInt(2)
    assert store.get("g", "x", ctx) is None


def test_script_variables_belong_to_script(store, top):
    store.set("s", "v", VimInt(1), top)
    other = top.with_script(Script("other.vim"))
    assert store.get("s", "v", top) == VimInt(1)
    assert store.get("s", "v", other) is None


def test_function_scopes_outside_function(store, top):
    assert_vim_error("E461", store.get, "l", "x", top)
    assert_vim_error("E461", store.get, "a", "x", top)
    assert store.exists("l", "x", top) is False


def test_read_only_scopes(store, top):
    ctx = top.with_frame(Frame("F"))
    assert_vim_error("E46", store.set, "a", "x", VimInt(1), ctx)
    assert_vim_error("E46", store.set, "v", "count", VimInt(1), top)
    store.set_vim_variable("count", VimInt(3))
    assert store.get("v", "count", top) == VimInt(3)


def test_self_is_read_only_in_dict_function(store, top):
    frame = Frame("F")
    frame.self_dict = frame.locals
    ctx = top.with_frame(frame)
    assert_vim_error("E46", store.set, None, "self", VimInt(1), ctx)


def test_undefined_variable(store, top):
    assert_vim_error("E121", store.get_or_fail, None, "nope", top)


def test_unlet(store, top):
    store.set(None, "x", VimInt(1), top)
    store.unlet(None, "x", top)
    assert store.get(None, "x", top) is None
    assert_vim_error("E108", store.unlet, None, "x", top)
    store.unlet(None, "x", top, bang=True)


def test_closure_sees_defining_frame(store, top):
    outer = Frame("Outer")
    outer.locals["n"] = VimInt(10)
    inner = Frame("<lambda>1", parent=outer, is_closure=True)
    ctx = top.with_frame(inner)
    assert store.get(None, "n", ctx) == VimInt(10)
    assert not inner.sees_globals


def test_closure_writes_to_owning_frame(store, top):
    outer = Frame("Outer")
    outer.locals["n"] = VimInt(10)
    inner = Frame("Bump", parent=outer, is_closure=True)
    ctx = top.with_frame(inner)
    store.set(None, "n", VimInt(11), ctx)
    store.set(None, "fresh", VimInt(1), ctx)
    assert outer.locals["n"] == VimInt(11)
    assert "fresh" in inner.locals
    assert "fresh" not in outer.locals


def test_non_closure_does_not_see_caller(store, top):
    outer = Frame("Outer")
    outer.locals["n"] = VimInt(10)
    inner = Frame("Inner", parent=outer, is_closure=False)
    assert store.get(None, "n", top.with_frame(inner)) is None


def test_script_level_closure_sees_globals(store, top):
    store.globals["offset"] = VimInt(5)
    lam = Frame("<lambda>2", parent=None, is_closure=True)
    assert lam.sees_globals
    assert store.get(None, "offset", top.with_frame(lam)) == VimInt(5)


def test_host_namespaces(store, top):
    store.set("b", "flag", VimString("on"), top)
    assert top.host.buffer_variables()["flag"] == VimString("on")
    store.set("w", "x", VimInt(1), top)
    store.set("t", "x", VimInt(2), top)
    assert store.get("w", "x", top) == VimInt(1)
    assert store.get("t", "x", top) == VimInt(2)


def test_lock_belongs_to_the_variable(store, top):
    value = VimList([VimInt(1)])
    store.set(None, "a", value, top)
    store.set(None, "b", value, top)
    store.lock(None, "a", 2, top)
    assert store.is_locked(None, "a", top)
    assert_vim_error("E741", store.set, None, "a", VimInt(0), top)
    assert_vim_error("E741", store.unlet, None, "a", top)
    # b holds the same locked List but may be rebound
    store.set(None, "b", VimInt(0), top)
    store.unlock(None, "a", 2, top)
    store.set(None, "a", VimInt(0), top)


def test_locking_through_an_alias_keeps_first_lock(store, top):
    value = VimList([VimInt(1)])
    store.set(None, "a", value, top)
    store.set(None, "b", value, top)
    store.lock(None, "a", 2, top)
    store.lock(None, "b", 2, top)
    assert_vim_error("E741", store.set, None, "a", VimInt(5), top)
    assert_vim_error("E741", store.set, None, "b", VimInt(5), top)
    store.unlock(None, "b", 2, top)
    assert_vim_error("E741", store.set, None, "a", VimInt(5), top)
    store.set(None, "b", VimInt(5), top)


def test_lock_undefined_variable(store, top):
    assert_vim_error("E108", store.lock, None, "nope", 2, top)


def test_clear_keeps_vim_variables(store, top):
    store.set(None, "x", VimInt(1), top)
    store.clear()
    assert store.get(None, "x", top) is None
    assert store.get("v", "true", top) == VimInt(1)
