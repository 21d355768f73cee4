"""Small builders for parser trees, so tests read close to the VimL they stand for."""


def i(n):
    return {'tag': 'int', 'value': n}


def f(x):
    return {'tag': 'float', 'value': x}


def s(text):
    return {'tag': 'string', 'value': text}


def lst(*items):
    return {'tag': 'list', 'items': list(items)}


def dct(**entries):
    return {'tag': 'dict', 'entries': [[s(k), v] for k, v in entries.items()]}


def var(name):
    if len(name) > 2 and name[1] == ':':
        return {'tag': 'variable', 'scope': name[0], 'name': name[2:]}
    return {'tag': 'variable', 'name': name}


def op(operator, left, right):
    return {'tag': 'binary', 'op': operator, 'left': left, 'right': right}


def neg(operand):
    return {'tag': 'unary', 'op': '-', 'operand': operand}


def idx(target, index):
    return {'tag': 'index', 'target': target, 'index': index}


def sl(target, start=None, end=None):
    node = {'tag': 'slice', 'target': target}
    if start is not None:
        node['from'] = start
    if end is not None:
        node['to'] = end
    return node


def call(name, *args):
    if len(name) > 2 and name[1] == ':':
        return {'tag': 'call', 'scope': name[0], 'name': name[2:], 'args': list(args)}
    return {'tag': 'call', 'name': name, 'args': list(args)}


def fcall(target, *args):
    return {'tag': 'funcref_call', 'target': target, 'args': list(args)}


def lam(params, body):
    return {'tag': 'lambda', 'params': list(params), 'body': body}


# --- statements ---

def let(target, value, operator='='):
    if isinstance(target, str):
        target = var(target)
    return {'tag': 'let', 'target': target, 'op': operator, 'value': value}


def echo(*args):
    return {'tag': 'echo', 'args': list(args)}


def call_stmt(expr, rng=None):
    node = {'tag': 'call', 'expr': expr}
    if rng is not None:
        node['range'] = list(rng)
    return node


def if_(cond, body, else_body=None):
    node = {'tag': 'if', 'branches': [[cond, body]]}
    if else_body is not None:
        node['else'] = else_body
    return node


def while_(cond, body):
    return {'tag': 'while', 'condition': cond, 'body': body}


def for_(name, iterable, body):
    return {'tag': 'for', 'variable': var(name), 'iterable': iterable, 'body': body}


def try_(body, catches=(), finally_body=None):
    node = {'tag': 'try', 'body': body, 'catches': [
        {'pattern': p, 'body': b} if p is not None else {'body': b} for p, b in catches
    ]}
    if finally_body is not None:
        node['finally'] = finally_body
    return node


def throw(value):
    return {'tag': 'throw', 'value': value}


def ret(value=None):
    return {'tag': 'return', 'value': value} if value is not None else {'tag': 'return'}


BREAK = {'tag': 'break'}
CONTINUE = {'tag': 'continue'}
FINISH = {'tag': 'finish'}


def function(name, params, body, flags=(), bang=False, varargs=False, defaults=None):
    node = {'tag': 'function', 'name': name, 'params': list(params), 'body': body,
            'flags': list(flags), 'bang': bang, 'varargs': varargs}
    if len(name) > 2 and name[1] == ':':
        node['scope'] = name[0]
        node['name'] = name[2:]
    if defaults:
        node['defaults'] = [[k, v] for k, v in defaults]
    return node
