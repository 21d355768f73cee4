"""An embeddable VimL runtime: values, scopes, functions and statement execution."""
from viml.viml_errors import VimError, ScriptFinish
from viml.viml_datatypes import (
    VimDataType, VimInt, VimFloat, VimString, VimList, VimDictionary, VimFuncref, VimBlob,
)
from viml.viml_interpreter import Evaluator
from viml.viml_runtime import ScriptRunner, ExecutionResult, VimHost, BufferHost
from viml.viml_serialize import to_vim, to_python, serialize, deserialize, load_tree

__all__ = [
    "VimError",
    "ScriptFinish",
    "VimDataType",
    "VimInt",
    "VimFloat",
    "VimString",
    "VimList",
    "VimDictionary",
    "VimFuncref",
    "VimBlob",
    "Evaluator",
    "ScriptRunner",
    "ExecutionResult",
    "VimHost",
    "BufferHost",
    "to_vim",
    "to_python",
    "serialize",
    "deserialize",
    "load_tree",
]
