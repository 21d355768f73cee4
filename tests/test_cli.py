import io
import importlib.util
import sys
from pathlib import Path
import uuid
import pytest

def _load_cli_module():
    """Dynamically load the top-level viml.py as a module with a unique name."""
    cli_path = Path(__file__).resolve().parents[1] / "viml.py"
    mod_name = f"viml_cli_for_test_{uuid.uuid4().hex}"
    spec = importlib.util.spec_from_file_location(mod_name, str(cli_path))
    mod = importlib.util.module_from_spec(spec)
    sys.modules[mod_name] = mod
    assert spec.loader is not None
    spec.loader.exec_module(mod)
    return mod

SCRIPT = (
    "- tag: let\n"
    "  target: {tag: variable, name: who}\n"
    "  value: {tag: string, value: world}\n"
    "- tag: echo\n"
    "  args:\n"
    "    - tag: binary\n"
    "      op: '..'\n"
    "      left: {tag: string, value: 'hello '}\n"
    "      right: {tag: variable, name: who}\n"
)

@pytest.mark.asyncio
async def test_run_tree_file(tmp_path, capsys):
    cli = _load_cli_module()
    path = tmp_path / "hello.yaml"
    path.write_text(SCRIPT, encoding="utf-8")
    await cli.run_tree_file(str(path))
    assert capsys.readouterr().out == "hello world\n"

@pytest.mark.asyncio
async def test_missing_file_exits_with_error(tmp_path, capsys):
    cli = _load_cli_module()
    with pytest.raises(SystemExit) as exc:
        await cli.run_tree_file(str(tmp_path / "missing.yaml"))
    assert exc.value.code == 1
    assert "file not found" in capsys.readouterr().err

@pytest.mark.asyncio
async def test_script_error_exits_with_error(capsys):
    cli = _load_cli_module()
    tree = [{"tag": "call", "expr": {"tag": "call", "name": "Nope", "args": []}, "line": 2, "col": 1}]
    with pytest.raises(SystemExit) as exc:
        await cli.run_tree(tree, name="inline")
    assert exc.value.code == 1
    captured = capsys.readouterr()
    assert "E117: Unknown function: Nope" in captured.out
    assert "Error on line 2, col 1: E117: Unknown function: Nope" in captured.err

@pytest.mark.asyncio
async def test_main_reads_stdin(monkeypatch, capsys):
    cli = _load_cli_module()
    monkeypatch.setattr(sys, "argv", ["viml.py"])
    monkeypatch.setattr(sys, "stdin", io.StringIO(SCRIPT))
    await cli.main()
    assert capsys.readouterr().out == "hello world\n"

@pytest.mark.asyncio
async def test_console_input_prompts(monkeypatch):
    cli = _load_cli_module()

    async def fake_ainput(prompt: str) -> str:
        return ""
    monkeypatch.setattr(cli, "ainput", fake_ainput)

    host = cli.ConsoleHost(inputs=["queued"])
    assert await host.input("? ") == "queued"
    assert await host.input("? ", "default") == "default"
