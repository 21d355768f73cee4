import asyncio
import sys
from pathlib import Path

from viml.viml_runtime import ScriptRunner, BufferHost
from viml.viml_serialize import load_tree


async def ainput(prompt: str) -> str:
    """A basic awaitable input prompt."""
    loop = asyncio.get_running_loop()
    sys.stdout.write(prompt)
    sys.stdout.flush()
    line = await loop.run_in_executor(None, sys.stdin.readline)
    return line.rstrip("\n")


class ConsoleHost(BufferHost):
    """BufferHost that prints messages as they are shown and prompts on the terminal."""

    def show_message(self, text: str):
        super().show_message(text)
        print(text)

    async def input(self, prompt: str, text: str = "") -> str:
        if self.inputs:
            return self.inputs.pop(0)
        answer = await ainput(prompt)
        return answer or text


async def run_tree_file(file_path: str):
    """Run a statement-tree file (YAML or JSON) and exit with status 1 on error."""
    p = Path(file_path)
    try:
        tree = load_tree(p)
    except FileNotFoundError:
        print(f"Error: file not found: {file_path}", file=sys.stderr)
        raise SystemExit(1)
    await run_tree(tree, name=str(p))


async def run_tree(tree, name=None):
    runner = ScriptRunner(ConsoleHost())
    result = await runner.handle_script(tree, name=name)
    if result.status == 'error':
        print(result.format_error(), file=sys.stderr)
        raise SystemExit(1)


async def main():
    """Run the tree file given as the first argument, or read one from stdin."""
    if len(sys.argv) > 1 and not sys.argv[1].startswith("-"):
        await run_tree_file(sys.argv[1])
        return
    source = sys.stdin.read()
    await run_tree(source, name="<stdin>")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nExiting.")
