"""
Generate `docs/TOOLS.md` from the tool registrations in `app/tools/*.py`.

Usage:
  python tools/generate_tool_docs.py

Each tool module registers its handlers as `mcp.tool(name="group.action")(handler)`;
this script reads those calls with `ast` so nothing has to be imported.
"""

from __future__ import annotations

import ast
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
TOOLS_DIR = ROOT / "app" / "tools"
OUT = ROOT / "docs" / "TOOLS.md"


def _format_default(expr: ast.AST) -> str:
    try:
        v = ast.literal_eval(expr)
        if isinstance(v, str):
            return repr(v)
        return str(v)
    except ValueError:
        return "…"


def _signature(name: str, fn: ast.FunctionDef) -> str:
    args = fn.args
    parts = [a.arg for a in args.args]
    defaults = list(args.defaults)
    # defaults align to the last N positional args
    for i in range(1, len(defaults) + 1):
        parts[-i] = f"{parts[-i]}={_format_default(defaults[-i])}"
    return f"{name}({', '.join(parts)})"


def _registrations(tree: ast.Module) -> list[tuple[str, str]]:
    """(tool name, handler function name) for each `mcp.tool(name=...)(handler)` call."""
    out: list[tuple[str, str]] = []
    for node in ast.walk(tree):
        if not (isinstance(node, ast.Call) and isinstance(node.func, ast.Call)):
            continue
        inner = node.func
        if not (isinstance(inner.func, ast.Attribute) and inner.func.attr == "tool"):
            continue
        tool_name = next(
            (kw.value.value for kw in inner.keywords if kw.arg == "name" and isinstance(kw.value, ast.Constant)),
            None,
        )
        if tool_name and node.args and isinstance(node.args[0], ast.Name):
            out.append((tool_name, node.args[0].id))
    return out


def collect_tools(tools_dir: Path = TOOLS_DIR) -> dict[str, tuple[str, ast.FunctionDef]]:
    """tool name -> (module stem, handler definition)."""
    tools: dict[str, tuple[str, ast.FunctionDef]] = {}
    for path in sorted(tools_dir.glob("*.py")):
        tree = ast.parse(path.read_text(encoding="utf-8"))
        defs = {n.name: n for n in tree.body if isinstance(n, ast.FunctionDef)}
        for tool_name, handler in _registrations(tree):
            if handler in defs:
                tools[tool_name] = (path.stem, defs[handler])
    return tools


def render(tools: dict[str, tuple[str, ast.FunctionDef]]) -> str:
    lines: list[str] = []
    lines.append("## TxGuard MCP Tool Catalog")
    lines.append("")
    lines.append("This file is generated from `app/tools/*.py`.")
    lines.append("")
    lines.append("Regenerate with:")
    lines.append("")
    lines.append("```bash")
    lines.append("python tools/generate_tool_docs.py")
    lines.append("```")
    lines.append("")

    groups: dict[str, list[str]] = {}
    for name in sorted(tools):
        groups.setdefault(name.split(".", 1)[0], []).append(name)

    for group, names in groups.items():
        lines.append(f"### {group}")
        lines.append("")
        for name in names:
            _, fn = tools[name]
            doc = (ast.get_docstring(fn) or "").strip()
            first = doc.splitlines()[0].strip() if doc else ""
            lines.append(f"- **`{_signature(name, fn)}`**")
            if first:
                lines.append(f"  - {first}")
            lines.append("")
    return "\n".join(lines).rstrip() + "\n"


def main() -> int:
    tools = collect_tools()
    OUT.parent.mkdir(parents=True, exist_ok=True)
    OUT.write_text(render(tools), encoding="utf-8")
    print(f"Wrote {OUT.relative_to(ROOT)} ({len(tools)} tools)")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
