import importlib.util
from pathlib import Path

from app.tools.registry import TOOLS

ROOT = Path(__file__).resolve().parents[1]


def _load_generator():
    spec = importlib.util.spec_from_file_location("generate_tool_docs", ROOT / "tools" / "generate_tool_docs.py")
    mod = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(mod)
    return mod


def test_docs_cover_every_registered_tool():
    gen = _load_generator()
    tools = gen.collect_tools()
    assert set(tools) == set(TOOLS)


def test_render_groups_and_signatures():
    gen = _load_generator()
    text = gen.render(gen.collect_tools())
    assert "### tx" in text
    assert "### guard" in text
    assert "`tx.execute(intentId=None, txParams=None, paymentProof=None)`" in text
    assert "`guard.toggleRule(name, enabled)`" in text
