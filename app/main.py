from fastmcp import FastMCP

from app.tools.guard import register_guard_tools
from app.tools.portfolio import register_portfolio_tools
from app.tools.strategy import register_strategy_tools
from app.tools.system import register_system_tools
from app.tools.transaction import register_transaction_tools

# Initialize FastMCP server
mcp = FastMCP("TxGuard-MCP")

# Register Tools
register_portfolio_tools(mcp)
register_strategy_tools(mcp)
register_transaction_tools(mcp)
register_guard_tools(mcp)
register_system_tools(mcp)

if __name__ == "__main__":
    mcp.run()
