import json
import os
from typing import Any, Dict

from fastapi import Body, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.container import global_container
from app.tools.registry import dispatch, list_tools
from common.errors import UNKNOWN_TOOL
from common.rate_limiter import RATE_LIMITED
from observability import build_log_context, log_event

API_CTX = build_log_context(tool="api_server")

app = FastAPI(title="TxGuard-MCP HTTP API", version=settings.VERSION)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # restrict to known frontends in production
    allow_methods=["*"],
    allow_headers=["*"],
)


def _status_for(payload: Dict[str, Any]) -> int:
    if "success" not in payload:
        # x402 invoice
        return 402
    if payload["success"]:
        return 200
    code = (payload.get("error") or {}).get("code")
    if code == UNKNOWN_TOOL:
        return 404
    if code == RATE_LIMITED:
        return 429
    return 400


@app.get("/api/health")
def health_check():
    engine = global_container.guard_engine
    return {
        "status": "ok",
        "mode": "paper" if settings.PAPER_MODE else "live",
        "emergencyStop": engine.is_emergency_stop_active(),
        "version": settings.VERSION,
    }


@app.get("/api/tools")
def get_tools():
    return {"tools": list_tools()}


@app.post("/api/tools/{name}")
def call_tool(name: str, args: Dict[str, Any] = Body(default={})):
    """
    Invoke a tool by name with a JSON object of arguments.

    200 on success, 402 with an invoice when payment is required, 404 for unknown tools,
    429 when rate limited, 400 for any other failure.
    """
    payload = json.loads(dispatch(name, args))
    status = _status_for(payload)
    if status != 200:
        log_event("api_tool_not_ok", ctx=API_CTX, data={"tool": name, "status": status})
    return JSONResponse(content=payload, status_code=status)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("API_PORT", 8000))
    host = os.getenv("API_HOST", "127.0.0.1")
    log_event("api_server_started", ctx=API_CTX, data={"port": port, "host": host})
    uvicorn.run(app, host=host, port=port)
