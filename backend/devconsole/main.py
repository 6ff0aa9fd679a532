"""Dev-Console Co-Pilot - Main FastAPI Application"""
from fastapi import FastAPI, WebSocket, WebSocketDisconnect, HTTPException, Query, Header, Request, Depends
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from typing import Optional
import hmac
import logging

from devconsole import __version__
from devconsole.client import SandboxClient, build_client
from devconsole.config import settings
from devconsole.errors import ExecutionError, GateError, ProviderError, ValidationError
from devconsole.logging_config import setup_logging
from devconsole.models import (
    ACTION_ARGS, ActionRequest, ActionResponse,
    SessionStartRequest, PromptRequest, AutoExecuteRequest, QueueTailRequest,
)
from devconsole.provider import CompletionProvider, OpenAIProvider
from devconsole.risk import warning_text
from devconsole.sandbox import ExecutionSandbox, build_sandbox
from devconsole.session import SessionController
from devconsole.storage import storage

logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize on startup"""
    setup_logging()
    app.state.sandbox = build_sandbox()
    await app.state.sandbox.db.init_db()
    logger.info("Serving installation at %s", settings.wp_root)
    yield
    for session_id in list(storage.sessions):
        await storage.close_session(session_id)

app = FastAPI(
    title="Dev-Console Co-Pilot",
    description="WordPress co-pilot agent with confirmed, sandboxed actions",
    version=__version__,
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.cors_origins == "*" else settings.cors_origins.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

def get_sandbox(request: Request) -> ExecutionSandbox:
    return request.app.state.sandbox

def get_client(sandbox: ExecutionSandbox = Depends(get_sandbox)) -> SandboxClient:
    return build_client(sandbox)

def get_provider() -> CompletionProvider:
    if not settings.llm_api_key:
        raise HTTPException(status_code=503, detail="AI provider is not configured. Set LLM_API_KEY.")
    return OpenAIProvider()

async def get_controller(session_id: str) -> SessionController:
    session = await storage.get_session(session_id)
    if not session:
        raise HTTPException(status_code=404, detail="Session not found")
    return session

def snapshot_response(session: SessionController) -> dict:
    data = session.snapshot().model_dump(mode="json")
    if session.pending_action:
        data["pending_action"]["warning"] = warning_text(session.pending_action.name)
    return data

@app.get("/api")
async def root():
    """Health check"""
    return {"message": "Dev-Console Co-Pilot", "version": __version__}

# ---------------------------------------------------------------------------
# Chat sessions
# ---------------------------------------------------------------------------

@app.post("/api/session/start")
async def start_session(
    request: SessionStartRequest,
    provider: CompletionProvider = Depends(get_provider),
    client: SandboxClient = Depends(get_client),
):
    """Create a new session"""
    auto_execute = settings.auto_execute if request.auto_execute is None else request.auto_execute
    session = SessionController(provider, client, auto_execute=auto_execute)
    await storage.save_session(session)
    return snapshot_response(session)

@app.get("/api/session/{session_id}")
async def get_session(session: SessionController = Depends(get_controller)):
    return snapshot_response(session)

@app.delete("/api/session/{session_id}")
async def close_session(session_id: str):
    if not await storage.close_session(session_id):
        raise HTTPException(status_code=404, detail="Session not found")
    return {"closed": True}

@app.post("/api/session/{session_id}/prompt")
async def submit_prompt(request: PromptRequest, session: SessionController = Depends(get_controller)):
    """Run a turn with the prompt, or queue it while the session is busy"""
    if not request.text.strip():
        raise HTTPException(status_code=400, detail="Prompt is empty")
    try:
        queued = await session.submit(request.text)
    except ProviderError as e:
        raise HTTPException(status_code=502, detail=str(e))
    except GateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    if queued:
        return {"queued": True, "position": len(session.queue), "prompt": queued}
    return {"queued": False, "session": snapshot_response(session)}

@app.post("/api/session/{session_id}/confirm")
async def confirm_action(session: SessionController = Depends(get_controller)):
    """Approve and execute the pending action"""
    try:
        await session.confirm()
    except GateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ProviderError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return snapshot_response(session)

@app.post("/api/session/{session_id}/cancel")
async def cancel_action(session: SessionController = Depends(get_controller)):
    """Discard the pending action"""
    try:
        action = await session.cancel()
    except GateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"cancelled": action.name, "session": snapshot_response(session)}

@app.put("/api/session/{session_id}/auto-execute")
async def set_auto_execute(request: AutoExecuteRequest, session: SessionController = Depends(get_controller)):
    await session.set_auto_execute(request.enabled)
    return {"auto_execute": session.auto_execute}

@app.get("/api/session/{session_id}/queue/tail")
async def get_queue_tail(session: SessionController = Depends(get_controller)):
    return {"prompt": session.queue.peek_tail()}

@app.put("/api/session/{session_id}/queue/tail")
async def edit_queue_tail(request: QueueTailRequest, session: SessionController = Depends(get_controller)):
    prompt = session.queue.replace_tail(request.text)
    if prompt is None:
        raise HTTPException(status_code=404, detail="Queue is empty")
    return {"prompt": prompt}

@app.delete("/api/session/{session_id}/queue/tail")
async def remove_queue_tail(session: SessionController = Depends(get_controller)):
    prompt = session.queue.pop_tail()
    if prompt is None:
        raise HTTPException(status_code=404, detail="Queue is empty")
    return {"prompt": prompt}

@app.get("/api/logs")
async def get_logs(session_id: str = Query(...)):
    """Get action logs for a session"""
    logs = await storage.get_logs(session_id)
    return {"logs": logs}

@app.websocket("/api/ws/{session_id}")
async def websocket_endpoint(websocket: WebSocket, session_id: str):
    """WebSocket endpoint for session events"""
    session = await storage.get_session(session_id)
    if session is None:
        await websocket.close(code=4404)
        return
    await websocket.accept()

    async def forward(event: dict):
        try:
            await websocket.send_json(event)
        except (WebSocketDisconnect, RuntimeError):
            session.unsubscribe(forward)

    session.subscribe(forward)
    try:
        while True:
            # Keep connection alive
            await websocket.receive_text()
            await websocket.send_json({"event": "pong", "data": {}})
    except WebSocketDisconnect:
        session.unsubscribe(forward)

# ---------------------------------------------------------------------------
# Connector endpoint (the installation's side)
# ---------------------------------------------------------------------------

def credentials_valid(connector_key: Optional[str], api_key: Optional[str]) -> bool:
    if not settings.connector_key or not settings.api_key:
        return False
    if connector_key is None or api_key is None:
        return False
    return (hmac.compare_digest(settings.connector_key.encode(), connector_key.encode())
            and hmac.compare_digest(settings.api_key.encode(), api_key.encode()))

def _failure(status: int, message: str, code: str) -> JSONResponse:
    body = ActionResponse(success=False, message=message, code=code)
    return JSONResponse(status_code=status, content=body.model_dump(exclude_none=True))

@app.post("/api/execute")
async def execute_action(
    request: Request,
    x_connector_key: Optional[str] = Header(None),
    x_api_key: Optional[str] = Header(None),
    sandbox: ExecutionSandbox = Depends(get_sandbox),
):
    """Run one action against this installation"""
    if not credentials_valid(x_connector_key, x_api_key):
        logger.warning("Rejected connector call with invalid credentials")
        return _failure(403, "Invalid credentials provided in request headers.", "auth_failed")

    try:
        params = await request.json()
    except ValueError:
        return _failure(400, "Request body must be JSON.", "invalid_request")
    action = params.get("action") if isinstance(params, dict) else None
    if not action:
        return _failure(400, "No action specified.", "invalid_request")
    if action not in ACTION_ARGS:
        return _failure(404, "The specified action does not exist.", "invalid_action")
    payload = params.get("payload") or {}
    if not isinstance(payload, dict):
        return _failure(400, "Payload must be an object.", "invalid_request")

    try:
        data = await sandbox.execute(ActionRequest(action=action, payload=payload))
    except ValidationError as e:
        return _failure(400, str(e), "action_failed")
    except ExecutionError as e:
        return _failure(500, str(e), "execution_failed")
    except Exception:
        logger.exception("Unhandled exception in %s", action)
        return _failure(500, "An unexpected error occurred on the server. Check the server logs for more details.", "server_error")

    return ActionResponse(success=True, data=data).model_dump(exclude_none=True)

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.host, port=settings.port)
