from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware
import logging
import uvicorn

from api.websocket import websocket_endpoint
from api.documents import router as documents_router
from execution import ExecutionEngine
from relay import initialize_relay_manager
from relay import manager as relay_module  # Access relay_manager at runtime
from config import (
    HOST,
    PORT,
    CORS_ORIGINS,
    PYTHON_EXECUTABLE,
    RUN_TIMEOUT_SECONDS,
    MAX_CONCURRENT_RUNS,
    MAX_OUTPUT_BYTES,
    SCRATCH_DIR,
    STREAM_RUN_OUTPUT,
    LOG_LEVEL,
)

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("relay.server")

# Create FastAPI app
app = FastAPI(
    title="Live Code Relay",
    description="Real-time relay and execution backend for collaborative code editing",
    version="1.0.0"
)

# Add CORS middleware for frontend connections
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,  # Defaults to "*"; restrict in production
    allow_credentials="*" not in CORS_ORIGINS,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

# Include document inspection routes
app.include_router(documents_router)


# Startup event
@app.on_event("startup")
async def startup_event():
    """Create the execution engine and relay manager on startup"""
    engine = ExecutionEngine(
        python_executable=PYTHON_EXECUTABLE,
        timeout=RUN_TIMEOUT_SECONDS,
        max_concurrent_runs=MAX_CONCURRENT_RUNS,
        max_output_bytes=MAX_OUTPUT_BYTES,
        scratch_dir=SCRATCH_DIR,
    )
    initialize_relay_manager(engine, stream_run_output=STREAM_RUN_OUTPUT)
    logger.info(
        f"Relay started (python={PYTHON_EXECUTABLE}, timeout={RUN_TIMEOUT_SECONDS:g}s, "
        f"max_runs={MAX_CONCURRENT_RUNS}, origins={CORS_ORIGINS})"
    )


@app.on_event("shutdown")
async def shutdown_event():
    """Stop in-flight runs on server shutdown"""
    if relay_module.relay_manager:
        await relay_module.relay_manager.stop()


# WebSocket endpoint for the editor relay
@app.websocket("/ws")
async def relay_websocket_handler(websocket: WebSocket):
    """WebSocket endpoint for collaborative editing and code execution.

    Clients join document rooms, exchange code_change and cursor_update
    messages, and request runs with run_code.
    """
    await websocket_endpoint(websocket)


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint"""
    engine = relay_module.relay_manager.engine if relay_module.relay_manager else None
    return {
        "status": "healthy",
        "service": "live-code-relay",
        "active_runs": engine.active_count if engine else 0,
        "runs": engine.active_runs() if engine else [],
    }


# Root endpoint with API info
@app.get("/")
async def root():
    """Root endpoint with API information"""
    return {
        "message": "Live Code Relay API",
        "version": "1.0.0",
        "websocket_endpoint": "/ws",
        "events": ["join_document", "leave_document", "code_change", "cursor_update", "run_code"],
        "api_endpoints": {
            "documents": "/api/documents",
            "single_document": "/api/documents/{document_id}",
            "health": "/health"
        },
        "documentation": "/docs"
    }

if __name__ == "__main__":
    # Run the server
    uvicorn.run(
        "main:app",
        host=HOST,
        port=PORT,
        log_level=LOG_LEVEL.lower()
    )
