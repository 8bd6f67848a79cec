"""
Central configuration for the live code relay backend.

All settings loaded from .env file or environment variables.
See .env.example for available options.
"""
import os
import tempfile
from pathlib import Path
from dotenv import load_dotenv

# Load .env file from backend directory
load_dotenv(Path(__file__).parent / ".env")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# Server binding
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "3000"))

# Allowed cross-origin callers, comma separated.
# "*" is only suitable for development.
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "*").split(",")
    if origin.strip()
]

# Interpreter used to execute document snapshots
PYTHON_EXECUTABLE = os.getenv("PYTHON_EXECUTABLE", "python3")

# Per-run wall clock limit in seconds (0 disables the limit)
RUN_TIMEOUT_SECONDS = float(os.getenv("RUN_TIMEOUT_SECONDS", "10"))

# Maximum number of interpreter processes running at once
MAX_CONCURRENT_RUNS = int(os.getenv("MAX_CONCURRENT_RUNS", "4"))

# Per-stream cap on captured stdout/stderr
MAX_OUTPUT_BYTES = int(os.getenv("MAX_OUTPUT_BYTES", str(1024 * 1024)))

# Directory for scratch files handed to the interpreter
SCRATCH_DIR = os.getenv("SCRATCH_DIR") or tempfile.gettempdir()

# Send code_output_chunk messages while a run is in progress
STREAM_RUN_OUTPUT = _env_bool("STREAM_RUN_OUTPUT", False)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
