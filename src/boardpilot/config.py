"""Configuration loaded from environment variables."""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


# Paths
DATA_DIR: Path = Path(os.getenv("DATA_DIR", "./data"))

# API keys
GEMINI_API_KEY: str = os.getenv("GEMINI_API_KEY", "")

# Models (tiers: simple for small edits, complex for multi-step work)
MODEL_SIMPLE: str = os.getenv("MODEL_SIMPLE", "gemini-2.5-flash-lite")
MODEL_COMPLEX: str = os.getenv("MODEL_COMPLEX", "gemini-2.5-flash")
MODEL_CONTENT: str = os.getenv("MODEL_CONTENT", MODEL_SIMPLE)
MODEL_EXTRACTOR: str = os.getenv("MODEL_EXTRACTOR", MODEL_SIMPLE)

# Server
HOST: str = os.getenv("HOST", "0.0.0.0")
PORT: int = int(os.getenv("PORT", "8000"))
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

# Rate limiting (per user sliding window)
RATE_LIMIT_MAX: int = int(os.getenv("RATE_LIMIT_MAX", "20"))
RATE_LIMIT_WINDOW_S: float = float(os.getenv("RATE_LIMIT_WINDOW_S", "60"))
RATE_LIMIT_SWEEP_S: float = float(os.getenv("RATE_LIMIT_SWEEP_S", "300"))

# Guardrails for the tool-calling loop
MAX_ITERATIONS: int = int(os.getenv("MAX_ITERATIONS", "6"))
MAX_TOOL_CALLS: int = int(os.getenv("MAX_TOOL_CALLS", "50"))
MAX_OBJECTS_CREATED: int = int(os.getenv("MAX_OBJECTS_CREATED", "200"))

# Timeouts (seconds)
MODEL_TIMEOUT_S: float = float(os.getenv("MODEL_TIMEOUT_S", "45"))
PLAN_TIMEOUT_S: float = float(os.getenv("PLAN_TIMEOUT_S", "30"))
CONTENT_TIMEOUT_S: float = float(os.getenv("CONTENT_TIMEOUT_S", "5"))
EXTRACTOR_TIMEOUT_S: float = float(os.getenv("EXTRACTOR_TIMEOUT_S", "5"))

# Derived paths
SQLITE_PATH: Path = DATA_DIR / "boardpilot.db"


def model_for_tier(tier: str) -> str:
    """Return the concrete model name for a route tier ("simple" or "complex")."""
    if tier == "complex":
        return MODEL_COMPLEX
    return MODEL_SIMPLE
