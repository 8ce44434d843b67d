"""
Configuration Module
=====================
Loads environment variables from .env file for:
- LLM_API_KEY: API key for the OpenAI-compatible chat completions endpoint
- LLM_API_URL / LLM_MODEL: endpoint and model used by the LLM-backed paths
- VERIFIER_BACKEND: "rules" (deterministic) or "llm" product verification
- CHAT_BACKEND: "rules" (keyword answers) or "llm" chatbot replies

The LLM key is optional. Without it the app still starts; the LLM-backed
verifier and chatbot raise ExternalServiceError when they are called.
"""

import os
from dotenv import load_dotenv

load_dotenv()

LLM_API_KEY: str = os.getenv("LLM_API_KEY", "")
LLM_API_URL: str = os.getenv("LLM_API_URL", "https://api.openai.com/v1/chat/completions")
LLM_MODEL: str = os.getenv("LLM_MODEL", "gpt-4o")
LLM_TIMEOUT_SECONDS: float = float(os.getenv("LLM_TIMEOUT_SECONDS", "30"))

VERIFIER_BACKEND: str = os.getenv("VERIFIER_BACKEND", "rules").strip().lower()
CHAT_BACKEND: str = os.getenv("CHAT_BACKEND", "rules").strip().lower()
AUTO_VERIFY_PRODUCTS: bool = os.getenv("AUTO_VERIFY_PRODUCTS", "false").strip().lower() in ("1", "true", "yes")

# Usernames that receive the "admin" role when they register
ADMIN_USERNAMES: set[str] = {u.strip() for u in os.getenv("ADMIN_USERNAMES", "").split(",") if u.strip()}

SESSION_COOKIE_NAME: str = os.getenv("SESSION_COOKIE_NAME", "marketplace_session")
SESSION_TTL_SECONDS: int = int(os.getenv("SESSION_TTL_SECONDS", "86400"))

LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

if VERIFIER_BACKEND not in ("rules", "llm"):
    raise RuntimeError(f"VERIFIER_BACKEND must be 'rules' or 'llm', got {VERIFIER_BACKEND!r}")

if CHAT_BACKEND not in ("rules", "llm"):
    raise RuntimeError(f"CHAT_BACKEND must be 'rules' or 'llm', got {CHAT_BACKEND!r}")
