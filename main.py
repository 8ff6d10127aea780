# main.py
# ──────────────────────────────────────────────────────────────────────────────
# Funnel chat preview backend:
# - funnel catalogue + preview conversations live in backend/app.py
# - the conversation engine itself is funnelchat/ (no I/O)
# Production notes:
#   • Run with: uvicorn main:app --host :: --port 8080
#   • FUNNELS_PATH points at the JSON funnel catalogue
# ──────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

from backend.app import create_app

# ──────────────────────────────────────────────────────────────────────────────
# Bootstrap & config
# ──────────────────────────────────────────────────────────────────────────────

load_dotenv()

LOG_LEVEL_NAME = (os.getenv("LOG_LEVEL") or "INFO").upper()
LOG_LEVEL = getattr(logging, LOG_LEVEL_NAME, logging.INFO)
logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
logger = logging.getLogger("funnelchat.main")

app = create_app()
logger.info("Funnel chat preview API ready (environment=%s)", app.state.settings.environment)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8080")),
        log_level=LOG_LEVEL_NAME.lower(),
    )
