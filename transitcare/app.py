"""
Transition-of-Care Decision Engine: Application Factory
"""

import logging
import os
import time

from fastapi import FastAPI

# ── 1. Configure logging ──
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("transitcare-server")

_startup_time = time.time()

# ── 2. Create FastAPI app ──
app = FastAPI(title="Transition-of-Care Decision Engine")

# ── 3. Register routers ──
from transitcare.routers import agent_api, health  # noqa: E402

app.include_router(health.router)
app.include_router(agent_api.router)


# ── 4. Startup event ──
@app.on_event("startup")
async def startup_event():
    port = os.environ.get("PORT", "8080")
    logger.info("=" * 60)
    logger.info("Transition-of-Care Decision Engine starting")
    logger.info("Listening on port: %s", port)
    logger.info("Total init time: %.2fs", time.time() - _startup_time)
    logger.info("=" * 60)
