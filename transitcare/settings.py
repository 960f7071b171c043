"""
Centralized configuration for the Transition-of-Care decision engine.
All values are read from the environment (optionally via a .env file).
"""

import os
from dotenv import load_dotenv

load_dotenv()

# --- Persistence ---
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./transitcare.db")

# --- Gemini collaborators ---
GOOGLE_API_KEY = os.getenv("GOOGLE_API_KEY", "")
EXTRACTION_MODEL = os.getenv("EXTRACTION_MODEL", "gemini-2.0-flash")
COMPOSER_MODEL = os.getenv("COMPOSER_MODEL", "gemini-2.0-flash")

# Hard upper bound on a single collaborator call (seconds)
EXTRACTION_TIMEOUT_SECONDS = float(os.getenv("EXTRACTION_TIMEOUT_SECONDS", "15"))
COMPOSITION_TIMEOUT_SECONDS = float(os.getenv("COMPOSITION_TIMEOUT_SECONDS", "20"))

# --- Conversation ---
# Number of prior messages handed to the extractor for reference resolution
HISTORY_WINDOW = int(os.getenv("HISTORY_WINDOW", "10"))

# --- Server ---
PORT = int(os.getenv("PORT", "8080"))
