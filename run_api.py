"""Startup script for the FastAPI backend.

This script starts the FastAPI server with configuration from environment variables.
"""

import os
import uvicorn
from dotenv import load_dotenv
from loguru import logger

from api.security import get_tls_config

# Load environment variables
load_dotenv()

if __name__ == "__main__":
    # Get configuration from environment
    host = os.getenv("API_HOST", "0.0.0.0")
    port = int(os.getenv("API_PORT", "8000"))
    reload = os.getenv("API_RELOAD", "true").lower() == "true"
    log_level = os.getenv("LOG_LEVEL", "info").lower()
    tls_config = get_tls_config() or {}

    logger.info(f"Starting AI Contract Generation API on {host}:{port}")
    logger.info(f"CORS origins: {os.getenv('CORS_ORIGINS', 'http://localhost:3000')}")
    logger.info(f"Database: {os.getenv('DATABASE_URL', 'sqlite:///./contract_drafting.db')}")
    logger.info(f"Authentication: {'enabled' if os.getenv('AUTH_TOKEN_SECRET') else 'disabled'}")

    # Start server
    uvicorn.run(
        "api.main:app",
        host=host,
        port=port,
        reload=reload,
        log_level=log_level,
        ssl_certfile=tls_config.get("certfile"),
        ssl_keyfile=tls_config.get("keyfile")
    )
