# run_dev.py
"""
Local development launcher for the relay.
Equivalent to: `uvicorn prompt_relay.app:app --reload --host 0.0.0.0 --port 8000`
Set USE_ECHO=1 to stream from the echo client without an API key.
"""

import os

import uvicorn

from prompt_relay.settings import settings

if __name__ == "__main__":
    uvicorn.run(
        "prompt_relay.app:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
