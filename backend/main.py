from __future__ import annotations

import os

import uvicorn

from backend.app.core.config import load_settings
from backend.app.main import create_app


def run() -> None:
    """Run the journal API with environment-aware port."""

    settings = load_settings()
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(create_app(settings), host="0.0.0.0", port=port)


if __name__ == "__main__":
    run()
