"""Run the CRM AI orchestration API under uvicorn (``python -m crm_ai`` or ``crm-ai``)."""

from __future__ import annotations

import os

import uvicorn

DEFAULT_PORT = 3001


def main() -> None:
    host = os.getenv("UVICORN_HOST", os.getenv("HOST", "127.0.0.1"))
    port = int(os.getenv("UVICORN_PORT", os.getenv("PORT", str(DEFAULT_PORT))))
    # Auto-reload is opt-in; the usage tracker drains on shutdown.
    reload_enabled = os.getenv("UVICORN_RELOAD", "false").lower() in {"1", "true", "yes"}

    uvicorn.run("crm_ai.main:app", host=host, port=port, reload=reload_enabled)


if __name__ == "__main__":  # pragma: no cover
    main()
