"""Run the CodeTrack API under uvicorn."""

from __future__ import annotations

import logging
import threading
import webbrowser
from pathlib import Path
from typing import Optional

import uvicorn

from .config import Settings
from .paths import get_db_path
from .webapp import create_app

logger = logging.getLogger(__name__)

BROWSER_DELAY_SECONDS = 1.0


def run_dashboard(
    *,
    host: str = "127.0.0.1",
    port: int = 8765,
    db_path: Optional[Path] = None,
    settings: Optional[Settings] = None,
    open_browser: bool = True,
    log_level: str = "info",
) -> None:
    """Serve the API until interrupted; optionally open the interactive docs."""
    resolved_db_path = db_path or get_db_path()
    app = create_app(db_path=resolved_db_path, settings=settings)

    if open_browser:
        docs_url = f"http://{host}:{port}/docs"
        opener = threading.Timer(BROWSER_DELAY_SECONDS, _open_docs, args=(docs_url,))
        opener.daemon = True
        opener.start()

    logger.info("CodeTrack API on http://%s:%s (database %s)", host, port, resolved_db_path)
    uvicorn.run(app, host=host, port=port, log_level=log_level)


def _open_docs(url: str) -> None:
    try:
        webbrowser.open(url)
    except webbrowser.Error:
        logger.exception("Could not open a browser at %s", url)
