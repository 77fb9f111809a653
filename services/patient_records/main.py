"""Run the Patient Records service with uvicorn."""

from __future__ import annotations

import uvicorn

from shared.config.settings import get_settings


def main() -> None:
    """Serve the application; uvicorn turns SIGINT/SIGTERM into a clean shutdown."""

    settings = get_settings()
    uvicorn.run(
        "services.patient_records.app:app",
        host=settings.server.host,
        port=settings.server.port,
        log_config=None,
    )


if __name__ == "__main__":  # pragma: no cover
    main()
