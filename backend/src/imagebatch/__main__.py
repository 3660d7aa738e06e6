"""Run the API server.

Usage:
    python -m imagebatch
"""

import uvicorn

from imagebatch.core.config import Settings


def main() -> int:
    settings = Settings()  # type: ignore[call-arg]
    uvicorn.run(
        "imagebatch.app:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
