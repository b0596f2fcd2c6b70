"""
Run the ParcelFlow API with uvicorn.

Example:
  python -m parcelflow
"""
import os

import uvicorn

from parcelflow.core.config import settings


def main() -> None:
    reload = os.getenv("PARCELFLOW_RELOAD", "false").lower() == "true"
    uvicorn.run(
        "parcelflow.main:app",
        host=os.getenv("PARCELFLOW_HOST", "0.0.0.0"),
        port=settings.app_port,
        reload=reload,
        log_config=None,
    )


if __name__ == "__main__":
    main()
