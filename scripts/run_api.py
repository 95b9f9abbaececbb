from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import uvicorn

from packages.config import API_HOST, API_PORT, RUN_MODE


def main():
    uvicorn.run(
        "apps.api.main:app",
        host=API_HOST,
        port=API_PORT,
        reload=RUN_MODE != "prod",
        app_dir=str(ROOT),
    )


if __name__ == "__main__":
    main()
