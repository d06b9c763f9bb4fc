from __future__ import annotations

import os

import uvicorn

from .api import create_app
from .config import _env_int


def main() -> None:
    uvicorn.run(
        create_app(),
        host=os.getenv("HOST", "127.0.0.1"),
        port=_env_int("PORT", 8000),
    )


if __name__ == "__main__":
    main()
