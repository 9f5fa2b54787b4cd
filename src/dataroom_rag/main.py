"""Entrypoint: run the data room chat server."""

import uvicorn

from dataroom_rag.api.app import create_app
from dataroom_rag.config.settings import Settings


def main() -> None:
    settings = Settings()
    app = create_app()
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
