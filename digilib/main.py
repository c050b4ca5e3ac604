# digilib/main.py
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import uvicorn

from digilib.api import ROUTERS
from digilib.data.database import init_db
from digilib.domain.errors import DownloadError
from digilib.utils.logging import configure_logging, get_logger

logger = get_logger(__name__)


async def download_error_handler(request: Request, exc: DownloadError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} -> {exc.status_code} {exc.code}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} -> {exc.status_code} {exc.code}")

    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.code, "detail": exc.message, **exc.details},
        headers=exc.headers(),
    )


def create_app(create_tables: bool = True) -> FastAPI:
    configure_logging()

    if create_tables:
        logger.info("Initializing database tables")
        init_db()

    app = FastAPI(
        title="Digital Library Download Service",
        version="1.0.0",
    )

    app.add_exception_handler(DownloadError, download_error_handler)

    for router in ROUTERS:
        app.include_router(router)

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
