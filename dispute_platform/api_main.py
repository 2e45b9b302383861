# api_main.py
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from dispute_platform.config import settings
from dispute_platform.disputes.routes import router as disputes_router

settings.configure_logging()
logger = logging.getLogger("Disputes.API")

app = FastAPI(title="Commission Dispute API", version="1.0")

if settings.enable_cors:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.include_router(disputes_router)


@app.get("/health")
async def health() -> dict:
    return {"status": "ok", "storage_dir": settings.storage_dir}


logger.info("Commission Dispute API ready (storage: %s)", settings.storage_dir)


def run() -> None:
    """Serve the API on the configured host and port."""
    import uvicorn

    uvicorn.run(app, host=settings.api_host, port=settings.api_port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    run()
