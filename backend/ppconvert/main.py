"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ppconvert.api.routes import router
from ppconvert.config import CORS_ORIGINS, logger as config_logger
from ppconvert.conversion import ConversionError
from ppconvert.conversion.pipeline import get_pipeline

logging.getLogger("uvicorn").setLevel(logging.INFO)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Same pipeline the routes resolve, overrides included.
    pipeline = app.dependency_overrides.get(get_pipeline, get_pipeline)()
    pipeline.start()
    config_logger.info("Converter API started (uploads=%s, outputs=%s)", pipeline.store.upload_dir, pipeline.store.output_dir)
    yield
    config_logger.info("Converter API shutting down")
    pipeline.shutdown()


app = FastAPI(
    title="PP Image Converter API",
    description="Convert bitmaps to the .pp compressed format and back with a one-time download.",
    version="1.0.0",
    lifespan=lifespan,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS if CORS_ORIGINS else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


async def conversion_error_handler(request: Request, exc: ConversionError):
    """Structured JSON for every typed pipeline failure."""
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


app.add_exception_handler(ConversionError, conversion_error_handler)
app.include_router(router)


if __name__ == "__main__":
    import uvicorn
    from ppconvert.config import HOST, PORT
    uvicorn.run("ppconvert.main:app", host=HOST, port=PORT, reload=True)
