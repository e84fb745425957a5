"""FastAPI application entry point for the context retrieval API."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import os
from server.api.routers.ContextRouter import context_router
from server.api.routers.QueryRouter import query_router
from services.context_rag.ContextPipeline import ContextPipeline
from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import setup_logging

logging = setup_logging()
app_version = os.getenv("APP_VERSION", "unknown")

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown."""
    app.state.logging = setup_logging()
    app.state.config = HelperConfig(logger=app.state.logging)

    # Initialise and boot clients, storage and services
    pipeline = ContextPipeline(helper_config=app.state.config)
    await pipeline.start()

    # Wire up services
    app.state.context_service = pipeline.context_service
    app.state.processing_service = pipeline.processing_service
    app.state.resolver = pipeline.resolver

    app.state.logging.info("Context API ready.")
    yield

    # Shutdown
    await pipeline.stop()
    app.state.logging.info("Context API shut down.")


app = FastAPI(
    title="Context RAG",
    description="Scoped context retrieval for the assistant bot.",
    version=app_version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(context_router)
app.include_router(query_router)


# Server Start
if __name__ == "__main__":
    # start server
    import uvicorn
    logging.info(f"Starting Context API Server v{app_version} from root dir: {os.getenv('ROOT_DIR', os.getcwd())} on port 8000...")
    uvicorn.run(app, host="0.0.0.0", port=8000)
