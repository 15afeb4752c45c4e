from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from leadmap.shared.core.config import settings
from leadmap.shared.core.logging import setup_logging
from leadmap.shared.middleware.correlation import CorrelationIdMiddleware
from leadmap.shared.utils.http_client import shutdown_http_client, http_client_manager
from leadmap.modules.scraping.api import router as scraping_router

setup_logging(settings.LOG_LEVEL)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Release pooled outbound connections (worker dispatch, ZeroBounce)
    await shutdown_http_client()


app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in settings.CORS_ORIGIN.split(",") if origin.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Correlation IDs on every request/log line
app.add_middleware(CorrelationIdMiddleware)

# Scraping sessions, leads and worker webhook
app.include_router(scraping_router, prefix=settings.API_V1_STR)


@app.get("/")
def root():
    return {"message": "LeadMap Scraping API is running"}


@app.get("/health")
def health():
    return {"status": "ok", "http_client": http_client_manager.get_status()}
