"""
Elektro Configurator API
FastAPI backend for configuring electrical renovation packages
(Elektrosanierung) into priced line items.
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app.config import CORS_ORIGINS, LOG_FORMAT, LOG_LEVEL
from app.services.logging_config import setup_logging
from app.services.middleware import RequestTimingMiddleware
from app.api.configurator_routes import router as configurator_router

setup_logging(level=LOG_LEVEL, json_output=LOG_FORMAT != "text")
logger = logging.getLogger("elektro-api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        from app.db import init_db
        await init_db()
    except Exception as e:
        logger.warning(f"Table init warning: {e}")
    yield
    from app.db import engine
    await engine.dispose()


app = FastAPI(title="Elektro Configurator API", version="1.0.0", lifespan=lifespan)

app.add_middleware(RequestTimingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(configurator_router)


@app.get("/health")
async def health():
    return {"status": "ok"}
