from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from .config import settings
from .db import init_models
from .logger import configure_logging
from .routers import knowledge_base

@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    await init_models()
    yield

app = FastAPI(title="chatkb", version="0.1.0", lifespan=lifespan)
app.add_middleware(CORSMiddleware,
    allow_origins=[o.strip() for o in settings.ALLOWED_ORIGINS.split(",")],
    allow_credentials=True, allow_methods=["*"], allow_headers=["*"])

@app.get("/health")
async def health(): return {"status": "ok"}

app.include_router(knowledge_base.router, prefix="/v1")
