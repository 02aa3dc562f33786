"""Read-only inspection API over the bot's threads, cursor and telemetry."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

import uvicorn

from database import init_db
from deps import get_config
from routes import bot_router, threads_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(
    title="Teobot API",
    description="Inspection API for the Mastodon conversation bot",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(threads_router)
app.include_router(bot_router)


@app.middleware("http")
async def utf8_charset_middleware(request: Request, call_next):
    response = await call_next(request)
    ct = response.headers.get("content-type", "")
    if "application/json" in ct and "charset" not in ct:
        response.headers["content-type"] = ct + "; charset=utf-8"
    return response


@app.get("/")
async def root():
    return {
        "message": "Teobot API - Mastodon conversation bot",
        "version": "1.0.0",
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


if __name__ == "__main__":
    config = get_config()
    uvicorn.run(app, host=config.api_host, port=config.api_port)
