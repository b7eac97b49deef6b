"""
Storefront auth service: authorization handshake, session storage, caller resolution.
Port 8000 by default.
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI

from storefront_auth.audit import router as audit_router
from storefront_auth.auth_endpoint import router as auth_router
from storefront_auth.database import init_db
from storefront_auth.services import get_nonce_store, reset_services
from storefront_auth.voice import router as voice_router
from storefront_auth.webhooks import router as webhooks_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables and run the nonce expiry sweep for the app's lifetime."""
    init_db()
    get_nonce_store().start()
    yield
    reset_services()


app = FastAPI(title="Storefront Auth", version="0.1.0", lifespan=lifespan)
app.include_router(auth_router, tags=["auth"])
app.include_router(voice_router)
app.include_router(webhooks_router)
app.include_router(audit_router)


@app.get("/health")
def health():
    """Health check endpoint."""
    return {"status": "ok", "service": "storefront_auth"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "storefront_auth.main:app",
        host="127.0.0.1",
        port=8000,
        reload=True,
    )
