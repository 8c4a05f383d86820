import os
import traceback

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config.settings import get_settings
from errors import CreditServiceError
from routes import checkout_router, credits_router, generations_router, webhook_router

settings = get_settings()

app = FastAPI(
    title="Blacktools Credits API",
    description="Credit ledger and generation reconciliation for the Blacktools AI tools",
    version="1.0.0"
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(CreditServiceError)
async def credit_service_error_handler(request: Request, exc: CreditServiceError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=exc.headers())


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    print(f"❌ Unhandled error on {request.method} {request.url.path}: {exc}")
    traceback.print_exc()
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# Fixed paths before the /{tool}/... family
app.include_router(webhook_router)
app.include_router(checkout_router)
app.include_router(credits_router)
app.include_router(generations_router)


@app.get("/")
def root():
    return {
        "service": "Blacktools Credits API",
        "version": "1.0.0",
        "status": "running",
        "environment": settings.ENVIRONMENT
    }


@app.get("/health")
def health():
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8080))
    uvicorn.run(app, host="0.0.0.0", port=port)
