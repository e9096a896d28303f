import logging

import uvicorn
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from core.catch_error_middleware import ErrorHandlerMiddleware
from core.exception_handler import ValidationErrorHandler
from core.lifespan import lifespan
from core.settings import settings
from routes.payment_routes import router as payment_router
from routes.reminder_routes import router as reminder_router
from routes.webhooks_routes import router as mpesa_webhook_router

logging.basicConfig(level=logging.INFO)

app = FastAPI(
    lifespan=lifespan,
    title=settings.PROJECT_NAME,
    version="1.0.0",
)

app.include_router(mpesa_webhook_router, prefix="/mpesa")
app.include_router(payment_router, prefix="/payments")
app.include_router(reminder_router, prefix="/reminders")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_HOSTS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", tags=["System"])
async def health_check():
    return {"status": "ok"}


app.add_exception_handler(
    RequestValidationError,
    ValidationErrorHandler(),
)

app.add_middleware(ErrorHandlerMiddleware)


if __name__ == "__main__":
    uvicorn.run(app, host="127.0.0.1", port=8001)
