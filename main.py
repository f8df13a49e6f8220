# main.py
import logging

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from billing_route import router
from config import Settings, get_settings
from errors import BridgeError

settings = get_settings()

logging.basicConfig(
  level=settings.log_level,
  format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="PIX Billing Bridge", version="1.0.0")
app.add_middleware(
  CORSMiddleware,
  allow_origins=settings.cors_origins,
  allow_methods=["POST", "OPTIONS"],
  allow_headers=["Content-Type"],
)
app.include_router(router)


@app.exception_handler(BridgeError)
async def bridge_error_handler(request: Request, exc: BridgeError):
  if exc.status_code >= 500:
    logging.getLogger("billing").error("%s %s failed: %s", request.method, request.url.path, exc.message)
  return JSONResponse({"detail": exc.message, **exc.extra}, status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
  return JSONResponse({"detail": "Invalid request body"}, status_code=400)


@app.get("/health")
def health(current: Settings = Depends(get_settings)):
  return {
    "ok": True,
    "stripe_configured": bool(current.stripe_secret),
    "abacatepay_configured": bool(current.abacatepay_key),
    "webhook_secret_configured": bool(current.webhook_secret),
  }
