"""
Payeezy Gateway API

Payeezy credit card gateway for billing hosts: direct card processing and
offsite (tokenized) card storage behind one JSON API.
Port 8190.

Endpoints:
  /api/health                          -- health check
  /api/v1/status                       -- API status and capabilities
  /api/v1/gateway/settings             -- validate gateway meta data
  /api/v1/gateway/capabilities         -- direct vs offsite card path
  /api/v1/gateway/cc/{operation}       -- process/authorize/capture/void/refund
  /api/v1/gateway/stored/{operation}   -- store/update/remove + stored transactions
  /api/docs                            -- Swagger UI documentation

Run with:
    uvicorn app:app --host 127.0.0.1 --port 8190
"""

import datetime
import logging

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel

import config
from routers import gateway

# --- Logging ---
logging.basicConfig(
  level=logging.INFO,
  format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger("payeezy.api")

# --- FastAPI app ---
app = FastAPI(
  title="Payeezy Gateway API",
  description="Payeezy credit card gateway: direct card processing and "
              "offsite card storage for billing hosts.",
  version=config.API_VERSION,
  docs_url="/api/docs",
  redoc_url="/api/redoc",
  openapi_url="/api/openapi.json",
)

# --- Register routers ---
app.include_router(gateway.router)


# --- Health and status ---

class HealthResponse(BaseModel):
  status: str
  service: str
  version: str
  timestamp: str
  processor_mode: str


@app.get("/api/health", response_model=HealthResponse)
async def health_check():
  """Health check endpoint for monitoring and load balancers."""
  return HealthResponse(
    status="healthy",
    service="payeezy-gateway-api",
    version=config.API_VERSION,
    timestamp=datetime.datetime.now(datetime.timezone.utc).isoformat(),
    processor_mode=config.PAYEEZY_PROCESSOR_MODE,
  )


@app.get("/api/v1/status")
async def api_status():
  """API status and capabilities."""
  return JSONResponse(
    content={
      "ok": True,
      "data": {
        "status": "operational",
        "version": config.API_VERSION,
        "processor_mode": config.PAYEEZY_PROCESSOR_MODE,
        "capabilities": [
          "settings-validation",
          "cc-process",
          "cc-authorize",
          "cc-capture",
          "cc-void",
          "cc-refund",
          "cc-offsite-storage",
        ],
        "endpoints": {
          "health": "/api/health",
          "settings": "/api/v1/gateway/settings",
          "capabilities": "/api/v1/gateway/capabilities",
          "cc": "/api/v1/gateway/cc/{process,authorize,capture,void,refund}",
          "stored": "/api/v1/gateway/stored/{store,update,remove,process,authorize,capture,void,refund}",
          "docs": "/api/docs",
        },
      },
      "error": None,
    }
  )


if __name__ == "__main__":
  import uvicorn
  logger.info("Starting Payeezy Gateway API on %s:%d", config.API_HOST, config.API_PORT)
  uvicorn.run(app, host=config.API_HOST, port=config.API_PORT)
