"""API router aggregation."""
from fastapi import APIRouter

from twinsync.api.v1 import states, telemetry, twins

api_router = APIRouter()

api_router.include_router(twins.router, prefix="/v1/twins", tags=["Twins"])
api_router.include_router(states.router, prefix="/v1/states", tags=["States"])
api_router.include_router(telemetry.router, prefix="/v1/telemetry", tags=["Telemetry"])
