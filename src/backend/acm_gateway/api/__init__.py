"""API Routes Module."""

from fastapi import APIRouter

from acm_gateway.api import (
    connections,
    codesystems,
    alarm_records,
)

router = APIRouter()

router.include_router(connections.router, prefix="/connections", tags=["Connections"])
router.include_router(codesystems.router, prefix="/codesystems", tags=["Code Systems"])
router.include_router(alarm_records.router, prefix="/alarm-records", tags=["Alarm Records"])
