"""
API router aggregator.
Includes all route modules.
"""
from fastapi import APIRouter
from upload_relay.api import upload

api_router = APIRouter()

# The relay owns every path, so it is mounted without a prefix
api_router.include_router(upload.router, tags=["upload"])
