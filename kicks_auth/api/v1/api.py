"""
V1 API router aggregator — wires all endpoint modules together.
"""

from fastapi import APIRouter

from kicks_auth.api.v1.endpoints import admin, auth, health

api_router = APIRouter()

# Registration, login, verification, reset, session bridge
api_router.include_router(auth.router)

# Staff status and admin-user management
api_router.include_router(admin.router)

# Liveness
api_router.include_router(health.router)
