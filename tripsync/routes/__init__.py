# tripsync/routes/__init__.py
from fastapi import APIRouter
from tripsync.routes.trip import trip_routes, scheduling, nudges


api_router = APIRouter()

# Trip routes
api_router.include_router(trip_routes.router)

# Scheduling funnel
api_router.include_router(scheduling.router)

# Nudges
api_router.include_router(nudges.router)
