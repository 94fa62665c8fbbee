"""API v1 router aggregation.

Combines all v1 route modules into a single router.
"""

from __future__ import annotations

from fastapi import APIRouter

from api.v1.routes.graph import router as graph_router
from api.v1.routes.submissions import router as submissions_router

api_v1_router = APIRouter()

api_v1_router.include_router(submissions_router, tags=["Submissions"])
api_v1_router.include_router(graph_router, tags=["Similarity Graph"])
