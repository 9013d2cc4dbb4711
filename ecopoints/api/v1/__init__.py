"""
API v1 router initialization and setup.
"""
from fastapi import APIRouter
from .endpoints import users, wallets, collection_points, submissions, cashouts, webhooks

api_router = APIRouter()

api_router.include_router(
    users.router,
    prefix="/users",
    tags=["users"]
)

api_router.include_router(
    wallets.router,
    prefix="/wallets",
    tags=["wallets"]
)

api_router.include_router(
    collection_points.router,
    prefix="/collection-points",
    tags=["collection-points"]
)

api_router.include_router(
    submissions.router,
    prefix="/submissions",
    tags=["submissions"]
)

api_router.include_router(
    cashouts.router,
    prefix="/cashouts",
    tags=["cashouts"]
)

api_router.include_router(
    webhooks.router,
    prefix="/webhooks",
    tags=["webhooks"]
)
