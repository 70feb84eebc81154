"""Aggregate all v1 API routers."""

from fastapi import APIRouter
from texttune.api.v1.auth import router as auth_router
from texttune.api.v1.generations import router as generations_router
from texttune.api.v1.library import router as library_router

v1_router = APIRouter(prefix="/v1")
v1_router.include_router(auth_router, tags=["auth"])
v1_router.include_router(generations_router, tags=["generations"])
v1_router.include_router(library_router, tags=["library"])
