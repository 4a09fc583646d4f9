from fastapi import APIRouter

from twofactor.api.routes import auth, service

api_router = APIRouter()
api_router.include_router(service.router, tags=["service"])
api_router.include_router(auth.router, tags=["auth"])
