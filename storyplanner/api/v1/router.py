from fastapi import APIRouter

from storyplanner.api.v1 import characters, files, generation, session, shots


api_router = APIRouter(prefix="/v1")

api_router.include_router(session.router)
api_router.include_router(files.router)
api_router.include_router(generation.router)
api_router.include_router(shots.router)
api_router.include_router(characters.router)
