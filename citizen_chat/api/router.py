from fastapi import APIRouter

from citizen_chat.api.v1.routes import agent, citizen, health, realtime

api_router = APIRouter()
api_router.include_router(health.router, prefix="/v1", tags=["health"])
api_router.include_router(citizen.router, prefix="/v1/citizen", tags=["citizen"])
api_router.include_router(agent.router, prefix="/v1/agent", tags=["agent"])
api_router.include_router(realtime.router, prefix="/v1/realtime", tags=["realtime"])
