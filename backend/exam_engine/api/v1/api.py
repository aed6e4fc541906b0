from fastapi import APIRouter

from .endpoints import sessions, attempts, questions, proctoring, results, server_time, health

api_router = APIRouter()

api_router.include_router(sessions.router, prefix="/sessions", tags=["sessions"])
api_router.include_router(attempts.router, prefix="/attempts", tags=["attempts"])
api_router.include_router(questions.router, prefix="/questions", tags=["questions"])
api_router.include_router(proctoring.router, prefix="/proctoring", tags=["proctoring"])
api_router.include_router(results.router, prefix="/results", tags=["results"])
api_router.include_router(server_time.router, prefix="/time", tags=["time"])
api_router.include_router(health.router, prefix="/health", tags=["health"])
