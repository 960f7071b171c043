import os

from fastapi import APIRouter

router = APIRouter()


@router.get("/")
async def root():
    return {
        "status": "running",
        "service": "Transition-of-Care Decision Engine",
        "endpoints": {
            "agent": "POST /api/agent/turn",
            "escalations": "GET /api/escalations",
            "breached": "GET /api/escalations/breached",
            "assign": "POST /api/escalations/{task_id}/assign",
            "resolve": "POST /api/escalations/{task_id}/resolve",
        },
    }


@router.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "service": "transitcare",
        "port": os.environ.get("PORT", 8080),
    }
