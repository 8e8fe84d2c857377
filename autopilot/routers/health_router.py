"""Plain health check endpoint."""
from fastapi import APIRouter

router = APIRouter(tags=["health"])


@router.get("/health")
def health() -> dict[str, str]:
    """Health check for the load balancer / container runtime."""
    return {"status": "ok"}
