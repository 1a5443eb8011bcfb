from fastapi import APIRouter, Depends

from app.core.container import ServiceContainer
from app.deps.services import get_container
from app.services.access.gateway import public_endpoint

router = APIRouter(tags=["Health"])


@router.get("/health")
@public_endpoint(reason="负载均衡健康检查")
async def health(container: ServiceContainer = Depends(get_container)) -> dict:
    return {
        "status": "ok",
        "pending_handshakes": await container.handshakes.size(),
        "background_jobs": [job.name for job in container.jobs if job.running],
    }
