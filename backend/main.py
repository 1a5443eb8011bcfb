"""
XAuto Relay - FastAPI Application Entry Point

启动命令:
    uvicorn main:app --reload --host 0.0.0.0 --port 8000
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi_pagination import add_pagination

from app.core.config import Settings, get_settings
from app.core.container import ServiceContainer, build_container
from app.core.logging import logger, setup_logging
from app.middleware.access_gate import AccessGateMiddleware
from app.middleware.trace import make_trace_middleware


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    container: ServiceContainer = app.state.container
    logger.info(f"application_startup project={container.settings.PROJECT_NAME}")
    await container.start()

    yield

    await container.close()
    logger.info("application_shutdown")


def create_app(
    settings: Settings | None = None,
    container: ServiceContainer | None = None,
) -> FastAPI:
    """创建 FastAPI 应用"""
    settings = settings or (container.settings if container else get_settings())
    container = container or build_container(settings)

    app = FastAPI(
        title=settings.PROJECT_NAME,
        openapi_url=f"{settings.API_V1_STR}/openapi.json",
        lifespan=lifespan,
    )
    app.state.container = container

    # 全局中间件：最外层为 CORS，其次追踪，最内层访问网关
    app.add_middleware(AccessGateMiddleware, container=container)
    app.middleware("http")(make_trace_middleware(settings.TRACE_ID_HEADER))
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.BACKEND_CORS_ORIGINS,
        allow_credentials=settings.BACKEND_CORS_ALLOW_CREDENTIALS,
        allow_methods=settings.BACKEND_CORS_ALLOW_METHODS,
        allow_headers=settings.BACKEND_CORS_ALLOW_HEADERS,
    )

    if not container.access_rules.current().enabled:
        logger.warning("Access gate is disabled; set ACCESS_GATE_ENABLED=True to enable.")

    # 注册路由
    register_routes(app, settings)
    add_pagination(app)

    return app


def register_routes(app: FastAPI, settings: Settings) -> None:
    """注册所有 API 路由"""
    from app.api.health_route import router as health_router
    from app.api.v1 import access_router, credentials_router, oauth_router

    api_prefix = settings.API_V1_STR

    app.include_router(oauth_router, prefix=api_prefix, tags=["OAuth"])
    app.include_router(credentials_router, prefix=api_prefix, tags=["Credentials"])
    app.include_router(access_router, prefix=api_prefix, tags=["Access"])
    app.include_router(health_router, tags=["Health"])


def _build_default_app() -> FastAPI:
    settings = get_settings()
    setup_logging(settings)
    return create_app(settings)


# 创建应用实例
app = _build_default_app()


def run():
    """脚本入口点"""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
    )


if __name__ == "__main__":
    run()
