import logging
import time
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Body, Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from prometheus_client import Counter, Histogram, make_asgi_app

from applications import ApplicationService
from errors import AlreadyExistsError, AppError, NotFoundError, ParseError, UpstreamError, ValidationError
from settings import get_settings, setup_logging

# Define Prometheus metrics
REQUEST_COUNT = Counter("app_request_count", "Total number of requests")
REQUEST_ERROR_COUNT = Counter("app_request_error_count", "Total number of failed requests")
REQUEST_LATENCY = Histogram("app_request_latency_seconds", "Request latency in seconds",
                            buckets=[0.1, 0.5, 1, 2, 5, 10, float("inf")])
UPSTREAM_ERROR_COUNT = Counter("app_upstream_error_count", "Total number of cluster API or git remote failures")

ERROR_STATUS = {
    ValidationError: 422,
    NotFoundError: 404,
    AlreadyExistsError: 409,
    UpstreamError: 502,
    ParseError: 500,
}


def get_service(request: Request) -> ApplicationService:
    return request.app.state.service


def create_app(service: Optional[ApplicationService] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if service is None:
            settings = get_settings()
            setup_logging(settings.log_level)
            app.state.service = ApplicationService.from_settings(settings)
        else:
            app.state.service = service
        yield

    app = FastAPI(lifespan=lifespan)
    app.mount("/metrics", make_asgi_app())

    @app.middleware("http")
    async def add_metrics(request: Request, call_next):
        # Count the number of requests
        REQUEST_COUNT.inc()

        # Measure the latency of each request
        start_time = time.time()
        response = await call_next(request)
        latency = time.time() - start_time
        REQUEST_LATENCY.observe(latency)

        # Log errors if request fails
        if response.status_code >= 400:
            REQUEST_ERROR_COUNT.inc()

        return response

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        status_code = next((code for kind, code in ERROR_STATUS.items() if isinstance(exc, kind)), 500)
        if isinstance(exc, UpstreamError):
            UPSTREAM_ERROR_COUNT.inc()
        if isinstance(exc, ValidationError):
            return JSONResponse(
                status_code=status_code,
                content={"detail": "Invalid app config", "issues": [issue.to_dict() for issue in exc.issues]},
            )
        logging.info(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    @app.get("/api/apps")
    async def list_apps(service: ApplicationService = Depends(get_service)):
        apps = await service.get_apps()
        return [view.model_dump(exclude_none=True) for view in apps]

    @app.get("/api/apps/{app_name}")
    async def get(app_name: str, service: ApplicationService = Depends(get_service)):
        view = await service.get_app(app_name)
        return view.model_dump(exclude_none=True)

    @app.post("/api/apps", status_code=201)
    async def create(body: Dict[str, Any] = Body(...), service: ApplicationService = Depends(get_service)):
        spec = await service.create_app(body)
        return {"success": True, "message": f"App {spec.name} successfully created!"}

    @app.put("/api/apps/{app_name}")
    async def update(app_name: str, body: Dict[str, Any] = Body(...),
                     service: ApplicationService = Depends(get_service)):
        if body.get("name") != app_name:
            raise HTTPException(status_code=400, detail="App name cannot be changed")
        spec = await service.update_app(body)
        return {"success": True, "message": f"App {spec.name} successfully updated!"}

    @app.post("/api/apps/{app_name}/restart")
    async def restart(app_name: str, service: ApplicationService = Depends(get_service)):
        await service.restart_app(app_name)
        return {"success": True}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(app, host=settings.host, port=settings.port)
