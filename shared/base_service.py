"""
Base service class for Menu Service applications.
"""

from fastapi import FastAPI, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from typing import Dict, Optional
import time
import os

from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from shared.config import ServiceConfig, get_config
from shared.logging import configure_logging, get_logger, set_request_id, clear_context
from shared.metrics import MetricsCollector, get_metrics_collector
from shared.errors import MenuServiceException, AuthenticationError, StorageError, FetchError, ValidationError


class BaseService:
    """Base service class with common functionality."""

    def __init__(self, service_name: str, port: int, config: Optional[ServiceConfig] = None,
                 metrics: Optional[MetricsCollector] = None):
        self.service_name = service_name
        self.port = port
        self.config = config or get_config(service_name, port)
        self.logger = get_logger(f"{service_name}.service")
        self.metrics = metrics or get_metrics_collector(service_name)
        self._start_time = time.time()

        configure_logging(service_name, self.config.log_level)

        self.app = self._create_app()
        self._setup_middleware()
        self._setup_routes()

    def _create_app(self) -> FastAPI:
        """Create FastAPI application."""
        return FastAPI(
            title=f"{self.service_name.title()} Service",
            description=f"{self.service_name.title()} Service API",
            version="1.0.0",
            docs_url="/docs" if self.config.env == "local" else None,
            redoc_url="/redoc" if self.config.env == "local" else None,
            lifespan=self._lifespan,
        )

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        """Application lifespan manager for startup and shutdown."""
        self.logger.info("Starting service", service=self.service_name, env=self.config.env)
        await self.startup()
        try:
            yield
        finally:
            await self.shutdown()
            self.logger.info("Service stopped", service=self.service_name)

    async def startup(self):
        """Acquire resources. Override in subclasses."""

    async def shutdown(self):
        """Release resources. Override in subclasses."""

    def _setup_middleware(self):
        """Set up middleware."""

        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=self.config.cors_origin_list,
            allow_credentials=False,
            allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
            allow_headers=["*"],
            max_age=86400,
        )

        @self.app.middleware("http")
        async def add_request_context(request: Request, call_next):
            clear_context()
            request_id = set_request_id(request.headers.get("X-Request-ID"))
            request.state.request_id = request_id
            start_time = time.time()

            response = await call_next(request)

            duration = time.time() - start_time
            response.headers["X-Request-ID"] = request_id
            self.metrics.record_http_request(
                method=request.method,
                endpoint=request.url.path,
                status_code=response.status_code,
                duration=duration
            )
            self.logger.info(
                "HTTP request",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(duration * 1000, 2)
            )
            return response

    def _setup_routes(self):
        """Set up common routes."""

        @self.app.get("/health")
        async def health_check():
            """Health check endpoint."""
            dependencies = await self._check_dependencies()
            status = "ok" if all(value == "ok" for value in dependencies.values()) else "error"
            self.metrics.record_health_check(status)

            return JSONResponse(
                status_code=200 if status == "ok" else 503,
                content={
                    "service": self.service_name,
                    "status": status,
                    "uptime_seconds": self._get_uptime(),
                    "dependencies": dependencies,
                    "version": "1.0.0",
                    "commit": os.getenv("GIT_COMMIT", "unknown")
                }
            )

        @self.app.get("/metrics")
        async def metrics_endpoint():
            """Prometheus metrics endpoint."""
            return Response(
                content=generate_latest(self.metrics.registry),
                media_type=CONTENT_TYPE_LATEST
            )

        @self.app.exception_handler(MenuServiceException)
        async def service_exception_handler(request: Request, exc: MenuServiceException):
            """Translate domain errors into status codes."""
            request_id = getattr(request.state, "request_id", None)
            self.metrics.record_error(exc.code)

            if isinstance(exc, (StorageError, FetchError)) or exc.status_code >= 500:
                # Internal detail stays in the log.
                self.logger.error(
                    "Internal error",
                    code=exc.code,
                    message=exc.message,
                    details=exc.details,
                    cause=repr(exc.__cause__) if exc.__cause__ else None
                )
                return JSONResponse(
                    status_code=500,
                    content={
                        "request_id": request_id,
                        "code": "INTERNAL_ERROR",
                        "message": "Internal server error",
                        "details": {}
                    }
                )

            log = self.logger.warning if isinstance(exc, AuthenticationError) else self.logger.info
            log("Request rejected", code=exc.code, message=exc.message, details=exc.details)
            return JSONResponse(
                status_code=exc.status_code,
                content=exc.to_response(request_id).model_dump()
            )

        @self.app.exception_handler(RequestValidationError)
        async def request_validation_handler(request: Request, exc: RequestValidationError):
            """Malformed bodies and path parameters are bad requests."""
            error = ValidationError("Invalid request", {"errors": jsonable_encoder(exc.errors())})
            self.metrics.record_error(error.code)
            self.logger.info("Request rejected", code=error.code, details=error.details)
            return JSONResponse(
                status_code=error.status_code,
                content=error.to_response(getattr(request.state, "request_id", None)).model_dump()
            )

        @self.app.exception_handler(Exception)
        async def general_exception_handler(request: Request, exc: Exception):
            """Handle general exceptions."""
            self.logger.error("Unhandled exception", error=str(exc), exc_info=True)
            self.metrics.record_error("INTERNAL_ERROR")
            return JSONResponse(
                status_code=500,
                content={
                    "request_id": getattr(request.state, "request_id", None),
                    "code": "INTERNAL_ERROR",
                    "message": "Internal server error",
                    "details": {}
                }
            )

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check service dependencies. Override in subclasses."""
        return {}

    def _get_uptime(self) -> float:
        """Get service uptime in seconds."""
        return time.time() - self._start_time

    def run(self):
        """Run the service."""
        import uvicorn
        uvicorn.run(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level.lower()
        )
