from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.middleware import SlowAPIMiddleware

from lendsafe.api.v1 import api_router
from lendsafe.core.errors import register_exception_handlers
from lendsafe.core.limiter import limiter
from lendsafe.core.logging import configure_logging
from lendsafe.core.response_envelope import register_response_envelope
from lendsafe.core.settings import settings
from lendsafe.events import register_event_handlers
from lendsafe.middlewares.request_context import RequestContextMiddleware
from lendsafe.middlewares.security_headers import SecurityHeadersMiddleware


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="Lendsafe Access Service", version="0.1.0")
    register_exception_handlers(app)
    register_response_envelope(app)
    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(SecurityHeadersMiddleware, enable_hsts=settings.enable_hsts)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(api_router, prefix="/api/v1")
    register_event_handlers(app)
    return app


app = create_app()
