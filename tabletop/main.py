import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from tabletop.config import Settings, get_settings
from tabletop.database import Database
from tabletop.game.channels import EmailChannel, PushChannel
from tabletop.game.errors import TurnError
from tabletop.game.notifications import NotificationDispatcher
from tabletop.game.sweep_loop import SweepLoop
from tabletop.ws.manager import ConnectionManager

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await app.state.db.create_all()
    await app.state.sweep_loop.start()
    yield
    await app.state.sweep_loop.stop()
    await app.state.db.dispose()


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    app = FastAPI(title="Tabletop", version="0.1.0", lifespan=lifespan)

    # Services shared by every request of this app instance
    db = Database(settings.DATABASE_URL)
    live = ConnectionManager()
    dispatcher = NotificationDispatcher(
        live,
        email=EmailChannel(
            settings.EMAIL_API_URL,
            api_key=settings.EMAIL_API_KEY,
            sender=settings.EMAIL_FROM,
            timeout=settings.DELIVERY_TIMEOUT,
        ),
        push=PushChannel(settings.PUSH_GATEWAY_URL, timeout=settings.DELIVERY_TIMEOUT),
    )
    app.state.settings = settings
    app.state.db = db
    app.state.live = live
    app.state.dispatcher = dispatcher
    app.state.sweep_loop = SweepLoop(
        db.session_factory, dispatcher, interval=settings.SWEEP_INTERVAL
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(TurnError)
    async def turn_error_handler(request: Request, exc: TurnError):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(HTTPException)
    async def http_error_handler(request: Request, exc: HTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        log.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    # Routers
    from tabletop.api.auth import router as auth_router
    from tabletop.api.campaigns import router as campaigns_router
    from tabletop.api.notifications import router as notifications_router
    from tabletop.api.turn_order import router as turn_order_router
    from tabletop.api.turns import router as turns_router

    app.include_router(auth_router)
    app.include_router(campaigns_router)
    app.include_router(turn_order_router)
    app.include_router(turns_router)
    app.include_router(notifications_router)

    @app.get("/")
    async def root():
        return {"status": "ok", "service": "tabletop"}

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        from tabletop.ws.handler import websocket_handler
        await websocket_handler(websocket)

    return app


app = create_app()
