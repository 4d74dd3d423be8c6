from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from qari.api.v1.accounts.router import router as accounts_router
from qari.api.v1.approvals.router import router as join_requests_router
from qari.api.v1.auth.router import router as auth_router
from qari.api.v1.live.router import router as live_router
from qari.api.v1.messages.router import router as messages_router
from qari.api.v1.records.router import router as records_router
from qari.api.v1.students.router import router as students_router
from qari.core.change_feed import ChangeFeed
from qari.core.config import settings
from qari.core.logging import configure_logging
from qari.db.schema_check import ensure_tables
from qari.db.session import engine, make_session_factory


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.create_tables_on_startup:
        await ensure_tables(engine)
    yield


def create_app() -> FastAPI:
    configure_logging(settings.log_level)
    app = FastAPI(title="Qari Backend", lifespan=lifespan)

    # CORS: allow the mobile/web clients to call this API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Committed writes fan out to live views through the change feed
    app.state.change_feed = ChangeFeed()
    app.state.session_factory = make_session_factory(engine, app.state.change_feed)

    # Routers
    app.include_router(auth_router)
    app.include_router(join_requests_router)
    app.include_router(accounts_router)
    app.include_router(students_router)
    app.include_router(records_router)
    app.include_router(messages_router)
    app.include_router(live_router)

    return app


app = create_app()
