from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging

from telehealth.config.settings import settings
from telehealth.core.errors import register_exception_handlers
from telehealth.core.middleware import verify_token_middleware
from telehealth.db.base import create_all_tables, get_engine, get_session_factory
from telehealth.db.session import set_global_session_factory
from telehealth.services.assistant import AIResponder
from telehealth.services.memory import ConversationMemory
from telehealth.services.relay import MessageRelay

# -------------------------------------------------------------------------------------
# Logging
# -------------------------------------------------------------------------------------
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application start-up & shutdown hooks."""
    # ------------------------------------------------------------------ start‑up -----
    logger.info("Application startup …")

    # --- DATABASE ---
    engine = None
    try:
        logger.info("Initializing Database Engine...")
        engine = await get_engine(str(settings.database_url))
        app.state.engine = engine
        logger.info("DB engine ready and stored in app state.")

        # Create and store session factory in app state AND globally
        session_factory = await get_session_factory(engine)
        app.state.session_factory = session_factory
        set_global_session_factory(session_factory)
        logger.info("DB session factory ready (globally accessible).")

        if settings.create_tables_on_startup:
            await create_all_tables(engine)
            logger.info("Database tables created (create_tables_on_startup).")
    except Exception as e:
        logger.critical(
            f"CRITICAL ERROR DURING STARTUP INITIALIZATIONS: {e}", exc_info=True
        )
        if engine:
            try:
                await engine.dispose()
                logger.info("Disposed engine after startup failure.")
            except Exception as dispose_e:
                logger.error(
                    f"Error disposing engine after startup failure: {dispose_e}"
                )
        raise

    # --- CONVERSATIONAL MEMORY + RELAY + AI ---
    memory = ConversationMemory.from_url(
        settings.redis_url, context_window=settings.context_window_size
    )
    if not await memory.ping():
        logger.warning("Conversation memory backend is not reachable; AI context will be degraded")
    relay = MessageRelay(memory)
    responder = AIResponder(relay, memory)
    relay.responder = responder

    app.state.memory = memory
    app.state.relay = relay
    app.state.responder = responder
    logger.info(f"Message relay ready (memory backend: {memory.backend_name})")

    # ------------------------------------------------ give control back
    yield

    # ------------------------------------------------ shutdown --------
    logger.info("Application shutdown …")

    try:
        await responder.join()
        await relay.close()
    except Exception:
        logger.exception("Error draining in-flight AI replies")

    try:
        await memory.close()
        logger.info("Conversation memory closed")
    except Exception:
        logger.exception("Error closing conversation memory")

    # Dispose DB engine
    if engine:
        try:
            await engine.dispose()
            logger.info("DB engine disposed")
        except Exception:
            logger.exception("Error disposing DB engine")

    logger.info("Shutdown complete")


# -------------------------------------------------------------------------------------
# FastAPI application instance
# -------------------------------------------------------------------------------------
app = FastAPI(title="Telehealth Consultations", lifespan=lifespan)

# CORS -------------------------------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=[str(o) for o in settings.cors_origins],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.middleware("http")(verify_token_middleware)
register_exception_handlers(app)


# ----------------------------------------------------------------- health‑check -----
@app.get("/health")
async def health_check(request: Request):
    memory = getattr(request.app.state, "memory", None)
    responder = getattr(request.app.state, "responder", None)

    return {
        "status": "ok",
        "memory": {
            "backend": memory.backend_name if memory else None,
            "reachable": await memory.ping() if memory else False,
        },
        "ai_replies_in_flight": responder.pending if responder else 0,
    }


# ------------------------------------------------------------------- routes ---------
from telehealth.routes.auth.router import router as auth_router  # noqa: E402  (after app creation)
from telehealth.routes.doctors.router import router as doctors_router  # noqa: E402
from telehealth.routes.consultation.router import router as consultation_router  # noqa: E402
from telehealth.routes.message.router import router as message_router  # noqa: E402
from telehealth.routes.realtime.router import router as realtime_router  # noqa: E402

app.include_router(auth_router)
app.include_router(doctors_router)
app.include_router(consultation_router)
app.include_router(message_router)
app.include_router(realtime_router)
