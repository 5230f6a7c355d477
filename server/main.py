"""FastAPI WebSocket server for Hanabi tables."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from config import config
from handlers import HANDLERS, ConnectionContext
from logging_config import setup_logging, table_id_var, user_id_var
from routers.health import router as health_router, set_health_dependencies
from routers.tables import router as tables_router, set_game_store, set_table_manager
from table import TableManager

# Configure logging based on environment
setup_logging(
    level=config.LOG_LEVEL,
    environment=config.ENVIRONMENT,
)
logger = logging.getLogger(__name__)

# Replaced in lifespan once the game store is known
table_manager = TableManager()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for async service initialization."""
    global table_manager

    game_store = None
    if config.POSTGRES_URL:
        from services.finalizer import GameFinalizer
        from stores.game_store import get_game_store

        try:
            game_store = await get_game_store(config.POSTGRES_URL)
        except Exception as e:
            logger.error(f"Failed to initialize game store: {e}")
            raise
        table_manager = TableManager(finalizer=GameFinalizer(game_store))
    else:
        logger.warning("POSTGRES_URL not configured - finished games will not be recorded")
        table_manager = TableManager()

    set_health_dependencies(
        db_pool=game_store.pool if game_store else None,
        table_manager=table_manager,
    )
    set_table_manager(table_manager)
    set_game_store(game_store)

    logger.info(f"Hanabi server started (environment={config.ENVIRONMENT})")

    yield

    logger.info("Shutdown initiated...")
    await _close_all_tables()
    await table_manager.wait_for_finalizers()
    if game_store is not None:
        from stores.game_store import close_game_store
        await close_game_store()
    logger.info("Shutdown complete")


async def _close_all_tables():
    """Stop every timer and close all table connections."""
    for table in list(table_manager.tables.values()):
        await table.close()
    table_manager.tables.clear()
    logger.info("All tables closed")


app = FastAPI(
    title="Hanabi Table Server",
    debug=config.DEBUG,
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health_router)
app.include_router(tables_router)


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """
    Attach a connection to a table.

    Query parameters:
        table_id: Table to join.
        user_id: Seated player or spectator identity.
    """
    await websocket.accept()

    table_id = websocket.query_params.get("table_id", "")
    user_id = websocket.query_params.get("user_id", "")
    username = websocket.query_params.get("username") or user_id

    table = table_manager.get_table(table_id)
    if table is None or not user_id:
        await websocket.send_json({"type": "denied", "resp": {"reason": f"Game #{table_id} does not exist."}})
        await websocket.close(code=4004)
        return

    table_id_var.set(table_id)
    user_id_var.set(user_id)

    seated = await table.connect_player(user_id, websocket)
    if not seated and not await table.add_spectator(user_id, username, websocket):
        await websocket.send_json({"type": "denied", "resp": {"reason": "You cannot watch this game."}})
        await websocket.close(code=4003)
        return

    ctx = ConnectionContext(
        websocket=websocket,
        user_id=user_id,
        table_id=table_id,
        current_table=table,
    )

    # Shared dependencies passed to every handler
    handler_deps = dict(table_manager=table_manager)

    try:
        while True:
            data = await websocket.receive_json()
            handler = HANDLERS.get(data.get("type"))
            if handler:
                await handler(data, ctx, **handler_deps)
    except WebSocketDisconnect:
        if seated:
            await table.disconnect_player(user_id)
        else:
            await table.remove_spectator(user_id)


def run():
    """Run the server using uvicorn."""
    import uvicorn

    logger.info(f"Starting Hanabi server on {config.HOST}:{config.PORT}")
    logger.info(f"Debug mode: {config.DEBUG}")

    uvicorn.run(
        "main:app",
        host=config.HOST,
        port=config.PORT,
        reload=config.DEBUG,
        log_level=config.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()
