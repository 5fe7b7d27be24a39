"""FastAPI application exposing MPRIS players to a menu front-end."""

import asyncio
import json
import logging
from contextlib import asynccontextmanager

from fastapi import Body, FastAPI, HTTPException, Request
from sse_starlette.sse import EventSourceResponse

from .config import get_settings
from .mpris.errors import (
    BusError,
    OperationNotImplementedError,
    PlayerNotFoundError,
    UnsupportedOperationError,
)
from .services.registry import COMMANDS, PlayerEvent, registry

# Configure logging
settings = get_settings()
logging.basicConfig(
    level=logging.DEBUG if settings.server.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # dbus-python is only needed when actually talking to a bus
    from .services.dbus_connection import connect_bus

    current_settings = get_settings()
    logger.info("Starting MPRIS menu...")
    logger.info(f"Server: http://{current_settings.server.host}:{current_settings.server.port}")
    connection = connect_bus(current_settings.bus.type)
    await registry.start(connection)
    yield
    logger.info("Shutting down...")
    await registry.stop()
    connection.close()


app = FastAPI(
    title="MPRIS Menu",
    description="List and control MPRIS media players",
    version="0.1.0",
    lifespan=lifespan,
)


def _get_player(name: str):
    try:
        return registry.get(name)
    except PlayerNotFoundError:
        raise HTTPException(status_code=404, detail=f"Unknown player: {name}")


@app.get("/api/players")
async def get_players():
    """List every live player."""
    return {"players": [player.to_dict() for player in registry.players()]}


@app.get("/api/players/{name}")
async def get_player(name: str):
    """Get one player's state."""
    return _get_player(name).to_dict()


@app.post("/api/players/{name}/{command}")
async def run_command(name: str, command: str, payload: dict | None = Body(default=None)):
    """Run a control command (play, pause, next, seek, ...) against a player."""
    if command not in COMMANDS:
        raise HTTPException(status_code=400, detail=f"Unknown command: {command}")

    args = ()
    if command == "seek":
        offset = (payload or {}).get("offset")
        if not isinstance(offset, int) or isinstance(offset, bool):
            raise HTTPException(status_code=400, detail="seek needs an integer 'offset' in seconds")
        args = (offset,)

    try:
        await registry.execute(name, command, *args)
    except PlayerNotFoundError:
        raise HTTPException(status_code=404, detail=f"Unknown player: {name}")
    except UnsupportedOperationError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except OperationNotImplementedError as e:
        raise HTTPException(status_code=501, detail=str(e))
    except BusError as e:
        logger.warning(f"Command {command} failed on {name}: {e}")
        raise HTTPException(status_code=502, detail=str(e))

    return {"ok": True}


@app.get("/api/stream")
async def stream(request: Request):
    """SSE endpoint for real-time player updates."""

    async def event_generator():
        queue: asyncio.Queue = asyncio.Queue()

        async def on_event(event: PlayerEvent):
            await queue.put(event)

        # Subscribe to player events
        registry.subscribe(on_event)

        try:
            # Send initial state
            yield {
                "event": "players",
                "data": json.dumps({"players": [p.to_dict() for p in registry.players()]}),
            }

            while True:
                # Check for disconnect
                if await request.is_disconnected():
                    break

                try:
                    # Wait for updates with timeout
                    event = await asyncio.wait_for(queue.get(), timeout=30.0)
                    yield {"event": "update", "data": json.dumps(event.to_dict())}
                except asyncio.TimeoutError:
                    # Send keepalive
                    yield {"event": "ping", "data": ""}
        finally:
            registry.unsubscribe(on_event)

    return EventSourceResponse(event_generator())


def run():
    """Run the application with uvicorn."""
    import argparse

    import uvicorn

    from .config import BUS_TYPES, Settings, set_settings

    parser = argparse.ArgumentParser(description="MPRIS Menu")
    parser.add_argument(
        "--bus",
        choices=BUS_TYPES,
        help="Message bus to watch (overrides config.toml)",
    )
    parser.add_argument(
        "--port",
        type=int,
        help="Port to run on (overrides config.toml)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    args = parser.parse_args()

    # Load settings and apply CLI overrides
    settings = Settings.load()
    if args.bus:
        settings.bus.type = args.bus
    if args.port:
        settings.server.port = args.port
    if args.debug:
        settings.server.debug = True
        logging.getLogger().setLevel(logging.DEBUG)

    # Store settings so they're available to the app
    set_settings(settings)

    uvicorn.run(
        app,
        host=settings.server.host,
        port=settings.server.port,
        log_level="debug" if settings.server.debug else "info",
    )


if __name__ == "__main__":
    run()
