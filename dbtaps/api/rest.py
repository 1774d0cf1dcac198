"""
REST API for the dbtaps Peer

Design Decision: API Framework
==============================

Options Considered:
1. FastAPI - async handlers, dependency injection, multipart via UploadFile
2. aiohttp.web - same client library on both ends, but hand-rolled validation
3. Flask - blocking handlers in front of an async database layer

Decision: FastAPI
- Handlers await the async database layer directly
- UploadFile/Form handling for multipart chunk uploads
- App-wide dependencies check the version header and credentials once

API Design:
- GET  /                                  version check (417 on mismatch)
- POST /sessions                          open a session
- DELETE /sessions/{id}                   close it
- POST /sessions/{id}/push/schema         schema blob in
- GET  /sessions/{id}/pull/schema         schema blob out
- POST /sessions/{id}/push/indexes        index blob in
- GET  /sessions/{id}/pull/indexes        index blob out
- POST /sessions/{id}/push/tables         table inventory in
- GET  /sessions/{id}/pull/tables         table inventory out
- POST /sessions/{id}/push/table          chunk in (412 on checksum mismatch,
                                          422 on an undecodable chunk)
- POST /sessions/{id}/pull/table          chunk out
- POST /sessions/{id}/push/reset_sequences
"""

import json
import logging
import secrets
from contextlib import asynccontextmanager
from typing import Dict, Optional

from fastapi import Depends, FastAPI, File, Form, Header, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse, Response
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from pydantic import BaseModel, Field, ValidationError

from .. import CHECKSUM_HEADER, COMPATIBLE_VERSION, VERSION_HEADER, __version__
from ..config import Config
from ..errors import CursorMismatch, DbTapsError
from ..storage.database import Database
from ..transfer.state import Fatal, Ok, TableInventory, TransferState
from ..utils import is_compatible, safe_url
from .session import ServerSession

logger = logging.getLogger(__name__)

security = HTTPBasic(auto_error=False)


# === Pydantic Models ===

class StateModel(BaseModel):
    """Wire form of a TransferState."""
    table_name: str
    cursor: int = Field(0, ge=0)
    chunk_size: int = Field(1000, ge=1)
    checksum: Optional[str] = None
    error: bool = False

    def to_state(self) -> TransferState:
        return TransferState(
            table_name=self.table_name,
            cursor=self.cursor,
            chunk_size=self.chunk_size,
            checksum=self.checksum,
            error=self.error,
        )


class PullTableRequest(BaseModel):
    """Request for the chunk described by `state`."""
    state: StateModel


class PushTableMeta(BaseModel):
    """JSON part of a chunk upload."""
    state: StateModel
    checksum: str


class InventoryModel(BaseModel):
    """Table name -> row count."""
    tables: Dict[str, int]


class SessionInfo(BaseModel):
    session_id: str
    uri: str


# === API Creation ===

def create_app(config: Config, db: Optional[Database] = None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        config: Server configuration (database URL, credentials)
        db: Database to serve (created from config.database_url if omitted)

    Returns:
        FastAPI application
    """
    database = db or Database(config.database_url)
    sessions: Dict[str, ServerSession] = {}

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Handle startup and shutdown."""
        await database.connect()
        logger.info(f"Serving {safe_url(database.url)}")
        yield
        for session in sessions.values():
            session.close()
        sessions.clear()
        await database.close()
        logger.info("API server stopped")

    # === Dependencies ===

    async def check_version(
        version: Optional[str] = Header(None, alias=VERSION_HEADER),
    ):
        if not is_compatible(version or ''):
            raise HTTPException(
                status_code=417,
                detail=f"dbtaps v{COMPATIBLE_VERSION} is required for this server",
            )

    async def check_credentials(
        credentials: Optional[HTTPBasicCredentials] = Depends(security),
    ):
        if not config.login:
            return
        if credentials is None or not (
            secrets.compare_digest(credentials.username, config.login)
            and secrets.compare_digest(credentials.password, config.password)
        ):
            raise HTTPException(
                status_code=401,
                detail="Bad credentials",
                headers={'WWW-Authenticate': 'Basic'},
            )

    def get_session(session_id: str) -> ServerSession:
        session = sessions.get(session_id)
        if session is None:
            raise HTTPException(status_code=404, detail=f"Unknown session: {session_id}")
        return session

    app = FastAPI(
        title="dbtaps",
        description="Peer server for chunked database replication",
        version=__version__,
        lifespan=lifespan,
        dependencies=[Depends(check_version), Depends(check_credentials)],
    )
    app.state.sessions = sessions
    app.state.db = database

    @app.exception_handler(CursorMismatch)
    async def cursor_mismatch_handler(request: Request, exc: CursorMismatch):
        return JSONResponse(status_code=409, content={'detail': str(exc)})

    @app.exception_handler(DbTapsError)
    async def dbtaps_error_handler(request: Request, exc: DbTapsError):
        logger.error(f"{request.url.path}: {exc}")
        return JSONResponse(status_code=500, content={'detail': str(exc)})

    # === Endpoints ===

    @app.get("/", tags=["General"])
    async def root():
        """Version check; a compatible client gets here."""
        return {"name": "dbtaps", "version": __version__}

    @app.post("/sessions", response_model=SessionInfo, tags=["Sessions"])
    async def open_session():
        await database.connect()
        session = ServerSession(database)
        sessions[session.session_id] = session
        logger.info(f"Session {session.session_id[:8]} opened")
        return SessionInfo(session_id=session.session_id, uri=session.uri)

    @app.delete("/sessions/{session_id}", tags=["Sessions"])
    async def close_session(session_id: str):
        session = sessions.pop(session_id, None)
        if session is None:
            raise HTTPException(status_code=404, detail=f"Unknown session: {session_id}")
        session.close()
        logger.info(f"Session {session_id[:8]} closed")
        return {"success": True, "stats": session.get_stats()}

    # === Schema and indexes ===

    @app.post("/sessions/{session_id}/push/schema", tags=["Schema"])
    async def push_schema(request: Request, session: ServerSession = Depends(get_session)):
        blob = await request.body()
        try:
            tables = await session.push_schema(blob)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=f"Invalid schema blob: {e}")
        return {"success": True, "tables": tables}

    @app.get("/sessions/{session_id}/pull/schema", tags=["Schema"])
    async def pull_schema(session: ServerSession = Depends(get_session)):
        blob = await session.pull_schema()
        return Response(content=blob, media_type='application/json')

    @app.post("/sessions/{session_id}/push/indexes", tags=["Schema"])
    async def push_indexes(request: Request, session: ServerSession = Depends(get_session)):
        blob = await request.body()
        try:
            created = await session.push_indexes(blob)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=f"Invalid index blob: {e}")
        return {"success": True, "indexes": created}

    @app.get("/sessions/{session_id}/pull/indexes", tags=["Schema"])
    async def pull_indexes(session: ServerSession = Depends(get_session)):
        blob = await session.pull_indexes()
        return Response(content=blob, media_type='application/json')

    @app.post("/sessions/{session_id}/push/reset_sequences", tags=["Schema"])
    async def push_reset_sequences(session: ServerSession = Depends(get_session)):
        reset = await session.reset_sequences()
        return {"success": True, "sequences": reset}

    # === Inventory ===

    @app.post("/sessions/{session_id}/push/tables", tags=["Data"])
    async def push_tables(inventory: InventoryModel,
                          session: ServerSession = Depends(get_session)):
        session.push_table_inventory(TableInventory(dict(inventory.tables)))
        return {"success": True}

    @app.get("/sessions/{session_id}/pull/tables", response_model=InventoryModel,
             tags=["Data"])
    async def pull_tables(session: ServerSession = Depends(get_session)):
        inventory = await session.pull_table_inventory()
        return InventoryModel(tables=inventory.counts)

    # === Table data ===

    @app.post("/sessions/{session_id}/push/table", tags=["Data"])
    async def push_table(
        payload: UploadFile = File(...),
        meta: str = Form(..., alias='json'),
        session: ServerSession = Depends(get_session),
    ):
        try:
            parsed = PushTableMeta(**json.loads(meta))
        except (ValueError, ValidationError) as e:
            raise HTTPException(status_code=400, detail=f"Invalid chunk metadata: {e}")

        data = await payload.read()
        state = parsed.state.to_state()
        result = await session.push_table_chunk(state, data, parsed.checksum)

        if isinstance(result, Fatal):
            raise HTTPException(status_code=422, detail=result.reason)
        if not isinstance(result, Ok):
            raise HTTPException(status_code=412, detail=result.reason)
        return {"success": True, "rows": result.row_count}

    @app.post("/sessions/{session_id}/pull/table", tags=["Data"])
    async def pull_table(request: PullTableRequest,
                         session: ServerSession = Depends(get_session)):
        chunk = await session.pull_table_chunk(request.state.to_state())
        return Response(
            content=chunk.payload,
            media_type='application/octet-stream',
            headers={CHECKSUM_HEADER: chunk.checksum},
        )

    return app


async def run_server(config: Config):
    """
    Run the API server.

    Args:
        config: Server configuration (host, port, database, credentials)
    """
    import uvicorn

    app = create_app(config)

    server_config = uvicorn.Config(
        app,
        host=config.host,
        port=config.port,
        log_level=config.log_level.lower(),
    )
    server = uvicorn.Server(server_config)
    await server.serve()
