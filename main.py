"""
Main application file for the finances import service.
All routes consolidated here - no separate router files.

Authentication happens upstream; the authorizer forwards the owner id in
the X-User-Id header.
"""

import asyncio
import logging
import threading
from fastapi import FastAPI, Request, UploadFile, File, Form
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
import business_logic
import import_logic
import database_manager as db

# Setup logging
logger = logging.getLogger(__name__)

OWNER_HEADER = "X-User-Id"
DISCONNECT_POLL_INTERVAL = 0.5  # seconds

# Initialize app
app = FastAPI(title="Finances import")


@app.on_event("startup")
def startup_event():
    """Initialize application on startup."""
    logger.info("Starting finances import service...")
    business_logic.initialize_database()
    if business_logic.DATABASE_CONFIGURED:
        logger.info("Database initialized successfully")
    else:
        logger.warning("Database not configured - create finances_db_config.json")
    logger.info("Finances import service started")


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": message}
    )


def _get_owner_id(request: Request):
    owner_id = request.headers.get(OWNER_HEADER)
    if owner_id is None or not owner_id.strip():
        return None
    return owner_id.strip()


# ==================== HEALTH CHECK ====================

@app.get("/health")
async def health_check():
    """
    Health check endpoint for Docker and monitoring.

    Tests actual database connectivity by executing a simple query.
    Returns 200 if healthy, 503 if database is unreachable.
    """
    try:
        if not business_logic.DATABASE_CONFIGURED:
            return JSONResponse(
                status_code=503,
                content={
                    "status": "unhealthy",
                    "reason": "Database not configured"
                }
            )

        if db.check_connection():
            return {
                "status": "healthy",
                "database": "connected"
            }
        else:
            return JSONResponse(
                status_code=503,
                content={
                    "status": "unhealthy",
                    "reason": "Database connection lost"
                }
            )
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return JSONResponse(
            status_code=503,
            content={
                "status": "unhealthy",
                "reason": "Health check error"
            }
        )


# ==================== OWNER DATA ====================

@app.get("/api/data/summary")
async def get_data_summary(request: Request):
    """
    Row counts of the owner's stored data (categories, months, expenses, incomes,
    recurring expenses). Used by the import page to show what will be replaced.
    """
    if not business_logic.DATABASE_CONFIGURED:
        return _error(503, "Database not configured")

    owner_id = _get_owner_id(request)
    if owner_id is None:
        return _error(401, f"Missing {OWNER_HEADER} header")

    try:
        data = await run_in_threadpool(business_logic.get_owner_data_summary, owner_id)
        return {"success": True, "data": data}
    except ValueError as e:
        return _error(400, str(e))
    except Exception as e:
        logger.error(f"Error getting data summary for user {owner_id}: {e}", exc_info=True)
        return _error(500, "Failed to load data summary")


# ==================== IMPORT API ====================

@app.get("/api/import/formats")
async def get_import_formats():
    """List spreadsheet formats accepted by /api/import/parse."""
    return {"success": True, "data": [f.value for f in import_logic.ImportFormat]}


@app.post("/api/import/parse")
async def parse_import_file(file: UploadFile = File(...), format_name: str = Form(..., alias="format")):
    """
    Parse uploaded Excel file into an import document.

    Nothing is written to the database. Returns the document, a summary
    for the confirmation dialog and a list of non-fatal warnings.
    """
    try:
        # Validate file extension
        if not file.filename or not file.filename.lower().endswith('.xlsx'):
            raise ValueError("Only .xlsx files supported")

        content = await file.read()
        result = await run_in_threadpool(import_logic.parse_excel_file, content, format_name)
        return {"success": True, "data": result}
    except ValueError as e:
        return _error(400, str(e))
    except Exception as e:
        logger.error(f"Error parsing import file: {e}", exc_info=True)
        return _error(500, "Failed to parse import file")


@app.post("/api/import/execute")
async def execute_import(request: Request):
    """
    Replace ALL of the owner's data with the import document.

    Request body:
    {
        "document": {"categories": [...], "months": [...]},
        "confirm": true
    }

    If the client disconnects before the import commits, the transaction
    is rolled back.
    """
    if not business_logic.DATABASE_CONFIGURED:
        return _error(503, "Database not configured")

    owner_id = _get_owner_id(request)
    if owner_id is None:
        return _error(401, f"Missing {OWNER_HEADER} header")

    try:
        data = await request.json()

        if not isinstance(data, dict) or "document" not in data:
            logger.error("Missing 'document' in import request")
            return _error(400, "Missing required field: document")
        if data.get("confirm") is not True:
            return _error(400, "Import replaces all existing data - set confirm to true to proceed")

        logger.info(f"Import execute request received for user {owner_id}")

        cancelled = threading.Event()
        task = asyncio.ensure_future(run_in_threadpool(
            import_logic.execute_import, owner_id, data["document"], cancelled.is_set
        ))
        while not task.done():
            if not cancelled.is_set() and await request.is_disconnected():
                logger.warning(f"Client disconnected during import for user {owner_id} - cancelling")
                cancelled.set()
            await asyncio.wait({task}, timeout=DISCONNECT_POLL_INTERVAL)

        result = task.result()
        return JSONResponse(
            status_code=201,
            content={"success": True, "data": jsonable_encoder(result)}
        )
    except ValueError as e:
        logger.error(f"ValueError in import execution: {e}")
        return _error(400, str(e))
    except import_logic.ImportInProgressError as e:
        logger.warning(f"Rejected concurrent import: {e}")
        return _error(409, "An import is already running for this account")
    except import_logic.ImportCancelledError:
        return _error(499, "Import cancelled - no changes were made")
    except Exception as e:
        logger.error(f"Error executing import for user {owner_id}: {e}", exc_info=True)
        return _error(500, "Import failed - no changes were made")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8009,
        log_config="uvicorn_log_config.ini"
    )
