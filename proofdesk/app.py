# proofdesk/app.py
import asyncio
import os
import time

# Load .env BEFORE any proofdesk imports (they read env vars at import time)
from dotenv import load_dotenv
load_dotenv(override=True)

from fastapi import FastAPI, File, Form, Request, UploadFile, WebSocket, WebSocketDisconnect
from fastapi.responses import FileResponse, JSONResponse, PlainTextResponse, RedirectResponse, Response
from fastapi.templating import Jinja2Templates
from starlette.middleware.sessions import SessionMiddleware

from proofdesk import monitoring
from proofdesk import auth as authmod
from proofdesk import db as dbmod
from proofdesk.broadcaster import Broadcaster, RECORD_EVENTS
from proofdesk.errors import E_INTERNAL, E_NOT_FOUND, E_UNAUTHORIZED, ProofdeskError
from proofdesk.intake import SubmissionIntake
from proofdesk.review import ReviewWorkflow, CHANNEL_PREMIUM_ID, CHANNEL_LIFETIME_ID
from proofdesk.storage import StorageError, storage_from_env
from proofdesk.store import store_from_env
from proofdesk.telegram_client import TelegramBotClient, BOT_TOKEN

app = FastAPI(title="Payment Proof Review Dashboard")

# Initialize audit tables on startup
dbmod.init_db()

if not BOT_TOKEN or not CHANNEL_PREMIUM_ID or not CHANNEL_LIFETIME_ID:
    monitoring.logger.error("BOT_TOKEN or channel ids are not set; review actions will fail")

# instantiate services once
storage = storage_from_env()
store = store_from_env(storage)
broadcaster = Broadcaster()
bot = TelegramBotClient()
intake = SubmissionIntake(store, storage, broadcaster)
workflow = ReviewWorkflow(store, bot, broadcaster)

TEMPLATES_DIR = os.path.join(os.path.dirname(__file__), "..", "templates")
templates = Jinja2Templates(directory=TEMPLATES_DIR)

# Review endpoints behind the admin session; /api/bukti is the public intake.
PUBLIC_API_PATHS = ("/api/bukti",)

# proof uploads rendered in the browser; every other extension is sent as an attachment
INLINE_UPLOAD_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".pdf": "application/pdf",
}


def _error_response(e: ProofdeskError) -> JSONResponse:
    return JSONResponse(status_code=e.http_status, content=e.to_dict())


def _internal_error(e: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "status": "error",
            "error_code": E_INTERNAL,
            "message": "Internal server error",
            "details": {"exception": str(e)},
        },
    )


# ---------------------------------------------------------------------------
# Admin session guard for /api/* review paths
# ---------------------------------------------------------------------------
@app.middleware("http")
async def admin_session_middleware(request: Request, call_next):
    path = request.url.path
    if not path.startswith("/api/") or path in PUBLIC_API_PATHS:
        return await call_next(request)

    if not authmod.is_logged_in(request.session):
        return JSONResponse(
            status_code=401,
            content={
                "success": False,
                "status": "error",
                "error_code": E_UNAUTHORIZED,
                "message": "Admin login required",
            },
        )
    return await call_next(request)


# ---------------------------------------------------------------------------
# Metrics middleware
# ---------------------------------------------------------------------------
@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    start = time.time()
    method = request.method
    status = "500"
    try:
        response = await call_next(request)
        status = str(response.status_code)
        return response
    except Exception:
        monitoring.logger.exception("Unhandled exception in request", extra={"path": request.url.path})
        raise
    finally:
        route = request.scope.get("route")
        endpoint = getattr(route, "path", None) or request.url.path
        monitoring.observe_request(start, endpoint, method, status)


# Session cookie must be decoded before the guard above runs, so it goes outermost.
app.add_middleware(SessionMiddleware, secret_key=authmod.SESSION_SECRET, same_site="lax")


# ---------------------------------------------------------------------------
# Login / logout
# ---------------------------------------------------------------------------
@app.get("/login")
async def login_get(request: Request):
    return templates.TemplateResponse(request, "login.html", {"error": None})


@app.post("/login")
async def login_post(request: Request, username: str = Form(""), password: str = Form("")):
    client_ip = request.client.host if request.client else "unknown"
    allowed, _ = authmod.check_login_rate_limit(client_ip)
    if not allowed:
        monitoring.logger.warning("Login rate limit exceeded", extra={"client_ip": client_ip})
        resp = templates.TemplateResponse(
            request, "login.html", {"error": "Too many login attempts. Try again in a minute."},
            status_code=429,
        )
        resp.headers["Retry-After"] = "60"
        return resp

    if authmod.check_credentials(username, password):
        request.session[authmod.SESSION_KEY] = True
        monitoring.logger.info("Admin logged in", extra={"client_ip": client_ip})
        return RedirectResponse("/", status_code=303)

    monitoring.logger.warning("Failed admin login", extra={"client_ip": client_ip})
    return templates.TemplateResponse(
        request, "login.html", {"error": "Wrong username or password"}, status_code=401,
    )


@app.get("/logout")
async def logout(request: Request):
    request.session.clear()
    return RedirectResponse("/login", status_code=303)


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------
@app.get("/")
def dashboard(request: Request):
    if not authmod.is_logged_in(request.session):
        return RedirectResponse("/login", status_code=303)
    records = store.load_all()
    return templates.TemplateResponse(request, "dashboard.html", {"transactions": records})


@app.get("/api/transactions")
def list_transactions():
    return {"success": True, "transactions": [r.model_dump(mode="json") for r in store.load_all()]}


@app.get("/api/history/{record_id}")
def get_history(record_id: str):
    """Audit events for a record, including ones already approved or rejected."""
    events = dbmod.get_review_events(record_id)
    return {"success": True, "id": record_id, "events": events}


# ---------------------------------------------------------------------------
# Intake
# ---------------------------------------------------------------------------
@app.post("/api/bukti")
async def submit_proof(
    userId: str = Form(None),
    username: str = Form(None),
    paket: str = Form(None),
    bukti: UploadFile = File(None),
):
    """
    POST /api/bukti (multipart)
    Fields: userId, username, paket, bukti (file)
    """
    try:
        content = await bukti.read() if bukti is not None else None
        filename = bukti.filename if bukti is not None else None
        record = intake.submit(userId, username, paket, filename, content)
        return {"success": True, "record": record.model_dump(mode="json")}
    except ProofdeskError as e:
        monitoring.logger.info("Rejected submission", extra={"error_code": e.error_code, "details": e.details})
        return _error_response(e)
    except Exception as e:
        monitoring.logger.exception("Unexpected error in /api/bukti handler")
        return _internal_error(e)


@app.get("/uploads/{filename}")
def get_upload(filename: str):
    """Proof files. Only image and PDF types render inline, anything else is a download."""
    try:
        path = storage.file_path(filename)
    except StorageError:
        return JSONResponse(
            status_code=404,
            content={"success": False, "status": "error", "error_code": E_NOT_FOUND, "message": "File not found"},
        )
    headers = {"X-Content-Type-Options": "nosniff"}
    media_type = INLINE_UPLOAD_TYPES.get(path.suffix.lower())
    if media_type is None:
        return FileResponse(path, media_type="application/octet-stream", filename=path.name,
                            headers=headers)
    return FileResponse(path, media_type=media_type, headers=headers)


# ---------------------------------------------------------------------------
# Review actions
# ---------------------------------------------------------------------------
def _run_review(action: str, fn, record_id: str):
    monitoring.logger.info("Received review action", extra={"action": action, "record_id": record_id})
    try:
        result = fn(record_id)
        return JSONResponse(status_code=200, content={"success": True, **result})
    except ProofdeskError as e:
        monitoring.logger.warning("Review action failed",
                                  extra={"action": action, "record_id": record_id, "error_code": e.error_code})
        return _error_response(e)
    except Exception as e:
        monitoring.logger.exception("Unexpected error in review action", extra={"action": action})
        return _internal_error(e)


@app.post("/api/approve/{record_id}")
def approve(record_id: str):
    return _run_review("approve", workflow.approve, record_id)


@app.post("/api/tolak/{record_id}")
def reject(record_id: str):
    return _run_review("reject", workflow.reject, record_id)


@app.post("/api/contact-customer/{record_id}")
def contact_customer(record_id: str):
    return _run_review("contact", workflow.contact, record_id)


# ---------------------------------------------------------------------------
# Live updates
# ---------------------------------------------------------------------------
@app.websocket("/ws/records")
async def records_feed(websocket: WebSocket):
    # subscribe before accept so nothing published after the handshake is missed
    sub = broadcaster.subscribe(RECORD_EVENTS, loop=asyncio.get_running_loop())
    await websocket.accept()
    monitoring.viewer_connected()
    monitoring.logger.info("Dashboard viewer connected", extra={"client": str(websocket.client)})

    async def _pump():
        while True:
            await websocket.send_json(await sub.get())

    async def _drain():
        while True:
            await websocket.receive_text()

    tasks = {asyncio.create_task(_pump()), asyncio.create_task(_drain())}
    try:
        await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    finally:
        # no awaits here: the server may already be cancelling this handler
        broadcaster.unsubscribe(sub)
        for t in tasks:
            t.add_done_callback(_log_viewer_error)
            t.cancel()
        monitoring.viewer_disconnected()
        monitoring.logger.info("Dashboard viewer disconnected", extra={"client": str(websocket.client)})


def _log_viewer_error(task: asyncio.Task):
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None and not isinstance(exc, WebSocketDisconnect):
        monitoring.logger.warning("Viewer connection error: %s", exc)


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/metrics")
async def metrics():
    if not monitoring.PROMETHEUS_ENABLED:
        return PlainTextResponse("Prometheus disabled", status_code=404)
    payload, content_type = monitoring.prometheus_metrics_response()
    return Response(content=payload, media_type=content_type)
