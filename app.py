import logging
import uuid
from typing import Optional

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from pydantic import ValidationError

import config
from analyzer import CottonAnalyzer
from presentation import render_page, session_view
from schemas import FeedbackEvent
from session import FeedbackAlreadySubmitted, HistoryItemNotFound, SessionBusy, SessionRegistry

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
)
logger = logging.getLogger("cotton-monitor")

# ---------- Analyzer + sessions ----------
analyzer = CottonAnalyzer()
if not analyzer.configured:
    logger.warning("GEMINI_API_KEY not set; analyses will fail until it is configured")

sessions = SessionRegistry(analyzer)

app = FastAPI(title="Cotton Growth Monitor", version="1.0.0")


def _client_id(request: Request) -> str:
    # header for API clients, cookie for the browser page
    cid = (request.headers.get("X-Client-Id") or "").strip()
    if cid:
        return cid
    return (request.cookies.get(config.SESSION_COOKIE) or "").strip() or uuid.uuid4().hex


def _with_cookie(response, client_id: str):
    response.set_cookie(config.SESSION_COOKIE, client_id, httponly=True, samesite="lax")
    return response


def _back_home(client_id: str):
    return _with_cookie(RedirectResponse("/", status_code=303), client_id)


@app.get("/healthz")
async def healthz():
    return {
        "status": "ok",
        "model": analyzer.model_name,
        "credential_configured": analyzer.configured,
        "sessions": len(sessions),
    }


@app.get("/", response_class=HTMLResponse)
async def index(request: Request):
    client_id = _client_id(request)
    session = sessions.get(client_id)
    return _with_cookie(HTMLResponse(render_page(session_view(session))), client_id)


@app.get("/api/state")
async def state(request: Request):
    client_id = _client_id(request)
    session = sessions.get(client_id)
    return _with_cookie(JSONResponse(content=session_view(session)), client_id)


@app.post("/analyze")
async def analyze(request: Request, file: Optional[UploadFile] = File(None)):
    client_id = _client_id(request)
    session = sessions.get(client_id)
    if file is None:
        return _back_home(client_id)

    img_bytes = await file.read()
    try:
        await session.select_file(img_bytes, file.filename or "")
    except SessionBusy as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _back_home(client_id)


@app.post("/history/{item_id}")
async def open_history_item(item_id: str, request: Request):
    client_id = _client_id(request)
    session = sessions.get(client_id)
    try:
        session.select_history_item(item_id)
    except SessionBusy as e:
        raise HTTPException(status_code=409, detail=str(e))
    except HistoryItemNotFound:
        raise HTTPException(status_code=404, detail="History item not found")
    return _back_home(client_id)


@app.post("/reset")
async def reset(request: Request):
    client_id = _client_id(request)
    session = sessions.get(client_id)
    try:
        session.reset()
    except SessionBusy as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _back_home(client_id)


@app.post("/feedback")
async def feedback(
    request: Request,
    status: str = Form(...),
    issue: Optional[str] = Form(None),
):
    client_id = _client_id(request)
    session = sessions.get(client_id)
    try:
        event = FeedbackEvent(status=status, issue=issue)
    except ValidationError as e:
        reasons = "; ".join(err["msg"] for err in e.errors())
        raise HTTPException(status_code=422, detail=f"Invalid feedback: {reasons}")
    try:
        session.dispatch(event)
    except HistoryItemNotFound:
        raise HTTPException(status_code=404, detail="No analysis on display to attach feedback to")
    except FeedbackAlreadySubmitted:
        raise HTTPException(status_code=409, detail="Feedback already submitted for this analysis")
    return _back_home(client_id)


@app.delete("/api/session")
async def close_session(request: Request):
    client_id = _client_id(request)
    closed = sessions.discard(client_id)
    response = JSONResponse(content={"closed": closed})
    response.delete_cookie(config.SESSION_COOKIE)
    return response


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
