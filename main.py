from fastapi import FastAPI, Request, BackgroundTasks, Depends, File, Form, UploadFile
from fastapi.responses import JSONResponse, HTMLResponse, RedirectResponse, Response
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from starlette.datastructures import UploadFile as StarletteUploadFile
from pydantic import ValidationError
from typing import List, Optional
import asyncio
import secrets
import uvicorn
import logging

from config import (
    AUTH_USERNAME,
    AUTH_PASSWORD,
    GENERATION_TIMEOUT_SECONDS,
    LOG_LEVEL,
    SESSION_COOKIE_NAME,
    SESSION_MAX_AGE_SECONDS,
)
from schemas import (
    AuthRequest,
    BatchStatusResponse,
    DeleteResponse,
    GalleryDeleteRequest,
    GalleryDownloadRequest,
    GalleryItemOut,
    GalleryResponse,
    GarmentEntryOut,
    GarmentListResponse,
    ItemOutcomeOut,
    LatestResultOut,
    ModelImageOut,
    ModelListResponse,
    ProcessResponse,
    ProcessUrlRequest,
    StyleCodeUpdate,
    UploadResponse,
)
from services.asset_service import GarmentEntry, ImageAsset
from services.batch_service import BatchOrchestrator, Success
from services.errors import (
    AuthError,
    GenerationFailedError,
    ImageValidationError,
    NotFoundError,
    TryOnError,
    UpstreamError,
)
from services.gallery_service import GenerationResult, build_zip
from services.generation_service import generate_tryon
from services.image_service import ensure_valid_image, to_data_url
from services.session_service import Session, SessionStore
from services.upload_service import upload_file

# Setup logging
logging.basicConfig(
    level=LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Virtual Try-On Studio")

sessions = SessionStore()

MISSING_IMAGES_MESSAGE = "Both model image and garment image are required."


def is_public_path(path: str) -> bool:
    return path == "/login" or path.startswith("/api/auth")


@app.middleware("http")
async def require_session(request: Request, call_next):
    """Redirect to the login page unless the request carries a live session cookie"""
    if is_public_path(request.url.path):
        return await call_next(request)

    session = sessions.get(request.cookies.get(SESSION_COOKIE_NAME))
    if session is None:
        logger.info(f"Unauthenticated request to {request.url.path}, redirecting to /login")
        return RedirectResponse(url="/login", status_code=307)

    request.state.session = session
    return await call_next(request)


def get_session(request: Request) -> Session:
    return request.state.session


def credentials_match(username: Optional[str], password: Optional[str]) -> bool:
    if not AUTH_USERNAME or not AUTH_PASSWORD:
        logger.warning("AUTH_USERNAME/AUTH_PASSWORD not configured. Login disabled.")
        return False
    if username is None or password is None:
        return False
    user_ok = secrets.compare_digest(username.encode("utf-8"), AUTH_USERNAME.encode("utf-8"))
    password_ok = secrets.compare_digest(password.encode("utf-8"), AUTH_PASSWORD.encode("utf-8"))
    return user_ok and password_ok


def asset_out(asset: ImageAsset) -> dict:
    return {
        "id": asset.id,
        "filename": asset.filename,
        "contentType": asset.content_type,
        "size": asset.size,
        "previewUrl": f"/api/previews/{asset.preview_id}",
    }


def garment_out(entry: GarmentEntry) -> GarmentEntryOut:
    return GarmentEntryOut(**asset_out(entry), styleCode=entry.style_code, styleCodeValid=entry.style_code_valid)


def gallery_item_out(item: GenerationResult) -> GalleryItemOut:
    return GalleryItemOut(id=item.id, resultUrl=item.result_url, filename=item.filename, createdAt=item.created_at)


def batch_out(batch: BatchOrchestrator) -> BatchStatusResponse:
    outcomes = []
    for outcome in batch.outcomes:
        if isinstance(outcome.result, Success):
            detail = {"status": "success", "result": gallery_item_out(outcome.result.result)}
        else:
            detail = {"status": "failure", "error": outcome.result.message}
        outcomes.append(ItemOutcomeOut(
            position=outcome.position,
            garmentId=outcome.garment_id,
            styleCode=outcome.style_code,
            modelId=outcome.model_id,
            **detail,
        ))

    latest = None
    if batch.latest is not None:
        latest = LatestResultOut(
            result=gallery_item_out(batch.latest.result),
            modelId=batch.latest.model_id,
            modelPreviewUrl=f"/api/previews/{batch.latest.model_preview_id}",
            styleCode=batch.latest.style_code,
        )

    return BatchStatusResponse(
        status=batch.status.value,
        currentIndex=batch.current_index,
        total=batch.total,
        currentModelIndex=batch.current_model_index,
        modelCount=batch.model_count,
        progressPercent=batch.progress_percent,
        cancelRequested=batch.cancel_requested,
        outcomes=outcomes,
        errors=batch.errors,
        lastError=batch.last_error,
        latest=latest,
    )


async def read_upload(upload: UploadFile) -> tuple:
    return await upload.read(), upload.content_type, upload.filename or "image"


# ---------------------------------------------------------------- pages

@app.get("/login", response_class=HTMLResponse)
async def login_page():
    return """<!DOCTYPE html>
<html>
<head><meta charset="UTF-8"><title>Sign in - Virtual Try-On Studio</title></head>
<body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Arial, sans-serif; background-color: #f9fafb;">
    <form id="login" style="max-width: 320px; margin: 120px auto; padding: 24px; background: white; border-radius: 12px; border: 1px solid #e5e7eb;">
        <h1 style="font-size: 20px;">Virtual Try-On Studio</h1>
        <input name="username" placeholder="Username" autocomplete="username" style="display: block; width: 100%; margin: 8px 0; padding: 8px;">
        <input name="password" type="password" placeholder="Password" autocomplete="current-password" style="display: block; width: 100%; margin: 8px 0; padding: 8px;">
        <button type="submit" style="width: 100%; padding: 10px; background: #4f46e5; color: white; border: 0; border-radius: 8px;">Sign in</button>
        <p id="error" style="color: #b91c1c;"></p>
    </form>
    <script>
    document.getElementById("login").addEventListener("submit", async (e) => {
        e.preventDefault();
        const form = new FormData(e.target);
        const res = await fetch("/api/auth", {
            method: "POST",
            headers: {"Content-Type": "application/json"},
            body: JSON.stringify({username: form.get("username"), password: form.get("password")}),
        });
        if (res.ok) { window.location.href = "/"; }
        else { document.getElementById("error").textContent = (await res.json()).error; }
    });
    </script>
</body>
</html>"""


@app.get("/", response_class=HTMLResponse)
async def home(session: Session = Depends(get_session)):
    batch = session.batch
    return f"""<!DOCTYPE html>
<html>
<head><meta charset="UTF-8"><title>Virtual Try-On Studio</title></head>
<body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Arial, sans-serif;">
    <h1>Virtual Garment Replacement Studio</h1>
    <p>Models: {len(session.models)} &middot; Garments: {len(session.garments)} &middot; Gallery: {len(session.gallery)}</p>
    <p>Batch: {batch.status.value} ({batch.current_index}/{batch.total})</p>
</body>
</html>"""


# ---------------------------------------------------------------- auth

@app.post("/api/auth")
async def login(payload: AuthRequest, request: Request):
    if not credentials_match(payload.username, payload.password):
        logger.warning("Rejected login attempt")
        raise AuthError()

    sessions.drop(request.cookies.get(SESSION_COOKIE_NAME))
    session = sessions.create()
    response = JSONResponse({"success": True})
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=session.token,
        max_age=SESSION_MAX_AGE_SECONDS,
        path="/",
        httponly=True,
        secure=False,
        samesite="lax",
    )
    logger.info("Login succeeded")
    return response


@app.post("/api/auth/logout")
async def logout(request: Request):
    sessions.drop(request.cookies.get(SESSION_COOKIE_NAME))
    response = JSONResponse({"success": True})
    response.delete_cookie(SESSION_COOKIE_NAME, path="/")
    return response


# ---------------------------------------------------------------- single-shot endpoints

@app.post("/api/process", response_model=ProcessResponse)
async def process_pair(request: Request):
    """Generate one try-on from a multipart image pair or a JSON pair of hosted URLs"""
    content_type = request.headers.get("content-type", "")

    if content_type.startswith("application/json"):
        try:
            payload = ProcessUrlRequest.model_validate(await request.json())
        except (ValueError, ValidationError):
            raise ImageValidationError(MISSING_IMAGES_MESSAGE, reason="missing")
        if not payload.modelUrl or not payload.garmentUrl:
            raise ImageValidationError(MISSING_IMAGES_MESSAGE, reason="missing")
        model_ref, garment_ref = payload.modelUrl, payload.garmentUrl
    else:
        form = await request.form()
        model_image = form.get("modelImage")
        garment_image = form.get("garmentImage")
        if not isinstance(model_image, StarletteUploadFile) or not isinstance(garment_image, StarletteUploadFile):
            raise ImageValidationError(MISSING_IMAGES_MESSAGE, reason="missing")

        model_bytes, model_type, _ = await read_upload(model_image)
        garment_bytes, garment_type, _ = await read_upload(garment_image)
        ensure_valid_image(model_bytes, model_type, label="Model image")
        ensure_valid_image(garment_bytes, garment_type, label="Garment image")
        model_ref = to_data_url(model_bytes, model_type)
        garment_ref = to_data_url(garment_bytes, garment_type)

    try:
        image_url = await asyncio.wait_for(generate_tryon(model_ref, garment_ref), timeout=GENERATION_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        raise GenerationFailedError(f"timed out after {GENERATION_TIMEOUT_SECONDS:g} seconds")
    return ProcessResponse(imageUrl=image_url)


@app.post("/api/upload", response_model=UploadResponse)
async def upload_image(file: Optional[UploadFile] = File(None)):
    if file is None:
        raise ImageValidationError("No file provided.", reason="missing")
    content, content_type, filename = await read_upload(file)
    ensure_valid_image(content, content_type)
    url = await upload_file(content, filename, content_type)
    return UploadResponse(url=url)


# ---------------------------------------------------------------- model images

@app.get("/api/models", response_model=ModelListResponse)
async def list_models(session: Session = Depends(get_session)):
    return ModelListResponse(models=[ModelImageOut(**asset_out(m)) for m in session.models])


@app.post("/api/models", response_model=ModelListResponse)
async def add_models(files: List[UploadFile] = File(...), session: Session = Depends(get_session)):
    uploads = [await read_upload(f) for f in files]
    added, warning = session.add_models(uploads)
    return ModelListResponse(models=[ModelImageOut(**asset_out(m)) for m in added], warning=warning)


@app.delete("/api/models/{model_id}", response_model=DeleteResponse)
async def remove_model(model_id: str, session: Session = Depends(get_session)):
    session.remove_model(model_id)
    return DeleteResponse(deleted=1)


@app.delete("/api/models", response_model=DeleteResponse)
async def clear_models(session: Session = Depends(get_session)):
    return DeleteResponse(deleted=session.clear_models())


# ---------------------------------------------------------------- garments

@app.get("/api/garments", response_model=GarmentListResponse)
async def list_garments(session: Session = Depends(get_session)):
    return GarmentListResponse(garments=[garment_out(g) for g in session.garments])


@app.post("/api/garments", response_model=GarmentListResponse)
async def add_garments(
    files: List[UploadFile] = File(...),
    style_codes: Optional[List[str]] = Form(None),
    session: Session = Depends(get_session),
):
    uploads = [await read_upload(f) for f in files]
    added, warning = session.add_garments(uploads, style_codes)
    return GarmentListResponse(garments=[garment_out(g) for g in added], warning=warning)


@app.patch("/api/garments/{garment_id}", response_model=GarmentEntryOut)
async def update_garment(garment_id: str, update: StyleCodeUpdate, session: Session = Depends(get_session)):
    return garment_out(session.update_style_code(garment_id, update.styleCode))


@app.delete("/api/garments/{garment_id}", response_model=DeleteResponse)
async def remove_garment(garment_id: str, session: Session = Depends(get_session)):
    session.remove_garment(garment_id)
    return DeleteResponse(deleted=1)


@app.delete("/api/garments", response_model=DeleteResponse)
async def clear_garments(session: Session = Depends(get_session)):
    return DeleteResponse(deleted=session.clear_garments())


@app.get("/api/previews/{preview_id}")
async def get_preview(preview_id: str, session: Session = Depends(get_session)):
    return Response(content=session.previews.get(preview_id), media_type="image/jpeg")


# ---------------------------------------------------------------- batch

@app.post("/api/batch", status_code=202, response_model=BatchStatusResponse)
async def start_batch(background_tasks: BackgroundTasks, session: Session = Depends(get_session)):
    """Start processing every garment; progress is read from GET /api/batch"""
    session.start_batch()
    background_tasks.add_task(session.batch.run)
    return batch_out(session.batch)


@app.get("/api/batch", response_model=BatchStatusResponse)
async def batch_status(session: Session = Depends(get_session)):
    return batch_out(session.batch)


@app.post("/api/batch/cancel", response_model=BatchStatusResponse)
async def cancel_batch(session: Session = Depends(get_session)):
    session.batch.cancel()
    return batch_out(session.batch)


# ---------------------------------------------------------------- gallery

@app.get("/api/gallery", response_model=GalleryResponse)
async def list_gallery(session: Session = Depends(get_session)):
    return GalleryResponse(items=[gallery_item_out(i) for i in session.gallery.items()])


@app.delete("/api/gallery", response_model=DeleteResponse)
async def delete_gallery_items(request: GalleryDeleteRequest, session: Session = Depends(get_session)):
    return DeleteResponse(deleted=session.gallery.delete(request.ids))


@app.get("/api/gallery/{item_id}/download")
async def download_gallery_item(item_id: str, session: Session = Depends(get_session)):
    item = session.gallery.get(item_id)
    filename, content = await session.gallery.download_one(item)
    return Response(
        content=content,
        media_type="image/jpeg",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.post("/api/gallery/download")
async def download_gallery_items(request: GalleryDownloadRequest, session: Session = Depends(get_session)):
    items = session.gallery.select(request.ids)
    if not items:
        raise NotFoundError("None of the selected gallery items exist.")
    files = await session.gallery.download_many(items)
    if not files:
        raise UpstreamError("None of the selected images could be downloaded.")
    logger.info(f"Bundling {len(files)} of {len(items)} selected image(s)")
    return Response(
        content=build_zip(files),
        media_type="application/zip",
        headers={"Content-Disposition": 'attachment; filename="tryon-results.zip"'},
    )


# ---------------------------------------------------------------- errors

@app.exception_handler(TryOnError)
async def tryon_exception_handler(request: Request, exc: TryOnError):
    if isinstance(exc, UpstreamError):
        logger.error(f"{request.url.path} failed upstream: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.message}
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={"detail": jsonable_encoder(exc.errors()), "body": str(exc.body)}
    )


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
