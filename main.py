import asyncio
import logging
from contextlib import asynccontextmanager
from typing import BinaryIO, List, Optional

from fastapi import Depends, FastAPI, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, Response
from pydantic import BaseModel, EmailStr

import auth
import views
from auth import AuthError, CurrentUser, optional_user, verify_token
from config import load_settings, setup_logging
from context import AppContext, get_context, init_context
from database import RecordStoreError
from profiles import set_avatar, update_profile
from schemas import SEVERITIES, STATUSES, Badge, Category, Draft, DraftUpdate, HazardType, Photo, ProfileUpdate, Severity
from storage import StorageError
from submission import IncompleteDraft, SubmissionCoordinator, SubmissionError
from wizard import WizardSession, WizardStateError

logger = logging.getLogger(__name__)

SIGN_IN_PATH = "/login"


# ---------- Models for requests ----------
class RegisterRequest(BaseModel):
    email: EmailStr
    password: str


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


# ---------- Helpers ----------

def _mb(n_bytes: int) -> int:
    return n_bytes // (1024 * 1024)


def _read_capped(stream: BinaryIO, max_bytes: int) -> bytes:
    """Read at most one byte past the limit; enough for _check_image to refuse it."""
    return stream.read(max_bytes + 1)


def _check_image(content: bytes, content_type: Optional[str], max_bytes: int, require_type: bool = False) -> None:
    if len(content) > max_bytes:
        raise HTTPException(status_code=400, detail=f"File size must be less than {_mb(max_bytes)}MB")
    if (content_type or require_type) and not (content_type or "").startswith("image/"):
        raise HTTPException(status_code=400, detail="Please upload an image file")


def _session(ctx: AppContext, wizard_id: str) -> WizardSession:
    session = ctx.wizards.get(wizard_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Wizard not found")
    return session


def _state(session: WizardSession) -> dict:
    photo_url = f"/wizard/{session.id}/photo" if session.draft.photo is not None else None
    return session.snapshot(photo_url)


def create_app(ctx: Optional[AppContext] = None) -> FastAPI:
    """Build the API. A ready context may be passed in; otherwise one is opened at startup."""
    settings = ctx.settings if ctx is not None else load_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.ctx is None
        if owned:
            setup_logging(settings.log_level)
            app.state.ctx = init_context(settings)
        logger.info("%s %s starting", settings.app_name, settings.version)
        yield
        if owned:
            app.state.ctx.close()
            app.state.ctx = None

    app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)
    app.state.ctx = ctx

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RecordStoreError)
    async def record_store_unavailable(request: Request, exc: RecordStoreError):
        logger.error("%s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=503, content={"detail": "Record store unavailable"})

    # ---------- Basic routes ----------
    @app.get("/")
    def root():
        return {"message": f"{settings.app_name} running"}

    @app.get("/health")
    def health(ctx: AppContext = Depends(get_context)):
        info = {
            "backend": "running",
            "database": "disconnected",
            "collections": [],
        }
        try:
            info["collections"] = ctx.store.collection_names()[:10]
            info["database"] = "connected"
        except RecordStoreError as e:
            info["database"] = f"error: {str(e)[:80]}"
        return info

    # ---------- Auth endpoints ----------
    @app.post("/auth/register")
    def register(req: RegisterRequest, ctx: AppContext = Depends(get_context)):
        try:
            user, token = auth.register(ctx, req.email, req.password)
        except AuthError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return {"token": token, "user": {"id": user.id, "email": user.email}}

    @app.post("/auth/login")
    def login(req: LoginRequest, ctx: AppContext = Depends(get_context)):
        try:
            user, token = auth.login(ctx, req.email, req.password)
        except AuthError as e:
            raise HTTPException(status_code=401, detail=str(e))
        return {"token": token, "user": {"id": user.id, "email": user.email}}

    @app.post("/auth/logout")
    def logout(user: CurrentUser = Depends(verify_token), ctx: AppContext = Depends(get_context)):
        auth.logout(ctx, user)
        return {"ok": True}

    # ---------- Profile ----------
    @app.get("/me")
    def me(user: CurrentUser = Depends(verify_token), ctx: AppContext = Depends(get_context)):
        return views.get_profile(ctx.store, user)

    @app.put("/me")
    def edit_me(body: ProfileUpdate, user: CurrentUser = Depends(verify_token), ctx: AppContext = Depends(get_context)):
        update_profile(ctx, user, body)
        return views.get_profile(ctx.store, user)

    @app.post("/me/avatar")
    def upload_avatar(
        file: UploadFile = File(...),
        user: CurrentUser = Depends(verify_token),
        ctx: AppContext = Depends(get_context),
    ):
        content = _read_capped(file.file, ctx.settings.max_avatar_bytes)
        _check_image(content, file.content_type, ctx.settings.max_avatar_bytes, require_type=True)
        try:
            url = set_avatar(ctx, user, content, file.filename or "avatar.png", file.content_type)
        except (StorageError, RecordStoreError) as e:
            logger.error("Avatar upload for %s failed: %s", user.id, e)
            raise HTTPException(status_code=502, detail=f"Failed to upload avatar: {e}")
        return {"avatar_url": url}

    # ---------- Report wizard ----------
    @app.post("/wizard", status_code=201)
    async def open_wizard(ctx: AppContext = Depends(get_context)):
        return _state(ctx.wizards.create())

    @app.get("/wizard/{wizard_id}")
    async def get_wizard(wizard_id: str, ctx: AppContext = Depends(get_context)):
        return _state(_session(ctx, wizard_id))

    @app.delete("/wizard/{wizard_id}")
    async def close_wizard(wizard_id: str, ctx: AppContext = Depends(get_context)):
        if not ctx.wizards.discard(wizard_id):
            raise HTTPException(status_code=404, detail="Wizard not found")
        return {"ok": True}

    @app.put("/wizard/{wizard_id}/photo")
    async def attach_photo(wizard_id: str, file: UploadFile = File(...), ctx: AppContext = Depends(get_context)):
        session = _session(ctx, wizard_id)
        content = await file.read(ctx.settings.max_photo_bytes + 1)
        _check_image(content, file.content_type, ctx.settings.max_photo_bytes)
        try:
            session.attach_photo(Photo(data=content, filename=file.filename or "photo.jpg", content_type=file.content_type))
        except WizardStateError as e:
            raise HTTPException(status_code=409, detail=str(e))
        return _state(session)

    @app.get("/wizard/{wizard_id}/photo")
    async def preview_photo(wizard_id: str, ctx: AppContext = Depends(get_context)):
        photo = _session(ctx, wizard_id).draft.photo
        if photo is None:
            raise HTTPException(status_code=404, detail="No photo attached")
        return Response(content=photo.data, media_type=photo.content_type or "application/octet-stream")

    @app.delete("/wizard/{wizard_id}/photo")
    async def remove_photo(wizard_id: str, ctx: AppContext = Depends(get_context)):
        session = _session(ctx, wizard_id)
        try:
            session.remove_photo()
        except WizardStateError as e:
            raise HTTPException(status_code=409, detail=str(e))
        return _state(session)

    @app.patch("/wizard/{wizard_id}")
    async def edit_draft(wizard_id: str, body: DraftUpdate, ctx: AppContext = Depends(get_context)):
        session = _session(ctx, wizard_id)
        try:
            session.update(body)
        except WizardStateError as e:
            raise HTTPException(status_code=409, detail=str(e))
        return _state(session)

    @app.post("/wizard/{wizard_id}/next")
    async def next_step(wizard_id: str, ctx: AppContext = Depends(get_context)):
        session = _session(ctx, wizard_id)
        try:
            check = session.next()
        except WizardStateError as e:
            raise HTTPException(status_code=409, detail=str(e))
        if not check.ok:
            raise HTTPException(status_code=422, detail={"message": check.message, "step": int(session.step)})
        return _state(session)

    @app.post("/wizard/{wizard_id}/previous")
    async def previous_step(wizard_id: str, ctx: AppContext = Depends(get_context)):
        session = _session(ctx, wizard_id)
        try:
            session.previous()
        except WizardStateError as e:
            raise HTTPException(status_code=409, detail=str(e))
        return _state(session)

    @app.post("/wizard/{wizard_id}/reset")
    async def reset_wizard(wizard_id: str, ctx: AppContext = Depends(get_context)):
        session = _session(ctx, wizard_id)
        try:
            session.reset()
        except WizardStateError as e:
            raise HTTPException(status_code=409, detail=str(e))
        return _state(session)

    @app.post("/wizard/{wizard_id}/submit")
    async def submit_wizard(
        wizard_id: str,
        user: Optional[CurrentUser] = Depends(optional_user),
        ctx: AppContext = Depends(get_context),
    ):
        session = _session(ctx, wizard_id)
        if session.submitting:
            raise HTTPException(status_code=409, detail="A submission is already in flight")
        if user is None:
            # The draft does not survive the trip through sign-in
            ctx.wizards.discard(wizard_id)
            raise HTTPException(
                status_code=401,
                detail={"message": "Please sign in to submit a report", "redirect": SIGN_IN_PATH},
            )
        try:
            session.begin_submit()
        except WizardStateError as e:
            raise HTTPException(status_code=409, detail=str(e))

        coordinator = SubmissionCoordinator(ctx.store, ctx.storage)
        loop = asyncio.get_running_loop()
        try:
            report = await loop.run_in_executor(None, coordinator.submit, session.draft, user)
        except IncompleteDraft as e:
            session.fail(str(e))
            raise HTTPException(status_code=422, detail={"message": str(e), "step": int(session.step)})
        except SubmissionError as e:
            session.fail(f"Failed to submit report: {e}")
            raise HTTPException(status_code=502, detail={"message": session.error, "step": int(session.step)})
        except Exception:
            session.fail("Failed to submit report: Please try again.")
            raise

        session.complete(report.ticket_id)
        return {**_state(session), "report": report.model_dump()}

    # ---------- Report endpoints ----------
    @app.post("/reports", status_code=201)
    def create_report(
        photo: UploadFile = File(...),
        location: str = Form(""),
        hazard_type: Optional[HazardType] = Form(None),
        category: Category = Form("Roads"),
        severity: Severity = Form("Medium"),
        description: str = Form(""),
        latitude: Optional[float] = Form(None),
        longitude: Optional[float] = Form(None),
        user: CurrentUser = Depends(verify_token),
        ctx: AppContext = Depends(get_context),
    ):
        content = _read_capped(photo.file, ctx.settings.max_photo_bytes)
        _check_image(content, photo.content_type, ctx.settings.max_photo_bytes)
        draft = Draft(
            photo=Photo(data=content, filename=photo.filename or "photo.jpg", content_type=photo.content_type),
            location=location,
            latitude=latitude,
            longitude=longitude,
            hazard_type=hazard_type,
            category=category,
            severity=severity,
            description=description,
        )
        try:
            report = SubmissionCoordinator(ctx.store, ctx.storage).submit(draft, user)
        except IncompleteDraft as e:
            raise HTTPException(status_code=422, detail=str(e))
        except SubmissionError as e:
            raise HTTPException(status_code=502, detail=f"Failed to submit report: {e}")
        return report.model_dump()

    @app.get("/reports")
    def list_reports(
        severity: str = Query("all"),
        status: str = Query("all"),
        ctx: AppContext = Depends(get_context),
    ):
        if severity != "all" and severity not in SEVERITIES:
            raise HTTPException(status_code=400, detail=f"Unknown severity: {severity}")
        if status != "all" and status not in STATUSES:
            raise HTTPException(status_code=400, detail=f"Unknown status: {status}")
        return views.heatmap(ctx.store, severity, status)

    @app.get("/reports/{ticket_id}")
    def get_report(ticket_id: str, ctx: AppContext = Depends(get_context)):
        try:
            return views.report_detail(ctx.store, ticket_id)
        except views.NotFound:
            raise HTTPException(status_code=404, detail="Report not found")

    @app.get("/dashboard")
    def dashboard(user: CurrentUser = Depends(verify_token), ctx: AppContext = Depends(get_context)):
        return views.dashboard(ctx.store, user)

    @app.get("/leaderboard")
    def leaderboard(limit: Optional[int] = Query(None, ge=1, le=500), ctx: AppContext = Depends(get_context)):
        return views.leaderboard(ctx.store, limit or ctx.settings.leaderboard_size)

    @app.get("/badges", response_model=List[Badge])
    def list_badges(ctx: AppContext = Depends(get_context)):
        return views.badges(ctx.store)

    # ---------- Public object URLs ----------
    @app.get("/storage/{bucket}/{key:path}")
    def get_object(bucket: str, key: str, ctx: AppContext = Depends(get_context)):
        try:
            path = ctx.storage.path(bucket, key)
        except StorageError:
            raise HTTPException(status_code=404, detail="Object not found")
        if not path.is_file():
            raise HTTPException(status_code=404, detail="Object not found")
        return FileResponse(path)

    return app


app = create_app()
