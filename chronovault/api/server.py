"""
Chronovault HTTP boundary — FastAPI app for pinning oversized ciphertexts.

Only ciphertext ever reaches this server; keys and plaintext stay on the
client, and share links carry vault data in the URL fragment, which is never
sent here.

Endpoints:
  GET  /health       liveness + whether pinning is configured
  POST /api/upload   multipart {file, captchaToken} -> {success, cid}
  POST /api/unpin    {cid} -> {success, unpinned}   (best effort, never fails)

Start:
  chronovault serve
  # or
  uvicorn chronovault.api.server:app --host 0.0.0.0 --port 8640
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.datastructures import UploadFile

from chronovault.captcha import CaptchaVerifier, TurnstileVerifier
from chronovault.config import Config, get_config
from chronovault.pinning import PinataClient
from chronovault.ratelimit import SWEEP_INTERVAL, RateLimiter

logger = logging.getLogger(__name__)


def get_client_ip(request: Request) -> str:
    """First X-Forwarded-For hop, then X-Real-IP, else "unknown"."""
    forwarded = request.headers.get("x-forwarded-for", "")
    first = forwarded.split(",")[0].strip()
    if first:
        return first
    return request.headers.get("x-real-ip") or "unknown"


def _reject(status: int, error: str, headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse({"success": False, "error": error}, status_code=status, headers=headers)


def create_app(
    config: Config | None = None,
    limiter: RateLimiter | None = None,
    pinata: PinataClient | None = None,
    verifier: CaptchaVerifier | None = None,
) -> FastAPI:
    """Build the app. Collaborators are injectable for tests."""
    cfg = config if config is not None else get_config()
    if limiter is None:
        limiter = RateLimiter()
    if pinata is None:
        pinata = PinataClient(cfg.pinning.jwt, cfg.pinning.api_url)
    if verifier is None:
        verifier = TurnstileVerifier(cfg.upload.turnstile_secret)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        scheduler = AsyncIOScheduler()
        scheduler.add_job(
            limiter.sweep,
            trigger=IntervalTrigger(seconds=SWEEP_INTERVAL),
            id="ratelimit-sweep",
            max_instances=1,
            coalesce=True,
        )
        scheduler.start()
        logger.info(
            "Upload endpoint ready (pinning %s)", "configured" if pinata.configured else "disabled"
        )
        yield
        scheduler.shutdown(wait=False)
        await pinata.close()

    app = FastAPI(
        title="Chronovault",
        description="Pinning endpoint for time-locked vault ciphertexts.",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.config = cfg
    app.state.limiter = limiter
    app.state.pinata = pinata
    app.state.verifier = verifier

    @app.get("/health")
    async def health():
        return {"status": "ok", "pinning": pinata.configured}

    @app.post("/api/upload")
    async def upload(request: Request):
        ip = get_client_ip(request)
        try:
            rate = limiter.check(
                f"upload:{ip}",
                max_requests=cfg.upload.rate_limit,
                window=cfg.upload.rate_window,
            )
            if not rate.allowed:
                minutes = -(-rate.reset_in_seconds // 60)
                return _reject(
                    429,
                    f"Rate limit exceeded. Try again in {minutes} minutes.",
                    headers=rate.headers(),
                )

            form = await request.form()
            file = form.get("file")
            captcha_token = form.get("captchaToken")

            if not isinstance(file, UploadFile):
                return _reject(400, "No file provided")
            if not captcha_token or not isinstance(captcha_token, str):
                return _reject(400, "CAPTCHA token required")

            if not await verifier.verify(captcha_token, ip):
                return _reject(403, "CAPTCHA verification failed")

            too_large = f"File too large. Maximum size is {cfg.upload.max_vault_size_mb:g}MB."
            if file.size is not None and file.size > cfg.upload.max_vault_size:
                return _reject(413, too_large)
            # Never read more than one byte past the cap
            data = await file.read(cfg.upload.max_vault_size + 1)
            if len(data) > cfg.upload.max_vault_size:
                return _reject(413, too_large)

            cid = await pinata.upload(data)
            logger.info("Pinned %d bytes as %s", len(data), cid)
            return JSONResponse({"success": True, "cid": cid}, headers=rate.headers())
        except Exception as e:
            logger.error("Upload error: %s", e)
            return _reject(500, "Upload failed. Please try again.")

    @app.post("/api/unpin")
    async def unpin(request: Request):
        try:
            body = await request.json()
        except ValueError:
            return {"success": True, "unpinned": False}

        cid = body.get("cid") if isinstance(body, dict) else None
        if not cid or not isinstance(cid, str):
            return JSONResponse({"error": "CID is required"}, status_code=400)

        unpinned = await pinata.unpin(cid)
        return {"success": True, "unpinned": unpinned}

    return app


app = create_app()
