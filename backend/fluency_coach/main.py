import asyncio
import logging
from datetime import timedelta

from fastapi import FastAPI

from .cleanup import purge_idle_sessions
from .routers import session
from .settings import settings

logger = logging.getLogger(__name__)

app = FastAPI(title="Contextual Fluency Coach API")
app.include_router(session.router)

@app.get("/info")
def root():
	return {
		"status": "ok",
		"gemini_configured": bool(settings.gemini_api_key),
		"illustrations_enabled": settings.illustrations_enabled,
		"live_transcription_enabled": settings.live_transcription_enabled,
		"narration_enabled": settings.narration_enabled,
		"active_sessions": len(session.get_sessions()),
	}

def configure_logging() -> None:
	logging.basicConfig(
		level=settings.log_level.upper(),
		format="[%(asctime)s] %(levelname)s %(name)s :: %(message)s",
		datefmt="%Y-%m-%d %H:%M:%S",
	)

async def _cleanup_watcher():
	max_idle = timedelta(minutes=settings.session_idle_minutes)
	while True:
		await asyncio.sleep(60)
		try:
			await purge_idle_sessions(session.get_sessions(), max_idle)
		except Exception:
			logger.exception("Idle session cleanup failed")

_watcher: asyncio.Task | None = None

@app.on_event("startup")
async def startup_event():
	global _watcher
	configure_logging()
	# Start periodic cleanup loop
	_watcher = asyncio.create_task(_cleanup_watcher())

@app.on_event("shutdown")
async def shutdown_event():
	if _watcher is not None:
		_watcher.cancel()
	# Release any microphone/live socket still held by an open session
	for state in list(session.get_sessions().values()):
		try:
			await state.reset()
		except Exception:
			logger.exception("Could not reset session %s on shutdown", state.session_id)
	session.get_sessions().clear()
	await session.close_service()

def run() -> None:
	import uvicorn

	uvicorn.run("fluency_coach.main:app", host="127.0.0.1", port=8000)
