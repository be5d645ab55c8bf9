import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .db import SessionLocal, init_db
from .cleanup import purge_old_attempts
from .gemini_client import close_llm
from .settings import settings
from .routers import auth
from .routers import health
from .routers import modules
from .routers import problems

logging.basicConfig(
	level=getattr(logging, settings.log_level.upper(), logging.INFO),
	format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def _run_cleanup() -> None:
	db = SessionLocal()
	try:
		purge_old_attempts(db)
	except Exception:
		logger.exception("Attempt cleanup failed")
	finally:
		db.close()


async def _cleanup_watcher():
	# once at startup, then daily
	while True:
		_run_cleanup()
		await asyncio.sleep(24 * 60 * 60)


@asynccontextmanager
async def lifespan(app: FastAPI):
	init_db()
	watcher = asyncio.create_task(_cleanup_watcher())
	try:
		yield
	finally:
		watcher.cancel()
		await close_llm()


app = FastAPI(title="Practice Engine API", lifespan=lifespan)
app.include_router(health.router)
app.include_router(auth.router)
app.include_router(modules.router)
app.include_router(problems.router)
