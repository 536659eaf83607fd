import logging
from functools import lru_cache
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from fastapi.responses import FileResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from hearth.config import Config, get_config
from hearth.errors import FetchError, InvalidInput, ProviderError, WriteError
from hearth.models import SessionLocal, get_db
from hearth.routes.cancellation import run_until_disconnect
from hearth.services.background_provider import USER_AGENT, BackgroundProviderResolver
from hearth.services.background_service import REFRESH_TIMEOUT, REQUEST_TIMEOUT, BackgroundService
from hearth.services.fetcher import BoundedFetcher, FetchBudget

router = APIRouter()

logger = logging.getLogger(__name__)

IMAGE_URL = "/api/background/image"
NO_STORE = {"Cache-Control": "no-store"}


class BackgroundInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    provider: str
    image_url: str = Field(IMAGE_URL, alias="imageUrl")


class BackgroundSettings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    provider: str = "default"
    unsplash_query: str = Field("", alias="unsplashQuery")
    interval: str = "0"


@lru_cache(maxsize=1)
def get_background_fetcher() -> BoundedFetcher:
    return BoundedFetcher(user_agent=USER_AGENT)


def get_background_service(config: Config = Depends(get_config)) -> BackgroundService:
    resolver = BackgroundProviderResolver(config.cache_dir, fetcher=get_background_fetcher())
    return BackgroundService(config.cache_dir, resolver=resolver, session_factory=SessionLocal)


@router.get("/api/background", response_model=BackgroundInfo)
def get_background(db: Session = Depends(get_db), service: BackgroundService = Depends(get_background_service)):
    selection = service.current_selection(db)
    return BackgroundInfo(provider=selection.provider.value)


@router.get(IMAGE_URL)
async def get_background_image(
    request: Request,
    db: Session = Depends(get_db),
    service: BackgroundService = Depends(get_background_service),
):
    budget = FetchBudget.start(REQUEST_TIMEOUT)
    return await run_until_disconnect(request, budget, _background_image, db, service, budget)


def _background_image(db: Session, service: BackgroundService, budget: FetchBudget) -> FileResponse:
    try:
        path = service.image_for_request(db, budget)
    except (ProviderError, FetchError) as e:
        logger.error(f"No background image available: {e}")
        raise HTTPException(status_code=502, detail=f"failed to fetch background image: {e}", headers=NO_STORE)
    except WriteError as e:
        logger.error(f"Could not store background image: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="failed to store background image", headers=NO_STORE)
    return FileResponse(path, headers=NO_STORE)


@router.post("/api/background/refresh")
async def refresh_background(
    request: Request,
    provider: Optional[str] = None,
    db: Session = Depends(get_db),
    service: BackgroundService = Depends(get_background_service),
):
    logger.info(f"Background refresh requested provider={provider!r}")
    budget = FetchBudget.start(REFRESH_TIMEOUT)
    return await run_until_disconnect(request, budget, _refresh_background, db, service, provider, budget)


def _refresh_background(db: Session, service: BackgroundService, provider: Optional[str], budget: FetchBudget) -> dict:
    try:
        service.refresh(db, provider=(provider or "").strip() or None, budget=budget)
    except InvalidInput as e:
        raise HTTPException(status_code=400, detail=str(e))
    except (ProviderError, FetchError) as e:
        logger.error(f"Background refresh failed: {e}")
        raise HTTPException(status_code=502, detail=f"failed to refresh background: {e}")
    except WriteError as e:
        logger.error(f"Could not store refreshed background: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="failed to update background cache")
    return {"ok": True}


@router.get("/api/background/settings", response_model=BackgroundSettings)
def get_background_settings(
    db: Session = Depends(get_db), service: BackgroundService = Depends(get_background_service)
):
    selection = service.current_selection(db)
    return BackgroundSettings(
        provider=selection.provider.value,
        unsplash_query=selection.query,
        interval=selection.interval_text,
    )


@router.put("/api/background/settings", response_model=BackgroundSettings)
def put_background_settings(
    settings: BackgroundSettings,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    service: BackgroundService = Depends(get_background_service),
):
    try:
        selection = service.save_selection(db, settings.provider, settings.unsplash_query, settings.interval)
    except InvalidInput as e:
        raise HTTPException(status_code=400, detail=str(e))
    if selection.provider.is_remote:
        background_tasks.add_task(service.prefetch, selection.provider.value, selection.query)
    return BackgroundSettings(
        provider=selection.provider.value,
        unsplash_query=selection.query,
        interval=selection.interval_text,
    )
