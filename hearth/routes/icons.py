import logging
from functools import lru_cache

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import FileResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from hearth.config import Config, get_config
from hearth.errors import InvalidInput, ResolutionFailed, WriteError
from hearth.models import get_db
from hearth.routes.cancellation import run_until_disconnect
from hearth.services.asset_writer import AssetWriter
from hearth.services.cache_store import IconCacheStore
from hearth.services.fetcher import BoundedFetcher, FetchBudget
from hearth.services.icon_resolver import IconResolver, icon_cache_key

router = APIRouter()

logger = logging.getLogger(__name__)

ICON_URL_PREFIX = "/assets/icons/"
RESOLVE_TIMEOUT = 30
NO_STORE = {"Cache-Control": "no-store"}


class ResolveIconRequest(BaseModel):
    url: str
    refresh: bool = False


class ResolveIconResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str = ""
    icon_url: str = Field("", alias="iconUrl")
    icon_path: str = Field("", alias="iconPath")
    icon_source: str = Field("", alias="iconSource")


def icon_url_from_path(icon_path: str) -> str:
    if not icon_path:
        return ""
    return ICON_URL_PREFIX + icon_path


@lru_cache(maxsize=1)
def get_fetcher() -> BoundedFetcher:
    return BoundedFetcher()


def get_icon_resolver(config: Config = Depends(get_config)) -> IconResolver:
    return IconResolver(config.icons_dir, fetcher=get_fetcher())


@router.post("/api/icon/resolve", response_model=ResolveIconResponse)
async def resolve_icon(
    payload: ResolveIconRequest,
    request: Request,
    db: Session = Depends(get_db),
    resolver: IconResolver = Depends(get_icon_resolver),
    config: Config = Depends(get_config),
):
    budget = FetchBudget.start(RESOLVE_TIMEOUT)
    return await run_until_disconnect(request, budget, _resolve_icon, payload, db, resolver, config, budget)


def _resolve_icon(
    payload: ResolveIconRequest, db: Session, resolver: IconResolver, config: Config, budget: FetchBudget
) -> ResolveIconResponse:
    page_url = payload.url.strip()
    if not page_url:
        raise HTTPException(status_code=400, detail="url required")

    store = IconCacheStore(db)
    cache_key = icon_cache_key(page_url)
    if payload.refresh:
        store.delete(cache_key)
    else:
        entry = store.get(cache_key)
        if entry and AssetWriter(config.icons_dir).existing(entry.stored_path):
            logger.info(f"Icon cache hit for {page_url}: {entry.stored_path}")
            return ResolveIconResponse(
                icon_url=icon_url_from_path(entry.stored_path),
                icon_path=entry.stored_path,
                icon_source=entry.provenance,
            )

    try:
        result = resolver.resolve(page_url, budget=budget)
    except InvalidInput as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ResolutionFailed as e:
        logger.warning(f"Icon resolution failed for {page_url}: {e}")
        raise HTTPException(status_code=502, detail=str(e))
    except WriteError as e:
        logger.error(f"Could not store icon for {page_url}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="failed to store icon")

    if result.icon_path:
        store.set(cache_key, result.icon_path, result.icon_source)
    return ResolveIconResponse(
        title=result.title,
        icon_url=icon_url_from_path(result.icon_path),
        icon_path=result.icon_path,
        icon_source=result.icon_source,
    )


@router.get(ICON_URL_PREFIX + "{name}")
def get_icon_asset(name: str, config: Config = Depends(get_config)):
    path = AssetWriter(config.icons_dir).existing(name)
    if path is None:
        raise HTTPException(status_code=404, detail="Icon not found")
    return FileResponse(path, headers=NO_STORE)
