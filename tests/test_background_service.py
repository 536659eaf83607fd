import json
import os
import time

import pytest

from hearth.errors import FetchError, InvalidInput, ProviderError
from hearth.services.background_provider import BING_ARCHIVE_URL, BackgroundProviderResolver
from hearth.services.background_service import (
    KV_BACKGROUND_INTERVAL,
    KV_BACKGROUND_PROVIDER,
    BackgroundService,
)
from hearth.services.cache_store import BackgroundCacheStore, SettingsStore
from hearth.services.default_background import DEFAULT_BACKGROUND_NAME
from hearth.services.freshness import BackgroundProvider

BING_JSON = json.dumps({"images": [{"url": "/th?id=OHR.Test.jpg"}]})
BING_IMAGE_URL = "https://www.bing.com/th?id=OHR.Test.jpg"
JPEG = b"\xff\xd8\xff\xe0" + b"jpeg-bytes" * 10


def serve_bing(fetcher, idx=0, image=JPEG):
    fetcher.add_json(BING_ARCHIVE_URL.format(idx=idx), BING_JSON)
    fetcher.add_image(BING_IMAGE_URL, image, content_type="image/jpeg")


def age(path, seconds):
    then = time.time() - seconds
    os.utime(path, (then, then))


def test_default_provider_serves_generated_image(background_service, db, fetcher, config):
    path = background_service.image_for_request(db)
    assert path == config.cache_dir / DEFAULT_BACKGROUND_NAME
    assert path.stat().st_size > 0
    assert fetcher.calls == []


def test_miss_fetches_and_records(background_service, db, fetcher, config):
    SettingsStore(db).set(KV_BACKGROUND_PROVIDER, "bing_daily")
    serve_bing(fetcher)

    path = background_service.image_for_request(db)

    assert path.parent == config.cache_dir
    assert path.suffix == ".jpg"
    assert path.read_bytes() == JPEG
    assert BackgroundCacheStore(db).get("bg:bing_daily").stored_path == path.name


def test_fresh_file_is_served_without_fetching(background_service, db, fetcher):
    SettingsStore(db).set(KV_BACKGROUND_PROVIDER, "bing_daily")
    serve_bing(fetcher)
    first = background_service.image_for_request(db)
    fetcher.calls.clear()

    assert background_service.image_for_request(db) == first
    assert fetcher.calls == []


def test_stale_daily_image_is_refetched(background_service, db, fetcher):
    settings = SettingsStore(db)
    settings.set(KV_BACKGROUND_PROVIDER, "bing")
    settings.set(KV_BACKGROUND_INTERVAL, "48h")
    serve_bing(fetcher)
    first = background_service.image_for_request(db)
    age(first, 25 * 3600)
    serve_bing(fetcher, image=JPEG + b"tomorrow")

    second = background_service.image_for_request(db)

    assert second != first
    assert second.read_bytes().endswith(b"tomorrow")


def test_row_pointing_at_missing_file_is_a_miss(background_service, db, fetcher):
    SettingsStore(db).set(KV_BACKGROUND_PROVIDER, "bing_daily")
    BackgroundCacheStore(db).set("bg:bing_daily", "deleted.jpg")
    serve_bing(fetcher)

    path = background_service.image_for_request(db)

    assert path.name != "deleted.jpg"
    assert path.exists()


def test_remote_failure_serves_default(background_service, db, config):
    SettingsStore(db).set(KV_BACKGROUND_PROVIDER, "bing_daily")
    path = background_service.image_for_request(db)
    assert path == config.cache_dir / DEFAULT_BACKGROUND_NAME


def test_remote_failure_without_default_raises(config, fetcher, session_factory, db):
    service = BackgroundService(
        config.cache_dir,
        resolver=BackgroundProviderResolver(config.cache_dir, fetcher=fetcher),
        session_factory=session_factory,
        default_image=lambda: None,
    )
    SettingsStore(db).set(KV_BACKGROUND_PROVIDER, "bing_daily")
    with pytest.raises(ProviderError):
        service.image_for_request(db)


def test_unknown_stored_provider_behaves_like_bing_daily(background_service, db):
    SettingsStore(db).set(KV_BACKGROUND_PROVIDER, "flickr")
    assert background_service.current_selection(db).provider is BackgroundProvider.BING_DAILY


def test_refresh_ignores_freshness(background_service, db, fetcher):
    SettingsStore(db).set(KV_BACKGROUND_PROVIDER, "bing_daily")
    serve_bing(fetcher)
    background_service.image_for_request(db)
    fetcher.calls.clear()

    result = background_service.refresh(db)

    assert result.mime_type == "image/jpeg"
    assert BING_IMAGE_URL in fetcher.calls


def test_refresh_with_explicit_provider(background_service, db, fetcher):
    fetcher.add_json(BING_ARCHIVE_URL.format(idx=3), BING_JSON)
    fetcher.add_image(BING_IMAGE_URL, JPEG, content_type="image/jpeg")
    background_service.resolver.randint = lambda a, b: 3

    result = background_service.refresh(db, provider="bing_random")

    assert BackgroundCacheStore(db).get("bg:bing_random").stored_path == result.file_name


def test_refresh_default_is_a_no_op(background_service, db, fetcher):
    assert background_service.refresh(db, provider="default") is None
    assert fetcher.calls == []


def test_refresh_unknown_provider(background_service, db):
    with pytest.raises(InvalidInput):
        background_service.refresh(db, provider="flickr")


def test_refresh_propagates_fetch_errors(background_service, db, fetcher):
    fetcher.add_json(BING_ARCHIVE_URL.format(idx=0), BING_JSON)
    with pytest.raises(FetchError):
        background_service.refresh(db, provider="bing_daily")


def test_bing_archive_without_images(background_service, db, fetcher):
    fetcher.add_json(BING_ARCHIVE_URL.format(idx=0), json.dumps({"images": []}))
    with pytest.raises(ProviderError):
        background_service.refresh(db, provider="bing_daily")


def test_save_selection_normalizes(background_service, db):
    selection = background_service.save_selection(db, "bing", " mountains ", "")
    assert selection.provider is BackgroundProvider.BING_DAILY
    assert selection.query == "mountains"
    assert selection.interval_text == "0"


def test_prefetch_warms_cache(background_service, db, fetcher):
    serve_bing(fetcher)
    background_service.prefetch("bing_daily")
    assert BackgroundCacheStore(db).get("bg:bing_daily") is not None


def test_prefetch_swallows_failures(background_service, db):
    background_service.prefetch("bing_daily")
    background_service.prefetch("flickr")
    assert BackgroundCacheStore(db).get("bg:bing_daily") is None


def test_provider_urls(config, fetcher):
    resolver = BackgroundProviderResolver(config.cache_dir, fetcher=fetcher)
    assert resolver.resolve_unsplash_url("") == "https://source.unsplash.com/1920x1080?random=1"
    assert resolver.resolve_unsplash_url("snowy peaks") == "https://source.unsplash.com/1920x1080?snowy+peaks"
    assert resolver.resolve_picsum_url().startswith("https://picsum.photos/1920/1080?rand=")
    with pytest.raises(ProviderError):
        resolver.resolve_url(BackgroundProvider.DEFAULT)


def test_manual_interval_serves_old_file_without_fetching(background_service, db, fetcher, config):
    SettingsStore(db).set(KV_BACKGROUND_PROVIDER, "picsum")
    SettingsStore(db).set(KV_BACKGROUND_INTERVAL, "0")
    name = background_service.files.write(JPEG, "bg:picsum", ".jpg")
    BackgroundCacheStore(db).set("bg:picsum", name)
    age(config.cache_dir / name, 10 * 24 * 3600)

    assert background_service.image_for_request(db) == config.cache_dir / name
    assert fetcher.calls == []


def test_refresh_with_unknown_stored_provider_uses_bing_daily(background_service, db, fetcher):
    SettingsStore(db).set(KV_BACKGROUND_PROVIDER, "flickr")
    serve_bing(fetcher)

    result = background_service.refresh(db)

    assert BackgroundCacheStore(db).get("bg:bing_daily").stored_path == result.file_name
