import pytest

from hearth.services.cache_store import BackgroundCacheStore, IconCacheStore, SettingsStore


def test_icon_row_round_trip(db):
    store = IconCacheStore(db)
    assert store.get("k") is None

    entry = store.set("k", "abc.png", "fallback")

    assert entry.stored_path == "abc.png"
    assert entry.provenance == "fallback"
    assert entry.recorded_at > 0
    assert store.get("k").stored_path == "abc.png"


def test_set_overwrites_existing_row(db):
    store = IconCacheStore(db)
    store.set("k", "old.ico", "site")
    store.set("k", "new.png", "fallback")

    entry = store.get("k")
    assert entry.stored_path == "new.png"
    assert entry.provenance == "fallback"


def test_delete(db):
    store = IconCacheStore(db)
    store.set("k", "abc.png")
    assert store.delete("k") is True
    assert store.get("k") is None
    assert store.delete("k") is False


@pytest.mark.parametrize("bad", ["", "icons/abc.png", "/tmp/abc.png", "..", "..\\abc.png"])
def test_rows_only_hold_bare_filenames(db, bad):
    with pytest.raises(ValueError):
        IconCacheStore(db).set("k", bad)
    assert IconCacheStore(db).get("k") is None


def test_background_rows(db):
    store = BackgroundCacheStore(db)
    store.set("bg:bing_daily", "f00.jpg")
    entry = store.get("bg:bing_daily")
    assert entry.stored_path == "f00.jpg"
    assert IconCacheStore(db).get("bg:bing_daily") is None


def test_settings(db):
    settings = SettingsStore(db)
    assert settings.get("settings.background.provider", "default") == "default"
    settings.set("settings.background.provider", "picsum")
    assert settings.get("settings.background.provider", "default") == "picsum"
    settings.set("settings.background.provider", "")
    assert settings.get("settings.background.provider", "default") == "default"
