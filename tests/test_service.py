"""Tests for the sync service against an in-memory mod.io."""

import pytest

from conftest import make_entry, make_file, pallet_zip, write_installed

from bonelab_mod_manager.api import ModioAPIError, ModioAuthError, ModioRateLimited
from bonelab_mod_manager.config import ConfigurationError
from bonelab_mod_manager.service import AuthenticationError, SyncService


@pytest.fixture
def events() -> list[tuple[str, float, str]]:
    return []


@pytest.fixture
def service(settings, fake_api, sleeps, events) -> SyncService:
    return SyncService(
        settings,
        api=fake_api,
        progress=lambda event, pct, msg: events.append((event, pct, msg)),
        sleep=sleeps.append,
    )


def test_authenticate_uses_saved_token(service, settings, fake_api) -> None:
    settings.save_token("saved-token")

    assert service.authenticate(prompt_code=lambda: pytest.fail("should not prompt")) == "tester"
    assert fake_api.access_token == "saved-token"
    assert "request_code" not in fake_api.calls


def test_authenticate_needs_email_without_token(service) -> None:
    with pytest.raises(ConfigurationError, match="--email"):
        service.authenticate(prompt_code=lambda: "1234")


def test_authenticate_with_email_saves_token(service, settings, fake_api) -> None:
    username = service.authenticate(prompt_code=lambda: "1234", email="me@example.com")

    assert username == "tester"
    assert settings.load_token() == "token-for-1234"
    assert fake_api.calls[:2] == ["request_code", "exchange_code"]


def test_failed_exchange_saves_nothing(service, settings, fake_api) -> None:
    fake_api.fail("exchange_code", ModioAuthError("bad code", status_code=401))

    with pytest.raises(AuthenticationError, match="bad code"):
        service.authenticate(prompt_code=lambda: "0000", email="me@example.com")

    assert settings.load_token() is None


def test_rejected_token_is_an_authentication_error(service, settings, fake_api) -> None:
    settings.save_token("expired")
    fake_api.fail("current_user", ModioAuthError("401", status_code=401))

    with pytest.raises(AuthenticationError, match="logout"):
        service.authenticate(prompt_code=lambda: "1234")


def test_new_token_rejected_by_me_is_not_saved(service, settings, fake_api) -> None:
    fake_api.fail("current_user", ModioAuthError("401 token rejected", status_code=401))

    with pytest.raises(AuthenticationError):
        service.authenticate(prompt_code=lambda: "1234", email="me@example.com")

    assert settings.load_token() is None


def test_subscribe_all_records_ledger_per_item(service, settings, mod_dir, fake_api, sleeps) -> None:
    first = write_installed(mod_dir, "A.First", mod_id=1)
    second = write_installed(mod_dir, "B.Second", mod_id=2)
    write_installed(mod_dir, "C.Local", mod_id=None)
    items = service.load_inventory()
    fake_api.fail("subscribe", ModioRateLimited(), ModioAPIError("hidden mod", status_code=403))

    summary = service.subscribe_all(items)

    assert summary.completed == ["B.Second"]
    assert summary.failed == [("A.First", "hidden mod")]
    assert fake_api.subscribed == [2]
    assert sleeps == [0]
    assert not service.ledger.is_subscribed(first.local_path)
    assert service.ledger.is_subscribed(second.local_path)
    assert settings.ledger_path.read_text() == f"{second.local_path}\n"


def test_subscribe_all_skips_ledger_entries(service, mod_dir, fake_api) -> None:
    item = write_installed(mod_dir, "A.First", mod_id=1)
    service.ledger.mark_subscribed(item.local_path)

    summary = service.subscribe_all(service.load_inventory())

    assert summary.total == 0
    assert fake_api.subscribed == []


def test_subscribe_all_skips_mods_already_in_listing(service, mod_dir, fake_api) -> None:
    write_installed(mod_dir, "A.First", mod_id=1)
    write_installed(mod_dir, "B.Second", mod_id=2)
    fake_api.subscriptions = [make_entry(1, modfile=make_file(10))]

    summary = service.subscribe_all(service.load_inventory())

    assert summary.completed == ["B.Second"]
    assert fake_api.subscribed == [2]


def test_update_all_updates_stale_pallets(service, mod_dir, fake_api) -> None:
    write_installed(mod_dir, "ABC123", mod_id=42, updated_at=1_000_000)
    newest = make_file(600, date_added=2000)
    fake_api.subscriptions = [make_entry(42, name="Guns", modfile=newest)]
    fake_api.files[42] = [newest]
    fake_api.downloads[newest.download_url] = pallet_zip("ABC123")

    summary = service.update_all(service.load_inventory())

    assert summary.completed == ["Guns"]
    assert (mod_dir / "ABC123" / "bundles" / "content.bundle").exists()


def test_plan_looks_up_unsubscribed_installed_mods(service, mod_dir, fake_api) -> None:
    write_installed(mod_dir, "Known", mod_id=50, updated_at=0)
    write_installed(mod_dir, "Gone", mod_id=51, updated_at=0)
    fake_api.mods[50] = make_entry(50, name="Known", modfile=make_file(5))

    plan = service.plan(service.load_inventory(), check_updates=True)

    assert [a.item.barcode for a in plan.to_update] == ["Known"]
    assert plan.to_install == []
    assert fake_api.calls.count("get_mod") == 2


def test_plan_without_update_check_does_not_look_up(service, mod_dir, fake_api) -> None:
    write_installed(mod_dir, "Known", mod_id=50, updated_at=0)

    service.plan(service.load_inventory(), check_updates=False)

    assert "get_mod" not in fake_api.calls


def test_install_all_subscribed(service, mod_dir, fake_api, events) -> None:
    modfile = make_file(2)
    fake_api.subscriptions = [
        make_entry(43, name="New", modfile=modfile),
        make_entry(77, name="Empty", modfile=None),
    ]
    fake_api.downloads[modfile.download_url] = pallet_zip("Author.New")

    summary = service.install_all_subscribed(service.load_inventory())

    assert summary.completed == ["New"]
    assert summary.skipped == ["Empty"]
    assert (mod_dir / "Author.New.manifest").exists()
    assert ("install", 0.0, "New") in events
    assert events[-1] == ("install", 1.0, "done")


def test_install_failure_is_reported_not_raised(service, fake_api) -> None:
    fake_api.subscriptions = [make_entry(43, name="New", modfile=make_file(2))]
    fake_api.fail("open_download", ModioAPIError("500 boom", status_code=500))

    summary = service.install_all_subscribed([])

    assert summary.completed == []
    assert summary.failed[0][0] == "New"


def test_retry_messages_reach_progress(service, fake_api, events) -> None:
    modfile = make_file(2)
    fake_api.subscriptions = [make_entry(43, name="New", modfile=modfile)]
    fake_api.downloads[modfile.download_url] = pallet_zip("Author.New")
    fake_api.fail("open_download", ModioRateLimited(3))

    service.install_all_subscribed([])

    assert ("install", 0.0, "New, error: Rate limited. Retry after 3 seconds.") in events


def test_sync_runs_actions_in_order(service, mod_dir, fake_api) -> None:
    write_installed(mod_dir, "A.First", mod_id=1, updated_at=0)
    modfile = make_file(2)
    fake_api.subscriptions = [make_entry(43, name="New", modfile=modfile)]
    fake_api.mods[1] = make_entry(1, name="First", modfile=None)
    fake_api.downloads[modfile.download_url] = pallet_zip("Author.New")

    summaries = service.sync(service.load_inventory(), subscribe=True, update=True, install=True)

    assert [s.action for s in summaries] == ["subscribe", "update", "install"]
    assert fake_api.calls.index("get_subscriptions") < fake_api.calls.index("subscribe")
    assert fake_api.calls.count("get_subscriptions") == 1
    assert summaries[2].completed == ["New"]


def test_missing_mod_folder(settings, fake_api, tmp_path) -> None:
    settings.mod_folder = tmp_path / "nowhere"

    with pytest.raises(ConfigurationError, match="not a directory"):
        SyncService(settings, api=fake_api).load_inventory()
