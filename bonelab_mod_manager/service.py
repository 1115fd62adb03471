"""Service layer - sync logic behind the CLI, usable programmatically."""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable

from rich.progress import Progress

from .api import ModioAPI, ModioAPIError, ModioAuthError
from .catalog import RemoteCatalogEntry
from .config import ConfigurationError, Settings
from .downloader import Downloader
from .installer import InstallPipeline, InstallResult, Outcome
from .inventory import InstalledItem, scan_mod_folder, syncable_items
from .ledger import SubscriptionLedger
from .reconcile import ReconcilePlan, reconcile
from .retry import Retrier, RetryState

# progress callback: (event_type, percentage 0-1, message)
ProgressCallback = Callable[[str, float, str], None]

logger = logging.getLogger(__name__)


class AuthenticationError(Exception):
    """Raised when mod.io rejects the login or the saved token."""

    pass


@dataclass
class ActionSummary:
    action: str
    completed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[tuple[str, str]] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.completed) + len(self.skipped) + len(self.failed)

    def record(self, result: InstallResult) -> None:
        if result.outcome is Outcome.DONE:
            self.completed.append(result.name)
        elif result.outcome is Outcome.SKIPPED:
            self.skipped.append(result.name)
        else:
            self.failed.append((result.name, str(result.error)))


def _noop_progress(event: str, pct: float, msg: str) -> None:
    pass


class SyncService:
    """Keeps one BONELAB mod folder in sync with the user's mod.io account."""

    def __init__(
        self,
        settings: Settings,
        api: ModioAPI | None = None,
        progress: ProgressCallback | None = None,
        sleep: Callable[[float], None] = time.sleep,
        download_progress: Progress | None = None,
    ):
        self.settings = settings
        self._api = api
        self._pipeline: InstallPipeline | None = None
        self.progress = progress or _noop_progress
        self.download_progress = download_progress
        self.retrier = Retrier(sleep=sleep, on_retry=self._on_retry)
        self.ledger = SubscriptionLedger(settings.ledger_path)
        self._event = ""
        self._pct = 0.0
        self._message = ""

    @property
    def api(self) -> ModioAPI:
        if self._api is None:
            self._api = ModioAPI(
                self.settings.require_api_key(),
                access_token=self.settings.load_token(),
                base_url=self.settings.base_url,
            )
        return self._api

    @property
    def pipeline(self) -> InstallPipeline:
        if self._pipeline is None:
            self._pipeline = InstallPipeline(
                api=self.api,
                downloader=Downloader(self.api, progress=self.download_progress),
                mod_dir=self.settings.require_mod_folder(),
                cache_dir=self.settings.cache_dir,
                game_id=self.settings.game_id,
                platform=self.settings.platform,
                retrier=self.retrier,
            )
        return self._pipeline

    def _report(self, event: str, pct: float, message: str) -> None:
        self._event, self._pct, self._message = event, pct, message
        self.progress(event, pct, message)

    def _on_retry(self, state: RetryState) -> None:
        self.progress(self._event, self._pct, f"{self._message}, error: {state.last_error}")

    # -- setup --

    def authenticate(self, prompt_code: Callable[[], str], email: str | None = None) -> str:
        """
        Make sure the API client holds a valid access token.

        A saved token is used as is. Otherwise a security code is emailed,
        read with ``prompt_code`` and exchanged; a new token is only saved once
        mod.io accepts it for ``/me``. Returns the mod.io username.
        """
        token = self.settings.load_token()
        fresh = False
        if token:
            self.api.set_token(token)
        else:
            email = email or self.settings.email
            if not email:
                raise ConfigurationError("No saved access token; pass --email to log in.")
            try:
                self.api.request_code(email)
                token = self.api.exchange_code(prompt_code())
            except ModioAPIError as e:
                raise AuthenticationError(f"Login failed: {e}") from e
            fresh = True

        try:
            user = self.retrier(self.api.current_user)
        except ModioAuthError as e:
            raise AuthenticationError(
                f"mod.io rejected the access token ({e}). Run 'logout' and log in again."
            ) from e
        if fresh:
            self.settings.save_token(token)
        return user.get("username", "")

    def load_inventory(self) -> list[InstalledItem]:
        """Scan the mod folder and load the subscription ledger."""
        items = scan_mod_folder(self.settings.require_mod_folder())
        self.ledger.load()
        return items

    # -- planning --

    def fetch_subscriptions(self) -> list[RemoteCatalogEntry]:
        game_id = self.settings.game_id
        return self.retrier(lambda: self.api.get_subscriptions(game_id))

    def plan(
        self,
        items: list[InstalledItem],
        check_updates: bool = True,
        subscriptions: list[RemoteCatalogEntry] | None = None,
    ) -> ReconcilePlan:
        """
        Reconcile local pallets with the subscription list.

        With ``check_updates``, installed mods missing from the subscription
        list are looked up one by one so they can still be updated. Lookups
        that fail are logged and the mod is left alone. ``subscriptions``
        reuses a listing already fetched in this run.
        """
        if subscriptions is None:
            subscriptions = self.fetch_subscriptions()
        remote = list(subscriptions)
        if check_updates:
            known = {entry.id for entry in remote}
            for item in syncable_items(items):
                if item.remote_mod_id in known:
                    continue
                try:
                    entry = self.retrier(
                        lambda mod_id=item.remote_mod_id: self.api.get_mod(
                            self.settings.game_id, mod_id
                        )
                    )
                except ModioAPIError as e:
                    logger.warning("Skipping %s: %s", item.title, e)
                    continue
                known.add(entry.id)
                remote.append(entry)
        return reconcile(items, remote, self.ledger)

    # -- actions --

    def subscribe_all(
        self,
        items: list[InstalledItem],
        subscriptions: list[RemoteCatalogEntry] | None = None,
    ) -> ActionSummary:
        """Subscribe to every installed mod.io pallet not yet subscribed."""
        if subscriptions is None:
            subscriptions = self.fetch_subscriptions()
        plan = reconcile(items, subscriptions, self.ledger)
        summary = ActionSummary("subscribe")
        total = len(plan.to_subscribe) or 1
        for i, item in enumerate(plan.to_subscribe):
            self._report("subscribe", i / total, f"subscribing to {item.local_path.name}")
            try:
                self.retrier(
                    lambda mod_id=item.remote_mod_id: self.api.subscribe(
                        self.settings.game_id, mod_id
                    )
                )
            except ModioAPIError as e:
                logger.error("Could not subscribe to %s: %s", item.title, e)
                summary.failed.append((item.title, str(e)))
                continue
            self.ledger.mark_subscribed(item.local_path)
            summary.completed.append(item.title)
        self.ledger.save()
        self._report("subscribe", 1.0, "done")
        return summary

    def update_all(self, items: list[InstalledItem], plan: ReconcilePlan | None = None) -> ActionSummary:
        """Update every installed pallet whose mod.io file is newer."""
        plan = plan or self.plan(items, check_updates=True)
        summary = ActionSummary("update")
        total = len(plan.to_update) or 1
        for i, action in enumerate(plan.to_update):
            self._report("update", i / total, f"Updating {action.item.barcode}")
            summary.record(self.pipeline.update(action.item, action.entry))
        self._report("update", 1.0, "done")
        return summary

    def install_all_subscribed(
        self, items: list[InstalledItem], plan: ReconcilePlan | None = None
    ) -> ActionSummary:
        """Install every subscribed mod that has no pallet in the mod folder."""
        plan = plan or self.plan(items, check_updates=False)
        summary = ActionSummary("install")
        summary.skipped.extend(entry.name for entry in plan.skipped)
        total = len(plan.to_install) or 1
        for i, entry in enumerate(plan.to_install):
            self._report("install", i / total, entry.name)
            summary.record(self.pipeline.install(entry))
        self._report("install", 1.0, "done")
        return summary

    def sync(
        self,
        items: list[InstalledItem],
        subscribe: bool = False,
        update: bool = False,
        install: bool = False,
    ) -> list[ActionSummary]:
        """Run the selected actions in order: subscribe, update, install."""
        summaries = []
        if not (subscribe or update or install):
            return summaries
        subscriptions = self.fetch_subscriptions()
        if subscribe:
            summaries.append(self.subscribe_all(items, subscriptions))
        plan = None
        if update or install:
            plan = self.plan(items, check_updates=update, subscriptions=subscriptions)
        if update:
            summaries.append(self.update_all(items, plan))
        if install:
            summaries.append(self.install_all_subscribed(items, plan))
        return summaries
