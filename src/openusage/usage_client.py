# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Process-level entry point that wires the library together.

One UsageClient owns one set of host adapters, one credential store, one
token manager and one orchestrator. Nothing is shared through module
globals, so several clients (e.g. in tests) never see each other's state.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

from .auth.token_manager import TokenLifecycleManager
from .core.types import ProbeBatch, ProviderState
from .credentials.store import CredentialStore
from .host.context import Clock, HostServices
from .host.files import FileStore
from .host.http import HttpClient
from .host.secrets import SecretStore, SystemSecretStore
from .orchestrator.background_refresher import AutoRefresher
from .orchestrator.orchestrator import ProbeOrchestrator
from .orchestrator.runner import ProbeBatchRunner
from .providers import create_providers
from .providers.probe_engine import ProbeEngine
from .providers.provider_interface import UsageProvider
from .settings import SETTINGS_FILENAME, PluginSettings, SettingsStore, normalize_plugin_settings
from .utils.paths import get_data_file

lib_logger = logging.getLogger("openusage")


class UsageClient:
    """
    Usage probing for a set of providers.

    Args:
        providers: Provider instances; every registered provider when None
        data_root: Root for settings and provider state (OPENUSAGE_DATA_DIR,
            or ~/.openusage, when None)
        http: HTTP adapter (a default redirect-free httpx client when None)
        secrets: Secret store adapter (the platform keychain when None)
        files: File adapter
        clock: Time source
        probe_timeout: Supervising timeout per probe, in seconds
        max_concurrent: Upper bound on concurrent probes
        cooldown_ms: Manual refresh cooldown
    """

    def __init__(
        self,
        providers: Optional[Sequence[UsageProvider]] = None,
        data_root: Optional[Union[str, Path]] = None,
        http: Optional[HttpClient] = None,
        secrets: Optional[SecretStore] = None,
        files: Optional[FileStore] = None,
        clock: Optional[Clock] = None,
        probe_timeout: Optional[float] = None,
        max_concurrent: Optional[int] = None,
        cooldown_ms: Optional[int] = None,
    ):
        self.clock = clock or Clock()
        self.data_root = Path(data_root) if data_root is not None else None
        self.host = HostServices(
            http=http or HttpClient(),
            secrets=secrets or SystemSecretStore(),
            files=files or FileStore(),
            clock=self.clock,
            data_root=self.data_root,
        )
        self.store = CredentialStore()
        self.tokens = TokenLifecycleManager(self.store)
        self.engine = ProbeEngine(self.store, self.tokens)
        self.runner = ProbeBatchRunner(
            self.engine,
            self.host,
            providers if providers is not None else create_providers(),
            probe_timeout=probe_timeout,
            max_concurrent=max_concurrent,
        )

        self.settings_store = SettingsStore(get_data_file(SETTINGS_FILENAME, self.data_root))
        self.plugin_settings = normalize_plugin_settings(
            self.settings_store.load_plugin_settings(), self.runner.provider_ids
        )
        self.orchestrator = ProbeOrchestrator(
            self.runner,
            clock=self.clock,
            enabled_ids=self.enabled_ids,
            cooldown_ms=cooldown_ms,
        )
        self._auto_refresher: Optional[AutoRefresher] = None

        lib_logger.info(
            f"UsageClient ready with {len(self.runner.provider_ids)} provider(s); "
            f"enabled: {', '.join(self.enabled_ids()) or 'none'}"
        )

    # =========================================================================
    # SETTINGS
    # =========================================================================

    def enabled_ids(self) -> List[str]:
        return self.plugin_settings.enabled_ids()

    def set_provider_enabled(self, provider_id: str, enabled: bool) -> Optional[ProbeBatch]:
        """
        Enable or disable a provider and persist the choice.

        Enabling starts a batch for just that provider; disabling probes nothing.
        """
        if provider_id not in self.runner.provider_ids:
            raise KeyError(f"Unknown provider: {provider_id}")
        disabled = [pid for pid in self.plugin_settings.disabled if pid != provider_id]
        if not enabled:
            disabled.append(provider_id)
        self.plugin_settings = PluginSettings(
            order=list(self.plugin_settings.order), disabled=disabled
        )
        self.settings_store.save_plugin_settings(self.plugin_settings)
        if enabled:
            return self.orchestrator.enable_provider(provider_id)
        return None

    # =========================================================================
    # PROBING
    # =========================================================================

    @property
    def states(self) -> Dict[str, ProviderState]:
        return self.orchestrator.states

    async def refresh(
        self, provider_ids: Optional[Sequence[str]] = None, manual: bool = False
    ) -> Dict[str, ProviderState]:
        """
        Run one batch to completion and return the provider states.

        A manual refresh honors the cooldown and may start no batch at all.
        """
        if manual:
            self.orchestrator.request_manual_refresh(provider_ids)
        else:
            self.orchestrator.start_batch(provider_ids)
        await self.runner.wait_idle()
        return self.orchestrator.states

    def start_auto_refresh(
        self, interval: Optional[float] = None, run_on_start: bool = False
    ) -> AutoRefresher:
        """Start the periodic refresh; the saved interval wins over the environment default."""
        if self._auto_refresher is None:
            if interval is None:
                interval = self.settings_store.load_auto_refresh_interval()
            self._auto_refresher = AutoRefresher(
                self.orchestrator, interval=interval, run_on_start=run_on_start
            )
        self._auto_refresher.start()
        return self._auto_refresher

    async def aclose(self) -> None:
        if self._auto_refresher is not None:
            await self._auto_refresher.stop()
        await self.runner.aclose()
        self.orchestrator.close()
        await self.host.http.aclose()

    async def __aenter__(self) -> "UsageClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
