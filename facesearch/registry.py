"""Model registry with single-flight loading per detector tier.

Each tier moves through ``UNLOADED -> LOADING -> LOADED`` (or ``FAILED``).
While a tier is LOADING, every caller waits on the same Future, so N
concurrent ``ensure_loaded`` calls trigger exactly one loader call. A
failed load leaves the tier FAILED; the next call starts a fresh attempt.

Loaded models are read-only and shared by all concurrent inferences; the
lock only guards the per-tier state.
"""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional

from facesearch.exceptions import ModelLoadFailure, ModelLoadTimeout
from facesearch.interfaces import Tier, TierModels
from facesearch.logging_config import get_logger

logger = get_logger(__name__)

Loader = Callable[[Tier], TierModels]


class TierState(str, Enum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    LOADED = "loaded"
    FAILED = "failed"


@dataclass
class _TierEntry:
    state: TierState
    future: Future
    error: Optional[BaseException] = None


class ModelRegistry:
    """Loads each detector tier at most once, safely under concurrency.

    Attributes:
        load_timeout: Default seconds a caller waits for a load (None = forever)
        warmup: Run a dummy inference after the precise tier loads

    Example:
        >>> registry = ModelRegistry(make_loader(config), load_timeout=120)
        >>> models = registry.ensure_loaded(Tier.PRECISE)
        >>> registry.is_loaded(Tier.PRECISE)
        True
    """

    def __init__(
        self,
        loader: Loader,
        *,
        load_timeout: Optional[float] = None,
        warmup: bool = True,
        max_workers: int = 2,
    ):
        self._loader = loader
        self.load_timeout = load_timeout
        self.warmup = warmup

        self._lock = threading.Lock()
        self._entries: Dict[Tier, _TierEntry] = {}
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="model-loader"
        )
        self._closed = False

    def ensure_loaded(self, tier: Tier, timeout: Optional[float] = None) -> TierModels:
        """Return the models of ``tier``, loading them if needed.

        Args:
            tier: Tier to load
            timeout: Seconds to wait; defaults to ``load_timeout``

        Raises:
            ModelLoadFailure: If the load failed (same error for every waiter).
            ModelLoadTimeout: If waiting exceeded the timeout. The load keeps
                              running and a later call may pick up its result.
        """
        tier = Tier(tier)
        timeout = self.load_timeout if timeout is None else timeout

        with self._lock:
            if self._closed:
                raise ModelLoadFailure(tier.value, "registry is shut down")

            entry = self._entries.get(tier)
            if entry is not None and entry.state == TierState.LOADED:
                return entry.future.result()

            if entry is None or entry.state == TierState.FAILED:
                future = self._executor.submit(self._load, tier)
                entry = _TierEntry(state=TierState.LOADING, future=future)
                self._entries[tier] = entry
                logger.info(f"Loading {tier.value} tier...")
            else:
                logger.debug(f"Joining in-flight load of {tier.value} tier")

        try:
            return entry.future.result(timeout=timeout)
        except FutureTimeoutError:
            logger.warning(f"Timed out after {timeout}s waiting for {tier.value} tier")
            raise ModelLoadTimeout(tier.value, timeout) from None

    def _load(self, tier: Tier) -> TierModels:
        try:
            models = self._loader(tier)
        except Exception as e:
            logger.error(f"Failed to load {tier.value} tier: {e}", exc_info=True)
            error = ModelLoadFailure(tier.value, str(e))
            with self._lock:
                entry = self._entries.get(tier)
                if entry is not None:
                    entry.state = TierState.FAILED
                    entry.error = error
            raise error from e

        with self._lock:
            entry = self._entries.get(tier)
            if entry is not None:
                entry.state = TierState.LOADED

        logger.info(f"{tier.value.capitalize()} tier ready ({models.model_version})")

        if tier == Tier.PRECISE and self.warmup:
            self._schedule_warmup(models)

        return models

    def _schedule_warmup(self, models: TierModels) -> None:
        try:
            self._executor.submit(self._warm_up, models)
        except RuntimeError:
            # Executor already shut down
            logger.debug("Skipping warm-up, registry is shutting down")

    @staticmethod
    def _warm_up(models: TierModels) -> None:
        try:
            models.warm_up()
            logger.debug(f"Warm-up finished for {models.tier.value} tier")
        except Exception as e:
            logger.warning(f"Warm-up of {models.tier.value} tier failed: {e}")

    def is_loaded(self, tier: Tier) -> bool:
        """Non-blocking check whether ``tier`` is ready for inference."""
        return self.state(tier) == TierState.LOADED

    def state(self, tier: Tier) -> TierState:
        with self._lock:
            entry = self._entries.get(Tier(tier))
            return entry.state if entry is not None else TierState.UNLOADED

    def shutdown(self, wait: bool = False) -> None:
        """Drop loaded models and stop the loader threads."""
        with self._lock:
            self._closed = True
            self._entries.clear()
        self._executor.shutdown(wait=wait)
        logger.info("Model registry shut down")

    def __enter__(self) -> ModelRegistry:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()

    def __repr__(self) -> str:
        states = {tier.value: self.state(tier).value for tier in Tier}
        return f"ModelRegistry({states})"
