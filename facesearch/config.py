"""Configuration management for the face search subsystem.

Settings are read from environment variables (optionally from a ``.env``
file) into a single ``Config`` dataclass. The match filter constants are
tied to one embedding model's distance distribution, so they live here and
not in code.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Tuple

from dotenv import load_dotenv

load_dotenv()

VALID_BACKENDS = ("insightface", "dlib")
VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# Match filter defaults per backend: (search_ceiling, margin, hard_cap) in
# cosine distance. ArcFace recognition accepts similarity >= 0.35, i.e.
# distance < 0.65; the 128-D dlib descriptors are far more compact.
MATCH_DEFAULTS = {
    "insightface": (0.65, 0.2, 0.65),
    "dlib": (0.2, 0.08, 0.25),
}


def _parse_ladder(name: str, raw: str) -> Tuple[float, ...]:
    """Parse a comma-separated, strictly decreasing threshold list."""
    try:
        values = tuple(float(part) for part in raw.split(",") if part.strip())
    except ValueError as e:
        raise ValueError(f"{name} must be a comma-separated list of floats, got '{raw}'") from e

    if not values:
        raise ValueError(f"{name} must contain at least one threshold")

    for value in values:
        if not 0.0 < value <= 1.0:
            raise ValueError(f"{name} thresholds must be in (0, 1], got {value}")

    for higher, lower in zip(values, values[1:]):
        if lower >= higher:
            raise ValueError(f"{name} must be strictly decreasing, got {values}")

    return values


def _positive_float(name: str, default: str) -> float:
    value = float(os.getenv(name, default))
    if value <= 0:
        raise ValueError(f"{name} must be > 0, got {value}")
    return value


@dataclass
class Config:
    """Application configuration loaded from environment variables.

    The match filter distances default per backend (see MATCH_DEFAULTS).

    Attributes:
        backend: Detector/embedder family ("insightface" or "dlib")
        ctx_id: Device context ID (-1 for CPU, 0+ for GPU)
        fast_model_pack: Model pack for the fast tier
        precise_model_pack: Model pack for the precise tier
        fast_max_side: Longest image side before fast-tier detection
        precise_max_side: Longest image side before precise-tier detection
        confidence_ladder: Detection thresholds tried in order while indexing
        query_confidence_ladder: Detection thresholds tried for a query selfie
        match_limit: Number of candidates requested from vector search (K)
        search_ceiling: Permissive distance ceiling passed to vector search
        match_margin: Margin added to the best distance
        match_hard_cap: Absolute distance cap (exclusive)
        model_load_timeout: Seconds a caller waits for a tier to load
        search_timeout: Seconds allowed per vector search call
        search_retries: Additional vector search attempts after a failure
        search_backoff: Initial backoff in seconds, doubled per retry
        model_version: Explicit model version tag ("" derives one)
        warmup: Run a dummy inference after the precise tier loads
        log_level: Logging level
    """

    backend: str
    ctx_id: int
    fast_model_pack: str
    precise_model_pack: str
    fast_max_side: int
    precise_max_side: int
    confidence_ladder: Tuple[float, ...]
    query_confidence_ladder: Tuple[float, ...]
    match_limit: int
    search_ceiling: float
    match_margin: float
    match_hard_cap: float
    model_load_timeout: float
    search_timeout: float
    search_retries: int
    search_backoff: float
    model_version: str
    warmup: bool
    log_level: str

    # Paths
    data_dir: Path
    models_dir: Path

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Returns:
            Config instance with values from environment or defaults.

        Raises:
            ValueError: If an environment variable holds an invalid value.
        """
        project_root = Path(__file__).parent.parent

        backend = os.getenv("BACKEND", "insightface").lower()
        if backend not in VALID_BACKENDS:
            raise ValueError(f"BACKEND must be one of {VALID_BACKENDS}, got {backend}")

        ctx_id = int(os.getenv("CTX_ID", "-1"))

        fast_model_pack = os.getenv("FAST_MODEL_PACK", "buffalo_s")
        precise_model_pack = os.getenv("PRECISE_MODEL_PACK", "buffalo_l")

        fast_max_side = int(os.getenv("FAST_MAX_SIDE", "640"))
        precise_max_side = int(os.getenv("PRECISE_MAX_SIDE", "1280"))
        if fast_max_side < 32 or precise_max_side < 32:
            raise ValueError("FAST_MAX_SIDE and PRECISE_MAX_SIDE must be >= 32")
        if fast_max_side > precise_max_side:
            raise ValueError(
                f"FAST_MAX_SIDE ({fast_max_side}) must not exceed "
                f"PRECISE_MAX_SIDE ({precise_max_side})"
            )

        confidence_ladder = _parse_ladder(
            "CONFIDENCE_LADDER", os.getenv("CONFIDENCE_LADDER", "0.5,0.3,0.1")
        )
        query_confidence_ladder = _parse_ladder(
            "QUERY_CONFIDENCE_LADDER", os.getenv("QUERY_CONFIDENCE_LADDER", "0.5")
        )

        # Match filter
        match_limit = int(os.getenv("MATCH_LIMIT", "50"))
        if match_limit < 1:
            raise ValueError(f"MATCH_LIMIT must be >= 1, got {match_limit}")

        default_ceiling, default_margin, default_cap = MATCH_DEFAULTS[backend]
        search_ceiling = float(os.getenv("SEARCH_CEILING", str(default_ceiling)))
        match_margin = float(os.getenv("MATCH_MARGIN", str(default_margin)))
        match_hard_cap = float(os.getenv("MATCH_HARD_CAP", str(default_cap)))
        for name, value in (
            ("SEARCH_CEILING", search_ceiling),
            ("MATCH_MARGIN", match_margin),
            ("MATCH_HARD_CAP", match_hard_cap),
        ):
            if value < 0:
                raise ValueError(f"{name} must be >= 0, got {value}")

        # Timeouts and retries
        model_load_timeout = _positive_float("MODEL_LOAD_TIMEOUT", "120")
        search_timeout = _positive_float("SEARCH_TIMEOUT", "10")
        search_retries = int(os.getenv("SEARCH_RETRIES", "2"))
        if search_retries < 0:
            raise ValueError(f"SEARCH_RETRIES must be >= 0, got {search_retries}")
        search_backoff = float(os.getenv("SEARCH_BACKOFF", "0.5"))
        if search_backoff < 0:
            raise ValueError(f"SEARCH_BACKOFF must be >= 0, got {search_backoff}")

        model_version = os.getenv("MODEL_VERSION", "").strip()
        warmup = bool(int(os.getenv("WARMUP", "1")))

        log_level = os.getenv("LOG_LEVEL", "INFO").upper()
        if log_level not in VALID_LOG_LEVELS:
            raise ValueError(f"LOG_LEVEL must be one of {VALID_LOG_LEVELS}, got {log_level}")

        data_dir = Path(os.getenv("DATA_DIR", str(project_root / "data")))
        models_dir = Path(os.getenv("MODELS_DIR", str(project_root / "models")))

        return cls(
            backend=backend,
            ctx_id=ctx_id,
            fast_model_pack=fast_model_pack,
            precise_model_pack=precise_model_pack,
            fast_max_side=fast_max_side,
            precise_max_side=precise_max_side,
            confidence_ladder=confidence_ladder,
            query_confidence_ladder=query_confidence_ladder,
            match_limit=match_limit,
            search_ceiling=search_ceiling,
            match_margin=match_margin,
            match_hard_cap=match_hard_cap,
            model_load_timeout=model_load_timeout,
            search_timeout=search_timeout,
            search_retries=search_retries,
            search_backoff=search_backoff,
            model_version=model_version,
            warmup=warmup,
            log_level=log_level,
            data_dir=data_dir,
            models_dir=models_dir,
        )

    def __repr__(self) -> str:
        """Return string representation of config."""
        return (
            f"Config(\n"
            f"  Backend: {self.backend},\n"
            f"  Device: {'GPU' if self.ctx_id >= 0 else 'CPU'}:{self.ctx_id},\n"
            f"  Packs: fast={self.fast_model_pack}, precise={self.precise_model_pack},\n"
            f"  Ladder: {self.confidence_ladder},\n"
            f"  Match: K={self.match_limit}, ceiling={self.search_ceiling}, "
            f"margin={self.match_margin}, hard_cap={self.match_hard_cap},\n"
            f"  Log Level: {self.log_level}\n"
            f")"
        )


_config: Config | None = None


def get_config() -> Config:
    """Get the process-wide config instance, loading it on first use."""
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config
