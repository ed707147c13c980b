"""
Runtime settings backed by the ``system_settings`` table.

- Processing config (concurrency, pacing, retries, timeouts), re-read
  before every chunk so changes apply to running jobs
- Marketplace credentials, falling back to environment settings
- Exchange rate provider, falling back to the configured FX_RATE
"""

import logging
import math
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.ext.asyncio import async_sessionmaker

from catalog_sync.executor import RetryPolicy
from core.config import settings
from core.exceptions import ExchangeRateError
from models.system_setting import SystemSetting

logger = logging.getLogger(__name__)

PROCESSING_CONFIG_KEY = "processing_speed"
MARKETPLACE_TOKENS_KEY = "marketplace_tokens"
FX_RATE_KEY = "fx_rate"


def _clamp(value: Any, default: int, low: int, high: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return max(low, min(high, number))


@dataclass(frozen=True)
class ProcessingConfig:
    """
    Hot-reloadable processing knobs.

    Values are clamped on load:
        concurrency 1-30, batch_interval_ms 50-1000, max_retries 1-10,
        base_delay_ms 100-2000, request_timeout_ms 5000-60000
    """
    concurrency: int = 15
    batch_interval_ms: int = 100
    max_retries: int = 5
    base_delay_ms: int = 500
    request_timeout_ms: int = 30000

    @classmethod
    def from_dict(cls, raw: Optional[Dict[str, Any]]) -> "ProcessingConfig":
        raw = raw or {}
        defaults = cls()
        return cls(
            concurrency=_clamp(raw.get("concurrency"), defaults.concurrency, 1, 30),
            batch_interval_ms=_clamp(raw.get("batch_interval_ms"), defaults.batch_interval_ms, 50, 1000),
            max_retries=_clamp(raw.get("max_retries"), defaults.max_retries, 1, 10),
            base_delay_ms=_clamp(raw.get("base_delay_ms"), defaults.base_delay_ms, 100, 2000),
            request_timeout_ms=_clamp(raw.get("request_timeout_ms"), defaults.request_timeout_ms, 5000, 60000),
        )

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_retries,
            base_delay_ms=self.base_delay_ms,
            max_delay_ms=settings.MAX_RETRY_DELAY_MS,
            timeout_ms=self.request_timeout_ms,
            max_retry_after_ms=settings.MAX_RETRY_AFTER_MS,
        )


class SettingsStore:
    """
    Key-value access to ``system_settings``.

    Args:
        session_factory: Session factory; each call uses its own session
    """

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def get(self, key: str) -> Optional[Any]:
        async with self.session_factory() as session:
            setting = await session.get(SystemSetting, key)
            return setting.value if setting else None

    async def put(self, key: str, value: Any):
        async with self.session_factory() as session:
            setting = await session.get(SystemSetting, key)
            if setting is None:
                session.add(SystemSetting(key=key, value=value))
            else:
                setting.value = value
            await session.commit()

    # ------------------------------------------------------------------
    # Processing config
    # ------------------------------------------------------------------

    async def load_processing_config(self) -> ProcessingConfig:
        """Stored config (clamped), or defaults when missing or unreadable."""
        return ProcessingConfig.from_dict(await self.get(PROCESSING_CONFIG_KEY))

    async def save_processing_config(self, raw: Dict[str, Any]) -> ProcessingConfig:
        """Merge ``raw`` into the stored config, clamp and persist it."""
        current = (await self.load_processing_config()).to_dict()
        current.update({k: v for k, v in raw.items() if k in current and v is not None})
        config = ProcessingConfig.from_dict(current)
        await self.put(PROCESSING_CONFIG_KEY, config.to_dict())
        logger.info(f"Processing config updated: {config.to_dict()}")
        return config

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    async def marketplace_credentials(self) -> Tuple[Optional[str], Optional[str]]:
        """``(access_token, user_id)`` from the token store, else from settings."""
        stored = await self.get(MARKETPLACE_TOKENS_KEY) or {}
        token = stored.get("access_token") or settings.MARKETPLACE_ACCESS_TOKEN
        user_id = stored.get("user_id") or settings.MARKETPLACE_USER_ID
        return token, (str(user_id) if user_id else None)

    # ------------------------------------------------------------------
    # Exchange rate
    # ------------------------------------------------------------------

    async def exchange_rate(self) -> float:
        """
        Latest stored rate, else the configured fallback.

        Raises:
            ExchangeRateError: Neither source yields a positive rate
        """
        stored = await self.get(FX_RATE_KEY) or {}
        for candidate in (stored.get("rate"), settings.FX_RATE):
            try:
                rate = float(candidate)
            except (TypeError, ValueError):
                continue
            if math.isfinite(rate) and rate > 0:
                return rate
        raise ExchangeRateError("No exchange rate available", context={"key": FX_RATE_KEY})
