"""Background sweeps for the in-memory security state."""

import asyncio
from typing import TYPE_CHECKING

from vipbar.core.logging import get_logger

if TYPE_CHECKING:
    from vipbar.core.state import SecurityState

logger = get_logger("cleanup")

RATE_LIMIT_CLEANUP_INTERVAL = 300
EVENT_PRUNE_INTERVAL = 3600
TOKEN_CLEANUP_INTERVAL = 3600


async def rate_limit_cleanup_loop(state: "SecurityState", interval: float = RATE_LIMIT_CLEANUP_INTERVAL) -> None:
    """Drop idle login-limiter keys and expired throttle entries."""
    while True:
        try:
            await asyncio.sleep(interval)
            removed = await state.limiter.cleanup()
            removed += state.login_throttle.cleanup()
            if removed > 0:
                logger.debug(f"Rate limiter cleanup: removed {removed} idle entries")
        except asyncio.CancelledError:
            break
        except Exception as e:
            logger.warning(f"Rate limiter cleanup error: {e}")


async def security_event_prune_loop(state: "SecurityState", interval: float = EVENT_PRUNE_INTERVAL) -> None:
    """Prune security events past retention and expired IP blocks."""
    while True:
        try:
            await asyncio.sleep(interval)
            removed = state.monitor.cleanup()
            if removed > 0:
                logger.info(f"Pruned {removed} expired security events")
        except asyncio.CancelledError:
            break
        except Exception as e:
            logger.warning(f"Security event prune error: {e}")


async def refresh_token_cleanup_loop(state: "SecurityState", interval: float = TOKEN_CLEANUP_INTERVAL) -> None:
    """Delete expired persisted refresh tokens, real and demo."""
    while True:
        try:
            await asyncio.sleep(interval)
            removed = await state.demo_registry.cleanup_expired_tokens()
            if state.store is not None:
                removed += await state.store.cleanup_expired_tokens()
            if removed > 0:
                logger.info(f"Cleaned up {removed} expired refresh tokens")
        except asyncio.CancelledError:
            break
        except Exception as e:
            logger.warning(f"Refresh token cleanup error: {e}")
