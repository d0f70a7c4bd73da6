"""Run the crank loop headless: `python -m jackpot_crank`."""

import asyncio
import logging
import sys

from jackpot_crank.core.config import get_settings
from jackpot_crank.core.logging import configure_logging
from jackpot_crank.core.wallet import CrankConfigError
from jackpot_crank.dependencies import build_engine, close_engine

logger = logging.getLogger("jackpot_crank")


async def run() -> None:
    settings = get_settings()
    logger.info(
        f"[LIFECYCLE] {settings.APP_NAME} network={settings.NETWORK} rpc={settings.rpc_url} "
        f"poll={settings.POLL_INTERVAL_MS}ms lock_buffer={settings.LOCK_BUFFER_SEC}s "
        f"backfill={settings.STARTUP_BACKFILL_SCAN_ROUNDS} "
        f"stuck=locked:{settings.STUCK_LOCKED_SEC}s vrf:{settings.STUCK_VRF_REQUESTED_SEC}s "
        f"settled:{settings.STUCK_SETTLED_SEC}s cancelled:{settings.STUCK_CANCELLED_SEC}s"
    )
    engine = build_engine(settings)
    try:
        await engine.run_forever()
    finally:
        await close_engine(engine)


def main() -> int:
    configure_logging(get_settings().LOG_LEVEL)
    try:
        asyncio.run(run())
    except CrankConfigError as e:
        logger.critical(f"Fatal: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("Stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
