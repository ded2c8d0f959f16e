#!/usr/bin/env python3
"""
Console observer for a live match.

Usage:
    python run_observer.py [MATCH_ID]

Follows ``MATCH_ID`` (or whichever match is live when omitted) and prints the
score, win streaks and connection state as they change.
"""
import logging
import sys
import time

from livematch.services import ServiceFactory
from livematch.utils import SyncConfig, fmt_mmss


def main(argv) -> int:
    config = SyncConfig.from_env()
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    factory = ServiceFactory(config)
    channel = factory.create_live_sync_channel()
    channel.on_score = lambda black, orange: print(f"Score  black {black} x {orange} orange")
    channel.on_streak = lambda black, orange: print(f"Streak black {black} / {orange} orange")
    channel.on_state = lambda state: print(f"Connection: {state.value}")
    channel.on_finish = lambda black, orange: print(f"Final  black {black} x {orange} orange")
    channel.on_inactive = lambda: print("No match is live")

    if len(argv) > 1:
        channel.on_refresh = channel.deactivate
        channel.activate(int(argv[1]))
    else:
        channel.activate_dashboard()

    started = time.time()
    try:
        while channel.active:
            time.sleep(1.0)
    except KeyboardInterrupt:
        pass
    finally:
        channel.deactivate()
        print(f"Observed for {fmt_mmss(int(time.time() - started))}")
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv))
