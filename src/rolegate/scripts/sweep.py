# src/rolegate/scripts/sweep.py
"""
Run a single reverification sweep and exit.

Intended for cron-style scheduling when the in-process sweeper
(``REVERIFY_ENABLED``) is switched off.
"""

import argparse
import asyncio
import logging

from rolegate.services.sweeper import ReverificationSweeper


async def _run(subject_id: str | None) -> None:
    sweeper = ReverificationSweeper()
    try:
        if subject_id:
            report = await sweeper.run_for_subject(subject_id)
        else:
            report = await sweeper.run_once()
    finally:
        await sweeper.assets.close()  # type: ignore[attr-defined]
        await sweeper.platform.close()  # type: ignore[attr-defined]
    print(
        f"checked={report.checked} still_valid={report.still_valid} revoked={report.revoked} "
        f"expired={report.expired} skipped={report.skipped} errors={report.errors}"
    )


def main() -> None:
    parser = argparse.ArgumentParser(description="Re-check active role assignments once")
    parser.add_argument("--subject", help="Only re-check this platform user id")
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO)
    asyncio.run(_run(args.subject))


if __name__ == "__main__":
    main()
