"""
Sweeper job for unpaid appointment holds.

Warns leads whose hold has been idle past the warning threshold and releases
holds idle past the release threshold. Sweeping never refreshes the activity
clock, so an untouched hold always expires.
Run via: python -m studio_assistant.jobs.sweep_holds [--verbose]
"""

import asyncio
import logging
import sys
import uuid
from datetime import datetime

from studio_assistant.constants.event_types import EVENT_HOLD_SWEEP_COMPLETED
from studio_assistant.middleware.correlation_id import set_correlation_id
from studio_assistant.services import system_event_service
from studio_assistant.services.holds import hold_lifecycle
from studio_assistant.services.integrations import crm_client
from studio_assistant.services.state.canonical_state import build_canonical_state
from studio_assistant.utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)


async def run_sweep(now: datetime | None = None) -> dict:
    """
    Evaluate every contact with an active hold.

    Args:
        now: Evaluation time (default: now, UTC)

    Returns:
        Summary dict with counts (checked, warned, released, skipped, errors)
    """
    now = now or utc_now()
    results = {"checked": 0, "warned": 0, "released": 0, "skipped": 0, "errors": 0}

    try:
        contact_ids = await crm_client.list_active_holds()
    except Exception as e:
        logger.error(f"Hold sweep could not list active holds: {e}", exc_info=True)
        results["errors"] += 1
        return results

    for contact_id in contact_ids:
        results["checked"] += 1
        try:
            contact = await crm_client.get_contact(contact_id)
            if not contact:
                results["skipped"] += 1
                continue
            state = build_canonical_state(contact)
            evaluation = await hold_lifecycle.evaluate_hold(contact, state, now, refresh_activity=False)
        except Exception as e:
            logger.error(f"Hold sweep failed for contact {contact_id}: {e}", exc_info=True)
            results["errors"] += 1
            continue

        if evaluation.released:
            results["released"] += 1
        elif evaluation.warned:
            results["warned"] += 1
        else:
            results["skipped"] += 1

    logger.info(f"Hold sweep completed: {results}")
    system_event_service.info(EVENT_HOLD_SWEEP_COMPLETED, payload=results)
    return results


def main() -> None:
    """CLI entrypoint for the hold sweep."""
    import argparse

    parser = argparse.ArgumentParser(description="Warn and release idle appointment holds")
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args()

    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    # Cron runs have no request; tag the run so its events group together
    set_correlation_id(f"sweep-{uuid.uuid4()}")
    try:
        results = asyncio.run(run_sweep())
    except Exception as e:
        logger.error(f"Hold sweep failed: {e}", exc_info=True)
        sys.exit(1)
    if results["errors"]:
        sys.exit(1)


if __name__ == "__main__":
    main()
