import asyncio
import argparse
import json
import logging
import sys
from pathlib import Path

from pydantic import ValidationError

from booking_profile import load_profile
from captcha import ChallengeCoordinator
from config import BOOKING_PROFILE, MAX_TIME_SECONDS, OUTPUT_DIR
from diagnostics import Diagnostics, new_run_id, setup_logging
from errors import ServiceError, WorkflowFailed
from metrics import MetricsTracker
from sequencer import Sequencer, build_booking_steps, run_booking
from solving_service import create_service
from steps import BookingSteps

logger = logging.getLogger("main")


async def main(profile_path: str, headless: bool = False, keep_open: bool = False, verbose: bool = False) -> int:
    run_id = new_run_id(profile_path)
    run_dir = Path(OUTPUT_DIR) / run_id
    setup_logging(run_dir, logging.DEBUG if verbose else logging.INFO)

    try:
        profile = load_profile(profile_path)
    except (OSError, ValidationError) as e:
        logger.error("cannot load profile %s: %s", profile_path, e)
        return 2

    logger.info("Starting booking agent run %s", run_id)
    logger.info("Target: %s  trip: %s -> %s  date: %s  tickets: %d",
                profile.host, profile.trip.origin, profile.trip.destination,
                profile.date.isoformat(), profile.ticket_count)
    logger.info("Time limit: %ss  headless: %s", MAX_TIME_SECONDS, headless)

    try:
        service = create_service(profile.solver)
    except ServiceError as e:
        logger.error("cannot set up solver: %s", e)
        return 2

    metrics = MetricsTracker()
    diagnostics = Diagnostics(run_dir, run_id)
    coordinator = ChallengeCoordinator(service, diagnostics=diagnostics, metrics=metrics)
    sequencer = Sequencer(
        build_booking_steps(BookingSteps(profile, coordinator)),
        diagnostics=diagnostics,
        metrics=metrics,
    )

    exit_code = 0
    try:
        await asyncio.wait_for(
            run_booking(sequencer, headless=headless, keep_open=keep_open),
            timeout=MAX_TIME_SECONDS,
        )
    except asyncio.TimeoutError:
        # The sequencer has already recorded and captured the interrupted step
        logger.error("TIMEOUT: exceeded %ss limit during %s", MAX_TIME_SECONDS,
                     sequencer.failed_step or "startup")
        exit_code = 1
    except WorkflowFailed as e:
        logger.error("booking failed at %s: %s", e.step_name, e.cause)
        exit_code = 1
    finally:
        await service.aclose()

    metrics.print_summary()
    results = metrics.get_summary()
    results["run_id"] = run_id
    if diagnostics.failure_screenshot:
        results["failure_screenshot"] = str(diagnostics.failure_screenshot)

    results_file = run_dir / f"results_{run_id}.json"
    with open(results_file, "w") as f:
        json.dump(results, f, indent=2)
    print(f"Results saved to: {results_file}")

    return exit_code


if __name__ == "__main__":
    # Force unbuffered output
    sys.stdout.reconfigure(line_buffering=True)
    sys.stderr.reconfigure(line_buffering=True)

    parser = argparse.ArgumentParser(description="Ferry booking agent")
    parser.add_argument(
        "--profile",
        default=BOOKING_PROFILE,
        help="Path to the booking profile JSON (default: $BOOKING_PROFILE or profile.json)",
    )
    parser.add_argument("--headless", action="store_true", help="Run browser in headless mode")
    parser.add_argument("--keep-open", action="store_true", help="Keep browser open after a failure for debugging")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args()
    sys.exit(asyncio.run(main(args.profile, headless=args.headless, keep_open=args.keep_open, verbose=args.verbose)))
