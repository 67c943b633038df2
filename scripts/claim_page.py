#!/usr/bin/env python3
"""
Participant command line for a running hatym API.

  claim_page.py claim SESSION_ID [--multi]
  claim_page.py complete SESSION_ID PAGE
  claim_page.py held SESSION_ID
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = REPO_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from hatym.client import ClaimCoordinator, ClaimMode, ClaimState, DeviceStorage, HttpStore
from hatym.config import load_settings
from hatym.domain.errors import CapabilityRejectedError, HatymError, StoreUnavailableError
from hatym.logging import configure_logging, get_logger


def _parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Claim and complete hatym pages from this device.")
    sub = parser.add_subparsers(dest="command", required=True)

    claim = sub.add_parser("claim", help="claim (or resume) pages")
    claim.add_argument("session_id")
    claim.add_argument("--multi", action="store_true", help="claim up to the per-participant limit")

    complete = sub.add_parser("complete", help="mark a held page as completed")
    complete.add_argument("session_id")
    complete.add_argument("page", type=int)

    held = sub.add_parser("held", help="list pages held by this device")
    held.add_argument("session_id")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(sys.argv[1:] if argv is None else argv)
    settings = load_settings()
    configure_logging(settings.log_level)
    log = get_logger(__name__)

    with HttpStore.from_url(settings.api_url) as store:
        coordinator = ClaimCoordinator(
            store,
            DeviceStorage(settings.device_state_path),
            ttl_minutes=settings.assignment_ttl_minutes,
            max_pages_per_user=settings.max_pages_per_user,
        )
        try:
            if args.command == "claim":
                mode = ClaimMode.MULTI if args.multi else ClaimMode.SINGLE
                outcome = coordinator.enter(args.session_id, mode)
                if outcome.state == ClaimState.LIMIT_REACHED:
                    print("You already hold the maximum number of pages.")
                elif outcome.state == ClaimState.FINISHED:
                    print("This session is finished. Scan the kiosk for a new one.")
                else:
                    for page in outcome.pages:
                        print(f"page {page.page_number}: {page.status}")
            elif args.command == "complete":
                result = coordinator.complete(args.session_id, args.page)
                print(f"Done. {result.completed_count} page(s) completed.")
                if result.finished:
                    print("All pages are completed.")
            else:
                for page in coordinator.held_pages(args.session_id):
                    print(f"page {page.page_number}: {page.status}")
        except CapabilityRejectedError as e:
            print(f"{e.message}", file=sys.stderr)
            return 2
        except StoreUnavailableError as e:
            log.error("Store unavailable: %s", e.message)
            print("The server could not be reached. Try again.", file=sys.stderr)
            return 3
        except HatymError as e:
            print(f"{e.code}: {e.message}", file=sys.stderr)
            return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
