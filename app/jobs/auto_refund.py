"""
Cron entry point: refund orders that failed after payment.

    python -m app.jobs.auto_refund [--cleanup]
"""
import argparse
import logging
import sys
from typing import Callable, Optional

from sqlalchemy.orm import Session

from app.core.config import Settings, get_settings
from app.core.logging import configure_logging
from app.db.session import SessionLocal
from app.services.container import Collaborators, ServiceContainer, build_collaborators

logger = logging.getLogger("app.jobs.auto_refund")


def run(
    cleanup: bool = False,
    *,
    settings: Optional[Settings] = None,
    collaborators: Optional[Collaborators] = None,
    session_factory: Optional[Callable[[], Session]] = None,
) -> int:
    settings = settings or get_settings()
    configure_logging(settings)
    session_factory = session_factory or SessionLocal

    services = ServiceContainer(
        settings,
        collaborators or build_collaborators(settings),
        session_factory,
        run_generation_in_background=False,
    )
    db = session_factory()
    removed = 0
    try:
        result = services.refunds.process_auto_refunds(db)
        if cleanup:
            removed = services.collaborators.packager.cleanup_expired_files()
    finally:
        db.close()
        services.shutdown()

    print(
        f"scanned={result.scanned} refunded={len(result.refunded)} "
        f"failed={len(result.failed)} archives_removed={removed}"
    )
    return 1 if result.failed else 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Refund failed, paid orders past the grace window.")
    parser.add_argument("--cleanup", action="store_true", help="also delete expired download archives")
    args = parser.parse_args()
    sys.exit(run(cleanup=args.cleanup))


if __name__ == "__main__":
    main()
