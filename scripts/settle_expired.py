"""One settlement sweep; run from cron or any scheduler (at-least-once is fine)."""
import sys, os, logging
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.config import settings
from app.database import Base, engine
from app.dependencies import get_settlement_engine
import app.main  # noqa: F401  registers every table

logging.basicConfig(level=settings.LOG_LEVEL)


def run_once():
    Base.metadata.create_all(bind=engine)
    summary = get_settlement_engine().settle_expired()
    print(f"found={summary.found} settled={summary.settled} skipped={summary.skipped} "
          f"reapplied={summary.reapplied} errors={len(summary.errors)}")
    for err in summary.errors:
        print('  ', err)
    return 1 if summary.errors else 0


if __name__ == '__main__':
    sys.exit(run_once())
