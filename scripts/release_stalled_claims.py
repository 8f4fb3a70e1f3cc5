"""Return pending actions stuck in PROCESSING to the review queue.

Run periodically, e.g. ``python -m scripts.release_stalled_claims --minutes 15``.
"""

import argparse
import asyncio
from datetime import timedelta

from lendsafe.core.logging import configure_logging
from lendsafe.core.settings import settings
from lendsafe.db.session import AsyncSessionLocal, engine
from lendsafe.repositories.sql import SqlStore
from lendsafe.services.pending_actions import PendingActionService
from lendsafe.services.provisioning import get_identity_provisioner


async def release(minutes: int) -> int:
    async with AsyncSessionLocal() as session:
        service = PendingActionService(SqlStore(session), get_identity_provisioner())
        released = await service.release_stalled_claims(timedelta(minutes=minutes))
    await engine.dispose()
    for action in released:
        print(f"{action.id} -> {action.status} (attempt {action.failure_count})")
    return len(released)


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--minutes", type=int, default=settings.pending_action_stall_minutes)
    args = parser.parse_args()
    configure_logging()
    count = asyncio.run(release(args.minutes))
    print(f"Released {count} stalled claim(s).")


if __name__ == "__main__":
    main()
