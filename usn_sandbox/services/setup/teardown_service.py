from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from tqdm import tqdm

from usn_sandbox.services.near_session import AccountHandle

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeletionOutcome:
    account_id: str
    deleted: bool
    error: Optional[str] = None


class TeardownError(RuntimeError):
    """One or more account deletions failed; every deletion was still attempted."""

    def __init__(self, failures: Sequence[DeletionOutcome]) -> None:
        self.failures = list(failures)
        details = "; ".join(f"{f.account_id}: {f.error}" for f in self.failures)
        super().__init__(f"Failed deleting {len(self.failures)} sandbox account(s): {details}")


class TeardownService:
    def __init__(self, *, beneficiary_id: str, concurrency: int = 4) -> None:
        self._beneficiary_id = beneficiary_id
        self._concurrency = concurrency

    async def delete_accounts(self, accounts: Sequence[AccountHandle]) -> list[DeletionOutcome]:
        """Delete every account, sending its balance to the beneficiary.

        Failures are captured per account instead of stopping the others. Outcomes
        are returned in the order of `accounts`.
        """

        if not accounts:
            return []

        semaphore = asyncio.Semaphore(self._concurrency)

        async def _delete_one(account: AccountHandle) -> DeletionOutcome:
            async with semaphore:
                try:
                    await account.delete_account(self._beneficiary_id)
                    return DeletionOutcome(account_id=account.account_id, deleted=True)
                except Exception as exc:
                    return DeletionOutcome(account_id=account.account_id, deleted=False, error=str(exc))

        tasks = [asyncio.create_task(_delete_one(account)) for account in accounts]

        by_account: dict[str, DeletionOutcome] = {}
        try:
            for fut in tqdm(
                asyncio.as_completed(tasks),
                total=len(tasks),
                desc="Deleting sandbox accounts",
                unit="account",
            ):
                outcome = await fut
                by_account[outcome.account_id] = outcome
                if not outcome.deleted:
                    logger.error("Sandbox account deletion failed (account=%s): %s", outcome.account_id, outcome.error)
        finally:
            # No deletion may outlive the teardown call.
            unfinished = [task for task in tasks if not task.done()]
            for task in unfinished:
                task.cancel()
            if unfinished:
                logger.warning("Sandbox teardown interrupted: cancelling %d pending deletion(s)", len(unfinished))
                await asyncio.gather(*unfinished, return_exceptions=True)

        outcomes = [by_account[account.account_id] for account in accounts]
        logger.info(
            "Sandbox teardown complete: accounts=%d, deleted=%d, failed=%d",
            len(outcomes),
            sum(1 for o in outcomes if o.deleted),
            sum(1 for o in outcomes if not o.deleted),
        )
        return outcomes

    async def teardown(self, accounts: Sequence[AccountHandle]) -> list[DeletionOutcome]:
        outcomes = await self.delete_accounts(accounts)
        failures = [o for o in outcomes if not o.deleted]
        if failures:
            raise TeardownError(failures)
        return outcomes
