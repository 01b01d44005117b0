"""
Credit Ledger - Reserves credits when a job is created and refunds them when
the job fails.

Balances are only ever changed here.
"""

import logging

from app.services.job_registry import JobRecord, JobRegistry

logger = logging.getLogger(__name__)


class CreditLedger:
    """
    Atomic debit and idempotent refund on top of the job registry.

    Lock order is job lock, then owner lock. Debit only takes the owner lock
    since the job does not exist yet.
    """

    def __init__(self, registry: JobRegistry):
        self.registry = registry

    def balance(self, owner_id: str) -> int:
        user = self.registry.get_user(owner_id)
        if user is None:
            raise KeyError(f"User not found: {owner_id}")
        return user.credits

    async def debit_and_create(self, owner_id: str, job: JobRecord) -> JobRecord:
        """
        Debit the job's reserved credits and store the job, as one unit.

        Args:
            owner_id: User paying for the job
            job: New job record; credits_reserved is the amount debited

        Returns:
            The stored job

        Raises:
            InsufficientCreditError: If the balance is below the amount
            RegistryError: If persisting fails (nothing is debited or stored)
        """
        amount = job.credits_reserved
        if amount < 0:
            raise ValueError(f"Debit amount must not be negative, got {amount}")

        async with self.registry.owner_lock(owner_id):
            user = self.registry.get_user(owner_id)
            if user is None:
                raise KeyError(f"User not found: {owner_id}")

            if user.credits < amount:
                raise InsufficientCreditError(required=amount, available=user.credits)

            user.credits -= amount
            await self.registry.apply(users=[user], jobs=[job])

        logger.info(f"Debited {amount} credits from {owner_id} for job {job.id} (balance {user.credits})")
        return self.registry.get_job(job.id)

    async def refund(self, job_id: str) -> bool:
        """
        Return a job's reserved credits to its owner, at most once.

        The refunded flag and the balance change are stored together.

        Returns:
            True if credits were returned, False if the job was already refunded
        """
        async with self.registry.job_lock(job_id):
            job = self.registry.get_job(job_id)
            if job is None:
                raise KeyError(f"Job not found: {job_id}")

            if job.refunded:
                logger.info(f"Job {job_id} already refunded, skipping")
                return False

            async with self.registry.owner_lock(job.owner_id):
                user = self.registry.get_user(job.owner_id)
                if user is None:
                    raise KeyError(f"User not found: {job.owner_id}")

                user.credits += job.credits_reserved
                job.refunded = True
                await self.registry.apply(users=[user], jobs=[job])

        logger.info(
            f"Refunded {job.credits_reserved} credits to {job.owner_id} for job {job_id} "
            f"(balance {user.credits})"
        )
        return True


class InsufficientCreditError(Exception):
    """Exception raised when a user cannot afford a job."""

    def __init__(self, required: int, available: int):
        self.required = required
        self.available = available
        super().__init__(f"Insufficient credits. Required: {required}, available: {available}")
