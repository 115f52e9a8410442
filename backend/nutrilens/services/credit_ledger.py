"""
NutriLens Backend: Credit Ledger
================================

What:  The single authority over every user's prepaid API credits.
How:   Each balance change is one short database transaction that updates
       the account row and appends a CreditTransaction together.
Who:   Called by the estimate route (consume), the admin credit routes
       (add_credits, reset_used, history) and the profile views (balance).

Concurrency model:
    The account row is the unit of mutual exclusion; there is no global lock.

    consume / add_credits
        One conditional statement does check-and-apply atomically:

            UPDATE users SET credits_used = credits_used + :cost
            WHERE id = :id AND credits_total - credits_used >= :cost
            RETURNING credits_total, credits_used

        Concurrent callers serialise on the row lock and the guard is
        re-evaluated against the committed row, so N concurrent consumes
        against K remaining credits yield exactly K successes. A miss is
        classified afterwards (no such account vs. not enough credits).

    reset_used
        The transaction must record how many credits the reset released,
        which RETURNING cannot report (it sees only the new value). The
        reset therefore reads a snapshot and commits with
        WHERE credits_used = :snapshot, retrying through tenacity when a
        concurrent consume moved the counter in between.

    get_summary
        Reads the counters on both sides of the history query and retries the
        same way when they differ, so the balance matches its newest entry.

Failure model:
    Policy rejections (InsufficientCreditsError, LimitExceededError,
    AccountNotFoundError) leave the store untouched. Any SQLAlchemyError
    rolls back both the counter update and the log append and surfaces as
    PersistenceFailureError.
"""

import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random,
)

from nutrilens.config import settings
from nutrilens.database import async_session_factory
from nutrilens.exceptions import (
    AccountNotFoundError,
    InsufficientCreditsError,
    InvalidArgumentError,
    LimitExceededError,
    PersistenceFailureError,
)
from nutrilens.models.credit_transaction import CreditTransaction, TransactionKind
from nutrilens.models.user import User
from nutrilens.schemas.credits import (
    AddCreditsResult,
    AdminTransactionResponse,
    ConsumeResult,
    CreditBalance,
    CreditSummaryResponse,
    CreditTransactionResponse,
    ResetResult,
    TransactionPage,
)

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT_COST = 1
RESET_DESCRIPTION = "Admin reset of used credits"


class _StaleSnapshot(Exception):
    """The account counters moved between two statements of one operation."""


def _is_positive_int(value: Any) -> bool:
    # bool is an int subclass; True must not pass as a cost of 1
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _as_account_id(account_id: Any) -> Optional[uuid.UUID]:
    if isinstance(account_id, uuid.UUID):
        return account_id
    try:
        return uuid.UUID(str(account_id))
    except (TypeError, ValueError):
        return None


class CreditLedger:
    """
    Per-account credit counters plus an append-only transaction log.

    The ledger opens its own sessions from `session_factory` so that each
    operation commits independently of any request-scoped session. Tests
    inject a factory bound to a throwaway database.
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        *,
        max_total: Optional[int] = None,
        endpoint_costs: Optional[Dict[str, int]] = None,
        history_limit: Optional[int] = None,
        max_cas_attempts: Optional[int] = None,
    ):
        self._session_factory = session_factory or async_session_factory
        self.max_total = max_total if max_total is not None else settings.credits_max_total
        self._endpoint_costs = dict(
            endpoint_costs if endpoint_costs is not None else settings.endpoint_credit_costs
        )
        self.history_limit = history_limit or settings.credits_history_limit
        self._max_cas_attempts = max_cas_attempts or settings.ledger_max_cas_attempts

    # ── Unit of work ──────────────────────────────────────────────────────

    @asynccontextmanager
    async def _unit_of_work(self, operation: str) -> AsyncIterator[AsyncSession]:
        """
        One database transaction: commit on clean exit, roll back otherwise.

        Ledger exceptions raised inside the block pass through unchanged
        after the rollback; store failures become PersistenceFailureError.
        """
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    yield session
        except SQLAlchemyError as exc:
            logger.error(
                "Ledger %s failed and was rolled back: %s: %s",
                operation, type(exc).__name__, exc,
            )
            raise PersistenceFailureError(
                operation, context={"reason": type(exc).__name__}
            ) from exc

    # ── Pricing ───────────────────────────────────────────────────────────

    def cost_of(self, endpoint: str) -> int:
        """Credits charged for one call to `endpoint`; unpriced endpoints cost 1."""
        return self._endpoint_costs.get(endpoint, DEFAULT_ENDPOINT_COST)

    # ── Mutations ─────────────────────────────────────────────────────────

    async def consume(
        self,
        account_id: Any,
        cost: int,
        description: Optional[str] = None,
        endpoint_path: Optional[str] = None,
    ) -> ConsumeResult:
        """
        Debit `cost` credits from the account's current balance.

        Raises:
            InvalidArgumentError:     cost is not a positive integer
            AccountNotFoundError:     no such account
            InsufficientCreditsError: remaining < cost (nothing is written)
            PersistenceFailureError:  the store failed (nothing is written)
        """
        if not _is_positive_int(cost):
            raise InvalidArgumentError("cost", cost)
        uid = _as_account_id(account_id)
        if uid is None:
            raise AccountNotFoundError(account_id)
        if description is None:
            description = f"API request to {endpoint_path}" if endpoint_path else "API request"

        async with self._unit_of_work("consume") as session:
            stmt = (
                update(User)
                .where(User.id == uid, User.credits_total - User.credits_used >= cost)
                .values(credits_used=User.credits_used + cost)
                .returning(User.credits_total, User.credits_used)
                .execution_options(synchronize_session=False)
            )
            row = (await session.execute(stmt)).one_or_none()
            if row is None:
                account = await self._load_counters(session, uid)
                if account is None:
                    raise AccountNotFoundError(account_id)
                total, used = account
                logger.warning(
                    "Consume rejected for account %s: cost=%d remaining=%d",
                    uid, cost, total - used,
                )
                raise InsufficientCreditsError(
                    required=cost, remaining=total - used, used=used, total=total
                )

            total, used = row
            remaining = total - used
            session.add(
                CreditTransaction(
                    user_id=uid,
                    amount=-cost,
                    kind=TransactionKind.CONSUME,
                    description=description,
                    endpoint_path=endpoint_path,
                    balance_after=remaining,
                )
            )

        logger.info(
            "Consumed %d credit(s) from account %s (%s): remaining=%d",
            cost, uid, endpoint_path or "-", remaining,
        )
        return ConsumeResult(remaining=remaining, used=used)

    async def add_credits(
        self,
        account_id: Any,
        amount: int,
        description: str = "Credit refill",
    ) -> AddCreditsResult:
        """
        Raise credits_total by `amount`, up to the configured ceiling.

        Raises:
            InvalidArgumentError:    amount is not a positive integer
            AccountNotFoundError:    no such account
            LimitExceededError:      credits_total + amount > max_total
            PersistenceFailureError: the store failed
        """
        if not _is_positive_int(amount):
            raise InvalidArgumentError("amount", amount)
        uid = _as_account_id(account_id)
        if uid is None:
            raise AccountNotFoundError(account_id)

        async with self._unit_of_work("add_credits") as session:
            stmt = (
                update(User)
                .where(User.id == uid, User.credits_total + amount <= self.max_total)
                .values(credits_total=User.credits_total + amount)
                .returning(User.credits_total, User.credits_used)
                .execution_options(synchronize_session=False)
            )
            row = (await session.execute(stmt)).one_or_none()
            if row is None:
                account = await self._load_counters(session, uid)
                if account is None:
                    raise AccountNotFoundError(account_id)
                logger.warning(
                    "Refill rejected for account %s: total=%d amount=%d max=%d",
                    uid, account[0], amount, self.max_total,
                )
                raise LimitExceededError(
                    max_credits=self.max_total, current_total=account[0], requested=amount
                )

            total, used = row
            remaining = total - used
            session.add(
                CreditTransaction(
                    user_id=uid,
                    amount=amount,
                    kind=TransactionKind.REFILL,
                    description=description,
                    balance_after=remaining,
                )
            )

        logger.info("Added %d credit(s) to account %s: total=%d", amount, uid, total)
        return AddCreditsResult(credits_total=total, remaining=remaining)

    async def reset_used(
        self,
        account_id: Any,
        description: str = RESET_DESCRIPTION,
    ) -> ResetResult:
        """
        Set credits_used back to 0 and record how many credits were released.

        A reset of an account with nothing used still writes a zero-amount
        adjustment so every admin action appears in the log.

        Raises:
            AccountNotFoundError:    no such account
            PersistenceFailureError: the store failed, or the account kept
                                     changing for every CAS attempt
        """
        uid = _as_account_id(account_id)
        if uid is None:
            raise AccountNotFoundError(account_id)

        result = await self._retry_stale("reset_used", uid, lambda: self._reset_once(uid, description))

        logger.info(
            "Reset account %s: released %d used credit(s), remaining=%d",
            uid, result.previous_used, result.remaining,
        )
        return result

    async def _reset_once(self, uid: uuid.UUID, description: str) -> ResetResult:
        async with self._unit_of_work("reset_used") as session:
            snapshot = await self._load_counters(session, uid)
            if snapshot is None:
                raise AccountNotFoundError(uid)
            previous_used = snapshot[1]

            stmt = (
                update(User)
                .where(User.id == uid, User.credits_used == previous_used)
                .values(credits_used=0)
                .returning(User.credits_total)
                .execution_options(synchronize_session=False)
            )
            row = (await session.execute(stmt)).one_or_none()
            if row is None:
                logger.debug("Stale reset snapshot for account %s (used=%d)", uid, previous_used)
                raise _StaleSnapshot()

            total = row[0]
            session.add(
                CreditTransaction(
                    user_id=uid,
                    amount=previous_used,
                    kind=TransactionKind.ADJUSTMENT,
                    description=description,
                    balance_after=total,
                )
            )
        return ResetResult(previous_used=previous_used, current_used=0, remaining=total)

    # ── Reads ─────────────────────────────────────────────────────────────

    async def get_balance(self, account_id: Any) -> CreditBalance:
        """Fresh counters for one account, read outside any caller session."""
        uid = _as_account_id(account_id)
        if uid is None:
            raise AccountNotFoundError(account_id)
        async with self._unit_of_work("get_balance") as session:
            account = await self._load_counters(session, uid)
        if account is None:
            raise AccountNotFoundError(account_id)
        total, used = account
        return CreditBalance(total=total, used=used, remaining=total - used)

    async def get_summary(
        self,
        account_id: Any,
        limit: Optional[int] = None,
    ) -> CreditSummaryResponse:
        """
        Balance and latest transactions as one consistent view.

        The counters are read before and after the history; if a concurrent
        mutation moved them, the read is retried so the newest transaction
        always matches the returned balance.

        Raises:
            InvalidArgumentError:    limit is not a positive integer
            AccountNotFoundError:    no such account
            PersistenceFailureError: the store failed, or the account kept
                                     changing for every attempt
        """
        limit = self.history_limit if limit is None else limit
        if not _is_positive_int(limit):
            raise InvalidArgumentError("limit", limit)
        uid = _as_account_id(account_id)
        if uid is None:
            raise AccountNotFoundError(account_id)

        return await self._retry_stale("get_summary", uid, lambda: self._summary_once(uid, limit))

    async def _summary_once(self, uid: uuid.UUID, limit: int) -> CreditSummaryResponse:
        async with self._unit_of_work("get_summary") as session:
            counters = await self._load_counters(session, uid)
            if counters is None:
                raise AccountNotFoundError(uid)
            result = await session.scalars(self._history_query(uid).limit(limit))
            transactions = [CreditTransactionResponse.model_validate(tx) for tx in result]
            if await self._load_counters(session, uid) != counters:
                logger.debug("Account %s changed while reading its summary", uid)
                raise _StaleSnapshot()

        total, used = counters
        return CreditSummaryResponse(
            credits=CreditBalance(total=total, used=used, remaining=total - used),
            transactions=transactions,
        )

    async def get_history(
        self,
        account_id: Any,
        limit: Optional[int] = None,
    ) -> List[CreditTransactionResponse]:
        """
        Latest transactions for an account, newest first, at most `limit`.

        Unknown accounts have no transactions, so they yield an empty list.
        """
        limit = self.history_limit if limit is None else limit
        if not _is_positive_int(limit):
            raise InvalidArgumentError("limit", limit)
        uid = _as_account_id(account_id)
        if uid is None:
            return []

        async with self._unit_of_work("get_history") as session:
            result = await session.scalars(self._history_query(uid).limit(limit))
            return [CreditTransactionResponse.model_validate(tx) for tx in result]

    async def iter_history(
        self,
        account_id: Any,
        limit: Optional[int] = None,
    ) -> AsyncIterator[CreditTransactionResponse]:
        """
        Stream an account's transactions newest first without loading them all.

        `limit=None` streams the whole log. Rows are fetched in batches from a
        server-side cursor while the caller iterates.
        """
        if limit is not None and not _is_positive_int(limit):
            raise InvalidArgumentError("limit", limit)
        uid = _as_account_id(account_id)
        if uid is None:
            return

        query = self._history_query(uid)
        if limit is not None:
            query = query.limit(limit)
        try:
            async with self._session_factory() as session:
                result = await session.stream_scalars(query.execution_options(yield_per=100))
                async for tx in result:
                    yield CreditTransactionResponse.model_validate(tx)
        except SQLAlchemyError as exc:
            logger.error("Ledger iter_history failed: %s: %s", type(exc).__name__, exc)
            raise PersistenceFailureError(
                "iter_history", context={"reason": type(exc).__name__}
            ) from exc

    async def list_all_transactions(self, page: int = 1, limit: int = 50) -> TransactionPage:
        """Every account's transactions with the holder's name and email, newest first, paginated."""
        if not _is_positive_int(page):
            raise InvalidArgumentError("page", page)
        if not _is_positive_int(limit):
            raise InvalidArgumentError("limit", limit)

        async with self._unit_of_work("list_all_transactions") as session:
            total = await session.scalar(select(func.count()).select_from(CreditTransaction))
            result = await session.execute(
                select(CreditTransaction, User.name, User.email)
                .outerjoin(User, User.id == CreditTransaction.user_id)
                .order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
            transactions = [
                AdminTransactionResponse.model_validate(tx).model_copy(
                    update={"user_name": name, "user_email": email}
                )
                for tx, name, email in result
            ]

        total = total or 0
        pages = (total + limit - 1) // limit
        return TransactionPage(transactions=transactions, total=total, page=page, pages=pages)

    # ── Helpers ───────────────────────────────────────────────────────────

    async def _retry_stale(self, operation: str, uid: uuid.UUID, attempt_once):
        """Await `attempt_once()` until it stops raising _StaleSnapshot."""
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(_StaleSnapshot),
                stop=stop_after_attempt(self._max_cas_attempts),
                wait=wait_random(min=0, max=0.05),
                reraise=True,
            ):
                with attempt:
                    return await attempt_once()
        except _StaleSnapshot as exc:
            logger.error(
                "Ledger %s on account %s abandoned after %d contended attempts",
                operation, uid, self._max_cas_attempts,
            )
            raise PersistenceFailureError(
                operation, context={"attempts": self._max_cas_attempts}
            ) from exc

    @staticmethod
    def _history_query(uid: uuid.UUID):
        return (
            select(CreditTransaction)
            .where(CreditTransaction.user_id == uid)
            .order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())
        )

    @staticmethod
    async def _load_counters(session: AsyncSession, uid: uuid.UUID):
        """(credits_total, credits_used) for the account, or None."""
        row = (
            await session.execute(
                select(User.credits_total, User.credits_used).where(User.id == uid)
            )
        ).one_or_none()
        return tuple(row) if row is not None else None


# Singleton instance, injected into routes through dependencies.get_credit_ledger
credit_ledger = CreditLedger()
