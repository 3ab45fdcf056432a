"""
Credit Ledger Service - Sole authority over account balances.

NO DICTIONARIES - All operations use strongly typed domain models.
NO READ-MODIFY-WRITE - Every balance change is one UPDATE ... RETURNING
statement, so concurrent purchases and tool runs never lose updates.
"""

from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from autonest.config import Settings, get_settings
from autonest.db.models import Account, CreditTransaction, utc_now
from autonest.exceptions import (
    AccountNotFoundError,
    CaptureAmountMismatchError,
    ConfigurationError,
    CreditReconciliationError,
    DatabaseError,
    InsufficientCreditsError,
    PaymentNotCompletedError,
    ValidationError,
)
from autonest.models.api import RunStatus, TransactionType
from autonest.models.domain import (
    AccountData,
    CaptureOutcome,
    LedgerMutation,
    RunLogEntry,
    UserIdentity,
)
from autonest.observability.metrics import metrics
from autonest.observability.tracing import trace_operation
from autonest.services.payment_provider import CURRENCY, OrderResult, PaymentGateway
from autonest.services.run_logger import RunLogger

logger = get_logger(__name__)

PURCHASE_WORKFLOW_ID = "credit-purchase"
PURCHASE_WORKFLOW_NAME = "Credit Purchase"


def credits_to_amount(credits: int, credits_per_dollar: int) -> Decimal:
    """Dollar price of `credits` credits, rounded to cents."""
    return (Decimal(credits) / Decimal(credits_per_dollar)).quantize(
        Decimal("0.01"), rounding=ROUND_HALF_UP
    )


class CreditLedgerService:
    """
    Credit ledger for AutoNest accounts.

    Owns two invariants:
    - an account's credits never go below zero
    - a completed payment capture is credited exactly once, or surfaced as a
      CreditReconciliationError carrying the capture id
    - a capture only credits the credits its amount pays for
    """

    def __init__(
        self,
        session: AsyncSession,
        gateway: PaymentGateway | None = None,
        run_logger: RunLogger | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.session = session
        self.gateway = gateway
        self.run_logger = run_logger
        self.settings = settings or get_settings()

    # ========================================================================
    # Purchases
    # ========================================================================

    def _require_gateway(self) -> PaymentGateway:
        if self.gateway is None:
            raise ConfigurationError("payment gateway")
        return self.gateway

    async def create_order(self, amount: Decimal, credits_to_purchase: int) -> OrderResult:
        """
        Create a gateway order for a credit purchase.

        No ledger side effect: calling twice yields two independent orders.

        Raises:
            ValidationError: Non-positive input, or amount not matching the credit price
            ConfigurationError: Gateway credentials missing
            GatewayError: Gateway rejected the order
        """
        if amount <= 0 or credits_to_purchase <= 0:
            raise ValidationError("amount and creditsToPurchase must be positive")

        expected = credits_to_amount(credits_to_purchase, self.settings.credits_per_dollar)
        if amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP) != expected:
            raise ValidationError(
                f"amount {amount} does not match price {expected} "
                f"for {credits_to_purchase} credits"
            )

        gateway = self._require_gateway()

        with trace_operation("payment_create_order", credits=credits_to_purchase):
            try:
                order = await gateway.create_order(expected, credits_to_purchase)
            except Exception as e:
                metrics.payment_orders_total.labels(outcome="failed").inc()
                metrics.record_error(type(e).__name__, "create_order")
                raise

        metrics.payment_orders_total.labels(outcome="created").inc()
        logger.info(
            "purchase_order_created",
            order_id=order.order_id,
            amount=str(expected),
            credits=credits_to_purchase,
        )
        return order

    async def capture_and_credit(
        self,
        order_id: str,
        credits_to_purchase: int,
        account_id: str,
        user_email: str | None = None,
    ) -> CaptureOutcome:
        """
        Capture an approved order and credit the account.

        The balance increment is a single atomic statement. It is NOT
        idempotent: call once per approved order.

        Raises:
            ValidationError: Missing or non-positive arguments
            AccountNotFoundError: Account unknown (checked before capturing)
            PaymentNotCompletedError: Capture status is not COMPLETED
            CaptureAmountMismatchError: Captured amount is not the price of the credits
            CreditReconciliationError: Payment captured but credits not applied
        """
        if not order_id or not account_id or credits_to_purchase <= 0:
            raise ValidationError("orderId, userUID and a positive creditsToPurchase are required")

        gateway = self._require_gateway()
        await self.get_balance(account_id)

        input_details = {"orderId": order_id, "creditsToPurchase": credits_to_purchase}

        with trace_operation(
            "payment_capture_and_credit", order_id=order_id, account_id=account_id
        ):
            try:
                capture = await gateway.capture_order(order_id)
            except PaymentNotCompletedError as e:
                metrics.payment_captures_total.labels(outcome="declined").inc()
                await self._record_purchase(
                    account_id, user_email, input_details, RunStatus.FAILED, error=str(e)
                )
                raise

            if not capture.is_completed:
                metrics.payment_captures_total.labels(outcome="not_completed").inc()
                logger.warning(
                    "payment_not_completed",
                    order_id=order_id,
                    capture_id=capture.capture_id,
                    status=capture.status,
                )
                error = PaymentNotCompletedError(capture.status, capture_id=capture.capture_id)
                await self._record_purchase(
                    account_id, user_email, input_details, RunStatus.FAILED, error=str(error)
                )
                raise error

            expected = credits_to_amount(credits_to_purchase, self.settings.credits_per_dollar)
            if capture.captured_amount != expected or capture.currency != CURRENCY:
                metrics.payment_captures_total.labels(outcome="amount_mismatch").inc()
                metrics.reconciliation_failures_total.inc()
                logger.critical(
                    "capture_amount_mismatch",
                    order_id=order_id,
                    capture_id=capture.capture_id,
                    account_id=account_id,
                    credits=credits_to_purchase,
                    expected=str(expected),
                    captured=capture.amount_value,
                    currency=capture.currency,
                )
                mismatch = CaptureAmountMismatchError(
                    capture_id=capture.capture_id,
                    order_id=order_id,
                    credits=credits_to_purchase,
                    expected=str(expected),
                    captured=capture.amount_value,
                    currency=capture.currency,
                )
                await self._record_purchase(
                    account_id, user_email, input_details, RunStatus.FAILED, error=str(mismatch)
                )
                raise mismatch

            try:
                mutation = await self._apply(
                    account_id,
                    credits_to_purchase,
                    TransactionType.PURCHASE,
                    f"PayPal purchase of {credits_to_purchase} credits (order {order_id})",
                    reference=capture.capture_id,
                )
            except (SQLAlchemyError, AccountNotFoundError) as e:
                metrics.payment_captures_total.labels(outcome="reconciliation_failed").inc()
                metrics.reconciliation_failures_total.inc()
                logger.critical(
                    "credit_reconciliation_failed",
                    order_id=order_id,
                    capture_id=capture.capture_id,
                    account_id=account_id,
                    credits=credits_to_purchase,
                    error=str(e),
                )
                error = CreditReconciliationError(
                    capture_id=capture.capture_id,
                    order_id=order_id,
                    account_id=account_id,
                    credits=credits_to_purchase,
                )
                await self._record_purchase(
                    account_id, user_email, input_details, RunStatus.FAILED, error=str(error)
                )
                raise error from e

        metrics.payment_captures_total.labels(outcome="completed").inc()
        logger.info(
            "purchase_credited",
            order_id=order_id,
            capture_id=capture.capture_id,
            account_id=account_id,
            credits=credits_to_purchase,
            new_balance=mutation.balance_after,
        )

        outcome = CaptureOutcome(
            capture_id=capture.capture_id,
            status=capture.status,
            credits_added=credits_to_purchase,
            new_balance=mutation.balance_after,
        )
        await self._record_purchase(
            account_id,
            user_email,
            input_details,
            RunStatus.COMPLETED,
            summary=f"Purchased {credits_to_purchase} credits.",
            output={
                "paypalCaptureId": outcome.capture_id,
                "status": outcome.status,
                "newBalance": outcome.new_balance,
            },
        )
        return outcome

    async def _record_purchase(
        self,
        account_id: str,
        user_email: str | None,
        input_details: dict[str, object],
        status: RunStatus,
        summary: str | None = None,
        output: dict[str, object] | None = None,
        error: str | None = None,
    ) -> None:
        if self.run_logger is None:
            return
        await self.run_logger.record(
            RunLogEntry(
                workflow_id=PURCHASE_WORKFLOW_ID,
                workflow_name=PURCHASE_WORKFLOW_NAME,
                user_id=account_id,
                user_email=user_email,
                status=status,
                credit_cost_at_run=0,
                input_details=dict(input_details),
                output_summary=summary,
                full_output=output,
                error_details=error,
            )
        )

    # ========================================================================
    # Balance mutations
    # ========================================================================

    async def debit(
        self, account_id: str, amount: int, description: str = "Credit debit"
    ) -> int:
        """
        Atomically remove `amount` credits.

        Raises:
            ValidationError: amount <= 0
            InsufficientCreditsError: Balance below amount (nothing is debited)
            AccountNotFoundError: Account doesn't exist
        """
        if amount <= 0:
            raise ValidationError(f"Debit amount must be positive: {amount}")

        with trace_operation("ledger_debit", account_id=account_id, amount=amount):
            mutation = await self._apply(account_id, amount, TransactionType.DEBIT, description)
        return mutation.balance_after

    async def credit(
        self,
        account_id: str,
        amount: int,
        description: str = "Credit top-up",
        reference: str | None = None,
    ) -> int:
        """
        Atomically add `amount` credits.

        Raises:
            ValidationError: amount <= 0
            AccountNotFoundError: Account doesn't exist
        """
        if amount <= 0:
            raise ValidationError(f"Credit amount must be positive: {amount}")

        with trace_operation("ledger_credit", account_id=account_id, amount=amount):
            mutation = await self._apply(
                account_id, amount, TransactionType.CREDIT, description, reference=reference
            )
        return mutation.balance_after

    async def _apply(
        self,
        account_id: str,
        amount: int,
        transaction_type: TransactionType,
        description: str,
        reference: str | None = None,
    ) -> LedgerMutation:
        """Apply one balance change and its transaction row in a single commit."""
        if transaction_type == TransactionType.DEBIT:
            statement = (
                update(Account)
                .where(Account.id == account_id, Account.credits >= amount)
                .values(credits=Account.credits - amount, updated_at=utc_now())
            )
        else:
            statement = (
                update(Account)
                .where(Account.id == account_id)
                .values(credits=Account.credits + amount, updated_at=utc_now())
            )
        statement = statement.returning(Account.credits).execution_options(
            synchronize_session=False
        )

        try:
            result = await self.session.execute(statement)
            balance_after = result.scalar_one_or_none()

            if balance_after is None:
                await self.session.rollback()
                current = await self._current_balance(account_id)
                if current is None:
                    raise AccountNotFoundError(account_id)
                raise InsufficientCreditsError(balance=current, required=amount)

            mutation = LedgerMutation(
                account_id=account_id,
                transaction_type=transaction_type,
                amount=amount,
                balance_after=balance_after,
            )
            self.session.add(
                CreditTransaction(
                    account_id=account_id,
                    transaction_type=transaction_type,
                    amount=amount,
                    balance_before=mutation.balance_before,
                    balance_after=mutation.balance_after,
                    description=description,
                    external_reference=reference,
                )
            )
            await self.session.commit()
        except (InsufficientCreditsError, AccountNotFoundError):
            metrics.record_ledger_mutation(transaction_type.value, False, amount)
            raise
        except SQLAlchemyError:
            await self.session.rollback()
            metrics.record_ledger_mutation(transaction_type.value, False, amount)
            metrics.record_error("SQLAlchemyError", f"ledger_{transaction_type.value}")
            raise

        metrics.record_ledger_mutation(transaction_type.value, True, amount)
        logger.info(
            "ledger_mutation_applied",
            account_id=account_id,
            transaction_type=transaction_type.value,
            amount=amount,
            balance_after=mutation.balance_after,
            reference=reference,
        )
        return mutation

    # ========================================================================
    # Accounts
    # ========================================================================

    async def _current_balance(self, account_id: str) -> int | None:
        result = await self.session.execute(
            select(Account.credits).where(Account.id == account_id)
        )
        return result.scalar_one_or_none()

    async def get_balance(self, account_id: str) -> int:
        """
        Server-authoritative balance.

        Raises:
            AccountNotFoundError: Account doesn't exist
        """
        balance = await self._current_balance(account_id)
        if balance is None:
            raise AccountNotFoundError(account_id)
        return balance

    async def get_account(self, account_id: str) -> AccountData:
        """
        Get account by id.

        Raises:
            AccountNotFoundError: Account doesn't exist
        """
        account = await self.session.get(Account, account_id)
        if account is None:
            raise AccountNotFoundError(account_id)
        return self._account_to_domain(account)

    async def ensure_account(self, identity: UserIdentity) -> AccountData:
        """
        Return the account for an identity, provisioning it on first sign-in.

        New accounts start with the configured default credits, recorded as
        a credit transaction.
        """
        account = await self.session.get(Account, identity.uid)
        if account is not None:
            return self._account_to_domain(account)

        starting_credits = self.settings.default_credits
        new_account = Account(
            id=identity.uid,
            email=identity.email,
            display_name=identity.default_display_name,
            photo_url=identity.picture,
            credits=starting_credits,
            is_admin=False,
        )
        self.session.add(new_account)

        try:
            await self.session.flush()
            if starting_credits > 0:
                self.session.add(
                    CreditTransaction(
                        account_id=identity.uid,
                        transaction_type=TransactionType.CREDIT,
                        amount=starting_credits,
                        balance_before=0,
                        balance_after=starting_credits,
                        description="Welcome credits",
                    )
                )
            await self.session.commit()
        except IntegrityError:
            # Concurrent first sign-in created the row first
            await self.session.rollback()
            account = await self.session.get(Account, identity.uid)
            if account is None:
                raise DatabaseError(f"Account {identity.uid} creation failed")
            return self._account_to_domain(account)

        metrics.accounts_created_total.inc()
        logger.info(
            "account_provisioned",
            account_id=identity.uid,
            email=identity.email,
            credits=starting_credits,
        )
        return self._account_to_domain(new_account)

    def _account_to_domain(self, account: Account) -> AccountData:
        """Convert ORM model to domain model."""
        return AccountData(
            uid=account.id,
            email=account.email,
            display_name=account.display_name,
            photo_url=account.photo_url,
            credits=account.credits,
            is_admin=account.is_admin,
            created_at=account.created_at,
        )
