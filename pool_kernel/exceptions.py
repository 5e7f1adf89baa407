"""
Typed Exception Hierarchy for the Pool Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Settlement errors must be handled precisely. A caller that receives an
``InsufficientLiquidityError`` needs the requested and available amounts,
not a message string to parse.

Every error:
  1. Has a TYPED exception class (catch by type, not message)
  2. Has a CODE class attribute (machine-readable, API-safe)
  3. Carries structured DATA as instance attributes

Example:
    try:
        credit_service.drawdown("borrower-1", Decimal("5000"))
    except InsufficientCreditError as e:
        api_response(code=e.code, requested=e.requested, available=e.available)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    PoolKernelError (base)
    |
    +-- CreditError
    |   +-- CreditNotFoundError
    |   +-- CreditAlreadyExistsError
    |   +-- InsufficientCreditError
    |   +-- InvalidStateTransitionError
    |   +-- PaymentExceedsDueError
    |
    +-- ReceivableError
    |   +-- ReceivableNotFoundError
    |   +-- InvalidReceivableStateError
    |   +-- MaturityExceededError
    |
    +-- PoolError
    |   +-- PoolNotFoundError
    |   +-- PoolDisabledError
    |   +-- LedgerInvariantViolationError
    |
    +-- CoverError
    |   +-- CoverNotFoundError
    |   +-- CoverCapExceededError
    |
    +-- LiquidityError
    |   +-- InsufficientLiquidityError
    |   +-- InsufficientSharesError
    |   +-- LiquidityCapExceededError
    |   +-- TrancheRatioExceededError
    |   +-- WithdrawalLockoutError
    |
    +-- EpochError
    |   +-- EpochInProgressError
    |   +-- EpochClosedTooEarlyError
    |
    +-- AuthorizationError
    |   +-- UnauthorizedError
    |
    +-- ConfigurationError
        +-- InvalidPoolConfigError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category      | Code                       | When Raised
--------------|----------------------------|-------------------------------------------
Credit        | CREDIT_NOT_FOUND           | No credit record for borrower/kind
              | CREDIT_ALREADY_EXISTS      | Approving an already-active credit
              | INSUFFICIENT_CREDIT        | Drawdown above available credit
              | INVALID_STATE_TRANSITION   | Operation not allowed in credit state
              | PAYMENT_EXCEEDS_DUE        | Receivable payment above its balance
--------------|----------------------------|-------------------------------------------
Receivable    | RECEIVABLE_NOT_FOUND       | Unknown receivable id
              | INVALID_RECEIVABLE_STATE   | Receivable in wrong state for operation
              | MATURITY_EXCEEDED          | Receivable or credit already matured
--------------|----------------------------|-------------------------------------------
Pool          | POOL_NOT_FOUND             | Unknown pool id
              | POOL_DISABLED              | Pool switched off by administrator
              | LEDGER_INVARIANT_VIOLATION | Tranche + cover sum != pool value
--------------|----------------------------|-------------------------------------------
Cover         | COVER_NOT_FOUND            | Unknown first-loss cover
              | COVER_CAP_EXCEEDED         | Cover assets would exceed max liquidity
--------------|----------------------------|-------------------------------------------
Liquidity     | INSUFFICIENT_LIQUIDITY     | Pool safe cannot fund the movement
              | INSUFFICIENT_SHARES        | Lender owns fewer shares than requested
              | LIQUIDITY_CAP_EXCEEDED     | Deposit above the pool liquidity cap
              | TRANCHE_RATIO_EXCEEDED     | Senior/junior ratio would be breached
              | WITHDRAWAL_LOCKOUT         | Redemption before lockout elapsed
--------------|----------------------------|-------------------------------------------
Epoch         | EPOCH_IN_PROGRESS          | Prior epoch settlement not complete
              | EPOCH_CLOSED_TOO_EARLY     | close_epoch before the epoch end date
--------------|----------------------------|-------------------------------------------
Authorization | UNAUTHORIZED               | Actor lacks the required role
--------------|----------------------------|-------------------------------------------
Configuration | INVALID_POOL_CONFIG        | Configuration failed validation

Uncovered loss beyond total pool capital is NOT an exception: the loss is
still booked against every available balance and the excess is reported on
``LossDistribution.shortfall`` and logged at ERROR level.
"""

from decimal import Decimal


class PoolKernelError(Exception):
    """
    Base exception for all pool kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "POOL_KERNEL_ERROR"


# Credit-related exceptions


class CreditError(PoolKernelError):
    """Base exception for credit-related errors."""

    code: str = "CREDIT_ERROR"


class CreditNotFoundError(CreditError):
    """No credit record exists for the borrower and credit kind."""

    code: str = "CREDIT_NOT_FOUND"

    def __init__(self, borrower_id: str, credit_kind: str):
        self.borrower_id = borrower_id
        self.credit_kind = credit_kind
        super().__init__(f"No {credit_kind} credit for borrower {borrower_id}")


class CreditAlreadyExistsError(CreditError):
    """Borrower already holds an active credit of this kind."""

    code: str = "CREDIT_ALREADY_EXISTS"

    def __init__(self, borrower_id: str, credit_kind: str, state: str):
        self.borrower_id = borrower_id
        self.credit_kind = credit_kind
        self.state = state
        super().__init__(
            f"Borrower {borrower_id} already has a {credit_kind} credit in state {state}"
        )


class InsufficientCreditError(CreditError):
    """Drawdown amount exceeds the available credit."""

    code: str = "INSUFFICIENT_CREDIT"

    def __init__(self, borrower_id: str, requested: Decimal, available: Decimal):
        self.borrower_id = borrower_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Borrower {borrower_id} requested {requested}, "
            f"only {available} available"
        )


class InvalidStateTransitionError(CreditError):
    """The credit's current state does not allow the operation."""

    code: str = "INVALID_STATE_TRANSITION"

    def __init__(self, borrower_id: str, state: str, operation: str):
        self.borrower_id = borrower_id
        self.state = state
        self.operation = operation
        super().__init__(
            f"Cannot {operation} credit of borrower {borrower_id} in state {state}"
        )


class PaymentExceedsDueError(CreditError):
    """A receivable payment is larger than the receivable's open balance."""

    code: str = "PAYMENT_EXCEEDS_DUE"

    def __init__(self, receivable_id: str, amount: Decimal, outstanding: Decimal):
        self.receivable_id = receivable_id
        self.amount = amount
        self.outstanding = outstanding
        super().__init__(
            f"Payment {amount} on receivable {receivable_id} exceeds "
            f"outstanding {outstanding}"
        )


# Receivable-related exceptions


class ReceivableError(PoolKernelError):
    """Base exception for receivable-related errors."""

    code: str = "RECEIVABLE_ERROR"


class ReceivableNotFoundError(ReceivableError):
    """Receivable with the given id was not found."""

    code: str = "RECEIVABLE_NOT_FOUND"

    def __init__(self, receivable_id: str):
        self.receivable_id = receivable_id
        super().__init__(f"Receivable not found: {receivable_id}")


class InvalidReceivableStateError(ReceivableError):
    """Receivable is not in a state that permits the operation."""

    code: str = "INVALID_RECEIVABLE_STATE"

    def __init__(self, receivable_id: str, state: str, expected: str):
        self.receivable_id = receivable_id
        self.state = state
        self.expected = expected
        super().__init__(
            f"Receivable {receivable_id} is {state}, expected {expected}"
        )


class MaturityExceededError(ReceivableError):
    """Receivable (or credit) has already reached its maturity date."""

    code: str = "MATURITY_EXCEEDED"

    def __init__(self, reference_id: str, maturity_date: str, as_of: str):
        self.reference_id = reference_id
        self.maturity_date = maturity_date
        self.as_of = as_of
        super().__init__(
            f"{reference_id} matured on {maturity_date} (as of {as_of})"
        )


# Pool-related exceptions


class PoolError(PoolKernelError):
    """Base exception for pool-related errors."""

    code: str = "POOL_ERROR"


class PoolNotFoundError(PoolError):
    """Pool with the given id was not found."""

    code: str = "POOL_NOT_FOUND"

    def __init__(self, pool_id: str):
        self.pool_id = pool_id
        super().__init__(f"Pool not found: {pool_id}")


class PoolDisabledError(PoolError):
    """Pool has been disabled; money-moving operations are gated."""

    code: str = "POOL_DISABLED"

    def __init__(self, pool_id: str, operation: str):
        self.pool_id = pool_id
        self.operation = operation
        super().__init__(f"Pool {pool_id} is disabled; cannot {operation}")


class LedgerInvariantViolationError(PoolError):
    """Tranche and cover balances no longer sum to the total pool value."""

    code: str = "LEDGER_INVARIANT_VIOLATION"

    def __init__(self, pool_id: str, total_pool_value: Decimal, components_sum: Decimal):
        self.pool_id = pool_id
        self.total_pool_value = total_pool_value
        self.components_sum = components_sum
        super().__init__(
            f"Pool {pool_id} ledger out of balance: components sum to "
            f"{components_sum}, total pool value is {total_pool_value}"
        )


# First-loss cover exceptions


class CoverError(PoolKernelError):
    """Base exception for first-loss cover errors."""

    code: str = "COVER_ERROR"


class CoverNotFoundError(CoverError):
    """First-loss cover with the given id was not found."""

    code: str = "COVER_NOT_FOUND"

    def __init__(self, pool_id: str, cover_id: str):
        self.pool_id = pool_id
        self.cover_id = cover_id
        super().__init__(f"First-loss cover {cover_id} not found in pool {pool_id}")


class CoverCapExceededError(CoverError):
    """Adding assets would push a cover above its max liquidity."""

    code: str = "COVER_CAP_EXCEEDED"

    def __init__(
        self,
        cover_id: str,
        amount: Decimal,
        cover_assets: Decimal,
        max_liquidity: Decimal,
    ):
        self.cover_id = cover_id
        self.amount = amount
        self.cover_assets = cover_assets
        self.max_liquidity = max_liquidity
        super().__init__(
            f"Adding {amount} to cover {cover_id} ({cover_assets}) "
            f"exceeds max liquidity {max_liquidity}"
        )


# Liquidity exceptions


class LiquidityError(PoolKernelError):
    """Base exception for liquidity and share errors."""

    code: str = "LIQUIDITY_ERROR"


class InsufficientLiquidityError(LiquidityError):
    """The account cannot fund the requested movement."""

    code: str = "INSUFFICIENT_LIQUIDITY"

    def __init__(self, account: str, requested: Decimal, available: Decimal):
        self.account = account
        self.requested = requested
        self.available = available
        super().__init__(
            f"{account} cannot fund {requested}; available {available}"
        )


class InsufficientSharesError(LiquidityError):
    """Lender holds fewer shares than the operation needs."""

    code: str = "INSUFFICIENT_SHARES"

    def __init__(self, lender_id: str, tranche: str, requested: Decimal, owned: Decimal):
        self.lender_id = lender_id
        self.tranche = tranche
        self.requested = requested
        self.owned = owned
        super().__init__(
            f"Lender {lender_id} has {owned} {tranche} shares, needs {requested}"
        )


class LiquidityCapExceededError(LiquidityError):
    """Deposit would take total tranche assets above the pool cap."""

    code: str = "LIQUIDITY_CAP_EXCEEDED"

    def __init__(self, pool_id: str, amount: Decimal, cap: Decimal):
        self.pool_id = pool_id
        self.amount = amount
        self.cap = cap
        super().__init__(f"Deposit of {amount} exceeds liquidity cap {cap} of pool {pool_id}")


class TrancheRatioExceededError(LiquidityError):
    """Senior assets would exceed junior assets times the max ratio."""

    code: str = "TRANCHE_RATIO_EXCEEDED"

    def __init__(self, senior_assets: Decimal, junior_assets: Decimal, max_ratio: Decimal):
        self.senior_assets = senior_assets
        self.junior_assets = junior_assets
        self.max_ratio = max_ratio
        super().__init__(
            f"Senior {senior_assets} would exceed junior {junior_assets} x {max_ratio}"
        )


class WithdrawalLockoutError(LiquidityError):
    """Redemption requested before the withdrawal lockout has elapsed."""

    code: str = "WITHDRAWAL_LOCKOUT"

    def __init__(self, lender_id: str, unlock_date: str):
        self.lender_id = lender_id
        self.unlock_date = unlock_date
        super().__init__(f"Lender {lender_id} cannot redeem before {unlock_date}")


# Epoch exceptions


class EpochError(PoolKernelError):
    """Base exception for epoch errors."""

    code: str = "EPOCH_ERROR"


class EpochInProgressError(EpochError):
    """A prior epoch's settlement has not completed."""

    code: str = "EPOCH_IN_PROGRESS"

    def __init__(self, pool_id: str, epoch_id: int):
        self.pool_id = pool_id
        self.epoch_id = epoch_id
        super().__init__(f"Epoch {epoch_id} of pool {pool_id} is still settling")


class EpochClosedTooEarlyError(EpochError):
    """close_epoch was called before the epoch's scheduled end."""

    code: str = "EPOCH_CLOSED_TOO_EARLY"

    def __init__(self, epoch_id: int, end_date: str, as_of: str):
        self.epoch_id = epoch_id
        self.end_date = end_date
        self.as_of = as_of
        super().__init__(f"Epoch {epoch_id} ends {end_date}; cannot close on {as_of}")


# Authorization exceptions


class AuthorizationError(PoolKernelError):
    """Base exception for authorization errors."""

    code: str = "AUTHORIZATION_ERROR"


class UnauthorizedError(AuthorizationError):
    """Actor does not hold the role the operation requires."""

    code: str = "UNAUTHORIZED"

    def __init__(self, actor_id: str, required_role: str, operation: str):
        self.actor_id = actor_id
        self.required_role = required_role
        self.operation = operation
        super().__init__(
            f"Actor {actor_id} lacks role {required_role} for {operation}"
        )


# Configuration exceptions


class ConfigurationError(PoolKernelError):
    """Base exception for configuration errors."""

    code: str = "CONFIGURATION_ERROR"


class InvalidPoolConfigError(ConfigurationError):
    """Pool configuration failed validation."""

    code: str = "INVALID_POOL_CONFIG"

    def __init__(self, pool_id: str, errors: list[str]):
        self.pool_id = pool_id
        self.errors = errors
        super().__init__(
            f"Invalid configuration for pool {pool_id}: {len(errors)} error(s): "
            + "; ".join(errors)
        )
