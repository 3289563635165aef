"""
Module: ledger_kernel.selectors.ledger_selector
Responsibility: Read-only balance aggregation: account balances, the trial
    balance, account activity with a running balance, and posted-transaction
    summaries by month and by type.
Architecture position: Kernel > Selectors.  May import from models/,
    domain/dtos.py and selectors/base.py.

Invariants enforced:
    - Sums are computed as Decimal (Numeric columns, Decimal arithmetic in
      Python).  Floating-point equality is never used for money.
    - The trial balance counts entries of posted and reversed transactions
      dated on or before as_of.  Reversed is included on purpose: counting
      posted alone would keep the reversal and drop the original it undoes,
      leaving its negation on the books.  A reversed transaction and its
      posted reversal cancel out; cancelled, voided and draft work is
      excluded.
    - Transaction summaries count posted transactions only, by
      transaction_date.
    - Sum of debit_balance equals sum of credit_balance for any as_of,
      because every counted transaction is balanced.

Failure modes:
    - AccountNotFoundError for an account outside the caller's company.
    - Returns zero balances / empty reports when no entries qualify.
"""

from datetime import date, datetime, time, timezone
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from ledger_kernel.db.types import MONEY_DECIMAL_PLACES, ZERO, round_money, to_decimal
from ledger_kernel.domain.dtos import (
    AccountActivity,
    AccountBalance,
    AccountType,
    ActivityLine,
    NormalBalance,
    PeriodTotal,
    TransactionStatus,
    TransactionSummary,
    TransactionType,
    TrialBalance,
    TrialBalanceRow,
    TypeTotal,
)
from ledger_kernel.exceptions import AccountNotFoundError
from ledger_kernel.models.account import Account
from ledger_kernel.models.transaction import Transaction, TransactionEntry
from ledger_kernel.selectors.base import BaseSelector

# Statuses whose entries count toward reported balances.  Reversed stays in
# so an original and its reversal net to zero.
REPORTABLE_STATUSES = (
    TransactionStatus.POSTED.value,
    TransactionStatus.REVERSED.value,
)


def _amount(value) -> Decimal:
    """Aggregated column value at storage precision."""
    return round_money(to_decimal(value), MONEY_DECIMAL_PLACES)


def _signed(debit: Decimal, credit: Decimal, normal_balance: str) -> Decimal:
    if normal_balance == NormalBalance.DEBIT.value:
        return debit - credit
    return credit - debit


def _end_of_day(day: date) -> datetime:
    return datetime.combine(day, time.max, tzinfo=timezone.utc)


class LedgerSelector(BaseSelector):

    def _account(self, account_id: UUID, company_id: UUID) -> Account:
        account = self.session.execute(
            select(Account).where(
                Account.id == account_id,
                Account.company_id == company_id,
            )
        ).scalar_one_or_none()
        if account is None:
            raise AccountNotFoundError(str(account_id))
        return account

    def account_balance(
        self,
        account_id: UUID,
        company_id: UUID,
        as_of: date | None = None,
        posted_only: bool = False,
    ) -> AccountBalance:
        """
        Sum an account's entries.

        Args:
            as_of: Only entries created on or before the end of this day.
            posted_only: Only entries of posted or reversed transactions.
                By default every entry counts, drafts included.

        Returns:
            AccountBalance whose ``net`` is signed by the account's normal
            balance (positive = balance on the normal side).
        """
        account = self._account(account_id, company_id)

        stmt = (
            select(
                func.coalesce(func.sum(TransactionEntry.debit_amount), ZERO),
                func.coalesce(func.sum(TransactionEntry.credit_amount), ZERO),
            )
            .join(Transaction, TransactionEntry.transaction_id == Transaction.id)
            .where(
                TransactionEntry.account_id == account_id,
                Transaction.company_id == company_id,
            )
        )
        if as_of is not None:
            stmt = stmt.where(TransactionEntry.created_at <= _end_of_day(as_of))
        if posted_only:
            stmt = stmt.where(Transaction.status.in_(REPORTABLE_STATUSES))

        debit_total, credit_total = self.session.execute(stmt).one()
        debit_total = _amount(debit_total)
        credit_total = _amount(credit_total)

        return AccountBalance(
            account_id=account_id,
            debit_total=debit_total,
            credit_total=credit_total,
            net=_signed(debit_total, credit_total, account.normal_balance),
            as_of=as_of,
        )

    def trial_balance(self, as_of: date, company_id: UUID) -> TrialBalance:
        """
        Trial balance snapshot as of a date.

        Each account's net debit is placed in the debit column when positive
        and in the credit column otherwise, so the column totals are equal
        whenever the ledger is internally consistent.

        Returns:
            TrialBalance with one row per account with activity, ordered by
            account code.
        """
        debit_sum = func.coalesce(func.sum(TransactionEntry.debit_amount), ZERO)
        credit_sum = func.coalesce(func.sum(TransactionEntry.credit_amount), ZERO)

        rows = self.session.execute(
            select(
                Account.id,
                Account.code,
                Account.name,
                Account.account_type,
                Account.normal_balance,
                debit_sum.label("debit_total"),
                credit_sum.label("credit_total"),
            )
            .join(TransactionEntry, TransactionEntry.account_id == Account.id)
            .join(Transaction, TransactionEntry.transaction_id == Transaction.id)
            .where(
                Transaction.company_id == company_id,
                Account.company_id == company_id,
                Transaction.status.in_(REPORTABLE_STATUSES),
                Transaction.transaction_date <= as_of,
            )
            .group_by(
                Account.id,
                Account.code,
                Account.name,
                Account.account_type,
                Account.normal_balance,
            )
            .order_by(Account.code)
        ).all()

        result = []
        for account_id, code, name, account_type, normal_balance, debit, credit in rows:
            net_debit = _amount(debit) - _amount(credit)
            result.append(
                TrialBalanceRow(
                    account_id=account_id,
                    account_code=code,
                    account_name=name,
                    account_type=AccountType(account_type),
                    debit_balance=net_debit if net_debit > ZERO else ZERO,
                    credit_balance=-net_debit if net_debit < ZERO else ZERO,
                    net_balance=_signed(_amount(debit), _amount(credit), normal_balance),
                )
            )

        return TrialBalance(as_of=as_of, company_id=company_id, rows=tuple(result))

    def account_activity(
        self,
        account_id: UUID,
        company_id: UUID,
        start_date: date,
        end_date: date,
    ) -> AccountActivity:
        """
        Chronological posted activity on an account with a running balance.

        The opening balance is the account's opening_balance plus the net of
        reportable entries dated before start_date.
        """
        account = self._account(account_id, company_id)

        prior_debit, prior_credit = self.session.execute(
            select(
                func.coalesce(func.sum(TransactionEntry.debit_amount), ZERO),
                func.coalesce(func.sum(TransactionEntry.credit_amount), ZERO),
            )
            .join(Transaction, TransactionEntry.transaction_id == Transaction.id)
            .where(
                TransactionEntry.account_id == account_id,
                Transaction.company_id == company_id,
                Transaction.status.in_(REPORTABLE_STATUSES),
                Transaction.transaction_date < start_date,
            )
        ).one()

        opening = (account.opening_balance or ZERO) + _signed(
            _amount(prior_debit), _amount(prior_credit), account.normal_balance,
        )

        rows = self.session.execute(
            select(TransactionEntry, Transaction)
            .join(Transaction, TransactionEntry.transaction_id == Transaction.id)
            .where(
                TransactionEntry.account_id == account_id,
                Transaction.company_id == company_id,
                Transaction.status.in_(REPORTABLE_STATUSES),
                Transaction.transaction_date >= start_date,
                Transaction.transaction_date <= end_date,
            )
            .order_by(
                Transaction.transaction_date,
                Transaction.transaction_number,
                TransactionEntry.line_number,
            )
        ).all()

        running = opening
        lines = []
        for entry, txn in rows:
            running += _signed(entry.debit_amount, entry.credit_amount, account.normal_balance)
            lines.append(
                ActivityLine(
                    transaction_id=txn.id,
                    transaction_number=txn.transaction_number,
                    transaction_date=txn.transaction_date,
                    description=entry.description or txn.description,
                    debit_amount=entry.debit_amount,
                    credit_amount=entry.credit_amount,
                    running_balance=running,
                )
            )

        return AccountActivity(
            account_id=account_id,
            start_date=start_date,
            end_date=end_date,
            opening_balance=opening,
            closing_balance=running,
            lines=tuple(lines),
        )

    def transaction_summary(
        self,
        company_id: UUID,
        start_date: date,
        end_date: date,
    ) -> TransactionSummary:
        """
        Count and total posted transactions dated start_date..end_date.

        Totals use each transaction's ``total_amount`` (its debit side).
        Months are ordered chronologically; types by total, largest first.
        Months are bucketed in Python, not with database date functions.

        Raises:
            ValueError: If start_date is after end_date.
        """
        if start_date > end_date:
            raise ValueError("start_date must not be after end_date")

        rows = self.session.execute(
            select(
                Transaction.transaction_date,
                Transaction.transaction_type,
                Transaction.total_amount,
            ).where(
                Transaction.company_id == company_id,
                Transaction.status == TransactionStatus.POSTED.value,
                Transaction.transaction_date >= start_date,
                Transaction.transaction_date <= end_date,
            )
        ).all()

        months: dict[str, list] = {}
        types: dict[str, list] = {}
        grand_total = ZERO
        for transaction_date, transaction_type, total_amount in rows:
            amount = _amount(total_amount)
            grand_total += amount
            for bucket, key in (
                (months, f"{transaction_date:%Y-%m}"),
                (types, transaction_type),
            ):
                tally = bucket.setdefault(key, [0, ZERO])
                tally[0] += 1
                tally[1] += amount

        by_month = tuple(
            PeriodTotal(period=period, transaction_count=count, total_amount=total)
            for period, (count, total) in sorted(months.items())
        )
        by_type = tuple(
            TypeTotal(
                transaction_type=TransactionType(transaction_type),
                transaction_count=count,
                total_amount=total,
            )
            for transaction_type, (count, total) in sorted(
                types.items(), key=lambda item: (-item[1][1], item[0]),
            )
        )

        return TransactionSummary(
            company_id=company_id,
            start_date=start_date,
            end_date=end_date,
            transaction_count=len(rows),
            total_amount=grand_total,
            by_month=by_month,
            by_type=by_type,
        )
