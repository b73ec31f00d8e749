# outreach/services/billing_ledger.py
"""
Billing Ledger - tenant messaging balance.

Deduction is a single conditional UPDATE, so concurrent campaigns of the
same tenant can never drive the balance below zero.
"""
import logging
from decimal import Decimal
from typing import Union

from sqlalchemy.orm import Session

from outreach.models.billing import TenantBalance

log = logging.getLogger("outreach.billing_ledger")

Amount = Union[Decimal, int, str]


def _amount(value: Amount) -> Decimal:
    amount = Decimal(str(value))
    if amount < 0:
        raise ValueError(f"Amount must not be negative: {amount}")
    return amount


class BillingLedger:

    def get_balance(self, db: Session, tenant_id: str) -> Decimal:
        row = db.query(TenantBalance.balance).filter(TenantBalance.tenant_id == tenant_id).first()
        return Decimal(str(row[0])) if row else Decimal("0")

    def has_sufficient_balance(self, db: Session, tenant_id: str, amount: Amount) -> bool:
        return self.get_balance(db, tenant_id) >= _amount(amount)

    def check_and_deduct(self, db: Session, tenant_id: str, amount: Amount) -> bool:
        """
        Atomically deduct `amount` if the balance covers it.

        Returns:
            True if deducted, False (balance untouched) if insufficient
        """
        amount = _amount(amount)
        if amount == 0:
            return True

        updated = db.query(TenantBalance).filter(
            TenantBalance.tenant_id == tenant_id,
            TenantBalance.balance >= amount
        ).update({TenantBalance.balance: TenantBalance.balance - amount}, synchronize_session=False)
        db.commit()

        if not updated:
            log.warning(f"💸 Insufficient balance for tenant {tenant_id}: required {amount}")
            return False
        return True

    def refund(self, db: Session, tenant_id: str, amount: Amount) -> None:
        """Give back a deduction whose message was not sent"""
        amount = _amount(amount)
        if amount == 0:
            return
        db.query(TenantBalance).filter(
            TenantBalance.tenant_id == tenant_id
        ).update({TenantBalance.balance: TenantBalance.balance + amount}, synchronize_session=False)
        db.commit()
        log.debug(f"↩️  Refunded {amount} to tenant {tenant_id}")

    def credit(self, db: Session, tenant_id: str, amount: Amount) -> Decimal:
        """Top up a tenant's balance, creating the balance row if needed"""
        amount = _amount(amount)
        row = db.query(TenantBalance).filter(TenantBalance.tenant_id == tenant_id).first()
        if row is None:
            row = TenantBalance(tenant_id=tenant_id, balance=amount)
            db.add(row)
            db.commit()
        else:
            db.query(TenantBalance).filter(
                TenantBalance.tenant_id == tenant_id
            ).update({TenantBalance.balance: TenantBalance.balance + amount}, synchronize_session=False)
            db.commit()
        return self.get_balance(db, tenant_id)
