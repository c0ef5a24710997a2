from __future__ import annotations

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional, Sequence

from ..common.datetime_utils import add_months, now_local, to_local_naive
from ..common.validators import require_amount, require_enum
from ..core.constants import DEFAULT_EXPIRING_THRESHOLD_DAYS
from ..core.enums import PaymentStatus, SubscriptionStatus, SubscriptionType
from ..core.exceptions import InvalidArgumentError, NoSubscriptionError, NotFoundError
from ..directory.model import member_key
from ..directory.repository import DirectoryStore, DirectoryTransaction
from ..members.model import Member, PaymentRecord, Permissions, Subscription
from ..reminders.service import ReminderService
from .model import ExpiringSubscription, RenewalResult, SweepReport

logger = logging.getLogger(__name__)


class SubscriptionService:
    """Subscription lifecycle: creation, renewal, dues, expiry and permissions."""

    def __init__(
        self,
        directory: DirectoryStore,
        reminders: ReminderService,
        *,
        tx_timeout: Optional[float] = None,
    ):
        self._directory = directory
        self._reminders = reminders
        self._tx_timeout = tx_timeout

    def _require_member(self, tx: DirectoryTransaction, member_id: int) -> Member:
        member = tx.get_member(member_id)
        if not member:
            raise NotFoundError(f"Member {member_id} does not exist")
        return member

    def _monthly_price(self, member: Member) -> Decimal:
        gym = self._directory.get_gym(member.gym_id) if member.gym_id is not None else None
        if not gym:
            raise NotFoundError(f"Gym configuration for member {member.member_id} was not found")

        price = gym.monthly_price(member.subscription.type)
        if price is None:
            raise NotFoundError(f"No price configured for subscription type {member.subscription.type.value}")
        return price

    def _compute_total_due(self, tx: DirectoryTransaction, member: Member) -> Decimal:
        monthly_price = self._monthly_price(member)

        total = monthly_price if member.subscription.status == SubscriptionStatus.PENDING_RENEWAL else Decimal("0")
        for payment in tx.list_payments(member.member_id):
            if payment.status == PaymentStatus.UNPAID:
                total += payment.amount or monthly_price
        return total

    def update_subscription(
        self,
        *,
        member_id: int,
        subscription_type: str | SubscriptionType,
        start_date: datetime,
        end_date: datetime,
        price=None,
        confirmed_by: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Subscription:
        sub_type = require_enum(SubscriptionType, subscription_type, "subscription type")
        start_date = to_local_naive(start_date)
        end_date = to_local_naive(end_date)
        if end_date <= start_date:
            raise InvalidArgumentError("endDate must be after startDate")
        amount = require_amount(price)
        now = to_local_naive(now) if now else now_local()

        def apply(tx: DirectoryTransaction) -> Subscription:
            member = self._require_member(tx, member_id)
            subscription = Subscription(
                type=sub_type,
                status=SubscriptionStatus.ACTIVE,
                start_date=start_date,
                end_date=end_date,
            )
            tx.save_member(replace(member, subscription=subscription))
            tx.add_payment(
                member_id=member.member_id,
                paid_at=now,
                amount=amount,
                status=PaymentStatus.PAID,
                confirmed_by=confirmed_by,
            )
            return subscription

        subscription = self._directory.with_transaction([member_key(member_id)], apply, timeout=self._tx_timeout)
        logger.info(
            "Subscription %s set for member %s until %s",
            sub_type.value,
            member_id,
            end_date.isoformat(),
        )

        self._reminders.schedule_expiry_reminder(member_id=member_id, end_date=end_date, now=now)
        return subscription

    def process_renewal(
        self,
        *,
        member_id: int,
        paid: bool,
        amount=None,
        confirmed_by: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> RenewalResult:
        now = now or now_local()
        record_amount = require_amount(amount, "amount") if amount not in (None, "") else None

        def apply(tx: DirectoryTransaction) -> RenewalResult:
            member = self._require_member(tx, member_id)
            current = member.subscription
            if not current:
                raise NoSubscriptionError(f"Member {member_id} has no subscription to renew")

            if paid:
                # One calendar month from the current end date, whenever the renewal is processed.
                renewed = replace(current, status=SubscriptionStatus.ACTIVE, end_date=add_months(current.end_date, 1))
                tx.save_member(replace(member, subscription=renewed))
                tx.add_payment(
                    member_id=member.member_id,
                    paid_at=now,
                    amount=record_amount,
                    status=PaymentStatus.PAID,
                    confirmed_by=confirmed_by,
                )
                return RenewalResult(subscription=renewed, paid=True, new_end_date=renewed.end_date)

            pending = replace(current, status=SubscriptionStatus.PENDING_RENEWAL)
            tx.add_payment(
                member_id=member.member_id,
                paid_at=now,
                amount=record_amount,
                status=PaymentStatus.UNPAID,
                confirmed_by=confirmed_by,
            )
            updated = replace(member, subscription=pending)
            pending = replace(pending, total_due=self._compute_total_due(tx, updated))
            tx.save_member(replace(member, subscription=pending))
            return RenewalResult(subscription=pending, paid=False, total_due=pending.total_due)

        result = self._directory.with_transaction([member_key(member_id)], apply, timeout=self._tx_timeout)

        if result.paid:
            logger.info("Renewal paid for member %s, new end date %s", member_id, result.new_end_date.isoformat())
            self._reminders.schedule_expiry_reminder(member_id=member_id, end_date=result.new_end_date, now=now)
        else:
            logger.info("Renewal unpaid for member %s, total due %s", member_id, result.total_due)
        return result

    def calculate_total_due(self, *, member_id: int) -> Decimal:
        def apply(tx: DirectoryTransaction) -> Decimal:
            member = self._require_member(tx, member_id)
            if not member.subscription:
                return Decimal("0")

            total = self._compute_total_due(tx, member)
            tx.save_member(replace(member, subscription=replace(member.subscription, total_due=total)))
            return total

        return self._directory.with_transaction([member_key(member_id)], apply, timeout=self._tx_timeout)

    def _expire_one(self, member_id: int, now: datetime) -> bool:
        def apply(tx: DirectoryTransaction) -> bool:
            member = tx.get_member(member_id)
            # Re-check under the transaction: a renewal may have landed since the scan.
            if not member or not member.subscription:
                return False
            sub = member.subscription
            if sub.status != SubscriptionStatus.ACTIVE or sub.end_date > now:
                return False
            tx.save_member(replace(member, subscription=replace(sub, status=SubscriptionStatus.EXPIRED)))
            return True

        return self._directory.with_transaction([member_key(member_id)], apply, timeout=self._tx_timeout)

    def sweep_expired_subscriptions(self, *, now: Optional[datetime] = None, max_workers: int = 1) -> SweepReport:
        """Expire every active subscription whose end date has passed.

        Each member is handled in its own transaction, so the sweep can be
        re-run after a partial failure: already expired members no longer match.
        """

        now = now or now_local()
        members = self._directory.list_members_by_subscription(status=SubscriptionStatus.ACTIVE, end_to=now)
        candidates = [m.member_id for m in members]
        report = SweepReport()

        def run(member_id: int) -> None:
            try:
                expired = self._expire_one(member_id, now)
            except Exception:
                logger.exception("Could not expire subscription of member %s", member_id)
                report.failed_member_ids.append(member_id)
                return
            (report.expired_member_ids if expired else report.skipped_member_ids).append(member_id)

        if max_workers > 1 and len(candidates) > 1:
            with ThreadPoolExecutor(max_workers=int(max_workers)) as pool:
                list(pool.map(run, candidates))
        else:
            for member_id in candidates:
                run(member_id)

        logger.info(
            "Expiry sweep at %s: %d expired, %d skipped, %d failed",
            now.isoformat(),
            len(report.expired_member_ids),
            len(report.skipped_member_ids),
            len(report.failed_member_ids),
        )
        return report

    def get_expiring_subscriptions(
        self,
        *,
        threshold_days: int = DEFAULT_EXPIRING_THRESHOLD_DAYS,
        now: Optional[datetime] = None,
    ) -> list[ExpiringSubscription]:
        if int(threshold_days) < 0:
            raise InvalidArgumentError("thresholdDays cannot be negative")
        now = now or now_local()
        members = self._directory.list_members_by_subscription(
            status=SubscriptionStatus.ACTIVE,
            end_from=now,
            end_to=now + timedelta(days=int(threshold_days)),
        )
        rows = [
            ExpiringSubscription(
                member_id=m.member_id,
                full_name=m.full_name,
                email=m.email,
                type=m.subscription.type,
                end_date=m.subscription.end_date,
                days_until_expiry=math.ceil((m.subscription.end_date - now).total_seconds() / 86400),
            )
            for m in members
        ]
        rows.sort(key=lambda r: (r.end_date, r.member_id))
        return rows

    def get_permissions(self, *, member_id: int) -> Permissions:
        member = self._directory.get_member(member_id)
        if not member:
            raise NotFoundError(f"Member {member_id} does not exist")
        return member.permissions

    def get_payment_history(self, *, member_id: int) -> Sequence[PaymentRecord]:
        if not self._directory.get_member(member_id):
            raise NotFoundError(f"Member {member_id} does not exist")
        return self._directory.list_payments(member_id)
