# backend/modules/reservations/tasks/reconciliation_tasks.py

"""
Periodic reconciliation of reservations against the clock.

Each sweep is a plain method that can be called directly with an
injected clock; ``start`` only hosts them on an APScheduler interval job.
"""

import logging
from datetime import timedelta
from typing import Callable, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import or_
from sqlalchemy.orm import Session

from core.clock import Clock, utcnow
from core.config import Settings, settings as default_settings
from core.database import SessionLocal
from core.exceptions import BookingError
from core.notification_service import NotificationService, NotificationTemplate
from modules.inventory.models.event_models import Event
from modules.inventory.services.inventory_ledger import InventoryLedger
from modules.payments.gateways import PaymentGatewayInterface
from modules.payments.models.payment_models import Payment, PaymentChannel, PaymentStatus
from modules.payments.services.payment_orchestrator import PaymentOrchestrator, build_gateways
from modules.payments.utils.retry_decorator import RetryConfig, retry_async
from modules.vouchers.services.voucher_ledger import VoucherLedger
from .. import state_machine
from ..models.reservation_models import Reservation, ReservationStatus, UNPAID_STATUSES

logger = logging.getLogger(__name__)


class ReconciliationScheduler:
    """Sweeps reservations for time-based completion and expiry"""

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        gateways: Optional[Dict[PaymentChannel, PaymentGatewayInterface]] = None,
        settings: Optional[Settings] = None,
        clock: Clock = utcnow,
        notifier: Optional[NotificationService] = None,
        retry_config: Optional[RetryConfig] = None,
    ):
        self.session_factory = session_factory
        self.settings = settings or default_settings
        self.gateways = gateways if gateways is not None else build_gateways(self.settings)
        self.clock = clock
        self.notifier = notifier or NotificationService()
        self.retry_config = retry_config or RetryConfig(
            max_attempts=self.settings.gateway_sweep_retry_attempts
        )

        self.scheduler = AsyncIOScheduler()
        self.is_running = False
        self.job_id = "reservation_reconciliation_job"

    def _orchestrator(self, db: Session) -> PaymentOrchestrator:
        return PaymentOrchestrator(
            db,
            self.gateways,
            notifier=self.notifier,
            settings=self.settings,
            clock=self.clock,
        )

    # ------------------------------------------------------------------
    # Sweeps
    # ------------------------------------------------------------------

    async def complete_past_reservations(self) -> int:
        """CONFIRMED reservations whose event has started become COMPLETED"""
        now = self.clock()
        completed = []

        db = self.session_factory()
        try:
            candidates = (
                db.query(Reservation.id, Reservation.user_id)
                .join(Event, Event.id == Reservation.event_id)
                .filter(
                    Reservation.status == ReservationStatus.CONFIRMED,
                    Event.starts_at < now,
                )
                .all()
            )
            for row in candidates:
                if state_machine.transition(
                    db, row.id, ReservationStatus.COMPLETED,
                    [ReservationStatus.CONFIRMED],
                    completed_at=now,
                ):
                    completed.append(row)
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Completion sweep failed: {e}")
            raise
        finally:
            db.close()

        if completed:
            logger.info(f"Completed {len(completed)} reservation(s)")
        for row in completed:
            await self.notifier.notify(
                row.user_id,
                NotificationTemplate.RESERVATION_COMPLETED,
                {"reservation_id": row.id},
            )
        return len(completed)

    async def cancel_expired_reservations(self) -> int:
        """
        Cancel unpaid reservations that are too old or whose event is
        about to start, returning their seats.

        Seats are released only by the sweep that actually moved the
        reservation out of an unpaid status, so a concurrent owner
        cancellation or a second sweep never releases them again.
        """
        now = self.clock()
        created_cutoff = now - timedelta(hours=self.settings.reservation_payment_window_hours)
        event_cutoff = now + timedelta(hours=self.settings.reservation_event_cutoff_hours)
        cancelled = []

        db = self.session_factory()
        try:
            candidates = (
                db.query(
                    Reservation.id,
                    Reservation.user_id,
                    Reservation.event_id,
                    Reservation.adults,
                    Reservation.children,
                    Reservation.infants,
                    Reservation.created_at,
                )
                .join(Event, Event.id == Reservation.event_id)
                .filter(
                    Reservation.status.in_(list(UNPAID_STATUSES)),
                    or_(
                        Reservation.created_at < created_cutoff,
                        Event.starts_at < event_cutoff,
                    ),
                )
                .all()
            )

            inventory = InventoryLedger(db)
            orchestrator = self._orchestrator(db)

            for row in candidates:
                reason = (
                    "Payment not received in time"
                    if row.created_at < created_cutoff
                    else "Event starting before payment was received"
                )
                try:
                    won = state_machine.transition(
                        db, row.id, ReservationStatus.CANCELLED, UNPAID_STATUSES,
                        cancelled_at=now,
                        cancellation_reason=reason,
                    )
                    if not won:
                        db.rollback()
                        continue

                    inventory.release(row.event_id, row.adults + row.children + row.infants)
                    orchestrator.cancel_pending_payment(row.id)
                    db.commit()
                    cancelled.append(row)
                except Exception as e:
                    db.rollback()
                    logger.error(f"Failed to expire reservation {row.id}: {e}")
        finally:
            db.close()

        if cancelled:
            logger.info(f"Cancelled {len(cancelled)} unpaid reservation(s)")
        for row in cancelled:
            await self.notifier.notify(
                row.user_id,
                NotificationTemplate.RESERVATION_EXPIRED,
                {"reservation_id": row.id},
            )
        return len(cancelled)

    async def refund_orphaned_payments(self) -> int:
        """
        Refund payments that completed after their reservation was
        cancelled. Gateway failures are retried here and again on the
        next sweep.
        """
        refunded = 0

        db = self.session_factory()
        try:
            orchestrator = self._orchestrator(db)
            payment_ids = [
                row.payment_id
                for row in (
                    db.query(Payment.payment_id)
                    .join(Reservation, Reservation.id == Payment.reservation_id)
                    .filter(
                        Payment.status == PaymentStatus.COMPLETED,
                        Reservation.status == ReservationStatus.CANCELLED,
                        Reservation.cancelled_at.isnot(None),
                        Payment.paid_at >= Reservation.cancelled_at,
                    )
                    .all()
                )
            ]

            refund = retry_async(self.retry_config)(orchestrator.refund_orphaned_payment)
            for payment_id in payment_ids:
                try:
                    await refund(payment_id)
                    refunded += 1
                except BookingError as e:
                    logger.error(
                        f"Orphaned payment {payment_id} not refunded, will retry next sweep: {e}"
                    )
        finally:
            db.close()

        if refunded:
            logger.info(f"Refunded {refunded} orphaned payment(s)")
        return refunded

    async def expire_gift_vouchers(self) -> int:
        db = self.session_factory()
        try:
            return VoucherLedger(db, self.clock, self.settings).expire_overdue()
        finally:
            db.close()

    async def run_once(self) -> Dict[str, int]:
        """Run every sweep once; one failing sweep does not stop the others"""
        results: Dict[str, int] = {}
        sweeps = (
            ("completed", self.complete_past_reservations),
            ("expired", self.cancel_expired_reservations),
            ("orphan_refunds", self.refund_orphaned_payments),
            ("vouchers_expired", self.expire_gift_vouchers),
        )
        for name, sweep in sweeps:
            try:
                results[name] = await sweep()
            except Exception as e:
                logger.error(f"Reconciliation sweep {name} failed: {e}", exc_info=True)
                results[name] = 0
        return results

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def start(self):
        """Start the reconciliation scheduler"""
        if self.is_running:
            logger.warning("Reconciliation scheduler already running")
            return

        try:
            self.scheduler.add_job(
                func=self.run_once,
                trigger=IntervalTrigger(seconds=self.settings.reconciliation_interval_seconds),
                id=self.job_id,
                name="Reservation Reconciliation",
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
            self.scheduler.start()
            self.is_running = True

            logger.info(
                f"Reconciliation scheduler started "
                f"(every {self.settings.reconciliation_interval_seconds}s)"
            )
        except Exception as e:
            logger.error(f"Failed to start reconciliation scheduler: {e}", exc_info=True)
            raise

    def stop(self):
        """Stop the scheduler"""
        if not self.is_running:
            return

        try:
            self.scheduler.shutdown(wait=False)
            self.is_running = False
            logger.info("Reconciliation scheduler stopped")
        except Exception as e:
            logger.error(f"Error stopping reconciliation scheduler: {e}", exc_info=True)
