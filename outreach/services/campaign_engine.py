# outreach/services/campaign_engine.py
"""
Campaign Execution Engine - runs one pass of a campaign.

A pass compiles the campaign filter against the tenant schema, claims the
campaign (`sending`), walks the matching targets, and for every target not
in cooldown renders, charges, sends and logs one message per channel.
The pass ends completed (one-time), rescheduled (automated), paused (out
of balance) or failed (unexpected error, re-raised).

Per target the order is: deduct -> send -> commit Message -> record
cooldown. A crash between the message commit and the cooldown write sends
that target again on the next pass; it is never silently skipped.
"""
import logging
import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Set, Tuple

from sqlalchemy.orm import Session

from outreach.core.config import EngineConfig
from outreach.core.exceptions import InsufficientBalance, InvalidState, SchemaViolation, TransportFailure, TransportTimeout
from outreach.core.logging_config import get_campaign_logger
from outreach.models.base import utcnow
from outreach.models.campaign import Campaign, CampaignStatus, RUNNABLE_STATUSES
from outreach.models.message import Message
from outreach.schemas.campaign import CampaignPreview, EligibleCounts, MessagePreview, PassResult
from outreach.schemas.message import SendResult
from outreach.schemas.segment import AttributeSchema
from outreach.schemas.target import TargetRecord
from outreach.services.attribute_schema_service import load_schema
from outreach.services.billing_ledger import BillingLedger
from outreach.services.campaign_repository import CampaignRepository, PassTally
from outreach.services.channel_sender import ChannelSender, EmailApiSender, SmsGatewaySender, is_valid_email
from outreach.services.cooldown_ledger import CooldownLedger
from outreach.services.run_window import calculate_next_run_time
from outreach.services.segment_compiler import Predicate, SegmentQueryCompiler
from outreach.services.target_store import TargetStore
from outreach.services.template_renderer import TemplateRenderer

log = logging.getLogger("outreach.campaign_engine")

PAUSE_INSUFFICIENT_BALANCE = "insufficient_balance"


class CampaignExecutionEngine:
    """Orchestrates campaign passes, previews and eligibility counts"""

    def __init__(
        self,
        compiler: Optional[SegmentQueryCompiler] = None,
        target_store: Optional[TargetStore] = None,
        cooldowns: Optional[CooldownLedger] = None,
        renderer: Optional[TemplateRenderer] = None,
        billing: Optional[BillingLedger] = None,
        senders: Optional[Dict[str, ChannelSender]] = None,
        repository: Optional[CampaignRepository] = None,
        config: Optional[EngineConfig] = None,
        clock: Callable[[], datetime] = utcnow,
        schema_loader: Callable[[Session, str, str], AttributeSchema] = load_schema,
    ):
        self.config = config or EngineConfig()
        self.clock = clock
        self.compiler = compiler or SegmentQueryCompiler()
        self.targets = target_store or TargetStore(clock=clock)
        self.cooldowns = cooldowns or CooldownLedger(clock=clock)
        self.renderer = renderer or TemplateRenderer(self.config)
        self.billing = billing or BillingLedger()
        self.repository = repository or CampaignRepository(clock=clock, timezone=self.config.timezone)
        self.schema_loader = schema_loader
        self.senders = senders or {
            "sms": SmsGatewaySender(test_mode=self.config.test_mode, timeout=self.config.send_timeout_seconds),
            "email": EmailApiSender(test_mode=self.config.test_mode, timeout=self.config.send_timeout_seconds),
        }

    # ────────────────────────────────────────────
    # Helpers
    # ────────────────────────────────────────────

    def compile(self, db: Session, campaign: Campaign) -> Predicate:
        """
        Raises:
            SchemaViolation: filter does not fit the tenant schema
        """
        schema = self.schema_loader(db, campaign.tenant_id, campaign.target_type)
        return self.compiler.compile(schema, campaign.filter)

    def is_mock(self, campaign: Campaign) -> bool:
        return bool(self.config.test_mode or campaign.is_test)

    def channels_for(self, campaign: Campaign, target: TargetRecord) -> List[str]:
        """Campaign channels the target has a usable contact for"""
        channels = []
        if campaign.requires_phone() and target.can_receive_sms():
            channels.append("sms")
        if campaign.requires_email() and is_valid_email(target.email):
            channels.append("email")
        return channels

    def excluded_target_ids(self, db: Session, campaign: Campaign) -> Set[int]:
        """
        Targets a pass skips: those in cooldown, and for one-time campaigns
        every target an earlier pass already reached, whatever cooldown_days is.
        """
        excluded = self.cooldowns.active_target_ids(db, campaign.id, campaign.target_type, campaign.cooldown_days)
        if not campaign.is_automated():
            excluded |= self.repository.messaged_target_ids(db, campaign.id, campaign.target_type)
        return excluded

    def _compose(self, campaign: Campaign, target: TargetRecord, channel: str) -> Tuple[str, Optional[str], Optional[int], Decimal]:
        """(content, subject, segments, cost) of one message; email content is HTML"""
        if channel == "sms":
            content = self.renderer.sanitize(self.renderer.render(campaign.message_template, target.attributes))
            segments = self.renderer.calculate_segments(content)
            return content, None, segments, segments * self.config.sms_cost_per_segment

        body = self.renderer.render(campaign.email_body, target.attributes)
        subject = self.renderer.render(campaign.email_subject, target.attributes)
        content = self.renderer.to_html_email(body, campaign.email_display_name or campaign.email_sender)
        return content, subject, None, self.config.email_cost_per_message

    # ────────────────────────────────────────────
    # Execution pass
    # ────────────────────────────────────────────

    def execute(self, db: Session, campaign_id: int) -> PassResult:
        """
        Run one execution pass.

        Raises:
            InvalidState: campaign missing or not runnable (nothing changed)
            SchemaViolation: filter does not compile (nothing changed)
        """
        campaign = self.repository.get(db, campaign_id)
        if campaign is None:
            raise InvalidState(campaign_id, None, f"Campaign {campaign_id} not found")
        if campaign.status not in RUNNABLE_STATUSES:
            raise InvalidState(campaign_id, campaign.status)

        predicate = self.compile(db, campaign)
        self.repository.begin_sending(db, campaign)

        mock = self.is_mock(campaign)
        result = PassResult(campaign_id=campaign_id, status=CampaignStatus.SENDING.value, mock_mode=mock)
        tally = PassTally()

        log.info(f"🚀 Campaign {campaign_id} pass started ({'mock' if mock else 'live'})")
        try:
            self._run_pass(db, campaign, predicate, mock, tally, result)
        except Exception as e:
            log.exception(f"❌ Campaign {campaign_id} pass aborted: {e}")
            db.rollback()
            if not tally.applied:
                self.repository.apply_tally(db, campaign_id, tally, result.target_count or None)
            self.repository.mark_failed(db, campaign_id, f"{type(e).__name__}: {e}")
            self._fill(result, tally, self.repository.current_status(db, campaign_id))
            self._log_summary(campaign, result)
            raise

        self._log_summary(campaign, result)
        return result

    def _run_pass(
        self,
        db: Session,
        campaign: Campaign,
        predicate: Predicate,
        mock: bool,
        tally: PassTally,
        result: PassResult
    ) -> None:
        campaign_id = campaign.id
        tenant_id = campaign.tenant_id
        target_type = campaign.target_type

        # One-time campaigns keep the audience size fixed once known
        known = campaign.target_count if not campaign.is_automated() and campaign.target_count else None
        target_count = known if known else self.targets.count(db, tenant_id, predicate)
        result.target_count = target_count

        cooled = self.excluded_target_ids(db, campaign)
        pause_reason = None
        cancelled = False

        for target in self.targets.matching(db, tenant_id, predicate, limit=target_count):
            if self.repository.current_status(db, campaign_id) == CampaignStatus.CANCELLED.value:
                log.info(f"🛑 Campaign {campaign_id} cancelled, stopping pass")
                cancelled = True
                break

            if target.id in cooled:
                result.skipped_cooldown += 1
                continue

            channels = self.channels_for(campaign, target)
            if not channels:
                log.debug(f"Target {target_type}#{target.id} has no contact for campaign {campaign_id}")
                continue

            result.eligible_count += 1
            delivered = False
            try:
                for channel in channels:
                    delivered = self._send(db, campaign, target, channel, mock, tally) or delivered
            except InsufficientBalance as e:
                log.warning(f"💸 Campaign {campaign_id} out of balance (needs {e.amount}), pausing")
                pause_reason = PAUSE_INSUFFICIENT_BALANCE

            if delivered:
                self.cooldowns.record(db, campaign_id, target_type, target.id, tenant_id)
            if pause_reason:
                break

        self.repository.apply_tally(db, campaign_id, tally, target_count)
        final = self._finish(db, campaign, pause_reason, cancelled, result)
        self._fill(result, tally, final)
        result.pause_reason = pause_reason

    def _send(
        self,
        db: Session,
        campaign: Campaign,
        target: TargetRecord,
        channel: str,
        mock: bool,
        tally: PassTally
    ) -> bool:
        """
        Send one message and log it.

        Returns:
            True if the message went out

        Raises:
            InsufficientBalance: the tenant cannot pay for this message
        """
        content, subject, segments, cost = self._compose(campaign, target, channel)
        if channel == "sms":
            recipient, sender_id = target.phone.strip(), campaign.sender
            options = {"unicode": self.renderer.requires_unicode(content)}
        else:
            recipient, sender_id = target.email.strip(), campaign.email_sender
            options = {"subject": subject, "display_name": campaign.email_display_name}

        message = Message(
            tenant_id=campaign.tenant_id,
            campaign_id=campaign.id,
            target_type=target.target_type,
            target_id=target.id,
            channel=channel,
            source="campaign",
            recipient=recipient,
            sender=sender_id,
            subject=subject,
            content=content,
            segments=segments,
            cost=Decimal("0"),
            is_test=mock,
        )

        if mock:
            now = self.clock()
            message.status = "delivered"
            message.provider_message_id = f"mock-{uuid.uuid4().hex[:12]}"
            message.sent_at = now
            message.delivered_at = now
            db.add(message)
            db.commit()
            tally.record_success(channel, Decimal("0"), delivered=True)
            return True

        if not self.billing.check_and_deduct(db, campaign.tenant_id, cost):
            raise InsufficientBalance(campaign.tenant_id, cost)

        try:
            outcome = self.senders[channel].send(recipient, content, sender_id, **options)
        except TransportTimeout as e:
            outcome = SendResult(success=False, error_message=str(e), error_code="timeout")
        except TransportFailure as e:
            outcome = SendResult(success=False, error_message=str(e), error_code="transport_error")
        except Exception:
            self.billing.refund(db, campaign.tenant_id, cost)
            raise

        if outcome.success:
            message.status = "sent"
            message.cost = cost
            message.provider_cost = outcome.cost
            message.provider_message_id = outcome.provider_id
            message.sent_at = self.clock()
            db.add(message)
            db.commit()
            tally.record_success(channel, cost)
            return True

        self.billing.refund(db, campaign.tenant_id, cost)
        message.status = "failed"
        message.error_message = outcome.error_message
        db.add(message)
        db.commit()
        tally.record_failure(channel)
        log.warning(f"⚠️ Campaign {campaign.id}: {channel} to {target.target_type}#{target.id} failed: {outcome.error_message}")
        return False

    def _finish(
        self,
        db: Session,
        campaign: Campaign,
        pause_reason: Optional[str],
        cancelled: bool,
        result: PassResult
    ) -> str:
        """Move the campaign out of `sending`; returns the stored status"""
        now = self.clock()
        run_fields = {"last_run_at": now, "run_count": Campaign.run_count + 1}

        if cancelled:
            return self.repository.current_status(db, campaign.id)

        if pause_reason:
            status = CampaignStatus.PAUSED
            fields = dict(run_fields, pause_reason=pause_reason, next_run_at=None)
        elif not campaign.is_automated() or campaign.has_ended(now):
            status = CampaignStatus.COMPLETED
            fields = dict(run_fields, completed_at=now, next_run_at=None)
        else:
            interval = campaign.check_interval_minutes or self.config.default_check_interval_minutes
            next_run = calculate_next_run_time(
                campaign.run_start_hour, campaign.run_end_hour,
                now + timedelta(minutes=interval), self.config.timezone
            )
            status = CampaignStatus.ACTIVE
            fields = dict(run_fields, next_run_at=next_run)
            result.next_run_at = next_run

        if not self.repository.finish(db, campaign.id, status, **fields):
            result.next_run_at = None
            return self.repository.current_status(db, campaign.id)
        return status.value

    def _fill(self, result: PassResult, tally: PassTally, status: Optional[str]) -> None:
        result.status = status or result.status
        for name, value in tally.as_dict().items():
            setattr(result, name, value)

    def _log_summary(self, campaign: Campaign, result: PassResult) -> None:
        get_campaign_logger().info(
            f"campaign={result.campaign_id} tenant={campaign.tenant_id} status={result.status} "
            f"targets={result.target_count} eligible={result.eligible_count} "
            f"cooldown={result.skipped_cooldown} sms_sent={result.sent_count} "
            f"sms_failed={result.failed_count} email_sent={result.email_sent_count} "
            f"email_failed={result.email_failed_count} "
            f"cost={result.total_cost + result.email_total_cost} mock={result.mock_mode}"
        )

    # ────────────────────────────────────────────
    # Read-only operations
    # ────────────────────────────────────────────

    def preview(self, db: Session, campaign: Campaign, limit: int = 5) -> CampaignPreview:
        """Render messages for the first `limit` eligible targets without sending"""
        predicate = self.compile(db, campaign)
        cooled = self.excluded_target_ids(db, campaign)

        total = eligible = 0
        previews: List[MessagePreview] = []
        for target in self.targets.matching(db, campaign.tenant_id, predicate):
            total += 1
            if target.id in cooled:
                continue
            eligible += 1
            if eligible > limit:
                continue
            for channel in self.channels_for(campaign, target):
                content, subject, segments, _ = self._compose(campaign, target, channel)
                previews.append(MessagePreview(
                    target_id=target.id,
                    channel=channel,
                    recipient=target.phone if channel == "sms" else target.email,
                    content=content,
                    subject=subject,
                    segments=segments,
                    attributes={key: target.attributes.get(key) for key in predicate.keys},
                ))

        return CampaignPreview(total_count=total, eligible_count=eligible, previews=previews)

    def count_eligible(self, db: Session, campaign: Campaign) -> EligibleCounts:
        """Matching targets, cooldown exclusions and per-channel reach"""
        predicate = self.compile(db, campaign)
        cooled = self.excluded_target_ids(db, campaign)

        counts = EligibleCounts()
        for target in self.targets.matching(db, campaign.tenant_id, predicate):
            counts.total += 1
            if target.id in cooled:
                counts.in_cooldown += 1
                continue
            counts.eligible += 1

            sms = target.can_receive_sms()
            email = is_valid_email(target.email)
            counts.sms += sms
            counts.email += email
            counts.both += sms and email

        return counts

    def validate(self, db: Session, campaign: Campaign, skip_balance_check: bool = False) -> List[str]:
        """Pre-flight checks; returns a list of problems (empty when runnable)"""
        errors: List[str] = []

        if campaign.status not in RUNNABLE_STATUSES:
            errors.append(f"Campaign cannot be executed. Status: {campaign.status}")

        if campaign.requires_phone() and (not campaign.message_template or not campaign.sender):
            errors.append("SMS template and sender are required")
        if campaign.requires_email() and (
            not campaign.email_subject or not campaign.email_body or not campaign.email_sender
        ):
            errors.append("Email subject, body and sender are required")

        try:
            schema = self.schema_loader(db, campaign.tenant_id, campaign.target_type)
            self.compiler.compile(schema, campaign.filter)
        except SchemaViolation as e:
            errors.append(f"Invalid filter: {e.message}")
            return errors

        available = schema.keys()
        if campaign.requires_phone():
            undefined = self.renderer.validate(campaign.message_template, available)
            if undefined:
                errors.append(f"Undefined variables in SMS template: {', '.join(undefined)}")
        if campaign.requires_email():
            undefined = self.renderer.validate(f"{campaign.email_subject or ''} {campaign.email_body or ''}", available)
            if undefined:
                errors.append(f"Undefined variables in email template: {', '.join(undefined)}")

        counts = self.count_eligible(db, campaign)
        if counts.eligible == 0:
            errors.append("No eligible targets match the filter")

        if not skip_balance_check and not self.is_mock(campaign) and counts.eligible:
            estimate = Decimal("0")
            if campaign.requires_phone():
                estimate += self.renderer.estimate_cost(campaign.message_template, counts.sms)["estimated_cost"]
            if campaign.requires_email():
                estimate += counts.email * self.config.email_cost_per_message
            balance = self.billing.get_balance(db, campaign.tenant_id)
            if balance < estimate:
                errors.append(f"Insufficient balance: estimated cost {estimate}, balance {balance}")

        return errors
