"""
Entry submission flow.

Runs the campaign resolver, the dedup guard, referral validation, the insert
and the referral debug log in that order. Campaign resolution, the lookup and
the insert are fatal; referral validation and debug logging degrade to a safe
default and the flow carries on.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from sqlalchemy.engine import Connection

from app.campaigns import resolve_campaign
from app.entries import create_entry, get_existing_entry
from app.exceptions import SweepstakesException
from app.referral import log_referral, validate_referral

logger = logging.getLogger(__name__)


class SubmissionStage(str, Enum):
    RESOLVING_CAMPAIGN = "resolving_campaign"
    CHECKING_EXISTING = "checking_existing"
    VALIDATING_REFERRAL = "validating_referral"
    WRITING = "writing"
    LOGGING_DEBUG = "logging_debug"
    DONE = "done"
    ERROR = "error"


@dataclass
class EntrySubmission:
    first_name: str
    last_name: str
    email: str
    referred_by: Optional[str] = None
    campaign_id: Optional[str] = None


@dataclass
class SubmissionResult:
    entry: dict
    is_existing: bool = False
    campaign: Optional[dict] = None
    stages: list = field(default_factory=list)

    @property
    def campaign_slug(self) -> Optional[str]:
        return self.campaign["slug"] if self.campaign else None


class EntrySubmissionFlow:
    """One submission per instance; not shared between requests."""

    def __init__(self, conn: Connection):
        self.conn = conn
        self.stage = None
        self.stages = []

    def _enter(self, stage: SubmissionStage):
        self.stage = stage
        self.stages.append(stage)

    def run(self, submission: EntrySubmission) -> SubmissionResult:
        try:
            return self._run(submission)
        except SweepstakesException:
            failed_stage = self.stage
            self._enter(SubmissionStage.ERROR)
            logger.error("Submission for %s failed while %s", submission.email, failed_stage.value)
            raise

    def _run(self, submission: EntrySubmission) -> SubmissionResult:
        email = submission.email.strip().lower()

        self._enter(SubmissionStage.RESOLVING_CAMPAIGN)
        campaign = resolve_campaign(self.conn, submission.campaign_id)

        self._enter(SubmissionStage.CHECKING_EXISTING)
        existing = get_existing_entry(self.conn, email)
        if existing is not None:
            logger.info("Entry already exists for %s", email)
            self._enter(SubmissionStage.DONE)
            return SubmissionResult(
                entry=existing,
                is_existing=True,
                campaign=campaign,
                stages=self.stages,
            )

        self._enter(SubmissionStage.VALIDATING_REFERRAL)
        referred_by = submission.referred_by or None
        if not validate_referral(self.conn, referred_by):
            referred_by = None

        self._enter(SubmissionStage.WRITING)
        entry = create_entry(
            self.conn,
            first_name=submission.first_name.strip(),
            last_name=submission.last_name.strip(),
            email=email,
            referred_by=referred_by,
            entry_count=1,
            campaign_id=campaign["id"] if campaign else None,
        )
        logger.info("Created entry %s for %s", entry["id"], email)

        if submission.referred_by:
            self._enter(SubmissionStage.LOGGING_DEBUG)
            log_referral(self.conn, email, submission.referred_by, entry["referral_code"])

        self._enter(SubmissionStage.DONE)
        return SubmissionResult(entry=entry, campaign=campaign, stages=self.stages)


def submit_entry(conn: Connection, submission: EntrySubmission) -> SubmissionResult:
    return EntrySubmissionFlow(conn).run(submission)
