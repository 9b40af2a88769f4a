"""
Proposal approval and signature workflow engine.

WHAT: Drives a proposal through draft -> approval (one or more levels,
sequential or parallel) -> signature (one or more signers) -> accepted,
with rejection possible until acceptance.

WHY: The engine is the only writer of proposal workflow state:
1. Approval chains are validated before anything is written
2. Level completion and next-level activation happen exactly once
3. Acceptance happens only when every signature request is signed
4. Notifications are recorded as outbox events in the same transaction

HOW:
- Stateless between calls: everything lives in the database rows
- Status changes go through ``workflow_state.transition`` and are written
  as compare-and-swap updates guarded by the expected previous status
- A per-proposal asyncio.Lock serializes operations inside one process;
  the conditional updates catch races across processes
- Every mutation first locks the proposal row (SELECT ... FOR UPDATE), so
  operations on one proposal are serialized across processes too
- Public methods never raise: helpers raise AppException subclasses,
  which are converted to typed WorkflowError entries at the boundary.
  Malformed inputs become field-addressed errors. Persistence and
  unexpected failures roll the session back.

Example:
    engine = WorkflowEngine(session)
    result = await engine.start_approval_chain(proposal.id, org_id, config)
    if not result.success:
        return result.errors
"""

import asyncio
import logging
import weakref
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError as SchemaValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from proposal_engine.core.clock import Clock, utcnow
from proposal_engine.core.config import settings
from proposal_engine.core.exceptions import (
    AppException,
    PolicyViolation,
    ResourceNotFoundError,
    TransientError,
    ValidationError,
)
from proposal_engine.core.tokens import generate_verification_code, verification_codes_match
from proposal_engine.dao.approval import ApprovalChainDAO, ApprovalRecordDAO
from proposal_engine.dao.proposal import ProposalDAO, ProposalItemDAO
from proposal_engine.dao.signature import SignatureRequestDAO
from proposal_engine.dao.workflow_event import WorkflowEventDAO
from proposal_engine.models.proposal import Proposal, ProposalStatus
from proposal_engine.models.workflow import (
    ApprovalChain,
    ApprovalRecord,
    ApprovalStatus,
    SignatureRequest,
    WorkflowEventType,
)
from proposal_engine.schemas.workflow import (
    ApprovalChainConfig,
    ApprovalChainResult,
    ApprovalDecisionResult,
    ApprovalProgress,
    OperationResult,
    SignaturePayload,
    SignatureProgress,
    SignatureRequestCreate,
    SignatureRequestResult,
    SignatureResult,
    TimeoutSweepResult,
    WorkflowError,
    WorkflowErrorKind,
    WorkflowStage,
    WorkflowStatus,
)
from proposal_engine.services.proposal_validator import ProposalValidator
from proposal_engine.services.workflow_state import TRIGGER_STAGES, WorkflowTrigger, transition


logger = logging.getLogger(__name__)

ResultType = TypeVar("ResultType", bound=OperationResult)

TIMEOUT_POLICY_ESCALATE = "escalate"
TIMEOUT_POLICY_REJECT = "reject"

# One year; longer timeouts are configuration mistakes and overflow datetime arithmetic
MAX_LEVEL_TIMEOUT_HOURS = 24 * 365


class ProposalLocks:
    """
    Registry of per-proposal asyncio locks.

    WHY: Two coroutines deciding on the same proposal must not interleave
    between reading level progress and activating the next level. Locks
    are held weakly and disappear once no operation uses them.
    """

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[int, asyncio.Lock]" = weakref.WeakValueDictionary()

    def get(self, proposal_id: int) -> asyncio.Lock:
        lock = self._locks.get(proposal_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[proposal_id] = lock
        return lock

    @asynccontextmanager
    async def hold(self, proposal_id: int):
        lock = self.get(proposal_id)
        async with lock:
            yield


class WorkflowEngine:
    """
    Approval/signature state machine over persisted proposals.

    WHAT: Public operations (all return result objects):
    - start_approval_chain
    - process_approval
    - request_signature
    - process_signature
    - decline_signature
    - check_timeouts
    - get_workflow_status

    WHY: Callers (API handlers, scheduled jobs) get structured feedback
    instead of exceptions and never see partially applied state.
    """

    def __init__(
        self,
        session: AsyncSession,
        clock: Clock = utcnow,
        locks: Optional[ProposalLocks] = None,
        validator: Optional[ProposalValidator] = None,
        enforce_required_approvals: Optional[bool] = None,
        timeout_policy: Optional[str] = None,
        verification_code_length: Optional[int] = None,
        default_signature_expiry_days: Optional[int] = None,
    ):
        """
        Initialize the engine for one database session.

        Args:
            session: Async database session (one transaction per operation)
            clock: Returns the current naive UTC time
            locks: Shared lock registry (a private one when omitted)
            validator: Proposal validator used before approval starts
            enforce_required_approvals: Honour per-level required_approvals
                instead of a threshold of 1 (configuration when omitted)
            timeout_policy: "escalate" or "reject" for overdue approvals
            verification_code_length: Length of generated codes
            default_signature_expiry_days: Expiry when a request omits it
        """
        self.session = session
        self.clock = clock
        self.locks = locks or ProposalLocks()
        self.validator = validator or ProposalValidator(clock=clock)
        self.enforce_required_approvals = (
            settings.ENFORCE_REQUIRED_APPROVALS
            if enforce_required_approvals is None
            else enforce_required_approvals
        )
        self.timeout_policy = timeout_policy or settings.APPROVAL_TIMEOUT_POLICY
        if self.timeout_policy not in (TIMEOUT_POLICY_ESCALATE, TIMEOUT_POLICY_REJECT):
            raise ValueError(f"Unknown approval timeout policy: {self.timeout_policy}")
        self.verification_code_length = verification_code_length
        self.default_signature_expiry_days = (
            default_signature_expiry_days or settings.DEFAULT_SIGNATURE_EXPIRY_DAYS
        )

        self.proposals = ProposalDAO(session)
        self.items = ProposalItemDAO(session)
        self.chains = ApprovalChainDAO(session)
        self.approvals = ApprovalRecordDAO(session)
        self.signatures = SignatureRequestDAO(session)
        self.events = WorkflowEventDAO(session)

    # ------------------------------------------------------------------
    # Boundary
    # ------------------------------------------------------------------

    async def _run(
        self,
        result_cls: Type[ResultType],
        stage: str,
        operation: Callable[[], Awaitable[ResultType]],
    ) -> ResultType:
        """
        Execute an operation and convert failures into a result object.

        WHY: TransientError is only raised after writes have started (a
        lost race), so it rolls the session back like any persistence
        failure. Other AppExceptions are raised before the first write.
        """
        try:
            return await operation()
        except TransientError as exc:
            logger.warning(f"Workflow {stage} operation conflicted: {exc.message}")
            await self.session.rollback()
            return result_cls(success=False, errors=[self._to_error(exc, stage)])
        except AppException as exc:
            logger.info(f"Workflow {stage} operation refused: {exc.message}")
            return result_cls(success=False, errors=[self._to_error(exc, stage)])
        except SQLAlchemyError:
            logger.error(f"Workflow {stage} operation failed on persistence", exc_info=True)
            await self.session.rollback()
            return result_cls(
                success=False,
                errors=[
                    WorkflowError(
                        kind=WorkflowErrorKind.TRANSIENT,
                        message="Temporary persistence failure, please retry",
                        stage=stage,
                    )
                ],
            )
        except Exception:
            logger.error(f"Workflow {stage} operation failed unexpectedly", exc_info=True)
            await self.session.rollback()
            return result_cls(
                success=False,
                errors=[
                    WorkflowError(
                        kind=WorkflowErrorKind.TRANSIENT,
                        message="Unexpected workflow failure, nothing was changed",
                        stage=stage,
                    )
                ],
            )

    @staticmethod
    def _to_error(exc: AppException, stage: str) -> WorkflowError:
        return WorkflowError(
            kind=WorkflowErrorKind(exc.kind),
            message=exc.message,
            stage=getattr(exc, "stage", None) or stage,
            field=exc.context.get("field"),
        )

    @staticmethod
    def _parse(
        schema: Type[BaseModel],
        value: Any,
        kind: WorkflowErrorKind,
        stage: str,
    ) -> Tuple[Optional[BaseModel], List[WorkflowError]]:
        """
        Coerce a dict input into its schema.

        Returns:
            (model, errors): the model is None when errors is non-empty.
            Each error names the offending field path.
        """
        if isinstance(value, schema):
            return value, []
        try:
            return schema.model_validate(value), []
        except SchemaValidationError as exc:
            errors = []
            for detail in exc.errors():
                path = ".".join(str(part) for part in detail["loc"])
                errors.append(
                    WorkflowError(
                        kind=kind,
                        message=f"{path}: {detail['msg']}" if path else detail["msg"],
                        stage=stage,
                        field=path or None,
                    )
                )
            return None, errors

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    async def _get_proposal(self, proposal_id: int, org_id: int, for_update: bool = False) -> Proposal:
        if for_update:
            proposal = await self.proposals.get_for_update(proposal_id, org_id)
        else:
            proposal = await self.proposals.get_by_id_and_org(proposal_id, org_id)
        if proposal is None:
            raise ResourceNotFoundError(
                message=f"Proposal {proposal_id} not found",
                resource_type="Proposal",
                resource_id=proposal_id,
            )
        return proposal

    async def _transition(
        self,
        proposal: Proposal,
        trigger: WorkflowTrigger,
        first_write: bool,
        **extra: Any,
    ) -> ProposalStatus:
        """
        Apply a legal transition as a conditional update.

        Args:
            proposal: Proposal whose loaded status is the expected status
            trigger: Workflow trigger
            first_write: Whether nothing has been written yet in this
                operation. A lost race is then a plain policy refusal;
                otherwise it is transient and the operation is rolled back.
        """
        expected = ProposalStatus(proposal.status)
        new_status = transition(expected, trigger)
        won = await self.proposals.transition_status(proposal.id, expected, new_status, **extra)
        if not won:
            message = f"Proposal {proposal.id} was modified concurrently"
            if first_write:
                raise PolicyViolation(message=message, stage=TRIGGER_STAGES[trigger])
            raise TransientError(message=message, proposal_id=proposal.id)

        logger.info(
            f"Proposal {proposal.id} moved {expected.value} -> {new_status.value}",
            extra={
                "proposal_id": proposal.id,
                "org_id": proposal.org_id,
                "from_status": expected.value,
                "to_status": new_status.value,
                "trigger": trigger.value,
            },
        )
        return new_status

    def _threshold(self, level_config: Optional[Dict[str, Any]]) -> int:
        """
        Approvals needed to complete a level.

        WHY: Without enforcement the observed behaviour is preserved: one
        approval completes a level whatever was configured.
        """
        if not self.enforce_required_approvals or level_config is None:
            return 1
        return max(int(level_config.get("required_approvals", 1)), 1)

    async def _level_complete(self, chain: ApprovalChain, proposal_id: int, level: int) -> bool:
        counts = await self.approvals.count_by_status_for_level(proposal_id, level)
        return counts[ApprovalStatus.APPROVED] >= self._threshold(chain.get_level(level))

    async def _emit(
        self,
        proposal: Proposal,
        event_type: WorkflowEventType,
        recipients: Iterable[Optional[str]],
        **payload: Any,
    ) -> None:
        """
        Record an outbox event for every distinct recipient.

        WHY: An event without any known recipient is still recorded so the
        history of the proposal is complete; the dispatcher skips it.
        """
        body = {
            "proposal_id": proposal.id,
            "proposal_number": proposal.proposal_number,
            "title": proposal.title,
            "client_name": proposal.client_name,
            "final_amount": str(proposal.final_amount),
            "currency": proposal.currency,
        }
        body.update({key: _jsonable(value) for key, value in payload.items()})

        unique: List[Optional[str]] = []
        for recipient in recipients:
            if recipient and recipient not in unique:
                unique.append(recipient)

        for recipient in unique or [None]:
            await self.events.emit(
                org_id=proposal.org_id,
                proposal_id=proposal.id,
                event_type=event_type,
                recipient_email=recipient,
                payload=body,
            )

    async def _activate_level(
        self,
        proposal: Proposal,
        level_config: Dict[str, Any],
        now: datetime,
    ) -> List[ApprovalRecord]:
        """Create the level's approval records atomically and notify approvers."""
        timeout_at = now + timedelta(hours=int(level_config["timeout_hours"]))
        records = await self.approvals.create_many(
            [
                {
                    "org_id": proposal.org_id,
                    "proposal_id": proposal.id,
                    "approver_id": approver["id"],
                    "approver_email": approver["email"],
                    "approver_name": approver.get("name"),
                    "level": int(level_config["level"]),
                    "status": ApprovalStatus.PENDING,
                    "timeout_at": timeout_at,
                }
                for approver in level_config["approvers"]
            ]
        )

        for record in records:
            await self._emit(
                proposal,
                WorkflowEventType.APPROVAL_REQUESTED,
                [record.approver_email],
                approval_id=record.id,
                approver_name=record.approver_name,
                level=record.level,
                timeout_at=timeout_at,
            )

        logger.info(
            f"Activated approval level {level_config['level']} for proposal {proposal.id}",
            extra={
                "proposal_id": proposal.id,
                "level": level_config["level"],
                "approver_count": len(records),
            },
        )
        return records

    # ------------------------------------------------------------------
    # Approval stage
    # ------------------------------------------------------------------

    @staticmethod
    def validate_chain_config(config: ApprovalChainConfig) -> List[str]:
        """
        Check an approval chain configuration.

        Returns:
            Human-readable problems (empty when valid)
        """
        errors: List[str] = []
        if not config.levels:
            errors.append("At least one approval level must be configured")
            return errors

        seen_levels = set()
        for level in config.levels:
            if level.level < 1:
                errors.append(f"Level {level.level} must be a positive level number")
            if level.level in seen_levels:
                errors.append(f"Level {level.level} is configured more than once")
            seen_levels.add(level.level)

            if not level.approvers:
                errors.append(f"Level {level.level} has no approvers assigned")
            if level.required_approvals > len(level.approvers):
                errors.append(f"Level {level.level} requires more approvals than available approvers")
            if level.required_approvals < 1:
                errors.append(f"Level {level.level} must require at least one approval")
            if level.timeout_hours <= 0:
                errors.append(f"Level {level.level} must have a positive timeout")
            elif level.timeout_hours > MAX_LEVEL_TIMEOUT_HOURS:
                errors.append(f"Level {level.level} timeout cannot exceed {MAX_LEVEL_TIMEOUT_HOURS} hours")

            approver_ids = [approver.id for approver in level.approvers]
            duplicates = sorted({i for i in approver_ids if approver_ids.count(i) > 1})
            for approver_id in duplicates:
                errors.append(f"Level {level.level} lists approver {approver_id} more than once")

        return errors

    async def start_approval_chain(
        self,
        proposal_id: int,
        org_id: int,
        config: Union[ApprovalChainConfig, Dict[str, Any]],
    ) -> ApprovalChainResult:
        """
        Start the approval process for a draft proposal.

        WHAT: Validates the proposal state, the proposal itself and the
        chain configuration; then stores the chain, moves the proposal to
        pending_approval and activates the first level (every level when
        parallel).

        WHY: Any problem aborts with no side effects and returns every
        error found, so the caller can fix them all at once.

        Args:
            proposal_id: Proposal to submit
            org_id: Tenant
            config: Approval chain configuration

        Returns:
            ApprovalChainResult with created approval ids and active levels
        """

        async def operation() -> ApprovalChainResult:
            async with self.locks.hold(proposal_id):
                proposal = await self._get_proposal(proposal_id, org_id, for_update=True)
                errors: List[WorkflowError] = []

                if proposal.status != ProposalStatus.DRAFT:
                    errors.append(
                        WorkflowError(
                            kind=WorkflowErrorKind.POLICY,
                            message="Proposal must be in draft status to start approval process",
                            stage="approval",
                        )
                    )

                chain_config, config_errors = self._parse(
                    ApprovalChainConfig, config, WorkflowErrorKind.CONFIGURATION, "approval"
                )
                errors.extend(config_errors)
                if chain_config is not None:
                    for message in self.validate_chain_config(chain_config):
                        errors.append(
                            WorkflowError(
                                kind=WorkflowErrorKind.CONFIGURATION,
                                message=message,
                                stage="approval",
                            )
                        )

                items = await self.items.get_for_proposal(proposal.id, org_id)
                verdict = self.validator.validate(proposal, items)
                for field_error in verdict.errors:
                    errors.append(
                        WorkflowError(
                            kind=WorkflowErrorKind.VALIDATION,
                            message=field_error.message,
                            stage="approval",
                            field=field_error.field,
                        )
                    )

                if errors:
                    return ApprovalChainResult(success=False, errors=errors)

                now = self.clock()
                await self._transition(proposal, WorkflowTrigger.SUBMIT, first_write=True, submitted_at=now)

                levels = sorted(chain_config.levels, key=lambda level: level.level)
                chain = await self.chains.create(
                    org_id=org_id,
                    proposal_id=proposal.id,
                    levels=[level.model_dump() for level in levels],
                    parallel_approval=chain_config.parallel_approval,
                    current_level=levels[0].level,
                )

                to_activate = chain.levels if chain_config.parallel_approval else [chain.levels[0]]
                approval_ids: List[int] = []
                for level_config in to_activate:
                    records = await self._activate_level(proposal, level_config, now)
                    approval_ids.extend(record.id for record in records)

                return ApprovalChainResult(
                    success=True,
                    approval_ids=approval_ids,
                    activated_levels=[int(level["level"]) for level in to_activate],
                    proposal_status=ProposalStatus.PENDING_APPROVAL,
                )

        return await self._run(ApprovalChainResult, "approval", operation)

    async def process_approval(
        self,
        approval_id: int,
        org_id: int,
        decision: Union[ApprovalStatus, str],
        comments: Optional[str] = None,
    ) -> ApprovalDecisionResult:
        """
        Record an approver's decision and advance the workflow.

        WHAT:
        - rejected: the proposal is rejected immediately (first rejection
          wins, other pending approvals are not consulted)
        - approved: if the level is complete, activate the next level or,
          when no level remains, approve the proposal

        Args:
            approval_id: Approval record being decided
            org_id: Tenant
            decision: "approved" or "rejected"
            comments: Optional approver comment

        Returns:
            ApprovalDecisionResult with the resulting proposal status and
            next_stage (rejected, next_approval_level, signature, pending)
        """

        async def operation() -> ApprovalDecisionResult:
            try:
                verdict = ApprovalStatus(decision)
            except ValueError:
                verdict = None
            if verdict not in (ApprovalStatus.APPROVED, ApprovalStatus.REJECTED):
                raise ValidationError(
                    message=f"Invalid decision: {decision}",
                    field="decision",
                )

            record = await self.approvals.get_by_id_and_org(approval_id, org_id)
            if record is None:
                raise ResourceNotFoundError(
                    message=f"Approval {approval_id} not found",
                    resource_type="ApprovalRecord",
                    resource_id=approval_id,
                )

            async with self.locks.hold(record.proposal_id):
                proposal = await self._get_proposal(record.proposal_id, org_id, for_update=True)
                await self.session.refresh(record)

                if proposal.status != ProposalStatus.PENDING_APPROVAL:
                    raise PolicyViolation(
                        message=f"Proposal is not awaiting approval (status: {ProposalStatus(proposal.status).value})",
                        stage="approval",
                    )
                if record.status != ApprovalStatus.PENDING:
                    raise PolicyViolation(message="Approval has already been decided", stage="approval")

                now = self.clock()
                decided = await self.approvals.record_decision(record.id, verdict, comments, now)
                if not decided:
                    raise PolicyViolation(message="Approval has already been decided", stage="approval")

                logger.info(
                    f"Approval {record.id} {verdict.value} at level {record.level}",
                    extra={
                        "proposal_id": proposal.id,
                        "approval_id": record.id,
                        "level": record.level,
                        "decision": verdict.value,
                    },
                )

                if verdict == ApprovalStatus.REJECTED:
                    return await self._reject_from_approval(proposal, record, comments, now)
                return await self._advance_after_approval(proposal, record, now)

        return await self._run(ApprovalDecisionResult, "approval", operation)

    async def _reject_from_approval(
        self,
        proposal: Proposal,
        record: ApprovalRecord,
        comments: Optional[str],
        now: datetime,
    ) -> ApprovalDecisionResult:
        await self._transition(
            proposal,
            WorkflowTrigger.REJECT,
            first_write=False,
            rejected_at=now,
            rejection_reason=comments,
        )
        await self._emit(
            proposal,
            WorkflowEventType.PROPOSAL_REJECTED,
            [proposal.owner_email],
            rejected_by=record.approver_name or record.approver_email,
            level=record.level,
            reason=comments,
        )
        return ApprovalDecisionResult(
            success=True,
            proposal_status=ProposalStatus.REJECTED,
            next_stage="rejected",
        )

    async def _advance_after_approval(
        self,
        proposal: Proposal,
        record: ApprovalRecord,
        now: datetime,
    ) -> ApprovalDecisionResult:
        chain = await self.chains.get_for_proposal(proposal.id, proposal.org_id)
        if chain is None:
            raise TransientError(message=f"Approval chain missing for proposal {proposal.id}")

        level_complete = await self._level_complete(chain, proposal.id, record.level)
        pending = ApprovalDecisionResult(
            success=True,
            proposal_status=ProposalStatus.PENDING_APPROVAL,
            level_complete=level_complete,
            next_stage="pending",
        )
        if not level_complete:
            return pending

        if chain.parallel_approval:
            for level in chain.level_numbers:
                if not await self._level_complete(chain, proposal.id, level):
                    return pending
            return await self._approve(proposal, now)

        # A level completed earlier may still receive late approvals
        if record.level != chain.current_level:
            return pending

        next_level = chain.next_level_after(record.level)
        if next_level is None:
            return await self._approve(proposal, now)

        advanced = await self.chains.advance_level(chain.id, record.level, next_level)
        if not advanced:
            raise TransientError(
                message=f"Approval level {record.level} of proposal {proposal.id} was completed concurrently",
            )
        await self._activate_level(proposal, chain.get_level(next_level), now)
        return ApprovalDecisionResult(
            success=True,
            proposal_status=ProposalStatus.PENDING_APPROVAL,
            level_complete=True,
            activated_level=next_level,
            next_stage="next_approval_level",
        )

    async def _approve(self, proposal: Proposal, now: datetime) -> ApprovalDecisionResult:
        await self._transition(proposal, WorkflowTrigger.APPROVE, first_write=False, approved_at=now)
        await self._emit(proposal, WorkflowEventType.PROPOSAL_APPROVED, [proposal.owner_email])
        return ApprovalDecisionResult(
            success=True,
            proposal_status=ProposalStatus.APPROVED,
            level_complete=True,
            next_stage="signature",
        )

    # ------------------------------------------------------------------
    # Signature stage
    # ------------------------------------------------------------------

    async def request_signature(
        self,
        proposal_id: int,
        org_id: int,
        request: Union[SignatureRequestCreate, Dict[str, Any]],
    ) -> SignatureRequestResult:
        """
        Ask a signer to sign an approved proposal.

        WHAT: Creates a SignatureRequest with a generated verification code
        and expiry, and records a signature_requested event carrying the
        code for the signer.

        Returns:
            SignatureRequestResult with the request id and expiry
        """

        async def operation() -> SignatureRequestResult:
            signature_request, input_errors = self._parse(
                SignatureRequestCreate, request, WorkflowErrorKind.VALIDATION, "signature"
            )
            if input_errors:
                return SignatureRequestResult(success=False, errors=input_errors)

            async with self.locks.hold(proposal_id):
                proposal = await self._get_proposal(proposal_id, org_id, for_update=True)
                if proposal.status != ProposalStatus.APPROVED:
                    raise PolicyViolation(
                        message="Cannot request signature: proposal must be approved first",
                        stage="signature",
                        current_status=ProposalStatus(proposal.status).value,
                    )

                now = self.clock()
                # Guards against a concurrent status change in another process
                still_approved = await self.proposals.update_where(
                    proposal.id,
                    {"status": ProposalStatus.APPROVED},
                    updated_at=now,
                )
                if not still_approved:
                    raise PolicyViolation(
                        message="Cannot request signature: proposal must be approved first",
                        stage="signature",
                    )

                expiry_days = signature_request.expires_in_days or self.default_signature_expiry_days
                expires_at = now + timedelta(days=expiry_days)
                signature = await self.signatures.create(
                    org_id=org_id,
                    proposal_id=proposal.id,
                    signer_email=signature_request.signer_email,
                    signer_name=signature_request.signer_name,
                    signature_type=signature_request.signature_type,
                    verification_code=generate_verification_code(self.verification_code_length),
                    expires_at=expires_at,
                )

                await self._emit(
                    proposal,
                    WorkflowEventType.SIGNATURE_REQUESTED,
                    [signature.signer_email],
                    signature_id=signature.id,
                    signer_name=signature.signer_name,
                    verification_code=signature.verification_code,
                    expires_at=expires_at,
                    custom_message=signature_request.custom_message,
                )
                logger.info(
                    f"Signature requested from {signature.signer_email} for proposal {proposal.id}",
                    extra={"proposal_id": proposal.id, "signature_id": signature.id},
                )

                return SignatureRequestResult(
                    success=True,
                    signature_id=signature.id,
                    expires_at=expires_at,
                )

        return await self._run(SignatureRequestResult, "signature", operation)

    async def _load_open_signature(self, signature_id: int, org_id: int) -> SignatureRequest:
        signature = await self.signatures.get_by_id_and_org(signature_id, org_id)
        if signature is None:
            raise ResourceNotFoundError(
                message=f"Signature request {signature_id} not found",
                resource_type="SignatureRequest",
                resource_id=signature_id,
            )
        return signature

    @staticmethod
    def _ensure_open(proposal: Proposal, signature: SignatureRequest) -> None:
        if signature.signed_at is not None:
            raise PolicyViolation(message="Signature request has already been signed", stage="signature")
        if signature.declined_at is not None:
            raise PolicyViolation(message="Signature request has been declined", stage="signature")
        if proposal.status != ProposalStatus.APPROVED:
            raise PolicyViolation(
                message=f"Proposal is not awaiting signatures (status: {ProposalStatus(proposal.status).value})",
                stage="signature",
            )

    async def process_signature(
        self,
        signature_id: int,
        org_id: int,
        payload: Union[SignaturePayload, Dict[str, Any], None] = None,
    ) -> SignatureResult:
        """
        Record a signature and accept the proposal when it is the last one.

        WHAT: The request must be unsigned, not declined and not expired.
        A supplied verification code must match; the signature is then
        marked verified. Signature metadata is stored as given.

        Returns:
            SignatureResult with the resulting proposal status and the
            number of signatures still outstanding
        """

        async def operation() -> SignatureResult:
            signature_payload, input_errors = self._parse(
                SignaturePayload, payload if payload is not None else {}, WorkflowErrorKind.VALIDATION, "signature"
            )
            if input_errors:
                return SignatureResult(success=False, errors=input_errors)

            signature = await self._load_open_signature(signature_id, org_id)

            async with self.locks.hold(signature.proposal_id):
                proposal = await self._get_proposal(signature.proposal_id, org_id, for_update=True)
                await self.session.refresh(signature)
                self._ensure_open(proposal, signature)

                now = self.clock()
                if signature.is_expired(now):
                    raise PolicyViolation(
                        message=f"Signature request expired on {signature.expires_at:%Y-%m-%d}",
                        stage="signature",
                    )

                is_verified = False
                if signature_payload.verification_code is not None:
                    if not verification_codes_match(signature.verification_code, signature_payload.verification_code):
                        raise ValidationError(message="Invalid verification code", field="verification_code")
                    is_verified = True

                signed = await self.signatures.mark_signed(
                    signature.id,
                    signed_at=now,
                    signature_data=signature_payload.signature_data,
                    ip_address=signature_payload.ip_address,
                    user_agent=signature_payload.user_agent,
                    location_data=signature_payload.location_data,
                    is_verified=is_verified,
                )
                if not signed:
                    raise PolicyViolation(message="Signature request has already been signed", stage="signature")

                await self._emit(
                    proposal,
                    WorkflowEventType.SIGNATURE_RECORDED,
                    [proposal.owner_email],
                    signature_id=signature.id,
                    signer_name=signature.signer_name,
                    signer_email=signature.signer_email,
                    signed_at=now,
                )

                remaining = await self.signatures.count_unsigned(proposal.id)
                logger.info(
                    f"Signature {signature.id} recorded for proposal {proposal.id}, {remaining} remaining",
                    extra={
                        "proposal_id": proposal.id,
                        "signature_id": signature.id,
                        "remaining": remaining,
                        "is_verified": is_verified,
                    },
                )
                if remaining > 0:
                    return SignatureResult(
                        success=True,
                        proposal_status=ProposalStatus.APPROVED,
                        is_verified=is_verified,
                        remaining_signatures=remaining,
                    )

                await self._transition(proposal, WorkflowTrigger.ACCEPT, first_write=False, accepted_at=now)
                signers = [s.signer_email for s in await self.signatures.get_for_proposal(proposal.id, org_id)]
                await self._emit(
                    proposal,
                    WorkflowEventType.PROPOSAL_ACCEPTED,
                    [proposal.owner_email, *signers],
                    accepted_at=now,
                )
                return SignatureResult(
                    success=True,
                    proposal_status=ProposalStatus.ACCEPTED,
                    is_verified=is_verified,
                    remaining_signatures=0,
                )

        return await self._run(SignatureResult, "signature", operation)

    async def decline_signature(
        self,
        signature_id: int,
        org_id: int,
        reason: Optional[str] = None,
    ) -> SignatureResult:
        """
        Record that a signer declined; the proposal is rejected.
        """

        async def operation() -> SignatureResult:
            signature = await self._load_open_signature(signature_id, org_id)

            async with self.locks.hold(signature.proposal_id):
                proposal = await self._get_proposal(signature.proposal_id, org_id, for_update=True)
                await self.session.refresh(signature)
                self._ensure_open(proposal, signature)

                now = self.clock()
                declined = await self.signatures.mark_declined(signature.id, now, reason)
                if not declined:
                    raise PolicyViolation(message="Signature request is no longer open", stage="signature")

                rejection_reason = f"Signature declined by {signature.signer_name}"
                if reason:
                    rejection_reason = f"{rejection_reason}: {reason}"
                await self._transition(
                    proposal,
                    WorkflowTrigger.REJECT,
                    first_write=False,
                    rejected_at=now,
                    rejection_reason=rejection_reason,
                )
                await self._emit(
                    proposal,
                    WorkflowEventType.PROPOSAL_REJECTED,
                    [proposal.owner_email],
                    rejected_by=signature.signer_name,
                    reason=reason,
                )
                return SignatureResult(success=True, proposal_status=ProposalStatus.REJECTED)

        return await self._run(SignatureResult, "signature", operation)

    # ------------------------------------------------------------------
    # Timeout sweep
    # ------------------------------------------------------------------

    async def check_timeouts(
        self,
        now: Optional[datetime] = None,
        org_id: Optional[int] = None,
    ) -> TimeoutSweepResult:
        """
        Act on overdue approvals and expired signature requests.

        WHAT:
        - Overdue pending approvals (timeout_at < now) on a proposal still
          pending approval are escalated once (policy "escalate") or reject
          the proposal (policy "reject"). Stragglers on a level that is
          already complete are left alone.
        - Unsigned signature requests past expires_at are flagged once and
          a signature_expired event is recorded.

        WHY: There is no internal timer; a scheduler (or any caller)
        invokes this periodically.

        Args:
            now: Reference time (defaults to the engine clock)
            org_id: Restrict the sweep to one tenant

        Returns:
            TimeoutSweepResult listing what was acted on
        """

        async def operation() -> TimeoutSweepResult:
            reference = now or self.clock()
            result = TimeoutSweepResult(success=True)

            overdue = await self.approvals.get_overdue_pending(reference, org_id=org_id)
            by_proposal: Dict[int, List[ApprovalRecord]] = defaultdict(list)
            for record in overdue:
                by_proposal[record.proposal_id].append(record)

            for proposal_id, records in by_proposal.items():
                async with self.locks.hold(proposal_id):
                    await self._sweep_proposal_approvals(proposal_id, records, reference, result)

            for signature in await self.signatures.get_expired_unsigned(reference, org_id=org_id):
                async with self.locks.hold(signature.proposal_id):
                    proposal = await self.proposals.get_for_update(signature.proposal_id)
                    if not await self.signatures.mark_expiry_notified(signature.id, reference):
                        continue
                    # Requests left open on a rejected proposal expire silently
                    if proposal is None or proposal.status != ProposalStatus.APPROVED:
                        continue
                    await self._emit(
                        proposal,
                        WorkflowEventType.SIGNATURE_EXPIRED,
                        [proposal.owner_email, signature.signer_email],
                        signature_id=signature.id,
                        signer_name=signature.signer_name,
                        expired_at=signature.expires_at,
                    )
                    result.expired_signature_ids.append(signature.id)

            if overdue or result.expired_signature_ids:
                logger.info(
                    "Workflow timeout sweep finished",
                    extra={
                        "escalated": len(result.escalated_approval_ids),
                        "rejected": len(result.rejected_proposal_ids),
                        "expired_signatures": len(result.expired_signature_ids),
                    },
                )
            return result

        return await self._run(TimeoutSweepResult, "timeout", operation)

    async def _sweep_proposal_approvals(
        self,
        proposal_id: int,
        records: List[ApprovalRecord],
        now: datetime,
        result: TimeoutSweepResult,
    ) -> None:
        proposal = await self.proposals.get_for_update(proposal_id)
        if proposal is None or proposal.status != ProposalStatus.PENDING_APPROVAL:
            return

        chain = await self.chains.get_for_proposal(proposal.id, proposal.org_id)
        open_records = []
        for record in records:
            if chain is not None and await self._level_complete(chain, proposal.id, record.level):
                continue
            open_records.append(record)
        if not open_records:
            return

        if self.timeout_policy == TIMEOUT_POLICY_REJECT:
            levels = sorted({record.level for record in open_records})
            reason = f"Approval timed out at level {', '.join(str(level) for level in levels)}"
            won = await self.proposals.transition_status(
                proposal.id,
                ProposalStatus.PENDING_APPROVAL,
                transition(ProposalStatus.PENDING_APPROVAL, WorkflowTrigger.REJECT),
                rejected_at=now,
                rejection_reason=reason,
            )
            if not won:
                return
            for record in open_records:
                await self.approvals.mark_escalated(record.id, now)
            await self._emit(
                proposal,
                WorkflowEventType.PROPOSAL_REJECTED,
                [proposal.owner_email],
                reason=reason,
            )
            logger.warning(
                f"Proposal {proposal.id} auto-rejected after approval timeout",
                extra={"proposal_id": proposal.id, "levels": levels},
            )
            result.rejected_proposal_ids.append(proposal.id)
            return

        for record in open_records:
            if not await self.approvals.mark_escalated(record.id, now):
                continue
            await self._emit(
                proposal,
                WorkflowEventType.APPROVAL_ESCALATED,
                [record.approver_email, proposal.owner_email],
                approval_id=record.id,
                approver_name=record.approver_name,
                level=record.level,
                timeout_at=record.timeout_at,
            )
            logger.warning(
                f"Approval {record.id} overdue, escalated",
                extra={"proposal_id": proposal.id, "approval_id": record.id, "level": record.level},
            )
            result.escalated_approval_ids.append(record.id)

    # ------------------------------------------------------------------
    # Status projection
    # ------------------------------------------------------------------

    async def get_workflow_status(self, proposal_id: int, org_id: int) -> WorkflowStatus:
        """
        Project the current workflow state of a proposal.

        WHAT: Stage precedence is rejected, completed (accepted), signature
        (any signature request), approval (any approval record), draft.

        WHY: A pure read recomputed from the stored rows on every call, so
        it can never disagree with the source of truth.
        """

        async def operation() -> WorkflowStatus:
            proposal = await self._get_proposal(proposal_id, org_id)
            approvals = await self.approvals.get_for_proposal(proposal.id, org_id)
            signatures = await self.signatures.get_for_proposal(proposal.id, org_id)
            chain = await self.chains.get_for_proposal(proposal.id, org_id)
            now = self.clock()
            status = ProposalStatus(proposal.status)

            if status == ProposalStatus.REJECTED:
                stage = WorkflowStage.REJECTED
            elif status == ProposalStatus.ACCEPTED:
                stage = WorkflowStage.COMPLETED
            elif signatures:
                stage = WorkflowStage.SIGNATURE
            elif approvals:
                stage = WorkflowStage.APPROVAL
            else:
                stage = WorkflowStage.DRAFT

            max_level = max((record.level for record in approvals), default=0)
            approval_progress = ApprovalProgress(
                current_level=chain.current_level if chain is not None else max_level,
                total_levels=chain.total_levels if chain is not None else max_level,
                pending_approvals=sum(1 for r in approvals if r.status == ApprovalStatus.PENDING),
                completed_approvals=sum(1 for r in approvals if r.status == ApprovalStatus.APPROVED),
                rejected_approvals=sum(1 for r in approvals if r.status == ApprovalStatus.REJECTED),
            )

            open_signatures = [s for s in signatures if s.signed_at is None and s.declined_at is None]
            expired = [s for s in open_signatures if s.is_expired(now)]
            signature_progress = SignatureProgress(
                pending_signatures=len(open_signatures),
                completed_signatures=sum(1 for s in signatures if s.signed_at is not None),
                expired_signatures=len(expired),
                total_signatures=len(signatures),
            )

            warnings: List[str] = []
            if status == ProposalStatus.PENDING_APPROVAL:
                for record in approvals:
                    if record.status == ApprovalStatus.PENDING and record.timeout_at < now:
                        warnings.append(
                            f"Approval from {record.approver_name or record.approver_email} "
                            f"at level {record.level} is overdue"
                        )
            if status == ProposalStatus.APPROVED:
                for signature in expired:
                    warnings.append(f"Signature request for {signature.signer_email} has expired")

            return WorkflowStatus(
                success=True,
                proposal_id=proposal.id,
                proposal_status=status,
                current_stage=stage,
                approval_progress=approval_progress,
                signature_progress=signature_progress,
                warnings=warnings,
            )

        return await self._run(WorkflowStatus, "status", operation)


def _jsonable(value: Any) -> Any:
    """Make a payload value JSON-serializable for the outbox column."""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value


# Module-level lock registry shared by API requests and scheduled jobs
_proposal_locks: Optional[ProposalLocks] = None


def get_proposal_locks() -> ProposalLocks:
    """Get or create the process-wide proposal lock registry."""
    global _proposal_locks

    if _proposal_locks is None:
        _proposal_locks = ProposalLocks()

    return _proposal_locks
