"""
Unit tests for approval DAOs.

WHY: Level completion and the timeout sweep rely on these queries:
1. Decisions are recorded once
2. Per-level counts cover every status
3. Overdue pending records are found once (escalation flag)
"""

import pytest
from datetime import timedelta

from proposal_engine.dao.approval import ApprovalChainDAO, ApprovalRecordDAO
from proposal_engine.models.workflow import ApprovalStatus
from tests.factories import FIXED_NOW, ProposalFactory, chain_config


async def _records(session, proposal, level=1, count=2, timeout_at=None, org_id=1):
    return await ApprovalRecordDAO(session).create_many(
        [
            {
                "org_id": org_id,
                "proposal_id": proposal.id,
                "approver_id": level * 100 + n,
                "approver_email": f"approver{n}@msp.example",
                "level": level,
                "status": ApprovalStatus.PENDING,
                "timeout_at": timeout_at or FIXED_NOW + timedelta(hours=48),
            }
            for n in range(1, count + 1)
        ]
    )


class TestApprovalRecordDAO:

    @pytest.mark.asyncio
    async def test_record_decision_once(self, db_session):
        proposal = await ProposalFactory.create(db_session)
        record, _ = await _records(db_session, proposal)
        dao = ApprovalRecordDAO(db_session)

        first = await dao.record_decision(record.id, ApprovalStatus.APPROVED, "ok", FIXED_NOW)
        second = await dao.record_decision(record.id, ApprovalStatus.REJECTED, "no", FIXED_NOW)

        assert first is True
        assert second is False
        assert record.status == ApprovalStatus.APPROVED
        assert record.comments == "ok"

    @pytest.mark.asyncio
    async def test_count_by_status_for_level(self, db_session):
        proposal = await ProposalFactory.create(db_session)
        first, _ = await _records(db_session, proposal, count=2)
        await _records(db_session, proposal, level=2, count=1)
        dao = ApprovalRecordDAO(db_session)
        await dao.record_decision(first.id, ApprovalStatus.APPROVED, None, FIXED_NOW)

        counts = await dao.count_by_status_for_level(proposal.id, 1)

        assert counts == {
            ApprovalStatus.PENDING: 1,
            ApprovalStatus.APPROVED: 1,
            ApprovalStatus.REJECTED: 0,
        }

    @pytest.mark.asyncio
    async def test_get_overdue_pending(self, db_session):
        proposal = await ProposalFactory.create(db_session)
        overdue = await _records(db_session, proposal, count=1, timeout_at=FIXED_NOW - timedelta(hours=1))
        await _records(db_session, proposal, level=2, count=1)
        dao = ApprovalRecordDAO(db_session)

        found = await dao.get_overdue_pending(FIXED_NOW)

        assert [r.id for r in found] == [overdue[0].id]
        assert await dao.get_overdue_pending(FIXED_NOW, org_id=2) == []

    @pytest.mark.asyncio
    async def test_escalated_record_not_overdue_again(self, db_session):
        proposal = await ProposalFactory.create(db_session)
        (record,) = await _records(db_session, proposal, count=1, timeout_at=FIXED_NOW - timedelta(hours=1))
        dao = ApprovalRecordDAO(db_session)

        assert await dao.mark_escalated(record.id, FIXED_NOW) is True
        assert await dao.mark_escalated(record.id, FIXED_NOW) is False
        assert await dao.get_overdue_pending(FIXED_NOW) == []

    @pytest.mark.asyncio
    async def test_get_for_proposal_ordered_by_level(self, db_session):
        proposal = await ProposalFactory.create(db_session)
        await _records(db_session, proposal, level=2, count=1)
        await _records(db_session, proposal, level=1, count=1)

        records = await ApprovalRecordDAO(db_session).get_for_proposal(proposal.id, 1)

        assert [r.level for r in records] == [1, 2]


class TestApprovalChainDAO:

    @pytest.mark.asyncio
    async def test_advance_level_once(self, db_session):
        proposal = await ProposalFactory.create(db_session)
        config = chain_config(levels=3)
        dao = ApprovalChainDAO(db_session)
        chain = await dao.create(
            org_id=1,
            proposal_id=proposal.id,
            levels=config["levels"],
            parallel_approval=False,
            current_level=1,
        )

        assert await dao.advance_level(chain.id, 1, 2) is True
        assert await dao.advance_level(chain.id, 1, 2) is False
        assert chain.current_level == 2

    @pytest.mark.asyncio
    async def test_chain_level_helpers(self, db_session):
        proposal = await ProposalFactory.create(db_session)
        config = chain_config(levels=2)
        # Stored out of order on purpose
        chain = await ApprovalChainDAO(db_session).create(
            org_id=1,
            proposal_id=proposal.id,
            levels=list(reversed(config["levels"])),
            current_level=1,
        )

        assert chain.level_numbers == [1, 2]
        assert chain.total_levels == 2
        assert chain.next_level_after(1) == 2
        assert chain.next_level_after(2) is None
        assert chain.get_level(2)["approvers"][0]["id"] == 201
        assert chain.get_level(5) is None

        found = await ApprovalChainDAO(db_session).get_for_proposal(proposal.id, 1)
        assert found.id == chain.id
        assert await ApprovalChainDAO(db_session).get_for_proposal(proposal.id, 2) is None
