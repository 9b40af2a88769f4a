"""
Test factories for creating test data.

WHY: Factories provide a consistent, reusable way to create test objects,
reducing duplication and keeping tests stable when models change. Every
factory commits, so data survives a rollback performed by the code under
test.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from proposal_engine.dao.proposal import ProposalDAO, ProposalItemDAO, ProposalTemplateDAO
from proposal_engine.models.proposal import (
    Proposal,
    ProposalItem,
    ProposalStatus,
    ProposalTemplate,
)
from proposal_engine.models.workflow import SignatureRequest, SignatureType
from proposal_engine.services.pricing import PricingCalculator, line_total


# Reference "now" for clock-dependent tests
FIXED_NOW = datetime(2026, 3, 2, 9, 0, 0)

DEFAULT_CONTENT = {
    "overview": "Fully managed IT services for Acme Corp.",
    "scope": ["Helpdesk", "Backups", "Patch management"],
    "pricing": {"model": "monthly"},
}

DEFAULT_ITEMS = [
    {"name": "Helpdesk", "quantity": Decimal("2"), "unit_price": Decimal("100.00"), "discount_percent": Decimal("0")},
]


def chain_config(
    levels: int = 1,
    approvers_per_level: int = 1,
    required_approvals: int = 1,
    timeout_hours: int = 48,
    parallel: bool = False,
) -> Dict[str, Any]:
    """
    Build an approval chain configuration.

    Approver ids are ``level * 100 + n`` and emails
    ``approver{level}_{n}@msp.example``.
    """
    return {
        "parallel_approval": parallel,
        "levels": [
            {
                "level": level,
                "required_approvals": required_approvals,
                "timeout_hours": timeout_hours,
                "approvers": [
                    {
                        "id": level * 100 + n,
                        "email": f"approver{level}_{n}@msp.example",
                        "name": f"Approver {level}.{n}",
                    }
                    for n in range(1, approvers_per_level + 1)
                ],
            }
            for level in range(1, levels + 1)
        ],
    }


class ProposalFactory:
    """
    Factory for creating Proposal test instances.

    WHY: Centralizes proposal creation with priced items, so workflow
    tests start from a proposal that passes validation.
    """

    _counter = 0

    @classmethod
    async def create(
        cls,
        session: AsyncSession,
        org_id: int = 1,
        title: str = "Managed IT Services",
        status: ProposalStatus = ProposalStatus.DRAFT,
        client_id: int = 42,
        client_name: str = "Acme Corp",
        owner_email: Optional[str] = "owner@msp.example",
        content: Optional[Dict[str, Any]] = None,
        items: Optional[List[Dict[str, Any]]] = None,
        currency: str = "USD",
        tax_rate_percent: Decimal = Decimal("10"),
        valid_until: Optional[datetime] = None,
    ) -> Proposal:
        """
        Create a proposal with items for testing.

        Args:
            session: Database session
            org_id: Tenant
            title: Proposal title
            status: Initial status
            items: Item dicts (defaults to one 2 x 100.00 item)

        Returns:
            Created Proposal instance
        """
        cls._counter += 1
        items = DEFAULT_ITEMS if items is None else items
        pricing = PricingCalculator(tax_rate_percent=tax_rate_percent).calculate(items) if items else None

        proposal = await ProposalDAO(session).create(
            org_id=org_id,
            client_id=client_id,
            client_name=client_name,
            owner_email=owner_email,
            proposal_number=f"PROP-TEST-{cls._counter:06d}",
            title=title,
            content=DEFAULT_CONTENT if content is None else content,
            status=status,
            currency=currency,
            tax_rate_percent=tax_rate_percent,
            total_amount=pricing.subtotal if pricing else Decimal("0"),
            tax_amount=pricing.tax_amount if pricing else Decimal("0"),
            final_amount=pricing.final_amount if pricing else Decimal("0"),
            valid_until=valid_until,
        )
        if items:
            await ProposalItemDAO(session).replace_items(
                proposal.id,
                org_id,
                [{**item, "total_price": line_total(item)} for item in items],
            )
        await session.commit()
        await session.refresh(proposal)
        return proposal


class ProposalItemFactory:
    """Factory for adding a single item to an existing proposal."""

    @staticmethod
    async def create(
        session: AsyncSession,
        proposal: Proposal,
        name: str = "Backup",
        quantity: Decimal = Decimal("1"),
        unit_price: Decimal = Decimal("50.00"),
        discount_percent: Decimal = Decimal("0"),
        item_order: int = 99,
    ) -> ProposalItem:
        values = {
            "name": name,
            "quantity": quantity,
            "unit_price": unit_price,
            "discount_percent": discount_percent,
        }
        item = await ProposalItemDAO(session).create(
            org_id=proposal.org_id,
            proposal_id=proposal.id,
            total_price=line_total(values),
            item_order=item_order,
            **values,
        )
        await session.commit()
        return item


class ProposalTemplateFactory:
    """Factory for creating ProposalTemplate test instances."""

    @staticmethod
    async def create(
        session: AsyncSession,
        org_id: int = 1,
        name: str = "Managed Services",
        is_active: bool = True,
    ) -> ProposalTemplate:
        template = await ProposalTemplateDAO(session).create(
            org_id=org_id,
            name=name,
            template_content={
                "sections": [
                    {"id": "overview", "type": "text"},
                    {"id": "pricing", "type": "pricing_table"},
                ]
            },
            pricing_structure={"currency": "USD", "tax_rate": 10},
            is_active=is_active,
        )
        await session.commit()
        return template


class SignatureRequestFactory:
    """
    Factory for creating SignatureRequest rows directly.

    WHY: Lets tests place a request in states (already expired, signed)
    that are slow to reach through the engine.
    """

    @staticmethod
    async def create(
        session: AsyncSession,
        proposal: Proposal,
        signer_email: str = "signer@acme.example",
        signer_name: str = "Sam Signer",
        verification_code: str = "ABCD1234EF",
        expires_at: Optional[datetime] = None,
        signed_at: Optional[datetime] = None,
    ) -> SignatureRequest:
        signature = SignatureRequest(
            org_id=proposal.org_id,
            proposal_id=proposal.id,
            signer_email=signer_email,
            signer_name=signer_name,
            signature_type=SignatureType.ELECTRONIC,
            verification_code=verification_code,
            expires_at=expires_at or datetime.utcnow() + timedelta(days=30),
            signed_at=signed_at,
        )
        session.add(signature)
        await session.commit()
        await session.refresh(signature)
        return signature
