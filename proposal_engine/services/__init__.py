"""
Business logic services package.

WHY: Services contain business logic separated from API routes and data access,
following the three-layer architecture (API → Service → DAO). The workflow
engine is the only service that changes a proposal's status after drafting.
"""
