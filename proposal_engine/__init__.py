"""Proposal drafting, approval and signature workflow service."""
