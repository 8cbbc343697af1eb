"""Proposal validation package."""

from pocket_ledger.validation.validator import ProposalValidator

__all__ = ["ProposalValidator"]
