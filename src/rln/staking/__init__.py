"""Staking subsystem — membership registrations and slashing."""

from rln.staking.registry import MembershipRegistry

__all__ = ["MembershipRegistry"]
