"""Deterministic verification of extracted purchases."""

from .verifier import SenderProfile, VerificationResult, Verifier

__all__ = ["SenderProfile", "VerificationResult", "Verifier"]
