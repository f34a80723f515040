"""Verification plane exports."""

from loopguard.verification_plane.completion import (
    CompletionResult,
    CompletionVerifier,
    VerificationOutcome,
)

__all__ = ["CompletionResult", "CompletionVerifier", "VerificationOutcome"]
