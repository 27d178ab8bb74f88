"""Consent state machine and DM reply classifiers."""

from voicegate.services.consent_manager.manager import (
    ConsentClassifier,
    ConsentManagerService,
    ConsentOutcome,
    ConsentState,
    KeywordConsentClassifier,
)

__all__ = [
    "ConsentClassifier",
    "ConsentManagerService",
    "ConsentOutcome",
    "ConsentState",
    "KeywordConsentClassifier",
]
