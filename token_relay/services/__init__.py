"""Service layer exports."""

from .authorization import AuthorizationFlowService, CallbackOutcome, CallbackStage
from .oauth_state import OAuthStateValidator, SessionCookieSigner
from .periodic import PeriodicTask
from .refresh_scheduler import RefreshRunSummary, RefreshScheduler
from .session_reaper import SessionReaper
from .token_refresh import TokenRefreshService

__all__ = [
    "AuthorizationFlowService",
    "CallbackOutcome",
    "CallbackStage",
    "OAuthStateValidator",
    "PeriodicTask",
    "RefreshRunSummary",
    "RefreshScheduler",
    "SessionCookieSigner",
    "SessionReaper",
    "TokenRefreshService",
]
