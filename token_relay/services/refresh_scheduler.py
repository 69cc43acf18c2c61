"""Proactive renewal of refresh tokens that have not been exchanged recently."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from token_relay.clients.token_exchange import TokenExchangeClient
from token_relay.clients.token_repository import TokenRepository
from token_relay.models.oauth import RefreshTokenRecord

logger = logging.getLogger(__name__)


@dataclass
class RefreshRunSummary:
    examined: int = 0
    refreshed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    superseded: list[str] = field(default_factory=list)
    aborted: bool = False


class RefreshScheduler:
    """Scan for stale records and exchange each one independently."""

    def __init__(
        self,
        repository: TokenRepository,
        exchange_client: TokenExchangeClient,
        *,
        stale_after_days: float = 3,
        concurrency: int = 1,
    ) -> None:
        self._repository = repository
        self._exchange = exchange_client
        self._stale_after_days = stale_after_days
        self._concurrency = max(1, concurrency)

    async def run_once(self) -> RefreshRunSummary:
        """One scheduled run; never raises."""
        summary = RefreshRunSummary()
        logger.info("Starting token refresh run")
        try:
            records = await asyncio.to_thread(
                self._repository.list_stale, self._stale_after_days
            )
        except Exception:  # pylint: disable=broad-except
            logger.exception("Token refresh run aborted; will retry on next schedule")
            summary.aborted = True
            return summary

        summary.examined = len(records)
        logger.info("Found %d tokens to refresh", len(records))

        semaphore = asyncio.Semaphore(self._concurrency)

        async def guarded(record: RefreshTokenRecord) -> None:
            async with semaphore:
                await self._refresh_record(record, summary)

        # Stale records are unique per subject, so no two workers share a subject.
        await asyncio.gather(*(guarded(record) for record in records))

        logger.info(
            "Token refresh run completed",
            extra={
                "refreshed": len(summary.refreshed),
                "failed": len(summary.failed),
                "superseded": len(summary.superseded),
            },
        )
        return summary

    async def _refresh_record(self, record: RefreshTokenRecord, summary: RefreshRunSummary) -> None:
        try:
            grant = await self._exchange.refresh(record.refresh_token)
            # Providers that do not rotate still get the write so updated_at moves forward.
            new_token = grant.refresh_token or record.refresh_token
            replaced = await asyncio.to_thread(
                self._repository.replace_refresh_token,
                record.sub,
                record.refresh_token,
                new_token,
            )
        except Exception as exc:  # pylint: disable=broad-except
            summary.failed.append(record.sub)
            logger.error(
                "Failed to refresh token for sub: %s (created: %s, last updated: %s): %s",
                record.sub,
                record.created_at.isoformat(),
                record.updated_at.isoformat(),
                exc,
            )
            return

        if not replaced:
            # A login wrote a newer token while the exchange was in flight; keep it.
            summary.superseded.append(record.sub)
            logger.info(
                "Stored token for sub: %s changed during refresh; keeping the newer token",
                record.sub,
            )
            return

        summary.refreshed.append(record.sub)
        logger.info(
            "Successfully refreshed token for sub: %s (created: %s, last updated: %s)",
            record.sub,
            record.created_at.isoformat(),
            record.updated_at.isoformat(),
        )


__all__ = ["RefreshRunSummary", "RefreshScheduler"]
