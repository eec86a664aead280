"""Usage accounting: pricing, usage rows and per-user summaries.

Pricing is a flat two-tier lookup, not linear in resolution:

========  ==================
Tier      Cost (default)
========  ==================
1K, 2K    ``cost_standard`` (0.67)
4K        ``cost_high`` (1.20)
========  ==================
"""

from __future__ import annotations

import logging

from herostudio.core.config import HeroStudioConfig
from herostudio.core.models import Resolution, UsageAction, UsageRecord, UsageSummary
from herostudio.core.storage import StorageBackend

logger = logging.getLogger(__name__)


class UsageAccountant:
    """Prices generations and reads/writes the usage log."""

    def __init__(self, config: HeroStudioConfig, storage: StorageBackend) -> None:
        self.config = config
        self.storage = storage

    def cost(self, tier: Resolution) -> float:
        if tier == Resolution.UHD:
            return self.config.cost_high
        return self.config.cost_standard

    async def record(
        self,
        user_id: str,
        action: UsageAction,
        tier: Resolution,
        tokens_in: int,
        tokens_out: int,
    ) -> UsageRecord:
        """Persist one usage row and return it."""
        record = UsageRecord(
            user_id=user_id,
            action=action,
            resolution=tier,
            tokens_input=tokens_in,
            tokens_output=tokens_out,
            cost=self.cost(tier),
        )
        await self.storage.insert_usage_row(record)
        logger.info(
            f"Recorded {action.value} for {user_id} "
            f"({tier.value}, {tokens_in}+{tokens_out} tokens, cost {record.cost:.2f})"
        )
        return record

    async def history(self, user_id: str) -> list[UsageRecord]:
        """All usage rows for ``user_id``, newest first."""
        return await self.storage.query_usage_rows(user_id)

    async def summarize(self, user_id: str) -> UsageSummary:
        """Aggregate every usage row of ``user_id``.

        Counts are split by action; token totals and cost are plain sums,
        with the cost rounded to cents.
        """
        rows = await self.storage.query_usage_rows(user_id)

        generated = sum(1 for row in rows if row.action == UsageAction.GENERATE)
        refines = sum(1 for row in rows if row.action == UsageAction.REFINE)
        tokens_in = sum(row.tokens_input for row in rows)
        tokens_out = sum(row.tokens_output for row in rows)

        return UsageSummary(
            user_id=user_id,
            images_generated=generated,
            refines_used=refines,
            total_images=len(rows),
            tokens_input=tokens_in,
            tokens_output=tokens_out,
            tokens_total=tokens_in + tokens_out,
            estimated_cost=round(sum(row.cost for row in rows), 2),
        )

    async def reset(self, user_id: str) -> int:
        """Delete every usage row of ``user_id``.  Returns the number removed."""
        deleted = await self.storage.delete_usage_rows(user_id)
        logger.info(f"Usage history reset for {user_id}")
        return deleted
