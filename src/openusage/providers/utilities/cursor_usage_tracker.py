# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Cursor Usage Tracking Mixin

Fetches current-period spend from Cursor's Connect-protocol dashboard
service and turns it into metric lines. Cursor bills in cents against a
monthly plan allowance plus an optional on-demand spend limit.

API Details:
- Usage: POST https://api2.cursor.sh/aiserver.v1.DashboardService/GetCurrentPeriodUsage
- Plan:  POST https://api2.cursor.sh/aiserver.v1.DashboardService/GetPlanInfo
- Auth: Authorization: Bearer <access token>, Connect-Protocol-Version: 1, body "{}"
- Response: {"enabled": bool, "billingCycleEnd": str,
             "planUsage": {"totalSpend", "limit", "bonusSpend"},
             "spendLimitUsage": {"individualLimit", "individualRemaining",
                                 "pooledLimit", "pooledRemaining"}}
"""

import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ...core.errors import FeatureUnavailableError, MalformedResponseError, ProbeNetworkError
from ...core.types import MetricLine, ProgressLine, TextLine
from .formatting import dollars, is_number, plan_label, to_iso

if TYPE_CHECKING:
    from ...host.context import ProbeContext
    from ...host.http import HttpResponse

lib_logger = logging.getLogger("openusage")

CURSOR_API_BASE = "https://api2.cursor.sh"
CURSOR_USAGE_ENDPOINT = "/aiserver.v1.DashboardService/GetCurrentPeriodUsage"
CURSOR_PLAN_ENDPOINT = "/aiserver.v1.DashboardService/GetPlanInfo"


class CursorUsageTracker:
    """
    Mixin class providing usage tracking for the Cursor provider.

    Usage:
        class CursorProvider(CursorUsageTracker, UsageProvider):
            ...
    """

    provider_id: str

    # =========================================================================
    # CONNECT REQUESTS
    # =========================================================================

    async def _connect_post(
        self, ctx: "ProbeContext", endpoint: str, access_token: str
    ) -> "HttpResponse":
        return await ctx.http.request(
            "POST",
            f"{CURSOR_API_BASE}{endpoint}",
            headers={
                "Authorization": f"Bearer {access_token}",
                "Content-Type": "application/json",
                "Connect-Protocol-Version": "1",
            },
            body_text="{}",
        )

    async def fetch_cursor_usage(
        self, ctx: "ProbeContext", access_token: str
    ) -> "HttpResponse":
        return await self._connect_post(ctx, CURSOR_USAGE_ENDPOINT, access_token)

    async def fetch_cursor_plan_name(
        self, ctx: "ProbeContext", access_token: str
    ) -> Optional[str]:
        """
        Fetch the plan display name. Best effort: any failure yields None.

        Args:
            ctx: Probe context
            access_token: Token that just succeeded on the usage endpoint

        Returns:
            Plan label (e.g. "Pro") or None
        """
        try:
            response = await self._connect_post(ctx, CURSOR_PLAN_ENDPOINT, access_token)
        except ProbeNetworkError as e:
            lib_logger.warning(f"[{self.provider_id}] Plan info fetch failed: {e}")
            return None
        if not response.ok:
            lib_logger.debug(f"[{self.provider_id}] Plan info returned HTTP {response.status}")
            return None
        body = response.json()
        plan_info = body.get("planInfo") if isinstance(body, dict) else None
        if not isinstance(plan_info, dict):
            return None
        return plan_label(plan_info.get("planName"))

    # =========================================================================
    # LINE EXTRACTION
    # =========================================================================

    def extract_cursor_lines(self, usage: Any) -> List[MetricLine]:
        """
        Build metric lines from a GetCurrentPeriodUsage body.

        Raises:
            MalformedResponseError: body is not a JSON object
            FeatureUnavailableError: usage tracking is off for this account
        """
        if not isinstance(usage, dict):
            raise MalformedResponseError()
        plan_usage = usage.get("planUsage")
        if not usage.get("enabled") or not isinstance(plan_usage, dict):
            raise FeatureUnavailableError("Usage tracking disabled for this account.")

        total_spend = plan_usage.get("totalSpend")
        limit = plan_usage.get("limit")
        if not is_number(total_spend) or not is_number(limit):
            raise MalformedResponseError()

        lines: List[MetricLine] = [
            ProgressLine(
                label="Plan usage",
                used=dollars(total_spend),
                limit=dollars(limit),
                unit="dollars",
                resets_at=to_iso(usage.get("billingCycleEnd")),
            )
        ]

        bonus = plan_usage.get("bonusSpend")
        if is_number(bonus) and bonus > 0:
            lines.append(TextLine(label="Bonus spend", value=f"${dollars(bonus)}"))

        on_demand = self._on_demand_line(usage.get("spendLimitUsage"))
        if on_demand is not None:
            lines.append(on_demand)
        return lines

    def _on_demand_line(self, spend: Optional[Dict[str, Any]]) -> Optional[ProgressLine]:
        if not isinstance(spend, dict):
            return None

        def first_number(*keys: str) -> float:
            for key in keys:
                if is_number(spend.get(key)):
                    return float(spend[key])
            return 0.0

        limit = first_number("individualLimit", "pooledLimit")
        remaining = first_number("individualRemaining", "pooledRemaining")
        if limit <= 0:
            return None
        return ProgressLine(
            label="On-demand",
            used=dollars(limit - remaining),
            limit=dollars(limit),
            unit="dollars",
        )
