from __future__ import annotations

import os
import time

from django.http import JsonResponse

from presence_gateway.presence.conf import get_presence_registry


def health(request):
    """
    Load balancer health check endpoint.

    Keep it cheap and dependency-free:
    - No Redis call (avoid cascading failure during Redis maintenance)
    """

    return JsonResponse(
        {
            "status": "ok",
            "ts": int(time.time()),
            "instance_id": os.environ.get("INSTANCE_ID", "unknown-instance"),
        }
    )


async def presence_health(request):
    """
    Pings every presence shard. 503 if any of them is unreachable.
    """

    report = await get_presence_registry().health_check()
    status = 200 if report["status"] == "healthy" else 503
    return JsonResponse(report, status=status)
