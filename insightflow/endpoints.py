"""
Task endpoints for external schedulers (Cloud Scheduler, cron + curl).

Every request builds its collaborators from persisted state and tears them
down again, so requests share nothing in memory.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict

from flask import Blueprint, current_app, jsonify

from insightflow.cache import OfflineCache
from insightflow.config import InsightFlowConfig
from insightflow.context import AppContext
from insightflow.errors import InsightFlowError
from insightflow.scheduler import fire_now

logger = logging.getLogger(__name__)

tasks_bp = Blueprint("tasks_bp", __name__, url_prefix="/tasks")


def _config() -> InsightFlowConfig:
    return current_app.config["INSIGHTFLOW_CONFIG"]


def _overrides() -> Dict[str, Any]:
    """Collaborators injected at app creation (tests, embedding)."""
    return current_app.config.get("INSIGHTFLOW_OVERRIDES") or {}


async def _with_context(action: Callable[[AppContext], Awaitable[Any]]) -> Any:
    overrides = _overrides()
    context = AppContext.from_config(_config(), **overrides)
    try:
        return await action(context)
    finally:
        if "transport" not in overrides:
            await context.aclose()


def _run(label: str, coro_factory: Callable[[], Awaitable[Dict[str, Any]]]):
    try:
        return jsonify(asyncio.run(coro_factory()))
    except InsightFlowError as e:
        logger.warning("%s failed: %s", label, e)
        return jsonify({"error": str(e)}), 502
    except Exception as e:
        logger.exception("%s failed", label)
        return jsonify({"error": str(e)}), 500


@tasks_bp.route("/notifications/fire", methods=["POST"])
def fire_notifications():
    """Deliver every enabled digest now."""

    async def run() -> Dict[str, Any]:
        delivered = await fire_now(_config(), **_overrides())
        return {"status": "success", "delivered": delivered}

    return _run("Fire notifications", run)


@tasks_bp.route("/notifications/reschedule", methods=["POST"])
def reschedule_notifications():
    async def run() -> Dict[str, Any]:
        registered = await _with_context(lambda context: context.scheduler.reschedule())
        return {"status": "success", "scheduled": registered}

    return _run("Reschedule notifications", run)


@tasks_bp.route("/notifications/deliver_due", methods=["POST"])
def deliver_due_notifications():
    """Deliver recurring registrations whose trigger matches the current minute."""

    async def deliver(context: AppContext) -> int:
        deliver_due = getattr(context.channel, "deliver_due", None)
        if deliver_due is None:
            raise InsightFlowError(f"Channel {context.channel.name} delivers recurring notifications itself")
        return await deliver_due()

    async def run() -> Dict[str, Any]:
        return {"status": "success", "delivered": await _with_context(deliver)}

    return _run("Deliver due notifications", run)


@tasks_bp.route("/cache/clear_expired", methods=["POST"])
def clear_expired_cache():
    cache = OfflineCache(_config().cache_dir)
    removed = cache.clear_expired()
    return jsonify({"status": "success", "removed": removed, "size": cache.formatted_size()})


@tasks_bp.route("/cache/size", methods=["GET"])
def cache_size():
    cache = OfflineCache(_config().cache_dir)
    size = cache.size_bytes()
    return jsonify({"bytes": size, "formatted": cache.formatted_size()})


def get_manifest():
    """Returns the manifest for the task endpoints."""
    return {
        "name": "InsightFlow Tasks",
        "description": "Scheduled digest delivery and offline cache maintenance.",
        "tools": [
            {"name": "fire_notifications", "description": "Delivers every enabled analytics digest immediately.", "path": "/tasks/notifications/fire", "method": "POST"},
            {"name": "reschedule_notifications", "description": "Re-registers the recurring digest for every enabled website.", "path": "/tasks/notifications/reschedule", "method": "POST"},
            {"name": "deliver_due_notifications", "description": "Delivers recurring digests due this minute.", "path": "/tasks/notifications/deliver_due", "method": "POST"},
            {"name": "clear_expired_cache", "description": "Removes expired and corrupt offline cache entries.", "path": "/tasks/cache/clear_expired", "method": "POST"},
            {"name": "cache_size", "description": "Reports the size of the offline cache.", "path": "/tasks/cache/size", "method": "GET"},
        ],
    }


@tasks_bp.route("/manifest", methods=["GET"])
def manifest():
    return jsonify(get_manifest())
