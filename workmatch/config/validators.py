"""Non-fatal configuration checks."""

import warnings
from typing import Any, Dict, List


def check_for_warnings(config_dict: Dict[str, Any]) -> List[str]:
    """
    Check raw configuration for settings that are valid but suspicious.

    Args:
        config_dict: Raw configuration dictionary

    Returns:
        List of warning messages
    """
    warning_messages = []

    matching = config_dict.get("matching") or {}
    if isinstance(matching, dict):
        threshold = matching.get("min_match_score_for_notification")
        if isinstance(threshold, int) and threshold < 50:
            warning_messages.append(
                f"Low min_match_score_for_notification ({threshold}) may notify "
                "workers about marginal matches"
            )

        batch_size = matching.get("scan_batch_size")
        if isinstance(batch_size, int) and batch_size > 10_000:
            warning_messages.append(
                f"Large scan_batch_size ({batch_size}) keeps many profiles in memory per batch"
            )

    notifications = config_dict.get("notifications") or {}
    if isinstance(notifications, dict):
        enabled = [
            str(channel).strip().upper().replace("-", "_")
            for channel in notifications.get("enabled_channels") or []
        ]
        method = notifications.get("job_match_delivery_method")
        if isinstance(method, str):
            normalized = method.strip().upper().replace("-", "_")
            if enabled and normalized not in enabled:
                warning_messages.append(
                    f"job_match_delivery_method '{method}' is not in enabled_channels; "
                    "job-match notifications will be recorded but not delivered"
                )

        concurrency = notifications.get("max_concurrency")
        if isinstance(concurrency, int) and concurrency > 32:
            warning_messages.append(
                f"High notification max_concurrency ({concurrency}) may overload channel providers"
            )

    return warning_messages


def emit_warnings(warning_messages: List[str]) -> None:
    """Emit each message through the warnings module."""
    for message in warning_messages:
        warnings.warn(message, UserWarning, stacklevel=2)
