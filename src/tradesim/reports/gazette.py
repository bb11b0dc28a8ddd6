from datetime import datetime
from collections import Counter

from ..core.log import AuditLog


def generate_gazette(log: AuditLog, at: datetime) -> str:
    """
    Generates a concise gazette report from an AuditLog.
    """
    lines = [f"== Road Gazette, {at.strftime('%Y-%m-%d %H:%M')} =="]
    for entry in log.entries:
        reason = entry.reason or ""
        prefix = f"[{entry.type}]"
        if entry.caravan_id:
            prefix += f" {entry.caravan_id}"
        lines.append(f"{prefix} {reason}".rstrip())

    counts = Counter(entry.type for entry in log.of_type("caravan.event."))
    if counts:
        lines.append("-- Roadside tally --")
        for event_type, count in sorted(counts.items()):
            lines.append(f"{event_type.rsplit('.', 1)[-1]}: {count}")
    return "\n".join(lines) + "\n"
