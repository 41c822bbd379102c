"""
Notification rendering.

render() is pure: the output depends only on the snapshot and deltas given,
never on the clock or locale.
"""

from typing import List, Optional, Sequence

from pipeline.models import CanonicalSnapshot, Delta

TITLE = "🌱 **Garden Stock Update**"
EMPTY_PLACEHOLDER = "none"
UNKNOWN_WEATHER = "Unknown"
UNKNOWN_TEMPERATURE = "N/A"

# (category, heading) in display order; weather has its own section
SECTIONS = (
    ("gear", "**🧰 Gear**"),
    ("seeds", "**🌾 Seeds**"),
    ("eggs", "**🥚 Eggs**"),
)
CHANGES_HEADING = "**📈 Changes**"


def format_items(snapshot: CanonicalSnapshot, category: str) -> str:
    """Bullet list of a category, or the placeholder when empty."""
    items = snapshot.items(category)
    if not items:
        return f"• {EMPTY_PLACEHOLDER}"
    return "\n".join(f"• **{item.name}**: {item.quantity}" for item in items)


def format_delta(delta: Delta) -> str:
    return f"• {delta.item_name} {delta.signed_change}"


def render(snapshot: CanonicalSnapshot, deltas: Optional[Sequence[Delta]] = None) -> str:
    """
    Render a snapshot, and optionally its deltas, into the notification text.

    Args:
        snapshot: Snapshot to display
        deltas: Changes since the previous snapshot; the change summary
            section is only added when this is non-empty

    Returns:
        Formatted message text
    """
    sections: List[str] = [TITLE]

    for category, heading in SECTIONS:
        sections.append(f"{heading}\n{format_items(snapshot, category)}")

    sections.append(
        f"**🌤️ Weather**: {snapshot.weather or UNKNOWN_WEATHER}\n"
        f"**🌡️ Temp**: {snapshot.temperature or UNKNOWN_TEMPERATURE}°C"
    )

    if deltas:
        lines = "\n".join(format_delta(delta) for delta in deltas)
        sections.append(f"{CHANGES_HEADING}\n{lines}")

    return "\n\n".join(sections)
