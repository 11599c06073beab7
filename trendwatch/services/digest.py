"""Daily trend digest: the best current trends per entity type, filtered by
each recipient's minimum volume and growth.
"""

import html
from datetime import datetime
from typing import Any

import structlog
from pydantic import BaseModel, Field

from trendwatch.schemas.trend import EntityType, Recipient
from trendwatch.services.detection import TrendDetector, TrendRow

log = structlog.get_logger(__name__)

# Candidates ranked per type before the recipient's filters, and rows kept after
DIGEST_CANDIDATES = 20
DIGEST_PER_TYPE = 5

SECTION_TITLES: dict[EntityType, str] = {
    EntityType.hashtag: "Top Hashtags",
    EntityType.sound: "Top Sounds",
    EntityType.creator: "Top Creators",
}

VOLUME_LABELS: dict[EntityType, str] = {
    EntityType.hashtag: "views",
    EntityType.sound: "plays",
    EntityType.creator: "followers",
}


class DailyDigest(BaseModel):
    user_id: str
    generated_at: datetime
    sections: dict[EntityType, list[TrendRow]] = Field(default_factory=dict)

    @property
    def total(self) -> int:
        return sum(len(rows) for rows in self.sections.values())

    @property
    def dedupe_key(self) -> str:
        """One digest per user per UTC day."""
        return f"digest:{self.user_id}:{self.generated_at.date().isoformat()}"


async def build_digest(
    detector: TrendDetector, recipient: Recipient, now: datetime
) -> DailyDigest:
    """Collect up to DIGEST_PER_TYPE rows per entity type for ``recipient``.

    Rows come from the detector's top trends (last 24 hours, best trend
    score first) and must meet the recipient's ``min_view_count`` on the
    primary volume and ``min_growth_rate`` on the latest growth rate.
    """
    digest = DailyDigest(user_id=recipient.user_id, generated_at=now)
    for entity_type in EntityType:
        candidates = await detector.top_trends(entity_type, limit=DIGEST_CANDIDATES)
        rows = [
            row
            for row in candidates
            if row.snapshot.primary_volume >= recipient.min_view_count
            and row.growth_rate >= recipient.min_growth_rate
        ][:DIGEST_PER_TYPE]
        if rows:
            digest.sections[entity_type] = rows
    log.debug("digest_built", user_id=recipient.user_id, trends=digest.total)
    return digest


def format_digest_title(digest: DailyDigest) -> str:
    return f"Your Daily Trend Digest - {digest.generated_at:%Y-%m-%d}"


def format_digest_message(digest: DailyDigest) -> str:
    return f"Your scheduled daily summary with {digest.total} trends"


def digest_payload(digest: DailyDigest) -> dict[str, Any]:
    return {
        "scheduled_time": f"{digest.generated_at:%H:%M}",
        "trends_included": {t.value: len(digest.sections.get(t, [])) for t in EntityType},
    }


def format_digest_text(digest: DailyDigest) -> str:
    lines = [format_digest_message(digest), ""]
    for entity_type, rows in digest.sections.items():
        lines.append(SECTION_TITLES[entity_type])
        for row in rows:
            lines.append(
                f"  {row.entity.display_name}: {row.snapshot.primary_volume:,} "
                f"{VOLUME_LABELS[entity_type]}, {row.growth_rate:.1f}% growth"
            )
        lines.append("")
    return "\n".join(lines).rstrip() + "\n"


def format_digest_html(digest: DailyDigest, recipient: Recipient) -> str:
    parts = [
        "<html><body>",
        "<h2>Daily Trend Digest</h2>",
        f"<p>{digest.generated_at:%A, %B %d, %Y}</p>",
        "<p>Here's your scheduled daily summary of trends meeting your criteria "
        f"(&ge;{recipient.min_growth_rate:g}% growth)!</p>",
    ]
    for entity_type, rows in digest.sections.items():
        parts.append(f"<h3>{SECTION_TITLES[entity_type]}</h3><ul>")
        for row in rows:
            parts.append(
                f"<li><b>{html.escape(row.entity.display_name)}</b> "
                f"{row.snapshot.primary_volume:,} {VOLUME_LABELS[entity_type]}, "
                f"{row.snapshot.secondary_count:,} videos, {row.growth_rate:.1f}%</li>"
            )
        parts.append("</ul>")
    parts.append(
        f"<p>You're receiving this at {digest.generated_at:%H:%M} UTC because it's "
        "your scheduled digest time.</p>"
    )
    parts.append("</body></html>")
    return "".join(parts)
