"""
HTML and plain text rendering for digests
"""
import html as html_escape
from typing import List, Optional

from nycping.core.entities import Digest, DigestEntry, ModuleId
from nycping.services.config import EmailColorsConfig

SECTION_TITLES = {
    ModuleId.TRANSIT: "🚇 Transit",
    ModuleId.PARKING: "🚗 Parking",
    ModuleId.WEATHER: "🌦️ Weather",
    ModuleId.NEWS: "📰 News",
    ModuleId.EVENTS: "🎟️ Events",
    ModuleId.HOUSING: "🏠 Housing",
    ModuleId.DEALS: "🛍️ Deals",
    ModuleId.FOOD: "🍜 Food",
}


def subject_line(digest: Digest) -> str:
    if digest.slot.startswith("urgent"):
        first = digest.entries[0].title if digest.entries else "Update"
        return f"🚨 NYC Ping: {first}"
    return f"🗽 NYC Ping {digest.slot.title()} – {digest.day:%a %b %d}"


def _badge(entry: DigestEntry) -> str:
    if entry.is_escalation:
        return "UPDATED"
    if entry.is_urgent:
        return "URGENT"
    return ""


def _entry_card(entry: DigestEntry, c: EmailColorsConfig) -> str:
    badge = _badge(entry)
    badge_html = ""
    if badge:
        badge_html = f'''<span style="background-color: {c.escalation_bg}; color: {c.escalation_text};
                     font-size: 11px; font-weight: 700; padding: 2px 8px; border-radius: 4px;
                     margin-right: 8px;">{badge}</span>'''
    link_html = ""
    if entry.url:
        link_html = f'''<a href="{html_escape.escape(entry.url)}"
                style="color: {c.primary}; font-size: 13px; text-decoration: none;">Read more →</a>'''

    return f'''
            <div style="background-color: {c.card_bg}; border-radius: 10px;
                        padding: 16px 20px; margin-bottom: 12px;
                        border-left: 4px solid {c.primary};">
                <h3 style="margin: 0 0 8px 0; color: {c.text_primary}; font-size: 16px; font-weight: 600;">
                    {badge_html}{html_escape.escape(entry.title)}
                </h3>
                <p style="color: {c.text_primary}; font-size: 14px; line-height: 1.5; margin: 0 0 8px 0;">
                    {html_escape.escape(entry.summary)}
                </p>
                {link_html}
            </div>'''


def _section_html(title: str, body: str, c: EmailColorsConfig) -> str:
    return f'''
        <h2 style="color: {c.text_secondary}; font-size: 13px; letter-spacing: 1px;
                   text-transform: uppercase; margin: 24px 0 12px 0;">{html_escape.escape(title)}</h2>
        {body}'''


def render_html(digest: Digest, colors: Optional[EmailColorsConfig] = None) -> str:
    """Build the HTML email for a digest."""
    c = colors or EmailColorsConfig()
    blocks: List[str] = []

    if digest.briefing:
        blocks.append(f'''
        <div style="background-color: {c.card_bg}; border-radius: 10px; padding: 16px 20px;
                    border-left: 4px solid {c.accent};">
            <p style="margin: 0; color: {c.text_primary}; font-size: 15px; line-height: 1.6;">
                {html_escape.escape(digest.briefing)}
            </p>
        </div>''')

    for cluster in digest.clusters:
        blocks.append(_section_html(
            cluster.title,
            f'<p style="color: {c.text_primary}; font-size: 14px; margin: 0;">'
            f'{html_escape.escape(cluster.summary)}</p>',
            c,
        ))

    for module, entries in digest.sections.items():
        cards = "".join(_entry_card(entry, c) for entry in entries)
        blocks.append(_section_html(SECTION_TITLES.get(module, module.value.title()), cards, c))

    if digest.horizon:
        notes = "".join(
            f'<li style="margin-bottom: 6px;">{html_escape.escape(note)}</li>' for note in digest.horizon
        )
        blocks.append(_section_html(
            "🔭 On the horizon",
            f'<ul style="color: {c.text_primary}; font-size: 14px; padding-left: 20px;">{notes}</ul>',
            c,
        ))

    return f'''
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{html_escape.escape(subject_line(digest))}</title>
</head>
<body style="margin: 0; padding: 0; background-color: {c.background};
             font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto,
                          'Helvetica Neue', Arial, sans-serif;">
    <div style="max-width: 640px; margin: 0 auto; padding: 20px;">

        <!-- Header -->
        <div style="background: linear-gradient(135deg, {c.primary} 0%, {c.primary_dark} 100%);
                    border-radius: 16px 16px 0 0; padding: 28px; text-align: center;">
            <h1 style="margin: 0 0 8px 0; color: white; font-size: 26px; font-weight: 700;">
                🗽 NYC Ping
            </h1>
            <p style="margin: 0; color: rgba(255,255,255,0.85); font-size: 14px;">
                {html_escape.escape(digest.slot.title())} · {digest.day:%A, %B %d}
            </p>
        </div>

        <!-- Content area -->
        <div style="background-color: {c.background}; padding: 8px 24px 24px 24px;
                    border-radius: 0 0 16px 16px;">
            {"".join(blocks)}
        </div>

        <!-- Footer -->
        <div style="text-align: center; padding: 24px; color: {c.text_secondary}; font-size: 12px;">
            <p style="margin: 0;">You're getting this because you subscribed to NYC Ping.</p>
        </div>
    </div>
</body>
</html>
'''


def render_text(digest: Digest) -> str:
    """Build a plain text version of the digest."""
    lines = [
        f"{'=' * 60}",
        f"NYC Ping - {digest.slot.title()}",
        f"{digest.day:%A, %B %d}",
        f"{'=' * 60}",
        "",
    ]

    if digest.briefing:
        lines.extend([digest.briefing, ""])

    for cluster in digest.clusters:
        lines.extend([f"## {cluster.title}", cluster.summary, ""])

    for module, entries in digest.sections.items():
        lines.append(f"## {SECTION_TITLES.get(module, module.value.title())}")
        for entry in entries:
            badge = _badge(entry)
            prefix = f"[{badge}] " if badge else ""
            lines.append(f"- {prefix}{entry.title}")
            if entry.summary:
                lines.append(f"  {entry.summary}")
            if entry.url:
                lines.append(f"  {entry.url}")
        lines.append("")

    if digest.horizon:
        lines.append("## On the horizon")
        lines.extend(f"- {note}" for note in digest.horizon)
        lines.append("")

    return "\n".join(lines)
