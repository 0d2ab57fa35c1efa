"""Email rendering for gate events."""

from __future__ import annotations

from refgate.engines.notification.events import GateEvent

_HEADLINES: dict[str, tuple[str, str]] = {
    "merged": ("Auto-merge completed", "#388e3c"),
    "merge_failed": ("Auto-merge failed", "#d32f2f"),
    "invalidated": ("Auto-merge disabled", "#f57c00"),
}


def render_event(event: GateEvent) -> tuple[str, str]:
    """Return (subject, html_body) for a gate event email."""
    headline, color = _HEADLINES[event.kind]
    label = f"#{event.number}" if event.number is not None else str(event.pull_request_id)
    subject = f"[refgate] {headline}: {label}"
    if event.title:
        subject += f" {event.title}"

    td_hdr = 'style="padding: 6px 12px; font-weight: bold; border-bottom: 1px solid #e0e0e0;"'
    td_val = 'style="padding: 6px 12px; border-bottom: 1px solid #e0e0e0;"'
    body_style = (
        "font-family: -apple-system, BlinkMacSystemFont,"
        " 'Segoe UI', Roboto, sans-serif;"
        " color: #212121; max-width: 640px; margin: 0 auto;"
    )

    html_body = f"""\
<html>
<body style="{body_style}">
<h2 style="color: {color};">{headline}</h2>
<table style="border-collapse: collapse; width: 100%; margin-bottom: 16px;">
  <tr><td {td_hdr}>Pull request</td>
      <td {td_val}>{_esc(label)}</td></tr>
  <tr><td {td_hdr}>Title</td>
      <td {td_val}>{_esc(event.title or "N/A")}</td></tr>
  <tr><td {td_hdr}>Repository</td>
      <td {td_val}><code>{event.repository_id}</code></td></tr>
  <tr><td {td_hdr}>When</td>
      <td {td_val}>{event.occurred_at.isoformat()}</td></tr>
</table>
{_format_detail(event.detail)}
<hr style="border: none; border-top: 1px solid #e0e0e0; margin: 24px 0;">
<p style="color: #757575; font-size: 12px;">This is an automated notification from refgate.</p>
</body>
</html>"""

    return subject, html_body


def _esc(text: str) -> str:
    """Minimal HTML escaping."""
    return (
        text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;").replace('"', "&quot;")
    )


def _format_detail(detail: str | None) -> str:
    if not detail:
        return ""
    return f"<h3>Details</h3>\n<p>{_esc(detail)}</p>"


def render_text(event: GateEvent) -> str:
    """Plain-text counterpart of :func:`render_event` for non-HTML clients."""
    headline, _ = _HEADLINES[event.kind]
    label = f"#{event.number}" if event.number is not None else str(event.pull_request_id)
    lines = [
        headline,
        "",
        f"Pull request: {label}",
        f"Title:        {event.title or 'N/A'}",
        f"Repository:   {event.repository_id}",
        f"When:         {event.occurred_at.isoformat()}",
    ]
    if event.detail:
        lines += ["", event.detail]
    return "\n".join(lines) + "\n"
