"""
MJML Email Templates
Availability prompt, reminder and no-consensus emails
"""

from html import escape
from typing import Optional

# App theme colors - Indigo/Slate color scheme
THEME = {
    "primary": "#6366f1",
    "primary_dark": "#4f46e5",
    "primary_light": "#e0e7ff",
    "background": "#f8fafc",
    "card_bg": "#ffffff",
    "text_primary": "#0f172a",
    "text_secondary": "#334155",
    "text_muted": "#64748b",
    "border": "#e2e8f0",
    "warning": "#f59e0b",
}


def get_base_template(
    title: str,
    preview_text: str,
    content_sections: str,
    cta_url: Optional[str] = None,
    cta_label: Optional[str] = None,
    group_name: Optional[str] = None,
) -> str:
    """Base MJML template wrapper for all emails"""

    cta_section = ""
    if cta_url and cta_label:
        cta_section = f"""
        <mj-section padding="20px 0">
          <mj-column>
            <mj-button
              href="{escape(cta_url, quote=True)}"
              background-color="{THEME['primary']}"
              color="#ffffff"
              font-weight="600"
              border-radius="8px"
              padding="18px 40px"
              font-size="16px">
              {cta_label}
            </mj-button>
          </mj-column>
        </mj-section>
        """

    footer_notice = ""
    if group_name:
        footer_notice = f"""
        <mj-text align="center" font-size="12px" color="#94a3b8" padding="12px 0 0 0">
          You're receiving this because you're a member of {escape(group_name)}.
        </mj-text>
        """

    return f"""
    <mjml>
      <mj-head>
        <mj-title>{escape(title)}</mj-title>
        <mj-preview>{escape(preview_text)}</mj-preview>
        <mj-attributes>
          <mj-all font-family="-apple-system, BlinkMacSystemFont, 'Segoe UI', 'Helvetica Neue', Arial, sans-serif" />
          <mj-text font-size="16px" line-height="1.6" color="{THEME['text_secondary']}" />
        </mj-attributes>
      </mj-head>
      <mj-body background-color="{THEME['background']}">
        <mj-section background-color="#ffffff" padding="40px 40px 48px 40px">
          <mj-column>
            <mj-text font-size="24px" font-weight="600" color="{THEME['text_primary']}" line-height="1.3" padding="0 0 16px 0">
              {escape(title)}
            </mj-text>

            {content_sections}
          </mj-column>
        </mj-section>

        {cta_section}

        <mj-section padding="32px 20px">
          <mj-column>
            <mj-text align="center" font-size="13px" color="#94a3b8" padding="0">
              Game Night - plan sessions without the group chat chaos.
            </mj-text>
            {footer_notice}
          </mj-column>
        </mj-section>
      </mj-body>
    </mjml>
    """


def availability_prompt_template(
    user_name: str,
    group_name: str,
    form_url: str,
    deadline_text: str,
    custom_message: Optional[str] = None,
    game_name: Optional[str] = None,
) -> str:
    """Weekly availability request MJML template"""
    message_block = ""
    if custom_message:
        message_block = f"""
    <mj-text padding="0 0 16px 0" container-background-color="{THEME['primary_light']}">
      {escape(custom_message)}
    </mj-text>
    """

    game_line = f" for <strong>{escape(game_name)}</strong>" if game_name else ""
    content = f"""
    <mj-text>
      Hi {escape(user_name)},
    </mj-text>

    <mj-text>
      <strong>{escape(group_name)}</strong> is planning its next game night{game_line}.
      Let everyone know when you're free.
    </mj-text>
    {message_block}
    <mj-text color="{THEME['text_muted']}">
      Please respond by {escape(deadline_text)}.
    </mj-text>
    """
    return get_base_template(
        title="When can you play?",
        preview_text=f"{group_name} wants to know when you're free",
        content_sections=content,
        cta_url=form_url,
        cta_label="Share my availability",
        group_name=group_name,
    )


def availability_reminder_template(
    user_name: str,
    group_name: str,
    form_url: str,
    deadline_text: str,
    stage: str,
) -> str:
    """Staged or manual reminder MJML template"""
    if stage == "final":
        lead = "This is the last call - the poll closes soon."
    elif stage == "manual":
        lead = "A group admin asked us to nudge you."
    else:
        lead = "The poll is halfway through and we haven't heard from you yet."

    content = f"""
    <mj-text>
      Hi {escape(user_name)},
    </mj-text>

    <mj-text>
      {lead} <strong>{escape(group_name)}</strong> is still collecting availability.
    </mj-text>

    <mj-text color="{THEME['warning']}">
      Deadline: {escape(deadline_text)}
    </mj-text>
    """
    return get_base_template(
        title="Reminder: share your availability",
        preview_text=f"{group_name} is waiting on your availability",
        content_sections=content,
        cta_url=form_url,
        cta_label="Respond now",
        group_name=group_name,
    )


def no_consensus_template(
    admin_name: str,
    group_name: str,
    response_count: int,
    min_participants: int,
    dashboard_url: str,
) -> str:
    """Deadline passed without any window reaching minimum attendance"""
    content = f"""
    <mj-text>
      Hi {escape(admin_name)},
    </mj-text>

    <mj-text>
      The availability poll for <strong>{escape(group_name)}</strong> has closed, but no time
      slot had at least {min_participants} players available.
    </mj-text>

    <mj-text color="{THEME['text_muted']}">
      Responses received: {response_count}
    </mj-text>

    <mj-text>
      You can review the suggestions and pick a time manually.
    </mj-text>
    """
    return get_base_template(
        title="No time worked for everyone",
        preview_text=f"{group_name}: no slot reached the minimum attendance",
        content_sections=content,
        cta_url=dashboard_url,
        cta_label="Review suggestions",
        group_name=group_name,
    )
