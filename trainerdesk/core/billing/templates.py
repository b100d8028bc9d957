"""
E-mail rendering for reminders and trainer messages.

Wraps a reminder body in the trainer-branded layout. Values coming from
student or trainer records are HTML-escaped before interpolation; the
templates themselves are trusted markup.
"""

from dataclasses import dataclass
from html import escape
from typing import Any, Optional

from .reminders import ReminderIntent


@dataclass(frozen=True)
class TrainerProfile:
    """Who the reminders come from."""
    name: str = "Personal Trainer"
    contact_email: Optional[str] = None
    whatsapp: Optional[str] = None
    instagram: Optional[str] = None


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    html_body: str


EMAIL_LAYOUT = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <style>
        body {{ margin: 0; padding: 0; background-color: #f4f5f7; font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Helvetica, Arial, sans-serif; }}
        .container {{ max-width: 600px; margin: 40px auto; background-color: #ffffff; border: 1px solid #dfe1e6; border-radius: 8px; overflow: hidden; }}
        .header {{ background-color: #091e42; color: #ffffff; padding: 24px; text-align: center; }}
        .header h1 {{ margin: 0; font-size: 24px; }}
        .body-content {{ padding: 32px; color: #172b4d; line-height: 1.6; }}
        .footer {{ background-color: #f4f5f7; padding: 24px; text-align: center; font-size: 12px; color: #505f79; }}
        .footer a {{ color: #0052cc; text-decoration: none; }}
    </style>
</head>
<body>
    <div class="container">
        <div class="header"><h1>{trainer_name}</h1></div>
        <div class="body-content">
            <h2>{title}</h2>
            {body}
        </div>
        <div class="footer">
            <p>This is an automatic message. Reply to this e-mail if you have any questions.</p>
            {footer_links}
        </div>
    </div>
</body>
</html>"""


def _footer_links(trainer: TrainerProfile) -> str:
    links = []
    if trainer.whatsapp:
        links.append(f'<a href="https://wa.me/{escape(trainer.whatsapp)}">WhatsApp</a>')
    if trainer.instagram:
        links.append(f'<a href="https://instagram.com/{escape(trainer.instagram)}">Instagram</a>')
    if not links:
        return ""
    return f"<p>{' &bull; '.join(links)}</p>"


def render_layout(title: str, body_html: str, trainer: TrainerProfile) -> str:
    """Branded HTML page around an already-rendered body."""
    return EMAIL_LAYOUT.format(
        trainer_name=escape(trainer.name),
        title=escape(title),
        body=body_html,
        footer_links=_footer_links(trainer),
    )


def _escaped(context: dict[str, Any]) -> dict[str, Any]:
    return {
        key: escape(value) if isinstance(value, str) else value
        for key, value in context.items()
    }


def render_reminder(intent: ReminderIntent, trainer: TrainerProfile) -> RenderedEmail:
    # Subjects are plain text, so they get the raw values
    subject = intent.subject_template.format(**intent.context)
    body = intent.body_template.format(**_escaped(intent.context))
    return RenderedEmail(
        subject=subject,
        html_body=render_layout(subject, body, trainer),
    )


MESSAGE_BODY_TEMPLATE = """<p>{message}</p>
<p>If you have any questions, just reply to this e-mail.</p>
<p>Cheers,<br>{trainer_name}</p>"""


def render_message(subject: str, message: str, trainer: TrainerProfile) -> RenderedEmail:
    """Free-text message from the trainer; line breaks are kept."""
    body = MESSAGE_BODY_TEMPLATE.format(
        message=escape(message.strip()).replace("\n", "<br>"),
        trainer_name=escape(trainer.name),
    )
    return RenderedEmail(
        subject=subject,
        html_body=render_layout(subject, body, trainer),
    )
