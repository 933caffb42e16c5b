"""Prompt templates for classification and reply suggestions."""

from __future__ import annotations

from textwrap import dedent

from inbox_sync.core.models import Category, MailMessage

CLASSIFICATION_LABELS: tuple[Category, ...] = (
    Category.INTERESTED,
    Category.MEETING_BOOKED,
    Category.NOT_INTERESTED,
    Category.SPAM,
    Category.OUT_OF_OFFICE,
)


def build_classification_prompt(subject: str, body: str) -> str:
    """Ask for exactly one label for the message."""
    labels = "\n".join(f"- {label.value}" for label in CLASSIFICATION_LABELS)
    prompt = """
    Classify the following email into exactly one of these categories:
    {labels}

    Respond with the category name only.

    Subject: {subject}

    Body:
    {body}
    """
    # Values may span lines, so format after dedent.
    return (
        dedent(prompt)
        .strip()
        .format(labels=labels, subject=subject or "(no subject)", body=body)
    )


def build_reply_prompt(message: MailMessage, context: str) -> str:
    """Compose a prompt asking for a reply grounded in reference context."""
    subject = message.subject or "(no subject)"
    sender = message.sender or "(unknown sender)"
    body = (message.body.text or message.body.html or "")[:2000]
    reference = context.strip() or "(no reference information available)"

    prompt = """
    You write short, professional replies to inbound emails.
    Use the reference information when it is relevant and do not invent facts.
    If the sender is interested, propose a next step such as booking a call.

    Reference information:
    {reference}

    From: {sender}
    Subject: {subject}

    Email:
    {body}

    Reply:
    """
    return dedent(prompt).strip().format(
        reference=reference, sender=sender, subject=subject, body=body
    )


__all__ = [
    "CLASSIFICATION_LABELS",
    "build_classification_prompt",
    "build_reply_prompt",
]
