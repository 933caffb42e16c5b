"""Convert raw RFC822 payloads into normalized :class:`MailMessage` records."""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from datetime import datetime
from email import policy
from email.message import EmailMessage
from email.parser import BytesParser
from email.utils import getaddresses, parsedate_to_datetime

from ..core.datetime_utils import ensure_utc, utc_now
from ..core.models import (
    AttachmentMeta,
    Category,
    EmailBody,
    MailMessage,
    RawMessage,
)

_ID_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, "urn:inbox-sync:message")


class NormalizationError(ValueError):
    """Raised when a payload cannot be parsed into a message."""


def message_id_for(
    account_id: str, folder: str, uidvalidity: int | None, uid: int
) -> str:
    """Return the stable id of the message at ``uid`` in ``folder``."""
    key = f"{account_id}/{folder}/{uidvalidity if uidvalidity is not None else 0}/{uid}"
    return str(uuid.uuid5(_ID_NAMESPACE, key))


class MessageNormalizer:
    """Parse fetched payloads and attach sync metadata."""

    def __init__(self, *, include_attachment_content: bool = False) -> None:
        self._parser = BytesParser(policy=policy.default)
        self._include_attachment_content = include_attachment_content

    def normalize(self, raw: RawMessage, account_id: str, folder: str) -> MailMessage:
        """Return a :class:`MailMessage` for ``raw``.

        The id is derived from account, folder, UIDVALIDITY and UID, so
        fetching the same server message again yields the same id.
        """
        if not raw.payload or not raw.payload.strip():
            raise NormalizationError(f"Empty payload for UID {raw.uid} in {folder}")
        try:
            message = self._parser.parsebytes(raw.payload)
            if not message.keys():
                raise NormalizationError(
                    f"Payload for UID {raw.uid} in {folder} has no headers"
                )
            subject = _header_text(message, "Subject")
            sent_at = _try_parse_datetime(_header_text(message, "Date"))
            sender = _take_first_address(_header_text(message, "From"))
            to_recipients = tuple(_extract_addresses(message.get_all("To", [])))
            cc_recipients = tuple(_extract_addresses(message.get_all("Cc", [])))
            bcc_recipients = tuple(_extract_addresses(message.get_all("Bcc", [])))
            message_id = _header_text(message, "Message-ID")
            body_text, body_html = _extract_bodies(message)
            attachments = tuple(
                _collect_attachments(message, self._include_attachment_content)
            )
        except NormalizationError:
            raise
        except Exception as exc:  # pylint: disable=broad-except
            # Header parsing raises arbitrary errors on some malformed input.
            raise NormalizationError(
                f"Unable to parse UID {raw.uid} in {folder}: {exc!r}"
            ) from exc

        now = utc_now()
        flags = {flag.lower() for flag in raw.flags}
        return MailMessage(
            id=message_id_for(account_id, folder, raw.uidvalidity, raw.uid),
            account_id=account_id,
            folder=folder,
            uid=raw.uid,
            message_id=message_id,
            subject=subject,
            sender=sender,
            to=to_recipients,
            cc=cc_recipients,
            bcc=bcc_recipients,
            sent_at=sent_at,
            body=EmailBody(text=body_text, html=body_html),
            attachments=attachments,
            is_read="\\seen" in flags,
            is_flagged="\\flagged" in flags,
            received_at=sent_at or ensure_utc(raw.internal_date) or now,
            synced_at=now,
            category=Category.UNCATEGORIZED,
        )


def _header_text(message: EmailMessage, name: str) -> str | None:
    value = message.get(name)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _extract_addresses(headers: Iterable[str]) -> Iterable[str]:
    for _, email_address in getaddresses([str(header) for header in headers]):
        if email_address:
            yield email_address


def _take_first_address(header_value: str | None) -> str | None:
    if header_value is None:
        return None
    addresses = list(_extract_addresses([header_value]))
    return addresses[0] if addresses else header_value


def _collapse_chunks(chunks: Iterable[str], separator: str) -> str | None:
    filtered_chunks = [chunk for chunk in chunks if chunk]
    if not filtered_chunks:
        return None
    return separator.join(filtered_chunks)


def _extract_bodies(message: EmailMessage) -> tuple[str | None, str | None]:
    plain_chunks: list[str] = []
    html_chunks: list[str] = []

    for part in message.walk():
        if part.is_multipart():
            continue
        if part.get_content_disposition() == "attachment":
            continue
        content_type = part.get_content_type()
        if content_type not in ("text/plain", "text/html"):
            continue
        try:
            content_obj = part.get_content()
        except LookupError:
            # Unknown charset; fall back to a lossy decode.
            raw_payload = part.get_payload(decode=True) or b""
            content_obj = raw_payload.decode("utf-8", errors="replace")
        if not isinstance(content_obj, str):
            continue
        content = content_obj.strip()
        if content_type == "text/plain":
            plain_chunks.append(content)
        else:
            html_chunks.append(content)

    text = _collapse_chunks(plain_chunks, "\n\n")
    html = _collapse_chunks(html_chunks, "\n")
    return text, html


def _collect_attachments(
    message: EmailMessage, include_content: bool
) -> Iterable[AttachmentMeta]:
    for part in message.iter_attachments():
        payload = part.get_payload(decode=True) or b""
        yield AttachmentMeta(
            filename=part.get_filename(),
            content_type=part.get_content_type(),
            size=len(payload) if payload else None,
            content=bytes(payload) if include_content and payload else None,
        )


def _try_parse_datetime(header_value: str | None) -> datetime | None:
    if header_value is None:
        return None
    try:
        return ensure_utc(parsedate_to_datetime(header_value))
    except (TypeError, ValueError, IndexError):
        return None


__all__ = ["MessageNormalizer", "NormalizationError", "message_id_for"]
