"""Remote mailbox provider integration."""

from .base import (
    Attachment,
    CredentialResolver,
    Folder,
    MailboxProvider,
    OutgoingMessage,
    ProviderPage,
    ReplyDraft,
)
from .credentials import TokenFileCredentialResolver
from .gmail import GmailMailboxProvider

__all__ = [
    "Attachment",
    "CredentialResolver",
    "Folder",
    "GmailMailboxProvider",
    "MailboxProvider",
    "OutgoingMessage",
    "ProviderPage",
    "ReplyDraft",
    "TokenFileCredentialResolver",
]
