from __future__ import annotations

from .config import AttachmentsConfig, get_attachments_config
from .server import build_attachments_app, start_attachments_server
from .store import Attachment, AttachmentStore

__all__ = [
    "Attachment",
    "AttachmentStore",
    "AttachmentsConfig",
    "build_attachments_app",
    "get_attachments_config",
    "start_attachments_server",
]
