"""SQLAlchemy ORM models for PhotoVault."""

from photovault.models.base import Base
from photovault.models.user_profile import UserProfile
from photovault.models.client import Client
from photovault.models.gallery import Gallery, GalleryAccessGrant
from photovault.models.subscription import Subscription
from photovault.models.payment_record import PaymentRecord
from photovault.models.payout import Payout
from photovault.models.webhook_event import WebhookEvent
from photovault.models.webhook_log import WebhookLog
from photovault.models.drip import DripEmail, DripSequence
from photovault.models.upload_manifest import UploadManifest
from photovault.models.audit_log import AuditLog

__all__ = [
    "Base",
    "UserProfile",
    "Client",
    "Gallery",
    "GalleryAccessGrant",
    "Subscription",
    "PaymentRecord",
    "Payout",
    "WebhookEvent",
    "WebhookLog",
    "DripSequence",
    "DripEmail",
    "UploadManifest",
    "AuditLog",
]
