from khojpayo.models.user import Profile
from khojpayo.models.organization import Organization, OrganizationMember
from khojpayo.models.item import Item, ItemMedia
from khojpayo.models.claim import Claim, ClaimEvidence
from khojpayo.models.handover import Handover
from khojpayo.models.conversation import Conversation, ConversationMessage
from khojpayo.models.notification import Notification
from khojpayo.models.activity_log import ActivityLog
from khojpayo.models.verification import (
    ApprovedOrgDomain,
    BlockedEmailDomain,
    OrganizationCallLog,
    OrganizationContact,
    OrganizationVerification,
    VerificationAudit,
)
from khojpayo.models.contract import OrganizationContract

__all__ = [
    "ActivityLog",
    "ApprovedOrgDomain",
    "BlockedEmailDomain",
    "Claim",
    "ClaimEvidence",
    "Conversation",
    "ConversationMessage",
    "Handover",
    "Item",
    "ItemMedia",
    "Notification",
    "Organization",
    "OrganizationCallLog",
    "OrganizationContact",
    "OrganizationContract",
    "OrganizationMember",
    "OrganizationVerification",
    "Profile",
    "VerificationAudit",
]
