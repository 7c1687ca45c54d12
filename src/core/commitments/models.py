from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, BeforeValidator, Field, field_validator

from src.core.commitments.status import CommitmentStatus, normalize_commitment_status

WireCommitmentStatus = Annotated[CommitmentStatus, BeforeValidator(normalize_commitment_status)]

ApproverRule = Literal["CLIENT_ONLY", "BOTH_PARTIES"]
PaymentTermStatus = Literal["PENDING", "PAID", "OVERDUE", "CANCELLED"]
MilestoneStatus = Literal["NOT_STARTED", "IN_PROGRESS", "COMPLETED", "BLOCKED"]
DeliverableStatus = Literal["NOT_STARTED", "IN_PROGRESS", "DELIVERED", "ACCEPTED", "REJECTED"]
AttachmentResourceType = Literal["raw", "image", "video"]
ChangeRequestStatus = Literal["OPEN", "REJECTED", "ACCEPTED"]
RequesterType = Literal["CLIENT", "USER"]
ActorType = Literal["USER", "CLIENT", "SYSTEM"]
LinkPurpose = Literal["APPROVAL", "ACCEPTANCE"]
RiskLevel = Literal["NONE", "LOW", "HIGH"]
TimelineKind = Literal[
    "created", "sent", "approved", "change-requested", "delivered", "accepted", "reminder"
]
TimelineOrder = Literal["newest", "oldest"]

CommitmentHistoryEventType = Literal[
    "COMMITMENT_CREATED",
    "COMMITMENT_UPDATED",
    "TERMS_UPDATED_NEW_VERSION",
    "COMMITMENT_ASSIGNED",
    "INTERNAL_REVIEW_SUBMITTED",
    "APPROVAL_LINK_SENT",
    "APPROVAL_LINK_RESENT",
    "CLIENT_APPROVED",
    "CLIENT_REQUESTED_CHANGE",
    "CHANGE_REQUEST_ACCEPTED",
    "CHANGE_REQUEST_REJECTED",
    "NEW_VERSION_CREATED",
    "MARKED_DELIVERED",
    "MARKED_DELIVERED_AUTO_ACCEPTED",
    "ACCEPTANCE_LINK_SENT",
    "ACCEPTANCE_LINK_RESENT",
    "CLIENT_ACCEPTED",
    "CLIENT_REQUESTED_FIX",
    "COMMITMENT_CLOSED",
    "COMMITMENT_CANCELLED",
]


class _LineItem(BaseModel):
    text: str = Field(description="Line item text shown to both parties.", examples=["Homepage"])
    due_at: Optional[datetime] = Field(
        default=None,
        description="Optional due timestamp for the line item.",
        examples=["2026-03-01T00:00:00+00:00"],
    )

    @field_validator("text", mode="before")
    @classmethod
    def _strip_text(cls, value: Any) -> Any:
        if value is None:
            return ""
        return value.strip() if isinstance(value, str) else value


class PaymentTerm(_LineItem):
    status: PaymentTermStatus = Field(
        default="PENDING", description="Payment term status.", examples=["PENDING"]
    )
    paid_at: Optional[datetime] = Field(
        default=None,
        description="Timestamp the payment was received.",
        examples=["2026-03-02T09:00:00+00:00"],
    )
    amount: Optional[Decimal] = Field(
        default=None, description="Optional amount due for this term.", examples=["25000"]
    )
    currency: Optional[str] = Field(
        default=None, description="Optional currency for this term.", examples=["INR"]
    )


class Milestone(_LineItem):
    status: MilestoneStatus = Field(
        default="NOT_STARTED", description="Milestone progress status.", examples=["IN_PROGRESS"]
    )
    completed_at: Optional[datetime] = Field(
        default=None,
        description="Timestamp the milestone was completed.",
        examples=["2026-03-02T09:00:00+00:00"],
    )


class Deliverable(_LineItem):
    status: DeliverableStatus = Field(
        default="NOT_STARTED", description="Deliverable status.", examples=["DELIVERED"]
    )
    completed_at: Optional[datetime] = Field(
        default=None,
        description="Timestamp the deliverable was completed.",
        examples=["2026-03-02T09:00:00+00:00"],
    )


class CommitmentAttachment(BaseModel):
    url: str = Field(
        validation_alias=AliasChoices("url", "secure_url"),
        description="Opaque storage URL of the attachment.",
        examples=["https://files.example.com/brief.pdf"],
    )
    public_id: str = Field(
        description="Opaque storage identifier of the attachment.", examples=["att_brief_01"]
    )
    file_name: Optional[str] = Field(
        default=None, description="Original file name.", examples=["brief.pdf"]
    )
    mime_type: Optional[str] = Field(
        default=None, description="Attachment MIME type.", examples=["application/pdf"]
    )
    bytes: Optional[int] = Field(default=None, description="Attachment size.", examples=[20480])
    resource_type: AttachmentResourceType = Field(
        default="raw", description="Storage resource class.", examples=["raw"]
    )
    uploaded_at: Optional[datetime] = Field(
        default=None,
        description="Upload timestamp.",
        examples=["2026-02-19T12:00:00+00:00"],
    )


class ApprovalRules(BaseModel):
    approver: ApproverRule = Field(
        default="CLIENT_ONLY",
        description="Which parties must approve the commitment terms.",
        examples=["CLIENT_ONLY"],
    )
    re_approval_on_changes: bool = Field(
        default=True,
        description="Whether accepted change requests require a fresh client approval.",
        examples=[True],
    )
    acceptance_required: bool = Field(
        default=True,
        description="Whether delivery requires explicit client acceptance.",
        examples=[True],
    )


class ClientSnapshot(BaseModel):
    name: Optional[str] = Field(default=None, description="Client name.", examples=["Asha Rao"])
    email: Optional[str] = Field(
        default=None, description="Client e-mail.", examples=["asha@example.com"]
    )
    company_name: Optional[str] = Field(
        default=None, description="Client company.", examples=["Rao Studios"]
    )


def _drop_blank_line_items(items: list[Any]) -> list[Any]:
    return [item for item in items if item.text]


class CommitmentTermsPatch(BaseModel):
    title: Optional[str] = Field(
        default=None, description="Commitment title.", examples=["Website redesign"]
    )
    scope_title: Optional[str] = Field(
        default=None, description="Short scope headline.", examples=["Marketing site"]
    )
    scope_description: Optional[str] = Field(
        default=None,
        description="Free-text scope description.",
        examples=["Five page marketing site with CMS."],
    )
    amount: Optional[Decimal] = Field(
        default=None, description="Commitment amount.", examples=["150000"]
    )
    currency: Optional[str] = Field(default=None, description="Currency code.", examples=["INR"])
    attachments: Optional[list[CommitmentAttachment]] = Field(
        default=None, description="Replacement attachment list."
    )
    payment_terms: Optional[list[PaymentTerm]] = Field(
        default=None, description="Replacement payment term list."
    )
    milestones: Optional[list[Milestone]] = Field(
        default=None, description="Replacement milestone list."
    )
    deliverables: Optional[list[Deliverable]] = Field(
        default=None, description="Replacement deliverable list."
    )
    approval_rules: Optional[ApprovalRules] = Field(
        default=None, description="Replacement approval rules."
    )

    @field_validator("payment_terms", "milestones", "deliverables")
    @classmethod
    def _drop_blank(cls, items: Optional[list[Any]]) -> Optional[list[Any]]:
        if items is None:
            return None
        return _drop_blank_line_items(items)

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip().upper() or None

    def provided_changes(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in self.model_fields_set if name != "actor_id"}


class CommitmentCreateRequest(BaseModel):
    created_by: str = Field(description="Actor id creating the commitment.", examples=["user_1"])
    title: str = Field(
        min_length=1, description="Commitment title.", examples=["Website redesign"]
    )
    scope_title: Optional[str] = Field(
        default=None, description="Short scope headline.", examples=["Marketing site"]
    )
    scope_description: Optional[str] = Field(
        default=None,
        description="Free-text scope description.",
        examples=["Five page marketing site with CMS."],
    )
    amount: Optional[Decimal] = Field(
        default=None, ge=0, description="Commitment amount.", examples=["150000"]
    )
    currency: str = Field(default="INR", description="Currency code.", examples=["INR"])
    attachments: list[CommitmentAttachment] = Field(
        default_factory=list, description="Opaque attachment references."
    )
    payment_terms: list[PaymentTerm] = Field(
        default_factory=list, description="Payment terms; blank items are dropped."
    )
    milestones: list[Milestone] = Field(
        default_factory=list, description="Milestones; blank items are dropped."
    )
    deliverables: list[Deliverable] = Field(
        default_factory=list, description="Deliverables; blank items are dropped."
    )
    approval_rules: ApprovalRules = Field(
        default_factory=ApprovalRules, description="Approval and acceptance rules."
    )
    client_id: Optional[str] = Field(
        default=None, description="Client record identifier.", examples=["cl_01"]
    )
    client_snapshot: Optional[ClientSnapshot] = Field(
        default=None, description="Client details captured at creation time."
    )
    assigned_to_user_id: Optional[str] = Field(
        default=None, description="Team member responsible for delivery.", examples=["user_2"]
    )

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("title must not be blank")
        return value

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.strip().upper() or "INR"

    @field_validator("payment_terms", "milestones", "deliverables")
    @classmethod
    def _drop_blank(cls, items: list[Any]) -> list[Any]:
        return _drop_blank_line_items(items)


class CommitmentUpdateRequest(CommitmentTermsPatch):
    actor_id: str = Field(description="Actor id applying the update.", examples=["user_1"])


class CommitmentActionRequest(BaseModel):
    actor_id: str = Field(description="Actor id performing the action.", examples=["user_1"])
    note: Optional[str] = Field(
        default=None,
        description="Optional free-text note stored on the history event.",
        examples=["Shared via WhatsApp as well."],
    )


class CommitmentAssignRequest(BaseModel):
    actor_id: str = Field(description="Actor id performing the assignment.", examples=["user_1"])
    assigned_to_user_id: Optional[str] = Field(
        description="Team member to assign, or null to unassign.", examples=["user_2"]
    )


class ChangeRequestAcceptRequest(BaseModel):
    actor_id: str = Field(description="Actor id resolving the change request.", examples=["user_1"])
    resolution_note: Optional[str] = Field(
        default=None, description="Optional resolution note.", examples=["Added the blog page."]
    )
    overrides: CommitmentTermsPatch = Field(
        default_factory=CommitmentTermsPatch,
        description="Term changes applied to the new version.",
        examples=[{"amount": "175000", "deliverables": [{"text": "Blog page"}]}],
    )


class ChangeRequestRejectRequest(BaseModel):
    actor_id: str = Field(description="Actor id resolving the change request.", examples=["user_1"])
    resolution_note: Optional[str] = Field(
        default=None, description="Optional resolution note.", examples=["Out of scope."]
    )


class ApproveAction(BaseModel):
    action: Literal["approve"] = Field(description="Approve the current terms.")
    name: Optional[str] = Field(default=None, description="Approver display name.")
    email: Optional[str] = Field(default=None, description="Approver e-mail.")


class RequestChangeAction(BaseModel):
    action: Literal["request_change"] = Field(description="Ask the provider to change terms.")
    comment: str = Field(
        description="Reason for the change; must not be blank.",
        examples=["Please add a blog page."],
    )
    name: Optional[str] = Field(default=None, description="Requester display name.")
    email: Optional[str] = Field(default=None, description="Requester e-mail.")


class AcceptAction(BaseModel):
    action: Literal["accept"] = Field(description="Accept the delivered work.")
    comment: Optional[str] = Field(default=None, description="Optional acceptance note.")


class RequestFixAction(BaseModel):
    action: Literal["request_fix"] = Field(description="Send delivered work back for fixes.")
    comment: str = Field(
        description="What needs fixing; must not be blank.", examples=["Footer links are broken."]
    )


ApprovalAction = Annotated[Union[ApproveAction, RequestChangeAction], Field(discriminator="action")]
AcceptanceAction = Annotated[Union[AcceptAction, RequestFixAction], Field(discriminator="action")]


class CommitmentRecord(BaseModel):
    commitment_id: str = Field(description="Internal commitment identifier.", examples=["cm_001"])
    root_commitment_id: str = Field(
        description="Identifier of version 1 of this chain.", examples=["cm_001"]
    )
    previous_commitment_id: Optional[str] = Field(
        default=None, description="Immediate predecessor in the chain.", examples=["cm_000"]
    )
    version: int = Field(ge=1, description="Version number within the chain.", examples=[1])
    status: WireCommitmentStatus = Field(
        description="Canonical lifecycle status; legacy names are normalized on load.",
        examples=["DRAFT"],
    )
    title: str = Field(description="Commitment title.", examples=["Website redesign"])
    scope_title: Optional[str] = None
    scope_description: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: str = "INR"
    attachments: list[CommitmentAttachment] = Field(default_factory=list)
    payment_terms: list[PaymentTerm] = Field(default_factory=list)
    milestones: list[Milestone] = Field(default_factory=list)
    deliverables: list[Deliverable] = Field(default_factory=list)
    approval_rules: ApprovalRules = Field(default_factory=ApprovalRules)
    assigned_to_user_id: Optional[str] = None
    client_id: Optional[str] = None
    client_snapshot: Optional[ClientSnapshot] = None
    created_by: str = Field(description="Internal creator actor id.", examples=["user_1"])
    created_at: datetime
    updated_at: datetime
    approval_sent_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    change_request_id: Optional[str] = None
    frozen: bool = False
    frozen_at: Optional[datetime] = None
    superseded_by_commitment_id: Optional[str] = None


class ChangeRequestRequester(BaseModel):
    type: RequesterType = Field(description="Requester class.", examples=["CLIENT"])
    name: Optional[str] = Field(default=None, description="Requester name.")
    email: Optional[str] = Field(default=None, description="Requester e-mail.")


class ChangeRequestRecord(BaseModel):
    change_request_id: str = Field(description="Change request identifier.", examples=["cr_001"])
    commitment_id: str
    commitment_version: int
    status: ChangeRequestStatus
    reason: str
    requested_by: ChangeRequestRequester
    previous_status: WireCommitmentStatus
    created_at: datetime
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    resolution_note: Optional[str] = None
    created_version_id: Optional[str] = None


class CommitmentHistoryEventRecord(BaseModel):
    event_id: str = Field(description="History event identifier.", examples=["che_001"])
    commitment_id: str
    commitment_version: int
    event_type: CommitmentHistoryEventType
    actor_type: ActorType
    actor: Optional[str] = None
    message: Optional[str] = None
    created_at: datetime
    meta: dict[str, Any] = Field(default_factory=dict)


class SecureLinkRecord(BaseModel):
    link_id: str = Field(description="Secure link identifier.", examples=["lnk_001"])
    commitment_id: str
    commitment_version: int
    purpose: LinkPurpose
    token_hash: str = Field(description="sha256 hex digest of the raw token.")
    created_at: datetime
    expires_at: datetime
    used_at: Optional[datetime] = None


class CommitmentIdempotencyRecord(BaseModel):
    idempotency_key: str
    request_hash: str
    commitment_id: str
    created_at: datetime


class CommitmentTransitionResult(BaseModel):
    commitment: CommitmentRecord
    event: CommitmentHistoryEventRecord
    change_request: Optional[ChangeRequestRecord] = None


class DeliverableProgress(BaseModel):
    done: int = Field(description="Deliverables delivered or accepted.", examples=[2])
    total: int = Field(description="Total deliverables.", examples=[4])
    percent: int = Field(description="Rounded completion percentage.", examples=[50])


class CommitmentLinkIssued(BaseModel):
    purpose: LinkPurpose = Field(description="What the link lets the client do.")
    url: str = Field(
        description="Public URL handed to the client.",
        examples=["http://localhost:5173/approve/4f1c..."],
    )
    token: str = Field(description="Raw single-use token embedded in the URL.")
    commitment_version: int = Field(description="Version the link is bound to.", examples=[1])
    expires_at: str = Field(
        description="UTC ISO8601 link expiry.", examples=["2026-02-26T12:00:00+00:00"]
    )


class CommitmentHistoryEvent(BaseModel):
    event_id: str = Field(description="History event identifier.", examples=["che_001"])
    commitment_id: str = Field(description="Commitment the event belongs to.", examples=["cm_001"])
    commitment_version: int = Field(description="Commitment version at event time.", examples=[1])
    event_type: CommitmentHistoryEventType = Field(
        description="History event type.", examples=["CLIENT_APPROVED"]
    )
    actor_type: ActorType = Field(description="Actor class.", examples=["CLIENT"])
    actor: Optional[str] = Field(default=None, description="Actor id or display name.")
    message: Optional[str] = Field(default=None, description="Optional message or comment.")
    created_at: str = Field(
        description="UTC ISO8601 event timestamp.", examples=["2026-02-19T12:00:00+00:00"]
    )
    meta: dict[str, Any] = Field(default_factory=dict, description="Event metadata.")


class ChangeRequest(BaseModel):
    change_request_id: str = Field(description="Change request identifier.", examples=["cr_001"])
    commitment_id: str = Field(description="Commitment the request targets.", examples=["cm_001"])
    commitment_version: int = Field(description="Version the request was raised on.")
    status: ChangeRequestStatus = Field(description="Resolution status.", examples=["OPEN"])
    reason: str = Field(description="Requester's reason.", examples=["Please add a blog page."])
    requested_by: ChangeRequestRequester = Field(description="Who raised the request.")
    previous_status: CommitmentStatus = Field(
        description="Commitment status before the request was raised."
    )
    created_at: str = Field(description="UTC ISO8601 creation timestamp.")
    resolved_at: Optional[str] = Field(default=None, description="UTC ISO8601 resolution time.")
    resolved_by: Optional[str] = Field(default=None, description="Resolving actor id.")
    resolution_note: Optional[str] = Field(default=None, description="Resolution note.")
    created_version_id: Optional[str] = Field(
        default=None, description="Commitment id of the version created on acceptance."
    )


class CommitmentDetail(BaseModel):
    commitment_id: str = Field(description="Commitment identifier.", examples=["cm_001"])
    root_commitment_id: str = Field(description="Chain root identifier.", examples=["cm_001"])
    previous_commitment_id: Optional[str] = Field(
        default=None, description="Predecessor in the chain."
    )
    version: int = Field(description="Version number within the chain.", examples=[1])
    status: CommitmentStatus = Field(description="Canonical lifecycle status.", examples=["DRAFT"])
    is_current: bool = Field(description="Whether this is the live member of its chain.")
    title: str = Field(description="Commitment title.", examples=["Website redesign"])
    scope_title: Optional[str] = None
    scope_description: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: str = Field(description="Currency code.", examples=["INR"])
    attachments: list[CommitmentAttachment] = Field(default_factory=list)
    payment_terms: list[PaymentTerm] = Field(default_factory=list)
    milestones: list[Milestone] = Field(default_factory=list)
    deliverables: list[Deliverable] = Field(default_factory=list)
    approval_rules: ApprovalRules
    assigned_to_user_id: Optional[str] = None
    client_id: Optional[str] = None
    client_snapshot: Optional[ClientSnapshot] = None
    created_by: str
    created_at: str
    updated_at: str
    approval_sent_at: Optional[str] = None
    approved_at: Optional[str] = None
    delivered_at: Optional[str] = None
    accepted_at: Optional[str] = None
    closed_at: Optional[str] = None
    cancelled_at: Optional[str] = None
    change_request_id: Optional[str] = None
    frozen_at: Optional[str] = None
    superseded_by_commitment_id: Optional[str] = None
    progress: DeliverableProgress = Field(description="Derived deliverable completion.")
    risk_level: RiskLevel = Field(description="Derived follow-up risk.", examples=["NONE"])
    allowed_actions: list[str] = Field(
        default_factory=list,
        description="Lifecycle actions the current status accepts.",
        examples=[["SEND_APPROVAL", "CANCEL"]],
    )


class CommitmentSummary(BaseModel):
    commitment_id: str = Field(description="Commitment identifier.", examples=["cm_001"])
    root_commitment_id: str = Field(description="Chain root identifier.", examples=["cm_001"])
    version: int = Field(description="Version number within the chain.", examples=[1])
    status: CommitmentStatus = Field(description="Canonical lifecycle status.", examples=["DRAFT"])
    title: str = Field(description="Commitment title.", examples=["Website redesign"])
    client_id: Optional[str] = None
    assigned_to_user_id: Optional[str] = None
    created_by: str
    created_at: str
    updated_at: str
    progress_percent: int = Field(description="Derived deliverable completion percent.")
    risk_level: RiskLevel = Field(description="Derived follow-up risk.", examples=["LOW"])


class CommitmentListResponse(BaseModel):
    items: list[CommitmentSummary] = Field(description="Current commitments, newest first.")
    next_cursor: Optional[str] = Field(
        default=None, description="Cursor for the next page.", examples=["cm_010"]
    )


class CommitmentActionResponse(BaseModel):
    commitment: CommitmentDetail = Field(description="Commitment after the action.")
    latest_event: CommitmentHistoryEvent = Field(description="History event recorded.")
    link: Optional[CommitmentLinkIssued] = Field(
        default=None, description="Link issued by this action, if any."
    )
    change_request: Optional[ChangeRequest] = Field(
        default=None, description="Change request touched by this action, if any."
    )


class ChangeRequestResolutionResponse(BaseModel):
    change_request: ChangeRequest = Field(description="Resolved change request.")
    commitment: CommitmentDetail = Field(
        description="Commitment the client acts on next: the new version when accepted."
    )
    previous_commitment: Optional[CommitmentDetail] = Field(
        default=None, description="Superseded version when the request was accepted."
    )
    link: Optional[CommitmentLinkIssued] = Field(
        default=None, description="Approval link issued for the new version, if any."
    )


class ChangeRequestListResponse(BaseModel):
    commitment_id: str = Field(description="Commitment identifier.", examples=["cm_001"])
    items: list[ChangeRequest] = Field(description="Change requests, newest first.")


class CommitmentHistoryResponse(BaseModel):
    commitment_id: str = Field(description="Commitment identifier.", examples=["cm_001"])
    events: list[CommitmentHistoryEvent] = Field(description="Append-only history, oldest first.")


class CommitmentVersionItem(BaseModel):
    commitment_id: str = Field(description="Chain member identifier.", examples=["cm_002"])
    version: int = Field(description="Version number.", examples=[2])
    status: CommitmentStatus = Field(description="Member status.", examples=["IN_PROGRESS"])
    is_current: bool = Field(description="Whether this member is the live one.")
    created_at: str = Field(description="UTC ISO8601 creation timestamp.")
    frozen_at: Optional[str] = Field(default=None, description="When the member was superseded.")
    superseded_by_commitment_id: Optional[str] = Field(
        default=None, description="Member that replaced this one."
    )


class CommitmentVersionsResponse(BaseModel):
    root_commitment_id: str = Field(description="Chain root identifier.", examples=["cm_001"])
    items: list[CommitmentVersionItem] = Field(description="Chain members by ascending version.")


class TimelineEntry(BaseModel):
    kind: TimelineKind = Field(description="Timeline entry kind.", examples=["approved"])
    title: str = Field(description="Display title.", examples=["Client approved scope"])
    subtitle: Optional[str] = Field(default=None, description="Display subtitle.")
    at: str = Field(description="UTC ISO8601 timestamp.", examples=["2026-02-19T12:00:00+00:00"])


class CommitmentTimelineResponse(BaseModel):
    commitment_id: str = Field(description="Commitment identifier.", examples=["cm_001"])
    order: TimelineOrder = Field(description="Requested ordering.", examples=["newest"])
    items: list[TimelineEntry] = Field(description="Reconstructed timeline.")


class PublicCommitmentView(BaseModel):
    commitment_id: str = Field(description="Commitment identifier.", examples=["cm_001"])
    version: int = Field(description="Current version number.", examples=[2])
    status: CommitmentStatus = Field(description="Canonical lifecycle status.")
    title: str
    scope_title: Optional[str] = None
    scope_description: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: str
    attachments: list[CommitmentAttachment] = Field(default_factory=list)
    payment_terms: list[PaymentTerm] = Field(default_factory=list)
    milestones: list[Milestone] = Field(default_factory=list)
    deliverables: list[Deliverable] = Field(default_factory=list)
    approval_rules: ApprovalRules
    approval_sent_at: Optional[str] = None
    delivered_at: Optional[str] = None


class PublicLinkInfoResponse(BaseModel):
    ok: bool = Field(description="Whether the link is usable.", examples=[True])
    purpose: LinkPurpose = Field(description="Link purpose.", examples=["APPROVAL"])
    version_ok: bool = Field(
        description="Whether the link was issued for the current version.", examples=[True]
    )
    link_version: int = Field(description="Version the link was issued for.", examples=[1])
    legacy_status: Optional[str] = Field(
        default=None,
        description="Legacy status name for older clients, when one exists.",
        examples=["PENDING_APPROVAL"],
    )
    link_expires_at: str = Field(description="UTC ISO8601 link expiry.")
    commitment: PublicCommitmentView = Field(description="Current commitment terms.")
    client: Optional[ClientSnapshot] = Field(default=None, description="Client details.")


class PublicActionResponse(BaseModel):
    ok: bool = Field(description="Action applied.", examples=[True])
    action: str = Field(description="Action that was applied.", examples=["approve"])
    commitment_id: str = Field(description="Commitment identifier.", examples=["cm_001"])
    version: int = Field(description="Commitment version acted on.", examples=[1])
    status: CommitmentStatus = Field(description="Status after the action.")
    change_request_id: Optional[str] = Field(
        default=None, description="Change request raised by the action, if any."
    )


class CommitmentSupportabilityConfigResponse(BaseModel):
    store_backend: str = Field(description="Configured repository backend.", examples=["POSTGRES"])
    backend_ready: bool = Field(description="Whether the backend initialised.", examples=[True])
    backend_init_error: Optional[str] = Field(
        default=None, description="Backend initialisation error code."
    )
    workflow_enabled: bool = Field(description="Internal workflow routes enabled.")
    public_links_enabled: bool = Field(description="Public link routes enabled.")
    link_ttl_hours: int = Field(description="Secure link lifetime.", examples=[168])
    new_version_status: CommitmentStatus = Field(
        description="Status given to versions created from accepted change requests."
    )
    require_deliverables_complete: bool = Field(
        description="Whether delivery requires every deliverable to be complete."
    )
