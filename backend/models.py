from pydantic import BaseModel, EmailStr, Field, ConfigDict
from typing import Optional, Dict, Any, List
from datetime import datetime, timezone
from enum import Enum
import uuid


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())

# ============================================================================
# ENUMS (System Constants)
# ============================================================================

class UserRole(str, Enum):
    ADMIN = "ADMIN"
    SOLUTIONS_ENGINEER = "SOLUTIONS_ENGINEER"
    CLIENT_USER = "CLIENT_USER"

class UserStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"

class ClientStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    PENDING = "PENDING"

class PipelineStepStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"

class DocumentLinkType(str, Enum):
    SURVEY_QUESTIONS = "survey_questions"
    SURVEY_RESULTS = "survey_results"
    PROCESS_DOCUMENTATION = "process_documentation"
    ADA_PROPOSAL = "ada_proposal"
    CONTRACT = "contract"
    FACTORY_MARKDOWN = "factory_markdown"
    TEST_PLAN = "test_plan"

class WorkflowStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"

class ExecutionStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"

class ExceptionSeverity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

class ExceptionStatus(str, Enum):
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"

class NodeStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"

class PricingModel(str, Enum):
    CONSUMPTION = "CONSUMPTION"
    FIXED = "FIXED"
    TIERED_USAGE = "TIERED_USAGE"
    PER_SEAT = "PER_SEAT"

class BillingCadence(str, Enum):
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    YEARLY = "YEARLY"

class ProductUsageApi(str, Enum):
    AIR_DIRECT = "AIR_DIRECT"
    NEXUS_BASE = "NEXUS_BASE"

class SubscriptionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"
    PENDING_RENEWAL = "PENDING_RENEWAL"

class InvoiceStatus(str, Enum):
    DRAFT = "DRAFT"
    SENT = "SENT"
    PAID = "PAID"
    OVERDUE = "OVERDUE"
    VOID = "VOID"

class CreditTransactionType(str, Enum):
    CREDIT = "CREDIT"
    DEBIT = "DEBIT"

class CredentialService(str, Enum):
    SLACK = "Slack"
    GITHUB = "GitHub"
    JIRA = "Jira"
    SALESFORCE = "Salesforce"
    AWS = "AWS"

class CredentialStatus(str, Enum):
    CONNECTED = "CONNECTED"
    DISCONNECTED = "DISCONNECTED"
    ERROR_NEEDS_REAUTH = "ERROR_NEEDS_REAUTH"

class AuditAction(str, Enum):
    # Auth
    USER_LOGIN_SUCCESS = "USER_LOGIN_SUCCESS"
    USER_LOGIN_FAILED = "USER_LOGIN_FAILED"
    USER_LOGOUT = "USER_LOGOUT"

    # Clients
    CLIENT_CREATED = "CLIENT_CREATED"
    CLIENT_UPDATED = "CLIENT_UPDATED"
    CLIENT_DELETED = "CLIENT_DELETED"
    PIPELINE_STEP_UPDATED = "PIPELINE_STEP_UPDATED"

    # Users
    USER_CREATED = "USER_CREATED"
    USER_UPDATED = "USER_UPDATED"
    USER_DELETED = "USER_DELETED"
    ADMIN_BOOTSTRAPPED = "ADMIN_BOOTSTRAPPED"

    # Billing
    PLAN_CREATED = "PLAN_CREATED"
    PLAN_UPDATED = "PLAN_UPDATED"
    PLAN_DELETED = "PLAN_DELETED"
    SUBSCRIPTION_ASSIGNED = "SUBSCRIPTION_ASSIGNED"
    SUBSCRIPTION_UPDATED = "SUBSCRIPTION_UPDATED"
    SUBSCRIPTION_DELETED = "SUBSCRIPTION_DELETED"
    INVOICE_CREATED = "INVOICE_CREATED"
    INVOICE_UPDATED = "INVOICE_UPDATED"
    INVOICE_DELETED = "INVOICE_DELETED"
    CREDIT_APPLIED = "CREDIT_APPLIED"
    DEBIT_APPLIED = "DEBIT_APPLIED"

    # Workflows
    WORKFLOW_CREATED = "WORKFLOW_CREATED"
    WORKFLOW_UPDATED = "WORKFLOW_UPDATED"
    WORKFLOW_DELETED = "WORKFLOW_DELETED"
    EXCEPTION_STATUS_UPDATED = "EXCEPTION_STATUS_UPDATED"

    # Credentials
    CREDENTIAL_SAVED = "CREDENTIAL_SAVED"
    CREDENTIAL_DELETED = "CREDENTIAL_DELETED"

    # Reports
    REPORT_EXPORTED = "REPORT_EXPORTED"

# ============================================================================
# DEFAULTS
# ============================================================================

DEFAULT_PIPELINE_STEPS = [
    "Discovery: Initial Survey",
    "Discovery: Process Deep Dive",
    "ADA Proposal Sent",
    "ADA Proposal Review",
    "ADA Contract Sent",
    "ADA Contract Signed",
    "Credentials Collected",
    "Factory Build Initiated",
    "Test Plan Generated",
    "Testing Started",
    "Production Deploy",
]

DEFAULT_DOCUMENT_LINKS = [
    ("Survey Questions", DocumentLinkType.SURVEY_QUESTIONS),
    ("Survey Results", DocumentLinkType.SURVEY_RESULTS),
    ("Process Documentation", DocumentLinkType.PROCESS_DOCUMENTATION),
    ("ADA Proposal", DocumentLinkType.ADA_PROPOSAL),
    ("Contract", DocumentLinkType.CONTRACT),
    ("Factory Markdown", DocumentLinkType.FACTORY_MARKDOWN),
    ("Test Plan", DocumentLinkType.TEST_PLAN),
]

# ============================================================================
# MODELS
# ============================================================================

class PipelineStep(BaseModel):
    name: str
    status: PipelineStepStatus = PipelineStepStatus.PENDING
    completed_date: Optional[datetime] = None
    order: int

class DocumentLink(BaseModel):
    title: str
    url: str = ""
    type: DocumentLinkType

def default_pipeline_steps() -> List[PipelineStep]:
    return [PipelineStep(name=name, order=idx) for idx, name in enumerate(DEFAULT_PIPELINE_STEPS, 1)]

def default_document_links() -> List[DocumentLink]:
    return [DocumentLink(title=title, type=link_type) for title, link_type in DEFAULT_DOCUMENT_LINKS]

class Client(BaseModel):
    model_config = ConfigDict(extra="ignore")

    client_id: str = Field(default_factory=_new_id)
    company_name: str
    company_url: Optional[str] = None
    contact_name: Optional[str] = None
    industry: Optional[str] = None
    status: ClientStatus = ClientStatus.PENDING
    contract_start_date: Optional[datetime] = None
    assigned_solutions_engineer_ids: List[str] = []
    pipeline_steps: List[PipelineStep] = Field(default_factory=default_pipeline_steps)
    pipeline_progress_current_phase: Optional[str] = DEFAULT_PIPELINE_STEPS[0]
    document_links: List[DocumentLink] = Field(default_factory=default_document_links)
    active_subscription_id: Optional[str] = None
    credit_balance: float = 0.0
    last_credit_update: Optional[datetime] = None
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

class User(BaseModel):
    model_config = ConfigDict(extra="ignore")

    user_id: str = Field(default_factory=_new_id)
    name: str
    email: EmailStr
    password_hash: Optional[str] = None
    phone: Optional[str] = None
    role: UserRole
    status: UserStatus = UserStatus.ACTIVE
    # Solutions engineers
    cost_rate: Optional[float] = None
    bill_rate: Optional[float] = None
    assigned_client_ids: Optional[List[str]] = None
    # Client users
    client_id: Optional[str] = None
    department_id: Optional[str] = None
    notify_by_email_for_exceptions: bool = False
    notify_by_sms_for_exceptions: bool = False
    has_billing_access: bool = False
    is_client_admin: bool = False
    client_user_notes: Optional[str] = None
    last_login: Optional[datetime] = None
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

class Department(BaseModel):
    model_config = ConfigDict(extra="ignore")

    department_id: str = Field(default_factory=_new_id)
    name: str
    client_id: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

class Workflow(BaseModel):
    model_config = ConfigDict(extra="ignore")

    workflow_id: str = Field(default_factory=_new_id)
    client_id: str
    department_id: Optional[str] = None
    name: str
    description: Optional[str] = None
    status: WorkflowStatus = WorkflowStatus.ACTIVE
    time_saved_per_execution: float = 0  # minutes
    money_saved_per_execution: float = 0
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

class WorkflowExecution(BaseModel):
    model_config = ConfigDict(extra="ignore")

    execution_id: str
    workflow_id: str
    client_id: str
    status: ExecutionStatus = ExecutionStatus.SUCCESS
    duration: float = 0  # milliseconds
    details: str = ""
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

class WorkflowException(BaseModel):
    model_config = ConfigDict(extra="ignore")

    exception_id: str
    workflow_id: str
    workflow_name: Optional[str] = None
    client_id: str
    exception_type: str
    severity: ExceptionSeverity
    remedy: Optional[str] = None
    status: ExceptionStatus = ExceptionStatus.OPEN
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

class WorkflowNode(BaseModel):
    model_config = ConfigDict(extra="ignore")

    node_id: str
    workflow_id: str
    client_id: str
    node_name: str
    node_type: str
    status: NodeStatus = NodeStatus.ACTIVE
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

class SubscriptionPlan(BaseModel):
    model_config = ConfigDict(extra="ignore")

    plan_id: str = Field(default_factory=_new_id)
    name: str
    pricing_model: PricingModel
    contract_length_months: int = 12
    billing_cadence: BillingCadence = BillingCadence.MONTHLY
    setup_fee: float = 0
    prepayment_percentage: float = Field(default=0, ge=0, le=100)
    cap_amount: Optional[float] = None
    overage_cost: Optional[float] = None
    credits_per_period: Optional[int] = None
    price_per_credit: Optional[float] = None
    product_usage_api: Optional[ProductUsageApi] = None
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

class ClientSubscription(BaseModel):
    model_config = ConfigDict(extra="ignore")

    subscription_id: str = Field(default_factory=_new_id)
    client_id: str
    subscription_plan_id: str
    start_date: datetime
    end_date: Optional[datetime] = None
    base_fee_override: Optional[float] = None
    credits_remaining_this_period: Optional[int] = None
    renews_on: Optional[datetime] = None
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

class Invoice(BaseModel):
    model_config = ConfigDict(extra="ignore")

    invoice_id: str = Field(default_factory=_new_id)
    client_id: str
    client_subscription_id: str
    invoice_date: datetime
    due_date: datetime
    payment_method_info: Optional[str] = None
    amount_billed: float
    status: InvoiceStatus = InvoiceStatus.DRAFT
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

class ClientCredit(BaseModel):
    model_config = ConfigDict(extra="ignore")

    credit_id: str = Field(default_factory=_new_id)
    client_id: str
    amount: float = Field(gt=0)
    reason: str
    applied_by: Optional[str] = None
    applied_at: datetime = Field(default_factory=_now)
    transaction_type: CreditTransactionType = CreditTransactionType.CREDIT
    balance: float = 0
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=_now)

class Credential(BaseModel):
    model_config = ConfigDict(extra="ignore")

    credential_id: str = Field(default_factory=_new_id)
    client_id: str
    service_name: CredentialService
    encrypted_credentials: Optional[str] = None
    status: CredentialStatus = CredentialStatus.DISCONNECTED
    last_verified_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

class AuditLog(BaseModel):
    model_config = ConfigDict(extra="ignore")

    audit_id: str = Field(default_factory=_new_id)
    action: AuditAction
    actor_role: Optional[UserRole] = None
    actor_id: Optional[str] = None
    client_id: Optional[str] = None
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    before_state: Optional[Dict[str, Any]] = None
    after_state: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None
    ip_address: Optional[str] = None
    timestamp: datetime = Field(default_factory=_now)


def to_document(model: BaseModel) -> Dict[str, Any]:
    """Dump a model for MongoDB: enums stored by value, datetimes kept native."""
    return _plain(model.model_dump())


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value
