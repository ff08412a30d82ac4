from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

MAX_GPU_SPEC_ITEMS = 100


class JobStatus(str, Enum):
    QUEUED = "queued"
    ASSIGNED = "assigned"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


ACTIVE_JOB_STATUSES = frozenset({JobStatus.ASSIGNED, JobStatus.RUNNING})
TERMINAL_JOB_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})


class ProviderStatus(str, Enum):
    OFFLINE = "offline"
    ONLINE = "online"
    BUSY = "busy"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class CamelModel(BaseModel):
    """Base schema speaking camelCase on the wire and snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class CreateJobRequest(CamelModel):
    user_id: str = Field(min_length=1, max_length=255)
    docker_image: str = Field(max_length=255)
    command: Optional[str] = Field(default=None, max_length=4000)


class JobResponse(CamelModel):
    job_id: str
    user_id: str
    provider_id: Optional[str] = None
    docker_image: str
    command: Optional[str] = None
    status: JobStatus
    created_at: datetime
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    cost: Decimal = Decimal("0.00")


class ProviderRegistration(CamelModel):
    provider_id: Optional[str] = Field(default=None, min_length=1, max_length=255)
    owner_id: Optional[str] = Field(default=None, max_length=255)
    gpu_specs: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("gpu_specs")
    @classmethod
    def _limit_specs(cls, value: Dict[str, Any]) -> Dict[str, Any]:
        if len(value) > MAX_GPU_SPEC_ITEMS:
            raise ValueError("gpuSpecs exceeds maximum allowed keys")
        return value


class ProviderRegistrationResponse(CamelModel):
    provider_id: str
    status: Literal["created", "updated"]


class ProviderResponse(CamelModel):
    provider_id: str
    owner_id: Optional[str] = None
    status: ProviderStatus
    gpu_specs: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class AssignJobRequest(CamelModel):
    provider_id: str = Field(min_length=1)


class ContainerConfigResponse(CamelModel):
    image: str
    command: Optional[str] = None
    env: Dict[str, str] = Field(default_factory=dict)
    volumes: Dict[str, str] = Field(default_factory=dict)
    gpu: bool = True
    memory_limit: str
    cpu_limit: float
    run_command: str


class AssignJobResponse(CamelModel):
    job: JobResponse
    container_config: ContainerConfigResponse


class NoJobResponse(CamelModel):
    no_job: bool = True


class ReportStatusRequest(CamelModel):
    job_id: str = Field(min_length=1)
    provider_id: str = Field(min_length=1)
    status: JobStatus
    execution_time_minutes: Optional[float] = Field(default=None, ge=0)


class ReportStatusResponse(CamelModel):
    success: bool = True


class PaymentResponse(CamelModel):
    payment_id: str
    job_id: str
    amount: Decimal
    status: PaymentStatus
    simulated: bool = False
    created_at: datetime


class SettlementResponse(CamelModel):
    job_id: str
    status: JobStatus
    cost: Decimal
    provider_earnings: Decimal
    payments: List[PaymentResponse] = Field(default_factory=list)
