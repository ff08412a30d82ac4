from typing import Annotated, List

from fastapi import APIRouter, Depends

from compute_fabric.api.dependencies import get_job_store
from compute_fabric.api.models import ProviderRegistration, ProviderRegistrationResponse, ProviderResponse
from compute_fabric.api.services.job_store import JobStore

router = APIRouter()


@router.post("/register", response_model=ProviderRegistrationResponse)
def register_provider(
    registration: ProviderRegistration,
    store: Annotated[JobStore, Depends(get_job_store)],
):
    provider, created = store.register_provider(
        registration.provider_id,
        registration.owner_id,
        registration.gpu_specs,
    )
    return ProviderRegistrationResponse(
        provider_id=provider.provider_id,
        status="created" if created else "updated",
    )


@router.get("", response_model=List[ProviderResponse])
def list_providers(store: Annotated[JobStore, Depends(get_job_store)]):
    return store.list_providers()
