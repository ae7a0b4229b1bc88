"""Parameters endpoint for the infrastructure generator plugin."""

from typing import Any

from fastapi import APIRouter, Depends

from shipyard.api.dependencies import ProvisioningDep
from shipyard.auth.dependencies import require_generator_token

router = APIRouter(tags=["provisioning"], dependencies=[Depends(require_generator_token)])


@router.post("/v1/getparams.execute")
async def get_params(generator: ProvisioningDep) -> dict[str, Any]:
    """Plugin-generator response: one parameter set per environment."""
    parameters = await generator.generate()
    return {"output": {"parameters": [p.to_dict() for p in parameters]}}
