"""
sailsetu/services/sailpoint_service.py

Purpose: SailPoint IdentityIQ integration - SCIM workflow launches

- Launches named workflows through /scim/v2/LaunchedWorkflows
- HTTP Basic Auth with the configured service account
- Normalizes the result to LaunchResponse or raises WorkflowLaunchError
- Holds the current backend configuration shared by every channel
"""

import json
import httpx
from typing import Any, Dict, List, Mapping, Optional, Union

from sailsetu.core.config import settings
from sailsetu.core.exceptions import ConfigurationMissingError, WorkflowLaunchError
from sailsetu.core.logging import get_logger
from sailsetu.schemas.sailpoint import SailPointConfig, LaunchResponse

logger = get_logger(__name__)

LAUNCHED_WORKFLOWS_PATH = "/scim/v2/LaunchedWorkflows"
SCIM_CONTENT_TYPE = "application/scim+json"
LAUNCHED_WORKFLOW_SCHEMA = "urn:ietf:params:scim:schemas:sailpoint:1.0:LaunchedWorkflow"
TASK_RESULT_SCHEMA = "urn:ietf:params:scim:schemas:sailpoint:1.0:TaskResult"

WorkflowInput = Union[Mapping[str, Any], List[Dict[str, Any]]]


def build_input_list(inputs: Optional[WorkflowInput]) -> List[Dict[str, Any]]:
    """
    Converts workflow inputs to the SCIM [{key, value}] list.

    Lists are assumed to be pre-formatted and passed through. Mapping values
    that are lists or dicts are JSON-encoded.

    Args:
        inputs: Mapping of input name to value, or a ready key/value list

    Returns:
        SCIM input list
    """
    if isinstance(inputs, list):
        return inputs

    input_list = []
    for key, value in (inputs or {}).items():
        if isinstance(value, (dict, list)):
            value = json.dumps(value)
        input_list.append({"key": key, "value": value})
    return input_list


def build_launch_payload(workflow_name: str, inputs: Optional[WorkflowInput]) -> Dict[str, Any]:
    return {
        "schemas": [LAUNCHED_WORKFLOW_SCHEMA, TASK_RESULT_SCHEMA],
        LAUNCHED_WORKFLOW_SCHEMA: {
            "workflowName": workflow_name,
            "input": build_input_list(inputs),
        },
    }


class SailPointService:
    """
    Launches IdentityIQ workflows.
    """

    def __init__(self, timeout: Optional[float] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._timeout = timeout if timeout is not None else settings.SAILPOINT_TIMEOUT
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        return self._client

    async def launch_workflow(
        self,
        workflow_name: str,
        inputs: Optional[WorkflowInput],
        config: Optional[SailPointConfig]
    ) -> LaunchResponse:
        """
        Launches a workflow and returns its TaskResult.

        Args:
            workflow_name: IdentityIQ workflow name
            inputs: Workflow inputs (mapping or key/value list)
            config: Backend credentials

        Returns:
            LaunchResponse with the raw launch result

        Raises:
            ConfigurationMissingError: If credentials are missing
            WorkflowLaunchError: If the backend rejects the launch or is unreachable
        """
        if not config or not config.url or not config.username or not config.password:
            raise ConfigurationMissingError("Missing parameters for workflow launch")
        if not workflow_name:
            raise WorkflowLaunchError("Workflow name is required")

        target_url = f"{config.base_url}{LAUNCHED_WORKFLOWS_PATH}"
        payload = build_launch_payload(workflow_name, inputs)

        logger.info(f"🚀 Launching workflow {workflow_name} -> {target_url}", extra={"workflow": workflow_name})

        try:
            response = await self._get_client().post(
                target_url,
                content=json.dumps(payload),
                auth=httpx.BasicAuth(config.username, config.password),
                headers={
                    "Content-Type": SCIM_CONTENT_TYPE,
                    "Accept": SCIM_CONTENT_TYPE,
                },
            )
        except httpx.TimeoutException:
            logger.error(f"SailPoint timeout launching {workflow_name}")
            raise WorkflowLaunchError(f"SailPoint did not respond within {self._timeout:.0f}s")
        except httpx.RequestError as e:
            logger.error(f"Network error launching {workflow_name}: {e}")
            raise WorkflowLaunchError(f"Unable to reach SailPoint: {e}")

        if response.status_code >= 400:
            logger.error(f"❌ SailPoint error {response.status_code} for {workflow_name}: {response.text[:300]}")
            raise WorkflowLaunchError(
                f"SailPoint Error {response.status_code}: {response.text}",
                details={"status_code": response.status_code}
            )

        try:
            data = response.json()
        except ValueError:
            raise WorkflowLaunchError(f"SailPoint returned a non-JSON response for {workflow_name}")

        logger.debug(f"✅ Workflow {workflow_name} launched")
        return LaunchResponse(success=True, launch_result=data if isinstance(data, dict) else {"result": data})

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class BackendConfigStore:
    """
    Current SailPoint credentials, shared read-only by all sessions.

    update() swaps the reference; calls already holding the old config
    finish with it.
    """

    def __init__(self, config: Optional[SailPointConfig] = None):
        self._config = config

    @property
    def current(self) -> Optional[SailPointConfig]:
        return self._config

    def update(self, config: Optional[SailPointConfig]):
        self._config = config
        logger.info("🔧 SailPoint configuration updated" if config else "🔧 SailPoint configuration cleared")

    @classmethod
    def from_settings(cls) -> "BackendConfigStore":
        if settings.has_sailpoint_config:
            return cls(SailPointConfig(
                url=settings.SAILPOINT_URL,
                username=settings.SAILPOINT_USERNAME,
                password=settings.SAILPOINT_PASSWORD,
            ))
        return cls()
