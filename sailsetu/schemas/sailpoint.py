"""
sailsetu/schemas/sailpoint.py

Purpose: SailPoint IdentityIQ data shapes

- Backend credentials pushed from the dashboard or loaded from env
- Normalized workflow launch response
- Helpers to read SCIM key/value attributes by convention
"""

import json
from pydantic import BaseModel, Field
from typing import Optional, Any, Dict, List


class SailPointConfig(BaseModel):
    """
    Credentials for the IdentityIQ SCIM API.
    """
    url: str = Field(..., description="IdentityIQ base URL")
    username: str = Field(..., description="Service account name")
    password: str = Field(..., description="Service account password")

    @property
    def base_url(self) -> str:
        return self.url.rstrip("/")

    class Config:
        json_schema_extra = {
            "example": {
                "url": "https://iiq.example.com/identityiq",
                "username": "spadmin",
                "password": "admin"
            }
        }


class LaunchResponse(BaseModel):
    """
    Result of a successful LaunchedWorkflows call.

    launch_result is the raw backend TaskResult; features pull named
    attributes out of it with attribute().
    """
    success: bool = True
    launch_result: Dict[str, Any] = Field(default_factory=dict)

    def attribute(self, key: str, default: Any = None) -> Any:
        return get_attribute(self.launch_result, key, default)

    def json_attribute(self, key: str, default: Any = None) -> Any:
        return parse_json_value(self.attribute(key), default)


def get_attribute(launch_result: Optional[Dict[str, Any]], key: str, default: Any = None) -> Any:
    """
    Reads an output attribute from a launch result.

    IdentityIQ returns attributes as a list of {key, value} pairs; some
    workflows return a plain mapping instead. Both are accepted.

    Args:
        launch_result: Raw TaskResult payload
        key: Attribute name
        default: Value returned when missing

    Returns:
        Attribute value or default
    """
    if not launch_result:
        return default

    attributes = launch_result.get("attributes")

    if isinstance(attributes, list):
        for entry in attributes:
            if isinstance(entry, dict) and entry.get("key") == key:
                return entry.get("value", default)
        return default

    if isinstance(attributes, dict):
        return attributes.get(key, default)

    return default


def parse_json_value(value: Any, default: Any = None) -> Any:
    """Decodes a JSON-encoded attribute, passing through already-decoded values."""
    if value is None:
        return default
    if isinstance(value, (list, dict)):
        return value
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            return default
    return default


def is_true(value: Any) -> bool:
    """Workflow flags arrive either as booleans or as the strings 'true'/'false'."""
    return value is True or (isinstance(value, str) and value.lower() == "true")


class ConfigUpdateRequest(BaseModel):
    """
    Dashboard request body for POST /bot/config.
    """
    action: str = Field(..., description="update_config or logout")
    config: Optional[SailPointConfig] = None
    telegramToken: Optional[str] = None


class AccessItem(BaseModel):
    """
    One entry of the ProvisionAccess accessItems list.
    """
    type: str
    application: str = ""
    name: str
    value: Optional[str] = None
    op: str = "Remove"


def access_items_json(items: List[AccessItem]) -> str:
    return json.dumps([item.model_dump() for item in items])
