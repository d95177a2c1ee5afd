"""
Request bodies, validated before they reach the access-control core.
"""

import json
from typing import List, Optional, Type, TypeVar

from aiohttp import web
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..errors import RejectedInput

MAX_FILE_CONTENT = 1024 * 1024

ModelT = TypeVar("ModelT", bound=BaseModel)


class LoginRequest(BaseModel):
    username: str = Field(min_length=1, max_length=64)
    password: str = Field(min_length=1, max_length=1024)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1, max_length=4096)


class CreateUserRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    username: str
    password: str
    role_id: Optional[str] = Field(default=None, alias="roleId")


class UpdateUserRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    password: Optional[str] = None
    role_id: Optional[str] = Field(default=None, alias="roleId")


class CreateRoleRequest(BaseModel):
    id: str
    name: str
    description: str = ""
    permissions: List[str] = Field(default_factory=list)
    color: Optional[str] = None


class UpdateRoleRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    permissions: Optional[List[str]] = None
    color: Optional[str] = None


class CommandRequest(BaseModel):
    command: str = Field(min_length=1)


class FileWriteRequest(BaseModel):
    root: str = "server"
    path: str = Field(min_length=1)
    content: str = Field(max_length=MAX_FILE_CONTENT)


async def parse_body(request: web.Request, model: Type[ModelT]) -> ModelT:
    """
    Decode and validate a JSON request body.

    Raises:
        RejectedInput: Body is not JSON or does not match the model
    """
    try:
        data = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise RejectedInput("Request body must be valid JSON") from None

    try:
        return model.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or "body"
        raise RejectedInput(f"{field}: {first.get('msg', 'invalid value')}") from None
