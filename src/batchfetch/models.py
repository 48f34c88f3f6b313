"""
Wire models for the batch aggregation endpoint.
"""

import typing as t
from enum import StrEnum

from pydantic import BaseModel, Field, TypeAdapter, field_validator


class HttpMethod(StrEnum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"
    PATCH = "PATCH"


def validate_endpoint(endpoint: str) -> str:
    """
    Check that an endpoint is a non-empty absolute resource path.

    Parameters
    ----------
    endpoint : str
        Candidate endpoint.

    Returns
    -------
    str
        The endpoint, unchanged.
    """
    if not isinstance(endpoint, str) or not endpoint.strip():
        raise ValueError("Endpoint must be a non-empty resource path")
    if not endpoint.startswith("/"):
        raise ValueError(f"Endpoint must start with '/': {endpoint!r}")
    return endpoint


_body_adapter: TypeAdapter[t.Any] = TypeAdapter(t.Any)


def encode_body(body: t.Any) -> t.Any:
    """
    Convert a request body to plain JSON-compatible values.

    Dates and pydantic models become their JSON form.

    Parameters
    ----------
    body : typing.Any
        Request payload.

    Returns
    -------
    typing.Any
        Payload made only of dicts, lists, strings, numbers, booleans and None.

    Raises
    ------
    ValueError
        The payload holds a value with no JSON form.
    """
    if body is None:
        return None
    try:
        return _body_adapter.dump_python(body, mode="json")
    except (TypeError, ValueError) as error:
        raise ValueError(f"Request body is not JSON serializable: {error}") from None


class BatchItem(BaseModel):
    id: str
    endpoint: str
    method: HttpMethod = HttpMethod.GET
    body: t.Any | None = None

    @field_validator("endpoint")
    @classmethod
    def check_endpoint(cls, value: str) -> str:
        return validate_endpoint(value)

    def to_wire(self) -> dict[str, t.Any]:
        # body is only sent when present; None values inside it are kept as-is
        data: dict[str, t.Any] = {
            "id": self.id,
            "endpoint": self.endpoint,
            "method": self.method.value,
        }
        if self.body is not None:
            data["body"] = self.body
        return data


class BatchEnvelope(BaseModel):
    requests: list[BatchItem] = Field(min_length=1)

    def to_wire(self) -> dict[str, t.Any]:
        return {"requests": [item.to_wire() for item in self.requests]}


class BatchResponseEntry(BaseModel):
    id: str
    status: int
    data: t.Any = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


batch_response_adapter = TypeAdapter(list[BatchResponseEntry])
