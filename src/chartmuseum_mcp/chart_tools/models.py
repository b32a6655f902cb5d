"""Data models for ChartMuseum API payloads."""

from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Union
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .config import HEADER_RATE_LIMIT, HEADER_RATE_RESET
from .exceptions import InvalidChartReferenceError


class ChartDependency(BaseModel):
    """Represents a Helm chart dependency."""

    name: str
    version: Optional[str] = None
    repository: Optional[str] = None
    condition: Optional[str] = None
    tags: Optional[List[str]] = None
    enabled: Optional[bool] = None
    import_values: Optional[List[Union[str, Dict[str, Any]]]] = Field(
        None, alias="import-values"
    )
    alias: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class ChartMetadata(BaseModel):
    """Represents Helm chart metadata from Chart.yaml."""

    api_version: Optional[str] = Field(None, alias="apiVersion")
    name: str
    version: str
    description: Optional[str] = None
    type: Optional[str] = None
    keywords: Optional[List[str]] = None
    home: Optional[str] = None
    sources: Optional[List[str]] = None
    dependencies: Optional[List[ChartDependency]] = None
    maintainers: Optional[List[Dict[str, Any]]] = None
    icon: Optional[str] = None
    app_version: Optional[str] = Field(None, alias="appVersion")
    deprecated: Optional[bool] = None
    annotations: Optional[Dict[str, str]] = None

    model_config = ConfigDict(populate_by_name=True)


def _timestamp_to_str(value: Any) -> Any:
    # YAML loads RFC 3339 timestamps as datetimes, JSON keeps them as strings
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class ChartVersion(ChartMetadata):
    """A single chart version entry as served by a chart repository."""

    urls: List[str] = Field(default_factory=list)
    created: Optional[str] = None
    removed: Optional[bool] = None
    digest: Optional[str] = None

    @field_validator("created", mode="before")
    @classmethod
    def _created_as_str(cls, value: Any) -> Any:
        return _timestamp_to_str(value)


class RepositoryIndex(BaseModel):
    """Represents a repository index.yaml."""

    api_version: Optional[str] = Field(None, alias="apiVersion")
    generated: Optional[str] = None
    entries: Dict[str, List[ChartVersion]] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("generated", mode="before")
    @classmethod
    def _generated_as_str(cls, value: Any) -> Any:
        return _timestamp_to_str(value)


class Healthy(BaseModel):
    healthy: bool = False


class VersionInfo(BaseModel):
    version: str = ""


class Response(BaseModel):
    """Envelope around a raw HTTP response.

    The optional fields are filled in when the server answers with a JSON
    object carrying them, e.g. ``{"saved": true}`` after an upload.
    """

    method: str
    url: str
    status: int
    headers: Dict[str, str] = Field(default_factory=dict)

    message: Optional[str] = None
    error: Optional[str] = None
    saved: Optional[bool] = None
    deleted: Optional[bool] = None
    healthy: Optional[bool] = None

    def header(self, name: str) -> Optional[str]:
        """Case-insensitive header lookup."""
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None

    @property
    def rate_limit(self) -> Optional[int]:
        return _int_or_none(self.header(HEADER_RATE_LIMIT))

    @property
    def rate_limit_reset(self) -> Optional[int]:
        return _int_or_none(self.header(HEADER_RATE_RESET))


def _int_or_none(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def normalize_repo_path(repo: Union[str, Sequence[str]]) -> str:
    """Normalize a repository path to ``seg/seg`` form.

    Accepts either a slash separated string or a sequence of segments. Empty
    segments are dropped, so leading, trailing and doubled separators vanish.

    Raises:
        InvalidChartReferenceError: If repo is not a path or no segment remains
    """
    if isinstance(repo, str):
        raw_segments = repo.split("/")
    elif not isinstance(repo, Sequence):
        raise InvalidChartReferenceError(
            f"repo must be a path or a list of segments, got {type(repo).__name__}"
        )
    else:
        raw_segments = [part for segment in repo for part in str(segment).split("/")]

    segments = [segment.strip() for segment in raw_segments if segment.strip()]
    if not segments:
        raise InvalidChartReferenceError("repo cannot be empty")
    return "/".join(segments)


class ChartRef(BaseModel):
    """Identifies a chart, optionally at a specific version, in a repository."""

    repo: str
    name: Optional[str] = None
    version: Optional[str] = None

    @classmethod
    def of(
        cls,
        repo: Union[str, Sequence[str]],
        name: Optional[str] = None,
        version: Optional[str] = None,
    ) -> "ChartRef":
        try:
            return cls(repo=normalize_repo_path(repo), name=name, version=version)
        except ValidationError as e:
            raise InvalidChartReferenceError(f"invalid chart reference: {e}") from e

    def require_name(self) -> str:
        if not self.name or not self.name.strip():
            raise InvalidChartReferenceError("chart name cannot be empty")
        return self.name

    def require_version(self) -> str:
        self.require_name()
        if not self.version or not self.version.strip():
            raise InvalidChartReferenceError("chart version cannot be empty")
        return self.version

    def __str__(self) -> str:
        if not self.name:
            return self.repo
        if not self.version:
            return f"{self.repo}/{self.name}"
        return f"{self.repo}/{self.name}-{self.version}"


# MCP Response Models


class ErrorType(str, Enum):
    """Standard error types for MCP responses."""

    INVALID_REQUEST = "invalid_request"
    CHART_NOT_FOUND = "chart_not_found"
    AUTHENTICATION_FAILED = "authentication_failed"
    SERVER_ERROR = "server_error"
    TRANSPORT_FAILED = "transport_failed"
    ACCEPTED = "accepted"


class ToolResponse(BaseModel):
    """Response model shared by all MCP tools."""

    success: bool
    message: str
    error: Optional[ErrorType] = None
    details: Optional[str] = None
    data: Optional[Any] = None
