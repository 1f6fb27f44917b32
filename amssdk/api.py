"""Data types exchanged with the REST API."""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping

__all__ = [
    "VERSION",
    "StatusCode",
    "ResponseType",
    "CertificatesPost",
    "Certificate",
    "Operation",
    "Response",
]

VERSION = "1.0"

_ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)
_TIME_RE = re.compile(
    r"(\d{4}-\d{2}-\d{2})[Tt ](\d{2}:\d{2}:\d{2})(?:\.(\d+))?(Z|z|[+-]\d{2}:\d{2})"
)


class StatusCode(enum.IntEnum):
    """Status of a REST operation."""

    OPERATION_CREATED = 100
    STARTED = 101
    STOPPED = 102
    RUNNING = 103
    CANCELLING = 104
    PENDING = 105
    STARTING = 106
    STOPPING = 107
    ABORTING = 108
    FREEZING = 109
    FROZEN = 110
    THAWED = 111
    ERROR = 112
    SUCCESS = 200
    FAILURE = 400
    CANCELLED = 401

    @classmethod
    def _missing_(cls, value: object) -> StatusCode | None:
        if isinstance(value, int) and not isinstance(value, bool):
            member = int.__new__(cls, value)
            member._name_ = f"UNKNOWN_{value}"
            member._value_ = value
            return member
        return None

    def __str__(self) -> str:
        return _STATUS_DESCRIPTIONS.get(int(self), "")

    def is_final(self) -> bool:
        """Tell whether the status code marks an end state."""
        return int(self) >= 200


_STATUS_DESCRIPTIONS = {
    100: "Operation created",
    101: "Started",
    102: "Stopped",
    103: "Running",
    104: "Cancelling",
    105: "Pending",
    106: "Starting",
    107: "Stopping",
    108: "Aborting",
    109: "Freezing",
    110: "Frozen",
    111: "Thawed",
    112: "Error",
    200: "Success",
    400: "Failure",
    401: "Cancelled",
}


class ResponseType(str, enum.Enum):
    """Kind of a REST response."""

    SYNC = "sync"
    ASYNC = "async"
    ERROR = "error"

    def __str__(self) -> str:
        return self.value


def _field(data: Mapping[str, Any], key: str, kind: type | tuple[type, ...], default: Any) -> Any:
    value = data.get(key)
    if value is None:
        return default
    if isinstance(value, bool) and kind is int:
        raise ValueError(f"field {key!r} must be {kind.__name__}, got bool")
    if not isinstance(value, kind):
        name = kind.__name__ if isinstance(kind, type) else "/".join(k.__name__ for k in kind)
        raise ValueError(f"field {key!r} must be {name}, got {type(value).__name__}")
    return value


def _require_mapping(data: Any) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise ValueError(f"expected an object, got {type(data).__name__}")
    return data


def _parse_time(value: str) -> datetime:
    match = _TIME_RE.fullmatch(value)
    if match is None:
        raise ValueError(f"invalid timestamp {value!r}")
    date, clock, fraction, zone = match.groups()
    micros = ((fraction or "") + "000000")[:6]
    if zone in ("Z", "z"):
        zone = "+00:00"
    return datetime.fromisoformat(f"{date}T{clock}.{micros}{zone}")


def _format_time(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    text = (
        f"{value.year:04d}-{value.month:02d}-{value.day:02d}"
        f"T{value.hour:02d}:{value.minute:02d}:{value.second:02d}"
    )
    if value.microsecond:
        text += "." + f"{value.microsecond:06d}".rstrip("0")
    offset = value.utcoffset() or timedelta(0)
    if offset == timedelta(0):
        return text + "Z"
    sign = "+" if offset > timedelta(0) else "-"
    minutes = abs(int(offset.total_seconds())) // 60
    return f"{text}{sign}{minutes // 60:02d}:{minutes % 60:02d}"


@dataclass
class CertificatesPost:
    """Request body registering a new client certificate."""

    certificate: str
    trust_password: str = ""

    def to_dict(self) -> dict[str, str]:
        """Return the JSON form of the request."""
        result = {"certificate": self.certificate}
        if self.trust_password:
            result["trust-password"] = self.trust_password
        return result


@dataclass
class Certificate:
    """A client certificate known to the service."""

    certificate: str = ""
    fingerprint: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Certificate:
        """Build a certificate from its JSON form."""
        data = _require_mapping(data)
        return cls(
            certificate=_field(data, "certificate", str, ""),
            fingerprint=_field(data, "fingerprint", str, ""),
        )


@dataclass
class Operation:
    """A background operation."""

    id: str = ""
    class_: str = ""
    description: str = ""
    created_at: datetime = _ZERO_TIME
    updated_at: datetime = _ZERO_TIME
    status: str = ""
    status_code: StatusCode = StatusCode(0)
    resources: dict[str, list[str]] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    may_cancel: bool = False
    err: str = ""
    server_address: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Operation:
        """Build an operation from its JSON form; raises ValueError on bad field types."""
        data = _require_mapping(data)
        created = _field(data, "created_at", str, None)
        updated = _field(data, "updated_at", str, None)
        resources = _field(data, "resources", dict, {})
        for key, value in resources.items():
            if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
                raise ValueError(f"resources of {key!r} must be a list of strings")
        return cls(
            id=_field(data, "id", str, ""),
            class_=_field(data, "class", str, ""),
            description=_field(data, "description", str, ""),
            created_at=_parse_time(created) if created is not None else _ZERO_TIME,
            updated_at=_parse_time(updated) if updated is not None else _ZERO_TIME,
            status=_field(data, "status", str, ""),
            status_code=StatusCode(_field(data, "status_code", int, 0)),
            resources={k: list(v) for k, v in resources.items()},
            metadata=dict(_field(data, "metadata", dict, {})),
            may_cancel=_field(data, "may_cancel", bool, False),
            err=_field(data, "err", str, ""),
            server_address=_field(data, "server_address", str, ""),
        )

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON form of the operation, leaving out empty optional fields."""
        result: dict[str, Any] = {
            "id": self.id,
            "class": self.class_,
            "description": self.description,
            "created_at": _format_time(self.created_at),
            "updated_at": _format_time(self.updated_at),
            "status": self.status,
            "status_code": int(self.status_code),
        }
        if self.resources:
            result["resources"] = {k: list(v) for k, v in self.resources.items()}
        if self.metadata:
            result["metadata"] = dict(self.metadata)
        result["may_cancel"] = self.may_cancel
        if self.err:
            result["err"] = self.err
        if self.server_address:
            result["server_address"] = self.server_address
        return result


@dataclass
class Response:
    """A response of the REST API."""

    type: ResponseType | str = ""
    total_size: int | None = None
    status: str = ""
    status_code: int = 0
    operation: str = ""
    code: int = 0
    error: str = ""
    metadata: Any = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Response:
        """Build a response from its decoded JSON form."""
        data = _require_mapping(data)
        raw_type = _field(data, "type", str, "")
        try:
            response_type: ResponseType | str = ResponseType(raw_type)
        except ValueError:
            response_type = raw_type
        return cls(
            type=response_type,
            total_size=_field(data, "total_size", int, None),
            status=_field(data, "status", str, ""),
            status_code=_field(data, "status_code", int, 0),
            operation=_field(data, "operation", str, ""),
            code=_field(data, "error_code", int, 0),
            error=_field(data, "error", str, ""),
            metadata=data.get("metadata"),
        )

    def metadata_as_struct(self) -> Any:
        """Return the decoded metadata; raises ValueError if the response carries none."""
        if self.metadata is None:
            raise ValueError("response carries no metadata")
        return self.metadata

    def metadata_as_map(self) -> dict[str, Any]:
        """Return the metadata as a dictionary."""
        meta = self.metadata_as_struct()
        if not isinstance(meta, dict):
            raise ValueError(f"metadata is not an object but {type(meta).__name__}")
        return dict(meta)

    def metadata_as_operation(self) -> Operation:
        """Return the metadata as an Operation."""
        return Operation.from_dict(self.metadata_as_map())

    def metadata_as_string_list(self) -> list[str]:
        """Return the metadata as a list of strings."""
        meta = self.metadata_as_struct()
        if not isinstance(meta, list) or not all(isinstance(v, str) for v in meta):
            raise ValueError("metadata is not a list of strings")
        return list(meta)