"""
errors.py
---------
Typed failures raised by the CPI.  Every class carries the director-facing
error type and the retry hint so the dispatcher can serialize it without a
lookup table.  Errors coming back from the Kubernetes API
(``kubernetes.client.ApiException``) are *not* wrapped; they travel to the
dispatcher unchanged.
"""
from __future__ import annotations

CLOUD_ERROR = "Bosh::Clouds::CloudError"
NOT_IMPLEMENTED = "Bosh::Clouds::NotImplemented"


class CPIError(Exception):
    """Base class for all errors produced by this package."""

    error_type: str = CLOUD_ERROR
    ok_to_retry: bool = False


class ClientUnavailable(CPIError):
    """A cluster client could not be built for the requested context."""


class InvalidConfiguration(CPIError):
    """The CPI configuration file is missing or malformed."""


class InvalidCloudProperties(CPIError):
    """Cloud properties sent by the director failed validation."""


class MalformedIdentifier(CPIError):
    """A VM or disk CID does not have the ``context:id`` shape."""


class MissingNetwork(CPIError):
    """No network was supplied for a new VM."""


class UnsupportedTopology(CPIError):
    """More than one network was supplied for a new VM."""


class UnsupportedResourceKind(CPIError):
    """A resource block names something other than ``cpu`` or ``memory``."""


class InvalidQuantity(CPIError):
    """A resource quantity string could not be parsed."""


class ContextMismatch(CPIError):
    """Attach/detach was asked to cross cluster contexts."""


class CorruptSettings(CPIError):
    """The agent settings document stored in the config map is not valid JSON."""


class UnexpectedWatchEvent(CPIError):
    """The pod watch delivered an event other than MODIFIED."""


class UnexpectedObjectType(CPIError):
    """The pod watch delivered a payload that is not a pod."""


class RecreateTimeout(CPIError):
    """The recreated pod did not become ready before the deadline."""

    ok_to_retry = True


__all__ = [
    "CLOUD_ERROR",
    "NOT_IMPLEMENTED",
    "CPIError",
    "ClientUnavailable",
    "InvalidConfiguration",
    "InvalidCloudProperties",
    "MalformedIdentifier",
    "MissingNetwork",
    "UnsupportedTopology",
    "UnsupportedResourceKind",
    "InvalidQuantity",
    "ContextMismatch",
    "CorruptSettings",
    "UnexpectedWatchEvent",
    "UnexpectedObjectType",
    "RecreateTimeout",
]
