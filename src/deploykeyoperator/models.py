"""Value types shared by the reconciliation components."""

from __future__ import annotations

__all__ = (
    "Added",
    "DeployKey",
    "Deleted",
    "Event",
    "ObjectKey",
    "Project",
    "Secret",
    "Tombstone",
    "Updated",
)

import base64
import copy
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, NamedTuple, Union

from deploykeyoperator.exceptions import MalformedSecretError


class ObjectKey(NamedTuple):
    """The namespace/name identity of a Secret.

    This is the only thing that travels through the work queue; the
    reconciler always re-reads the Secret itself.
    """

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"

    @classmethod
    def parse(cls, value: str) -> ObjectKey:
        """Parse a ``namespace/name`` string."""
        namespace, sep, name = value.partition("/")
        if not sep or not namespace or not name:
            raise ValueError(f"Not a namespace/name key: {value!r}")
        return cls(namespace, name)


def _freeze(mapping: Mapping[str, str] | None) -> Mapping[str, str]:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class Secret:
    """A read-only view of a Kubernetes Secret.

    Instances held by the cache are shared between threads, so every
    mapping is exposed through a read-only proxy. Use `with_annotation` to
    get an independent copy carrying a new annotation for an authoritative
    write.
    """

    namespace: str
    name: str
    uid: str = ""
    resource_version: str = ""
    labels: Mapping[str, str] = field(default_factory=dict)
    annotations: Mapping[str, str] = field(default_factory=dict)
    data: Mapping[str, str] = field(default_factory=dict)
    """Base64-encoded values, as stored by the Kubernetes API."""

    def __post_init__(self) -> None:
        object.__setattr__(self, "labels", _freeze(self.labels))
        object.__setattr__(self, "annotations", _freeze(self.annotations))
        object.__setattr__(self, "data", _freeze(self.data))

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(self.namespace, self.name)

    @classmethod
    def from_body(cls, body: Mapping[str, Any]) -> Secret:
        """Build a Secret from a raw Kubernetes JSON body.

        Raises
        ------
        ValueError
            Raised if the body has no ``metadata.name`` or
            ``metadata.namespace``.
        """
        try:
            metadata = body["metadata"]
            name = metadata["name"]
            namespace = metadata["namespace"]
        except (KeyError, TypeError) as err:
            raise ValueError("Secret body has no namespace/name") from err
        if not isinstance(name, str) or not isinstance(namespace, str):
            raise ValueError("Secret body has no namespace/name")
        return cls(
            namespace=namespace,
            name=name,
            uid=metadata.get("uid") or "",
            resource_version=metadata.get("resourceVersion") or "",
            labels=metadata.get("labels") or {},
            annotations=metadata.get("annotations") or {},
            data=body.get("data") or {},
        )

    def decoded(self, field_name: str) -> bytes:
        """Return the decoded value of a ``data`` field.

        Raises
        ------
        deploykeyoperator.exceptions.MalformedSecretError
            Raised if the field is absent or not valid base64.
        """
        try:
            return base64.b64decode(self.data[field_name], validate=True)
        except KeyError as err:
            raise MalformedSecretError(
                f"Secret {self.key} has no {field_name!r} data field"
            ) from err
        except ValueError as err:
            raise MalformedSecretError(
                f"Secret {self.key} field {field_name!r} is not base64"
            ) from err

    def with_annotation(self, key: str, value: str) -> Secret:
        """Return an independent copy of the Secret with one annotation set.

        This (possibly cached) instance is left untouched.
        """
        annotations = copy.deepcopy(dict(self.annotations))
        annotations[key] = value
        return Secret(
            namespace=self.namespace,
            name=self.name,
            uid=self.uid,
            resource_version=self.resource_version,
            labels=dict(self.labels),
            annotations=annotations,
            data=dict(self.data),
        )


@dataclass(frozen=True)
class Project:
    """A GitLab project reference."""

    id: int
    path_with_namespace: str


@dataclass(frozen=True)
class DeployKey:
    """A deploy key registered on a GitLab project."""

    id: int
    title: str
    key: str
    can_push: bool


@dataclass(frozen=True)
class Tombstone:
    """A deletion whose final object state was not observed directly.

    ``last_known`` is the most recent state the cache held for the key,
    if any.
    """

    key: ObjectKey
    last_known: Secret | None = None


@dataclass(frozen=True)
class Added:
    secret: Secret

    @property
    def key(self) -> ObjectKey:
        return self.secret.key


@dataclass(frozen=True)
class Updated:
    secret: Secret

    @property
    def key(self) -> ObjectKey:
        return self.secret.key


@dataclass(frozen=True)
class Deleted:
    """A deletion, carrying either the final object or a tombstone."""

    obj: Secret | Tombstone

    @property
    def key(self) -> ObjectKey:
        return self.obj.key

    @property
    def last_known(self) -> Secret | None:
        if isinstance(self.obj, Tombstone):
            return self.obj.last_known
        return self.obj


Event = Union[Added, Updated, Deleted]
