"""Home Assistant MQTT discovery document models.

A ``DiscoveryDocument`` describes one device and the components (entities)
it exposes. Components are built without an identity; the document that
takes ownership of them fills ``unique_id`` from the mapping key.
"""

import weakref
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, model_validator

from ..errors import SchemaError


class _Owner:
    """Weak reference to the document owning a component.

    Compares by identity so component equality never recurses into documents.
    """

    __slots__ = ("_ref",)

    def __init__(self, document: "DiscoveryDocument"):
        self._ref = weakref.ref(document)

    def __call__(self) -> Optional["DiscoveryDocument"]:
        return self._ref()


class Device(BaseModel):
    """Identity of the device a discovery document describes."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Device display name")
    identifiers: list[str] = Field(
        ...,
        min_length=1,
        description="Stable identifiers; the first one names the discovery topic",
    )
    manufacturer: Optional[str] = Field(default=None, description="Manufacturer")
    model: Optional[str] = Field(default=None, description="Model name")
    sw_version: Optional[str] = Field(default=None, description="Firmware/software version")
    suggested_area: Optional[str] = Field(default=None, description="Suggested HA area")

    @property
    def identifier(self) -> str:
        """Primary identifier."""
        return self.identifiers[0]


class Origin(BaseModel):
    """Application that published the discovery document."""

    model_config = ConfigDict(frozen=True)

    name: str
    sw_version: Optional[str] = None
    support_url: Optional[str] = None


class Component(BaseModel):
    """One Home Assistant entity inside a device discovery document.

    Any extra Home Assistant option (``payload_on``, ``min``, ``options``...)
    may be passed as a keyword argument and is published as-is.
    """

    model_config = ConfigDict(extra="allow")

    platform: str = Field(..., description="HA platform (sensor, binary_sensor, switch, ...)")
    name: Optional[str] = None
    state_topic: Optional[str] = None
    command_topic: Optional[str] = None
    value_template: Optional[str] = None
    device_class: Optional[str] = None
    unit_of_measurement: Optional[str] = None
    state_class: Optional[str] = None
    icon: Optional[str] = None
    unique_id: Optional[str] = Field(
        default=None,
        description="Filled from the component key by the owning document",
    )

    _owner: Optional["_Owner"] = PrivateAttr(default=None)


class DiscoveryDocument(BaseModel):
    """Discovery document for a single device.

    ``component`` is the component-type segment of the discovery topic
    (``device`` for a multi-component device document, or a platform name
    such as ``sensor`` for a single-entity document). It is not part of
    the published payload.
    """

    model_config = ConfigDict(extra="allow")

    device: Optional[Device] = None
    origin: Optional[Origin] = None
    components: dict[str, Component] = Field(default_factory=dict)
    component: str = Field(default="device", exclude=True)
    state_topic: Optional[str] = None
    availability_topic: Optional[str] = None
    qos: Optional[int] = Field(default=None, ge=0, le=2)

    @model_validator(mode="after")
    def _take_ownership(self) -> "DiscoveryDocument":
        for key, descriptor in self.components.items():
            owner = descriptor._owner() if descriptor._owner is not None else None
            if owner is not None and owner is not self:
                raise SchemaError(
                    f"Component '{key}' already belongs to another discovery document"
                )
            descriptor._owner = _Owner(self)
        return self.assign_unique_ids()

    def assign_unique_ids(self) -> "DiscoveryDocument":
        """Fill every unset component ``unique_id`` from its mapping key.

        Components that already carry an id are left untouched, so calling
        this more than once changes nothing.

        Returns:
            The document itself

        Raises:
            SchemaError: If the device is missing, or a device document has
                no components
        """
        if self.device is None:
            raise SchemaError("Discovery document has no device")
        if self.component == "device" and not self.components:
            raise SchemaError(
                f"Device discovery document for '{self.device.name}' has no components"
            )

        for key, descriptor in self.components.items():
            if descriptor.unique_id is None:
                descriptor.unique_id = key
        return self

    def discovery_topic(self, prefix: str = "homeassistant") -> str:
        """Build the topic this document is published to.

        Args:
            prefix: Home Assistant discovery prefix

        Returns:
            ``<prefix>/<component>/<device identifier>/config``
        """
        if self.device is None:
            raise SchemaError("Discovery document has no device")
        return f"{prefix}/{self.component}/{self.device.identifier}/config"

    def to_payload(self) -> dict[str, Any]:
        """JSON-ready payload with unset options dropped."""
        return self.model_dump(mode="json", exclude_none=True)
