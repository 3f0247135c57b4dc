"""
Domain XML Builder

Renders a libvirt domain definition from a VMSpec.

The document is assembled as an element tree and serialized once at the
end, so every user-supplied value is escaped by the serializer rather than
spliced into markup by hand.
"""

from __future__ import annotations

import logging
import re
from xml.etree import ElementTree as ET

from common.exceptions import InvalidSpecError

from .vm_config import Backend, VMDefinition, VMSpec

logger = logging.getLogger(__name__)

GUEST_ARCH = "x86_64"
DEFAULT_NETWORK = "default"

# Outside the XML 1.0 Char production; the serializer would emit these raw.
_XML_CHAR_RANGES = ((0x20, 0xD7FF), (0xE000, 0xFFFD), (0x10000, 0x10FFFF))
_NON_XML_CHARS = re.compile(
    r"[^\x09\x0A\x0D" + "".join(f"{chr(lo)}-{chr(hi)}" for lo, hi in _XML_CHAR_RANGES) + "]"
)
# "/" is rejected by libvirt in domain names and would escape the image directory.
_UNSAFE_NAME = re.compile(r"[\x00-\x1f\x7f/]")
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def validate_spec(spec: VMSpec) -> None:
    """
    Check that a spec can be rendered.

    Raises:
        InvalidSpecError: On an empty or unsafe name, or non-positive
            memory or vCPU count
    """
    name = spec.name
    if not isinstance(name, str) or not name.strip():
        raise InvalidSpecError("name", name, "name must be a non-empty string")
    if _UNSAFE_NAME.search(name) or _NON_XML_CHARS.search(name):
        raise InvalidSpecError(
            "name", name, "name must not contain control characters, non-XML characters or '/'"
        )
    _require_positive("memory_mib", spec.memory_mib)
    _require_positive("vcpu_count", spec.vcpu_count)
    if spec.backend is not None and not isinstance(spec.backend, Backend):
        raise InvalidSpecError("backend", spec.backend, "unknown backend")


def _require_positive(field: str, value) -> None:
    # bool is an int subclass but never a valid count
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidSpecError(field, value, "must be a positive integer")


def _require_path(field: str, value) -> str:
    value = str(value) if value is not None else ""
    if not value:
        raise InvalidSpecError(field, value, "path must be resolved before rendering")
    if _CONTROL_CHARS.search(value) or _NON_XML_CHARS.search(value):
        raise InvalidSpecError(
            field, value, "path must not contain control or non-XML characters"
        )
    return value


def build_definition(
    spec: VMSpec,
    emulator_path,
    disk_path,
    backend: Backend = Backend.QEMU,
) -> VMDefinition:
    """
    Build the domain definition for a VM.

    Args:
        spec: VM parameters
        emulator_path: Resolved emulator binary path
        disk_path: Resolved disk image path
        backend: Backend used when the spec does not name one

    Returns:
        VMDefinition holding the serialized XML

    Raises:
        InvalidSpecError: If the spec or either path is invalid
    """
    validate_spec(spec)
    emulator = _require_path("emulator_path", emulator_path)
    disk = _require_path("disk_path", disk_path)
    domain_type = spec.backend or backend

    root = ET.Element("domain", {"type": domain_type.value})
    ET.SubElement(root, "name").text = spec.name
    ET.SubElement(root, "memory", {"unit": "MiB"}).text = str(spec.memory_mib)
    ET.SubElement(root, "vcpu").text = str(spec.vcpu_count)

    os_el = ET.SubElement(root, "os")
    ET.SubElement(os_el, "type", {"arch": GUEST_ARCH}).text = "hvm"
    ET.SubElement(os_el, "boot", {"dev": "hd"})

    features = ET.SubElement(root, "features")
    ET.SubElement(features, "acpi")
    ET.SubElement(features, "apic")

    devices = ET.SubElement(root, "devices")
    ET.SubElement(devices, "emulator").text = emulator

    disk_el = ET.SubElement(devices, "disk", {"type": "file", "device": "disk"})
    ET.SubElement(disk_el, "driver", {"name": "qemu", "type": "qcow2"})
    ET.SubElement(disk_el, "source", {"file": disk})
    ET.SubElement(disk_el, "target", {"dev": "vda", "bus": "virtio"})

    iface = ET.SubElement(devices, "interface", {"type": "network"})
    ET.SubElement(iface, "source", {"network": DEFAULT_NETWORK})
    ET.SubElement(iface, "model", {"type": "virtio"})

    ET.SubElement(devices, "console", {"type": "pty"})
    ET.SubElement(devices, "graphics", {"type": "vnc", "port": "-1"})

    ET.indent(root, space="  ")
    xml = ET.tostring(root, encoding="unicode")

    logger.debug(f"Rendered {domain_type.value} definition for {spec.name}")
    return VMDefinition(
        name=spec.name,
        backend=domain_type,
        emulator_path=emulator,
        disk_path=disk,
        xml=xml,
    )
