"""Collect local parameters and apply remote changes to them.

This module provides:
- StorageType: How a host parameter stores its value
- HostParameter, Transaction, ProjectDocument: Interfaces to the host model
- ParameterManager: Builds SyncRequests and writes WebParameterChanges back
"""

from __future__ import annotations

import logging
import math
import uuid
from collections.abc import Iterable
from enum import Enum
from typing import Any, Protocol

from paramsync.client.sync.mapping import (
    ENERGY_ANALYSIS,
    PROJECT_INFORMATION,
    MappingConfiguration,
)
from paramsync.client.sync.types import (
    AppliedChange,
    ChangeStatus,
    ParameterData,
    SyncRequest,
    WebParameterChange,
)

logger = logging.getLogger(__name__)

PROJECT_GUID_PARAMETER = "sp.MC.ProjectGUID"
UNSAVED_FILE_NAME = "Unsaved Project"
COLLECTED_CATEGORIES = (PROJECT_INFORMATION, ENERGY_ANALYSIS)
UNMAPPED_PREFIXES = ("mc.", "sp.mc.")

# Namespace for guids of parameters that have no shared guid
_PARAMETER_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, "paramsync:parameter")


class StorageType(str, Enum):
    """Value storage of a host parameter."""

    TEXT = "text"
    INTEGER = "integer"
    NUMBER = "number"
    ELEMENT_ID = "element_id"

    @property
    def wire_name(self) -> str:
        return _WIRE_NAMES[self]


_WIRE_NAMES = {
    StorageType.TEXT: "Text",
    StorageType.INTEGER: "Integer",
    StorageType.NUMBER: "Number",
    StorageType.ELEMENT_ID: "ElementId",
}


class HostParameter(Protocol):
    """A named value on the host model."""

    @property
    def name(self) -> str: ...

    @property
    def storage_type(self) -> StorageType: ...

    @property
    def value(self) -> Any: ...

    @property
    def is_read_only(self) -> bool: ...

    @property
    def is_shared(self) -> bool: ...

    @property
    def guid(self) -> str | None: ...

    @property
    def unit(self) -> str | None: ...

    def set(self, value: Any) -> bool: ...


class Transaction(Protocol):
    """Unit of work on the host model.

    Leaving the context without commit() rolls back.
    """

    def commit(self) -> None: ...

    def rollback(self) -> None: ...

    def __enter__(self) -> Transaction: ...

    def __exit__(self, *args: object) -> None: ...


class ProjectDocument(Protocol):
    """The host model as seen by the sync engine."""

    @property
    def file_name(self) -> str: ...

    def parameters(self, category: str) -> Iterable[HostParameter]: ...

    def lookup_parameter(self, category: str, name: str) -> HostParameter | None: ...

    def transaction(self, name: str) -> Transaction: ...


def is_empty_value(parameter: HostParameter) -> bool:
    """Check whether a parameter has nothing worth sending.

    None, blank strings, "-", NaN/infinite numbers and unset element ids
    (<= 0) are all empty.
    """
    value = parameter.value
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() in ("", "-")
    if isinstance(value, float) and not math.isfinite(value):
        return True
    if parameter.storage_type is StorageType.ELEMENT_ID:
        try:
            return int(value) <= 0
        except (TypeError, ValueError):
            return True
    return False


def convert_value(value: str, storage_type: StorageType) -> Any:
    """Convert a web value to the parameter's storage type.

    Raises:
        ValueError: If the value cannot be converted.
    """
    if storage_type is StorageType.TEXT:
        return value
    text = value.strip()
    if storage_type is StorageType.NUMBER:
        number = float(text)
        if not math.isfinite(number):
            raise ValueError(f"{value!r} is not a finite number")
        return number
    # INTEGER and ELEMENT_ID
    return int(text)


def parameter_guid(parameter: HostParameter) -> str:
    """Get the guid sent for a parameter.

    Shared parameters keep their own guid; others get a stable name-based one.
    """
    if parameter.is_shared and parameter.guid:
        return str(parameter.guid)
    return str(uuid.uuid5(_PARAMETER_NAMESPACE, parameter.name))


class ParameterManager:
    """Reads parameters from and writes changes to a ProjectDocument."""

    def __init__(self, mapping: MappingConfiguration | None = None) -> None:
        """Initialize the manager.

        Args:
            mapping: Mapping rules (defaults to the project information set).
        """
        self._mapping = mapping or MappingConfiguration()

    @property
    def mapping(self) -> MappingConfiguration:
        return self._mapping

    # === Collection ===

    def collect(self, document: ProjectDocument, project_guid: str) -> SyncRequest:
        """Build a SyncRequest from the document.

        The project guid comes first, followed per category by mapped
        parameters and then unmapped MC./sp.MC. parameters.

        Args:
            document: The project model.
            project_guid: Stable project identifier.

        Returns:
            A fresh SyncRequest.
        """
        seen: set[str] = {PROJECT_GUID_PARAMETER.lower()}
        collected = [
            ParameterData(
                name=PROJECT_GUID_PARAMETER,
                category=PROJECT_INFORMATION,
                value=project_guid,
                guid=str(uuid.uuid5(_PARAMETER_NAMESPACE, PROJECT_GUID_PARAMETER)),
            )
        ]

        for category in COLLECTED_CATEGORIES:
            for rule in self._mapping.rules_to_web(category):
                parameter = document.lookup_parameter(category, rule.parameter_name)
                if parameter is None:
                    if rule.required:
                        logger.warning(f"Required parameter {rule.parameter_name} not found")
                    continue
                self._add(collected, seen, category, parameter)

            for parameter in document.parameters(category):
                if not parameter.name.lower().startswith(UNMAPPED_PREFIXES):
                    continue
                if self._mapping.rule_for_parameter(category, parameter.name) is not None:
                    continue
                self._add(collected, seen, category, parameter)

        file_name = document.file_name or UNSAVED_FILE_NAME
        logger.info(f"Collected {len(collected)} parameters from {file_name}")
        return SyncRequest(
            project_guid=project_guid,
            file_name=file_name,
            parameters=tuple(collected),
        )

    @staticmethod
    def _add(
        collected: list[ParameterData],
        seen: set[str],
        category: str,
        parameter: HostParameter,
    ) -> None:
        key = parameter.name.lower()
        if key in seen or is_empty_value(parameter):
            return
        seen.add(key)

        element_id = None
        if parameter.storage_type is StorageType.ELEMENT_ID:
            element_id = str(int(parameter.value))
        collected.append(ParameterData(
            name=parameter.name,
            category=category,
            value=parameter.value,
            guid=parameter_guid(parameter),
            data_type=parameter.storage_type.wire_name,
            unit=parameter.unit,
            element_id=element_id,
        ))

    # === Application ===

    def _target(self, change: WebParameterChange) -> tuple[str, str] | None:
        """Resolve a change to (category, parameter name).

        Returns None when the mapped field only flows to the web.
        """
        rule = self._mapping.rule_for_web_field(change.name)
        if rule is not None:
            if not rule.syncs_to_host:
                return None
            return rule.category, rule.parameter_name
        return change.category or PROJECT_INFORMATION, change.name

    def apply_change(self, document: ProjectDocument, change: WebParameterChange) -> AppliedChange:
        """Write one change to the document.

        Must be called inside an open transaction. Never raises: host
        failures are recorded on the returned AppliedChange.

        Args:
            document: The project model.
            change: The remote change.

        Returns:
            AppliedChange with status applied or error (skipped for
            fields that never flow to the host).
        """
        target = self._target(change)
        if target is None:
            return AppliedChange.create(
                change, ChangeStatus.SKIPPED, f"Field '{change.name}' is not synchronized locally"
            )
        category, name = target

        try:
            parameter = document.lookup_parameter(category, name)
            if parameter is None:
                return AppliedChange.create(
                    change, ChangeStatus.ERROR, f"Parameter '{change.name}' not found"
                )
            if parameter.is_read_only:
                return AppliedChange.create(
                    change, ChangeStatus.ERROR, f"Parameter '{name}' is read-only"
                )

            try:
                value = convert_value(change.value, parameter.storage_type)
            except ValueError:
                return AppliedChange.create(
                    change,
                    ChangeStatus.ERROR,
                    f"Cannot convert '{change.value}' to {parameter.storage_type.wire_name}",
                )

            if not parameter.set(value):
                return AppliedChange.create(
                    change, ChangeStatus.ERROR, f"Failed to set parameter '{name}'"
                )
        except Exception as e:
            logger.error(f"Error applying {change.name}: {e}")
            return AppliedChange.create(change, ChangeStatus.ERROR, str(e))

        logger.debug(f"Applied {category}/{name} = {change.value!r}")
        return AppliedChange.create(change, ChangeStatus.APPLIED)

    def current_value(self, document: ProjectDocument, change: WebParameterChange) -> str | None:
        """Get the local value a change would replace, for review."""
        target = self._target(change)
        if target is None:
            return None
        parameter = document.lookup_parameter(*target)
        if parameter is None or parameter.value is None:
            return None
        return str(parameter.value)

    def ensure_project_guid(self, document: ProjectDocument) -> str:
        """Read the project guid, generating and storing one if missing.

        Args:
            document: The project model.

        Returns:
            The project guid.
        """
        parameter = document.lookup_parameter(PROJECT_INFORMATION, PROJECT_GUID_PARAMETER)
        if parameter is not None and not is_empty_value(parameter):
            return str(parameter.value)

        project_guid = str(uuid.uuid4())
        if parameter is None or parameter.is_read_only:
            logger.warning(f"Cannot store {PROJECT_GUID_PARAMETER}; using a temporary guid")
            return project_guid

        with document.transaction("Set project GUID") as tx:
            if parameter.set(project_guid):
                tx.commit()
                logger.info(f"Generated project guid {project_guid}")
            else:
                logger.warning(f"Failed to store {PROJECT_GUID_PARAMETER}")
        return project_guid
