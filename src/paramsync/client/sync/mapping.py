"""Mapping rules between host parameters and web application fields.

This module provides:
- SyncDirection: Which way a mapped parameter flows
- MappingRule: One host parameter <-> web field rule
- MappingConfiguration: Rule set with lookups and JSON round-trip
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from enum import Enum

PROJECT_INFORMATION = "Project Information"
ENERGY_ANALYSIS = "Energy Analysis"


class SyncDirection(str, Enum):
    """Direction a mapped parameter is synchronized in."""

    TO_WEB = "to_web"
    TO_HOST = "to_host"
    BOTH = "both"


@dataclass(frozen=True)
class MappingRule:
    """Maps one host parameter to one web application field."""

    category: str
    parameter_name: str
    web_field: str
    direction: SyncDirection = SyncDirection.BOTH
    required: bool = False

    @property
    def syncs_to_web(self) -> bool:
        return self.direction in (SyncDirection.TO_WEB, SyncDirection.BOTH)

    @property
    def syncs_to_host(self) -> bool:
        return self.direction in (SyncDirection.TO_HOST, SyncDirection.BOTH)


def _rule(name: str, field: str, direction: SyncDirection = SyncDirection.BOTH) -> MappingRule:
    return MappingRule(PROJECT_INFORMATION, name, field, direction)


DEFAULT_RULES: tuple[MappingRule, ...] = (
    # Contacts
    _rule("sp.Client.Name", "clientName"),
    _rule("sp.Contact.Contractor", "contactContractor"),
    _rule("sp.Contact.Designer", "contactDesigner"),
    _rule("sp.Contact.Drafter", "contactDrafter"),
    _rule("sp.Contact.Energy", "contactEnergy"),
    _rule("sp.Contact.Owner", "contactOwner"),
    _rule("sp.Contact.Owner.Address", "contactOwnerAddress"),
    _rule("sp.Contact.Stormwater", "contactStormwater"),
    _rule("sp.Contact.Structural", "contactStructural"),
    _rule("sp.Project.Engineer", "projectEngineer"),
    _rule("sp.Property.Owner", "propertyOwner"),
    # Energy values are computed in the model and only flow outwards
    _rule("sp.Energy.Area.Wall", "energyAreaWall", SyncDirection.TO_WEB),
    _rule("sp.Energy.Area.Wall.Garage", "energyAreaWallGarage", SyncDirection.TO_WEB),
    _rule("sp.Energy.Calc", "energyCalc"),
    _rule("sp.Energy.U.Fenestration", "energyUFenestration", SyncDirection.TO_WEB),
    _rule("sp.Energy.U.Walls", "energyUWalls", SyncDirection.TO_WEB),
    _rule("sp.Energy.U.Walls.Garage", "energyUWallsGarage", SyncDirection.TO_WEB),
    # Existing conditions
    _rule("sp.Existing.Attached.Garage.Area", "existingAttachedGarageArea"),
    _rule("sp.Existing.Bathrooms", "existingBathrooms"),
    _rule("sp.Existing.Bedrooms", "existingBedrooms"),
    _rule("sp.Existing.Residence.Area", "existingResidenceArea"),
    # Project and site
    _rule("sp.Code.Requirements", "codeRequirements"),
    _rule("sp.Info.Project.Description", "projectDescription"),
    _rule("sp.Legal.Text", "legalText"),
    _rule("sp.Name", "name"),
    _rule("sp.Area", "area"),
    _rule("sp.Jurisdiction", "jurisdiction"),
    _rule("sp.Land.Use", "landUse"),
    _rule("sp.Lot.Coverage", "lotCoverage"),
    _rule("sp.Lot.Size", "lotSize"),
    _rule("sp.Parcel.Number", "parcelNumber"),
    _rule("sp.Property.Type", "propertyType"),
    _rule("sp.Setbacks", "setbacks"),
    _rule("sp.Zoning", "zoning"),
    _rule("sp.Sewer.Septic", "sewerSeptic"),
    _rule("sp.Vitality.Service", "vitalityService"),
)


class MappingConfiguration:
    """Set of mapping rules.

    Lookups are case-insensitive. A host parameter has at most one rule.
    """

    def __init__(self, rules: list[MappingRule] | None = None) -> None:
        """Initialize the configuration.

        Args:
            rules: Rules to use. Defaults to the project information set.
        """
        self._rules: list[MappingRule] = list(DEFAULT_RULES if rules is None else rules)

    @property
    def rules(self) -> tuple[MappingRule, ...]:
        return tuple(self._rules)

    def rules_to_web(self, category: str) -> list[MappingRule]:
        """Get the rules that push a category's parameters to the web."""
        return [
            r for r in self._rules
            if r.syncs_to_web and r.category.lower() == category.lower()
        ]

    def rule_for_parameter(self, category: str, parameter_name: str) -> MappingRule | None:
        for rule in self._rules:
            if (
                rule.category.lower() == category.lower()
                and rule.parameter_name.lower() == parameter_name.lower()
            ):
                return rule
        return None

    def rule_for_web_field(self, web_field: str) -> MappingRule | None:
        for rule in self._rules:
            if rule.web_field.lower() == web_field.lower():
                return rule
        return None

    def should_sync_to_host(self, web_field: str) -> bool:
        rule = self.rule_for_web_field(web_field)
        return rule is not None and rule.syncs_to_host

    def add_rule(self, rule: MappingRule) -> None:
        """Add a rule, replacing any existing rule for the same parameter."""
        self._rules = [
            r for r in self._rules
            if not (
                r.category.lower() == rule.category.lower()
                and r.parameter_name.lower() == rule.parameter_name.lower()
            )
        ]
        self._rules.append(rule)

    def to_json(self) -> str:
        return json.dumps([{**asdict(r), "direction": r.direction.value} for r in self._rules], indent=2)

    @classmethod
    def from_json(cls, text: str) -> MappingConfiguration:
        """Load rules from JSON produced by to_json()."""
        return cls([
            MappingRule(
                category=item["category"],
                parameter_name=item["parameter_name"],
                web_field=item["web_field"],
                direction=SyncDirection(item.get("direction", SyncDirection.BOTH.value)),
                required=bool(item.get("required", False)),
            )
            for item in json.loads(text)
        ])
