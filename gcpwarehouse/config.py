"""
This module defines the data structures for the YAML-based BigQuery warehouse builder.
The dataclasses provide a schema for configuration; parse_config maps raw YAML onto them.
"""

import os
import yaml
from dataclasses import MISSING, dataclass, field, fields
from typing import Any, Dict, List, Optional

REQUIRED_KEYS = ["team", "service", "environment", "region", "project"]


@dataclass
class TimePartitioning:
    type: str = "DAY"
    field: Optional[str] = None
    expiration_ms: Optional[int] = None


@dataclass
class Dataset:
    name: str
    dataset_id: Optional[str] = None
    friendly_name: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    default_table_expiration_ms: Optional[int] = None
    labels: Optional[Dict[str, str]] = None
    delete_contents_on_destroy: bool = False
    existing: bool = False
    depends_on: List[str] = field(default_factory=list)


@dataclass
class Table:
    name: str
    dataset: str
    schema: str
    table_id: Optional[str] = None
    description: Optional[str] = None
    time_partitioning: Optional[TimePartitioning] = None
    clustering: List[str] = field(default_factory=list)
    deletion_protection: bool = True
    labels: Optional[Dict[str, str]] = None
    depends_on: List[str] = field(default_factory=list)


@dataclass
class View:
    name: str
    dataset: str
    query: Optional[str] = None
    query_text: Optional[str] = None
    table_id: Optional[str] = None
    use_legacy_sql: bool = False
    description: Optional[str] = None
    deletion_protection: bool = False
    labels: Optional[Dict[str, str]] = None
    depends_on: List[str] = field(default_factory=list)


@dataclass
class MaterializedView(View):
    enable_refresh: bool = True
    refresh_interval_ms: int = 1800000
    time_partitioning: Optional[TimePartitioning] = None
    clustering: List[str] = field(default_factory=list)


@dataclass
class AuthorizedView:
    name: str
    dataset: str
    view: str
    depends_on: List[str] = field(default_factory=list)


@dataclass
class SinkExclusion:
    name: str
    filter: str
    description: Optional[str] = None
    disabled: bool = False


@dataclass
class LoggingSink:
    name: str
    destination: Dict[str, str]
    sink_name: Optional[str] = None
    filter: Optional[str] = None
    description: Optional[str] = None
    disabled: bool = False
    use_partitioned_tables: bool = True
    unique_writer_identity: bool = True
    exclusions: List[SinkExclusion] = field(default_factory=list)
    depends_on: List[str] = field(default_factory=list)


@dataclass
class DatasetIamMember:
    name: str
    dataset: str
    role: str
    member: str
    depends_on: List[str] = field(default_factory=list)


@dataclass
class ProjectIamMember:
    name: str
    role: str
    member: str
    depends_on: List[str] = field(default_factory=list)


@dataclass
class GCPResource:
    name: str
    type: str
    args: Dict[str, Any] = field(default_factory=dict)
    custom_name: Optional[str] = None
    depends_on: List[str] = field(default_factory=list)


@dataclass
class WarehouseConfig:
    team: str
    service: str
    environment: str
    region: str
    project: str
    location: str = "US"
    labels: Optional[Dict[str, str]] = None
    base_dir: str = "."
    datasets: List[Dataset] = field(default_factory=list)
    tables: List[Table] = field(default_factory=list)
    views: List[View] = field(default_factory=list)
    materialized_views: List[MaterializedView] = field(default_factory=list)
    authorized_views: List[AuthorizedView] = field(default_factory=list)
    logging_sinks: List[LoggingSink] = field(default_factory=list)
    dataset_iam_members: List[DatasetIamMember] = field(default_factory=list)
    project_iam_members: List[ProjectIamMember] = field(default_factory=list)
    gcp_resources: List[GCPResource] = field(default_factory=list)

    def declarations(self) -> List[Any]:
        """All declarations in build order."""
        return [
            *self.datasets,
            *self.tables,
            *self.views,
            *self.materialized_views,
            *self.authorized_views,
            *self.logging_sinks,
            *self.dataset_iam_members,
            *self.project_iam_members,
            *self.gcp_resources,
        ]


# Section key in the YAML file -> declaration type.
SECTIONS = {
    "datasets": Dataset,
    "tables": Table,
    "views": View,
    "materialized_views": MaterializedView,
    "authorized_views": AuthorizedView,
    "logging_sinks": LoggingSink,
    "dataset_iam_members": DatasetIamMember,
    "project_iam_members": ProjectIamMember,
    "gcp_resources": GCPResource,
}


def check_required_keys(config_data: Dict[str, Any]) -> None:
    for key in REQUIRED_KEYS:
        if key not in config_data:
            raise ValueError(f"Missing required configuration key: {key}")


def load_config(file_path: str) -> Dict[str, Any]:
    """Load and validate YAML configuration from the given file path."""
    with open(file_path, "r") as file:
        config_data = yaml.safe_load(file) or {}

    if not isinstance(config_data, dict):
        raise ValueError(f"Configuration file '{file_path}' must contain a mapping")

    check_required_keys(config_data)
    config_data.setdefault("base_dir", os.path.dirname(os.path.abspath(file_path)))
    return config_data


def _build(cls, raw: Dict[str, Any], section: str):
    if not isinstance(raw, dict):
        raise ValueError(f"Entries in '{section}' must be mappings, got {type(raw).__name__}")

    allowed = {f.name: f for f in fields(cls)}
    unknown = set(raw) - set(allowed)
    if unknown:
        label = raw.get("name", "?")
        raise ValueError(f"Unknown keys {sorted(unknown)} in {section} entry '{label}'")

    missing = [
        name for name, f in allowed.items()
        if name not in raw and f.default is MISSING and f.default_factory is MISSING
    ]
    if missing:
        label = raw.get("name", "?")
        raise ValueError(f"Missing required keys {missing} in {section} entry '{label}'")

    values = dict(raw)
    if values.get("time_partitioning") is not None:
        values["time_partitioning"] = _build(TimePartitioning, values["time_partitioning"], section)
    if cls is LoggingSink:
        if not isinstance(values["destination"], dict):
            raise ValueError(f"Destination of logging sink '{values['name']}' must be a mapping")
        values["exclusions"] = [_build(SinkExclusion, e, section) for e in values.get("exclusions") or []]
    if "depends_on" in values and values["depends_on"] is None:
        values["depends_on"] = []
    return cls(**values)


def parse_config(config_data: Dict[str, Any], base_dir: Optional[str] = None) -> WarehouseConfig:
    """Map a loaded configuration dictionary onto WarehouseConfig."""
    check_required_keys(config_data)

    top_level = {f.name for f in fields(WarehouseConfig)}
    unknown = set(config_data) - top_level
    if unknown:
        raise ValueError(f"Unknown configuration keys: {sorted(unknown)}")

    values = {k: v for k, v in config_data.items() if k not in SECTIONS}
    if base_dir is not None:
        values["base_dir"] = base_dir
    for section, cls in SECTIONS.items():
        values[section] = [_build(cls, raw, section) for raw in config_data.get(section) or []]
    return WarehouseConfig(**values)
