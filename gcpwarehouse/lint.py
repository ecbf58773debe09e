"""
Policy checks over a parsed warehouse configuration.

lint_config never touches the Pulumi engine or the cloud: it inspects the
declarations, the schema files and the SQL files, and reports findings.
Errors describe configurations the builder would reject or the BigQuery API
would refuse; warnings describe configurations that are legal but risky.
"""

import re
from dataclasses import dataclass
from graphlib import CycleError, TopologicalSorter
from typing import Any, Dict, Iterator, List, Tuple

from gcpwarehouse import assets
from gcpwarehouse import config
from gcpwarehouse.context import BuildContext, parse_ref

ERROR = "error"
WARNING = "warning"

DATASET_ID_PATTERN = re.compile(r"^[A-Za-z0-9_]{1,1024}$")
TABLE_ID_PATTERN = re.compile(r"^[\w\-]{1,1024}$")
LABEL_KEY_PATTERN = re.compile(r"^[a-z][a-z0-9_-]{0,62}$")
LABEL_VALUE_PATTERN = re.compile(r"^[a-z0-9_-]{0,63}$")
PARTITION_TYPES = {"DAY", "HOUR", "MONTH", "YEAR"}
MAX_CLUSTERING_COLUMNS = 4
MEMBER_PREFIXES = (
    "user:", "group:", "serviceAccount:", "domain:", "principal:", "principalSet:",
    "projectOwner:", "projectEditor:", "projectViewer:", "iamMember:",
)
SPECIAL_MEMBERS = {"allUsers", "allAuthenticatedUsers"}
ROLE_PREFIXES = ("roles/", "projects/", "organizations/")
PRIMITIVE_ROLES = {"roles/owner", "roles/editor", "roles/viewer"}
SINK_DESTINATIONS = {"dataset", "bucket", "uri"}


@dataclass(frozen=True)
class Finding:
    severity: str
    resource: str
    message: str

    def __str__(self) -> str:
        return f"[{self.severity}] {self.resource}: {self.message}"


def _iter_refs(value: Any) -> Iterator[str]:
    if isinstance(value, dict):
        for item in value.values():
            yield from _iter_refs(item)
    elif isinstance(value, list):
        for item in value:
            yield from _iter_refs(item)
    elif isinstance(value, str) and value.startswith("ref:"):
        yield parse_ref(value)[0]


def dependencies(declaration: Any) -> List[Tuple[str, str]]:
    """(target, how) pairs for every edge a declaration points along."""
    edges = [(dep, "depends_on") for dep in declaration.depends_on]
    if isinstance(declaration, (config.Table, config.View, config.AuthorizedView, config.DatasetIamMember)):
        edges.append((declaration.dataset, "dataset"))
    if isinstance(declaration, config.AuthorizedView):
        edges.append((declaration.view, "view"))
    if isinstance(declaration, config.LoggingSink):
        if "dataset" in declaration.destination:
            edges.append((declaration.destination["dataset"], "destination"))
        edges.extend((ref, "ref") for ref in _iter_refs(declaration.destination))
    if isinstance(declaration, (config.DatasetIamMember, config.ProjectIamMember)):
        edges.extend((ref, "ref") for ref in _iter_refs(declaration.member))
    if isinstance(declaration, config.GCPResource):
        edges.extend((ref, "ref") for ref in _iter_refs(declaration.args))
    return edges


def check_names(warehouse: config.WarehouseConfig) -> List[Finding]:
    findings = []
    seen = set()
    for declaration in warehouse.declarations():
        if declaration.name in seen:
            findings.append(Finding(ERROR, declaration.name, "name is declared more than once"))
        seen.add(declaration.name)
    return findings


def check_labels(name: str, labels: Dict[str, str]) -> List[Finding]:
    findings = []
    for key, value in (labels or {}).items():
        if not LABEL_KEY_PATTERN.match(str(key)):
            findings.append(Finding(ERROR, name, f"label key '{key}' is not a valid GCP label key"))
        if not LABEL_VALUE_PATTERN.match(str(value)):
            findings.append(Finding(ERROR, name, f"label '{key}' has invalid value '{value}'"))
    return findings


def check_graph(warehouse: config.WarehouseConfig) -> List[Finding]:
    findings = []
    position = {}
    for index, declaration in enumerate(warehouse.declarations()):
        position.setdefault(declaration.name, index)

    kinds = {}
    for section in config.SECTIONS:
        for declaration in getattr(warehouse, section):
            kinds.setdefault(declaration.name, section)

    graph = {}
    for index, declaration in enumerate(warehouse.declarations()):
        graph.setdefault(declaration.name, set())
        for target, how in dependencies(declaration):
            graph[declaration.name].add(target)
            if target not in position:
                findings.append(Finding(ERROR, declaration.name, f"{how} '{target}' is not declared"))
                continue
            if how in ("dataset", "destination") and kinds[target] != "datasets":
                findings.append(Finding(ERROR, declaration.name, f"{how} '{target}' is not a dataset"))
            if how == "view" and kinds[target] not in ("views", "materialized_views"):
                findings.append(Finding(ERROR, declaration.name, f"'{target}' is not a view"))
            if target != declaration.name and position[target] > index:
                findings.append(Finding(ERROR, declaration.name, f"{how} '{target}' is built after '{declaration.name}'"))

    try:
        TopologicalSorter(graph).prepare()
    except CycleError as e:
        cycle = " -> ".join(e.args[1])
        findings.append(Finding(ERROR, e.args[1][0], f"dependency cycle: {cycle}"))
    return findings


def check_datasets(warehouse: config.WarehouseConfig, context: BuildContext) -> List[Finding]:
    findings = []
    for dataset in warehouse.datasets:
        dataset_id = context.dataset_ids[dataset.name]
        if not DATASET_ID_PATTERN.match(dataset_id):
            findings.append(Finding(ERROR, dataset.name, f"dataset id '{dataset_id}' may only contain letters, digits and underscores"))
        if dataset.delete_contents_on_destroy:
            findings.append(Finding(WARNING, dataset.name, "delete_contents_on_destroy drops all tables when the dataset is destroyed"))
        findings.extend(check_labels(dataset.name, dataset.labels))
    return findings


def check_partitioning(name: str, partitioning: config.TimePartitioning, columns: List[str]) -> List[Finding]:
    findings = []
    if partitioning.type.upper() not in PARTITION_TYPES:
        findings.append(Finding(ERROR, name, f"partition type '{partitioning.type}' must be one of {sorted(PARTITION_TYPES)}"))
    if partitioning.field and columns and partitioning.field not in columns:
        findings.append(Finding(ERROR, name, f"partition field '{partitioning.field}' is not in the schema"))
    return findings


def check_clustering(name: str, clustering: List[str], columns: List[str]) -> List[Finding]:
    findings = []
    if len(clustering) > MAX_CLUSTERING_COLUMNS:
        findings.append(Finding(ERROR, name, f"clustering allows at most {MAX_CLUSTERING_COLUMNS} columns"))
    for column in clustering:
        if columns and column not in columns:
            findings.append(Finding(ERROR, name, f"clustering column '{column}' is not in the schema"))
    return findings


def check_tables(warehouse: config.WarehouseConfig, context: BuildContext) -> List[Finding]:
    findings = []
    for table in warehouse.tables:
        table_id = table.table_id or table.name
        if not TABLE_ID_PATTERN.match(table_id):
            findings.append(Finding(ERROR, table.name, f"table id '{table_id}' contains invalid characters"))
        columns: List[str] = []
        try:
            columns = assets.schema_field_names(assets.load_schema(context.base_dir, table.schema))
        except (FileNotFoundError, ValueError) as e:
            findings.append(Finding(ERROR, table.name, str(e)))
        if table.time_partitioning is not None:
            findings.extend(check_partitioning(table.name, table.time_partitioning, columns))
        findings.extend(check_clustering(table.name, table.clustering or [], columns))
        if not table.deletion_protection and context.environment.lower() in ("prod", "production"):
            findings.append(Finding(WARNING, table.name, "deletion protection is disabled in a production environment"))
        findings.extend(check_labels(table.name, table.labels))
    return findings


def check_views(warehouse: config.WarehouseConfig, context: BuildContext) -> List[Finding]:
    findings = []
    for view in [*warehouse.views, *warehouse.materialized_views]:
        table_id = view.table_id or view.name
        if not TABLE_ID_PATTERN.match(table_id):
            findings.append(Finding(ERROR, view.name, f"view id '{table_id}' contains invalid characters"))
        try:
            context.load_query(view.query, view.query_text, view.name)
        except (FileNotFoundError, ValueError) as e:
            findings.append(Finding(ERROR, view.name, str(e)))
        if isinstance(view, config.MaterializedView):
            if view.use_legacy_sql:
                findings.append(Finding(ERROR, view.name, "materialized views do not support legacy SQL"))
            if view.refresh_interval_ms < 60000:
                findings.append(Finding(ERROR, view.name, "refresh_interval_ms must be at least 60000"))
            if view.time_partitioning is not None:
                findings.extend(check_partitioning(view.name, view.time_partitioning, []))
            findings.extend(check_clustering(view.name, view.clustering or [], []))
        elif view.use_legacy_sql:
            findings.append(Finding(WARNING, view.name, "view uses legacy SQL"))
        findings.extend(check_labels(view.name, view.labels))
    return findings


def check_sinks(warehouse: config.WarehouseConfig) -> List[Finding]:
    findings = []
    for sink in warehouse.logging_sinks:
        kinds = SINK_DESTINATIONS & set(sink.destination)
        if len(kinds) != 1 or set(sink.destination) - SINK_DESTINATIONS:
            findings.append(Finding(ERROR, sink.name, f"destination needs exactly one of {sorted(SINK_DESTINATIONS)}"))
        if not sink.filter:
            findings.append(Finding(WARNING, sink.name, "sink has no filter and routes every log entry"))
        if not sink.unique_writer_identity:
            findings.append(Finding(WARNING, sink.name, "sink shares the project-wide writer identity"))
        names = [exclusion.name for exclusion in sink.exclusions]
        if len(names) != len(set(names)):
            findings.append(Finding(ERROR, sink.name, "exclusion names must be unique"))
    return findings


def check_member(name: str, role: str, member: str) -> List[Finding]:
    findings = []
    if not role.startswith(ROLE_PREFIXES):
        findings.append(Finding(ERROR, name, f"role '{role}' must start with one of {list(ROLE_PREFIXES)}"))
    elif role in PRIMITIVE_ROLES:
        findings.append(Finding(WARNING, name, f"primitive role '{role}' grants broad access"))
    if member in SPECIAL_MEMBERS:
        findings.append(Finding(WARNING, name, f"'{member}' makes the grant public"))
    elif not (member.startswith("ref:") or member.startswith(MEMBER_PREFIXES)):
        findings.append(Finding(ERROR, name, f"member '{member}' has no principal type prefix"))
    return findings


def check_iam(warehouse: config.WarehouseConfig) -> List[Finding]:
    findings = []
    for grant in [*warehouse.dataset_iam_members, *warehouse.project_iam_members]:
        findings.extend(check_member(grant.name, grant.role, grant.member))
    return findings


def check_access_conflicts(warehouse: config.WarehouseConfig) -> List[Finding]:
    """DatasetIamMember rewrites the dataset ACL and drops authorized view entries, and DatasetAccess puts them back."""
    findings = []
    for dataset in warehouse.datasets:
        views = [a.name for a in warehouse.authorized_views if a.dataset == dataset.name]
        grants = [g.name for g in warehouse.dataset_iam_members if g.dataset == dataset.name]
        if views and grants:
            findings.append(Finding(
                ERROR,
                dataset.name,
                f"authorized views ({', '.join(views)}) and dataset IAM members ({', '.join(grants)}) "
                f"would overwrite each other's access entries",
            ))
    return findings


def check_generic(warehouse: config.WarehouseConfig) -> List[Finding]:
    findings = []
    for resource in warehouse.gcp_resources:
        if resource.type.count(".") != 1:
            findings.append(Finding(ERROR, resource.name, f"type '{resource.type}' must look like '<module>.<Class>'"))
    return findings


def lint_config(warehouse: config.WarehouseConfig) -> List[Finding]:
    context = BuildContext.from_config(warehouse)
    findings = []
    findings.extend(check_names(warehouse))
    findings.extend(check_labels("labels", warehouse.labels))
    findings.extend(check_graph(warehouse))
    findings.extend(check_datasets(warehouse, context))
    findings.extend(check_tables(warehouse, context))
    findings.extend(check_views(warehouse, context))
    findings.extend(check_sinks(warehouse))
    findings.extend(check_iam(warehouse))
    findings.extend(check_access_conflicts(warehouse))
    findings.extend(check_generic(warehouse))
    return findings


def raise_for_findings(findings: List[Finding]) -> None:
    errors = [finding for finding in findings if finding.severity == ERROR]
    if errors:
        details = "\n".join(f"  {finding}" for finding in errors)
        raise ValueError(f"Configuration has {len(errors)} error(s):\n{details}")
