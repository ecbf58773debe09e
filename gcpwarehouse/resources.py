import inspect
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import pulumi
import pulumi_gcp as gcp

from gcpwarehouse import assets
from gcpwarehouse import config
from gcpwarehouse.context import BuildContext, to_snake_case


def get_lookup_params(params: set, resolved_args: dict) -> dict:
    lookup_params = {}
    for param in params:
        snake_key = to_snake_case(param)
        if snake_key in resolved_args:
            lookup_params[param] = resolved_args[snake_key]
        elif param in resolved_args:
            lookup_params[param] = resolved_args[param]
    return lookup_params


# region Resources
class BaseResource(ABC):

    def __init__(self, name: str, context: BuildContext):
        self.name = name
        self.context = context

    def find(self, declaration: Any) -> Optional[pulumi.Resource]:
        """Look up an existing resource instead of creating one; None means create."""
        return None

    @abstractmethod
    def create(self, declaration: Any, opts: pulumi.ResourceOptions) -> pulumi.Resource:
        pass

    @property
    def resource_name(self) -> str:
        return self.context.get_default_resource_name(self.name)

    def options(self, depends_on: List[str]) -> pulumi.ResourceOptions:
        dependencies = [self.context.require_resource(dep, self.name) for dep in depends_on]
        return pulumi.ResourceOptions(depends_on=dependencies or None)

    def build(self, declaration: Any) -> Optional[pulumi.Resource]:
        resource = self.find(declaration)
        if resource is None:
            resource = self.create(declaration, self.options(declaration.depends_on))
            if resource is None:
                return None
            pulumi.log.info(f"Declared {type(resource).__name__} '{self.resource_name}' for '{self.name}'")
        self.context.add_resource_to_cache(self.name, resource)
        return resource


class Datasets(BaseResource):

    def dataset_id(self, declaration: config.Dataset) -> str:
        return self.context.dataset_ids.get(declaration.name) or declaration.dataset_id or self.context.get_dataset_id(self.name)

    def find(self, declaration: config.Dataset) -> Optional[gcp.bigquery.Dataset]:
        if not declaration.existing:
            return None

        dataset_id = self.dataset_id(declaration)
        pulumi.log.info(f"Adopting existing dataset '{dataset_id}' for '{self.name}'")
        return gcp.bigquery.Dataset.get(self.resource_name, f"projects/{self.context.project}/datasets/{dataset_id}")

    def create(self, declaration: config.Dataset, opts: pulumi.ResourceOptions) -> gcp.bigquery.Dataset:
        return gcp.bigquery.Dataset(
            self.resource_name,
            dataset_id=self.dataset_id(declaration),
            friendly_name=declaration.friendly_name,
            description=declaration.description,
            location=declaration.location or self.context.location,
            default_table_expiration_ms=declaration.default_table_expiration_ms,
            delete_contents_on_destroy=declaration.delete_contents_on_destroy,
            labels=self.context.merged_labels(declaration.labels),
            project=self.context.project,
            opts=opts,
        )


def time_partitioning_args(partitioning: Optional[config.TimePartitioning]):
    if partitioning is None:
        return None
    return gcp.bigquery.TableTimePartitioningArgs(
        type=partitioning.type.upper(),
        field=partitioning.field,
        expiration_ms=partitioning.expiration_ms,
    )


class Tables(BaseResource):

    def dataset(self, declaration) -> gcp.bigquery.Dataset:
        return self.context.require_resource(declaration.dataset, self.name)

    def create(self, declaration: config.Table, opts: pulumi.ResourceOptions) -> gcp.bigquery.Table:
        dataset = self.dataset(declaration)
        return gcp.bigquery.Table(
            self.resource_name,
            dataset_id=dataset.dataset_id,
            table_id=declaration.table_id or self.name,
            schema=assets.load_schema(self.context.base_dir, declaration.schema),
            description=declaration.description,
            time_partitioning=time_partitioning_args(declaration.time_partitioning),
            clusterings=declaration.clustering or None,
            deletion_protection=declaration.deletion_protection,
            labels=self.context.merged_labels(declaration.labels),
            project=self.context.project,
            opts=opts,
        )


class Views(Tables):

    def create(self, declaration: config.View, opts: pulumi.ResourceOptions) -> gcp.bigquery.Table:
        dataset = self.dataset(declaration)
        query = self.context.load_query(declaration.query, declaration.query_text, self.name)
        return gcp.bigquery.Table(
            self.resource_name,
            dataset_id=dataset.dataset_id,
            table_id=declaration.table_id or self.name,
            view=gcp.bigquery.TableViewArgs(
                query=query,
                use_legacy_sql=declaration.use_legacy_sql,
            ),
            description=declaration.description,
            deletion_protection=declaration.deletion_protection,
            labels=self.context.merged_labels(declaration.labels),
            project=self.context.project,
            opts=opts,
        )


class MaterializedViews(Tables):

    def create(self, declaration: config.MaterializedView, opts: pulumi.ResourceOptions) -> gcp.bigquery.Table:
        dataset = self.dataset(declaration)
        query = self.context.load_query(declaration.query, declaration.query_text, self.name)
        return gcp.bigquery.Table(
            self.resource_name,
            dataset_id=dataset.dataset_id,
            table_id=declaration.table_id or self.name,
            materialized_view=gcp.bigquery.TableMaterializedViewArgs(
                query=query,
                enable_refresh=declaration.enable_refresh,
                refresh_interval_ms=declaration.refresh_interval_ms,
            ),
            time_partitioning=time_partitioning_args(declaration.time_partitioning),
            clusterings=declaration.clustering or None,
            description=declaration.description,
            deletion_protection=declaration.deletion_protection,
            labels=self.context.merged_labels(declaration.labels),
            project=self.context.project,
            opts=opts,
        )


class AuthorizedViews(BaseResource):

    def create(self, declaration: config.AuthorizedView, opts: pulumi.ResourceOptions) -> gcp.bigquery.DatasetAccess:
        dataset = self.context.require_resource(declaration.dataset, self.name)
        view = self.context.require_resource(declaration.view, self.name)
        return gcp.bigquery.DatasetAccess(
            self.resource_name,
            dataset_id=dataset.dataset_id,
            project=self.context.project,
            view=gcp.bigquery.DatasetAccessViewArgs(
                project_id=view.project,
                dataset_id=view.dataset_id,
                table_id=view.table_id,
            ),
            opts=opts,
        )


class LoggingSinks(BaseResource):

    def destination(self, declaration: config.LoggingSink):
        target = declaration.destination
        if "dataset" in target:
            dataset = self.context.require_resource(target["dataset"], self.name)
            return pulumi.Output.concat(
                "bigquery.googleapis.com/projects/", self.context.project, "/datasets/", dataset.dataset_id
            )
        if "bucket" in target:
            return pulumi.Output.concat("storage.googleapis.com/", self.context.resolve(target["bucket"]))
        if "uri" in target:
            return self.context.resolve(target["uri"])
        raise ValueError(f"Logging sink '{self.name}' needs a 'dataset', 'bucket' or 'uri' destination")

    def create(self, declaration: config.LoggingSink, opts: pulumi.ResourceOptions) -> gcp.logging.ProjectSink:
        bigquery_options = None
        if "dataset" in declaration.destination:
            bigquery_options = gcp.logging.ProjectSinkBigqueryOptionsArgs(
                use_partitioned_tables=declaration.use_partitioned_tables,
            )
        exclusions = [
            gcp.logging.ProjectSinkExclusionArgs(
                name=exclusion.name,
                filter=exclusion.filter,
                description=exclusion.description,
                disabled=exclusion.disabled,
            )
            for exclusion in declaration.exclusions
        ]
        return gcp.logging.ProjectSink(
            self.resource_name,
            name=declaration.sink_name or self.resource_name,
            destination=self.destination(declaration),
            filter=declaration.filter,
            description=declaration.description,
            disabled=declaration.disabled,
            unique_writer_identity=declaration.unique_writer_identity,
            bigquery_options=bigquery_options,
            exclusions=exclusions or None,
            project=self.context.project,
            opts=opts,
        )


class DatasetIamMembers(BaseResource):

    def create(self, declaration: config.DatasetIamMember, opts: pulumi.ResourceOptions) -> gcp.bigquery.DatasetIamMember:
        dataset = self.context.require_resource(declaration.dataset, self.name)
        return gcp.bigquery.DatasetIamMember(
            self.resource_name,
            dataset_id=dataset.dataset_id,
            role=declaration.role,
            member=self.context.resolve(declaration.member),
            project=self.context.project,
            opts=opts,
        )


class ProjectIamMembers(BaseResource):

    def create(self, declaration: config.ProjectIamMember, opts: pulumi.ResourceOptions) -> gcp.projects.IAMMember:
        return gcp.projects.IAMMember(
            self.resource_name,
            project=self.context.project,
            role=declaration.role,
            member=self.context.resolve(declaration.member),
            opts=opts,
        )


class GenericResources(BaseResource):
    """Any pulumi_gcp type, addressed as '<module>.<Class>' with free-form args."""

    def _apply_common_parameters(self, resolved_args: dict, init_sig: inspect.Signature) -> dict:
        # For GCP, many resources support 'labels' instead of 'tags'
        if "labels" in init_sig.parameters:
            if self.context.labels:
                resolved_args.setdefault("labels", dict(self.context.labels))
        else:
            resolved_args.pop("labels", None)

        # Handle 'region' if the resource expects it.
        if "region" in init_sig.parameters:
            resolved_args.setdefault("region", self.context.region)
        else:
            resolved_args.pop("region", None)

        if "project" in init_sig.parameters:
            resolved_args.setdefault("project", self.context.project)
        return resolved_args

    def resource_class(self, declaration: config.GCPResource):
        module_name, class_name = declaration.type.rsplit(".", 1)
        module = getattr(gcp, module_name, None)
        if not module:
            pulumi.log.warn(f"GCP module '{module_name}' not found. Skipping '{self.name}'.")
            return None, None
        resource_class = getattr(module, class_name, None)
        if resource_class is None:
            pulumi.log.warn(f"Resource class '{class_name}' not found in module '{module_name}'. Skipping '{self.name}'.")
            return module, None
        return module, resource_class

    def find(self, declaration: config.GCPResource) -> Optional[Any]:
        if not declaration.args.get("existing", False):
            return None

        module, resource_class = self.resource_class(declaration)
        if resource_class is None:
            return None
        args = {k: v for k, v in declaration.args.items() if k != "existing"}
        resolved_args = self.context.resolve(args)
        get_func_name = f"get_{to_snake_case(resource_class.__name__)}"
        get_func = getattr(module, get_func_name, None)
        if get_func is None:
            pulumi.log.warn(f"Function '{get_func_name}' not found for '{declaration.type}'. Proceeding to create new resource '{self.name}'.")
            return None

        sig = inspect.signature(get_func)
        get_accepted = {k for k in sig.parameters if k != "opts"}
        get_required = {k for k, param in sig.parameters.items() if k != "opts" and param.default == param.empty}
        get_params = get_lookup_params(get_accepted, resolved_args)
        missing = get_required - set(get_params.keys())
        # pulumi_gcp lookups default every parameter, so at least one must come from args
        if missing or not get_params:
            pulumi.log.warn(f"Missing lookup params {missing or sorted(get_accepted)} for existing resource '{self.name}'. Skipping the lookup attempt.")
            return None
        if "project" in get_accepted:
            get_params.setdefault("project", self.context.project)

        existing_resource = get_func(**get_params)
        pulumi.log.info(f"Fetched existing resource '{self.name}' via '{get_func_name}' with {get_params}")
        return existing_resource

    def create(self, declaration: config.GCPResource, opts: pulumi.ResourceOptions) -> Optional[pulumi.Resource]:
        _, resource_class = self.resource_class(declaration)
        if resource_class is None:
            return None
        args = {k: v for k, v in declaration.args.items() if k != "existing"}
        resolved_args = self.context.resolve(args)
        init_sig = inspect.signature(resource_class._internal_init)
        resolved_args = self._apply_common_parameters(resolved_args, init_sig)
        pulumi_name = declaration.custom_name or self.resource_name
        return resource_class(pulumi_name, **resolved_args, opts=opts)
#endregion


RESOURCE_KINDS: Dict[str, type] = {
    "datasets": Datasets,
    "tables": Tables,
    "views": Views,
    "materialized_views": MaterializedViews,
    "authorized_views": AuthorizedViews,
    "logging_sinks": LoggingSinks,
    "dataset_iam_members": DatasetIamMembers,
    "project_iam_members": ProjectIamMembers,
    "gcp_resources": GenericResources,
}
