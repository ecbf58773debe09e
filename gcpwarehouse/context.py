import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import pulumi

from gcpwarehouse import assets
from gcpwarehouse.config import WarehouseConfig

# Consolidated list of common GCP region abbreviations
GCP_REGION_ABBREVIATIONS = {
    "asia-east1": "ae1",
    "asia-east2": "ae2",
    "asia-northeast1": "an1",
    "asia-northeast2": "an2",
    "asia-northeast3": "an3",
    "asia-south1": "as1",
    "asia-southeast1": "ase1",
    "asia-southeast2": "ase2",
    "australia-southeast1": "aus1",
    "australia-southeast2": "aus2",
    "europe-central2": "ec2",
    "europe-north1": "en1",
    "europe-west1": "ew1",
    "europe-west2": "ew2",
    "europe-west3": "ew3",
    "europe-west4": "ew4",
    "europe-west6": "ew6",
    "northamerica-northeast1": "nn1",
    "southamerica-east1": "se1",
    "us-central1": "usc1",
    "us-east1": "use1",
    "us-east4": "use4",
    "us-west1": "usw1",
    "us-west2": "usw2",
    "us-west3": "usw3",
    "us-west4": "usw4",
}


def to_snake_case(name: str) -> str:
    return re.sub(r'(?<!^)(?=[A-Z])', '_', name).lower()


def get_abbreviation(region: str) -> str:
    return GCP_REGION_ABBREVIATIONS.get(region.lower(), region.split("-")[0].lower())


def parse_ref(value: str) -> tuple:
    """Split 'ref:name.attr' into (name, attr); attr defaults to 'id'."""
    ref_text = value[len("ref:"):]
    if "." in ref_text:
        ref_res, ref_attr = ref_text.split(".", 1)
    else:
        ref_res, ref_attr = ref_text, "id"
    return ref_res, ref_attr


@dataclass
class BuildContext:
    team: str
    service: str
    environment: str
    region: str
    project: str
    location: str
    labels: Dict[str, str]
    base_dir: str = "."

    dataset_ids: Dict[str, str] = field(default_factory=dict)
    resource_cache: Dict[str, Any] = field(init=False, repr=False, default_factory=dict)

    @classmethod
    def from_config(cls, config: WarehouseConfig) -> "BuildContext":
        context = cls(
            team=config.team,
            service=config.service,
            environment=config.environment,
            region=config.region,
            project=config.project,
            location=config.location,
            labels=dict(config.labels or {}),
            base_dir=config.base_dir,
        )
        for dataset in config.datasets:
            context.dataset_ids[dataset.name] = dataset.dataset_id or context.get_dataset_id(dataset.name)
        return context

    def add_resource_to_cache(self, name: str, resource: Any) -> None:
        if name in self.resource_cache:
            raise ValueError(f"Resource '{name}' is declared more than once")
        self.resource_cache[name] = resource

    def get_resource_from_cache(self, name: str) -> Optional[Any]:
        return self.resource_cache.get(name)

    def require_resource(self, name: str, owner: str) -> Any:
        resource = self.get_resource_from_cache(name)
        if resource is None:
            raise ValueError(f"Referenced resource '{name}' not found (required by '{owner}').")
        return resource

    def get_default_resource_name(self, unique_identifier: str) -> str:
        team = self.team.strip().lower()
        service = self.service.strip().lower()
        env = self.environment.strip().lower()
        reg_abbr = get_abbreviation(self.region)
        return f"{team}-{service}-{env}-{reg_abbr}-{unique_identifier}".lower()

    def get_dataset_id(self, unique_identifier: str) -> str:
        # BigQuery dataset ids allow letters, digits and underscores only
        base = f"{self.team}_{self.service}_{self.environment}_{unique_identifier}"
        return re.sub(r"[^A-Za-z0-9_]", "_", base.strip()).lower()

    def merged_labels(self, labels: Optional[Dict[str, str]]) -> Dict[str, str]:
        merged = dict(self.labels)
        merged.update(labels or {})
        return merged

    def sql_variables(self) -> Dict[str, str]:
        variables = {
            "project": self.project,
            "region": self.region,
            "location": self.location,
            "environment": self.environment,
        }
        for name, dataset_id in self.dataset_ids.items():
            variables[f"{name}_dataset"] = dataset_id
        return variables

    def load_query(self, path: Optional[str], inline: Optional[str], owner: str) -> str:
        if path and inline:
            raise ValueError(f"'{owner}' sets both 'query' and 'query_text'")
        if path:
            return assets.load_sql(self.base_dir, path, self.sql_variables())
        if inline:
            return assets.render_sql(inline, self.sql_variables(), owner)
        raise ValueError(f"'{owner}' needs a 'query' file or 'query_text'")

    def resolve(self, value: Any) -> Any:
        if isinstance(value, dict):
            return {k: self.resolve(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [self.resolve(item) for item in value]
        elif isinstance(value, str):
            if value.startswith("secret:"):
                # Fetch secret from Pulumi config
                secret_key = value[len("secret:"):]
                config = pulumi.Config()
                return config.require_secret(secret_key)
            elif value.startswith("file:"):
                return assets.read_text(self.base_dir, value[len("file:"):])
            elif value.startswith("ref:"):
                ref_res, ref_attr = parse_ref(value)
                if ref_res not in self.resource_cache:
                    raise ValueError(f"Referenced resource '{ref_res}' not found.")
                resource_obj = self.resource_cache[ref_res]
                attr_val = getattr(resource_obj, ref_attr, None)
                if attr_val is None:
                    raise ValueError(f"Attribute '{ref_attr}' not found on resource '{ref_res}'")
                return attr_val
            else:
                return value
        else:
            return value
