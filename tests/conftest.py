"""
Shared fixtures for the warehouse tests.

Pulumi's mocks are installed once, at import time, so every test that
declares resources runs against an in-process engine instead of GCP.
"""

import json
import os

import pulumi
import pytest

REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


class WarehouseMocks(pulumi.runtime.Mocks):

    def __init__(self):
        self.resources = {}
        self.calls = []

    def new_resource(self, args: pulumi.runtime.MockResourceArgs):
        outputs = dict(args.inputs)
        if args.typ == "gcp:logging/projectSink:ProjectSink":
            outputs["writerIdentity"] = f"serviceAccount:{args.name}@gcp-sa-logging.iam.gserviceaccount.com"
        if args.typ == "gcp:bigquery/dataset:Dataset" and args.resource_id:
            outputs.setdefault("datasetId", args.resource_id.rsplit("/", 1)[-1])
        self.resources[args.name] = {"type": args.typ, "inputs": dict(args.inputs), "id": args.resource_id}
        return [args.resource_id or f"{args.name}_id", outputs]

    def call(self, args: pulumi.runtime.MockCallArgs):
        self.calls.append((args.token, dict(args.args)))
        if args.token == "gcp:storage/getBucket:getBucket":
            return {"id": args.args["name"], "name": args.args["name"], "location": "EU", "project": args.args.get("project")}
        return {}


MOCKS = WarehouseMocks()
pulumi.runtime.set_mocks(MOCKS, preview=False)


@pytest.fixture
def mocks():
    MOCKS.resources.clear()
    MOCKS.calls.clear()
    return MOCKS


@pytest.fixture
def sample_config_path():
    return os.path.join(REPO_ROOT, "config.yaml")


@pytest.fixture
def warehouse_dir(tmp_path):
    (tmp_path / "schemas").mkdir()
    (tmp_path / "sql").mkdir()
    (tmp_path / "schemas" / "orders.json").write_text(json.dumps([
        {"name": "order_id", "type": "STRING", "mode": "REQUIRED"},
        {"name": "customer_id", "type": "STRING"},
        {"name": "amount", "type": "NUMERIC"},
        {"name": "ordered_at", "type": "TIMESTAMP", "mode": "REQUIRED"},
    ]))
    (tmp_path / "sql" / "revenue.sql").write_text(
        "SELECT DATE(ordered_at) AS day, SUM(amount) AS revenue\n"
        "FROM `{{ project }}.{{ sales_dataset }}.orders`\n"
        "GROUP BY day\n"
    )
    return tmp_path


@pytest.fixture
def warehouse_data(warehouse_dir):
    return {
        "team": "Sales",
        "service": "dwh",
        "environment": "test",
        "region": "europe-west1",
        "project": "acme-test",
        "labels": {"team": "sales"},
        "base_dir": str(warehouse_dir),
        "datasets": [
            {"name": "sales", "description": "Orders"},
            {"name": "logs"},
        ],
        "tables": [
            {
                "name": "orders",
                "dataset": "sales",
                "schema": "schemas/orders.json",
                "time_partitioning": {"type": "day", "field": "ordered_at"},
                "clustering": ["customer_id"],
            },
        ],
        "views": [
            {"name": "daily_revenue", "dataset": "sales", "query": "sql/revenue.sql", "depends_on": ["orders"]},
        ],
        "materialized_views": [
            {"name": "revenue_mv", "dataset": "sales", "query": "sql/revenue.sql", "refresh_interval_ms": 600000},
        ],
        "logging_sinks": [
            {"name": "bq_sink", "destination": {"dataset": "logs"}, "filter": "severity>=ERROR"},
        ],
        "dataset_iam_members": [
            {
                "name": "bq_sink_writer",
                "dataset": "logs",
                "role": "roles/bigquery.dataEditor",
                "member": "ref:bq_sink.writer_identity",
            },
        ],
        "project_iam_members": [
            {"name": "finance_jobs", "role": "roles/bigquery.jobUser", "member": "group:finance@acme.example"},
        ],
    }
