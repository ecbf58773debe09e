import pulumi
import pytest

from gcpwarehouse.config import parse_config
from gcpwarehouse.context import BuildContext, get_abbreviation, parse_ref, to_snake_case


@pytest.fixture
def context(warehouse_data):
    return BuildContext.from_config(parse_config(warehouse_data))


def test_region_abbreviation():
    assert get_abbreviation("europe-west1") == "ew1"
    assert get_abbreviation("US-CENTRAL1") == "usc1"
    assert get_abbreviation("me-central2") == "me"


def test_to_snake_case():
    assert to_snake_case("DatasetIamMember") == "dataset_iam_member"
    assert to_snake_case("bucket") == "bucket"


def test_parse_ref():
    assert parse_ref("ref:bq_sink.writer_identity") == ("bq_sink", "writer_identity")
    assert parse_ref("ref:bq_sink") == ("bq_sink", "id")


def test_default_resource_name(context):
    assert context.get_default_resource_name("orders") == "sales-dwh-test-ew1-orders"


def test_dataset_ids_are_derived_and_sanitized(context, warehouse_data):
    assert context.dataset_ids == {"sales": "sales_dwh_test_sales", "logs": "sales_dwh_test_logs"}

    warehouse_data["datasets"].append({"name": "web-events"})
    warehouse_data["datasets"].append({"name": "pinned", "dataset_id": "legacy_ds"})
    context = BuildContext.from_config(parse_config(warehouse_data))

    assert context.dataset_ids["web-events"] == "sales_dwh_test_web_events"
    assert context.dataset_ids["pinned"] == "legacy_ds"


def test_merged_labels_prefer_resource_labels(context):
    assert context.merged_labels({"tier": "gold", "team": "finance"}) == {"team": "finance", "tier": "gold"}
    assert context.merged_labels(None) == {"team": "sales"}


def test_sql_variables(context):
    variables = context.sql_variables()

    assert variables["project"] == "acme-test"
    assert variables["location"] == "US"
    assert variables["sales_dataset"] == "sales_dwh_test_sales"
    assert variables["logs_dataset"] == "sales_dwh_test_logs"


def test_load_query_from_file_and_inline(context):
    from_file = context.load_query("sql/revenue.sql", None, "daily_revenue")
    inline = context.load_query(None, "SELECT 1 FROM `{{ project }}.t`", "inline_view")

    assert "`acme-test.sales_dwh_test_sales.orders`" in from_file
    assert inline == "SELECT 1 FROM `acme-test.t`"


def test_load_query_needs_exactly_one_source(context):
    with pytest.raises(ValueError, match="needs a 'query' file"):
        context.load_query(None, None, "v")
    with pytest.raises(ValueError, match="sets both"):
        context.load_query("sql/revenue.sql", "SELECT 1", "v")


def test_resolve_refs_and_files(context):
    class FakeSink:
        id = "sink-id"
        writer_identity = "serviceAccount:sink@example.iam.gserviceaccount.com"

    context.add_resource_to_cache("bq_sink", FakeSink())

    resolved = context.resolve({
        "member": "ref:bq_sink.writer_identity",
        "ids": ["ref:bq_sink", "plain"],
        "sql": "file:sql/revenue.sql",
        "count": 3,
    })

    assert resolved["member"] == FakeSink.writer_identity
    assert resolved["ids"] == ["sink-id", "plain"]
    assert "{{ project }}" in resolved["sql"]
    assert resolved["count"] == 3


def test_resolve_unknown_ref(context):
    with pytest.raises(ValueError, match="Referenced resource 'nowhere' not found"):
        context.resolve("ref:nowhere.id")


def test_resolve_unknown_attribute(context):
    context.add_resource_to_cache("thing", object())

    with pytest.raises(ValueError, match="Attribute 'name' not found on resource 'thing'"):
        context.resolve("ref:thing.name")


def test_resource_cache_rejects_duplicates(context):
    context.add_resource_to_cache("orders", object())

    with pytest.raises(ValueError, match="declared more than once"):
        context.add_resource_to_cache("orders", object())
    assert context.get_resource_from_cache("missing") is None


@pulumi.runtime.test
def test_resolve_secret_reads_pulumi_config(context):
    pulumi.runtime.set_config(f"{pulumi.get_project()}:warehouse_password", "s3cret")

    value = context.resolve({"password": "secret:warehouse_password"})["password"]

    assert isinstance(value, pulumi.Output)

    def check(password):
        assert password == "s3cret"

    return value.apply(check)
