
import pytest

from gcpwarehouse import assets


def test_load_schema_returns_compact_json(warehouse_dir):
    schema = assets.load_schema(str(warehouse_dir), "schemas/orders.json")

    assert " " not in schema
    assert assets.schema_field_names(schema) == ["order_id", "customer_id", "amount", "ordered_at"]


def test_load_schema_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError, match="schemas/nope.json"):
        assets.load_schema(str(tmp_path), "schemas/nope.json")


def test_load_schema_invalid_json(tmp_path):
    (tmp_path / "bad.json").write_text("[{")

    with pytest.raises(ValueError, match="not valid JSON"):
        assets.load_schema(str(tmp_path), "bad.json")


@pytest.mark.parametrize("fields, message", [
    ({"name": "a", "type": "STRING"}, "must be a JSON list"),
    ([{"type": "STRING"}], "has no name"),
    ([{"name": "a", "type": "VARCHAR"}], "unsupported type 'VARCHAR'"),
    ([{"name": "a", "type": "STRING", "mode": "OPTIONAL"}], "unsupported mode"),
    ([{"name": "a", "type": "STRING"}, {"name": "A", "type": "INT64"}], "duplicate field 'A'"),
    ([{"name": "r", "type": "RECORD"}], "declares no fields"),
    ([{"name": "r", "type": "RECORD", "fields": [{"name": "x", "type": "BLOB"}]}], "field 'r.x'"),
    ([{"name": "s", "type": "STRING", "fields": [{"name": "x", "type": "STRING"}]}], "non-record field 's'"),
    ([{"name": 5, "type": "STRING"}], "non-string name 5"),
])
def test_validate_schema_fields_errors(fields, message):
    with pytest.raises(ValueError, match=message):
        assets.validate_schema_fields(fields, "schema.json")


def test_validate_schema_accepts_nested_records():
    assets.validate_schema_fields([
        {"name": "ctx", "type": "record", "mode": "repeated", "fields": [
            {"name": "device", "type": "STRUCT", "fields": [{"name": "os", "type": "STRING"}]},
        ]},
    ], "nested.json")


def test_render_sql_substitutes_variables():
    sql = assets.render_sql("SELECT * FROM `{{ project }}.{{ sales_dataset }}.orders`", {
        "project": "acme", "sales_dataset": "sales_dwh_test_sales",
    })

    assert sql == "SELECT * FROM `acme.sales_dwh_test_sales.orders`"


def test_render_sql_unknown_placeholder():
    with pytest.raises(ValueError, match=r"report.sql' uses unknown placeholder: 'missing_dataset' is undefined"):
        assets.render_sql("SELECT 1 FROM {{ missing_dataset }}.t", {"project": "p"}, "report.sql")


@pytest.mark.parametrize("sql", [
    "SELECT JSON_VALUE(payload, '$.user_id') AS user_id FROM `{{ project }}.t`",
    "SELECT id FROM `{{ project }}.t` WHERE REGEXP_CONTAINS(id, r'^[0-9]+$')",
])
def test_render_sql_leaves_dollar_syntax_alone(sql):
    rendered = assets.render_sql(sql, {"project": "acme"})

    assert rendered == sql.replace("{{ project }}", "acme")


def test_render_sql_invalid_template():
    with pytest.raises(ValueError, match="broken.sql' has an invalid placeholder"):
        assets.render_sql("SELECT {{ project FROM t", {"project": "p"}, "broken.sql")


def test_load_sql_reads_relative_to_base_dir(warehouse_dir):
    sql = assets.load_sql(str(warehouse_dir), "sql/revenue.sql", {"project": "p", "sales_dataset": "d"})

    assert "FROM `p.d.orders`" in sql


def test_resolve_path_keeps_absolute_paths(tmp_path):
    target = tmp_path / "a.sql"

    assert assets.resolve_path("/elsewhere", str(target)) == str(target)
    assert assets.resolve_path(str(tmp_path), "x/../a.sql") == str(target)
