"""Tests for the import engine and per-document conversion."""
from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Tuple

import pytest

from common.errors import ErrorCode, ImportDataError
from common.models import CollectionProgress, Schema
from core.schema import build_schema, render_ddl
from core.transfer import ImportEngine, convert_document
from storage import SQLiteGateway

PERSON_CONFIG = {
    "person": {
        "_id": {"type": "VARCHAR(100)", "pk": True},
        "firstName": {"type": "VARCHAR(100)"},
        "age": {"type": "INT"},
        "deleted": {"type": "BOOLEAN"},
        "addresses_locationId": {
            "type": "VARCHAR(100)",
            "references": "location",
            "referencesOn": "_id",
            "manyOn": "_id",
        },
    },
    "location": {
        "_id": {"type": "VARCHAR(100)", "pk": True},
        "name": {"type": "VARCHAR(100)"},
    },
}


def open_store(tmp_path: Path, config: Dict[str, Any]) -> Tuple[SQLiteGateway, Schema]:
    schema = build_schema(config)
    gateway = SQLiteGateway(tmp_path / "store.db").open()
    gateway.execute_statement(render_ddl(schema))
    return gateway, schema


def write_collection(root: Path, name: str, documents: Any) -> Path:
    root.mkdir(parents=True, exist_ok=True)
    path = root / name
    path.write_text(json.dumps(documents), encoding="utf-8")
    return path


def fetch(db_path: Path, sql: str) -> List[tuple]:
    with sqlite3.connect(db_path) as conn:
        return conn.execute(sql).fetchall()


def test_example_document_produces_row_and_junction_row(tmp_path: Path) -> None:
    config = {
        "person": {
            "_id": {"type": "VARCHAR(100)", "pk": True},
            "addresses_locationId": {
                "type": "VARCHAR(100)",
                "references": "location",
                "referencesOn": "_id",
                "manyOn": "_id",
            },
        }
    }
    gateway, schema = open_store(tmp_path, config)
    root = tmp_path / "data"
    write_collection(root, "person.json", [{"_id": "p1", "addresses": [{"locationId": "loc1"}]}])

    summary = ImportEngine(gateway, schema).run(root)
    gateway.close()

    assert summary.rows_inserted == 1
    assert summary.junction_rows == 1
    assert summary.tables_touched == 1
    assert summary.summary() == "Inserted 1 rows in 1 tables"
    db_path = tmp_path / "store.db"
    assert fetch(db_path, "SELECT _id, extra FROM person") == [
        ("p1", '{"addresses":[{"locationId":"loc1"}]}')
    ]
    assert fetch(db_path, "SELECT _id, personId, locationId, extra FROM person_location") == [
        ("p1loc1", "p1", "loc1", None)
    ]


def test_columns_are_coerced_and_stripped_from_extra() -> None:
    table = build_schema(PERSON_CONFIG).get("person")
    conversion = convert_document(
        table,
        {"_id": "p1", "firstName": "Ana", "age": 41, "deleted": False, "nickname": "A", "addresses": []},
    )
    assert conversion.ok
    assert conversion.owner_id == "p1"
    assert conversion.row["age"] == "41"
    assert conversion.row["deleted"] is False
    assert json.loads(conversion.row["extra"]) == {"nickname": "A", "addresses": []}


def test_missing_field_becomes_null_without_extra_key() -> None:
    table = build_schema(PERSON_CONFIG).get("person")
    conversion = convert_document(table, {"_id": "p1", "firstName": None})
    assert conversion.row["firstName"] is None
    assert conversion.row["deleted"] is None
    assert json.loads(conversion.row["extra"]) == {}


def test_input_document_is_not_mutated() -> None:
    table = build_schema(PERSON_CONFIG).get("person")
    document = {"_id": "p1", "firstName": "Ana"}
    convert_document(table, document)
    assert document == {"_id": "p1", "firstName": "Ana"}


@pytest.mark.parametrize("addresses", [[], None, "absent"])
def test_empty_or_absent_many_on_array_yields_single_null_row(addresses) -> None:
    table = build_schema(PERSON_CONFIG).get("person")
    document: Dict[str, Any] = {"_id": "p1"}
    if addresses != "absent":
        document["addresses"] = addresses
    conversion = convert_document(table, document)
    assert conversion.ok
    assert [(junction.name, row.row_id, row.referenced_id) for junction, row in conversion.junction_rows] == [
        ("person_location", "p1", None)
    ]


def test_two_sub_objects_yield_two_junction_rows() -> None:
    table = build_schema(PERSON_CONFIG).get("person")
    conversion = convert_document(
        table,
        {"_id": "p1", "addresses": [{"locationId": "loc1"}, {"locationId": "loc2"}]},
    )
    assert [row.row_id for _, row in conversion.junction_rows] == ["p1loc1", "p1loc2"]
    assert [row.key for _, row in conversion.junction_rows] == [("p1", "loc1"), ("p1", "loc2")]


def test_null_inner_key_yields_owner_only_row() -> None:
    table = build_schema(PERSON_CONFIG).get("person")
    conversion = convert_document(table, {"_id": "p1", "addresses": [{"locationId": None}]})
    assert [(row.row_id, row.referenced_id) for _, row in conversion.junction_rows] == [("p1", None)]


@pytest.mark.parametrize(
    "document, fragment",
    [
        ({"_id": "p1", "deleted": "maybe"}, "deleted"),
        ({"_id": "p1", "firstName": {"first": "Ana"}}, "firstName"),
        ({"_id": "p1", "addresses": {"locationId": "loc1"}}, "must be an array"),
        ({"_id": "p1", "addresses": ["loc1"]}, "must be an object"),
        ({"firstName": "Ana"}, "primary key '_id' must not be null"),
    ],
)
def test_conversion_reports_errors_instead_of_raising(document, fragment: str) -> None:
    table = build_schema(PERSON_CONFIG).get("person")
    conversion = convert_document(table, document)
    assert not conversion.ok
    assert fragment in conversion.error


def test_boolean_tokens_are_accepted() -> None:
    table = build_schema(PERSON_CONFIG).get("person")
    for raw, expected in [(True, True), (0, False), (1, True), ("TRUE", True), ("false", False)]:
        conversion = convert_document(table, {"_id": "p1", "deleted": raw})
        assert conversion.row["deleted"] is expected


def test_reimport_is_idempotent(tmp_path: Path) -> None:
    gateway, schema = open_store(tmp_path, PERSON_CONFIG)
    root = tmp_path / "data"
    write_collection(
        root,
        "person.json",
        [
            {"_id": "p1", "firstName": "Ana", "addresses": [{"locationId": "l1"}, {"locationId": "l2"}]},
            {"_id": "p2", "addresses": []},
        ],
    )
    write_collection(root, "location.json", [{"_id": "l1", "name": "Home"}, {"_id": "l2", "name": "Work"}])
    engine = ImportEngine(gateway, schema)

    first = engine.run(root)
    counts = {name: gateway.count_rows(name) for name in ("person", "location", "person_location")}
    second = engine.run(root)
    again = {name: gateway.count_rows(name) for name in ("person", "location", "person_location")}
    gateway.close()

    assert first.rows_inserted == second.rows_inserted == 4
    assert first.tables_touched == 2
    assert counts == again == {"person": 2, "location": 2, "person_location": 3}


def test_unmatched_and_nested_files(tmp_path: Path) -> None:
    gateway, schema = open_store(tmp_path, PERSON_CONFIG)
    root = tmp_path / "data"
    write_collection(root, "unknown.json", [{"_id": "x"}])
    write_collection(root / "nested" / "deeper", "location.txt", [{"_id": "l1"}])

    summary = ImportEngine(gateway, schema).run(root)
    rows = gateway.count_rows("location")
    gateway.close()

    assert summary.files_skipped == 1
    assert summary.files_processed == 1
    assert rows == 1


def test_malformed_file_aborts_import(tmp_path: Path) -> None:
    gateway, schema = open_store(tmp_path, PERSON_CONFIG)
    root = tmp_path / "data"
    write_collection(root, "person.json", {"_id": "p1"})

    with pytest.raises(ImportDataError) as exc:
        ImportEngine(gateway, schema).run(root)
    gateway.close()

    assert exc.value.code == ErrorCode.IMPORT_ERROR
    assert "person.json" in str(exc.value)


def test_coercion_failure_rolls_back_whole_file(tmp_path: Path) -> None:
    gateway, schema = open_store(tmp_path, PERSON_CONFIG)
    root = tmp_path / "data"
    write_collection(
        root,
        "person.json",
        [
            {"_id": "p1", "deleted": True},
            {"_id": "p2", "deleted": "sometimes"},
        ],
    )

    with pytest.raises(ImportDataError) as exc:
        ImportEngine(gateway, schema).run(root)
    assert "document 1" in str(exc.value)
    assert gateway.count_rows("person") == 0
    assert gateway.count_rows("person_location") == 0
    assert not gateway.in_transaction
    gateway.close()


def test_missing_root_is_an_import_error(tmp_path: Path) -> None:
    gateway, schema = open_store(tmp_path, PERSON_CONFIG)
    with pytest.raises(ImportDataError):
        ImportEngine(gateway, schema).run(tmp_path / "nowhere")
    gateway.close()


def test_progress_callback_reports_each_collection(tmp_path: Path) -> None:
    gateway, schema = open_store(tmp_path, PERSON_CONFIG)
    root = tmp_path / "data"
    write_collection(root, "location.json", [{"_id": f"l{i}"} for i in range(5)])
    events: List[CollectionProgress] = []

    ImportEngine(gateway, schema, progress_callback=events.append, progress_every=2).run(root)
    gateway.close()

    assert [(event.collection, event.processed, event.total) for event in events] == [
        ("location", 2, 5),
        ("location", 4, 5),
        ("location", 5, 5),
    ]
    assert all(event.phase == "import" for event in events)


def test_many_on_without_declared_pk_still_needs_id() -> None:
    table = build_schema(
        {
            "person": {
                "_id": {"type": "VARCHAR(100)"},
                "addresses_locationId": {"references": "location", "manyOn": "_id"},
            }
        }
    ).get("person")
    conversion = convert_document(table, {"addresses": [{"locationId": "l1"}]})
    assert not conversion.ok
    assert "non-null '_id'" in conversion.error


def test_document_without_primary_key_is_not_duplicated(tmp_path: Path) -> None:
    gateway, schema = open_store(tmp_path, PERSON_CONFIG)
    root = tmp_path / "data"
    write_collection(root, "location.json", [{"_id": "l1", "name": "Home"}, {"name": "no id"}])

    for _ in range(2):
        with pytest.raises(ImportDataError) as exc:
            ImportEngine(gateway, schema).run(root)
        assert "primary key '_id' must not be null" in str(exc.value)
    rows = gateway.count_rows("location")
    gateway.close()

    assert rows == 0


def test_failing_progress_callback_rolls_back_and_frees_store(tmp_path: Path) -> None:
    gateway, schema = open_store(tmp_path, PERSON_CONFIG)
    root = tmp_path / "data"
    write_collection(root, "location.json", [{"_id": "l1"}, {"_id": "l2"}])

    def broken_sink(progress: CollectionProgress) -> None:
        raise OSError("disk full")

    with pytest.raises(OSError):
        ImportEngine(gateway, schema, progress_callback=broken_sink).run(root)
    assert not gateway.in_transaction
    assert gateway.count_rows("location") == 0

    summary = ImportEngine(gateway, schema).run(root)
    rows = gateway.count_rows("location")
    gateway.close()

    assert summary.rows_inserted == 2
    assert rows == 2
