from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path
from typing import Any

import pytest
from botocore.exceptions import ClientError

from pretender_py import EngineConfig, PretenderClient
from pretender_py.testkit import FixedClock


def _create_orders(client: PretenderClient) -> dict[str, Any]:
    return client.create_table(
        TableName="orders",
        KeySchema=[{"AttributeName": "pk", "KeyType": "HASH"}, {"AttributeName": "sk", "KeyType": "RANGE"}],
        AttributeDefinitions=[
            {"AttributeName": "pk", "AttributeType": "S"},
            {"AttributeName": "sk", "AttributeType": "S"},
            {"AttributeName": "status", "AttributeType": "S"},
        ],
        GlobalSecondaryIndexes=[
            {
                "IndexName": "by_status",
                "KeySchema": [{"AttributeName": "status", "KeyType": "HASH"}],
                "Projection": {"ProjectionType": "ALL"},
            }
        ],
        BillingMode="PAY_PER_REQUEST",
    )


@pytest.fixture()
def client() -> Iterator[PretenderClient]:
    with PretenderClient(clock=FixedClock(1_000)) as client:
        _create_orders(client)
        yield client


def _error_code(excinfo: pytest.ExceptionInfo[ClientError]) -> str:
    return excinfo.value.response["Error"]["Code"]


def test_table_lifecycle() -> None:
    with PretenderClient() as client:
        created = _create_orders(client)
        assert created["TableDescription"]["TableStatus"] == "ACTIVE"
        assert created["ResponseMetadata"]["HTTPStatusCode"] == 200

        with pytest.raises(ClientError) as excinfo:
            _create_orders(client)
        assert _error_code(excinfo) == "ResourceInUseException"

        described = client.describe_table(TableName="orders")["Table"]
        assert described["KeySchema"][0] == {"AttributeName": "pk", "KeyType": "HASH"}
        assert described["GlobalSecondaryIndexes"][0]["IndexName"] == "by_status"

        assert client.list_tables()["TableNames"] == ["orders"]
        assert client.delete_table(TableName="orders")["TableDescription"]["TableStatus"] == "DELETING"

        with pytest.raises(ClientError) as excinfo:
            client.describe_table(TableName="orders")
        assert _error_code(excinfo) == "ResourceNotFoundException"


def test_list_tables_pagination() -> None:
    with PretenderClient() as client:
        for name in ("aaa", "bbb", "ccc"):
            client.create_table(
                TableName=name,
                KeySchema=[{"AttributeName": "id", "KeyType": "HASH"}],
                AttributeDefinitions=[{"AttributeName": "id", "AttributeType": "S"}],
            )

        first = client.list_tables(Limit=2)
        second = client.list_tables(ExclusiveStartTableName=first["LastEvaluatedTableName"], Limit=2)

        assert first["TableNames"] == ["aaa", "bbb"]
        assert first["LastEvaluatedTableName"] == "bbb"
        assert second["TableNames"] == ["ccc"]
        assert "LastEvaluatedTableName" not in second


def test_item_round_trip_in_wire_format(client: PretenderClient) -> None:
    item = {
        "pk": {"S": "c#1"},
        "sk": {"S": "o#1"},
        "total": {"N": "12.5"},
        "tags": {"SS": ["b", "a"]},
        "doc": {"M": {"lines": {"L": [{"N": "1"}, {"BOOL": True}]}}},
    }
    client.put_item(TableName="orders", Item=item)

    got = client.get_item(TableName="orders", Key={"pk": {"S": "c#1"}, "sk": {"S": "o#1"}})
    assert got["Item"]["total"] == {"N": "12.5"}
    assert got["Item"]["tags"] == {"SS": ["a", "b"]}
    assert got["Item"]["doc"] == item["doc"]

    missing = client.get_item(TableName="orders", Key={"pk": {"S": "c#1"}, "sk": {"S": "nope"}})
    assert "Item" not in missing


def test_conditional_write_raises_client_error(client: PretenderClient) -> None:
    item = {"pk": {"S": "c#1"}, "sk": {"S": "o#1"}}
    client.put_item(TableName="orders", Item=item, ConditionExpression="attribute_not_exists(pk)")

    with pytest.raises(ClientError) as excinfo:
        client.put_item(TableName="orders", Item=item, ConditionExpression="attribute_not_exists(pk)")

    assert _error_code(excinfo) == "ConditionalCheckFailedException"
    assert excinfo.value.response["Error"]["Message"] == "The conditional request failed"
    assert excinfo.value.operation_name == "PutItem"


def test_update_and_delete_return_attributes(client: PretenderClient) -> None:
    key = {"pk": {"S": "c#1"}, "sk": {"S": "o#1"}}
    updated = client.update_item(
        TableName="orders",
        Key=key,
        UpdateExpression="ADD #n :one",
        ExpressionAttributeNames={"#n": "count"},
        ExpressionAttributeValues={":one": {"N": "1"}},
        ReturnValues="UPDATED_NEW",
        ReturnConsumedCapacity="TOTAL",
    )
    assert updated["Attributes"] == {"count": {"N": "1"}}
    assert updated["ConsumedCapacity"]["TableName"] == "orders"
    assert updated["ConsumedCapacity"]["WriteCapacityUnits"] == 1.0

    deleted = client.delete_item(TableName="orders", Key=key, ReturnValues="ALL_OLD")
    assert deleted["Attributes"]["count"] == {"N": "1"}
    assert "Attributes" not in client.delete_item(TableName="orders", Key=key, ReturnValues="ALL_OLD")


def test_validation_errors(client: PretenderClient) -> None:
    with pytest.raises(ClientError) as excinfo:
        client.put_item(TableName="orders", Item={"pk": {"S": "c#1"}})
    assert _error_code(excinfo) == "ValidationException"
    assert "Missing the key sk" in excinfo.value.response["Error"]["Message"]

    with pytest.raises(ClientError) as excinfo:
        client.put_item(TableName="orders", Item={"pk": {"S": "a"}, "sk": {"S": "b"}}, Bogus=1)
    assert "unsupported parameter Bogus" in excinfo.value.response["Error"]["Message"]

    with pytest.raises(ClientError) as excinfo:
        client.get_item(TableName="orders")
    assert "missing required parameter Key" in excinfo.value.response["Error"]["Message"]

    with pytest.raises(ClientError) as excinfo:
        client.put_item(TableName="orders", Item={"pk": {"S": "c#1"}, "sk": {"S": "o#1"}, "x": {"S": "\ud800"}})
    assert _error_code(excinfo) == "ValidationException"
    assert "not valid UTF-8" in excinfo.value.response["Error"]["Message"]

    with pytest.raises(ClientError) as excinfo:
        client.transact_get_items(TransactItems=[{"Get": {"Key": {"pk": {"S": "c#1"}, "sk": {"S": "o#1"}}}}])
    assert _error_code(excinfo) == "ValidationException"
    assert "TableName is required" in excinfo.value.response["Error"]["Message"]

    with pytest.raises(ClientError) as excinfo:
        client.transact_get_items(TransactItems=[{"Get": {"TableName": "orders"}}])
    assert "Key is required" in excinfo.value.response["Error"]["Message"]


def test_query_pagination_and_select_count(client: PretenderClient) -> None:
    for i in range(5):
        client.put_item(
            TableName="orders",
            Item={"pk": {"S": "c#1"}, "sk": {"S": f"o#{i}"}, "status": {"S": "open" if i < 3 else "closed"}},
        )

    request = {
        "TableName": "orders",
        "KeyConditionExpression": "pk = :pk",
        "ExpressionAttributeValues": {":pk": {"S": "c#1"}},
        "Limit": 3,
    }
    first = client.query(**request)
    second = client.query(**request, ExclusiveStartKey=first["LastEvaluatedKey"])

    assert [item["sk"]["S"] for item in first["Items"]] == ["o#0", "o#1", "o#2"]
    assert first["LastEvaluatedKey"] == {"pk": {"S": "c#1"}, "sk": {"S": "o#2"}}
    assert [item["sk"]["S"] for item in second["Items"]] == ["o#3", "o#4"]
    assert "LastEvaluatedKey" not in second

    counted = client.query(
        TableName="orders",
        IndexName="by_status",
        KeyConditionExpression="#s = :s",
        ExpressionAttributeNames={"#s": "status"},
        ExpressionAttributeValues={":s": {"S": "open"}},
        Select="COUNT",
    )
    assert counted["Count"] == 3
    assert "Items" not in counted

    scanned = client.scan(TableName="orders", FilterExpression="#s = :s", ExpressionAttributeNames={"#s": "status"},
                          ExpressionAttributeValues={":s": {"S": "closed"}})
    assert scanned["Count"] == 2
    assert scanned["ScannedCount"] == 5


def test_unknown_index_is_validation_exception(client: PretenderClient) -> None:
    with pytest.raises(ClientError) as excinfo:
        client.query(
            TableName="orders",
            IndexName="nope",
            KeyConditionExpression="pk = :pk",
            ExpressionAttributeValues={":pk": {"S": "c#1"}},
        )
    assert _error_code(excinfo) == "ValidationException"


def test_batch_operations(client: PretenderClient) -> None:
    written = client.batch_write_item(
        RequestItems={
            "orders": [
                {"PutRequest": {"Item": {"pk": {"S": "c#1"}, "sk": {"S": "o#1"}}}},
                {"PutRequest": {"Item": {"pk": {"S": "c#1"}, "sk": {"S": "o#2"}}}},
            ],
            "ghosts": [{"DeleteRequest": {"Key": {"id": {"S": "x"}}}}],
        }
    )
    assert written["UnprocessedItems"] == {"ghosts": [{"DeleteRequest": {"Key": {"id": {"S": "x"}}}}]}

    got = client.batch_get_item(
        RequestItems={"orders": {"Keys": [{"pk": {"S": "c#1"}, "sk": {"S": "o#1"}}, {"pk": {"S": "c#1"}, "sk": {"S": "o#9"}}]}}
    )
    assert got["Responses"]["orders"] == [{"pk": {"S": "c#1"}, "sk": {"S": "o#1"}}]
    assert got["UnprocessedKeys"] == {}


def test_transactions_and_cancellation_reasons(client: PretenderClient) -> None:
    key = {"pk": {"S": "c#1"}, "sk": {"S": "o#1"}}
    client.transact_write_items(
        TransactItems=[
            {"Put": {"TableName": "orders", "Item": {**key, "v": {"N": "1"}}}},
            {"ConditionCheck": {"TableName": "orders", "Key": {"pk": {"S": "c#1"}, "sk": {"S": "o#2"}},
                                "ConditionExpression": "attribute_not_exists(pk)"}},
        ],
        ReturnConsumedCapacity="TOTAL",
    )

    with pytest.raises(ClientError) as excinfo:
        client.transact_write_items(
            TransactItems=[
                {"Delete": {"TableName": "orders", "Key": {"pk": {"S": "c#1"}, "sk": {"S": "o#3"}}}},
                {
                    "Update": {
                        "TableName": "orders",
                        "Key": key,
                        "UpdateExpression": "SET v = :v",
                        "ConditionExpression": "v = :old",
                        "ExpressionAttributeValues": {":v": {"N": "3"}, ":old": {"N": "2"}},
                    }
                },
            ]
        )
    assert _error_code(excinfo) == "TransactionCanceledException"
    assert [r["Code"] for r in excinfo.value.response["CancellationReasons"]] == ["None", "ConditionalCheckFailed"]

    got = client.transact_get_items(
        TransactItems=[
            {"Get": {"TableName": "orders", "Key": key}},
            {"Get": {"TableName": "orders", "Key": {"pk": {"S": "c#1"}, "sk": {"S": "o#3"}}}},
        ]
    )
    assert got["Responses"] == [{"Item": {**key, "v": {"N": "1"}}}, {}]


def test_time_to_live(client: PretenderClient) -> None:
    assert client.describe_time_to_live(TableName="orders")["TimeToLiveDescription"] == {
        "TimeToLiveStatus": "DISABLED"
    }
    client.update_time_to_live(
        TableName="orders", TimeToLiveSpecification={"AttributeName": "expires", "Enabled": True}
    )
    assert client.describe_time_to_live(TableName="orders")["TimeToLiveDescription"] == {
        "TimeToLiveStatus": "ENABLED",
        "AttributeName": "expires",
    }

    client.put_item(TableName="orders", Item={"pk": {"S": "c#1"}, "sk": {"S": "old"}, "expires": {"N": "999"}})
    client.put_item(TableName="orders", Item={"pk": {"S": "c#1"}, "sk": {"S": "new"}, "expires": {"N": "5000"}})

    assert "Item" not in client.get_item(TableName="orders", Key={"pk": {"S": "c#1"}, "sk": {"S": "old"}})
    assert client.scan(TableName="orders")["Count"] == 1


def test_client_reopens_file_database(tmp_path: Path) -> None:
    config = EngineConfig(database_path=str(tmp_path / "data.db"))
    with PretenderClient(config=config) as client:
        _create_orders(client)
        client.put_item(TableName="orders", Item={"pk": {"S": "c#1"}, "sk": {"S": "o#1"}})

    with PretenderClient(config=config) as client:
        assert client.list_tables()["TableNames"] == ["orders"]
        assert "Item" in client.get_item(TableName="orders", Key={"pk": {"S": "c#1"}, "sk": {"S": "o#1"}})
