import pytest

from datarest.errors import NoDataToAnalyze
from datarest.schema_inference import infer, suggest_name


def testInferClassifiesFirstRecordInFieldOrder():
    """目的: 先頭レコードの各値が、フィールド順に期待どおりの型へ分類されることを確認する。"""
    record = {
        "id": 7,
        "price": 19.99,
        "active": True,
        "signed_up": "2023-05-01T00:00:00Z",
        "email": "a@b.com",
        "notes": "x" * 300,
    }

    fields = infer([record])

    assert [f.sourceFieldName for f in fields] == list(record.keys())
    assert [f.inferredType for f in fields] == [
        "INTEGER",
        "DECIMAL(10,2)",
        "BOOLEAN",
        "TIMESTAMP",
        "VARCHAR(255)",
        "TEXT",
    ]
    assert "email" in fields[4].notes


def testInferOnlyLooksAtFirstRecord():
    """目的: 2件目以降のレコードは推定に使われないことを確認する。"""
    fields = infer([{"a": "text"}, {"a": 1, "b": True}])

    assert len(fields) == 1
    assert fields[0].inferredType == "VARCHAR(255)"


def testInferShortStringAndBoundary():
    """目的: 255文字ちょうどは VARCHAR(255)、256文字は TEXT になることを確認する。"""
    fields = infer([{"short": "x" * 255, "long": "x" * 256, "plain": "hello"}])

    assert [f.inferredType for f in fields] == ["VARCHAR(255)", "TEXT", "VARCHAR(255)"]


def testInferCsvStringsStayVarchar():
    """目的: CSV由来の数値っぽい文字列は文字列として扱われることを確認する。"""
    fields = infer([{"age": "30"}])

    assert fields[0].inferredType == "VARCHAR(255)"


def testInferIntegralFloatIsInteger():
    """目的: 小数部のない数値は INTEGER として扱われることを確認する。"""
    assert infer([{"n": 3.0}])[0].inferredType == "INTEGER"


def testInferNestedAndNullValuesFallBackToVarchar():
    """目的: null/ネストしたオブジェクト/配列は VARCHAR(255) とし、備考に形を残すことを確認する。"""
    fields = infer([{"n": None, "o": {"k": 1}, "l": [1, 2]}])

    assert [f.inferredType for f in fields] == ["VARCHAR(255)"] * 3
    assert [f.notes for f in fields] == ["null in sample record", "nested object", "nested array"]


def testInferRejectsEmptyDataset():
    """目的: レコードが0件の場合は NoDataToAnalyze になることを確認する。"""
    with pytest.raises(NoDataToAnalyze):
        infer([])


@pytest.mark.parametrize(
    "source, expected",
    [
        ("CUST NM#1", "cust_nm_1"),
        ("  Order--Date  ", "order_date"),
        ("already_fine", "already_fine"),
        ("__x__", "x"),
        ("顧客ID", "id"),
    ],
)
def testSuggestNameNormalizes(source, expected):
    """目的: 推奨名が小文字化・英数字以外の連続を '_' に置換・前後の '_' 除去で作られることを確認する。"""
    assert suggest_name(source) == expected


def testSuggestedNamesMayCollide():
    """目的: 正規化後に同じ名前になっても一意化しないことを確認する。"""
    fields = infer([{"First Name": "a", "first-name": "b"}])

    assert [f.suggestedName for f in fields] == ["first_name", "first_name"]


def testInferredFieldToDict():
    """目的: InferredField のシリアライズ形式を確認する。"""
    field = infer([{"Total $": 1.5}])[0]

    assert field.toDict() == {
        "sourceFieldName": "Total $",
        "suggestedName": "total",
        "inferredType": "DECIMAL(10,2)",
        "notes": "decimal number",
    }
