import json

import pytest

from datarest.errors import EmptyOrInvalidContent
from datarest.parser import dataset_name_from_filename, decode_upload, extension_of, parse


def testParseJsonArrayRoundTrips():
    """目的: レコード列をJSON化して解析し直すと、元と同じ列になることを確認する。"""
    records = [
        {"id": 1, "name": "Ada", "tags": ["math", "engines"], "active": True},
        {"id": 2, "name": "Grace", "address": {"city": "NYC"}, "score": None},
        {"id": 3, "ratio": 0.25},
    ]

    assert parse(json.dumps(records), "json") == records


def testParseJsonWrapsSingleObject():
    """目的: トップレベルが配列でないJSONは1要素の配列に包まれることを確認する。"""
    assert parse('{"a": 1}', "json") == [{"a": 1}]


def testParseCsvKeepsValuesAsStrings():
    """目的: CSVの値は数値に変換されず文字列のまま保持されることを確認する。"""
    assert parse("name,age\nAda,30\nGrace,85", "csv") == [
        {"name": "Ada", "age": "30"},
        {"name": "Grace", "age": "85"},
    ]


def testParseCsvTrimsAndStripsQuotes():
    """目的: ヘッダ/値の前後空白と引用符が除去されることを確認する。"""
    csvText = '"first name" , \'city\'\n  "Ada" ,  \'London\'  \n'

    assert parse(csvText, "csv") == [{"first name": "Ada", "city": "London"}]


def testParseCsvFillsMissingTrailingValues():
    """目的: 値が足りない行は空文字で埋められ、空行は無視されることを確認する。"""
    csvText = "a,b,c\n1,2\n\n   \n4,5,6\n"

    assert parse(csvText, "csv") == [
        {"a": "1", "b": "2", "c": ""},
        {"a": "4", "b": "5", "c": "6"},
    ]


def testParseCsvHeaderOnlyIsRejected():
    """目的: ヘッダ行だけのCSVは0件となり EmptyOrInvalidContent になることを確認する。"""
    with pytest.raises(EmptyOrInvalidContent):
        parse("name,age\n", "csv")


@pytest.mark.parametrize("content", ["", "   \n\n", "[]"])
def testParseRejectsEmptyContent(content):
    """目的: 空入力や空配列は EmptyOrInvalidContent になることを確認する。"""
    with pytest.raises(EmptyOrInvalidContent):
        parse(content, "txt")


def testParseUnknownKindTriesJsonThenCsv():
    """目的: 拡張子が不明な場合、JSONを試してからCSVにフォールバックすることを確認する。"""
    assert parse('[{"x": 1}]', "txt") == [{"x": 1}]
    assert parse("x,y\n1,2", "txt") == [{"x": "1", "y": "2"}]


def testParseDeclaredJsonFallsBackToCsv():
    """目的: json と宣言されていてもJSONとして読めなければCSVとして扱うことを確認する。"""
    assert parse("x,y\n1,2", "json") == [{"x": "1", "y": "2"}]


def testParseDeclaredCsvDoesNotTryJson():
    """目的: csv と宣言された場合はJSONとして解釈しないことを確認する。"""
    assert parse('{"a": 1}\n{"a": 2}', "csv") == [{'{"a": 1}': '{"a": 2}'}]


def testParseRejectsNonStandardJsonConstants():
    """目的: NaN / Infinity を含む内容はJSONとして受け付けず、CSVとして扱われることを確認する。"""
    assert parse("value\nNaN\nInfinity", "txt") == [{"value": "NaN"}, {"value": "Infinity"}]
    assert parse("NaN\n1", "json") == [{"NaN": "1"}]

    with pytest.raises(EmptyOrInvalidContent):
        parse('[{"x": NaN, "y": -Infinity}]', "txt")


def testParseIsDeterministic():
    """目的: 同じ入力からは常に同じ結果になることを確認する。"""
    csvText = "a,b\n1,2\n3,4\n"
    assert parse(csvText, "csv") == parse(csvText, "csv")


def testFilenameHelpers():
    """目的: 拡張子の取り出しと、拡張子を除いたデータセット名の導出を確認する。"""
    assert extension_of("Customers.CSV") == "csv"
    assert extension_of("README") == ""
    assert extension_of(None) == ""
    assert dataset_name_from_filename("customers.csv") == "customers"
    assert dataset_name_from_filename("sales.2024.json") == "sales.2024"
    assert dataset_name_from_filename("customers") == "customers"


def testDecodeUploadAcceptsBomAndRejectsNonUtf8():
    """目的: UTF-8（BOM付き含む）は文字列化でき、それ以外は拒否されることを確認する。"""
    assert decode_upload("\ufeffa,b\n1,2".encode("utf-8")) == "a,b\n1,2"
    with pytest.raises(EmptyOrInvalidContent):
        decode_upload(b"\xff\xfe\xfa")
