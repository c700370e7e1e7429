import re
from dataclasses import asdict, dataclass

from .errors import NoDataToAnalyze

ISO_DATE_PREFIX = re.compile(r"^\d{4}-\d{2}-\d{2}")
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
NON_ALNUM_RUN = re.compile(r"[^a-z0-9]+")

VARCHAR_LIMIT = 255


@dataclass(frozen=True)
class InferredField:
    sourceFieldName: str
    suggestedName: str
    inferredType: str
    notes: str

    def toDict(self) -> dict:
        return asdict(self)


def suggest_name(field_name: str) -> str:
    """小文字化し、英数字以外の連続を '_' 1つに置換して前後の '_' を落とす。"""
    return NON_ALNUM_RUN.sub("_", str(field_name).lower()).strip("_")


def classify_value(value) -> tuple[str, str]:
    """値の形から (型, 備考) を返す。bool は int のサブクラスなので数値より先に判定する。"""
    if isinstance(value, bool):
        return "BOOLEAN", "true/false flag"
    if isinstance(value, int):
        return "INTEGER", "whole number"
    if isinstance(value, float):
        if value.is_integer():
            return "INTEGER", "whole number"
        return "DECIMAL(10,2)", "decimal number"
    if isinstance(value, str):
        if ISO_DATE_PREFIX.match(value):
            return "TIMESTAMP", "ISO date/time value"
        if EMAIL_PATTERN.match(value):
            return "VARCHAR(255)", "email field"
        if len(value) > VARCHAR_LIMIT:
            return "TEXT", f"long text ({len(value)} chars)"
        return "VARCHAR(255)", "short text"
    if value is None:
        return "VARCHAR(255)", "null in sample record"
    if isinstance(value, dict):
        return "VARCHAR(255)", "nested object"
    if isinstance(value, list):
        return "VARCHAR(255)", "nested array"
    return "VARCHAR(255)", ""


def infer(records: list) -> list[InferredField]:
    """
    目的: 先頭レコードをサンプルとして、フィールドごとの推奨名・型・備考を導出する。
    - 先頭レコードが代表的である前提（2件目以降は見ない）
    - 推奨名の衝突は許容する（一意化しない）
    """
    if not records:
        raise NoDataToAnalyze()

    sample = records[0]
    if not isinstance(sample, dict):
        raise NoDataToAnalyze("First record is not an object")

    fields: list[InferredField] = []
    for name, value in sample.items():
        inferredType, notes = classify_value(value)
        fields.append(
            InferredField(
                sourceFieldName=name,
                suggestedName=suggest_name(name),
                inferredType=inferredType,
                notes=notes,
            )
        )
    return fields
