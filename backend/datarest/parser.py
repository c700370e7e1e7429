import json
import os

from .errors import EmptyOrInvalidContent

JSON_KINDS = ("json",)
CSV_KINDS = ("csv",)

_QUOTES = "'\""


def extension_of(filename: str | None) -> str:
    """ファイル名から拡張子（小文字、ドットなし）を返す。拡張子がなければ空文字。"""
    if not filename:
        return ""
    _, ext = os.path.splitext(filename)
    return ext.lstrip(".").lower()


def dataset_name_from_filename(filename: str) -> str:
    """アップロード時のデフォルトのデータセット名（拡張子を除いたファイル名）。"""
    base = os.path.basename(filename or "")
    stem, ext = os.path.splitext(base)
    return stem if ext and stem else base


def decode_upload(raw: bytes) -> str:
    """アップロードされたバイト列をUTF-8（BOM許容）として文字列化する。"""
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise EmptyOrInvalidContent("File must be UTF-8 encoded") from e


def _clean_cell(value: str) -> str:
    return value.strip().strip(_QUOTES)


def parse_csv(content: str) -> list[dict]:
    """
    カンマ区切りの簡易CSVを解析する。
    - 空行は捨てる。先頭行をヘッダとする
    - 各セルは前後の空白と引用符を除去する（値は文字列のまま、数値変換しない）
    - 値が足りない行は空文字で埋める
    """
    lines = [ln for ln in content.splitlines() if ln.strip()]
    if not lines:
        return []

    header = [_clean_cell(h) for h in lines[0].split(",")]
    records: list[dict] = []
    for line in lines[1:]:
        values = [_clean_cell(v) for v in line.split(",")]
        record = {}
        for i, field in enumerate(header):
            record[field] = values[i] if i < len(values) else ""
        records.append(record)
    return records


def reject_json_constant(name: str):
    raise ValueError(f"Non-standard JSON constant: {name}")


def parse_json(content: str) -> list:
    """JSONとして解析する。配列でなければ1要素の配列に包む。失敗時（NaN/Infinity を含む）は ValueError。"""
    parsed = json.loads(content, parse_constant=reject_json_constant)
    if not isinstance(parsed, list):
        parsed = [parsed]
    return parsed


def parse(content: str, declared_extension: str | None) -> list:
    """
    目的: アップロード内容を、順序付きのレコード列に正規化する。
    - json: JSONとして解析（解析できなければCSVとして扱う）
    - csv: CSVとして解析
    - その他: JSONを試し、失敗したらCSVにフォールバック
    レコードが0件の場合は EmptyOrInvalidContent。
    """
    kind = (declared_extension or "").strip().lower().lstrip(".")

    if kind in CSV_KINDS:
        records = parse_csv(content)
    else:
        try:
            records = parse_json(content)
        except ValueError:
            records = parse_csv(content)

    if not records:
        raise EmptyOrInvalidContent("File is empty or has no data records")
    return records
