"""
Row Codec - lossless conversion of rows to and from the snapshot formats.

Two interchangeable wire formats:
- Statement format (.sql): one ``INSERT INTO t (cols) VALUES (vals);`` per
  row, chunks joined by a separator comment line. Streams.
- Structured format (.json): one JSON document per table. Type faithful.

Decoding the statement format is heuristic (a quoted string that looks like
a timestamp comes back as a datetime, an unquoted token with a dot as a
float). Prefer the structured format when exact types matter.
"""

from __future__ import annotations

import base64
import binascii
import json
import math
import re
from datetime import date, datetime, time
from decimal import Decimal
from typing import IO, Any, Iterable, Iterator, Sequence

from syncdb.connectors.base import RowRecord
from syncdb.errors import RowCodecError, statement_fragment


TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
SEPARATOR_MARKER = "--SYNCDB_QUERY_SEPARATOR--"
QUERY_SEPARATOR = f"\n{SEPARATOR_MARKER}\n"

_BASE64_RE = re.compile(r"[A-Za-z0-9+/]+={0,2}")
_TIMESTAMP_RE = re.compile(r"\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}")
_EMAIL_RE = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
_INSERT_RE = re.compile(
    r"INSERT INTO [`\"]?(\w+)[`\"]? \((.*?)\) VALUES \((.*)\);",
    re.DOTALL,
)
_TABLE_NAME_RE = re.compile(r"\w+")


# ---------------------------------------------------------------------------
# Base64 heuristic
# ---------------------------------------------------------------------------


def is_meaningful_decoded(decoded: str, original: str) -> bool:
    """
    Decide whether a base64 decoding produced real text.

    Accepts timestamps, e-mail addresses and non-blank printable ASCII;
    rejects anything identical to the input.
    """
    if decoded == original:
        return False
    if _TIMESTAMP_RE.fullmatch(decoded) or _EMAIL_RE.fullmatch(decoded):
        return True
    if any(ord(ch) < 32 or ord(ch) > 126 for ch in decoded):
        return False
    return bool(decoded.strip())


def try_base64_decode(value: str, trusted: bool = False) -> str:
    """
    Return the decoded text if value looks like meaningful base64.

    Standard decoding is tried first, then URL-safe. On any doubt the
    original string is returned unchanged.

    Args:
        value: Candidate string
        trusted: The snapshot says every string was encoded, so any valid
            standard base64 that decodes to UTF-8 is accepted
    """
    candidate = value.strip()
    if not _BASE64_RE.fullmatch(candidate):
        return value

    if trusted:
        try:
            return base64.b64decode(candidate, validate=True).decode("utf-8")
        except (binascii.Error, ValueError):
            return value

    decoders = (
        lambda s: base64.b64decode(s, validate=True),
        base64.urlsafe_b64decode,
    )
    for decode in decoders:
        try:
            decoded = decode(candidate).decode("utf-8")
        except (binascii.Error, ValueError):
            continue
        if is_meaningful_decoded(decoded, candidate):
            return decoded
    return value


def encode_base64(text: str | bytes) -> str:
    raw = text.encode("utf-8") if isinstance(text, str) else bytes(text)
    return base64.b64encode(raw).decode("ascii")


# ---------------------------------------------------------------------------
# Scalar helpers
# ---------------------------------------------------------------------------


def quote_string(text: str) -> str:
    return "'" + text.replace("'", "''") + "'"


def format_float(value: float) -> str | None:
    """Fixed-point text that always contains a decimal point; None for NaN/inf."""
    if math.isnan(value) or math.isinf(value):
        return None
    text = repr(value)
    if "e" in text or "E" in text:
        text = format(Decimal(text), "f")
    if "." not in text:
        text += ".0"
    return text


def compact_json(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)


def bytes_to_text(value: bytes | bytearray | memoryview, as_base64: bool) -> str:
    raw = bytes(value)
    if as_base64:
        return encode_base64(raw)
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise RowCodecError(
            "Binary data found; export with base64 encoding enabled",
        ) from exc


def parse_timestamp(text: str) -> datetime | None:
    if not _TIMESTAMP_RE.fullmatch(text):
        return None
    try:
        return datetime.strptime(text, TIMESTAMP_FORMAT)
    except ValueError:
        return None


def to_parameter(value: Any) -> Any:
    """Convert a decoded value into a driver bind parameter."""
    if isinstance(value, (dict, list)):
        return compact_json(value)
    if isinstance(value, datetime):
        return value.strftime(TIMESTAMP_FORMAT)
    if isinstance(value, (date, time)):
        return value.isoformat()
    return value


def dedupe_columns(columns: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(columns))


# ---------------------------------------------------------------------------
# SQL text scanning
# ---------------------------------------------------------------------------


def _scan_sql(text: str) -> Iterator[tuple[str, str]]:
    """
    Yield ("stmt", sql) and ("comment", line) items from SQL text.

    Statements end at ';' outside quoted text. Quotes of all three kinds
    (single, double, backtick) are tracked, with doubled quotes as escapes.
    """
    buf: list[str] = []
    quote: str | None = None
    i, n = 0, len(text)

    while i < n:
        ch = text[i]

        if quote:
            buf.append(ch)
            if ch == quote:
                if i + 1 < n and text[i + 1] == quote:
                    buf.append(quote)
                    i += 2
                    continue
                quote = None
            i += 1
            continue

        if ch in ("'", '"', "`"):
            quote = ch
            buf.append(ch)
        elif ch == "-" and text.startswith("--", i):
            end = text.find("\n", i)
            end = n if end == -1 else end
            yield "comment", text[i:end].strip()
            i = end
            continue
        else:
            buf.append(ch)
            if ch == ";":
                statement = "".join(buf).strip()
                if statement != ";":
                    yield "stmt", statement
                buf = []
        i += 1

    if quote:
        raise RowCodecError("Unterminated quoted text in SQL artifact")
    tail = "".join(buf).strip()
    if tail:
        yield "stmt", tail


def split_statements(text: str) -> list[str]:
    """Split SQL text on ';' outside quotes, dropping comment lines."""
    return [item for kind, item in _scan_sql(text) if kind == "stmt"]


def split_chunks(text: str) -> list[list[str]]:
    """Split a statement artifact into chunks of statements."""
    chunks: list[list[str]] = []
    current: list[str] = []
    for kind, item in _scan_sql(text):
        if kind == "comment":
            if item == SEPARATOR_MARKER:
                chunks.append(current)
                current = []
            continue
        current.append(item)
    if current:
        chunks.append(current)
    return chunks


def sql_comments(text: str) -> list[str]:
    return [item for kind, item in _scan_sql(text) if kind == "comment"]


def split_values(text: str) -> list[str]:
    """Split a comma-joined literal list, keeping commas inside quotes."""
    if not text.strip():
        return []

    tokens: list[str] = []
    current: list[str] = []
    in_quote = False
    i, n = 0, len(text)

    while i < n:
        ch = text[i]
        if in_quote:
            current.append(ch)
            if ch == "'":
                if i + 1 < n and text[i + 1] == "'":
                    current.append("'")
                    i += 1
                else:
                    in_quote = False
        elif ch == "'":
            in_quote = True
            current.append(ch)
        elif ch == ",":
            tokens.append("".join(current).strip())
            current = []
        else:
            current.append(ch)
        i += 1

    if in_quote:
        raise RowCodecError("Unterminated string literal")
    tokens.append("".join(current).strip())
    return tokens


# ---------------------------------------------------------------------------
# Codecs
# ---------------------------------------------------------------------------


class StatementCodec:
    """
    SQL-statement wire format.

    Example:
        codec = StatementCodec()
        sql = codec.encode_row("users", {"id": 1, "name": "O'Neil"})
        # INSERT INTO users (id, name) VALUES (1, 'O''Neil');
        table, row = codec.decode_row(sql)
    """

    extension = "sql"

    def __init__(
        self,
        base64: bool = False,
        detect_base64: bool = False,
        trusted_base64: bool = False,
    ) -> None:
        self.base64 = base64
        self.detect_base64 = detect_base64
        self.trusted_base64 = trusted_base64

    def format_literal(self, value: Any) -> str:
        """Render one value as a SQL literal."""
        if value is None:
            return "NULL"
        if isinstance(value, bool):
            return "1" if value else "0"
        if isinstance(value, datetime):
            return quote_string(value.strftime(TIMESTAMP_FORMAT))
        if isinstance(value, (date, time)):
            return quote_string(value.isoformat())
        if isinstance(value, (dict, list)):
            return quote_string(compact_json(value))
        if isinstance(value, float):
            return format_float(value) or "NULL"
        if isinstance(value, (int, Decimal)):
            return str(value)
        if isinstance(value, (bytes, bytearray, memoryview)):
            return quote_string(bytes_to_text(value, self.base64))
        if isinstance(value, str):
            return quote_string(encode_base64(value) if self.base64 else value)
        return quote_string(str(value))

    def decode_literal(self, token: str) -> Any:
        """Parse one literal token back into a value."""
        if token == "NULL":
            return None

        if len(token) >= 2 and token[0] == "'" and token[-1] == "'":
            text = token[1:-1].replace("''", "'")
            if self.detect_base64:
                decoded = try_base64_decode(text, trusted=self.trusted_base64)
                if decoded != text:
                    return decoded
            stamp = parse_timestamp(text)
            if stamp is not None:
                return stamp
            if text.startswith(("{", "[")):
                try:
                    return json.loads(text)
                except ValueError:
                    return text
            return text

        try:
            return float(token) if "." in token else int(token)
        except ValueError:
            return token

    def encode_row(
        self,
        table: str,
        row: RowRecord,
        columns: Sequence[str] | None = None,
    ) -> str:
        if not _TABLE_NAME_RE.fullmatch(table):
            raise RowCodecError(
                "Table name cannot be written in statement format; use json",
                table=table,
            )
        cols = dedupe_columns(columns if columns is not None else row.keys())
        try:
            values = [self.format_literal(row.get(c)) for c in cols]
        except RowCodecError as exc:
            raise RowCodecError(exc.message, table=table) from exc
        return f"INSERT INTO {table} ({', '.join(cols)}) VALUES ({', '.join(values)});"

    def decode_row(self, statement: str) -> tuple[str, RowRecord]:
        match = _INSERT_RE.fullmatch(statement.strip())
        if not match:
            raise RowCodecError(
                "Not an INSERT statement",
                detail=statement_fragment(statement),
            )

        table, col_text, val_text = match.groups()
        columns = [c.strip().strip('`"') for c in col_text.split(",") if c.strip()]
        tokens = split_values(val_text)
        if len(columns) != len(tokens):
            raise RowCodecError(
                f"Column/value count mismatch ({len(columns)} != {len(tokens)})",
                table=table,
                detail=statement_fragment(statement),
            )
        return table, {col: self.decode_literal(tok) for col, tok in zip(columns, tokens)}

    def write(
        self,
        fh: IO[str],
        table: str,
        columns: Sequence[str],
        chunks: Iterable[list[RowRecord]],
        retained: Sequence[list[str]] = (),
    ) -> int:
        """
        Stream chunks to a file handle. Returns rows written.

        retained holds chunks already in encoded form (as returned by
        encoded_chunks); they are written verbatim ahead of the new rows.
        """
        written = 0
        index = 0
        for statements in retained:
            if index:
                fh.write(QUERY_SEPARATOR)
            fh.write("\n".join(statements))
            written += len(statements)
            index += 1
        for chunk in chunks:
            if index:
                fh.write(QUERY_SEPARATOR)
            fh.write("\n".join(self.encode_row(table, row, columns) for row in chunk))
            written += len(chunk)
            index += 1
        return written

    def encoded_chunks(self, text: str, batch_size: int) -> list[list[str]]:
        """Chunks of an artifact in encoded form, without decoding."""
        return split_chunks(text)

    def read(
        self,
        text: str,
        batch_size: int,
        table: str | None = None,
    ) -> Iterator[list[RowRecord]]:
        """Yield decoded chunks in file order."""
        for chunk_index, statements in enumerate(split_chunks(text)):
            rows: list[RowRecord] = []
            for number, statement in enumerate(statements, 1):
                try:
                    found, row = self.decode_row(statement)
                except RowCodecError as exc:
                    raise RowCodecError(
                        exc.message,
                        table=table,
                        detail=f"chunk {chunk_index}, statement {number}: "
                        f"{statement_fragment(statement)}",
                    ) from exc
                if table is not None and found != table:
                    raise RowCodecError(
                        f"Statement targets '{found}'",
                        table=table,
                        detail=f"chunk {chunk_index}, statement {number}",
                    )
                rows.append(row)
            yield rows


class StructuredCodec:
    """
    Structured (JSON) wire format.

    The artifact is ``{"table": ..., "columns": [...], "rows": [...]}``;
    chunks are consecutive slices of batch_size rows.
    """

    extension = "json"

    def __init__(
        self,
        base64: bool = False,
        detect_base64: bool = False,
        trusted_base64: bool = False,
    ) -> None:
        self.base64 = base64
        self.detect_base64 = detect_base64
        self.trusted_base64 = trusted_base64

    def encode_value(self, value: Any) -> Any:
        if isinstance(value, datetime):
            return value.strftime(TIMESTAMP_FORMAT)
        if isinstance(value, (date, time)):
            return value.isoformat()
        if isinstance(value, float):
            return value if format_float(value) is not None else None
        if isinstance(value, Decimal):
            return float(value) if value.is_finite() else None
        if isinstance(value, (bytes, bytearray, memoryview)):
            return bytes_to_text(value, self.base64)
        if isinstance(value, str) and self.base64:
            return encode_base64(value)
        return value

    def decode_value(self, value: Any) -> Any:
        if not isinstance(value, str):
            return value
        if self.detect_base64:
            decoded = try_base64_decode(value, trusted=self.trusted_base64)
            if decoded != value:
                return decoded
        stamp = parse_timestamp(value)
        return stamp if stamp is not None else value

    def encode_row(self, row: RowRecord) -> dict[str, Any]:
        return {key: self.encode_value(value) for key, value in row.items()}

    def decode_row(self, obj: dict[str, Any]) -> RowRecord:
        return {key: self.decode_value(value) for key, value in obj.items()}

    def write(
        self,
        fh: IO[str],
        table: str,
        columns: Sequence[str],
        chunks: Iterable[list[RowRecord]],
        retained: Sequence[list[dict[str, Any]]] = (),
    ) -> int:
        """Materialize every chunk into one document. Returns rows written."""
        rows = [obj for chunk in retained for obj in chunk]
        try:
            rows.extend(self.encode_row(row) for chunk in chunks for row in chunk)
        except RowCodecError as exc:
            raise RowCodecError(exc.message, table=table) from exc
        document = {"table": table, "columns": list(columns), "rows": rows}
        json.dump(document, fh, indent=2, ensure_ascii=False, default=str)
        fh.write("\n")
        return len(rows)

    def _load_rows(self, text: str, table: str | None = None) -> list[Any]:
        try:
            document = json.loads(text) if text.strip() else {"rows": []}
        except ValueError as exc:
            raise RowCodecError("Malformed JSON artifact", table=table, detail=str(exc)) from exc

        rows = document.get("rows") if isinstance(document, dict) else None
        if not isinstance(rows, list):
            raise RowCodecError("JSON artifact has no 'rows' list", table=table)
        found = document.get("table")
        if table is not None and found not in (None, table):
            raise RowCodecError(f"Artifact belongs to '{found}'", table=table)
        return rows

    def encoded_chunks(self, text: str, batch_size: int) -> list[list[dict[str, Any]]]:
        """Chunks of an artifact in encoded form, without decoding."""
        rows = self._load_rows(text)
        return [rows[i:i + batch_size] for i in range(0, len(rows), batch_size)]

    def read(
        self,
        text: str,
        batch_size: int,
        table: str | None = None,
    ) -> Iterator[list[RowRecord]]:
        rows = self._load_rows(text, table)
        for start in range(0, len(rows), batch_size):
            chunk: list[RowRecord] = []
            for offset, obj in enumerate(rows[start:start + batch_size]):
                if not isinstance(obj, dict):
                    raise RowCodecError(
                        "Row is not an object",
                        table=table,
                        detail=f"row {start + offset}",
                    )
                chunk.append(self.decode_row(obj))
            yield chunk


RowCodec = StatementCodec | StructuredCodec


def get_codec(
    format: str,
    base64: bool = False,
    detect_base64: bool = False,
    trusted_base64: bool = False,
) -> RowCodec:
    """Codec for an artifact format name ("sql" or "json")."""
    options = {"base64": base64, "detect_base64": detect_base64, "trusted_base64": trusted_base64}
    if format == "sql":
        return StatementCodec(**options)
    if format == "json":
        return StructuredCodec(**options)
    raise RowCodecError(f"Unsupported artifact format: {format}")
