"""
Field-level encryption of CSV files.

The whole document is parsed as CSV, so quoted fields may span lines. The
first row is the header. Values in the configured columns are replaced with
Fernet tokens; all other columns are written back unchanged. A row whose
field count differs from the header is malformed: it is reported as a failed
record and written back with its values untouched. Content that cannot be
parsed as CSV at all fails the whole file.
"""

import asyncio
import csv
import io
import logging
from typing import List, Sequence

from cryptography.fernet import Fernet

from file_lifecycle.core.exceptions import ConfigurationError, TransformError
from file_lifecycle.transform.transform_stage import RecordStatus, TransformResult, TransformStage


def _line_terminator(text: str) -> str:
    newline = text.find("\n")
    return "\r\n" if newline > 0 and text[newline - 1] == "\r" else "\n"


class FieldEncryptionTransform(TransformStage):
    name = "field_encryption"

    def __init__(self, fields: Sequence[str], key: str, delimiter: str = ","):
        if not fields:
            raise ConfigurationError("Field encryption needs at least one field name")
        if not key:
            raise ConfigurationError("Field encryption needs an encryption key")
        try:
            self._fernet = Fernet(key.encode("ascii") if isinstance(key, str) else key)
        except (ValueError, TypeError) as e:
            raise ConfigurationError(f"Invalid encryption key: {e}") from e

        self.fields = list(fields)
        self.delimiter = delimiter

    async def transform(self, content: bytes) -> TransformResult:
        return await asyncio.to_thread(self._transform, content)

    def _transform(self, content: bytes) -> TransformResult:
        try:
            text = content.decode("utf-8")
        except UnicodeDecodeError as e:
            raise TransformError(f"Content is not valid UTF-8 CSV: {e}") from e
        if not text:
            return TransformResult(content=content)

        reader = csv.reader(io.StringIO(text, newline=""), delimiter=self.delimiter, strict=True)
        try:
            rows = list(reader)
        except csv.Error as e:
            # Efter en kvote-fejl kan rækkegrænserne ikke bestemmes sikkert
            raise TransformError(f"Content is not parseable CSV near line {reader.line_num}: {e}") from e

        header = rows[0] if rows else []
        columns = [i for i, name in enumerate(header) if name.strip() in self.fields]

        records: List[RecordStatus] = []
        buffer = io.StringIO()
        terminator = _line_terminator(text)
        writer = csv.writer(buffer, delimiter=self.delimiter, lineterminator=terminator)
        writer.writerow(header)
        for index, row in enumerate(rows[1:], start=1):
            if not row:
                writer.writerow(row)
                continue
            if len(row) != len(header):
                records.append(
                    RecordStatus(
                        index=index,
                        ok=False,
                        message=f"expected {len(header)} fields, got {len(row)}",
                    )
                )
                writer.writerow(row)
                continue

            for column in columns:
                row[column] = self._fernet.encrypt(row[column].encode("utf-8")).decode("ascii")
            writer.writerow(row)
            records.append(RecordStatus(index=index, ok=True))

        if not columns:
            # Ingen følsomme felter i filen: indholdet forbliver uændret
            logging.debug("No configured fields present in header, content unchanged")
            return TransformResult(content=content, records=records)

        output = buffer.getvalue()
        if not text.endswith(("\n", "\r")):
            output = output[: -len(terminator)]
        return TransformResult(content=output.encode("utf-8"), records=records)

    def decrypt_value(self, token: str) -> str:
        return self._fernet.decrypt(token.encode("ascii")).decode("utf-8")

    def get_transform_info(self) -> dict:
        return {"name": self.name, "fields": self.fields, "delimiter": self.delimiter}
