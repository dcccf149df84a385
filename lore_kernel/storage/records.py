"""
Record codec — the single place persisted records are (de)serialized.

Every record is stored as a JSON envelope carrying a format version and the
record type, so format evolution touches this module only.
"""

import json
from typing import Callable, Optional, Type, TypeVar

from loguru import logger
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from lore_kernel.errors import CorruptedRecordError, NotFoundError, StoreUnavailableError
from lore_kernel.storage.kv import KeyValueStore

RECORD_FORMAT_VERSION = 1

M = TypeVar("M", bound=BaseModel)


def encode_record(record: BaseModel) -> str:
    """Serialize a record into its versioned envelope."""
    envelope = {
        "v": RECORD_FORMAT_VERSION,
        "type": type(record).__name__,
        "data": record.model_dump(mode="json"),
    }
    return json.dumps(envelope, sort_keys=True, separators=(",", ":"))


def decode_record(raw: str, model_type: Type[M], key: str = "") -> M:
    """Parse a versioned envelope back into a record. Raises CorruptedRecordError."""
    try:
        envelope = json.loads(raw)
    except (ValueError, TypeError) as exc:
        raise CorruptedRecordError(f"Record at {key} is not valid JSON: {exc}", key=key) from exc

    if not isinstance(envelope, dict) or "data" not in envelope:
        raise CorruptedRecordError(f"Record at {key} has no envelope", key=key)
    if envelope.get("v") != RECORD_FORMAT_VERSION:
        raise CorruptedRecordError(
            f"Record at {key} has unsupported format version {envelope.get('v')!r}",
            key=key,
        )
    if envelope.get("type") != model_type.__name__:
        raise CorruptedRecordError(
            f"Record at {key} is a {envelope.get('type')!r}, expected {model_type.__name__}",
            key=key,
        )

    try:
        return model_type.model_validate(envelope["data"])
    except PydanticValidationError as exc:
        raise CorruptedRecordError(
            f"Record at {key} failed validation: {exc.error_count()} error(s)", key=key
        ) from exc


class RecordStore:
    """Typed record access on top of the scalar key-value store."""

    def __init__(self, kv: KeyValueStore):
        self.kv = kv

    def get(self, key: str, model_type: Type[M]) -> Optional[M]:
        raw = self.kv.get(key)
        if raw is None:
            return None
        return decode_record(raw, model_type, key)

    def get_or_default(
        self, key: str, model_type: Type[M], default_factory: Callable[[], M]
    ) -> M:
        """Tolerant read for non-critical records: corruption falls back to a default."""
        try:
            record = self.get(key, model_type)
        except CorruptedRecordError as exc:
            logger.warning("Falling back to default for {}: {}", key, exc.message)
            return default_factory()
        return record if record is not None else default_factory()

    def put(self, key: str, record: BaseModel, ttl_seconds: Optional[int] = None) -> None:
        self.kv.set(key, encode_record(record), ttl_seconds)

    def create(self, key: str, record: BaseModel, ttl_seconds: Optional[int] = None) -> bool:
        """Store the record only if the key is absent. Atomic."""
        return self.kv.set_if_absent(key, encode_record(record), ttl_seconds)

    def update(
        self,
        key: str,
        model_type: Type[M],
        mutate: Callable[[M], Optional[M]],
        default_factory: Optional[Callable[[], M]] = None,
        ttl_seconds: Optional[int] = None,
        max_retries: int = 10,
    ) -> M:
        """
        Optimistic read-modify-write of a single record.

        `mutate` receives a private copy and returns the new record, or None to
        leave the stored record untouched. The write is a compare-and-set against
        the exact bytes read, so concurrent writers retry instead of clobbering.
        """
        for attempt in range(1, max_retries + 1):
            raw = self.kv.get(key)
            if raw is None:
                if default_factory is None:
                    raise NotFoundError(f"No record stored at {key}", key=key)
                current = default_factory()
            else:
                current = decode_record(raw, model_type, key)

            updated = mutate(current.model_copy(deep=True))
            if updated is None:
                return current

            if self.kv.compare_and_set(key, raw, encode_record(updated), ttl_seconds):
                return updated
            logger.debug("Write conflict on {} (attempt {}/{})", key, attempt, max_retries)

        raise StoreUnavailableError(
            f"Gave up updating {key} after {max_retries} conflicting writes", key=key
        )
