"""
Key/value codecs and the consumer-side byte accountant.

Both codecs frame values the Confluent way: magic byte 0, a 4-byte schema
id, then the Avro binary or JSON body.

  LocalCodec     fastavro / json, fixed schema ids, no registry (dry runs)
  RegistryCodec  confluent-kafka Schema Registry serializers
"""

import io
import json
import struct
import threading
from typing import Any, Callable, Dict, Optional

import fastavro
from confluent_kafka.schema_registry import SchemaRegistryClient
from confluent_kafka.schema_registry.avro import AvroDeserializer, AvroSerializer
from confluent_kafka.schema_registry.json_schema import JSONDeserializer, JSONSerializer
from confluent_kafka.serialization import (
    IntegerSerializer,
    MessageField,
    SerializationContext,
)

from .config import SchemaRegistrySettings
from .errors import DecodeFailure, ProduceFailed
from .records import avro_schema, json_schema
from .scenarios import Format, Size

MAGIC_BYTE = 0
HEADER = struct.Struct(">bI")

ValueEncoder = Callable[[Any, str], bytes]
ValueDecoder = Callable[[bytes, str], Any]


# ---------------------------------------------------------------------------
# Byte accounting
# ---------------------------------------------------------------------------

class ByteAccountant:
    """Wraps a value decoder and counts every byte handed to it.

    The client may decode on its own threads, so the counter is
    lock-protected. Bytes are counted before decoding, so payloads that
    fail to decode are still accounted for.
    """

    def __init__(self, inner: ValueDecoder):
        self._inner = inner
        self._lock = threading.Lock()
        self._total = 0

    def __call__(self, data: Optional[bytes], topic: str):
        if data is not None:
            with self._lock:
                self._total += len(data)
        return self._inner(data, topic)

    def total_bytes(self) -> int:
        with self._lock:
            return self._total

    def reset(self):
        with self._lock:
            self._total = 0


# ---------------------------------------------------------------------------
# Local codec
# ---------------------------------------------------------------------------

class LocalCodec:
    """Registry-free codec with the same wire framing as RegistryCodec."""

    SCHEMA_IDS = {
        (Format.BINARY, Size.SMALL): 1,
        (Format.BINARY, Size.LARGE): 2,
        (Format.TEXT, Size.SMALL): 3,
        (Format.TEXT, Size.LARGE): 4,
    }

    def __init__(self):
        self._parsed: Dict[Size, Any] = {
            size: fastavro.parse_schema(avro_schema(size)) for size in Size
        }
        self._key = IntegerSerializer()

    def encode_key(self, sequence: int) -> bytes:
        return self._key(sequence, None)

    def value_encoder(self, fmt: Format, size: Size, to_dict=None) -> ValueEncoder:
        header = HEADER.pack(MAGIC_BYTE, self.SCHEMA_IDS[(fmt, size)])

        if fmt is Format.BINARY:
            schema = self._parsed[size]

            def encode(obj, topic):
                buf = io.BytesIO()
                buf.write(header)
                fastavro.schemaless_writer(buf, schema, to_dict(obj) if to_dict else obj)
                return buf.getvalue()
        else:
            def encode(obj, topic):
                body = to_dict(obj) if to_dict else obj
                return header + json.dumps(body, separators=(",", ":")).encode("utf-8")

        return encode

    def value_decoder(self, fmt: Format, size: Size) -> ValueDecoder:
        schema_id = self.SCHEMA_IDS[(fmt, size)]
        schema = self._parsed[size]

        def decode(data, topic):
            if data is None:
                return None
            if len(data) < HEADER.size:
                raise DecodeFailure(f"payload too short ({len(data)} bytes)")
            magic, found_id = HEADER.unpack_from(data)
            if magic != MAGIC_BYTE:
                raise DecodeFailure(f"unknown magic byte {magic}")
            if found_id != schema_id:
                raise DecodeFailure(f"unexpected schema id {found_id} (expected {schema_id})")
            body = data[HEADER.size:]
            try:
                if fmt is Format.BINARY:
                    return fastavro.schemaless_reader(io.BytesIO(body), schema)
                return json.loads(body)
            except Exception as e:
                raise DecodeFailure(f"{type(e).__name__}: {e}") from e

        return decode


# ---------------------------------------------------------------------------
# Schema Registry codec
# ---------------------------------------------------------------------------

SERIALIZER_CONF = {
    "auto.register.schemas": False,
    "use.latest.version": True,
}


def registry_client(settings: SchemaRegistrySettings) -> SchemaRegistryClient:
    conf = {"url": settings.url}
    if settings.basic_auth_user_info:
        conf["basic.auth.user.info"] = settings.basic_auth_user_info
    return SchemaRegistryClient(conf)


class RegistryCodec:
    """Codec backed by Schema Registry; schemas are never auto-registered."""

    def __init__(self, client: SchemaRegistryClient, schema_cache, settings: SchemaRegistrySettings):
        self._client = client
        self._cache = schema_cache
        self._subjects = {Size.SMALL: settings.small_subject, Size.LARGE: settings.large_subject}
        self._key = IntegerSerializer()

    def encode_key(self, sequence: int) -> bytes:
        return self._key(sequence, None)

    def _avro_schema_str(self, size: Size) -> str:
        return self._cache.get(self._subjects[size])

    def value_encoder(self, fmt: Format, size: Size, to_dict=None) -> ValueEncoder:
        adapt = (lambda obj, ctx: to_dict(obj)) if to_dict else None

        if fmt is Format.BINARY:
            serializer = AvroSerializer(
                self._client, self._avro_schema_str(size), to_dict=adapt, conf=SERIALIZER_CONF
            )
        else:
            serializer = JSONSerializer(
                json.dumps(json_schema(size)), self._client, to_dict=adapt, conf=SERIALIZER_CONF
            )

        def encode(obj, topic):
            try:
                return serializer(obj, SerializationContext(topic, MessageField.VALUE))
            except Exception as e:
                raise ProduceFailed(f"{type(e).__name__}: {e}", code="SerializationError") from e

        return encode

    def value_decoder(self, fmt: Format, size: Size) -> ValueDecoder:
        if fmt is Format.BINARY:
            deserializer = AvroDeserializer(self._client, self._avro_schema_str(size))
        else:
            deserializer = JSONDeserializer(json.dumps(json_schema(size)))

        def decode(data, topic):
            if data is None:
                return None
            try:
                return deserializer(data, SerializationContext(topic, MessageField.VALUE))
            except Exception as e:
                raise DecodeFailure(f"{type(e).__name__}: {e}") from e

        return decode
