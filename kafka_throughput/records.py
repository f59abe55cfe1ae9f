"""
Test payloads: freight-load CDC rows in two sizes.

Field catalogs are the single source of truth; the Avro schema, the JSON
schema and the record templates are all derived from them.

  small:  27 fields (25 business columns + __test_seq/__test_ts)
  large: 130 fields (128 business columns + __test_seq/__test_ts)

Binary payloads come in two flavours:
  specific  a typed FreightLoad* object, turned into a dict on encode
  generic   a plain dict keyed by Avro field name

Example:
    factory = factory_for(Format.BINARY, Size.SMALL, RecordType.SPECIFIC)
    record = factory.build_template()
    factory.stamp_header(record, 42, "2026-01-15T10:30:00.000000+00:00")
"""

import json
import uuid
from dataclasses import dataclass, make_dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Tuple

from .scenarios import Format, RecordType, Scenario, Size

SEQ_FIELD = "__test_seq"
TS_FIELD = "__test_ts"

# Avro kinds used in the catalogs
INT = "int"
STRING = "string"
BOOLEAN = "boolean"
DECIMAL = "decimal"
TIMESTAMP = "timestamp"

NOW = object()        # replaced with the current UTC time
NEW_GUID = object()   # replaced with a fresh uuid4 string


@dataclass(frozen=True)
class FieldSpec:
    name: str
    kind: str
    value: Any
    nullable: bool = True

    @property
    def attribute(self) -> str:
        """Python attribute name on the specific record class."""
        return self.name.lstrip("_")


def _f(name, kind, value, nullable=True) -> FieldSpec:
    return FieldSpec(name, kind, value, nullable)


_REMARKS = ("Standard delivery - no special handling required. "
            "Customer has dock access available 7AM-5PM weekdays.")

_HEADER = (
    _f(SEQ_FIELD, INT, 0, nullable=False),
    _f(TS_FIELD, STRING, "", nullable=False),
)

SMALL_FIELDS: Tuple[FieldSpec, ...] = (
    _f("Id_", INT, 100001),
    _f("LoadDate", TIMESTAMP, NOW),
    _f("PONumber", INT, 50001, nullable=False),
    _f("CarrierId", INT, 2001),
    _f("CarrierName", STRING, "FastFreight Logistics LLC"),
    _f("DriverId", INT, 3001),
    _f("DriverName", STRING, "John Smith"),
    _f("DeliveryDate", TIMESTAMP, NOW),
    _f("Remarks", STRING, _REMARKS),
    _f("Dispatched_YN", BOOLEAN, True),
    _f("Covered_YN", BOOLEAN, True),
    _f("PayTruckAmount", DECIMAL, Decimal("2500.0000")),
    _f("TrailerType", STRING, "Refrigerated"),
    _f("CustomerName", STRING, "Acme Food Distribution Inc."),
    _f("CustomerPO", STRING, "PO-2024-78543"),
    _f("DateChanged", TIMESTAMP, NOW),
    _f("UniqueId", STRING, NEW_GUID),
    _f("DateCreated", TIMESTAMP, NOW),
    _f("ExpenseTotal", DECIMAL, Decimal("3250.0000")),
    _f("ChargesTotal", DECIMAL, Decimal("4100.0000")),
    _f("Weight", INT, 42000),
    _f("RoadMiles", INT, 487),
    _f("rowguid", STRING, NEW_GUID, nullable=False),
    _f("__cdc_integ_key", STRING, "100001", nullable=False),
    _f("__cdc_op_val", INT, 1, nullable=False),
) + _HEADER

LARGE_FIELDS: Tuple[FieldSpec, ...] = (
    _f("Id_", INT, 100001),
    _f("LoadDate", TIMESTAMP, NOW),
    _f("SystemDate", TIMESTAMP, NOW),
    _f("PONumber", INT, 50001, nullable=False),
    _f("LoadSplitNumber", INT, 1),
    _f("CarrierId", INT, 2001),
    _f("CarrierName", STRING, "FastFreight Logistics LLC"),
    _f("DriverId", INT, 3001),
    _f("DriverName", STRING, "John Smith"),
    _f("DeliveryDate", TIMESTAMP, NOW),
    _f("Remarks", STRING, _REMARKS),
    _f("SalesPersonId", INT, 401),
    _f("SalesPersonName", STRING, "Jane Williams"),
    _f("SavedBySalesPersonId", INT, 402),
    _f("SavedBySalesPersonName", STRING, "Bob Johnson"),
    _f("CheckIn_YN", STRING, "Yes"),
    _f("Dispatched_YN", BOOLEAN, True),
    _f("Covered_YN", BOOLEAN, True),
    _f("Temperature", STRING, "34F"),
    _f("TripMiles", STRING, "487"),
    _f("Inactive_YN", BOOLEAN, False),
    _f("PayCarrier_YN", BOOLEAN, True),
    _f("PayImportDate_YN", BOOLEAN, False),
    _f("BillAllCustomers_YN", BOOLEAN, True),
    _f("BillCustomerImportData_YN", BOOLEAN, False),
    _f("PayTruckAmount", DECIMAL, Decimal("2500.0000")),
    _f("TrailerType", STRING, "Refrigerated"),
    _f("TrailerId", INT, 5001),
    _f("TrailerSize", STRING, "53ft"),
    _f("TrailerSizeId", INT, 2),
    _f("UrgentMessage", BOOLEAN, False),
    _f("PalletExchange", BOOLEAN, True),
    _f("ReceiverUnloading", BOOLEAN, True),
    _f("UnloadingCharges", INT, 150),
    _f("DeliveredOnTime", BOOLEAN, True),
    _f("NeedsAttention", BOOLEAN, False),
    _f("Void", BOOLEAN, False),
    _f("Locked", BOOLEAN, False),
    _f("Claim", BOOLEAN, False),
    _f("TrailerComments", STRING, "Trailer in good condition, reefer unit running at set point."),
    _f("CustomerName", STRING, "Acme Food Distribution Inc."),
    _f("CustomerPO", STRING, "PO-2024-78543"),
    _f("CheckCallList", INT, 3),
    _f("LoadStatusInfo", INT, 5),
    _f("DataChanged", INT, 1),
    _f("DateChanged", TIMESTAMP, NOW),
    _f("SplitLoad", BOOLEAN, False),
    _f("Consignees", STRING, "Warehouse A - Building 7, Dock 12"),
    _f("DriversCellPhone", STRING, "555-867-5309"),
    _f("DateMarkedDelivered", TIMESTAMP, NOW),
    _f("QuickBooksStatus", INT, 2),
    _f("QuickBooksStatusReason", STRING, "Synced"),
    _f("NoSundayCC", BOOLEAN, False),
    _f("DateSentToQB", TIMESTAMP, NOW),
    _f("UniqueId", STRING, NEW_GUID),
    _f("DateCreated", TIMESTAMP, NOW),
    _f("CreatedBy", STRING, "system_import"),
    _f("Computer", STRING, "DISPATCH-PC-04"),
    _f("Dispatcher", STRING, "Mary Thompson"),
    _f("Pallets", INT, 22),
    _f("TimeToCheckBy", TIMESTAMP, NOW),
    _f("NetworkLogon", STRING, "mthompson"),
    _f("AssistantId", INT, 601),
    _f("RoadMiles", INT, 487),
    _f("ExpenseTotal", DECIMAL, Decimal("3250.0000")),
    _f("ChargesTotal", DECIMAL, Decimal("4100.0000")),
    _f("CustomerBillTotal", DECIMAL, Decimal("4500.0000")),
    _f("Weight", INT, 42000),
    _f("ChargeCustomerUnloadingTotal", DECIMAL, Decimal("150.0000")),
    _f("PayCarrierUnloadingTotal", DECIMAL, Decimal("100.0000")),
    _f("CurrentCarrierStatus", INT, 4),
    _f("VoidReason", STRING, None),
    _f("DeliveredLoadChange", BOOLEAN, False),
    _f("InternalDatSearch", INT, 0),
    _f("DriverReload", BOOLEAN, False),
    _f("MinPayTruck", DECIMAL, Decimal("2000.0000")),
    _f("MaxPayTruck", DECIMAL, Decimal("3000.0000")),
    _f("DateTurnedIn", TIMESTAMP, NOW),
    _f("CarrierUniqueId", STRING, NEW_GUID),
    _f("rowguid", STRING, NEW_GUID, nullable=False),
    _f("NightCoverLoad", INT, 0),
    _f("SendToCRS", BOOLEAN, False),
    _f("NeedAppointment", INT, 1),
    _f("OKForComcheck", INT, 1),
    _f("ComcheckAmount", STRING, "500.00"),
    _f("CSATask", STRING, "Standard safety verification complete"),
    _f("CustomerRCDate", TIMESTAMP, NOW),
    _f("DriverUniqueId", STRING, NEW_GUID),
    _f("Lane", STRING, "CHI-DAL"),
    _f("CSAUserID", INT, 701),
    _f("RecordStatus", INT, 1),
    _f("LabelPrinted", INT, 1),
    _f("GPStatus", INT, 0),
    _f("Location", INT, 3),
    _f("IDATRadius", INT, 100),
    _f("LoadCommodityType", INT, 2),
    _f("PickupCount", INT, 1),
    _f("DropCount", INT, 1),
    _f("PracticalMiles", INT, 492),
    _f("ShortMiles", INT, 480),
    _f("DispatcherUniqueID", STRING, NEW_GUID),
    _f("CaseCount", INT, 440),
    _f("ServiceType", INT, 1),
    _f("HazmatIndicator", INT, 0),
    _f("LoadValue", INT, 3),
    _f("TemperatureCategory", INT, 2),
    _f("LoadCommodityOther", STRING, None),
    _f("LoadBoardUserId", INT, 801),
    _f("RateType", INT, 1),
    _f("IsCustomerChargingLateFee", BOOLEAN, False),
    _f("ExactLoadValue", DECIMAL, Decimal("4500.0000")),
    _f("CustomerId", INT, 9001),
    _f("Driver2Id", INT, None),
    _f("Driver2Name", STRING, None),
    _f("Driver2CellPhone", STRING, None),
    _f("Driver2UniqueId", STRING, None),
    _f("TeamCover", BOOLEAN, False),
    _f("EmergencyCover", BOOLEAN, False),
    _f("DateSentToAccounting", TIMESTAMP, NOW),
    _f("SentToAccountingByUserId", INT, 402),
    _f("ReeferCheckInDate", TIMESTAMP, NOW),
    _f("ContainerNumber", STRING, "CNTR-2024-98765"),
    _f("TrailerNumber", STRING, "TRL-53-4421"),
    _f("__cdc_cap_tstamp", STRING, "2024-01-15T10:30:00.000Z"),
    _f("__cdc_changedby_user", STRING, "cdc_service"),
    _f("__cdc_integ_key", STRING, "100001", nullable=False),
    _f("__cdc_integ_tstamp", STRING, "2024-01-15T10:30:00.000Z"),
    _f("__cdc_op_val", INT, 1, nullable=False),
) + _HEADER

CATALOGS = {Size.SMALL: SMALL_FIELDS, Size.LARGE: LARGE_FIELDS}
RECORD_NAMES = {Size.SMALL: "FreightLoadSmall", Size.LARGE: "FreightLoadLarge"}
AVRO_NAMESPACE = "throughput.freight"


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

_AVRO_TYPES = {
    INT: "int",
    STRING: "string",
    BOOLEAN: "boolean",
    DECIMAL: {"type": "bytes", "logicalType": "decimal", "precision": 19, "scale": 4},
    TIMESTAMP: {"type": "long", "logicalType": "timestamp-millis"},
}

_JSON_TYPES = {
    INT: "integer",
    STRING: "string",
    BOOLEAN: "boolean",
    DECIMAL: "number",
    TIMESTAMP: "integer",
}


def avro_schema(size: Size) -> Dict[str, Any]:
    fields = []
    for spec in CATALOGS[size]:
        avro_type = _AVRO_TYPES[spec.kind]
        if spec.nullable:
            fields.append({"name": spec.name, "type": ["null", avro_type], "default": None})
        else:
            fields.append({"name": spec.name, "type": avro_type})
    return {
        "type": "record",
        "name": RECORD_NAMES[size],
        "namespace": AVRO_NAMESPACE,
        "fields": fields,
    }


def json_schema(size: Size) -> Dict[str, Any]:
    properties = {}
    for spec in CATALOGS[size]:
        json_type = _JSON_TYPES[spec.kind]
        properties[spec.name] = {"type": [json_type, "null"] if spec.nullable else json_type}
    return {
        "$schema": "http://json-schema.org/draft-07/schema#",
        "title": RECORD_NAMES[size],
        "type": "object",
        "properties": properties,
        "required": [s.name for s in CATALOGS[size] if not s.nullable],
    }


def default_avro_schemas(small_subject: str, large_subject: str) -> Dict[str, str]:
    """Bundled schema text per registry subject, used to seed the local cache."""
    return {
        small_subject: json.dumps(avro_schema(Size.SMALL), indent=2),
        large_subject: json.dumps(avro_schema(Size.LARGE), indent=2),
    }


# ---------------------------------------------------------------------------
# Specific record classes
# ---------------------------------------------------------------------------

def _record_class(size: Size):
    return make_dataclass(
        RECORD_NAMES[size],
        [(spec.attribute, Any, field(default=None)) for spec in CATALOGS[size]],
    )


FreightLoadSmall = _record_class(Size.SMALL)
FreightLoadLarge = _record_class(Size.LARGE)
RECORD_CLASSES = {Size.SMALL: FreightLoadSmall, Size.LARGE: FreightLoadLarge}


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

def _to_epoch_ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


@dataclass(frozen=True)
class DataFactory:
    """Builds one template record per trial and stamps the header per send."""

    format: Format
    size: Size
    record_type: RecordType

    @property
    def fields(self) -> Tuple[FieldSpec, ...]:
        return CATALOGS[self.size]

    @property
    def is_specific(self) -> bool:
        return self.record_type is RecordType.SPECIFIC

    def _value(self, spec: FieldSpec, now: datetime):
        value = spec.value
        if value is NOW:
            value = now
        elif value is NEW_GUID:
            value = str(uuid.uuid4())
        if self.format is Format.TEXT and value is not None:
            if spec.kind == TIMESTAMP:
                value = _to_epoch_ms(value)
            elif spec.kind == DECIMAL:
                value = float(value)
        return value

    def build_template(self):
        now = datetime.now(timezone.utc)
        values = {spec.name: self._value(spec, now) for spec in self.fields}
        if self.is_specific:
            cls = RECORD_CLASSES[self.size]
            return cls(**{spec.attribute: values[spec.name] for spec in self.fields})
        return values

    def stamp_header(self, record, sequence: int, timestamp: str):
        if self.is_specific:
            record.test_seq = sequence
            record.test_ts = timestamp
        else:
            record[SEQ_FIELD] = sequence
            record[TS_FIELD] = timestamp

    def to_dict(self, record) -> Dict[str, Any]:
        if self.is_specific:
            return {spec.name: getattr(record, spec.attribute) for spec in self.fields}
        return record


def factory_for(fmt: Format, size: Size, record_type: RecordType = RecordType.NOT_APPLICABLE) -> DataFactory:
    if fmt is Format.TEXT:
        record_type = RecordType.NOT_APPLICABLE
    elif record_type is RecordType.NOT_APPLICABLE:
        record_type = RecordType.GENERIC
    return DataFactory(fmt, size, record_type)


# ---------------------------------------------------------------------------
# Tagged payload variants
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Payload:
    """Factory plus the value encoder that matches its variant."""

    variant: str
    factory: DataFactory
    encode: Callable[[Any, str], bytes]


def payload_for(scenario: Scenario, codec) -> Payload:
    factory = factory_for(scenario.format, scenario.size, scenario.record_type)

    if scenario.format is Format.TEXT:
        variant = "text"
        encode = codec.value_encoder(Format.TEXT, scenario.size)
    elif factory.is_specific:
        variant = "binary-specific"
        encode = codec.value_encoder(Format.BINARY, scenario.size, to_dict=factory.to_dict)
    else:
        variant = "binary-generic"
        encode = codec.value_encoder(Format.BINARY, scenario.size)

    return Payload(variant, factory, encode)


def field_names(size: Size) -> List[str]:
    return [spec.name for spec in CATALOGS[size]]
