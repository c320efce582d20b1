"""querybridge schema models: Query IR, operator codec, result, profile."""
from querybridge.schema.operators import (
    OPERATOR_TABLE,
    LiteralTarget,
    OperatorSpec,
    OperatorTag,
    decode_token,
    literalize,
    lookup,
)
from querybridge.schema.profile import (
    DEFAULT_PROFILE,
    ConversionProfile,
    ConversionProfileBuilder,
)
from querybridge.schema.query import (
    EmbeddedResource,
    Filter,
    LogicalOp,
    Operation,
    OrderSpec,
    Query,
    RangeSpec,
    ServiceCall,
)
from querybridge.schema.result import ConversionResult, HTTPRequest, RestRequest

__all__ = [
    "OPERATOR_TABLE",
    "LiteralTarget",
    "OperatorSpec",
    "OperatorTag",
    "decode_token",
    "literalize",
    "lookup",
    "DEFAULT_PROFILE",
    "ConversionProfile",
    "ConversionProfileBuilder",
    "EmbeddedResource",
    "Filter",
    "LogicalOp",
    "Operation",
    "OrderSpec",
    "Query",
    "RangeSpec",
    "ServiceCall",
    "ConversionResult",
    "HTTPRequest",
    "RestRequest",
]
