"""Query IR → PostgREST-style wire request.

``RestBuilder.build`` returns a :class:`ConversionResult` whose ``output``
is the request line (``GET /users?select=*&age=gte.18``) and whose
``request`` holds the structured method, path, query, headers and body.

RPC, auth and storage calls have no SQL form.  They are returned as
HTTP-only results with a plain-language description, an
:class:`HTTPRequest` descriptor where the endpoint is known, and warnings.
"""
from __future__ import annotations

import json
import logging
from typing import Any
from urllib.parse import quote

from querybridge.compile.conventions import split_relation
from querybridge.compile.registry import method_for
from querybridge.schema.operators import LiteralTarget, is_full_text, literalize, wire_operator
from querybridge.schema.profile import DEFAULT_PROFILE, ConversionProfile
from querybridge.schema.query import (
    EmbeddedResource,
    Filter,
    Operation,
    OrderSpec,
    Query,
    ServiceCall,
)
from querybridge.schema.result import ConversionResult, HTTPRequest, RestRequest

logger = logging.getLogger(__name__)

OBJECT_MEDIA_TYPE = "application/vnd.pgrst.object+json"
JSON_MEDIA_TYPE = "application/json"
HTTP_ONLY_WARNING = "This operation cannot be directly represented as SQL"

#: Auth client method → (HTTP method, endpoint).
AUTH_ENDPOINTS: dict[str, tuple[str, str]] = {
    "signUp": ("POST", "/auth/v1/signup"),
    "signInWithPassword": ("POST", "/auth/v1/token?grant_type=password"),
    "signInWithOtp": ("POST", "/auth/v1/otp"),
    "signInWithOAuth": ("GET", "/auth/v1/authorize"),
    "verifyOtp": ("POST", "/auth/v1/verify"),
    "refreshSession": ("POST", "/auth/v1/token?grant_type=refresh_token"),
    "signOut": ("POST", "/auth/v1/logout"),
    "getUser": ("GET", "/auth/v1/user"),
    "updateUser": ("PUT", "/auth/v1/user"),
    "resetPasswordForEmail": ("POST", "/auth/v1/recover"),
}


# ---------------------------------------------------------------------------
# Token rendering
# ---------------------------------------------------------------------------


def filter_token(flt: Filter) -> str:
    """Render ``[not.]op[(config)].value`` for one filter."""
    token = f"{wire_operator(flt.operator, flt.config)}.{literalize(flt.value, flt.operator, target=LiteralTarget.WIRE)}"
    return f"not.{token}" if flt.negated else token


def order_token(specs: list[OrderSpec]) -> str:
    parts = []
    for spec in specs:
        text = f"{spec.column}.{'desc' if spec.descending else 'asc'}"
        if spec.nulls_first:
            text += ".nullsfirst"
        elif spec.nulls_last:
            text += ".nullslast"
        parts.append(text)
    return ",".join(parts)


def select_text(columns: list[str], embeds: list[EmbeddedResource]) -> str:
    """Re-nest columns and embeds into ``col,rel(col,...)`` form."""
    items = list(columns)
    for embed in embeds:
        inner = select_text(embed.columns, embed.embeds) or "*"
        items.append(f"{embed.relation}({inner})")
    return ",".join(items)


def compact_json(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------


class RestBuilder:
    """Builds wire requests from validated Queries.

    Args:
        profile: Conversion profile (base URL, text-search default).
    """

    def __init__(self, profile: ConversionProfile | None = None) -> None:
        self._profile = profile or DEFAULT_PROFILE

    def build(self, query: Query) -> ConversionResult:
        """Build the wire request for ``query``."""
        if query.is_http_only:
            return self.build_http_only(query)

        warnings: list[str] = []
        method = method_for(query.operation)
        params = self._params(query)
        if query.operation is Operation.UPDATE and not query.filters:
            warnings.append("UPDATE without WHERE clause will affect all rows")
        for _, embed in embed_paths(query.embeds, ""):
            if embed.filters and query.operation is not Operation.SELECT:
                warnings.append(f"filters on embedded resource '{embed.relation}' only apply to selects")

        headers = self._headers(query)
        body = None
        if query.operation in (Operation.INSERT, Operation.UPSERT, Operation.UPDATE) and query.body is not None:
            body = compact_json(query.body)
            headers["Content-Type"] = JSON_MEDIA_TYPE

        request = RestRequest.from_params(method, f"/{quote(query.table or '')}", params, headers, body)
        logger.debug("built REST request %s", request.request_line())
        return ConversionResult(
            output=request.request_line(),
            warnings=warnings,
            metadata={"url": request.url(self._profile.base_url)},
            request=request,
        )

    # ------------------------------------------------------------------
    # Query string and headers
    # ------------------------------------------------------------------

    def _params(self, query: Query) -> list[tuple[str, str]]:
        params: list[tuple[str, str]] = []
        if query.operation is Operation.SELECT:
            params.append(("select", select_text(query.columns, query.embeds) or "*"))
        elif (query.columns and query.columns != ["*"]) or query.embeds:
            params.append(("select", select_text(query.columns, query.embeds)))

        for flt in query.filters:
            params.append((flt.column, filter_token(self._with_config(flt))))
        for path, embed in embed_paths(query.embeds, ""):
            for flt in embed.filters:
                params.append((f"{path}.{flt.column}", filter_token(self._with_config(flt))))

        params.extend(("order", order_token([spec])) for spec in query.order)
        for path, embed in embed_paths(query.embeds, ""):
            if embed.order:
                params.append((f"{path}.order", order_token(embed.order)))
            if embed.limit is not None:
                params.append((f"{path}.limit", str(embed.limit)))

        if query.limit is not None:
            params.append(("limit", str(query.limit)))
        if query.offset is not None:
            params.append(("offset", str(query.offset)))
        if query.operation is Operation.UPSERT and query.on_conflict:
            params.append(("on_conflict", ",".join(query.on_conflict)))
        return params

    def _headers(self, query: Query) -> dict[str, str]:
        headers: dict[str, str] = {}
        prefer: list[str] = []
        if query.return_representation or query.maybe_single:
            prefer.append("return=representation")
        if query.count:
            prefer.append(f"count={query.count}")
        if query.operation is Operation.UPSERT:
            prefer.append(f"resolution={query.resolution or 'merge-duplicates'}")
        if prefer:
            headers["Prefer"] = ",".join(prefer)
        if query.range is not None:
            headers["Range"] = f"{query.range.start}-{query.range.end}"
        if query.single or query.maybe_single:
            headers["Accept"] = OBJECT_MEDIA_TYPE
        return headers

    def _with_config(self, flt: Filter) -> Filter:
        default = self._profile.text_search_config
        if default and flt.config is None and is_full_text(flt.operator):
            return flt.model_copy(update={"config": default})
        return flt

    # ------------------------------------------------------------------
    # HTTP-only operations
    # ------------------------------------------------------------------

    def build_http_only(self, query: Query) -> ConversionResult:
        """Describe an RPC, auth or storage call as a bare HTTP request."""
        warnings = [HTTP_ONLY_WARNING]
        request: RestRequest | None = None
        http: HTTPRequest | None = None

        if query.service is None:
            headers = {"Content-Type": JSON_MEDIA_TYPE} if query.body is not None else {}
            params = [(f.column, filter_token(f)) for f in query.filters]
            request = RestRequest.from_params(
                "POST",
                f"/rpc/{query.rpc_function}",
                params,
                headers,
                compact_json(query.body) if query.body is not None else None,
            )
            http = request.to_http()
            description = f"RPC call to function '{query.rpc_function}'"
        elif query.service.namespace == "auth":
            description = f"Supabase Auth operation '{query.service.method}' (not a PostgREST endpoint)"
            warnings.append("Auth operations use Supabase's Auth API, not PostgREST")
            http = _auth_request(query.service)
        else:
            description = f"Supabase Storage operation '{query.service.method}' (not a PostgREST endpoint)"
            warnings.append("Storage operations use Supabase's Storage API, not PostgREST")
            http = _storage_request(query.service, warnings)

        if http is None and query.service is not None:
            warnings.append(f"No HTTP endpoint known for {query.service.namespace}.{query.service.method}")
        output = f"{http.method} {http.url}" if http is not None else description
        logger.debug("HTTP-only operation: %s", description)
        return ConversionResult(
            output=output,
            warnings=warnings,
            http=http,
            request=request,
            http_only=True,
            description=description,
        )


def embed_paths(embeds: list[EmbeddedResource], prefix: str):
    """Yield ``(dotted_path, embed)`` depth-first."""
    for embed in embeds:
        path = f"{prefix}{split_relation(embed.relation).name}"
        yield path, embed
        yield from embed_paths(embed.embeds, f"{path}.")


def _auth_request(call: ServiceCall) -> HTTPRequest | None:
    endpoint = AUTH_ENDPOINTS.get(call.method)
    if endpoint is None:
        return None
    method, url = endpoint
    payload = call.args[0] if call.args and isinstance(call.args[0], dict) else None
    if call.method == "resetPasswordForEmail" and call.args:
        payload = {"email": call.args[0]}
    if method == "GET" or payload is None:
        return HTTPRequest(method=method, url=url)
    return HTTPRequest(
        method=method,
        url=url,
        headers={"Content-Type": JSON_MEDIA_TYPE},
        body=compact_json(payload),
    )


def _storage_request(call: ServiceCall, warnings: list[str]) -> HTTPRequest | None:
    bucket = call.bucket or ""
    args = call.args
    first = str(args[0]) if args else ""

    def obj(prefix: str = "") -> str:
        return f"/storage/v1/object/{prefix}{quote(bucket)}/{quote(first)}"

    def json_request(method: str, url: str, payload: Any) -> HTTPRequest:
        return HTTPRequest(
            method=method,
            url=url,
            headers={"Content-Type": JSON_MEDIA_TYPE},
            body=compact_json(payload),
        )

    if call.method in ("upload", "update"):
        warnings.append("File contents are not represented in the request body")
        return HTTPRequest(method="POST" if call.method == "upload" else "PUT", url=obj())
    if call.method == "download":
        return HTTPRequest(method="GET", url=obj())
    if call.method == "getPublicUrl":
        return HTTPRequest(method="GET", url=obj("public/"))
    if call.method == "createSignedUrl":
        expires = args[1] if len(args) > 1 else 60
        return json_request("POST", obj("sign/"), {"expiresIn": expires})
    if call.method == "remove":
        paths = args[0] if args and isinstance(args[0], list) else [first]
        return json_request("DELETE", f"/storage/v1/object/{quote(bucket)}", {"prefixes": paths})
    if call.method == "list":
        return json_request("POST", f"/storage/v1/object/list/{quote(bucket)}", {"prefix": first})
    if call.method == "move":
        target = str(args[1]) if len(args) > 1 else ""
        return json_request(
            "POST",
            "/storage/v1/object/move",
            {"bucketId": bucket, "sourceKey": first, "destinationKey": target},
        )
    if call.method == "listBuckets":
        return HTTPRequest(method="GET", url="/storage/v1/bucket")
    if call.method == "getBucket":
        return HTTPRequest(method="GET", url=f"/storage/v1/bucket/{quote(first)}")
    if call.method == "createBucket":
        return json_request("POST", "/storage/v1/bucket", {"id": first, "name": first})
    if call.method == "deleteBucket":
        return HTTPRequest(method="DELETE", url=f"/storage/v1/bucket/{quote(first)}")
    return None
