"""Result envelope returned by every conversion."""
from __future__ import annotations

from urllib.parse import parse_qsl, urlencode

from pydantic import BaseModel, ConfigDict, Field


class HTTPRequest(BaseModel):
    """A descriptor for a request that has no SQL equivalent.

    Attributes:
        method: HTTP method.
        url: Path plus query string, relative to the API root.
        headers: Request headers.
        body: Serialized request body, if any.
    """

    model_config = ConfigDict(extra="forbid")

    method: str
    url: str
    headers: dict[str, str] = Field(default_factory=dict)
    body: str | None = None


class RestRequest(BaseModel):
    """A PostgREST-style request in wire form.

    Attributes:
        method: ``GET``, ``POST``, ``PATCH`` or ``DELETE``.
        path: Resource path, e.g. ``/users``.
        query: URL-encoded query string without the leading ``?``.
        headers: Request headers in emission order.
        body: Compact JSON body, if any.
    """

    model_config = ConfigDict(extra="forbid")

    method: str
    path: str
    query: str = ""
    headers: dict[str, str] = Field(default_factory=dict)
    body: str | None = None

    @classmethod
    def from_params(
        cls,
        method: str,
        path: str,
        params: list[tuple[str, str]],
        headers: dict[str, str] | None = None,
        body: str | None = None,
    ) -> RestRequest:
        """Build a request from ordered, undecoded ``(key, value)`` pairs."""
        return cls(
            method=method,
            path=path,
            query=urlencode(params, safe="*,.():{}"),
            headers=dict(headers or {}),
            body=body,
        )

    def params(self) -> list[tuple[str, str]]:
        """Decoded query-string pairs in order, repeated keys kept."""
        return parse_qsl(self.query, keep_blank_values=True)

    def target(self) -> str:
        """Path plus query string."""
        return f"{self.path}?{self.query}" if self.query else self.path

    def url(self, base_url: str = "") -> str:
        return base_url.rstrip("/") + self.target()

    def request_line(self) -> str:
        """The request in ``METHOD /path?query`` form."""
        return f"{self.method} {self.target()}"

    def to_http(self) -> HTTPRequest:
        return HTTPRequest(
            method=self.method,
            url=self.target(),
            headers=dict(self.headers),
            body=self.body,
        )


class ConversionResult(BaseModel):
    """The outcome of one conversion.

    Attributes:
        output: Primary output text (SQL, request line, or DSL).
        warnings: Non-fatal notes; a conversion with warnings still succeeded.
        metadata: String key/value annotations (e.g. ``fk_convention``).
        http: HTTP descriptor for operations that cannot become SQL.
        request: Structured REST output for directions that produce REST.
        http_only: True when the operation has no SQL form.
        description: Plain-language summary of an HTTP-only operation.
    """

    model_config = ConfigDict(extra="forbid")

    output: str = ""
    warnings: list[str] = Field(default_factory=list)
    metadata: dict[str, str] = Field(default_factory=dict)
    http: HTTPRequest | None = None
    request: RestRequest | None = None
    http_only: bool = False
    description: str | None = None
