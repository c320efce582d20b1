"""Pydantic model for the ConversionProfile shared by parsers and builders.

The profile carries every tunable of a conversion: input bounds, embed depth,
the foreign-key naming convention and how lenient the DSL parser is.  Create
one through the builder::

    from querybridge import ConversionProfile

    profile = (
        ConversionProfile.builder()
        .strict_methods()
        .client_name("db")
        .foreign_keys(template="{table}_fk", primary_key="pk")
        .build()
    )

Every conversion function accepts ``profile=None`` and falls back to
:data:`DEFAULT_PROFILE`.
"""
from __future__ import annotations

import re

from pydantic import BaseModel, ConfigDict

from querybridge.errors import ProfileConfigError

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_$][\w$]*$")


class ConversionProfile(BaseModel):
    """Settings for a single conversion.

    Always created via :meth:`builder` in application code; the defaults
    are available as :data:`DEFAULT_PROFILE`.

    Attributes:
        strict_methods: Reject unknown DSL methods instead of ignoring them.
        client_name: Client identifier emitted by the DSL builder.
        base_url: API root used when rendering absolute URLs.
        max_input_length: Longest accepted DSL/SQL input, in characters.
        max_nesting_depth: Deepest accepted bracket nesting.
        max_embed_depth: Deepest accepted embedded-resource nesting.
        fk_template: Foreign-key column name on the embedded relation;
            ``{table}`` is replaced by the parent table.
        primary_key: Parent primary-key column, also the default upsert
            conflict target.
        text_search_config: Default configuration for full-text filters.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    strict_methods: bool = False
    client_name: str = "supabase"
    base_url: str = "http://localhost:3000"
    max_input_length: int = 20_000
    max_nesting_depth: int = 32
    max_embed_depth: int = 1
    fk_template: str = "{table}_id"
    primary_key: str = "id"
    text_search_config: str | None = None

    @classmethod
    def builder(cls) -> ConversionProfileBuilder:
        """Return a :class:`ConversionProfileBuilder` seeded with defaults."""
        return ConversionProfileBuilder()


class ConversionProfileBuilder:
    """Fluent builder for :class:`ConversionProfile`.

    Each method sets one independent group of settings and returns the
    builder, so calls can be chained in any order::

        profile = (
            ConversionProfile.builder()
            .limits(max_input_length=5_000, max_nesting_depth=8)
            .embeds(max_depth=2)
            .build()
        )
    """

    def __init__(self) -> None:
        defaults = ConversionProfile()
        self._strict_methods = defaults.strict_methods
        self._client_name = defaults.client_name
        self._base_url = defaults.base_url
        self._max_input_length = defaults.max_input_length
        self._max_nesting_depth = defaults.max_nesting_depth
        self._max_embed_depth = defaults.max_embed_depth
        self._fk_template = defaults.fk_template
        self._primary_key = defaults.primary_key
        self._text_search_config = defaults.text_search_config

    def strict_methods(self, enabled: bool = True) -> ConversionProfileBuilder:
        """Reject unrecognized DSL methods with ``UNKNOWN_METHOD``."""
        self._strict_methods = enabled
        return self

    def client_name(self, name: str) -> ConversionProfileBuilder:
        self._client_name = name
        return self

    def base_url(self, url: str) -> ConversionProfileBuilder:
        self._base_url = url
        return self

    def limits(
        self,
        max_input_length: int | None = None,
        max_nesting_depth: int | None = None,
    ) -> ConversionProfileBuilder:
        """Bound the size and bracket nesting of accepted input."""
        if max_input_length is not None:
            self._max_input_length = max_input_length
        if max_nesting_depth is not None:
            self._max_nesting_depth = max_nesting_depth
        return self

    def embeds(self, max_depth: int) -> ConversionProfileBuilder:
        """Allow embedded resources up to ``max_depth`` levels deep."""
        self._max_embed_depth = max_depth
        return self

    def foreign_keys(
        self,
        template: str | None = None,
        primary_key: str | None = None,
    ) -> ConversionProfileBuilder:
        """Change the naming convention used to guess JOIN conditions.

        Args:
            template: FK column on the embedded relation, with a
                ``{table}`` placeholder for the parent table name.
            primary_key: Parent primary-key column.
        """
        if template is not None:
            self._fk_template = template
        if primary_key is not None:
            self._primary_key = primary_key
        return self

    def text_search(self, config: str) -> ConversionProfileBuilder:
        """Default text-search configuration for full-text filters."""
        self._text_search_config = config
        return self

    def build(self) -> ConversionProfile:
        """Validate the settings and return the :class:`ConversionProfile`.

        Raises:
            ProfileConfigError: If a limit is not positive, the FK template
                lacks its placeholder, or a name is not an identifier.
        """
        self._validate()
        return ConversionProfile(
            strict_methods=self._strict_methods,
            client_name=self._client_name,
            base_url=self._base_url,
            max_input_length=self._max_input_length,
            max_nesting_depth=self._max_nesting_depth,
            max_embed_depth=self._max_embed_depth,
            fk_template=self._fk_template,
            primary_key=self._primary_key,
            text_search_config=self._text_search_config,
        )

    # ------------------------------------------------------------------
    # Internal validation
    # ------------------------------------------------------------------

    def _validate(self) -> None:
        for setting, value in (
            ("max_input_length", self._max_input_length),
            ("max_nesting_depth", self._max_nesting_depth),
        ):
            if value < 1:
                raise ProfileConfigError(
                    f"{setting} must be a positive integer, got {value}.",
                    setting=setting,
                )
        if self._max_embed_depth < 0:
            raise ProfileConfigError(
                f"max_embed_depth must not be negative, got {self._max_embed_depth}.",
                setting="max_embed_depth",
            )
        if "{table}" not in self._fk_template:
            raise ProfileConfigError(
                f"fk_template '{self._fk_template}' must contain the '{{table}}' "
                "placeholder.",
                setting="fk_template",
            )
        try:
            self._fk_template.format(table="t")
        except (KeyError, IndexError, ValueError) as exc:
            raise ProfileConfigError(
                f"fk_template '{self._fk_template}' may only use the '{{table}}' "
                f"placeholder ({exc!r}).",
                setting="fk_template",
            ) from exc
        for setting, value in (
            ("client_name", self._client_name),
            ("primary_key", self._primary_key),
        ):
            if not _IDENTIFIER_RE.match(value):
                raise ProfileConfigError(
                    f"{setting} '{value}' is not a valid identifier.",
                    setting=setting,
                )
        if not self._base_url.startswith(("http://", "https://")):
            raise ProfileConfigError(
                f"base_url '{self._base_url}' must start with http:// or https://.",
                setting="base_url",
            )


#: Profile used when a conversion is called without one.
DEFAULT_PROFILE = ConversionProfile()
