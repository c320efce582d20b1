"""Shared pytest fixtures for querybridge unit tests."""
from __future__ import annotations

import pytest

from querybridge.schema.profile import ConversionProfile


@pytest.fixture(scope="session")
def profile() -> ConversionProfile:
    """Default profile: lenient DSL parsing, one level of embeds."""
    return ConversionProfile.builder().build()


@pytest.fixture(scope="session")
def strict_profile() -> ConversionProfile:
    """Unknown DSL methods raise instead of producing a warning."""
    return ConversionProfile.builder().strict_methods().build()


@pytest.fixture(scope="session")
def deep_profile() -> ConversionProfile:
    """Allows embedded resources two levels deep."""
    return ConversionProfile.builder().embeds(max_depth=2).build()


@pytest.fixture(scope="session")
def fts_profile() -> ConversionProfile:
    return ConversionProfile.builder().text_search("english").build()
