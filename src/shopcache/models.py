"""Canonical Pydantic models shared across all shopcache modules.

This is the single source of truth for data shapes in the project. The
models fall into two groups:

**Configuration models** -- serialised as JSON in the user's config directory
or a project-local ``shopcache.json``:
    :class:`RequestConfig` and :class:`ShopConfig`.

**Resource descriptors** -- static, immutable declarations of every fetchable
resource, consumed by :class:`~shopcache.registry.ResourceRegistry`:
    :class:`CollectionDescriptor`, :class:`AssetDescriptor`, and
    :class:`ChildCollectionDescriptor`.

Descriptors are frozen so that a registry built at startup can never be
mutated afterwards.
"""

from __future__ import annotations

import enum
from typing import Any, Callable, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


# --- Configuration ---


class RequestConfig(BaseModel):
    """HTTP settings applied to every request the cache issues."""

    timeout: int = Field(default=30, description="Request timeout in seconds")
    verify_ssl: bool = Field(default=True, description="Verify SSL certificates")
    with_credentials: bool = Field(
        default=True, description="Send cookies with resource requests"
    )


class ShopConfig(BaseModel):
    """Connection settings for one storefront app backend.

    Loaded by :func:`~shopcache.config.resolve_config`, which layers CLI
    arguments, ``SHOPIFY_APP_*`` environment variables, the project config
    and the user config on top of these defaults.

    Example::

        ShopConfig(
            app_host="https://mighty-castle-29807.herokuapp.com",
            shop="ezracelli-dev",
            theme_id="72508506189",
        )
    """

    model_config = ConfigDict(extra="ignore")

    app_host: str = Field(description="Base URL of the app backend, without /api")
    shop: str = Field(description="Shop handle or full myshopify.com domain")
    theme_id: Optional[str] = Field(
        default=None, description="Theme whose assets are served"
    )
    request: RequestConfig = Field(default_factory=RequestConfig)

    @field_validator("app_host")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("theme_id", mode="before")
    @classmethod
    def _theme_id_as_str(cls, value: Any) -> Any:
        if isinstance(value, int):
            return str(value)
        return value

    @property
    def shop_domain(self) -> str:
        """The shop's myshopify.com domain."""
        if "." in self.shop:
            return self.shop
        return f"{self.shop}.myshopify.com"

    @property
    def global_query(self) -> dict[str, str]:
        """Query parameters merged into every request."""
        return {"shop": self.shop_domain}


# --- Resource Descriptors ---


class ResourceKind(str, enum.Enum):
    """The three shapes a fetchable resource can take."""

    COLLECTION = "collection"
    ASSET = "asset"
    CHILD_COLLECTION = "child_collection"


def _identity(value: Any) -> Any:
    return value


class CollectionDescriptor(BaseModel):
    """A flat, homogeneous collection of entities that each carry an ``id``.

    Served at ``GET {app_host}/api/{endpoint_path}`` and unwrapped from the
    response field named after the resource.
    """

    model_config = ConfigDict(frozen=True)

    kind: ResourceKind = Field(default=ResourceKind.COLLECTION, frozen=True)
    name: str
    endpoint_path: Optional[str] = Field(
        default=None, description="Path below /api; defaults to name"
    )

    @property
    def path(self) -> str:
        return self.endpoint_path or self.name

    @property
    def slot(self) -> str:
        return self.name


class AssetDescriptor(BaseModel):
    """A single theme asset, fetched by key from the theme asset store.

    ``extract_value`` is a pure projection applied to the ``asset`` object
    of the response before it is stored.

    Example::

        AssetDescriptor(
            name="settingsData",
            folder="config",
            filename="settings_data.json",
            search_fields=["value"],
            extract_value=lambda asset: json.loads(asset["value"]),
        )
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    kind: ResourceKind = Field(default=ResourceKind.ASSET, frozen=True)
    name: str
    folder: str
    filename: str
    search_fields: tuple[str, ...] = Field(default_factory=tuple)
    extract_value: Callable[[Any], Any] = Field(default=_identity, exclude=True)
    search_overrides_global: bool = Field(
        default=False,
        description="Let search parameters win over global parameters on conflict",
    )

    @property
    def asset_key(self) -> str:
        return f"{self.folder}/{self.filename}"

    @property
    def slot(self) -> str:
        return self.name

    @property
    def search_params(self) -> dict[str, str]:
        """Descriptor-specific query parameters."""
        if not self.search_fields:
            return {}
        return {"fields": ",".join(self.search_fields)}


class ChildCollectionDescriptor(BaseModel):
    """A collection partitioned by the id of an entity in a parent collection.

    Served at ``GET {app_host}/api/{parent_name}/{parent_id}/{child_name}``
    and stored in a keyed map (parent id -> child list) rather than a
    single list.
    """

    model_config = ConfigDict(frozen=True)

    kind: ResourceKind = Field(default=ResourceKind.CHILD_COLLECTION, frozen=True)
    parent_name: str
    child_name: str

    @property
    def name(self) -> str:
        return self.child_name

    @property
    def slot(self) -> str:
        return self.child_name


Descriptor = Union[CollectionDescriptor, AssetDescriptor, ChildCollectionDescriptor]
