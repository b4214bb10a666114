from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class _CamelModel(BaseModel):
    """Wire models use the backend's camelCase names; Python code uses snake_case."""

    model_config = ConfigDict(populate_by_name=True)


class LegacyListenRequest(_CamelModel):
    nft_address: str = Field(alias="nftAddress")
    collection_address: str = Field(alias="collectionAddress")


class SessionListenRequest(_CamelModel):
    nft_address: str = Field(alias="nftAddress")
    timestamp: int  # milliseconds since epoch


class SessionListenResponse(_CamelModel):
    success: bool
    user_listen_count: int = Field(default=0, alias="userListenCount")
    message: str = ""


class MusicApiKeyResponse(_CamelModel):
    api_key: str = Field(alias="apiKey")
    expires_at: datetime = Field(alias="expiresAt")
    music_server_url: str = Field(alias="musicServerUrl")


class GenerationRequest(_CamelModel):
    metadata: dict[str, Any] = Field(default_factory=dict)
    index: Optional[int] = None
    address: Optional[str] = None
