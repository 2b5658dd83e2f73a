# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261019v1
# ---------------------------------------------------------------------------
"""Pydantic request / response models for the key-material endpoint."""

from pydantic import AliasChoices, BaseModel, Field


# -- Requests --------------------------------------------------------------
# Browser and extension clients send camelCase; both spellings are accepted.


class KeyMaterialRequest(BaseModel):
    public_key: str = Field(
        min_length=1,
        validation_alias=AliasChoices("publicKey", "public_key"),
    )


# -- Responses -------------------------------------------------------------
# Only the wrapped blob ever leaves the server – never plaintext.


class KeyMaterialResponse(BaseModel):
    wrapped_user_key: str = Field(alias="wrappedUserKey")

    model_config = {"populate_by_name": True}
