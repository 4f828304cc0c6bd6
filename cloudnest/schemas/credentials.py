"""
Credential bundles for storage backends.

Each backend kind carries its own credential shape. The bundle is a tagged
union on ``kind`` so validation and probing can match on the concrete type
instead of poking at an untyped dict.
"""
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, model_validator

from cloudnest.models.storage_backend import BackendKind


class S3CompatibleCredentials(BaseModel):
    """Access keys for AWS S3, Cloudflare R2 or Wasabi."""
    kind: Literal["aws", "cloudflare", "wasabi"]
    access_key_id: str = Field(..., min_length=1)
    secret_access_key: str = Field(..., min_length=1)
    bucket: str = Field(..., min_length=3, max_length=63)
    region: Optional[str] = None
    endpoint: Optional[str] = None
    account_id: Optional[str] = None  # Cloudflare R2 only
    secure: bool = True

    @model_validator(mode="after")
    def check_kind_fields(self):
        if self.kind == "cloudflare" and not self.account_id:
            raise ValueError("account_id is required for Cloudflare R2")
        if self.kind in ("aws", "wasabi") and not self.region:
            raise ValueError(f"region is required for {self.kind}")
        return self

    @property
    def resolved_endpoint(self) -> str:
        """Host[:port] of the S3 API, without scheme."""
        if self.endpoint:
            endpoint = self.endpoint
        elif self.kind == "aws":
            endpoint = f"s3.{self.region}.amazonaws.com"
        elif self.kind == "cloudflare":
            endpoint = f"{self.account_id}.r2.cloudflarestorage.com"
        else:
            endpoint = f"s3.{self.region}.wasabisys.com"
        for scheme in ("https://", "http://"):
            if endpoint.startswith(scheme):
                endpoint = endpoint[len(scheme):]
        return endpoint.rstrip("/")

    def redacted(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "access_key_id": _mask(self.access_key_id),
            "secret_access_key": "********",
            "bucket": self.bucket,
            "region": self.region,
            "endpoint": self.resolved_endpoint,
            "account_id": self.account_id,
        }


class EmbeddedStoreCredentials(BaseModel):
    """Connection details for the database-backed blob store."""
    kind: Literal["embedded"]
    database_url: str = Field(..., min_length=1)
    bucket_name: str = Field(default="uploads", min_length=1, max_length=100)

    def redacted(self) -> Dict[str, Any]:
        scheme = self.database_url.split("://", 1)[0]
        return {
            "kind": self.kind,
            "database_url": f"{scheme}://********",
            "bucket_name": self.bucket_name,
        }


BackendCredentials = Annotated[
    Union[S3CompatibleCredentials, EmbeddedStoreCredentials],
    Field(discriminator="kind"),
]

_credentials_adapter = TypeAdapter(BackendCredentials)


def _mask(value: str) -> str:
    if len(value) <= 4:
        return "****"
    return value[:4] + "*" * (len(value) - 4)


def parse_credentials(kind: BackendKind, data: Dict[str, Any]):
    """
    Validate a raw credential dict for the given backend kind.

    Raises:
        pydantic.ValidationError: if the bundle does not match the kind's shape
    """
    payload = dict(data or {})
    payload["kind"] = BackendKind(kind).value
    return _credentials_adapter.validate_python(payload)
