# api/deps.py
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from core import security
from core.errors import Unauthorized
from db.session import get_db  # noqa: F401  (re-exported for routers and test overrides)
from services.evaluation import EvaluationPipeline
from services.provider_client import ProviderClient


bearer_scheme = HTTPBearer(auto_error=False)


class Principal(BaseModel):
    id: str


def get_current_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Principal:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise Unauthorized("Not authenticated")
    try:
        payload = security.decode_token(credentials.credentials)
    except security.JWTError:
        raise Unauthorized("Could not validate credentials")

    sub = payload.get("sub")
    if not sub:
        raise Unauthorized("Could not validate credentials")
    return Principal(id=str(sub))


def get_evaluation_pipeline() -> EvaluationPipeline:
    return EvaluationPipeline()


def get_provider_client() -> ProviderClient:
    return ProviderClient()
