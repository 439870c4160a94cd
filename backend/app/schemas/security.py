from pydantic import BaseModel


class CsrfTokenResponse(BaseModel):
    token: str
