from fastapi import Header, HTTPException, Request
from jose import JWTError, jwt


def verify_token(request: Request, authorization: str | None = Header(None)) -> dict:
    """Bearer-token guard for the admin order endpoints; returns the JWT claims."""
    secret = request.app.state.settings.jwt_secret
    try:
        if not secret or not authorization:
            raise JWTError("missing token or secret")
        scheme, token = authorization.split()
        if scheme.lower() != "bearer":
            raise JWTError("not a bearer token")
        return jwt.decode(token, secret, algorithms=["HS256"])
    except (JWTError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid or missing token")


def token_subject(claims: dict) -> str | None:
    return claims.get("sub") or claims.get("email")
