"""
Admin gateway for privileged routes.

Used as a FastAPI dependency: it resolves the bearer token to a verified
identity, then checks the identity's email against the admin allow-list.

- 401 when the token is missing, malformed or rejected by the verifier. The
  verifier's reason is logged but not returned.
- 403 when the identity is valid but not an admin.

On success the identity is stored on request.state.identity and returned.
The gateway does not write audit entries; handlers record what they changed.
"""
import logging

from fastapi import HTTPException, Request

from identity import Identity, IdentityProviderError, InvalidCredential


logger = logging.getLogger(__name__)

NOT_ADMIN_MESSAGE = "Access denied. You are not an administrator."


def get_bearer_token(request: Request) -> str | None:
	header = request.headers.get("Authorization", "")
	if not header.startswith("Bearer "):
		return None
	token = header.removeprefix("Bearer ").strip()
	return token or None


async def require_admin(request: Request) -> Identity:
	token = get_bearer_token(request)
	if token is None:
		raise HTTPException(status_code=401, detail="Token not provided")

	provider = request.app.state.identity
	try:
		identity = await provider.verify_token(token)
	except InvalidCredential:
		logger.warning(f"Rejected bearer token on {request.method} {request.url.path}")
		raise HTTPException(status_code=401, detail="Invalid token")
	except IdentityProviderError:
		logger.exception("Identity provider unavailable")
		raise HTTPException(status_code=500, detail="Internal server error")

	if not request.app.state.admins.is_authorized(identity.email):
		logger.warning(f"Non-admin {identity.email} denied on {request.method} {request.url.path}")
		raise HTTPException(status_code=403, detail=NOT_ADMIN_MESSAGE)

	request.state.identity = identity
	return identity
