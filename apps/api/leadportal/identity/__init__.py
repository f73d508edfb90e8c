from leadportal.identity.errors import IdentityError, IdentityUnavailableError, InvalidTokenError, TokenExpiredError
from leadportal.identity.gateway import FirebaseIdentityGateway, IdentityGateway, IdentityUser, get_identity_gateway

__all__ = [
    "FirebaseIdentityGateway",
    "IdentityError",
    "IdentityGateway",
    "IdentityUnavailableError",
    "IdentityUser",
    "InvalidTokenError",
    "TokenExpiredError",
    "get_identity_gateway",
]
