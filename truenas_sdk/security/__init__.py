from .auth import Authenticator, LOGIN_METHOD

__all__ = ["Authenticator", "LOGIN_METHOD"]
