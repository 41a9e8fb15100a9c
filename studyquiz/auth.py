"""
Email/password authentication on Supabase Auth.

Credentials are validated locally before any request is made; validation
failures raise CredentialsError with a message fit to show the user.
"""
import logging
import os
import re
from typing import Any, Optional

from pydantic import BaseModel, EmailStr, ValidationError, field_validator, model_validator
from supabase import AuthError, Client

from studyquiz.errors import CredentialsError, RejectedError, TransientServiceError

logger = logging.getLogger(__name__)

DEFAULT_APP_URL = "http://localhost:8501"
MIN_PASSWORD_LENGTH = 8
ALREADY_REGISTERED = "This email is already registered. Please sign in instead."


class SignInCredentials(BaseModel):
    email: EmailStr
    password: str

    @field_validator("password")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v:
            raise ValueError("Password is required")
        return v


class SignUpCredentials(BaseModel):
    email: EmailStr
    password: str
    confirm_password: str

    @field_validator("password")
    @classmethod
    def _strong_enough(cls, v: str) -> str:
        if len(v) < MIN_PASSWORD_LENGTH:
            raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        if not re.search(r"[A-Z]", v):
            raise ValueError("Password must contain at least one uppercase letter")
        if not re.search(r"[a-z]", v):
            raise ValueError("Password must contain at least one lowercase letter")
        if not re.search(r"[0-9]", v):
            raise ValueError("Password must contain at least one number")
        return v

    @model_validator(mode="after")
    def _passwords_match(self):
        if self.password != self.confirm_password:
            raise ValueError("Passwords don't match")
        return self


def _first_error(e: ValidationError) -> str:
    error = e.errors()[0]
    if error["loc"] and error["loc"][0] == "email":
        return "Please enter a valid email address"
    return error["msg"].removeprefix("Value error, ")


def validate_sign_up(email: str, password: str, confirm_password: str) -> SignUpCredentials:
    try:
        return SignUpCredentials(email=email, password=password, confirm_password=confirm_password)
    except ValidationError as e:
        raise CredentialsError(_first_error(e)) from e


def validate_sign_in(email: str, password: str) -> SignInCredentials:
    try:
        return SignInCredentials(email=email, password=password)
    except ValidationError as e:
        raise CredentialsError(_first_error(e)) from e


def redirect_url() -> str:
    app_url = os.getenv("APP_URL") or DEFAULT_APP_URL
    return f"{app_url.rstrip('/')}/auth/callback"


class AuthService:
    def __init__(self, client: Client):
        self.client = client

    def sign_up(self, email: str, password: str, confirm_password: str) -> Any:
        """
        Register a user; Supabase sends the verification email.

        Returns:
            The auth response. Its session is None until the email is verified.

        Raises:
            CredentialsError: invalid email or weak/mismatched password
            RejectedError: the email is already registered, or Supabase refused the sign up
        """
        credentials = validate_sign_up(email, password, confirm_password)
        try:
            response = self.client.auth.sign_up({
                "email": credentials.email,
                "password": credentials.password,
                "options": {"email_redirect_to": redirect_url()},
            })
        except AuthError as e:
            if "already registered" in str(e):
                raise RejectedError(ALREADY_REGISTERED) from e
            logger.error(f"Sign up failed for {credentials.email}: {e}")
            raise RejectedError(str(e)) from e
        logger.info(f"Signed up {credentials.email}")
        return response

    def sign_in(self, email: str, password: str) -> Any:
        credentials = validate_sign_in(email, password)
        try:
            return self.client.auth.sign_in_with_password({
                "email": credentials.email,
                "password": credentials.password,
            })
        except AuthError as e:
            logger.warning(f"Sign in failed for {credentials.email}: {e}")
            raise RejectedError(str(e)) from e

    def sign_out(self) -> None:
        try:
            self.client.auth.sign_out()
        except AuthError as e:
            logger.error(f"Error signing out: {e}")
            raise TransientServiceError(str(e)) from e

    def resend_verification_email(self, email: str) -> None:
        try:
            self.client.auth.resend({
                "type": "signup",
                "email": email,
                "options": {"email_redirect_to": redirect_url()},
            })
        except AuthError as e:
            logger.error(f"Failed to resend verification email to {email}: {e}")
            raise TransientServiceError("Failed to resend verification email. Please try again.") from e

    def get_session(self) -> Optional[Any]:
        try:
            return self.client.auth.get_session()
        except AuthError as e:
            logger.error(f"Error getting session: {e}")
            return None

    def get_user(self) -> Optional[Any]:
        try:
            response = self.client.auth.get_user()
        except AuthError as e:
            logger.error(f"Error getting user: {e}")
            return None
        return response.user if response else None
