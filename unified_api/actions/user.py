"""
User actions: profile read/update, password change and the admin user list.
"""

from typing import Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

from ..errors import AuthorizationError, NotFoundError, ValidationError
from ..logging_config import audit_log
from ..registry import ActionHandler
from ..responses import ActionResult, PaginatedResult, PaginationInfo
from ..util import BCRYPT_MAX_BYTES, hash_password, isoformat_utc, verify_password
from .helpers import build_documentation, example, log_action, validate_with_model

# Keeps OFFSET and id lookups inside sqlite's signed 64-bit INTEGER range.
MAX_PAGE = 1_000_000
MAX_ID = 2 ** 63 - 1

USER_EXAMPLE = {
    "id": 1,
    "name": "Jane Doe",
    "email": "jane@example.com",
    "is_admin": False,
    "created_at": "2024-01-01T00:00:00Z",
    "updated_at": "2024-01-01T00:00:00Z",
}


class UserInfoParams(BaseModel):
    user_id: Optional[int] = Field(None, ge=1, le=MAX_ID, description="User to look up; defaults to the caller")


class UserInfoAction(ActionHandler):
    action_type = "user.info"
    parameter_model = UserInfoParams

    def required_capabilities(self):
        return ["user.read"]

    def validate(self, params):
        return validate_with_model(self.parameter_model, params)

    def execute(self, context):
        identity = context.identity
        target_id = context.params.user_id or identity.user_id
        if target_id != identity.user_id and not (identity.is_admin or identity.has_capability("admin.read")):
            raise AuthorizationError(
                "Viewing another user requires admin.read",
                details={"missing_capabilities": ["admin.read"]},
            )
        user = self.services.users.get(target_id)
        if user is None:
            raise NotFoundError("User not found", details={"user_id": target_id})
        return {"user": user.to_public_dict()}

    def describe(self):
        return build_documentation(
            self,
            name="User information",
            description="Returns the profile of the caller, or of another user for administrators.",
            examples=[
                example(self.action_type, "Own profile", data={"user": USER_EXAMPLE}),
                example(self.action_type, "Another user", {"user_id": 2}),
            ],
        )


class UpdateProfileParams(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=255, description="Display name")
    email: Optional[EmailStr] = Field(None, max_length=255, description="Email address, unique per user")

    @model_validator(mode="after")
    def _something_to_update(self):
        if self.name is None and self.email is None:
            raise ValueError("At least one of name or email is required")
        return self


class UpdateProfileAction(ActionHandler):
    action_type = "user.update"
    parameter_model = UpdateProfileParams

    def required_capabilities(self):
        return ["user.update"]

    def validate(self, params):
        return validate_with_model(self.parameter_model, params)

    def execute(self, context):
        user_id = context.identity.user_id
        params = context.params
        changes = {}
        if params.name is not None:
            changes["name"] = params.name
        if params.email is not None:
            email = str(params.email)
            if self.services.users.email_taken(email, exclude_user_id=user_id):
                raise ValidationError.for_field("email", "This email address is already in use")
            changes["email"] = email

        user = self.services.users.update(user_id, **changes)
        log_action(self, "Profile updated", user_id=user_id, updated_fields=sorted(changes))
        return ActionResult({"user": user.to_public_dict()}, "Profile updated")

    def describe(self):
        return build_documentation(
            self,
            name="Update profile",
            description="Changes the caller's name and/or email address.",
            examples=[
                example(self.action_type, "Rename", {"name": "Jane Smith"}, {"user": USER_EXAMPLE}),
            ],
        )


class ChangePasswordParams(BaseModel):
    current_password: str = Field(..., min_length=1, description="Current password")
    new_password: str = Field(..., min_length=8, description="New password, at least 8 characters")
    new_password_confirmation: str = Field(..., min_length=8, description="Must equal new_password")

    @field_validator("new_password")
    @classmethod
    def _fits_bcrypt(cls, value):
        if len(value.encode("utf-8")) > BCRYPT_MAX_BYTES:
            raise ValueError(f"Password must be at most {BCRYPT_MAX_BYTES} bytes")
        return value

    @field_validator("new_password_confirmation")
    @classmethod
    def _confirmed(cls, value, info):
        if "new_password" in info.data and value != info.data["new_password"]:
            raise ValueError("Confirmation does not match new_password")
        return value


class ChangePasswordAction(ActionHandler):
    action_type = "user.change_password"
    parameter_model = ChangePasswordParams

    def required_capabilities(self):
        return ["user.change_password"]

    def validate(self, params):
        return validate_with_model(self.parameter_model, params)

    def execute(self, context):
        users = self.services.users
        user = users.get(context.identity.user_id)
        params = context.params

        if not verify_password(params.current_password, user.password_hash):
            audit_log.security_event("password_change_rejected", user_id=user.id)
            raise ValidationError.for_field("current_password", "Current password is incorrect")
        if verify_password(params.new_password, user.password_hash):
            raise ValidationError.for_field("new_password", "New password must differ from the current password")

        user = users.update(user.id, password_hash=hash_password(params.new_password))
        log_action(self, "Password changed", user_id=user.id)
        return ActionResult(
            {"message": "Password changed", "updated_at": isoformat_utc(user.updated_at)},
            "Password changed",
        )

    def describe(self):
        return build_documentation(
            self,
            name="Change password",
            description="Replaces the caller's password after checking the current one.",
            examples=[
                example(
                    self.action_type,
                    "Change password",
                    {
                        "current_password": "old-password",
                        "new_password": "new-password-123",
                        "new_password_confirmation": "new-password-123",
                    },
                    {"message": "Password changed"},
                ),
            ],
            notes=["Existing tokens stay valid after a password change."],
        )


class UserListParams(BaseModel):
    page: int = Field(1, ge=1, le=MAX_PAGE, description="Page number")
    per_page: int = Field(15, ge=1, le=100, description="Items per page")
    search: Optional[str] = Field(None, max_length=255, description="Substring match on name or email")
    sort_by: Literal["id", "name", "email", "created_at", "updated_at"] = Field(
        "created_at", description="Sort column"
    )
    sort_order: Literal["asc", "desc"] = Field("desc", description="Sort direction")


class UserListAction(ActionHandler):
    action_type = "user.list"
    parameter_model = UserListParams

    def required_capabilities(self):
        return ["user.list"]

    def validate(self, params):
        return validate_with_model(self.parameter_model, params)

    def execute(self, context):
        params = context.params
        users, total = self.services.users.search(
            search=params.search,
            sort_by=params.sort_by,
            sort_order=params.sort_order,
            limit=params.per_page,
            offset=(params.page - 1) * params.per_page,
        )
        pagination = PaginationInfo.from_counts(total, params.page, params.per_page)
        log_action(
            self,
            "User list queried",
            user_id=context.identity.user_id,
            search=params.search,
            total_results=total,
            current_page=params.page,
        )
        return PaginatedResult([u.to_public_dict() for u in users], pagination)

    def describe(self):
        return build_documentation(
            self,
            name="List users",
            description="Paginated user list with search and sorting.",
            examples=[
                example(self.action_type, "First page", {"page": 1, "per_page": 15}, [USER_EXAMPLE]),
                example(self.action_type, "Search", {"search": "jane", "sort_by": "name", "sort_order": "asc"}),
            ],
        )
