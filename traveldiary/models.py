from __future__ import annotations

from typing import Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

class RegisterReq(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    username: str = Field(min_length=3, max_length=30)
    email: str
    password: str = Field(min_length=6)
    full_name: str = Field(validation_alias=AliasChoices("full_name", "fullName"), min_length=1, max_length=50)
    account_type: Literal["personal", "business"] = Field(
        default="personal", validation_alias=AliasChoices("account_type", "accountType")
    )

class LoginReq(BaseModel):
    # email or username
    identifier: str = Field(validation_alias=AliasChoices("identifier", "email", "username"))
    password: str

class RefreshReq(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    refresh_token: Optional[str] = Field(default=None, validation_alias=AliasChoices("refresh_token", "refreshToken"))

class PushTokenReq(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    fcm_token: Optional[str] = Field(default=None, validation_alias=AliasChoices("fcm_token", "fcmToken"))

class ProfileUpdateReq(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    full_name: Optional[str] = Field(default=None, validation_alias=AliasChoices("full_name", "fullName"))
    bio: Optional[str] = Field(default=None, max_length=500)
    location: Optional[str] = None
    website: Optional[str] = None
    business_email: Optional[str] = Field(default=None, validation_alias=AliasChoices("business_email", "businessEmail"))
    is_private: Optional[bool] = Field(default=None, validation_alias=AliasChoices("is_private", "isPrivate"))

class CommentCreateReq(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    text: str = Field(min_length=1, max_length=2000)
    parent_comment_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("parent_comment_id", "parentCommentId")
    )

class CommentEditReq(BaseModel):
    text: str = Field(min_length=1, max_length=2000)

class MailSendReq(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    recipient_id: str = Field(validation_alias=AliasChoices("recipient_id", "recipientId"))
    subject: str = Field(min_length=1, max_length=200)
    message: str = Field(min_length=1, max_length=10000)

class MailReplyReq(BaseModel):
    message: str = Field(min_length=1, max_length=10000)
