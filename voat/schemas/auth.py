from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class _Request(BaseModel):
    # Bodies are checked by the lifecycle itself so that every violated rule is
    # reported together; these models only give the payload a shape.
    model_config = ConfigDict(populate_by_name=True, extra='ignore', coerce_numbers_to_str=True)


class SignupRequest(_Request):
    name: str = ''
    email: str = ''
    password: str = ''
    role: str = ''
    resume_ref: Optional[str] = Field(default=None, alias='resumeRef')


class ResendSignupOtpRequest(_Request):
    email: str = ''
    temp_token: str = Field(default='', alias='tempToken')


class VerifyOtpRequest(_Request):
    email: str = ''
    otp: str = ''
    temp_token: Optional[str] = Field(default=None, alias='tempToken')
    type: Literal['signup', 'login'] = 'signup'


class LoginPasswordRequest(_Request):
    email: str = ''
    password: str = ''


class EmailRequest(_Request):
    email: str = ''


class ResetPasswordRequest(_Request):
    token: str = ''
    new_password: str = Field(default='', alias='newPassword')


class ChangePasswordRequest(_Request):
    current_password: str = Field(default='', alias='currentPassword')
    new_password: str = Field(default='', alias='newPassword')


class EmailChangeRequest(_Request):
    old_email: Optional[str] = Field(default=None, alias='oldEmail')
    new_email: str = Field(default='', alias='newEmail')
