# Subset of the Microsoft Graph /me payload we keep in the users table

from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional


class GraphProfile(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str
    display_name: Optional[str] = Field(None, alias="displayName")
    given_name: Optional[str] = Field(None, alias="givenName")
    surname: Optional[str] = None
    job_title: Optional[str] = Field(None, alias="jobTitle")
    mail: Optional[str] = None
    mobile_phone: Optional[str] = Field(None, alias="mobilePhone")
    office_location: Optional[str] = Field(None, alias="officeLocation")
    preferred_language: Optional[str] = Field(None, alias="preferredLanguage")
    user_principal_name: Optional[str] = Field(None, alias="userPrincipalName")
    business_phones: List[str] = Field(default_factory=list, alias="businessPhones")

    def to_columns(self) -> dict:
        return self.model_dump(include=set(type(self).model_fields))
