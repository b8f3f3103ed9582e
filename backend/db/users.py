from sqlalchemy import JSON, Column, String
from .database import Base


class User(Base):
    """Profile copied from Microsoft Graph /me on profile sync."""
    __tablename__ = "users"

    id = Column(String(255), primary_key=True)  # Azure AD object id, same as Order.user_id
    display_name = Column(String, nullable=True)
    given_name = Column(String, nullable=True)
    surname = Column(String, nullable=True)
    job_title = Column(String, nullable=True)
    mail = Column(String, nullable=True)
    mobile_phone = Column(String, nullable=True)
    office_location = Column(String, nullable=True)
    preferred_language = Column(String, nullable=True)
    user_principal_name = Column(String, nullable=True)
    business_phones = Column(JSON, nullable=False, default=list)
