import uuid
from sqlalchemy import Column, LargeBinary, String, Uuid
from .database import Base


class Image(Base):
    """Stored image binary for item pictures."""
    __tablename__ = "images"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    data = Column(LargeBinary, nullable=False)
    content_type = Column(String(255), nullable=False)

    @property
    def url(self) -> str:
        return f"/images/serve/{self.id}"
